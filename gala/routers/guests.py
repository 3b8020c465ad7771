from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.db import get_db
from gala.dependencies import get_current_user
from gala.schemas import GuestUpdateRequest, TransferRequest
from gala.services.guest_service import (
    assignment_to_dict,
    check_in_guest,
    edit_guest,
    get_guest_detail,
    remove_guest,
    transfer_ticket,
)

router = APIRouter(prefix='/api/guests', tags=['guests'])


@router.get('/{guest_id}')
def guest_detail(
    guest_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_guest_detail(db, guest_assignment_id=guest_id, actor_id=user.id)


@router.patch('/{guest_id}')
def update_guest(
    guest_id: int,
    payload: GuestUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    assignment = edit_guest(
        db,
        guest_assignment_id=guest_id,
        actor_id=user.id,
        fields=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    return assignment_to_dict(assignment)


@router.delete('/{guest_id}')
def delete_guest(
    guest_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    remove_guest(db, guest_assignment_id=guest_id, actor_id=user.id)
    db.commit()
    return {'ok': True}


@router.post('/{guest_id}/transfer')
def transfer_guest_ticket(
    guest_id: int,
    payload: TransferRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    assignment = transfer_ticket(
        db,
        guest_assignment_id=guest_id,
        actor_id=user.id,
        to_user_id=payload.to_user_id,
        to_email=payload.to_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        keep_table=payload.keep_table,
        transfer_details=payload.transfer_details,
    )
    db.commit()
    return assignment_to_dict(assignment)


@router.post('/{guest_id}/check-in')
def check_in(
    guest_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    assignment = check_in_guest(db, guest_assignment_id=guest_id, actor_id=user.id)
    db.commit()
    return assignment_to_dict(assignment)
