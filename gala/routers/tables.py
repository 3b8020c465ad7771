from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.db import get_db
from gala.dependencies import get_current_user
from gala.schemas import AddGuestRequest, AddRoleRequest, ClaimSeatRequest, RemoveRoleRequest
from gala.services.guest_service import add_guest, assignment_to_dict, claim_seat, list_table_guests
from gala.services.permission_service import get_table_permissions
from gala.services.table_service import add_table_role, get_table_by_slug, list_table_roles, remove_table_role

router = APIRouter(prefix='/api/tables', tags=['tables'])


@router.get('/{slug}/guests')
def table_guests(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    return list_table_guests(db, table_id=table.id, actor_id=user.id)


@router.post('/{slug}/guests', status_code=201)
def create_table_guest(
    slug: str,
    payload: AddGuestRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    assignment = add_guest(
        db,
        table_id=table.id,
        actor_id=user.id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        display_name=payload.display_name,
        order_id=payload.order_id,
    )
    db.commit()
    return assignment_to_dict(assignment)


@router.post('/{slug}/claim-seat', status_code=201)
def claim_table_seat(
    slug: str,
    payload: ClaimSeatRequest,
    db: Session = Depends(get_db),
):
    assignment = claim_seat(
        db,
        slug=slug,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        display_name=payload.display_name,
    )
    db.commit()
    return assignment_to_dict(assignment)


@router.get('/{slug}/roles')
def table_roles(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    return {'roles': list_table_roles(db, table_id=table.id, actor_id=user.id)}


@router.post('/{slug}/roles', status_code=201)
def create_table_role(
    slug: str,
    payload: AddRoleRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    role_row = add_table_role(
        db,
        table_id=table.id,
        actor_id=user.id,
        role=payload.role,
        user_id=payload.user_id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    db.commit()
    return {'id': role_row.id, 'user_id': role_row.user_id, 'role': role_row.role.value}


@router.delete('/{slug}/roles')
def delete_table_role(
    slug: str,
    payload: RemoveRoleRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    remove_table_role(db, table_id=table.id, actor_id=user.id, user_id=payload.user_id, role=payload.role)
    db.commit()
    return {'ok': True}


@router.get('/{slug}/permissions')
def table_permissions(
    slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    table = get_table_by_slug(db, slug=slug)
    return get_table_permissions(db, user_id=user.id, table_id=table.id)
