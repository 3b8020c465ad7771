from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.db import get_db
from gala.dependencies import get_current_user
from gala.errors import ForbiddenError
from gala.models import ActivityAction
from gala.services.activity_service import list_activity
from gala.services.permission_service import is_admin
from gala.services.webhook_service import event_state, list_event_log

router = APIRouter(prefix='/api/admin', tags=['admin'])


@router.get('/organizations/{organization_id}/activity')
def organization_activity(
    organization_id: int,
    event_id: int | None = None,
    action: ActivityAction | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not is_admin(db, user_id=user.id, organization_id=organization_id):
        raise ForbiddenError('Organization admin access required')
    rows = list_activity(db, organization_id=organization_id, event_id=event_id, action=action, limit=limit)
    return {
        'activity': [
            {
                'id': row.id,
                'event_id': row.event_id,
                'actor_id': row.actor_id,
                'action': row.action.value,
                'entity_type': row.entity_type.value,
                'entity_id': row.entity_id,
                'metadata': row.meta,
                'created_at': row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
    }


@router.get('/stripe-events')
def stripe_events(
    processed: bool | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not user.is_super_admin:
        raise ForbiddenError('Super admin access required')
    rows = list_event_log(db, processed=processed, limit=limit)
    return {
        'events': [
            {
                'stripe_event_id': row.stripe_event_id,
                'event_type': row.event_type,
                'state': event_state(row).value,
                'error_message': row.error_message,
                'processed_at': row.processed_at.isoformat() if row.processed_at else None,
                'created_at': row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
    }
