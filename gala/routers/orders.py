from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.db import get_db
from gala.dependencies import get_current_user
from gala.errors import ForbiddenError, NotFoundError
from gala.models import EventTable, Order
from gala.services.permission_service import is_admin
from gala.services.table_service import get_event

router = APIRouter(prefix='/api/orders', tags=['orders'])


@router.get('/by-payment-intent/{intent_id}')
def order_by_payment_intent(
    intent_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = db.execute(select(Order).where(Order.stripe_payment_intent_id == intent_id)).scalar_one_or_none()
    if not order:
        raise NotFoundError('Order not found')
    if order.user_id != user.id:
        event = get_event(db, event_id=order.event_id)
        if not is_admin(db, user_id=user.id, organization_id=event.organization_id):
            raise ForbiddenError('No permission to view this order')

    table = db.get(EventTable, order.table_id) if order.table_id else None
    return {
        'id': order.id,
        'status': order.status.value,
        'quantity': order.quantity,
        'amount_cents': order.amount_cents,
        'discount_cents': order.discount_cents,
        'table_id': order.table_id,
        'table_slug': table.slug if table else None,
        'notes': order.notes,
    }
