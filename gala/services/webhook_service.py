from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gala.config import settings
from gala.errors import GalaError, NotFoundError, ValidationFailedError
from gala.models import (
    ActivityAction,
    EntityType,
    EventTable,
    Order,
    OrderStatus,
    Product,
    StripeEventLog,
    TableRole,
    TableType,
)
from gala.services.activity_service import log_activity
from gala.services.checkout_service import increment_promo_usage
from gala.services.guest_service import create_assignment
from gala.services.payment_metadata import OrderFlow, PaymentMetadata
from gala.services.payment_provider import PaymentProvider, ProviderEvent, parse_event
from gala.services.permission_service import is_guest_at_table
from gala.services.pricing_service import calculate_subtotal, seats_for_purchase
from gala.services.seat_service import ensure_capacity, lock_table, order_assigned_count
from gala.services.table_service import create_table, get_event
from gala.services.time_utils import now_utc
from gala.services.user_service import get_user

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = 'payment_intent.succeeded'
PAYMENT_FAILED = 'payment_intent.payment_failed'


class StripeEventState(str, Enum):
    UNSEEN = 'UNSEEN'
    LOGGED = 'LOGGED'
    FAILED = 'FAILED'
    PROCESSED = 'PROCESSED'


def event_state(row: StripeEventLog | None) -> StripeEventState:
    if row is None:
        return StripeEventState.UNSEEN
    if row.processed:
        return StripeEventState.PROCESSED
    if row.error_message:
        return StripeEventState.FAILED
    return StripeEventState.LOGGED


@dataclass(frozen=True)
class WebhookOutcome:
    stripe_event_id: str
    event_type: str
    state: StripeEventState
    skipped: bool = False
    error: str | None = None

    def as_response(self) -> dict:
        body = {'received': True}
        if self.skipped:
            body['skipped'] = True
        if self.error is not None:
            body['error'] = True
        return body


def _get_log(db: Session, stripe_event_id: str, *, lock: bool = False) -> StripeEventLog | None:
    stmt = select(StripeEventLog).where(StripeEventLog.stripe_event_id == stripe_event_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def _insert_log(db: Session, event: ProviderEvent) -> StripeEventLog:
    try:
        with db.begin_nested():
            row = StripeEventLog(
                stripe_event_id=event.id,
                event_type=event.type,
                payload=event.payload,
                processed=False,
            )
            db.add(row)
            db.flush()
        return row
    except IntegrityError:
        logger.info('Webhook %s logged concurrently, reusing ledger row', event.id)
        return _get_log(db, event.id)


def receive_webhook(
    db: Session,
    *,
    provider: PaymentProvider,
    payload: bytes,
    signature: str | None,
) -> WebhookOutcome:
    """Verify, record and reconcile one inbound payment event.

    Signature failures raise before anything is written. Otherwise the event
    is durably logged before dispatch, and handler failures are recorded on
    the ledger row instead of being raised.
    """
    event = provider.verify_webhook(payload=payload, signature=signature)
    logger.info('Received webhook %s (%s)', event.id, event.type)

    row = _get_log(db, event.id)
    if row is not None and row.processed:
        logger.info('Webhook %s already processed, skipping', event.id)
        return WebhookOutcome(event.id, event.type, StripeEventState.PROCESSED, skipped=True)
    if row is None:
        _insert_log(db, event)
    db.commit()
    return process_logged_event(db, stripe_event_id=event.id)


def process_logged_event(db: Session, *, stripe_event_id: str) -> WebhookOutcome:
    row = _get_log(db, stripe_event_id, lock=True)
    if row is None:
        raise NotFoundError('Webhook event not found')
    if row.processed:
        db.commit()
        return WebhookOutcome(row.stripe_event_id, row.event_type, StripeEventState.PROCESSED, skipped=True)

    try:
        with db.begin_nested():
            dispatch_event(db, parse_event(row.payload))
    except GalaError as exc:
        logger.warning('Webhook %s (%s) failed: %s', row.stripe_event_id, row.event_type, exc)
        return _record_failure(db, row, str(exc))
    except Exception as exc:
        logger.exception('Webhook %s (%s) raised unexpectedly', row.stripe_event_id, row.event_type)
        return _record_failure(db, row, f'{type(exc).__name__}: {exc}')

    row.processed = True
    row.processed_at = now_utc()
    row.error_message = None
    db.commit()
    return WebhookOutcome(row.stripe_event_id, row.event_type, StripeEventState.PROCESSED)


def _record_failure(db: Session, row: StripeEventLog, message: str) -> WebhookOutcome:
    row.error_message = message[:2000]
    db.commit()
    return WebhookOutcome(row.stripe_event_id, row.event_type, StripeEventState.FAILED, error=row.error_message)


def dispatch_event(db: Session, event: ProviderEvent) -> None:
    if event.type == PAYMENT_SUCCEEDED:
        handle_payment_succeeded(db, intent=event.data_object)
    elif event.type == PAYMENT_FAILED:
        handle_payment_failed(db, intent=event.data_object)
    else:
        logger.info('Ignoring webhook type %s', event.type)


def _lock_order_by_intent(db: Session, intent_id: str) -> Order | None:
    return db.execute(
        select(Order)
        .where(Order.stripe_payment_intent_id == intent_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def handle_payment_succeeded(db: Session, *, intent: dict) -> Order:
    intent_id = intent.get('id')
    if not intent_id:
        raise ValidationFailedError('Payment intent id missing from event')
    metadata = PaymentMetadata.from_stripe(intent.get('metadata'))

    order = _lock_order_by_intent(db, intent_id)
    if order is not None and order.status == OrderStatus.COMPLETED:
        logger.info('Order %s already completed for intent %s', order.id, intent_id)
        return order

    event = get_event(db, event_id=metadata.event_id)
    product = db.get(Product, metadata.product_id)
    if not product:
        raise NotFoundError('Product not found')
    buyer = get_user(db, user_id=metadata.user_id)
    amount = int(intent.get('amount_received') or intent.get('amount') or 0)

    table = _table_for_completed_payment(db, metadata=metadata, order=order, event=event, buyer_id=buyer.id, amount=amount)
    seats = seats_for_purchase(product.kind, metadata.quantity, table_capacity=table.capacity if table else None)
    if metadata.order_flow == OrderFlow.INDIVIDUAL_AT_TABLE and table is not None:
        ensure_capacity(db, table=table, requested=seats)

    if order is None:
        logger.warning('No pending order for intent %s, creating from metadata', intent_id)
        subtotal = calculate_subtotal(product.kind, product.price_cents, metadata.quantity)
        order = Order(
            event_id=event.id,
            user_id=buyer.id,
            product_id=product.id,
            promo_code_id=metadata.promo_code_id,
            amount_cents=amount,
            discount_cents=max(0, subtotal - amount),
            stripe_payment_intent_id=intent_id,
        )
        db.add(order)
    order.status = OrderStatus.COMPLETED
    order.quantity = seats
    order.table_id = table.id if table else None
    order.stripe_charge_id = intent.get('latest_charge')
    order.updated_at = now_utc()
    db.flush()

    if table is None:
        if order_assigned_count(db, order_id=order.id) == 0:
            create_assignment(db, event=event, table=None, user=buyer, order=order, tier=product.tier)
    elif not is_guest_at_table(db, user_id=buyer.id, table_id=table.id):
        create_assignment(db, event=event, table=table, user=buyer, order=order, tier=product.tier)

    if order.promo_code_id is not None:
        increment_promo_usage(db, promo_code_id=order.promo_code_id)

    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=buyer.id,
        action=ActivityAction.ORDER_COMPLETED,
        entity_type=EntityType.ORDER,
        entity_id=order.id,
        metadata={
            'order_flow': metadata.order_flow.value,
            'amount_cents': amount,
            'stripe_payment_intent_id': intent_id,
            'table_id': order.table_id,
        },
    )
    logger.info('Order %s completed from intent %s', order.id, intent_id)
    return order


def _table_for_completed_payment(
    db: Session,
    *,
    metadata: PaymentMetadata,
    order: Order | None,
    event,
    buyer_id: int,
    amount: int,
) -> EventTable | None:
    if order is not None and order.table_id is not None:
        return lock_table(db, table_id=order.table_id)
    if metadata.order_flow == OrderFlow.FULL_TABLE:
        return create_table(
            db,
            event=event,
            owner_id=buyer_id,
            name=metadata.table_name or 'My Table',
            table_type=TableType.PREPAID,
            capacity=metadata.table_capacity or settings.default_table_capacity,
            owner_role=TableRole.OWNER,
            custom_total_price_cents=amount,
        )
    if metadata.order_flow == OrderFlow.CAPTAIN_COMMITMENT:
        return create_table(
            db,
            event=event,
            owner_id=buyer_id,
            name=metadata.table_name or 'My Table',
            table_type=TableType.CAPTAIN_PAYG,
            capacity=metadata.table_capacity or settings.default_table_capacity,
            owner_role=TableRole.CAPTAIN,
        )
    if metadata.table_id is not None:
        return lock_table(db, table_id=metadata.table_id)
    return None


def handle_payment_failed(db: Session, *, intent: dict) -> Order | None:
    intent_id = intent.get('id')
    if not intent_id:
        raise ValidationFailedError('Payment intent id missing from event')
    order = _lock_order_by_intent(db, intent_id)
    if order is None:
        logger.warning('Payment failed for unknown intent %s', intent_id)
        return None
    if order.status != OrderStatus.PENDING:
        return order

    message = (intent.get('last_payment_error') or {}).get('message') or 'Unknown error'
    order.notes = f'Payment failed: {message}'
    order.updated_at = now_utc()

    event = get_event(db, event_id=order.event_id)
    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=order.user_id,
        action=ActivityAction.ORDER_PAYMENT_FAILED,
        entity_type=EntityType.ORDER,
        entity_id=order.id,
        metadata={'stripe_payment_intent_id': intent_id, 'message': message},
    )
    return order


def list_event_log(db: Session, *, processed: bool | None = None, limit: int = 100) -> list[StripeEventLog]:
    stmt = select(StripeEventLog)
    if processed is not None:
        stmt = stmt.where(StripeEventLog.processed.is_(processed))
    stmt = stmt.order_by(StripeEventLog.created_at.desc(), StripeEventLog.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()


def replay_failed_events(db: Session, *, limit: int = 100) -> list[WebhookOutcome]:
    event_ids = db.execute(
        select(StripeEventLog.stripe_event_id)
        .where(StripeEventLog.processed.is_(False))
        .order_by(StripeEventLog.created_at.asc(), StripeEventLog.id.asc())
        .limit(limit)
    ).scalars().all()
    db.commit()
    return [process_logged_event(db, stripe_event_id=event_id) for event_id in event_ids]
