from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gala.config import settings
from gala.errors import NotFoundError, ValidationFailedError
from gala.models import (
    ActivityAction,
    EntityType,
    Event,
    EventTable,
    Order,
    OrderStatus,
    Product,
    ProductKind,
    PromoCode,
    TableRole,
    TableStatus,
    TableType,
    User,
)
from gala.schemas import CheckoutRequest
from gala.services.activity_service import log_activity
from gala.services.guest_service import create_assignment
from gala.services.payment_metadata import FLOW_PRODUCT_KIND, OrderFlow, PaymentMetadata
from gala.services.payment_provider import PaymentProvider, PaymentProviderError
from gala.services.permission_service import is_guest_at_table
from gala.services.pricing_service import PriceQuote, evaluate_promo_code, quote, seats_for_purchase, validate_quantity
from gala.services.seat_service import ensure_capacity, lock_table
from gala.services.table_service import create_table, get_event
from gala.services.user_service import find_or_create_user, get_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    requires_payment: bool
    order_id: int
    product_kind: ProductKind
    subtotal_cents: int
    discount_cents: int
    amount_cents: int
    client_secret: str | None = None
    payment_intent_id: str | None = None
    table_id: int | None = None
    table_slug: str | None = None

    def as_dict(self) -> dict:
        return {
            'requires_payment': self.requires_payment,
            'order_id': self.order_id,
            'product_kind': self.product_kind.value,
            'subtotal_cents': self.subtotal_cents,
            'discount_cents': self.discount_cents,
            'amount_cents': self.amount_cents,
            'client_secret': self.client_secret,
            'payment_intent_id': self.payment_intent_id,
            'table_id': self.table_id,
            'table_slug': self.table_slug,
        }


def find_promo_code(db: Session, *, event_id: int, code: str) -> PromoCode | None:
    return db.execute(
        select(PromoCode).where(
            PromoCode.event_id == event_id,
            PromoCode.code == code.strip().upper(),
        )
    ).scalar_one_or_none()


def increment_promo_usage(db: Session, *, promo_code_id: int) -> None:
    db.execute(
        update(PromoCode)
        .where(PromoCode.id == promo_code_id)
        .values(current_uses=PromoCode.current_uses + 1)
        .execution_options(synchronize_session=False)
    )


def _resolve_buyer(db: Session, *, request: CheckoutRequest, current_user_id: int | None) -> User:
    if current_user_id is not None:
        return get_user(db, user_id=current_user_id)
    if request.buyer_info is None:
        raise ValidationFailedError('Buyer information is required')
    info = request.buyer_info
    return find_or_create_user(
        db,
        email=info.email,
        first_name=info.first_name,
        last_name=info.last_name,
        phone=info.phone,
    )


def _load_product(db: Session, *, request: CheckoutRequest) -> tuple[Event, Product]:
    product = db.get(Product, request.product_id)
    if not product:
        raise NotFoundError('Product not found')
    if product.event_id != request.event_id:
        raise ValidationFailedError('Product does not belong to this event')
    if not product.is_active:
        raise ValidationFailedError('Product is not available for purchase')
    event = get_event(db, event_id=request.event_id)
    if not event.is_active:
        raise ValidationFailedError('Event is not open for ticket sales')
    if FLOW_PRODUCT_KIND[request.order_flow] != product.kind:
        raise ValidationFailedError(f'Order flow {request.order_flow.value} does not match product {product.kind.value}')
    return event, product


def _load_target_table(db: Session, *, request: CheckoutRequest, quantity: int) -> EventTable | None:
    if request.order_flow != OrderFlow.INDIVIDUAL_AT_TABLE:
        return None
    table = db.get(EventTable, request.table_id)
    if not table:
        raise NotFoundError('Table not found')
    if table.event_id != request.event_id:
        raise ValidationFailedError('Table does not belong to this event')
    if table.status != TableStatus.ACTIVE:
        raise ValidationFailedError('Table is not accepting new seats')
    ensure_capacity(db, table=table, requested=quantity)
    return table


def _load_promo(db: Session, *, request: CheckoutRequest) -> PromoCode | None:
    if not request.promo_code or not request.promo_code.strip():
        return None
    promo = find_promo_code(db, event_id=request.event_id, code=request.promo_code)
    evaluate_promo_code(promo)
    return promo


def checkout(
    db: Session,
    *,
    request: CheckoutRequest,
    current_user_id: int | None,
    provider: PaymentProvider,
) -> CheckoutResult:
    """Price a purchase and either complete it immediately or open a payment intent.

    Free orders are completed in one transaction. Paid orders are committed as
    PENDING before the provider is called, so no transaction spans the
    provider round-trip; the webhook engine completes them later.
    """
    buyer = _resolve_buyer(db, request=request, current_user_id=current_user_id)
    event, product = _load_product(db, request=request)
    validate_quantity(product.kind, request.quantity)
    table = _load_target_table(db, request=request, quantity=request.quantity)
    promo = _load_promo(db, request=request)
    price = quote(product.kind, product.price_cents, request.quantity, promo=promo)

    if not price.requires_payment:
        return _complete_free_order(
            db,
            request=request,
            buyer=buyer,
            event=event,
            product=product,
            table=table,
            promo=promo,
            price=price,
        )
    return _open_paid_order(
        db,
        request=request,
        buyer=buyer,
        event=event,
        product=product,
        table=table,
        promo=promo,
        price=price,
        provider=provider,
    )


def _complete_free_order(
    db: Session,
    *,
    request: CheckoutRequest,
    buyer: User,
    event: Event,
    product: Product,
    table: EventTable | None,
    promo: PromoCode | None,
    price: PriceQuote,
) -> CheckoutResult:
    if request.order_flow == OrderFlow.CAPTAIN_COMMITMENT:
        table = create_table(
            db,
            event=event,
            owner_id=buyer.id,
            name=request.table_info.name,
            internal_name=request.table_info.internal_name,
            table_type=TableType.CAPTAIN_PAYG,
            capacity=settings.default_table_capacity,
            owner_role=TableRole.CAPTAIN,
        )
    elif request.order_flow == OrderFlow.FULL_TABLE:
        table = create_table(
            db,
            event=event,
            owner_id=buyer.id,
            name=request.table_info.name,
            internal_name=request.table_info.internal_name,
            table_type=TableType.PREPAID,
            capacity=settings.default_table_capacity,
            owner_role=TableRole.OWNER,
            custom_total_price_cents=price.total_cents,
        )
    elif table is not None:
        table = lock_table(db, table_id=table.id)
        ensure_capacity(db, table=table, requested=request.quantity)

    seats = seats_for_purchase(product.kind, request.quantity, table_capacity=table.capacity if table else None)
    order = Order(
        event_id=event.id,
        user_id=buyer.id,
        product_id=product.id,
        table_id=table.id if table else None,
        promo_code_id=promo.id if promo else None,
        status=OrderStatus.COMPLETED,
        quantity=seats,
        amount_cents=0,
        discount_cents=price.discount_cents,
    )
    db.add(order)
    db.flush()

    if table is None or not is_guest_at_table(db, user_id=buyer.id, table_id=table.id):
        create_assignment(db, event=event, table=table, user=buyer, order=order, tier=product.tier)
    if promo is not None:
        increment_promo_usage(db, promo_code_id=promo.id)

    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=buyer.id,
        action=ActivityAction.ORDER_COMPLETED,
        entity_type=EntityType.ORDER,
        entity_id=order.id,
        metadata={
            'order_flow': request.order_flow.value,
            'amount_cents': 0,
            'discount_cents': price.discount_cents,
            'table_id': order.table_id,
            'promo_code_id': order.promo_code_id,
        },
    )
    db.commit()
    logger.info('Completed free %s order %s for user %s', request.order_flow.value, order.id, buyer.id)

    return CheckoutResult(
        requires_payment=False,
        order_id=order.id,
        product_kind=product.kind,
        subtotal_cents=price.subtotal_cents,
        discount_cents=price.discount_cents,
        amount_cents=0,
        table_id=table.id if table else None,
        table_slug=table.slug if table else None,
    )


def _open_paid_order(
    db: Session,
    *,
    request: CheckoutRequest,
    buyer: User,
    event: Event,
    product: Product,
    table: EventTable | None,
    promo: PromoCode | None,
    price: PriceQuote,
    provider: PaymentProvider,
) -> CheckoutResult:
    table_capacity = settings.default_table_capacity if product.kind == ProductKind.FULL_TABLE else None
    order = Order(
        event_id=event.id,
        user_id=buyer.id,
        product_id=product.id,
        table_id=table.id if table else None,
        promo_code_id=promo.id if promo else None,
        status=OrderStatus.PENDING,
        quantity=seats_for_purchase(product.kind, request.quantity, table_capacity=table_capacity),
        amount_cents=price.total_cents,
        discount_cents=price.discount_cents,
    )
    db.add(order)
    db.commit()

    metadata = PaymentMetadata(
        event_id=event.id,
        user_id=buyer.id,
        product_id=product.id,
        quantity=request.quantity,
        order_flow=request.order_flow,
        table_id=table.id if table else None,
        promo_code_id=promo.id if promo else None,
        table_name=request.table_info.name if request.table_info else None,
        table_capacity=table_capacity,
    )
    try:
        intent = provider.create_payment_intent(
            amount_cents=price.total_cents,
            currency=settings.stripe_currency,
            metadata=metadata,
            receipt_email=buyer.email,
            idempotency_key=f'gala-order-{order.id}',
        )
    except PaymentProviderError:
        logger.warning('Payment intent creation failed for pending order %s', order.id)
        raise

    order.stripe_payment_intent_id = intent.id
    db.commit()
    logger.info('Opened payment intent %s for order %s (%s cents)', intent.id, order.id, price.total_cents)

    return CheckoutResult(
        requires_payment=True,
        order_id=order.id,
        product_kind=product.kind,
        subtotal_cents=price.subtotal_cents,
        discount_cents=price.discount_cents,
        amount_cents=price.total_cents,
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        table_id=table.id if table else None,
        table_slug=table.slug if table else None,
    )
