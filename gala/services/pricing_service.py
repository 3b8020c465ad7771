from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from gala.config import settings
from gala.errors import ValidationFailedError
from gala.models import DiscountType, ProductKind, PromoCode
from gala.services.time_utils import as_utc, now_utc


@dataclass(frozen=True)
class PriceQuote:
    subtotal_cents: int
    discount_cents: int
    total_cents: int

    @property
    def requires_payment(self) -> bool:
        return self.total_cents > 0


def calculate_subtotal(kind: ProductKind, price_cents: int, quantity: int) -> int:
    """Single source of truth for order pricing.

    FULL_TABLE prices are the whole-table total; every other kind is per seat.
    """
    if kind == ProductKind.FULL_TABLE:
        return price_cents
    return price_cents * quantity


def validate_quantity(kind: ProductKind, quantity: int) -> None:
    if kind == ProductKind.FULL_TABLE:
        if quantity != 1:
            raise ValidationFailedError('Full table purchases must have quantity 1')
        return
    if quantity < 1 or quantity > settings.max_seats_per_order:
        raise ValidationFailedError(f'Quantity must be between 1 and {settings.max_seats_per_order}')


def seats_for_purchase(kind: ProductKind, quantity: int, *, table_capacity: int | None = None) -> int:
    if kind == ProductKind.FULL_TABLE:
        return table_capacity or settings.default_table_capacity
    return quantity


def compute_discount(discount_type: DiscountType, discount_value: int, subtotal_cents: int) -> int:
    if discount_type == DiscountType.PERCENTAGE:
        raw = Decimal(subtotal_cents) * Decimal(discount_value) / Decimal(100)
        discount = int(raw.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    else:
        discount = discount_value
    return max(0, min(discount, subtotal_cents))


def evaluate_promo_code(promo: PromoCode | None, *, at: datetime | None = None) -> None:
    if promo is None:
        raise ValidationFailedError('Invalid promo code')
    if not promo.is_active:
        raise ValidationFailedError('Promo code is no longer active')
    moment = at or now_utc()
    valid_from = as_utc(promo.valid_from)
    valid_until = as_utc(promo.valid_until)
    if valid_from is not None and moment < valid_from:
        raise ValidationFailedError('Promo code is not yet valid')
    if valid_until is not None and moment > valid_until:
        raise ValidationFailedError('Promo code has expired')
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise ValidationFailedError('Promo code has reached its usage limit')


def quote(
    kind: ProductKind,
    price_cents: int,
    quantity: int,
    *,
    promo: PromoCode | None = None,
) -> PriceQuote:
    subtotal = calculate_subtotal(kind, price_cents, quantity)
    discount = 0
    if promo is not None:
        discount = compute_discount(promo.discount_type, promo.discount_value, subtotal)
    return PriceQuote(
        subtotal_cents=subtotal,
        discount_cents=discount,
        total_cents=max(0, subtotal - discount),
    )
