from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gala.errors import ValidationFailedError
from gala.models import ProductKind


class OrderFlow(str, Enum):
    INDIVIDUAL = 'individual'
    INDIVIDUAL_AT_TABLE = 'individual_at_table'
    FULL_TABLE = 'full_table'
    CAPTAIN_COMMITMENT = 'captain_commitment'


FLOW_PRODUCT_KIND = {
    OrderFlow.INDIVIDUAL: ProductKind.INDIVIDUAL_TICKET,
    OrderFlow.INDIVIDUAL_AT_TABLE: ProductKind.INDIVIDUAL_TICKET,
    OrderFlow.FULL_TABLE: ProductKind.FULL_TABLE,
    OrderFlow.CAPTAIN_COMMITMENT: ProductKind.CAPTAIN_COMMITMENT,
}

_REQUIRED_KEYS = ('event_id', 'user_id', 'product_id')


def _parse_int(data: dict, key: str, *, required: bool = False) -> int | None:
    raw = data.get(key)
    if raw is None or raw == '':
        if required:
            raise ValidationFailedError(f'Missing required payment metadata: {key}')
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationFailedError(f'Invalid payment metadata value for {key}: {raw!r}') from exc


@dataclass(frozen=True)
class PaymentMetadata:
    """Typed view of the metadata attached to a payment intent.

    Payment providers only carry flat string maps, so ``to_stripe`` and
    ``from_stripe`` are the only places that know the wire encoding.
    """

    event_id: int
    user_id: int
    product_id: int
    quantity: int
    order_flow: OrderFlow
    table_id: int | None = None
    promo_code_id: int | None = None
    table_name: str | None = None
    table_capacity: int | None = None

    def to_stripe(self) -> dict[str, str]:
        values = {
            'event_id': self.event_id,
            'user_id': self.user_id,
            'product_id': self.product_id,
            'quantity': self.quantity,
            'order_flow': self.order_flow.value,
            'table_id': self.table_id,
            'promo_code_id': self.promo_code_id,
            'table_name': self.table_name,
            'table_capacity': self.table_capacity,
        }
        return {key: str(value) for key, value in values.items() if value is not None}

    @classmethod
    def from_stripe(cls, data: dict | None) -> PaymentMetadata:
        data = data or {}
        missing = [key for key in _REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise ValidationFailedError(f'Missing required payment metadata: {", ".join(missing)}')

        raw_flow = data.get('order_flow') or OrderFlow.INDIVIDUAL.value
        try:
            order_flow = OrderFlow(raw_flow)
        except ValueError as exc:
            raise ValidationFailedError(f'Unknown order flow in payment metadata: {raw_flow!r}') from exc

        quantity = _parse_int(data, 'quantity') or 1
        return cls(
            event_id=_parse_int(data, 'event_id', required=True),
            user_id=_parse_int(data, 'user_id', required=True),
            product_id=_parse_int(data, 'product_id', required=True),
            quantity=quantity,
            order_flow=order_flow,
            table_id=_parse_int(data, 'table_id'),
            promo_code_id=_parse_int(data, 'promo_code_id'),
            table_name=data.get('table_name') or None,
            table_capacity=_parse_int(data, 'table_capacity'),
        )
