from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from gala.errors import ValidationFailedError
from gala.models import DiscountType, ProductKind
from gala.services.pricing_service import (
    calculate_subtotal,
    compute_discount,
    evaluate_promo_code,
    quote,
    seats_for_purchase,
    validate_quantity,
)


def _promo(**overrides):
    values = {
        'is_active': True,
        'valid_from': datetime.now(tz=timezone.utc) - timedelta(days=1),
        'valid_until': None,
        'max_uses': None,
        'current_uses': 0,
        'discount_type': DiscountType.PERCENTAGE,
        'discount_value': 10,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class CalculateSubtotalTests(unittest.TestCase):
    def test_full_table_price_is_not_multiplied(self) -> None:
        self.assertEqual(calculate_subtotal(ProductKind.FULL_TABLE, 500000, 10), 500000)

    def test_individual_ticket_is_per_seat(self) -> None:
        self.assertEqual(calculate_subtotal(ProductKind.INDIVIDUAL_TICKET, 50000, 3), 150000)

    def test_captain_commitment_is_per_seat(self) -> None:
        self.assertEqual(calculate_subtotal(ProductKind.CAPTAIN_COMMITMENT, 25000, 2), 50000)


class ValidateQuantityTests(unittest.TestCase):
    def test_full_table_requires_exactly_one(self) -> None:
        validate_quantity(ProductKind.FULL_TABLE, 1)
        with self.assertRaises(ValidationFailedError):
            validate_quantity(ProductKind.FULL_TABLE, 2)

    def test_individual_quantity_bounds(self) -> None:
        validate_quantity(ProductKind.INDIVIDUAL_TICKET, 1)
        validate_quantity(ProductKind.INDIVIDUAL_TICKET, 10)
        with self.assertRaises(ValidationFailedError):
            validate_quantity(ProductKind.INDIVIDUAL_TICKET, 0)
        with self.assertRaises(ValidationFailedError):
            validate_quantity(ProductKind.CAPTAIN_COMMITMENT, 11)

    def test_full_table_seats_follow_table_capacity(self) -> None:
        self.assertEqual(seats_for_purchase(ProductKind.FULL_TABLE, 1, table_capacity=8), 8)
        self.assertEqual(seats_for_purchase(ProductKind.INDIVIDUAL_TICKET, 3, table_capacity=8), 3)


class DiscountTests(unittest.TestCase):
    def test_percentage_rounds_half_up_to_the_cent(self) -> None:
        self.assertEqual(compute_discount(DiscountType.PERCENTAGE, 15, 333), 50)
        self.assertEqual(compute_discount(DiscountType.PERCENTAGE, 10, 500000), 50000)

    def test_fixed_amount_never_exceeds_subtotal(self) -> None:
        self.assertEqual(compute_discount(DiscountType.FIXED_AMOUNT, 90000, 50000), 50000)
        self.assertEqual(compute_discount(DiscountType.FIXED_AMOUNT, 1000, 50000), 1000)

    def test_quote_total_is_never_negative(self) -> None:
        result = quote(
            ProductKind.INDIVIDUAL_TICKET,
            20000,
            1,
            promo=_promo(discount_type=DiscountType.FIXED_AMOUNT, discount_value=99999),
        )
        self.assertEqual(result.total_cents, 0)
        self.assertFalse(result.requires_payment)

    def test_full_table_quote_with_percentage_promo(self) -> None:
        result = quote(ProductKind.FULL_TABLE, 500000, 1, promo=_promo())
        self.assertEqual((result.subtotal_cents, result.discount_cents, result.total_cents), (500000, 50000, 450000))
        self.assertTrue(result.requires_payment)


class EvaluatePromoCodeTests(unittest.TestCase):
    def test_unknown_code(self) -> None:
        with self.assertRaisesRegex(ValidationFailedError, 'Invalid promo code'):
            evaluate_promo_code(None)

    def test_inactive_code(self) -> None:
        with self.assertRaisesRegex(ValidationFailedError, 'no longer active'):
            evaluate_promo_code(_promo(is_active=False))

    def test_window_boundaries(self) -> None:
        now = datetime.now(tz=timezone.utc)
        with self.assertRaisesRegex(ValidationFailedError, 'not yet valid'):
            evaluate_promo_code(_promo(valid_from=now + timedelta(hours=1)), at=now)
        with self.assertRaisesRegex(ValidationFailedError, 'expired'):
            evaluate_promo_code(_promo(valid_until=now - timedelta(hours=1)), at=now)

    def test_naive_window_values_are_treated_as_utc(self) -> None:
        now = datetime.now(tz=timezone.utc)
        naive_until = (now + timedelta(hours=1)).replace(tzinfo=None)
        evaluate_promo_code(_promo(valid_until=naive_until), at=now)

    def test_usage_limit(self) -> None:
        with self.assertRaisesRegex(ValidationFailedError, 'usage limit'):
            evaluate_promo_code(_promo(max_uses=5, current_uses=5))
        evaluate_promo_code(_promo(max_uses=5, current_uses=4))


if __name__ == '__main__':
    unittest.main()
