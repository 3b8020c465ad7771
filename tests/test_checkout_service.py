from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from support_db import Factory, make_session

from gala.errors import ValidationFailedError
from gala.models import (
    ActivityAction,
    ActivityLog,
    DiscountType,
    EventTable,
    GuestAssignment,
    Order,
    OrderStatus,
    ProductKind,
    PromoCode,
    TableRole,
    TableType,
    TableUserRole,
)
from gala.schemas import CheckoutRequest
from gala.services.checkout_service import checkout
from gala.services.mock_payment_provider import MockPaymentProvider
from gala.services.payment_metadata import OrderFlow


class CheckoutTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.f = Factory(self.db)
        self.org = self.f.organization()
        self.event = self.f.event(self.org)
        self.buyer = self.f.user('buyer@example.org')
        self.provider = MockPaymentProvider(webhook_secret='whsec_test')

    def tearDown(self) -> None:
        self.db.close()

    def _promo(self, code: str = 'SAVE10', **overrides) -> PromoCode:
        values = {
            'event_id': self.event.id,
            'code': code,
            'discount_type': DiscountType.PERCENTAGE,
            'discount_value': 10,
            'valid_from': datetime.now(tz=timezone.utc) - timedelta(days=1),
        }
        values.update(overrides)
        promo = PromoCode(**values)
        self.db.add(promo)
        self.db.flush()
        return promo

    def _checkout(self, **fields):
        values = {'event_id': self.event.id}
        values.update(fields)
        return checkout(
            self.db,
            request=CheckoutRequest(**values),
            current_user_id=self.buyer.id,
            provider=self.provider,
        )


class PaidCheckoutTests(CheckoutTestCase):
    def test_full_table_with_percentage_promo_opens_payment_intent(self) -> None:
        product = self.f.product(self.event, ProductKind.FULL_TABLE, price_cents=500000)
        self._promo()

        result = self._checkout(
            product_id=product.id,
            order_flow='full_table',
            promo_code='save10',
            table_info={'name': 'Smith Family'},
        )

        self.assertTrue(result.requires_payment)
        self.assertEqual((result.subtotal_cents, result.discount_cents, result.amount_cents), (500000, 50000, 450000))
        self.assertIsNotNone(result.client_secret)

        intent, amount, metadata = self.provider.created[0]
        self.assertEqual(intent.id, result.payment_intent_id)
        self.assertEqual(amount, 450000)
        self.assertEqual(metadata.order_flow, OrderFlow.FULL_TABLE)
        self.assertEqual(metadata.table_name, 'Smith Family')

        self.assertEqual(self.db.execute(select(GuestAssignment)).scalars().all(), [])
        self.assertEqual(self.db.execute(select(EventTable)).scalars().all(), [])

    def test_pending_order_records_the_intent(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=25000)

        result = self._checkout(product_id=product.id, order_flow='individual', quantity=2)

        order = self.db.get(Order, result.order_id)
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.stripe_payment_intent_id, result.payment_intent_id)
        self.assertEqual(order.amount_cents, 50000)
        self.assertEqual(order.quantity, 2)

    def test_promo_usage_is_not_counted_until_payment_completes(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=25000)
        promo = self._promo()

        self._checkout(product_id=product.id, order_flow='individual', promo_code='SAVE10')

        self.db.refresh(promo)
        self.assertEqual(promo.current_uses, 0)


class FreeCheckoutTests(CheckoutTestCase):
    def test_zero_cost_captain_commitment_completes_synchronously(self) -> None:
        product = self.f.product(self.event, ProductKind.CAPTAIN_COMMITMENT, price_cents=0)

        result = self._checkout(
            product_id=product.id,
            order_flow='captain_commitment',
            table_info={'name': 'Captain Table'},
        )

        self.assertFalse(result.requires_payment)
        self.assertEqual(self.provider.created, [])
        table = self.db.get(EventTable, result.table_id)
        self.assertEqual(table.type, TableType.CAPTAIN_PAYG)
        self.assertEqual(table.reference_code, '26-T001')

        seats = self.db.execute(select(GuestAssignment).where(GuestAssignment.table_id == table.id)).scalars().all()
        self.assertEqual([seat.user_id for seat in seats], [self.buyer.id])
        self.assertEqual(seats[0].reference_code, 'G0001')

        role = self.db.execute(select(TableUserRole).where(TableUserRole.table_id == table.id)).scalar_one()
        self.assertEqual(role.role, TableRole.CAPTAIN)

        actions = self.db.execute(select(ActivityLog.action)).scalars().all()
        self.assertIn(ActivityAction.ORDER_COMPLETED, actions)
        self.assertIn(ActivityAction.TABLE_CREATED, actions)

    def test_fully_discounted_order_counts_promo_use(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=20000)
        promo = self._promo('COMP', discount_type=DiscountType.FIXED_AMOUNT, discount_value=99999)

        result = self._checkout(product_id=product.id, order_flow='individual', promo_code='COMP')

        self.assertFalse(result.requires_payment)
        self.assertEqual(result.discount_cents, 20000)
        self.db.refresh(promo)
        self.assertEqual(promo.current_uses, 1)


class CheckoutValidationTests(CheckoutTestCase):
    def test_seat_at_full_table_is_rejected(self) -> None:
        ticket = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET)
        owner = self.f.user()
        table = self.f.table(self.event, owner, capacity=4)
        self.f.order(self.event, owner, ticket, table=table, quantity=3)

        with self.assertRaisesRegex(ValidationFailedError, 'Table is full: 1 of 4 seats remaining'):
            self._checkout(product_id=ticket.id, order_flow='individual_at_table', table_id=table.id, quantity=2)

    def test_inactive_product_is_rejected(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, is_active=False)
        with self.assertRaisesRegex(ValidationFailedError, 'not available'):
            self._checkout(product_id=product.id, order_flow='individual')

    def test_inactive_event_is_rejected(self) -> None:
        closed = self.f.event(self.org, is_active=False)
        product = self.f.product(closed, ProductKind.INDIVIDUAL_TICKET)
        with self.assertRaisesRegex(ValidationFailedError, 'not open'):
            self._checkout(event_id=closed.id, product_id=product.id, order_flow='individual')

    def test_flow_must_match_product_kind(self) -> None:
        product = self.f.product(self.event, ProductKind.FULL_TABLE)
        with self.assertRaisesRegex(ValidationFailedError, 'does not match'):
            self._checkout(product_id=product.id, order_flow='individual')

    def test_expired_promo_is_rejected(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET)
        self._promo('OLD', valid_until=datetime.now(tz=timezone.utc) - timedelta(hours=1))
        with self.assertRaisesRegex(ValidationFailedError, 'expired'):
            self._checkout(product_id=product.id, order_flow='individual', promo_code='OLD')

    def test_full_table_quantity_must_be_one(self) -> None:
        product = self.f.product(self.event, ProductKind.FULL_TABLE)
        with self.assertRaises(ValidationFailedError):
            self._checkout(product_id=product.id, order_flow='full_table', quantity=2, table_info={'name': 'Two'})


if __name__ == '__main__':
    unittest.main()
