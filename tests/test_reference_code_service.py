from __future__ import annotations

import unittest

from support_db import Factory, make_session

from gala.errors import ConflictError, ReferenceCodeExhaustedError
from gala.models import GuestAssignment, ProductKind, ProductTier
from gala.services.reference_code_service import (
    format_guest_code,
    format_table_code,
    insert_with_reference_code,
    next_guest_reference_code,
    next_table_reference_code,
)


class ReferenceCodeFormatTests(unittest.TestCase):
    def test_formats(self) -> None:
        self.assertEqual(format_table_code(2026, 7), '26-T007')
        self.assertEqual(format_table_code(2026, 1234), '26-T1234')
        self.assertEqual(format_guest_code(42), 'G0042')


class ReferenceCodeSequenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.f = Factory(self.db)
        self.org = self.f.organization()
        self.event = self.f.event(self.org)
        self.ticket = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET)
        self.owner = self.f.user()
        self.table = self.f.table(self.event, self.owner)
        self.order = self.f.order(self.event, self.owner, self.ticket, table=self.table, quantity=10)

    def tearDown(self) -> None:
        self.db.close()

    def _assignment(self, code: str, user=None) -> GuestAssignment:
        assignment = GuestAssignment(
            event_id=self.event.id,
            organization_id=self.org.id,
            table_id=self.table.id,
            user_id=(user or self.f.user()).id,
            order_id=self.order.id,
            tier=ProductTier.STANDARD,
            reference_code=code,
        )
        self.db.add(assignment)
        self.db.flush()
        return assignment

    def test_first_codes(self) -> None:
        other_org = self.f.organization('Empty')
        self.assertEqual(next_guest_reference_code(self.db, organization_id=other_org.id), 'G0001')
        empty_event = self.f.event(self.org)
        self.assertEqual(next_table_reference_code(self.db, event_id=empty_event.id), '26-T001')

    def test_next_code_follows_numeric_maximum(self) -> None:
        self._assignment('G0009')
        self._assignment('G0010')
        self._assignment('G10000')

        self.assertEqual(next_guest_reference_code(self.db, organization_id=self.org.id), 'G10001')

    def test_collision_is_retried_with_a_fresh_code(self) -> None:
        self._assignment('G0001')
        candidates = iter(['G0001', 'G0002'])
        user = self.f.user()

        created = insert_with_reference_code(
            self.db,
            build=lambda code: GuestAssignment(
                event_id=self.event.id,
                organization_id=self.org.id,
                table_id=self.table.id,
                user_id=user.id,
                order_id=self.order.id,
                tier=ProductTier.STANDARD,
                reference_code=code,
            ),
            next_code=lambda: next(candidates),
        )

        self.assertEqual(created.reference_code, 'G0002')

    def test_exhaustion_after_max_attempts(self) -> None:
        self._assignment('G0001')
        user = self.f.user()
        attempts = []

        def _next_code() -> str:
            attempts.append(1)
            return 'G0001'

        with self.assertRaises(ReferenceCodeExhaustedError):
            insert_with_reference_code(
                self.db,
                build=lambda code: GuestAssignment(
                    event_id=self.event.id,
                    organization_id=self.org.id,
                    table_id=self.table.id,
                    user_id=user.id,
                    order_id=self.order.id,
                    tier=ProductTier.STANDARD,
                    reference_code=code,
                ),
                next_code=_next_code,
                max_attempts=3,
            )
        self.assertEqual(len(attempts), 3)
        # The surrounding transaction survives the failed savepoints.
        self.assertEqual(next_guest_reference_code(self.db, organization_id=self.org.id), 'G0002')

    def test_other_constraint_violations_use_conflict_hook(self) -> None:
        guest = self.f.user()
        self._assignment('G0001', user=guest)

        with self.assertRaisesRegex(ConflictError, 'already seated'):
            insert_with_reference_code(
                self.db,
                build=lambda code: GuestAssignment(
                    event_id=self.event.id,
                    organization_id=self.org.id,
                    table_id=self.table.id,
                    user_id=guest.id,
                    order_id=self.order.id,
                    tier=ProductTier.STANDARD,
                    reference_code=code,
                ),
                next_code=lambda: 'G0002',
                on_conflict=lambda _exc: ConflictError('already seated'),
            )


if __name__ == '__main__':
    unittest.main()
