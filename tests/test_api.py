from __future__ import annotations

import json
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from starlette.concurrency import run_in_threadpool

from support_db import Factory, make_session

from gala.db import get_db
from gala.dependencies import get_provider
from gala.main import app
from gala.models import ProductKind, TableRole
from gala.security.sessions import create_web_session
from gala.services.mock_payment_provider import MockPaymentProvider
from gala.services.payment_provider import PaymentProviderError, build_signature_header
from gala.services.webhook_service import receive_webhook

SECRET = 'whsec_test'


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.f = Factory(self.db)
        self.org = self.f.organization()
        self.event = self.f.event(self.org)
        self.provider = MockPaymentProvider(webhook_secret=SECRET)

        def _get_db():
            try:
                yield self.db
            finally:
                self.db.rollback()

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_provider] = lambda: self.provider
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _auth(self, user) -> dict:
        token = create_web_session(self.db, user.id)
        self.db.commit()
        return {'Authorization': f'Bearer {token}'}


class CheckoutApiTests(ApiTestCase):
    def test_anonymous_buyer_gets_client_secret(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=25000)
        self.db.commit()

        response = self.client.post(
            '/api/checkout',
            json={
                'event_id': self.event.id,
                'product_id': product.id,
                'order_flow': 'individual',
                'quantity': 2,
                'buyer_info': {'email': 'Walkup@Example.org', 'first_name': 'Jo'},
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['requires_payment'])
        self.assertEqual(body['amount_cents'], 50000)
        self.assertTrue(body['client_secret'])

    def test_request_validation_uses_error_envelope(self) -> None:
        response = self.client.post('/api/checkout', json={'event_id': self.event.id, 'order_flow': 'full_table'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Validation failed')

    def test_business_rule_failure_returns_message(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, is_active=False)
        self.db.commit()

        response = self.client.post(
            '/api/checkout',
            json={
                'event_id': self.event.id,
                'product_id': product.id,
                'order_flow': 'individual',
                'buyer_info': {'email': 'a@example.org'},
            },
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Product is not available for purchase'})

    def test_provider_failure_is_reported_without_provider_detail(self) -> None:
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=25000)
        self.db.commit()
        failure = PaymentProviderError(
            'Stripe API error 401 on /v1/payment_intents: Invalid API Key provided: sk_live_****abcd'
        )

        with mock.patch.object(self.provider, 'create_payment_intent', side_effect=failure):
            response = self.client.post(
                '/api/checkout',
                json={
                    'event_id': self.event.id,
                    'product_id': product.id,
                    'order_flow': 'individual',
                    'buyer_info': {'email': 'a@example.org'},
                },
            )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {'error': 'Checkout failed'})
        self.assertNotIn('sk_live', response.text)


class WebhookApiTests(ApiTestCase):
    def _post(self, body: dict, signature: str | None = None):
        payload = json.dumps(body).encode('utf-8')
        headers = {'Content-Type': 'application/json'}
        headers['Stripe-Signature'] = signature or build_signature_header(payload, SECRET)
        return self.client.post('/api/webhooks/stripe', content=payload, headers=headers)

    def test_invalid_signature_is_rejected(self) -> None:
        response = self._post({'id': 'evt_1', 'type': 'payment_intent.succeeded'}, signature='t=1,v1=00')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Invalid webhook signature'})

    def test_ledger_work_runs_in_the_threadpool(self) -> None:
        with mock.patch('gala.routers.webhooks.run_in_threadpool', wraps=run_in_threadpool) as offload:
            response = self._post({'id': 'evt_2', 'type': 'charge.refunded', 'data': {'object': {'id': 'ch_1'}}})

        self.assertEqual(response.json(), {'received': True})
        self.assertIs(offload.call_args.args[0], receive_webhook)

    def test_paid_order_completes_and_is_visible_to_buyer(self) -> None:
        buyer = self.f.user('buyer@example.org')
        product = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET, price_cents=25000)
        headers = self._auth(buyer)

        checkout = self.client.post(
            '/api/checkout',
            json={'event_id': self.event.id, 'product_id': product.id, 'order_flow': 'individual'},
            headers=headers,
        ).json()
        intent, amount, metadata = self.provider.created[0]
        event = {
            'id': 'evt_1',
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': intent.id, 'amount_received': amount, 'metadata': metadata.to_stripe()}},
        }

        first = self._post(event)
        second = self._post(event)

        self.assertEqual(first.json(), {'received': True})
        self.assertEqual(second.json(), {'received': True, 'skipped': True})
        order = self.client.get(f'/api/orders/by-payment-intent/{checkout["payment_intent_id"]}', headers=headers)
        self.assertEqual(order.status_code, 200)
        self.assertEqual(order.json()['status'], 'COMPLETED')

        stranger = self.client.get(
            f'/api/orders/by-payment-intent/{intent.id}',
            headers=self._auth(self.f.user()),
        )
        self.assertEqual(stranger.status_code, 403)


class TableApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.owner = self.f.user('owner@example.org')
        ticket = self.f.product(self.event, ProductKind.INDIVIDUAL_TICKET)
        self.table = self.f.table(self.event, self.owner)
        self.f.order(self.event, self.owner, ticket, table=self.table, quantity=4)
        self.db.commit()

    def test_authentication_is_required(self) -> None:
        response = self.client.get(f'/api/tables/{self.table.slug}/guests')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'error': 'Authentication required'})

    def test_owner_adds_and_lists_guests(self) -> None:
        headers = self._auth(self.owner)

        created = self.client.post(
            f'/api/tables/{self.table.slug}/guests',
            json={'email': 'friend@example.org', 'first_name': 'Jamie'},
            headers=headers,
        )
        listing = self.client.get(f'/api/tables/{self.table.slug}/guests', headers=headers)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['display_name'], 'Jamie')
        self.assertEqual(listing.json()['stats']['placeholder_seats'], 3)
        self.assertEqual([guest['email'] for guest in listing.json()['guests']], ['friend@example.org'])

    def test_staff_is_forbidden_with_reason(self) -> None:
        staff = self.f.user()
        self.f.role(self.table, staff, TableRole.STAFF)

        response = self.client.post(
            f'/api/tables/{self.table.slug}/guests',
            json={'email': 'friend@example.org'},
            headers=self._auth(staff),
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'error': 'STAFF cannot add_guest'})

    def test_guest_update_rejects_unknown_fields(self) -> None:
        headers = self._auth(self.owner)
        guest_id = self.client.post(
            f'/api/tables/{self.table.slug}/guests',
            json={'email': 'friend@example.org'},
            headers=headers,
        ).json()['id']

        rejected = self.client.patch(f'/api/guests/{guest_id}', json={'user_id': 99}, headers=headers)
        accepted = self.client.patch(f'/api/guests/{guest_id}', json={'bidder_number': '17'}, headers=headers)

        self.assertEqual(rejected.status_code, 400)
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.json()['bidder_number'], '17')

    def test_stripe_event_log_requires_super_admin(self) -> None:
        response = self.client.get('/api/admin/stripe-events', headers=self._auth(self.owner))
        self.assertEqual(response.status_code, 403)

        admin = self.f.user(is_super_admin=True)
        allowed = self.client.get('/api/admin/stripe-events', headers=self._auth(admin))
        self.assertEqual(allowed.json(), {'events': []})

class TableRoleApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.owner = self.f.user('owner@example.org')
        self.table = self.f.table(self.event, self.owner)
        self.db.commit()

    def _roles_url(self) -> str:
        return f'/api/tables/{self.table.slug}/roles'

    def test_owner_manages_roles(self) -> None:
        headers = self._auth(self.owner)

        created = self.client.post(
            self._roles_url(),
            json={'role': 'CO_OWNER', 'email': 'partner@example.org', 'first_name': 'Ari'},
            headers=headers,
        )
        duplicate = self.client.post(
            self._roles_url(),
            json={'role': 'CO_OWNER', 'email': 'partner@example.org'},
            headers=headers,
        )
        listing = self.client.get(self._roles_url(), headers=headers)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['role'], 'CO_OWNER')
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json(), {'error': 'User already has this role on the table'})
        self.assertEqual(
            [(row['email'], row['role'], row['is_primary']) for row in listing.json()['roles']],
            [('owner@example.org', 'OWNER', True), ('partner@example.org', 'CO_OWNER', False)],
        )

        removed = self.client.request(
            'DELETE',
            self._roles_url(),
            json={'user_id': created.json()['user_id'], 'role': 'CO_OWNER'},
            headers=headers,
        )
        self.assertEqual(removed.json(), {'ok': True})
        self.assertEqual(len(self.client.get(self._roles_url(), headers=headers).json()['roles']), 1)

    def test_co_owner_cannot_manage_roles(self) -> None:
        co_owner = self.f.user()
        self.f.role(self.table, co_owner, TableRole.CO_OWNER)

        response = self.client.post(
            self._roles_url(),
            json={'role': 'STAFF', 'email': 'helper@example.org'},
            headers=self._auth(co_owner),
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'error': 'CO_OWNER cannot manage_roles'})

    def test_primary_owner_cannot_be_removed(self) -> None:
        response = self.client.request(
            'DELETE',
            self._roles_url(),
            json={'user_id': self.owner.id, 'role': 'OWNER'},
            headers=self._auth(self.owner),
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'The primary owner cannot be removed'})


class ActivityApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.owner = self.f.user('owner@example.org')
        self.table = self.f.table(self.event, self.owner)
        self.db.commit()
        self.client.post(
            f'/api/tables/{self.table.slug}/roles',
            json={'role': 'STAFF', 'email': 'helper@example.org'},
            headers=self._auth(self.owner),
        )

    def _activity_url(self) -> str:
        return f'/api/admin/organizations/{self.org.id}/activity'

    def test_org_admin_reads_filtered_activity(self) -> None:
        admin = self.f.user()
        self.f.org_admin(self.org, admin)

        response = self.client.get(
            self._activity_url(),
            params={'event_id': self.event.id, 'action': 'TABLE_ROLE_ADDED'},
            headers=self._auth(admin),
        )
        other_event = self.client.get(
            self._activity_url(),
            params={'event_id': self.event.id + 1000},
            headers=self._auth(admin),
        )

        self.assertEqual(response.status_code, 200)
        [row] = response.json()['activity']
        self.assertEqual(row['action'], 'TABLE_ROLE_ADDED')
        self.assertEqual(row['entity_id'], self.table.id)
        self.assertEqual(row['metadata']['email'], 'helper@example.org')
        self.assertEqual(other_event.json(), {'activity': []})

    def test_non_admin_is_forbidden(self) -> None:
        response = self.client.get(self._activity_url(), headers=self._auth(self.owner))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'error': 'Organization admin access required'})



if __name__ == '__main__':
    unittest.main()
