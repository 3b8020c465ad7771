from __future__ import annotations

import secrets

from gala.config import settings
from gala.services.payment_metadata import PaymentMetadata
from gala.services.payment_provider import PaymentIntent, ProviderEvent, parse_event, verify_signed_payload


class MockPaymentProvider:
    """In-process stand-in for local development; intents never leave the app."""

    def __init__(self, *, webhook_secret: str | None = None) -> None:
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        if not self.webhook_secret:
            raise ValueError('STRIPE_WEBHOOK_SECRET is required for the mock payment provider')
        self.created: list[tuple[PaymentIntent, int, PaymentMetadata]] = []

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: PaymentMetadata,
        receipt_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        intent_id = f'pi_mock_{secrets.token_hex(12)}'
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f'{intent_id}_secret_{secrets.token_hex(8)}',
            status='requires_payment_method',
        )
        self.created.append((intent, amount_cents, metadata))
        return intent

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> ProviderEvent:
        body = verify_signed_payload(
            payload,
            signature,
            secret=self.webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
        return parse_event(body)
