from __future__ import annotations

import json
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from gala.config import settings
from gala.services.payment_metadata import PaymentMetadata
from gala.services.payment_provider import (
    PaymentIntent,
    PaymentProviderError,
    ProviderEvent,
    parse_event,
    verify_signed_payload,
)


class StripePaymentProvider:
    api_base_url = 'https://api.stripe.com'
    timeout_seconds = 30

    def __init__(self, *, secret_key: str | None = None, webhook_secret: str | None = None) -> None:
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        if not self.secret_key:
            raise ValueError('STRIPE_SECRET_KEY is required when PAYMENT_PROVIDER=stripe')
        if not self.webhook_secret:
            raise ValueError('STRIPE_WEBHOOK_SECRET is required when PAYMENT_PROVIDER=stripe')

    def _post(self, path: str, form: dict[str, str], *, idempotency_key: str | None = None) -> dict:
        headers = {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/x-www-form-urlencoded',
        }
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key
        req = Request(
            url=f'{self.api_base_url}{path}',
            data=urlencode(form).encode('utf-8'),
            headers=headers,
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                return json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            message = body
            try:
                message = json.loads(body).get('error', {}).get('message') or body
            except ValueError:
                pass
            raise PaymentProviderError(f'Stripe API error {exc.code} on {path}: {message}') from exc
        except URLError as exc:
            raise PaymentProviderError(f'Stripe API network error on {path}: {exc.reason}') from exc

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: PaymentMetadata,
        receipt_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        form = {
            'amount': str(amount_cents),
            'currency': currency,
            'automatic_payment_methods[enabled]': 'true',
        }
        if receipt_email:
            form['receipt_email'] = receipt_email
        for key, value in metadata.to_stripe().items():
            form[f'metadata[{key}]'] = value

        parsed = self._post('/v1/payment_intents', form, idempotency_key=idempotency_key)
        if not parsed.get('id'):
            raise PaymentProviderError('Stripe did not return a payment intent id')
        return PaymentIntent(
            id=parsed['id'],
            client_secret=parsed.get('client_secret'),
            status=parsed.get('status'),
        )

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> ProviderEvent:
        body = verify_signed_payload(
            payload,
            signature,
            secret=self.webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
        return parse_event(body)
