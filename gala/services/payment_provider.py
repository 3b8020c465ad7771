from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Protocol

from gala.errors import ExternalDependencyError, ValidationFailedError
from gala.services.payment_metadata import PaymentMetadata


class PaymentProviderError(ExternalDependencyError):
    pass


class WebhookSignatureError(ValidationFailedError):
    pass


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    status: str | None = None


@dataclass(frozen=True)
class ProviderEvent:
    id: str
    type: str
    data_object: dict
    payload: dict = field(default_factory=dict)


class PaymentProvider(Protocol):
    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: PaymentMetadata,
        receipt_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent: ...

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> ProviderEvent: ...


def parse_event(payload: dict) -> ProviderEvent:
    event_id = payload.get('id')
    event_type = payload.get('type')
    if not event_id or not event_type:
        raise WebhookSignatureError('Webhook payload is missing id or type')
    data_object = (payload.get('data') or {}).get('object') or {}
    return ProviderEvent(id=event_id, type=event_type, data_object=data_object, payload=payload)


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp = None
    signatures = []
    for item in header.split(','):
        key, _, value = item.strip().partition('=')
        if key == 't':
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == 'v1' and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f'{timestamp}.'.encode('utf-8') + payload
    return hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f't={timestamp},v1={compute_signature(payload, secret, timestamp)}'


def verify_signed_payload(
    payload: bytes,
    signature: str | None,
    *,
    secret: str,
    tolerance_seconds: int,
    now: int | None = None,
) -> dict:
    """Check a Stripe-Signature header and return the decoded event body."""
    if not signature:
        raise WebhookSignatureError('Missing Stripe-Signature header')
    timestamp, candidates = _parse_signature_header(signature)
    if timestamp is None or not candidates:
        raise WebhookSignatureError('Malformed Stripe-Signature header')

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise WebhookSignatureError('Invalid webhook signature')

    current = int(time.time()) if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError('Webhook timestamp outside the tolerance window')

    try:
        return json.loads(payload.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookSignatureError('Webhook payload is not valid JSON') from exc
