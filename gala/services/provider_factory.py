from __future__ import annotations

from functools import lru_cache

from gala.config import settings
from gala.services.mock_payment_provider import MockPaymentProvider
from gala.services.stripe_payment_provider import StripePaymentProvider


@lru_cache(maxsize=1)
def get_payment_provider():
    provider = settings.payment_provider.strip().lower()
    if provider == 'stripe':
        return StripePaymentProvider()
    return MockPaymentProvider()
