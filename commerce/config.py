"""Commerce configuration.

Built once from Django settings and handed to each service through its
constructor, so no service reads global settings or mutates module state
(such as ``stripe.api_key``) on its own.
"""
from dataclasses import dataclass, field
from functools import lru_cache

from django.conf import settings


@dataclass(frozen=True)
class CommerceSettings:
    gateway: str = 'stripe'
    stripe_secret_key: str = ''
    webhook_secret: str = ''
    webhook_tolerance: int = 300
    success_url: str = ''
    cancel_url: str = ''
    currency: str = 'usd'
    zero_decimal_currencies: frozenset = field(default_factory=frozenset)
    default_payment_method: str = 'Card'
    reconcile_after_minutes: int = 30
    api_key: str = ''
    from_email: str = ''

    @classmethod
    def from_django_settings(cls, django_settings=None):
        s = django_settings or settings
        return cls(
            gateway=getattr(s, 'PAYMENT_GATEWAY', 'stripe'),
            stripe_secret_key=getattr(s, 'STRIPE_SECRET_KEY', ''),
            webhook_secret=getattr(s, 'STRIPE_WEBHOOK_SECRET', ''),
            webhook_tolerance=getattr(s, 'STRIPE_WEBHOOK_TOLERANCE', 300),
            success_url=getattr(s, 'STRIPE_SUCCESS_URL', ''),
            cancel_url=getattr(s, 'STRIPE_CANCEL_URL', ''),
            currency=getattr(s, 'STRIPE_CURRENCY', 'usd').lower(),
            zero_decimal_currencies=frozenset(c.lower() for c in getattr(s, 'ZERO_DECIMAL_CURRENCIES', [])),
            reconcile_after_minutes=getattr(s, 'PAYMENT_RECONCILE_AFTER_MINUTES', 30),
            api_key=getattr(s, 'API_KEY', ''),
            from_email=getattr(s, 'DEFAULT_FROM_EMAIL', ''),
        )

    def is_zero_decimal(self, currency):
        return currency.lower() in self.zero_decimal_currencies


@lru_cache(maxsize=1)
def load_settings():
    return CommerceSettings.from_django_settings()
