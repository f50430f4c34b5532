"""Payment gateway factory.

``build_gateway(config)`` picks the adapter named in the commerce config:
- ``stripe``: StripeGateway (production)
- ``fake``: FakeGateway for development and tests

``get_gateway()`` returns the process-wide instance built from the loaded
config; ``set_gateway()`` / ``reset_gateway()`` swap it (useful in tests).
"""
from ..config import load_settings
from .fake_adapter import FakeGateway
from .port import PaymentGateway, PaymentGatewayError
from .stripe_adapter import StripeGateway

__all__ = [
    'FakeGateway',
    'PaymentGateway',
    'PaymentGatewayError',
    'StripeGateway',
    'build_gateway',
    'get_gateway',
    'reset_gateway',
    'set_gateway',
]

_current_gateway: PaymentGateway | None = None


def build_gateway(config) -> PaymentGateway:
    if config.gateway == 'fake':
        return FakeGateway()
    if config.gateway == 'stripe':
        return StripeGateway(api_key=config.stripe_secret_key, webhook_tolerance=config.webhook_tolerance)
    raise ValueError(f"Unknown payment gateway: {config.gateway}")


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = build_gateway(load_settings())
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
