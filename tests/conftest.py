import json
from decimal import Decimal
from uuid import uuid4

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from commerce.config import CommerceSettings, load_settings
from commerce.gateway import FakeGateway, reset_gateway, set_gateway
from commerce.gateway.fake_adapter import sign_payload
from commerce.models import Product, Variant
from commerce.notifications import Notifier
from commerce.orders import OrderCharges, OrderLifecycleManager, OrderLine, ShippingInfo
from commerce.payments import PaymentLedger
from commerce.webhooks import WebhookReconciler

WEBHOOK_SECRET = 'whsec_test_secret'
API_KEY = 'test-api-key'
ZERO_DECIMAL = frozenset({'jpy', 'krw', 'vnd'})


@pytest.fixture(autouse=True)
def commerce_django_settings(settings):
    """Point the settings-driven wiring (views, commands) at the fake gateway."""
    settings.PAYMENT_GATEWAY = 'fake'
    settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.API_KEY = API_KEY
    settings.STRIPE_CURRENCY = 'usd'
    load_settings.cache_clear()
    reset_gateway()
    yield settings
    load_settings.cache_clear()
    reset_gateway()


@pytest.fixture
def commerce_settings():
    return CommerceSettings(
        gateway='fake',
        webhook_secret=WEBHOOK_SECRET,
        success_url='https://shop.test/success',
        cancel_url='https://shop.test/cancel',
        currency='usd',
        zero_decimal_currencies=ZERO_DECIMAL,
        api_key=API_KEY,
        from_email='orders@shop.test',
    )


@pytest.fixture
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture
def notifier(commerce_settings):
    return Notifier(commerce_settings)


@pytest.fixture
def manager(commerce_settings, notifier):
    return OrderLifecycleManager(commerce_settings, notifier=notifier)


@pytest.fixture
def ledger(commerce_settings, gateway, notifier):
    return PaymentLedger(commerce_settings, gateway, notifier=notifier)


@pytest.fixture
def reconciler(commerce_settings, gateway, ledger):
    return WebhookReconciler(commerce_settings, gateway, ledger=ledger)


@pytest.fixture
def widget(db):
    return Product.objects.create(name='Widget', sku='WID-1', price=Decimal('10.00'), stock_quantity=10)


@pytest.fixture
def gadget(db):
    return Product.objects.create(name='Gadget', sku='GAD-1', price=Decimal('25.00'), stock_quantity=4)


@pytest.fixture
def red_widget(widget):
    return Variant.objects.create(product=widget, sku='WID-1-RED', price=Decimal('12.50'), stock_quantity=5)


@pytest.fixture
def shipping():
    return ShippingInfo(
        first_name='Ada',
        last_name='Lovelace',
        address='12 Analytical Way',
        city='London',
        zip_code='N1 9GU',
        country='GB',
        email='ada@shop.test',
    )


@pytest.fixture
def order(manager, widget, gadget, shipping):
    """3 widgets and 1 gadget with tax and shipping: subtotal 55.00, total 63.50."""
    return manager.create_order(
        [OrderLine(product_id=widget.pk, quantity=3), OrderLine(product_id=gadget.pk, quantity=1)],
        shipping,
        owner_id='user-1',
        charges=OrderCharges(tax_amount=Decimal('3.50'), shipping_amount=Decimal('5.00')),
    )


@pytest.fixture
def checkout(ledger, order):
    return ledger.create_checkout_session(order.pk, 'ada@shop.test')


@pytest.fixture
def make_event():
    """Build a signed gateway webhook: returns (raw_body, signature_header)."""
    def _make(event_type, session, event_id=None, secret=WEBHOOK_SECRET):
        body = json.dumps({
            'id': event_id or f"evt_{uuid4().hex[:12]}",
            'type': event_type,
            'data': {'object': session},
        }).encode()
        return body, sign_payload(body, secret)
    return _make


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user('ada', 'ada@shop.test', 'pw')


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def key_client():
    client = APIClient()
    client.credentials(HTTP_X_API_KEY=API_KEY)
    return client
