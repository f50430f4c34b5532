import json
import time

import pytest

from commerce.config import CommerceSettings
from commerce.gateway import FakeGateway, StripeGateway, build_gateway
from commerce.gateway.fake_adapter import sign_payload
from commerce.gateway.port import LineItem, PaymentGatewayError

SECRET = 'whsec_gateway_test'
PAYLOAD = json.dumps({
    'id': 'evt_1',
    'type': 'checkout.session.completed',
    'data': {'object': {'id': 'cs_1', 'payment_intent': 'pi_1'}},
})


def test_build_gateway():
    assert isinstance(build_gateway(CommerceSettings(gateway='fake')), FakeGateway)
    stripe_gateway = build_gateway(CommerceSettings(gateway='stripe', stripe_secret_key='sk_test_x'))
    assert isinstance(stripe_gateway, StripeGateway)
    assert stripe_gateway.api_key == 'sk_test_x'
    with pytest.raises(ValueError):
        build_gateway(CommerceSettings(gateway='paypal'))


class TestStripeSignatures:
    """Signatures produced by sign_payload are accepted by the stripe SDK."""

    def test_valid(self):
        assert StripeGateway('sk_test').verify_webhook_signature(PAYLOAD, sign_payload(PAYLOAD, SECRET), SECRET)

    def test_valid_bytes(self):
        body = PAYLOAD.encode()
        assert StripeGateway('sk_test').verify_webhook_signature(body, sign_payload(body, SECRET), SECRET)

    def test_wrong_secret(self):
        signature = sign_payload(PAYLOAD, 'whsec_other')
        assert not StripeGateway('sk_test').verify_webhook_signature(PAYLOAD, signature, SECRET)

    def test_tampered_payload(self):
        signature = sign_payload(PAYLOAD, SECRET)
        assert not StripeGateway('sk_test').verify_webhook_signature(PAYLOAD + ' ', signature, SECRET)

    def test_stale_timestamp(self):
        signature = sign_payload(PAYLOAD, SECRET, timestamp=int(time.time()) - 3600)
        assert not StripeGateway('sk_test', webhook_tolerance=300).verify_webhook_signature(PAYLOAD, signature, SECRET)

    def test_missing_header_or_secret(self):
        assert not StripeGateway('sk_test').verify_webhook_signature(PAYLOAD, None, SECRET)
        assert not StripeGateway('sk_test').verify_webhook_signature(PAYLOAD, sign_payload(PAYLOAD, SECRET), '')


@pytest.mark.parametrize('gateway', [StripeGateway('sk_test'), FakeGateway()])
def test_parse_event(gateway):
    event = gateway.parse_webhook_event(PAYLOAD.encode())
    assert event.id == 'evt_1'
    assert event.type == 'checkout.session.completed'
    assert event.object_id == 'cs_1'


@pytest.mark.parametrize('gateway', [StripeGateway('sk_test'), FakeGateway()])
@pytest.mark.parametrize('payload', [
    'nope',
    '{}',
    '{"id": "evt", "type": "x", "data": []}',
    '{"id": "evt", "type": "x", "data": {"object": "cs_1"}}',
])
def test_parse_malformed(gateway, payload):
    with pytest.raises(ValueError):
        gateway.parse_webhook_event(payload)


class TestFakeGateway:
    def test_signature_roundtrip(self):
        fake = FakeGateway()
        assert fake.verify_webhook_signature(PAYLOAD, sign_payload(PAYLOAD, SECRET), SECRET)
        assert not fake.verify_webhook_signature(PAYLOAD, 'garbage', SECRET)

    def test_refund_idempotency(self):
        fake = FakeGateway()
        first = fake.create_refund('pi_1', idempotency_key='refund-TXN1')
        second = fake.create_refund('pi_1', idempotency_key='refund-TXN1')
        assert first == second
        assert fake.create_refund('pi_1', idempotency_key='refund-TXN2') != first

    def test_session_lifecycle(self):
        fake = FakeGateway()
        customer = fake.create_customer('ada@shop.test', 'Ada')
        session = fake.create_checkout_session(
            customer.id, [LineItem('Widget', 1000, 1, 'usd')], 'https://s', 'https://c', {'order_id': 1}
        )
        assert fake.retrieve_checkout_session(session.id).status == 'open'
        fake.complete_session(session.id, payment_intent='pi_9')
        completed = fake.retrieve_checkout_session(session.id)
        assert (completed.status, completed.payment_status, completed.payment_intent) == ('complete', 'paid', 'pi_9')

    def test_failure_mode(self):
        fake = FakeGateway()
        fake.configure(should_succeed=False, failure_reason='down')
        with pytest.raises(PaymentGatewayError, match='down'):
            fake.create_customer('ada@shop.test')
