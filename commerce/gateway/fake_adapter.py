"""In-process payment gateway for development and testing.

Keeps customers, sessions and refunds in memory and records every call.
Webhook signatures are HMAC-SHA256 over ``"<timestamp>.<payload>"`` in the
same ``t=...,v1=...`` header format Stripe uses, so signed test payloads look
like the real thing.
"""
import hashlib
import hmac
import json
import time
from uuid import uuid4

from .port import (
    CheckoutSession,
    GatewayCustomer,
    GatewayEvent,
    PaymentGateway,
    PaymentGatewayError,
    RefundResult,
)


def sign_payload(payload, secret, timestamp=None):
    """Build a signature header for ``payload`` (useful in tests)."""
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8')
    timestamp = int(timestamp if timestamp is not None else time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeGateway(PaymentGateway):
    name = 'Fake'

    def __init__(self):
        self.should_succeed = True
        self.failure_reason = 'Card declined'
        self.customers = {}
        self.sessions = {}
        self.refunds = {}
        self.calls = []

    def configure(self, should_succeed, failure_reason='Card declined'):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def _record(self, method, **kwargs):
        self.calls.append({'method': method, **kwargs})

    def _fail_if_configured(self):
        if not self.should_succeed:
            raise PaymentGatewayError(self.failure_reason)

    def calls_to(self, method):
        return [c for c in self.calls if c['method'] == method]

    def find_customer(self, email):
        self._record('find_customer', email=email)
        return self.customers.get(email)

    def create_customer(self, email, name=None):
        self._record('create_customer', email=email, name=name)
        self._fail_if_configured()
        customer = GatewayCustomer(id=f"cus_fake_{uuid4().hex[:12]}", email=email, name=name)
        self.customers[email] = customer
        return customer

    def create_checkout_session(self, customer_id, line_items, success_url, cancel_url, metadata):
        self._record(
            'create_checkout_session',
            customer_id=customer_id,
            line_items=list(line_items),
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=dict(metadata),
        )
        self._fail_if_configured()
        session_id = f"cs_fake_{uuid4().hex[:16]}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.fake.test/pay/{session_id}",
            status='open',
            payment_status='unpaid',
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        return session

    def complete_session(self, session_id, payment_intent=None):
        """Simulate the customer paying on the hosted page."""
        session = self.sessions[session_id]
        completed = CheckoutSession(
            id=session.id,
            url=session.url,
            status='complete',
            payment_status='paid',
            payment_intent=payment_intent or f"pi_fake_{uuid4().hex[:12]}",
            metadata=session.metadata,
        )
        self.sessions[session_id] = completed
        return completed

    def expire_session(self, session_id):
        session = self.sessions[session_id]
        expired = CheckoutSession(
            id=session.id, url=None, status='expired', payment_status='unpaid', metadata=session.metadata
        )
        self.sessions[session_id] = expired
        return expired

    def retrieve_checkout_session(self, session_id):
        self._record('retrieve_checkout_session', session_id=session_id)
        self._fail_if_configured()
        try:
            return self.sessions[session_id]
        except KeyError:
            raise PaymentGatewayError(f"No such checkout session: {session_id}") from None

    def create_refund(self, gateway_payment_id, amount=None, reason=None, idempotency_key=None):
        self._record(
            'create_refund',
            gateway_payment_id=gateway_payment_id,
            amount=amount,
            reason=reason,
            idempotency_key=idempotency_key,
        )
        self._fail_if_configured()
        # same key, same refund: mirrors gateway idempotency
        if idempotency_key and idempotency_key in self.refunds:
            return self.refunds[idempotency_key]
        refund = RefundResult(id=f"re_fake_{uuid4().hex[:12]}", status='succeeded', amount=amount)
        self.refunds[idempotency_key or refund.id] = refund
        return refund

    def verify_webhook_signature(self, payload, signature, secret):
        if not signature or not secret:
            return False
        try:
            parts = dict(part.split('=', 1) for part in signature.split(','))
            timestamp = int(parts['t'])
        except (KeyError, ValueError):
            return False
        expected = sign_payload(payload, secret, timestamp)
        return hmac.compare_digest(expected, signature)

    def parse_webhook_event(self, payload):
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        event = json.loads(payload)
        try:
            event_id, event_type, data = event['id'], event['type'], event['data']['object']
        except (KeyError, TypeError) as e:
            raise ValueError(f"Webhook payload is missing {e}") from e
        if not isinstance(data, dict):
            raise ValueError('Webhook event object must be a JSON object.')
        return GatewayEvent(id=event_id, type=event_type, data=data)
