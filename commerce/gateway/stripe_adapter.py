"""Stripe payment gateway adapter.

Wraps the stripe-python SDK behind the PaymentGateway port. The API key is
passed on every request instead of being set on the ``stripe`` module, so
several adapters (for example test and live keys) can coexist.
"""
import json

import stripe
import structlog

from .port import (
    CheckoutSession,
    GatewayCustomer,
    GatewayEvent,
    PaymentGateway,
    PaymentGatewayError,
    RefundResult,
)

logger = structlog.get_logger(__name__)

REFUND_REASONS = {'duplicate', 'fraudulent', 'requested_by_customer'}


def _to_session(session):
    payment_intent = session.get('payment_intent')
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get('id')
    return CheckoutSession(
        id=session.get('id'),
        url=session.get('url'),
        status=session.get('status'),
        payment_status=session.get('payment_status'),
        payment_intent=payment_intent,
        metadata=dict(session.get('metadata') or {}),
    )


class StripeGateway(PaymentGateway):
    name = 'Stripe'

    def __init__(self, api_key, webhook_tolerance=300):
        self.api_key = api_key
        self.webhook_tolerance = webhook_tolerance

    def find_customer(self, email):
        try:
            customers = stripe.Customer.list(email=email, limit=1, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error('stripe_customer_lookup_failed', email=email, error=str(e))
            raise PaymentGatewayError(f"Failed to look up customer: {e}") from e
        if not customers.data:
            return None
        customer = customers.data[0]
        return GatewayCustomer(id=customer.id, email=customer.get('email') or email, name=customer.get('name'))

    def create_customer(self, email, name=None):
        try:
            customer = stripe.Customer.create(email=email, name=name or None, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error('stripe_customer_create_failed', email=email, error=str(e))
            raise PaymentGatewayError(f"Failed to create customer: {e}") from e
        return GatewayCustomer(id=customer.id, email=email, name=name)

    def create_checkout_session(self, customer_id, line_items, success_url, cancel_url, metadata):
        stripe_line_items = []
        for item in line_items:
            stripe_line_items.append({
                'price_data': {
                    'currency': item.currency.lower(),
                    'product_data': {
                        'name': item.name,
                        'metadata': {k: str(v) for k, v in item.metadata.items()},
                    },
                    'unit_amount': item.unit_amount,
                },
                'quantity': item.quantity,
            })

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=['card'],
                line_items=stripe_line_items,
                mode='payment',
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={k: str(v) for k, v in metadata.items()},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error('stripe_checkout_session_failed', customer_id=customer_id, error=str(e))
            raise PaymentGatewayError(f"Failed to create checkout session: {e}") from e
        return _to_session(session)

    def retrieve_checkout_session(self, session_id):
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error('stripe_checkout_session_retrieve_failed', session_id=session_id, error=str(e))
            raise PaymentGatewayError(f"Failed to retrieve checkout session: {e}") from e
        return _to_session(session)

    def create_refund(self, gateway_payment_id, amount=None, reason=None, idempotency_key=None):
        params = {
            'payment_intent': gateway_payment_id,
            'reason': reason if reason in REFUND_REASONS else 'requested_by_customer',
            'api_key': self.api_key,
        }
        if amount is not None:
            params['amount'] = amount
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.error('stripe_refund_failed', payment_intent=gateway_payment_id, error=str(e))
            raise PaymentGatewayError(f"Failed to create refund: {e}") from e
        return RefundResult(id=refund.id, status=refund.get('status') or 'pending', amount=refund.get('amount'))

    def verify_webhook_signature(self, payload, signature, secret):
        if not signature or not secret:
            return False
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        try:
            stripe.WebhookSignature.verify_header(payload, signature, secret, self.webhook_tolerance)
        except stripe.SignatureVerificationError:
            return False
        return True

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
