"""Gateway webhook handling.

Events are delivered at least once and possibly concurrently. Correlation is
exact: an event is matched to the payment whose ``gateway_transaction_id``
equals the checkout session id, and the transition itself is applied by the
payment ledger under a row lock. An event that matches no payment is recorded
as unresolved and answered with a retryable 404; it is never attached to a
guessed payment.
"""
from dataclasses import dataclass

import structlog
from django.utils import timezone

from .exceptions import MalformedPayload, PaymentNotCorrelated, Unauthorized
from .models import WebhookEvent, WebhookOutcome
from .payments import PaymentLedger

logger = structlog.get_logger(__name__)

SESSION_COMPLETED = 'checkout.session.completed'
SESSION_EXPIRED = 'checkout.session.expired'


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    outcome: WebhookOutcome
    payment_id: int | None = None


def _payment_intent(session):
    payment_intent = session.get('payment_intent')
    if isinstance(payment_intent, dict):
        return payment_intent.get('id')
    return payment_intent


class WebhookReconciler:
    def __init__(self, config, gateway, ledger=None, notifier=None):
        self.config = config
        self.gateway = gateway
        self.ledger = ledger or PaymentLedger(config, gateway, notifier)

    def handle_event(self, raw_payload, signature):
        try:
            verified = self.gateway.verify_webhook_signature(
                raw_payload, signature, self.config.webhook_secret
            )
        except UnicodeDecodeError as e:
            raise MalformedPayload('Webhook payload is not valid UTF-8.') from e
        if not verified:
            logger.warning('webhook_signature_invalid', has_signature=bool(signature))
            raise Unauthorized('Invalid webhook signature.')

        try:
            event = self.gateway.parse_webhook_event(raw_payload)
        except ValueError as e:
            raise MalformedPayload(f"Could not parse webhook payload: {e}") from e

        log = logger.bind(event_id=event.id, event_type=event.type)

        if event.type not in (SESSION_COMPLETED, SESSION_EXPIRED):
            log.debug('webhook_ignored')
            return self._record(event, WebhookOutcome.IGNORED)

        session_id = event.object_id
        if not session_id:
            raise MalformedPayload('Checkout session event has no session id.')

        if event.type == SESSION_COMPLETED:
            payment, changed = self.ledger.complete_checkout(session_id, _payment_intent(event.data))
        else:
            payment, changed = self.ledger.expire_checkout(session_id)

        if payment is None:
            self._record(event, WebhookOutcome.UNRESOLVED)
            log.error(
                'webhook_payment_not_correlated',
                session_id=session_id,
                metadata=event.data.get('metadata') or {},
            )
            raise PaymentNotCorrelated(f"No payment found for checkout session {session_id}.")

        outcome = WebhookOutcome.PROCESSED if changed else WebhookOutcome.DUPLICATE
        log.info('webhook_handled', session_id=session_id, payment_id=payment.pk, outcome=outcome.value)
        return self._record(event, outcome, payment)

    def _record(self, event, outcome, payment=None):
        now = timezone.now()
        WebhookEvent.objects.create(
            event_id=event.id,
            event_type=event.type,
            gateway_object_id=event.object_id or '',
            outcome=outcome,
            payload=event.data,
            resolved_at=now if outcome != WebhookOutcome.UNRESOLVED else None,
        )
        if payment is not None and event.object_id:
            # a retried delivery succeeded; close the earlier misses
            WebhookEvent.objects.filter(
                gateway_object_id=event.object_id,
                outcome=WebhookOutcome.UNRESOLVED,
                resolved_at__isnull=True,
            ).update(resolved_at=now)
        return WebhookResult(
            event_id=event.id,
            event_type=event.type,
            outcome=outcome,
            payment_id=payment.pk if payment is not None else None,
        )
