"""Payment ledger: checkout sessions, refunds and payment records.

Gateway calls never happen inside an open database transaction. Each
operation commits the local step it needs first, talks to the gateway, and
then finalizes in a fresh transaction with the payment row locked and its
state re-checked.
"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import structlog
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from . import relations
from .exceptions import GatewayError, InvalidTransition, NotFound, ValidationFailed
from .gateway import PaymentGatewayError
from .gateway.port import LineItem
from .models import Order, Payment, PaymentMethod, PaymentStatus, ShippingStatus
from .orders import check_owner
from .relations import OrderRelation, PaymentRelation
from .transitions import can_transition_payment, can_transition_shipping

logger = structlog.get_logger(__name__)

UNPAYABLE_SHIPPING_STATES = {ShippingStatus.CANCELLED, ShippingStatus.REFUNDED}
UNPAYABLE_PAYMENT_STATES = {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED, PaymentStatus.CANCELLED}
OPEN_PAYMENT_STATES = {PaymentStatus.PENDING, PaymentStatus.PROCESSING}
PAID_SESSION_STATES = {'paid', 'no_payment_required'}
ZERO = Decimal('0.00')
CENT = Decimal('0.01')


@dataclass(frozen=True)
class CheckoutResult:
    session_id: str
    redirect_url: str
    payment: Payment


def generate_transaction_id():
    return f"TXN{timezone.now():%Y%m%d%H%M%S}{uuid4().hex[:8].upper()}"


def next_refund_reference(payment):
    """``refund-<txn>`` for the first attempt, then ``refund-<txn>-2``, ``-3`` ..."""
    base = f"refund-{payment.transaction_id}"
    current = payment.refund_reference
    if not current:
        return base
    if current == base:
        return f"{base}-2"
    return f"{base}-{int(current.rsplit('-', 1)[1]) + 1}"


def to_minor_units(amount, currency, config):
    """Convert a decimal amount into the gateway's integer minor unit."""
    amount = Decimal(amount)
    if not config.is_zero_decimal(currency):
        amount = amount * 100
    return int(amount.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class PaymentLedger:
    def __init__(self, config, gateway, notifier=None):
        self.config = config
        self.gateway = gateway
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_payment(self, payment_id, owner_id=None):
        payment = relations.payments(
            PaymentRelation.ORDER, PaymentRelation.PAYMENT_METHOD
        ).filter(pk=payment_id).first()
        if payment is None:
            raise NotFound(f"Payment with ID {payment_id} not found.")
        check_owner(payment.order, owner_id)
        return payment

    def payments_for_order(self, order_id, owner_id=None):
        order = Order.objects.filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")
        check_owner(order, owner_id)
        return list(
            relations.payments(PaymentRelation.PAYMENT_METHOD).filter(order_id=order_id)
        )

    def payment_history(self, owner_id):
        """Every payment on the orders of ``owner_id``, newest first."""
        return list(
            relations.payments(PaymentRelation.ORDER, PaymentRelation.PAYMENT_METHOD)
            .filter(order__user_id=str(owner_id))
        )

    def total_paid(self, order_id):
        total = Payment.objects.filter(
            order_id=order_id, status=PaymentStatus.COMPLETED
        ).aggregate(total=Sum('amount'))['total']
        return (total or ZERO).quantize(CENT)

    def is_fully_paid(self, order_id):
        order = Order.objects.filter(pk=order_id).only('total_amount').first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")
        return self.total_paid(order_id) >= order.total_amount

    # ------------------------------------------------------------------
    # Manual payments
    # ------------------------------------------------------------------
    def _default_method(self):
        method, _ = PaymentMethod.objects.get_or_create(name=self.config.default_payment_method)
        return method

    def create_payment(self, order_id, amount, payment_method_id=None, notes=''):
        if amount is None or Decimal(amount) <= 0:
            raise ValidationFailed('Payment amount must be greater than 0.')

        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if order is None:
                raise NotFound(f"Order with ID {order_id} not found.")
            if order.shipping_status in UNPAYABLE_SHIPPING_STATES:
                raise InvalidTransition(
                    f"Cannot add a payment to an order with status: {order.get_shipping_status_display()}."
                )

            if payment_method_id is None:
                method = self._default_method()
            else:
                method = PaymentMethod.objects.filter(pk=payment_method_id, is_active=True).first()
                if method is None:
                    raise NotFound(f"Payment method with ID {payment_method_id} not found.")

            payment = Payment.objects.create(
                transaction_id=generate_transaction_id(),
                amount=amount,
                status=PaymentStatus.PENDING,
                gateway='',
                notes=notes or '',
                order=order,
                payment_method=method,
            )

        logger.info('payment_created', payment_id=payment.pk, order_id=order.pk, amount=str(payment.amount))
        return payment

    def delete_payment(self, payment_id):
        deleted, _ = Payment.objects.filter(pk=payment_id).delete()
        if not deleted:
            raise NotFound(f"Payment with ID {payment_id} not found.")
        logger.info('payment_deleted', payment_id=payment_id)
        return True

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def _line_items(self, order):
        currency = order.currency.lower()
        items = list(order.items.all())
        if not items:
            raise ValidationFailed(f"Order {order.order_number} has no items.")

        # gateway line items cannot be negative, so a discounted order is charged as one line
        if order.discount_amount > 0:
            return [LineItem(
                name=f"Order #{order.order_number}",
                unit_amount=to_minor_units(order.total_amount, currency, self.config),
                quantity=1,
                currency=currency,
                metadata={'order_id': order.pk},
            )]

        line_items = [
            LineItem(
                name=item.product_name,
                unit_amount=to_minor_units(item.unit_price, currency, self.config),
                quantity=item.quantity,
                currency=currency,
                metadata={'product_id': item.product_id, 'variant_id': item.variant_id or ''},
            )
            for item in items
        ]
        for label, amount in (('Tax', order.tax_amount), ('Shipping', order.shipping_amount)):
            if amount > 0:
                line_items.append(LineItem(
                    name=label,
                    unit_amount=to_minor_units(amount, currency, self.config),
                    quantity=1,
                    currency=currency,
                ))
        return line_items

    def _customer_for(self, email, name):
        customer = self.gateway.find_customer(email)
        if customer is None:
            customer = self.gateway.create_customer(email, name)
        return customer

    def create_checkout_session(self, order_id, customer_email, owner_id=None):
        order = relations.orders(OrderRelation.ITEMS).filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")
        check_owner(order, owner_id)

        if order.shipping_status in UNPAYABLE_SHIPPING_STATES or order.payment_status in UNPAYABLE_PAYMENT_STATES:
            raise InvalidTransition(
                f"Order {order.order_number} cannot be paid "
                f"({order.get_shipping_status_display()} / {order.get_payment_status_display()})."
            )
        if not customer_email:
            raise ValidationFailed('A customer email is required to start checkout.')
        if order.total_amount <= 0:
            raise ValidationFailed(
                f"Order {order.order_number} has a total of {order.total_amount} and cannot be charged."
            )

        line_items = self._line_items(order)
        transaction_id = generate_transaction_id()
        metadata = {
            'order_id': order.pk,
            'order_number': order.order_number,
            'transaction_id': transaction_id,
        }

        try:
            customer = self._customer_for(customer_email, order.shipping_name)
            session = self.gateway.create_checkout_session(
                customer_id=customer.id,
                line_items=line_items,
                success_url=self.config.success_url,
                cancel_url=self.config.cancel_url,
                metadata=metadata,
            )
        except PaymentGatewayError as e:
            logger.error('checkout_session_failed', order_id=order.pk, error=str(e))
            raise GatewayError(str(e)) from e

        with transaction.atomic():
            payment = Payment.objects.create(
                transaction_id=transaction_id,
                amount=order.total_amount,
                status=PaymentStatus.PENDING,
                gateway=self.gateway.name,
                gateway_transaction_id=session.id,
                notes=f"Checkout session {session.id} created",
                order=order,
                payment_method=self._default_method(),
            )
            update = {'updated_at': timezone.now()}
            if not order.customer_email:
                update['customer_email'] = customer_email
            # a new attempt after an expired session
            if order.payment_status == PaymentStatus.FAILED:
                update['payment_status'] = PaymentStatus.PENDING
            Order.objects.filter(pk=order.pk).update(**update)

        logger.info(
            'checkout_session_created',
            order_id=order.pk,
            payment_id=payment.pk,
            session_id=session.id,
            amount=str(payment.amount),
        )
        return CheckoutResult(session_id=session.id, redirect_url=session.url, payment=payment)

    # ------------------------------------------------------------------
    # Gateway-driven transitions (webhooks and reconciliation)
    # ------------------------------------------------------------------
    def complete_checkout(self, session_id, gateway_payment_id=None):
        """Mark the payment for ``session_id`` Completed.

        Returns ``(payment, changed)``; ``payment`` is None when no local
        payment carries that session id.
        """
        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(gateway_transaction_id=session_id).first()
            if payment is None:
                return None, False
            if payment.status not in OPEN_PAYMENT_STATES:
                if payment.status != PaymentStatus.COMPLETED:
                    logger.warning(
                        'payment_completion_ignored',
                        payment_id=payment.pk,
                        session_id=session_id,
                        status=payment.status,
                    )
                return payment, False

            payment.status = PaymentStatus.COMPLETED
            payment.processed_at = timezone.now()
            if gateway_payment_id:
                payment.gateway_payment_id = gateway_payment_id
            payment.append_note('Payment completed via checkout')
            payment.save(update_fields=['status', 'processed_at', 'gateway_payment_id', 'notes'])

            order = Order.objects.select_for_update().get(pk=payment.order_id)
            if can_transition_payment(order.payment_status, PaymentStatus.COMPLETED):
                order.payment_status = PaymentStatus.COMPLETED
                order.save(update_fields=['payment_status', 'updated_at'])
            elif order.payment_status != PaymentStatus.COMPLETED:
                # money arrived for an order that can no longer take it; needs a refund
                logger.warning(
                    'payment_completed_for_inactive_order',
                    order_id=order.pk,
                    payment_id=payment.pk,
                    order_payment_status=order.payment_status,
                )

            if self.notifier:
                self.notifier.payment_received(order, payment)

        logger.info('payment_completed', payment_id=payment.pk, order_id=payment.order_id, session_id=session_id)
        return payment, True

    def expire_checkout(self, session_id):
        """Mark a still-pending payment for ``session_id`` Failed."""
        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(gateway_transaction_id=session_id).first()
            if payment is None:
                return None, False
            if payment.status != PaymentStatus.PENDING:
                return payment, False

            payment.status = PaymentStatus.FAILED
            payment.processed_at = timezone.now()
            payment.append_note('Checkout session expired')
            payment.save(update_fields=['status', 'processed_at', 'notes'])

            order = Order.objects.select_for_update().get(pk=payment.order_id)
            others_open = order.payments.exclude(pk=payment.pk).filter(
                status__in=[PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.COMPLETED]
            ).exists()
            if order.payment_status == PaymentStatus.PENDING and not others_open:
                order.payment_status = PaymentStatus.FAILED
                order.save(update_fields=['payment_status', 'updated_at'])

        logger.info('payment_expired', payment_id=payment.pk, order_id=payment.order_id, session_id=session_id)
        return payment, True

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------
    def refund_payment(self, payment_id, amount=None, reason=None):
        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(pk=payment_id).first()
            if payment is None:
                raise NotFound(f"Payment with ID {payment_id} not found.")
            if payment.status != PaymentStatus.COMPLETED:
                raise InvalidTransition(
                    f"Can only refund completed payments (status: {payment.get_status_display()})."
                )
            if not payment.gateway_payment_id:
                raise ValidationFailed('No gateway payment reference found for this payment.')
            if amount is not None and not (Decimal('0') < Decimal(amount) <= payment.amount):
                raise ValidationFailed(f"Refund amount must be between 0 and {payment.amount}.")

            requested_amount = Decimal(amount) if amount is not None else None
            requested_reason = reason or ''
            same_request = (
                payment.refund_reference
                and payment.refund_amount == requested_amount
                and payment.refund_reason == requested_reason
            )
            # a retry of the same request keeps its key; a changed request is a new attempt
            if not same_request:
                if payment.refund_reference:
                    logger.warning(
                        'refund_request_changed',
                        payment_id=payment.pk,
                        previous_reference=payment.refund_reference,
                        previous_amount=str(payment.refund_amount),
                        amount=str(requested_amount),
                    )
                payment.refund_reference = next_refund_reference(payment)
                payment.refund_amount = requested_amount
                payment.refund_reason = requested_reason
                payment.save(update_fields=['refund_reference', 'refund_amount', 'refund_reason'])

        refund = self._issue_refund(payment)
        return self._finalize_refund(payment.pk, refund)

    def _issue_refund(self, payment):
        currency = payment.order.currency.lower()
        minor_amount = None
        if payment.refund_amount is not None:
            minor_amount = to_minor_units(payment.refund_amount, currency, self.config)
        try:
            return self.gateway.create_refund(
                payment.gateway_payment_id,
                amount=minor_amount,
                reason=payment.refund_reason or None,
                idempotency_key=payment.refund_reference,
            )
        except PaymentGatewayError as e:
            logger.error(
                'refund_failed',
                payment_id=payment.pk,
                refund_reference=payment.refund_reference,
                error=str(e),
            )
            raise GatewayError(str(e)) from e

    def _finalize_refund(self, payment_id, refund):
        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment_id)
            if payment.status == PaymentStatus.REFUNDED:
                return payment
            if not can_transition_payment(payment.status, PaymentStatus.REFUNDED):
                raise InvalidTransition(
                    f"Payment {payment.transaction_id} can no longer be refunded "
                    f"(status: {payment.get_status_display()})."
                )

            payment.status = PaymentStatus.REFUNDED
            payment.processed_at = timezone.now()
            payment.append_note(
                f"Refunded: {refund.id} - {payment.refund_reason or 'requested_by_customer'}"
            )
            payment.save(update_fields=['status', 'processed_at', 'notes'])

            order = Order.objects.select_for_update().get(pk=payment.order_id)
            if can_transition_payment(order.payment_status, PaymentStatus.REFUNDED):
                order.payment_status = PaymentStatus.REFUNDED
            # goods that have not left the warehouse will not ship
            if order.shipping_status in (ShippingStatus.PENDING, ShippingStatus.PROCESSING) and \
                    can_transition_shipping(order.shipping_status, ShippingStatus.REFUNDED):
                order.shipping_status = ShippingStatus.REFUNDED
            order.save(update_fields=['payment_status', 'shipping_status', 'updated_at'])

            if self.notifier:
                self.notifier.payment_refunded(order, payment)

        logger.info(
            'payment_refunded',
            payment_id=payment.pk,
            order_id=payment.order_id,
            refund_id=refund.id,
            refund_reference=payment.refund_reference,
        )
        return payment

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, older_than=None):
        """Settle payments whose gateway outcome never reached us.

        Pending checkout payments older than ``older_than`` are checked
        against the gateway session; completed payments with an unfinished
        refund are re-driven with their original idempotency key.
        """
        if older_than is None:
            older_than = timedelta(minutes=self.config.reconcile_after_minutes)
        cutoff = timezone.now() - older_than
        summary = {'completed': 0, 'expired': 0, 'refunded': 0, 'unchanged': 0, 'errors': 0}

        pending = Payment.objects.filter(
            status=PaymentStatus.PENDING,
            gateway_transaction_id__isnull=False,
            created_at__lt=cutoff,
        ).order_by('id')
        for payment in pending:
            try:
                session = self.gateway.retrieve_checkout_session(payment.gateway_transaction_id)
            except PaymentGatewayError as e:
                logger.error('reconcile_session_lookup_failed', payment_id=payment.pk, error=str(e))
                summary['errors'] += 1
                continue

            if session.status == 'complete' and session.payment_status in PAID_SESSION_STATES:
                _, changed = self.complete_checkout(session.id, session.payment_intent)
                summary['completed' if changed else 'unchanged'] += 1
            elif session.status == 'expired':
                _, changed = self.expire_checkout(session.id)
                summary['expired' if changed else 'unchanged'] += 1
            else:
                summary['unchanged'] += 1

        stalled_refunds = relations.payments(PaymentRelation.ORDER).filter(
            status=PaymentStatus.COMPLETED,
            refund_reference__isnull=False,
        ).order_by('id')
        for payment in stalled_refunds:
            try:
                refund = self._issue_refund(payment)
                self._finalize_refund(payment.pk, refund)
            except (GatewayError, InvalidTransition) as e:
                logger.error('reconcile_refund_failed', payment_id=payment.pk, error=str(e))
                summary['errors'] += 1
                continue
            summary['refunded'] += 1

        logger.info('payments_reconciled', **summary)
        return summary
