"""Order email notifications.

Emails are fire-and-forget: they are queued with ``transaction.on_commit`` so
they only go out once the state they describe is committed, and a failing
mail server is logged rather than raised.
"""
from django.core.mail import send_mail
from django.db import transaction
from django.utils.html import escape, strip_tags
import structlog

from .models import ShippingStatus

logger = structlog.get_logger(__name__)


class Notifier:
    def __init__(self, config):
        self.from_email = config.from_email

    def send_email(self, to, subject, html_body):
        if not to:
            return False
        try:
            send_mail(
                subject=subject,
                message=strip_tags(html_body),
                from_email=self.from_email,
                recipient_list=[to],
                html_message=html_body,
                fail_silently=False,
            )
        except Exception as e:
            logger.warning('notification_failed', to=to, subject=subject, error=str(e))
            return False
        logger.info('notification_sent', to=to, subject=subject)
        return True

    def send_after_commit(self, to, subject, html_body):
        transaction.on_commit(lambda: self.send_email(to, subject, html_body))

    def order_confirmed(self, order):
        self.send_after_commit(
            order.customer_email,
            f"Your Order #{order.order_number} Confirmation",
            _order_confirmation_html(order),
        )

    def order_status_changed(self, order, previous_status):
        if order.shipping_status == ShippingStatus.SHIPPED:
            subject = f"Your Order #{order.order_number} Has Shipped!"
        elif order.shipping_status == ShippingStatus.DELIVERED:
            subject = f"Your Order #{order.order_number} Has Been Delivered!"
        else:
            subject = f"Order #{order.order_number} Status Update: {order.get_shipping_status_display()}"
        body = (
            f"<p>Dear {escape(order.shipping_name)},</p>"
            f"<p>The status of order <strong>#{escape(order.order_number)}</strong> changed from "
            f"{escape(ShippingStatus(previous_status).label)} to "
            f"<strong>{escape(order.get_shipping_status_display())}</strong>.</p>"
        )
        self.send_after_commit(order.customer_email, subject, body)

    def order_cancelled(self, order, reason=None):
        body = f"<p>Order <strong>#{escape(order.order_number)}</strong> has been cancelled.</p>"
        if reason:
            body += f"<p>Reason: {escape(reason)}</p>"
        self.send_after_commit(order.customer_email, f"Order #{order.order_number} Cancelled", body)

    def payment_received(self, order, payment):
        body = (
            f"<p>We received your payment of {escape(str(payment.amount))} {escape(order.currency)} "
            f"for order <strong>#{escape(order.order_number)}</strong>.</p>"
            f"<p>Transaction: {escape(payment.transaction_id)}</p>"
        )
        self.send_after_commit(order.customer_email, f"Payment Received for Order #{order.order_number}", body)

    def payment_refunded(self, order, payment):
        body = (
            f"<p>Your payment {escape(payment.transaction_id)} for order "
            f"<strong>#{escape(order.order_number)}</strong> has been refunded.</p>"
        )
        self.send_after_commit(order.customer_email, f"Refund for Order #{order.order_number}", body)


def _order_confirmation_html(order):
    rows = "".join(
        f"<tr><td>{escape(item.product_name)}</td><td>{item.quantity}</td>"
        f"<td>{item.unit_price}</td><td>{item.total_price}</td></tr>"
        for item in order.items.all()
    )
    return (
        f"<h2>Order #{escape(order.order_number)}</h2>"
        f"<p>Dear {escape(order.shipping_name)}, thank you for your order.</p>"
        f"<table><tr><th>Product</th><th>Qty</th><th>Unit</th><th>Total</th></tr>{rows}</table>"
        f"<p>Subtotal: {order.subtotal}<br>Tax: {order.tax_amount}<br>"
        f"Shipping: {order.shipping_amount}<br>Discount: {order.discount_amount}<br>"
        f"<strong>Total: {order.total_amount} {escape(order.currency)}</strong></p>"
    )
