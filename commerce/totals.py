from decimal import Decimal

import structlog
from django.db.models import Sum

from .exceptions import NotFound
from .models import Order, OrderItem

logger = structlog.get_logger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')


class OrderTotalsCalculator:
    """Derives an order's subtotal and total from its persisted items."""

    def recalculate(self, order_id):
        """Recompute and store the totals of ``order_id``.

        Items are summed in the database rather than from any loaded
        collection. The order is written only if a value actually changed, so
        repeated calls do not bump ``updated_at``.
        """
        order = Order.objects.filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")

        subtotal = OrderItem.objects.filter(order_id=order_id).aggregate(
            subtotal=Sum('total_price')
        )['subtotal'] or ZERO
        subtotal = subtotal.quantize(CENT)
        total = (subtotal + order.tax_amount + order.shipping_amount - order.discount_amount).quantize(CENT)

        if order.subtotal == subtotal and order.total_amount == total:
            return order

        order.subtotal = subtotal
        order.total_amount = total
        order.save(update_fields=['subtotal', 'total_amount', 'updated_at'])
        logger.debug('order_totals_recalculated', order_id=order.pk, subtotal=str(subtotal), total=str(total))
        return order
