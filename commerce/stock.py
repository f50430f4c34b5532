"""Stock reconciliation for products and variants.

Every change is a single conditional UPDATE built from an F() expression, so
two orders racing for the last unit of a SKU cannot both succeed: the second
UPDATE matches zero rows. Callers run these inside their own transaction.
"""
import structlog
from django.db.models import F

from .exceptions import InsufficientStock, NotFound, ValidationFailed
from .models import Product, Variant

logger = structlog.get_logger(__name__)


class StockReconciler:

    @staticmethod
    def _target(product_id, variant_id):
        if variant_id is not None:
            return Variant.objects.filter(pk=variant_id), 'Variant', variant_id
        return Product.objects.filter(pk=product_id), 'Product', product_id

    def deduct(self, product_id, variant_id, quantity):
        if quantity <= 0:
            raise ValidationFailed(f"Quantity to deduct must be positive, got {quantity}.")

        queryset, kind, target_id = self._target(product_id, variant_id)
        updated = queryset.filter(stock_quantity__gte=quantity).update(
            stock_quantity=F('stock_quantity') - quantity
        )
        if updated:
            logger.debug('stock_deducted', target=kind, target_id=target_id, quantity=quantity)
            return

        available = queryset.values_list('stock_quantity', flat=True).first()
        if available is None:
            raise NotFound(f"{kind} with ID {target_id} not found.")
        raise InsufficientStock(
            f"Insufficient stock for {kind.lower()} {target_id}. "
            f"Available: {available}, Requested: {quantity}."
        )

    def restore_quantity(self, product_id, variant_id, quantity):
        if quantity <= 0:
            return
        queryset, kind, target_id = self._target(product_id, variant_id)
        updated = queryset.update(stock_quantity=F('stock_quantity') + quantity)
        if not updated:
            # catalog row deleted since the order was placed; nothing to give back to
            logger.warning('stock_restore_skipped', target=kind, target_id=target_id, quantity=quantity)
        else:
            logger.debug('stock_restored', target=kind, target_id=target_id, quantity=quantity)

    def restore(self, items):
        """Give back the stock held by each order item."""
        for item in items:
            self.restore_quantity(item.product_id, item.variant_id, item.quantity)

    def adjust_for_quantity_change(self, product_id, variant_id, delta):
        if delta > 0:
            self.deduct(product_id, variant_id, delta)
        elif delta < 0:
            self.restore_quantity(product_id, variant_id, -delta)
