"""Order lifecycle: creation, cancellation, deletion and status changes.

Each public operation that mutates state runs in exactly one
``transaction.atomic()`` block. Stock and totals helpers are called inside
that block, so any failure rolls back the order, its items and every stock
movement together.
"""
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

import structlog
from django.db import transaction
from django.utils import timezone

from . import relations
from .exceptions import Forbidden, InsufficientStock, InvalidTransition, NotFound, ValidationFailed
from .models import Order, OrderItem, PaymentStatus, Product, ShippingStatus, Variant
from .relations import ALL_ORDER_RELATIONS
from .stock import StockReconciler
from .totals import OrderTotalsCalculator
from .transitions import (
    NON_CANCELLABLE_SHIPPING_STATES,
    assert_payment_transition,
    assert_shipping_transition,
    can_transition_payment,
)

logger = structlog.get_logger(__name__)

EDITABLE_SHIPPING_STATES = {ShippingStatus.PENDING, ShippingStatus.PROCESSING}


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    variant_id: int | None = None
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class ShippingInfo:
    first_name: str
    last_name: str
    address: str
    city: str
    zip_code: str
    country: str
    state: str = ''
    phone: str = ''
    email: str = ''


@dataclass(frozen=True)
class OrderCharges:
    tax_amount: Decimal = Decimal('0.00')
    shipping_amount: Decimal = Decimal('0.00')
    discount_amount: Decimal = Decimal('0.00')
    notes: str = ''
    currency: str = 'USD'


@dataclass(frozen=True)
class _PricedLine:
    line: OrderLine
    product: Product
    variant: Variant | None
    unit_price: Decimal

    @property
    def total_price(self):
        return self.unit_price * self.line.quantity


def generate_order_number():
    return 'ORD' + uuid4().hex[:7].upper()


def check_owner(order, owner_id):
    if owner_id is not None and str(order.user_id) != str(owner_id):
        raise Forbidden('You can only access your own orders.')


def check_chargeable_total(order):
    if order.total_amount < 0:
        raise ValidationFailed(
            f"Discount exceeds the order value. Total would be {order.total_amount}."
        )


class OrderLifecycleManager:
    def __init__(self, config, stock=None, totals=None, notifier=None):
        self.config = config
        self.stock = stock or StockReconciler()
        self.totals = totals or OrderTotalsCalculator()
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_order(self, order_id, owner_id=None, include=ALL_ORDER_RELATIONS):
        order = relations.orders(*include).filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")
        check_owner(order, owner_id)
        return order

    def list_orders(self, owner_id=None, include=ALL_ORDER_RELATIONS):
        queryset = relations.orders(*include)
        if owner_id is not None:
            queryset = queryset.filter(user_id=str(owner_id))
        return list(queryset)

    def _lock_order(self, order_id):
        order = Order.objects.select_for_update().filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found.")
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def _price_lines(self, lines):
        """Validate every line against the catalog without mutating anything."""
        if not lines:
            raise ValidationFailed('At least one order item is required.')

        for line in lines:
            if line.quantity is None or line.quantity <= 0:
                raise ValidationFailed(
                    f"Invalid quantity for product {line.product_id}. Quantity must be greater than 0."
                )

        products = Product.objects.in_bulk({line.product_id for line in lines})
        variant_ids = {line.variant_id for line in lines if line.variant_id is not None}
        variants = Variant.objects.select_related('product').in_bulk(variant_ids) if variant_ids else {}

        priced = []
        demand = {}
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise NotFound(f"Product with ID {line.product_id} does not exist.")
            if not product.is_active:
                raise ValidationFailed(f"Product {product.name} is not available.")

            variant = None
            if line.variant_id is not None:
                variant = variants.get(line.variant_id)
                if variant is None:
                    raise NotFound(f"Variant with ID {line.variant_id} does not exist.")
                if variant.product_id != product.pk:
                    raise ValidationFailed(f"Variant {variant.sku} does not belong to product {product.name}.")
                unit_price = variant.effective_price
                if line.unit_price is not None and Decimal(line.unit_price) != unit_price:
                    raise ValidationFailed(
                        f"Unit price for variant {variant.sku} does not match. "
                        f"Expected: {unit_price}, Provided: {line.unit_price}."
                    )
                key, available, label = ('variant', variant.pk), variant.stock_quantity, f"variant {variant.sku}"
            else:
                unit_price = product.price
                if line.unit_price is not None and Decimal(line.unit_price) != unit_price:
                    raise ValidationFailed(
                        f"Unit price for product {product.name} does not match. "
                        f"Expected: {unit_price}, Provided: {line.unit_price}."
                    )
                key, available, label = ('product', product.pk), product.stock_quantity, f"product {product.name}"

            demand[key] = demand.get(key, 0) + line.quantity
            if demand[key] > available:
                raise InsufficientStock(
                    f"Insufficient stock for {label}. Available: {available}, Requested: {demand[key]}."
                )
            priced.append(_PricedLine(line=line, product=product, variant=variant, unit_price=unit_price))
        return priced

    def create_order(self, lines, shipping, owner_id, charges=None):
        charges = charges or OrderCharges(currency=self.config.currency.upper())
        priced = self._price_lines(lines)

        with transaction.atomic():
            order = Order.objects.create(
                order_number=self._unique_order_number(),
                user_id=str(owner_id),
                customer_email=shipping.email,
                tax_amount=charges.tax_amount,
                shipping_amount=charges.shipping_amount,
                discount_amount=charges.discount_amount,
                currency=charges.currency,
                notes=charges.notes,
                shipping_first_name=shipping.first_name,
                shipping_last_name=shipping.last_name,
                shipping_address=shipping.address,
                shipping_city=shipping.city,
                shipping_state=shipping.state,
                shipping_zip_code=shipping.zip_code,
                shipping_country=shipping.country,
                shipping_phone=shipping.phone,
            )

            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    product=p.product,
                    variant=p.variant,
                    quantity=p.line.quantity,
                    unit_price=p.unit_price,
                    total_price=p.total_price,
                    product_name=p.product.name,
                    product_sku=p.variant.sku if p.variant else p.product.sku,
                )
                for p in priced
            ])

            for p in priced:
                self.stock.deduct(p.product.pk, p.variant.pk if p.variant else None, p.line.quantity)

            self.totals.recalculate(order.pk)
            order = self.get_order(order.pk)
            check_chargeable_total(order)
            if self.notifier:
                self.notifier.order_confirmed(order)

        logger.info(
            'order_created',
            order_id=order.pk,
            order_number=order.order_number,
            user_id=order.user_id,
            total=str(order.total_amount),
        )
        return order

    def _unique_order_number(self):
        for _ in range(5):
            number = generate_order_number()
            if not Order.objects.filter(order_number=number).exists():
                return number
        raise RuntimeError('Could not allocate a unique order number.')

    # ------------------------------------------------------------------
    # Cancellation / deletion
    # ------------------------------------------------------------------
    def _cancel_locked(self, order, reason=None, update_payment=True):
        order.shipping_status = ShippingStatus.CANCELLED
        if update_payment and can_transition_payment(order.payment_status, PaymentStatus.CANCELLED):
            order.payment_status = PaymentStatus.CANCELLED
        order.append_note(f"Cancelled: {reason}" if reason else 'Cancelled')
        order.save(update_fields=['shipping_status', 'payment_status', 'notes', 'updated_at'])
        # compensating action: the deduction was committed with the order
        self.stock.restore(order.items.all())

    def cancel_order(self, order_id, reason=None, owner_id=None):
        with transaction.atomic():
            order = self._lock_order(order_id)
            check_owner(order, owner_id)

            if order.shipping_status in NON_CANCELLABLE_SHIPPING_STATES:
                raise InvalidTransition(
                    f"Cannot cancel order with status: {order.get_shipping_status_display()}."
                )

            self._cancel_locked(order, reason)
            if self.notifier:
                self.notifier.order_cancelled(order, reason)

        logger.info('order_cancelled', order_id=order.pk, reason=reason)
        return self.get_order(order.pk)

    def delete_order(self, order_id):
        with transaction.atomic():
            order = self._lock_order(order_id)
            # a cancelled order already gave its stock back
            if order.shipping_status != ShippingStatus.CANCELLED:
                self.stock.restore(order.items.all())
            order_number = order.order_number
            order.delete()

        logger.info('order_deleted', order_id=order_id, order_number=order_number)
        return True

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------
    def update_order_status(self, order_id, shipping_status=None, payment_status=None):
        with transaction.atomic():
            order = self._lock_order(order_id)
            previous_shipping = order.shipping_status

            new_shipping = None
            if shipping_status is not None and shipping_status != order.shipping_status:
                assert_shipping_transition(order.shipping_status, shipping_status)
                new_shipping = ShippingStatus(shipping_status)

            new_payment = None
            if payment_status is not None and payment_status != order.payment_status:
                assert_payment_transition(order.payment_status, payment_status)
                new_payment = PaymentStatus(payment_status)

            if new_payment is not None:
                order.payment_status = new_payment

            if new_shipping == ShippingStatus.CANCELLED:
                self._cancel_locked(order, 'status update', update_payment=new_payment is None)
            elif new_shipping is not None:
                order.shipping_status = new_shipping
                now = timezone.now()
                if new_shipping == ShippingStatus.SHIPPED:
                    order.shipped_at = now
                elif new_shipping == ShippingStatus.DELIVERED:
                    order.delivered_at = now

            if new_shipping is not None or new_payment is not None:
                order.save(update_fields=[
                    'shipping_status', 'payment_status', 'shipped_at', 'delivered_at', 'updated_at',
                ])

            if new_shipping is not None and self.notifier:
                self.notifier.order_status_changed(order, previous_shipping)

        logger.info(
            'order_status_updated',
            order_id=order.pk,
            shipping_status=order.shipping_status,
            payment_status=order.payment_status,
        )
        return self.get_order(order.pk)

    # ------------------------------------------------------------------
    # Line edits
    # ------------------------------------------------------------------
    def update_item_quantity(self, item_id, quantity):
        if quantity is None or quantity <= 0:
            raise ValidationFailed('Quantity must be greater than 0.')

        with transaction.atomic():
            item = OrderItem.objects.select_for_update().filter(pk=item_id).first()
            if item is None:
                raise NotFound(f"OrderItem with ID {item_id} not found.")
            order = self._lock_order(item.order_id)
            if order.shipping_status not in EDITABLE_SHIPPING_STATES:
                raise InvalidTransition(
                    f"Items cannot be changed once the order is {order.get_shipping_status_display()}."
                )

            delta = quantity - item.quantity
            self.stock.adjust_for_quantity_change(item.product_id, item.variant_id, delta)
            item.quantity = quantity
            item.total_price = item.unit_price * quantity
            item.save(update_fields=['quantity', 'total_price'])
            check_chargeable_total(self.totals.recalculate(order.pk))

        logger.info('order_item_quantity_updated', item_id=item.pk, order_id=order.pk, delta=delta)
        return item
