from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class ShippingStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PROCESSING = 'processing', 'Processing'
    SHIPPED = 'shipped', 'Shipped'
    DELIVERED = 'delivered', 'Delivered'
    CANCELLED = 'cancelled', 'Cancelled'
    REFUNDED = 'refunded', 'Refunded'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PROCESSING = 'processing', 'Processing'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    REFUNDED = 'refunded', 'Refunded'
    CANCELLED = 'cancelled', 'Cancelled'


class WebhookOutcome(models.TextChoices):
    PROCESSED = 'processed', 'Processed'
    DUPLICATE = 'duplicate', 'Duplicate'
    IGNORED = 'ignored', 'Ignored'
    UNRESOLVED = 'unresolved', 'Unresolved'


class Product(models.Model):
    """Catalog product. Only the fields orders need are modelled here."""
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100, unique=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    stock_quantity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return f"{self.name} ({self.sku})"


class Variant(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')
    sku = models.CharField(max_length=100, unique=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    stock_quantity = models.PositiveIntegerField(default=0)

    @property
    def effective_price(self):
        return self.price if self.price is not None else self.product.price

    def __str__(self):
        return f"{self.product.name} / {self.sku}"


class Order(models.Model):
    order_number = models.CharField(max_length=10, unique=True)
    user_id = models.CharField(max_length=255, db_index=True)
    customer_email = models.EmailField(max_length=255, blank=True, default='')

    shipping_status = models.CharField(
        max_length=20, choices=ShippingStatus.choices, default=ShippingStatus.PENDING, db_index=True
    )
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )

    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    shipping_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3, default='USD')
    notes = models.TextField(blank=True, default='')

    shipping_first_name = models.CharField(max_length=100)
    shipping_last_name = models.CharField(max_length=100)
    shipping_address = models.CharField(max_length=255)
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100, blank=True, default='')
    shipping_zip_code = models.CharField(max_length=20)
    shipping_country = models.CharField(max_length=100)
    shipping_phone = models.CharField(max_length=50, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    shipped_at = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"Order {self.order_number} - {self.user_id} - {self.shipping_status}/{self.payment_status}"

    @property
    def shipping_name(self):
        return f"{self.shipping_first_name} {self.shipping_last_name}".strip()

    def append_note(self, note):
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    class Meta:
        ordering = ['-created_at', '-id']


class OrderItem(models.Model):
    """A line of an order. Prices and names are snapshots taken at creation."""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='order_items')
    variant = models.ForeignKey(
        Variant, on_delete=models.PROTECT, related_name='order_items', blank=True, null=True
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_price = models.DecimalField(max_digits=10, decimal_places=2)
    product_name = models.CharField(max_length=255)
    product_sku = models.CharField(max_length=100, blank=True, default='')

    def __str__(self):
        return f"{self.quantity}x {self.product_name} in {self.order.order_number}"

    class Meta:
        ordering = ['id']


class PaymentMethod(models.Model):
    name = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=255, blank=True, default='')
    is_active = models.BooleanField(default=True)
    sort_order = models.IntegerField(default=0)

    def __str__(self):
        return self.name

    class Meta:
        ordering = ['sort_order', 'name']


class Payment(models.Model):
    transaction_id = models.CharField(max_length=100, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    gateway = models.CharField(max_length=50, blank=True, default='')
    # Checkout session id; the key webhooks are correlated on.
    gateway_transaction_id = models.CharField(max_length=255, unique=True, blank=True, null=True)
    gateway_payment_id = models.CharField(max_length=255, blank=True, null=True)
    refund_reference = models.CharField(max_length=100, blank=True, null=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    refund_reason = models.CharField(max_length=50, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(blank=True, null=True)

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='payments')
    payment_method = models.ForeignKey(PaymentMethod, on_delete=models.PROTECT, related_name='payments')

    def __str__(self):
        return f"Payment {self.transaction_id} - {self.amount} - {self.status}"

    def append_note(self, note):
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    class Meta:
        ordering = ['-created_at', '-id']


class WebhookEvent(models.Model):
    event_id = models.CharField(max_length=255, db_index=True)
    event_type = models.CharField(max_length=100)
    gateway_object_id = models.CharField(max_length=255, blank=True, default='', db_index=True)
    outcome = models.CharField(max_length=20, choices=WebhookOutcome.choices, db_index=True)
    payload = models.JSONField(default=dict)
    received_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"{self.event_type} {self.event_id} - {self.outcome}"

    class Meta:
        ordering = ['-received_at', '-id']
