from rest_framework import serializers

from .models import Order, OrderItem, Payment, PaymentStatus, ShippingStatus

REFUND_REASONS = ['duplicate', 'fraudulent', 'requested_by_customer']


# ----------------------------------------------------------------------
# Input
# ----------------------------------------------------------------------
class OrderItemIn(serializers.Serializer):
    product_id = serializers.IntegerField()
    variant_id = serializers.IntegerField(required=False, allow_null=True)
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)


class ShippingIn(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    address = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    zip_code = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100)
    phone = serializers.CharField(max_length=30, required=False, allow_blank=True, default='')
    email = serializers.EmailField(required=False, allow_blank=True, default='')


class OrderCreateIn(serializers.Serializer):
    items = OrderItemIn(many=True)
    shipping = ShippingIn()
    tax_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    shipping_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    discount_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_items(self, items):
        if not items:
            raise serializers.ValidationError("At least one item is required.")
        return items


class OrderCancelIn(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class OrderStatusIn(serializers.Serializer):
    shipping_status = serializers.ChoiceField(choices=ShippingStatus.choices, required=False)
    payment_status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide shipping_status and/or payment_status.")
        return attrs


class OrderItemQuantityIn(serializers.Serializer):
    quantity = serializers.IntegerField()


class CheckoutSessionIn(serializers.Serializer):
    order_id = serializers.IntegerField()
    customer_email = serializers.EmailField(required=False, allow_blank=True)


class PaymentCreateIn(serializers.Serializer):
    order_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    payment_method_id = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class RefundIn(serializers.Serializer):
    payment_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    reason = serializers.ChoiceField(choices=REFUND_REASONS, required=False)


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------
class OrderItemOut(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            'id', 'product_id', 'variant_id', 'product_name', 'product_sku',
            'quantity', 'unit_price', 'total_price',
        ]


class PaymentOut(serializers.ModelSerializer):
    payment_method = serializers.CharField(source='payment_method.name', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'transaction_id', 'order_id', 'amount', 'status', 'gateway',
            'gateway_transaction_id', 'payment_method', 'notes', 'created_at', 'processed_at',
        ]


class OrderOut(serializers.ModelSerializer):
    items = OrderItemOut(many=True, read_only=True)
    payments = PaymentOut(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'user_id', 'customer_email',
            'shipping_status', 'payment_status',
            'subtotal', 'tax_amount', 'shipping_amount', 'discount_amount', 'total_amount', 'currency',
            'shipping_first_name', 'shipping_last_name', 'shipping_address', 'shipping_city',
            'shipping_state', 'shipping_zip_code', 'shipping_country', 'shipping_phone',
            'notes', 'created_at', 'updated_at', 'shipped_at', 'delivered_at',
            'items', 'payments',
        ]


class PaymentHistoryOut(PaymentOut):
    order_number = serializers.CharField(source='order.order_number', read_only=True)

    class Meta(PaymentOut.Meta):
        fields = PaymentOut.Meta.fields + ['order_number']
