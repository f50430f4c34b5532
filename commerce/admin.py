from django.contrib import admin
from .models import Order, OrderItem, Payment, PaymentMethod, Product, Variant, WebhookEvent


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'variant', 'product_name', 'product_sku', 'quantity', 'unit_price', 'total_price']
    can_delete = False


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ['transaction_id', 'amount', 'status', 'gateway', 'gateway_transaction_id', 'processed_at']
    readonly_fields = fields
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'customer_email', 'shipping_status', 'payment_status', 'total_amount', 'created_at']
    list_filter = ['shipping_status', 'payment_status', 'created_at']
    search_fields = ['order_number', 'customer_email', 'shipping_last_name']
    readonly_fields = ['order_number', 'subtotal', 'total_amount', 'created_at', 'updated_at']
    inlines = [OrderItemInline, PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['transaction_id', 'order', 'amount', 'status', 'gateway', 'created_at', 'processed_at']
    list_filter = ['status', 'gateway']
    search_fields = ['transaction_id', 'gateway_transaction_id', 'gateway_payment_id', 'order__order_number']


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ['event_id', 'event_type', 'gateway_object_id', 'outcome', 'received_at', 'resolved_at']
    list_filter = ['outcome', 'event_type']
    search_fields = ['event_id', 'gateway_object_id']


class VariantInline(admin.TabularInline):
    model = Variant
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'price', 'stock_quantity', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'sku']
    inlines = [VariantInline]


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'sort_order']
