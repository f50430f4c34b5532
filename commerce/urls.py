from django.urls import path
from . import views

urlpatterns = [
    path('orders', views.orders_collection),
    path('orders/<int:order_id>', views.order_detail),
    path('orders/<int:order_id>/cancel', views.cancel_order),
    path('orders/<int:order_id>/status', views.update_order_status),
    path('order-items/<int:item_id>', views.update_order_item),
    path('payments', views.create_payment),
    path('payments/checkout-session', views.create_checkout_session),
    path('payments/refund', views.refund_payment),
    path('payments/history', views.payment_history),
    path('payments/order/<int:order_id>', views.order_payments),
    path('payments/<int:payment_id>', views.delete_payment),
    path('payments/webhook', views.payment_webhook),
    path('order-status', views.get_order_status),
]
