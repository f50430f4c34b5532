"""
Order and payment API views.

Customers act on their own orders through a session or basic-auth user.
Back-office calls (status changes, refunds, deletes) present the shared
X-API-KEY header and may act on any order. The gateway webhook is
authenticated by its signature only.
"""
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import services
from .authentication import HasApiKey, has_valid_api_key
from .exceptions import NotFound, ValidationFailed
from .models import Payment
from .orders import OrderCharges, OrderLine, ShippingInfo
from .serializers import (
    CheckoutSessionIn,
    OrderCancelIn,
    OrderCreateIn,
    OrderItemOut,
    OrderItemQuantityIn,
    OrderOut,
    OrderStatusIn,
    PaymentCreateIn,
    PaymentHistoryOut,
    PaymentOut,
    RefundIn,
)


def _owner_id(request):
    """None (any order) for API-key callers, otherwise the requesting user."""
    if has_valid_api_key(request):
        return None
    return request.user.pk


def _require_api_key(request):
    if not has_valid_api_key(request):
        raise PermissionDenied('Authentication failed')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated | HasApiKey])
def orders_collection(request):
    manager = services.order_manager()

    if request.method == 'GET':
        orders = manager.list_orders(owner_id=_owner_id(request))
        return Response(OrderOut(orders, many=True).data)

    if not request.user.is_authenticated:
        raise PermissionDenied('Orders are placed on behalf of a signed-in user.')

    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    shipping = dict(data['shipping'])
    if not shipping.get('email'):
        shipping['email'] = request.user.email or ''

    charges = OrderCharges(
        tax_amount=data.get('tax_amount', OrderCharges.tax_amount),
        shipping_amount=data.get('shipping_amount', OrderCharges.shipping_amount),
        discount_amount=data.get('discount_amount', OrderCharges.discount_amount),
        notes=data['notes'],
        currency=manager.config.currency.upper(),
    )
    order = manager.create_order(
        lines=[OrderLine(**item) for item in data['items']],
        shipping=ShippingInfo(**shipping),
        owner_id=request.user.pk,
        charges=charges,
    )
    headers = {'Location': f"/api/orders/{order.pk}"}
    return Response(OrderOut(order).data, status=status.HTTP_201_CREATED, headers=headers)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated | HasApiKey])
def order_detail(request, order_id):
    manager = services.order_manager()

    if request.method == 'DELETE':
        _require_api_key(request)
        manager.delete_order(order_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    order = manager.get_order(order_id, owner_id=_owner_id(request))
    return Response(OrderOut(order).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated | HasApiKey])
def cancel_order(request, order_id):
    ser = OrderCancelIn(data=request.data)
    ser.is_valid(raise_exception=True)

    order = services.order_manager().cancel_order(
        order_id,
        reason=ser.validated_data['reason'] or None,
        owner_id=_owner_id(request),
    )
    return Response(OrderOut(order).data)


@api_view(['PATCH'])
@permission_classes([HasApiKey])
def update_order_status(request, order_id):
    ser = OrderStatusIn(data=request.data)
    ser.is_valid(raise_exception=True)

    order = services.order_manager().update_order_status(order_id, **ser.validated_data)
    return Response(OrderOut(order).data)


@api_view(['PATCH'])
@permission_classes([HasApiKey])
def update_order_item(request, item_id):
    ser = OrderItemQuantityIn(data=request.data)
    ser.is_valid(raise_exception=True)

    item = services.order_manager().update_item_quantity(item_id, ser.validated_data['quantity'])
    return Response(OrderItemOut(item).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated | HasApiKey])
def create_checkout_session(request):
    """
    Start a hosted checkout for an existing order.

    Expected body: {"order_id": 1, "customer_email": "user@example.com"}.
    The email falls back to the order's, then to the signed-in user's.
    Returns the session id and the URL to redirect the customer to.
    """
    ser = CheckoutSessionIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    ledger = services.payment_ledger()
    owner_id = _owner_id(request)
    email = data.get('customer_email')
    if not email:
        order = services.order_manager().get_order(data['order_id'], owner_id=owner_id, include=())
        email = order.customer_email or getattr(request.user, 'email', '')

    result = ledger.create_checkout_session(data['order_id'], email, owner_id=owner_id)
    return Response(
        {'session_id': result.session_id, 'redirect_url': result.redirect_url},
        status=status.HTTP_201_CREATED,
    )


@api_view(['POST'])
@permission_classes([HasApiKey])
def create_payment(request):
    ser = PaymentCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)

    payment = services.payment_ledger().create_payment(**ser.validated_data)
    return Response(PaymentOut(payment).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([HasApiKey])
def refund_payment(request):
    ser = RefundIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    payment = services.payment_ledger().refund_payment(
        data['payment_id'], amount=data.get('amount'), reason=data.get('reason'),
    )
    return Response(PaymentOut(payment).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated | HasApiKey])
def order_payments(request, order_id):
    ledger = services.payment_ledger()
    payments = ledger.payments_for_order(order_id, owner_id=_owner_id(request))
    return Response({
        'payments': PaymentOut(payments, many=True).data,
        'total_paid': str(ledger.total_paid(order_id)),
        'is_fully_paid': ledger.is_fully_paid(order_id),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def payment_history(request):
    payments = services.payment_ledger().payment_history(request.user.pk)
    return Response(PaymentHistoryOut(payments, many=True).data)


@api_view(['DELETE'])
@permission_classes([HasApiKey])
def delete_payment(request, payment_id):
    services.payment_ledger().delete_payment(payment_id)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payment_webhook(request):
    """
    Handle payment gateway webhook events.

    The raw body and the Stripe-Signature header are passed through untouched
    for signature verification. Unknown event types are acknowledged; an
    event for an unknown checkout session gets a 404 so the gateway retries.
    """
    result = services.webhook_reconciler().handle_event(
        request.body, request.META.get('HTTP_STRIPE_SIGNATURE')
    )
    return Response({'status': result.outcome.value, 'event_id': result.event_id})


@api_view(['GET'])
@permission_classes([HasApiKey])
def get_order_status(request):
    """
    Get order status by session_id or order_id.

    Query params: session_id or order_id
    """
    session_id = request.GET.get('session_id')
    order_id = request.GET.get('order_id')

    if not session_id and not order_id:
        raise ValidationFailed('session_id or order_id required')

    if session_id:
        payment = Payment.objects.filter(gateway_transaction_id=session_id).only('order_id').first()
        if payment is None:
            raise NotFound('Order not found')
        order_id = payment.order_id
    elif not str(order_id).isdigit():
        raise ValidationFailed('order_id must be an integer')

    order = services.order_manager().get_order(int(order_id))
    ledger = services.payment_ledger()
    return Response({
        'order_id': order.pk,
        'order_number': order.order_number,
        'shipping_status': order.shipping_status,
        'payment_status': order.payment_status,
        'customer_email': order.customer_email,
        'total_amount': str(order.total_amount),
        'currency': order.currency,
        'total_paid': str(ledger.total_paid(order.pk)),
        'items': OrderItemOut(order.items.all(), many=True).data,
        'created_at': order.created_at.isoformat(),
        'shipped_at': order.shipped_at.isoformat() if order.shipped_at else None,
        'delivered_at': order.delivered_at.isoformat() if order.delivered_at else None,
    })
