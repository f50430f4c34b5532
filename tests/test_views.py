"""Tests for the HTTP API."""
from decimal import Decimal

import pytest

from commerce import services
from commerce.exceptions import UNEXPECTED_MESSAGE
from commerce.models import Order, Payment, PaymentStatus, ShippingStatus
from commerce.orders import OrderLine

from .conftest import API_KEY

pytestmark = pytest.mark.django_db


@pytest.fixture
def create_body(widget, gadget):
    return {
        'items': [
            {'product_id': widget.pk, 'quantity': 3},
            {'product_id': gadget.pk, 'quantity': 1},
        ],
        'shipping': {
            'first_name': 'Ada',
            'last_name': 'Lovelace',
            'address': '12 Analytical Way',
            'city': 'London',
            'zip_code': 'N1 9GU',
            'country': 'GB',
        },
        'tax_amount': '3.50',
        'shipping_amount': '5.00',
    }


@pytest.fixture
def user_order(manager, widget, shipping, user):
    return manager.create_order([OrderLine(product_id=widget.pk, quantity=2)], shipping, owner_id=user.pk)


class TestOrders:
    def test_create(self, api_client, create_body, widget, user):
        response = api_client.post('/api/orders', create_body, format='json')

        assert response.status_code == 201
        data = response.json()
        assert data['subtotal'] == '55.00'
        assert data['total_amount'] == '63.50'
        assert data['user_id'] == str(user.pk)
        assert data['customer_email'] == 'ada@shop.test'
        assert len(data['items']) == 2
        assert response['Location'] == f"/api/orders/{data['id']}"
        widget.refresh_from_db()
        assert widget.stock_quantity == 7

    def test_create_insufficient_stock(self, api_client, create_body):
        create_body['items'][1]['quantity'] = 50
        response = api_client.post('/api/orders', create_body, format='json')

        assert response.status_code == 409
        assert response.json()['code'] == 'insufficient_stock'
        assert 'Available: 4' in response.json()['error']
        assert Order.objects.count() == 0

    def test_create_invalid_body(self, api_client, create_body):
        del create_body['shipping']['city']
        response = api_client.post('/api/orders', create_body, format='json')

        assert response.status_code == 400
        assert 'shipping' in response.json()['fields']

    def test_create_bad_quantity(self, api_client, create_body):
        create_body['items'][0]['quantity'] = 0
        response = api_client.post('/api/orders', create_body, format='json')
        assert response.status_code == 400
        assert response.json()['code'] == 'validation'

    def test_anonymous_is_rejected(self, client, create_body):
        response = client.post('/api/orders', create_body, content_type='application/json')
        assert response.status_code in (401, 403)

    def test_list_only_own(self, api_client, user_order, order):
        response = api_client.get('/api/orders')
        assert response.status_code == 200
        assert [o['id'] for o in response.json()] == [user_order.pk]

    def test_list_with_api_key_sees_all(self, key_client, user_order, order):
        response = key_client.get('/api/orders')
        assert len(response.json()) == 2

    def test_get_someone_elses_order(self, api_client, order):
        response = api_client.get(f"/api/orders/{order.pk}")
        assert response.status_code == 403
        assert response.json()['code'] == 'forbidden'

    def test_get_missing(self, api_client):
        response = api_client.get('/api/orders/9999')
        assert response.status_code == 404
        assert response.json() == {'error': 'Order with ID 9999 not found.', 'code': 'not_found'}

    def test_cancel(self, api_client, user_order, widget):
        response = api_client.post(f"/api/orders/{user_order.pk}/cancel", {'reason': 'wrong size'}, format='json')

        assert response.status_code == 200
        assert response.json()['shipping_status'] == ShippingStatus.CANCELLED
        widget.refresh_from_db()
        assert widget.stock_quantity == 10

    def test_cancel_shipped(self, api_client, manager, user_order):
        manager.update_order_status(user_order.pk, shipping_status=ShippingStatus.PROCESSING)
        manager.update_order_status(user_order.pk, shipping_status=ShippingStatus.SHIPPED)

        response = api_client.post(f"/api/orders/{user_order.pk}/cancel", {}, format='json')

        assert response.status_code == 409
        assert response.json()['code'] == 'invalid_transition'

    def test_status_requires_api_key(self, api_client, user_order):
        response = api_client.patch(
            f"/api/orders/{user_order.pk}/status", {'shipping_status': 'processing'}, format='json'
        )
        assert response.status_code == 403

    def test_status_update(self, key_client, user_order):
        response = key_client.patch(
            f"/api/orders/{user_order.pk}/status", {'shipping_status': 'processing'}, format='json'
        )
        assert response.status_code == 200
        assert response.json()['shipping_status'] == 'processing'

    def test_status_update_invalid_transition(self, key_client, user_order):
        response = key_client.patch(
            f"/api/orders/{user_order.pk}/status", {'shipping_status': 'delivered'}, format='json'
        )
        assert response.status_code == 409

    def test_status_update_empty_body(self, key_client, user_order):
        response = key_client.patch(f"/api/orders/{user_order.pk}/status", {}, format='json')
        assert response.status_code == 400

    def test_item_quantity(self, key_client, user_order):
        item = user_order.items.get()
        response = key_client.patch(f"/api/order-items/{item.pk}", {'quantity': 4}, format='json')

        assert response.status_code == 200
        assert response.json()['total_price'] == '40.00'
        assert Order.objects.get(pk=user_order.pk).subtotal == Decimal('40.00')

    def test_delete_requires_api_key(self, api_client, user_order):
        assert api_client.delete(f"/api/orders/{user_order.pk}").status_code == 403
        assert Order.objects.filter(pk=user_order.pk).exists()

    def test_delete(self, key_client, user_order, widget):
        assert key_client.delete(f"/api/orders/{user_order.pk}").status_code == 204
        widget.refresh_from_db()
        assert widget.stock_quantity == 10

    def test_unexpected_error_is_not_leaked(self, api_client, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError('database password is hunter2')

        monkeypatch.setattr(services, 'order_manager', explode)
        response = api_client.get('/api/orders')

        assert response.status_code == 500
        assert response.json() == {'error': UNEXPECTED_MESSAGE, 'code': 'unexpected'}
        assert b'hunter2' not in response.content


class TestPayments:
    def test_checkout_session(self, api_client, gateway, user_order):
        response = api_client.post('/api/payments/checkout-session', {'order_id': user_order.pk}, format='json')

        assert response.status_code == 201
        data = response.json()
        payment = Payment.objects.get()
        assert data == {'session_id': payment.gateway_transaction_id, 'redirect_url': data['redirect_url']}
        assert data['redirect_url'].startswith('https://checkout.fake.test/')
        assert gateway.calls_to('create_customer')[0]['email'] == 'ada@shop.test'

    def test_checkout_gateway_down(self, api_client, gateway, user_order):
        gateway.configure(should_succeed=False)
        response = api_client.post('/api/payments/checkout-session', {'order_id': user_order.pk}, format='json')
        assert response.status_code == 502
        assert response.json()['code'] == 'gateway_error'

    def test_checkout_someone_elses_order(self, api_client, gateway, order):
        response = api_client.post('/api/payments/checkout-session', {'order_id': order.pk}, format='json')
        assert response.status_code == 403

    def test_order_payments(self, api_client, ledger, user_order):
        checkout = ledger.create_checkout_session(user_order.pk, 'ada@shop.test')
        ledger.complete_checkout(checkout.session_id, 'pi_1')

        response = api_client.get(f"/api/payments/order/{user_order.pk}")

        assert response.status_code == 200
        data = response.json()
        assert data['total_paid'] == '20.00'
        assert data['is_fully_paid'] is True
        assert data['payments'][0]['status'] == PaymentStatus.COMPLETED

    def test_payment_history(self, api_client, ledger, user_order, order):
        ledger.create_checkout_session(user_order.pk, 'ada@shop.test')
        ledger.create_checkout_session(order.pk, 'ada@shop.test')

        response = api_client.get('/api/payments/history')

        assert response.status_code == 200
        (payment,) = response.json()
        assert payment['order_number'] == user_order.order_number
        assert payment['amount'] == '20.00'

    def test_payment_history_requires_a_user(self, key_client):
        assert key_client.get('/api/payments/history').status_code in (401, 403)

    def test_manual_payment(self, key_client, user_order):
        response = key_client.post(
            '/api/payments', {'order_id': user_order.pk, 'amount': '20.00', 'notes': 'cash'}, format='json'
        )
        assert response.status_code == 201
        assert response.json()['status'] == 'pending'

    def test_refund(self, key_client, ledger, user_order):
        checkout = ledger.create_checkout_session(user_order.pk, 'ada@shop.test')
        payment, _ = ledger.complete_checkout(checkout.session_id, 'pi_1')

        response = key_client.post(
            '/api/payments/refund', {'payment_id': payment.pk, 'reason': 'requested_by_customer'}, format='json'
        )

        assert response.status_code == 200
        assert response.json()['status'] == PaymentStatus.REFUNDED

    def test_refund_bad_reason(self, key_client):
        response = key_client.post('/api/payments/refund', {'payment_id': 1, 'reason': 'bored'}, format='json')
        assert response.status_code == 400

    def test_delete_payment(self, key_client, ledger, user_order):
        payment = ledger.create_payment(user_order.pk, Decimal('5.00'))
        assert key_client.delete(f"/api/payments/{payment.pk}").status_code == 204
        assert key_client.delete(f"/api/payments/{payment.pk}").status_code == 404


class TestWebhookEndpoint:
    def _post(self, client, body, signature):
        return client.post(
            '/api/payments/webhook', data=body, content_type='application/json', HTTP_STRIPE_SIGNATURE=signature
        )

    def test_completed(self, client, ledger, make_event, user_order):
        checkout = ledger.create_checkout_session(user_order.pk, 'ada@shop.test')
        body, signature = make_event('checkout.session.completed', {'id': checkout.session_id, 'payment_intent': 'pi_1'})

        response = self._post(client, body, signature)

        assert response.status_code == 200
        assert response.json()['status'] == 'processed'
        assert Order.objects.get(pk=user_order.pk).payment_status == PaymentStatus.COMPLETED

        assert self._post(client, body, signature).json()['status'] == 'duplicate'

    def test_bad_signature(self, client, make_event):
        body, _ = make_event('checkout.session.completed', {'id': 'cs_1'})
        response = self._post(client, body, 't=1,v1=deadbeef')
        assert response.status_code == 401

    def test_unresolved(self, client, gateway, make_event):
        response = self._post(client, *make_event('checkout.session.completed', {'id': 'cs_ghost'}))
        assert response.status_code == 404
        assert response.json()['code'] == 'payment_not_correlated'

    def test_ignored(self, client, gateway, make_event):
        response = self._post(client, *make_event('customer.created', {'id': 'cus_1'}))
        assert response.status_code == 200
        assert response.json()['status'] == 'ignored'

    def test_malformed(self, client, gateway):
        from commerce.gateway.fake_adapter import sign_payload
        from .conftest import WEBHOOK_SECRET

        body = b'{"truncated":'
        response = self._post(client, body, sign_payload(body, WEBHOOK_SECRET))
        assert response.status_code == 400


class TestOrderStatus:
    def test_by_session_id(self, key_client, ledger, user_order):
        checkout = ledger.create_checkout_session(user_order.pk, 'ada@shop.test')
        response = key_client.get('/api/order-status', {'session_id': checkout.session_id})

        assert response.status_code == 200
        data = response.json()
        assert data['order_number'] == user_order.order_number
        assert data['payment_status'] == 'pending'
        assert data['total_paid'] == '0.00'

    def test_by_order_id(self, key_client, user_order):
        response = key_client.get('/api/order-status', {'order_id': user_order.pk})
        assert response.status_code == 200
        assert response.json()['order_id'] == user_order.pk

    def test_requires_a_parameter(self, key_client):
        response = key_client.get('/api/order-status')
        assert response.status_code == 400
        assert response.json()['error'] == 'session_id or order_id required'

    def test_unknown_session(self, key_client):
        assert key_client.get('/api/order-status', {'session_id': 'cs_nope'}).status_code == 404

    def test_requires_api_key(self, api_client, user_order):
        assert api_client.get('/api/order-status', {'order_id': user_order.pk}).status_code == 403

    def test_wrong_api_key(self, client, user_order):
        response = client.get('/api/order-status', {'order_id': user_order.pk}, HTTP_X_API_KEY=API_KEY + 'x')
        assert response.status_code in (401, 403)

    def test_non_ascii_api_key(self, client, user_order):
        response = client.get('/api/order-status', {'order_id': user_order.pk}, HTTP_X_API_KEY='clé')
        assert response.status_code in (401, 403)
