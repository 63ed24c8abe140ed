"""JSON API surface: auth, role checks and error mapping."""
import pytest

from marketplace.models import Order, OrderStatus
from marketplace.services import quotes

from tests.conftest import WEBHOOK_SECRET


class TestAuth:

    def test_requires_login(self, client):
        response = client.get('/api/cart')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Not logged in'

    def test_wrong_role(self, login, seller):
        response = login(seller).post('/api/checkout', json={})
        assert response.status_code == 403


class TestWebhookEndpoint:

    def test_bad_secret_is_forbidden(self, client, buyer, seller, factory,
                                     place_order):
        variant = factory.variants(factory.product(seller))[0]
        result = place_order(buyer, [(variant, 1)])

        response = client.post(
            '/api/payments/webhook',
            json={'reference': result.session.payment_reference,
                  'status': 'SUCCESS'},
            headers={'X-Webhook-Secret': 'nope'})

        assert response.status_code == 403
        assert response.get_json()['code'] == 'forbidden'

    def test_success(self, client, buyer, seller, factory, place_order):
        variant = factory.variants(factory.product(seller))[0]
        result = place_order(buyer, [(variant, 1)])

        response = client.post(
            '/api/payments/webhook',
            json={'reference': result.session.payment_reference,
                  'status': 'SUCCESS'},
            headers={'X-Webhook-Secret': WEBHOOK_SECRET})

        assert response.status_code == 200
        assert response.get_json()['changed'] is True
        assert Order.query.one().status == OrderStatus.PAID


class TestQuoteEndpoints:

    @pytest.fixture
    def sent_quote(self, buyer, seller, factory, as_principal):
        product = factory.product(seller, requires_quote=True)
        conversation = factory.conversation(buyer, seller, product=product)
        return quotes.send_quote(
            as_principal(seller),
            conversation.id,
            '40.00',
            1,
            product_id=product.id,
            variant_id=factory.variants(product)[0].id)

    def test_accept_twice_reports_current_status(
            self, login, buyer, sent_quote):
        client = login(buyer)
        first = client.post(f'/api/quotes/{sent_quote.id}/accept')
        assert first.status_code == 200
        assert first.get_json()['quote']['status'] == 'accepted'

        second = client.post(f'/api/quotes/{sent_quote.id}/accept')
        body = second.get_json()
        assert second.status_code == 409
        assert body['code'] == 'invalid_transition'
        assert body['current_status'] == 'accepted'
        assert body['allowed'] == []

    def test_quote_detail_is_party_only(
            self, login, buyer, factory, sent_quote):
        response = login(buyer).get(f'/api/quotes/{sent_quote.id}')
        assert response.status_code == 200
        assert response.get_json()['quote']['quoted_price'] == '40.00'

        response = login(factory.user()).get(f'/api/quotes/{sent_quote.id}')
        assert response.status_code == 403

    def test_reject_by_other_buyer(self, login, factory, sent_quote):
        response = login(factory.user()).post(
            f'/api/quotes/{sent_quote.id}/reject', json={'reason': 'no'})
        assert response.status_code == 403


class TestCheckoutEndpoint:

    def test_checkout_returns_session_and_orders(
            self, login, buyer, seller, factory):
        variant = factory.variants(factory.product(seller, price='12.00'))[0]
        address = factory.address(buyer)
        client = login(buyer)

        added = client.post(
            '/api/cart', json={'variant_id': variant.id, 'quantity': 2})
        assert added.status_code == 201

        response = client.post('/api/checkout', json={
            'payment_method': 'ipg',
            'shipping_address_id': address.id,
            'shipping_cost': '3.00',
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['checkout_session']['total_amount'] == '27.00'
        assert body['checkout_session']['status'] == 'pending_payment'
        assert len(body['orders']) == 1
        assert body['redirect']['reference'] == \
            body['checkout_session']['payment_reference']

    def test_purchase_requirements(self, login, buyer, seller, factory):
        product = factory.product(seller, requires_design=True)
        response = login(buyer).get(
            '/api/purchase-requirements',
            query_string={'product_id': product.id})
        body = response.get_json()
        assert response.status_code == 200
        assert body['allowed'] is False
        assert body['reasons'] == ['design_missing']
        assert body['requires_design_approval'] is True
