"""Admin shipment consolidation and the carrier failure path."""
from decimal import Decimal

import pytest
import requests

from marketplace.errors import (
    ForbiddenError,
    IncompleteCheckoutSessionError,
    InvalidTransitionError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    AuditLog,
    CarrierPaymentStatus,
    ConsolidatedShipment,
    Notification,
    Order,
    OrderStatus,
    ShipmentStatus,
)
from marketplace.services import consolidation
from marketplace.services import orders as order_service
from marketplace.services.carrier import (
    CarrierError,
    HttpCarrierClient,
    ShipmentRequest,
)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text='',
                 content_type='application/json'):
        self.status_code = status_code
        self.ok = status_code < 400
        self.headers = {'content-type': content_type}
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('No JSON object could be decoded')
        return self._body


def _http_carrier(monkeypatch, response):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append({'url': url, 'json': json})
        return response

    monkeypatch.setattr(requests, 'post', fake_post)
    return HttpCarrierClient('https://carrier.example.com/', 'key'), sent


def _request():
    return ShipmentRequest(
        reference='CONS-1',
        weight_kg=Decimal('1.500'),
        pieces=1,
        description='Marketplace consolidated shipment (1 items)',
        consignee={'name': 'Test Buyer', 'city': 'Colombo'})


class TestConsolidate:

    def test_consolidates_ready_orders(
            self, admin, buyer, seller, paid_orders, make_ready, carrier,
            as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)

        shipment = consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        assert shipment.status == ShipmentStatus.PICKED_UP
        assert shipment.carrier_awb == 'AWB000001'
        assert shipment.carrier_cost == Decimal('12.50')
        assert shipment.carrier_payment_status == CarrierPaymentStatus.UNPAID
        assert shipment.order_count == 3
        # 3 lines x 2 units x 0.5 kg
        assert shipment.total_weight == Decimal('3.000')
        assert shipment.total_shipping_cost == Decimal('9.00')
        assert shipment.override_incomplete is False

        for order in Order.query.all():
            assert order.status == OrderStatus.SHIPPED
            assert order.consolidated_shipment_id == shipment.id
            assert order.tracking_number == 'AWB000001'
            assert order.shipped_at is not None

        assert len(carrier.requests) == 1
        assert carrier.requests[0].pieces == 3
        assert carrier.requests[0].consignee['city'] == 'Colombo'
        assert Notification.query.filter_by(
            user_id=buyer.id, type='order_shipped').count() == 1
        assert Notification.query.filter_by(
            user_id=seller.id, type='order_shipped').count() == 1

    def test_incomplete_session_needs_override(
            self, admin, paid_orders, make_ready, as_principal):
        first, second, third = paid_orders.orders
        make_ready(first)
        make_ready(second)

        with pytest.raises(IncompleteCheckoutSessionError) as exc:
            consolidation.consolidate_orders(
                as_principal(admin), [first.id, second.id])
        assert exc.value.checkout_session_ids == [paid_orders.session.id]
        assert ConsolidatedShipment.query.count() == 0
        assert Order.query.filter_by(
            status=OrderStatus.SHIPPED).count() == 0

        shipment = consolidation.consolidate_orders(
            as_principal(admin),
            [first.id, second.id],
            override_incomplete=True,
            override_reason='Third item is back-ordered')

        assert shipment.override_incomplete is True
        assert shipment.override_reason == 'Third item is back-ordered'
        db.session.refresh(third)
        assert third.status == OrderStatus.PAID
        assert third.consolidated_shipment_id is None
        audit = AuditLog.query.filter_by(
            action='SHIPMENT_CONSOLIDATE').one()
        assert audit.get_payload()['override_reason'] == \
            'Third item is back-ordered'

    def test_override_requires_reason(
            self, admin, paid_orders, make_ready, as_principal):
        first = paid_orders.orders[0]
        make_ready(first)
        with pytest.raises(ValidationError) as exc:
            consolidation.consolidate_orders(
                as_principal(admin), [first.id], override_incomplete=True)
        assert exc.value.field == 'override_reason'

    def test_cancelled_sibling_does_not_block(
            self, admin, seller, paid_orders, make_ready, as_principal):
        first, second, third = paid_orders.orders
        make_ready(first)
        make_ready(second)
        order_service.cancel_order(as_principal(seller), third.id,
                                   reason='Out of stock')

        shipment = consolidation.consolidate_orders(
            as_principal(admin), [first.id, second.id])
        assert shipment.override_incomplete is False

    def test_unready_order_is_rejected(
            self, admin, paid_orders, as_principal):
        order = paid_orders.orders[0]
        with pytest.raises(ValidationError):
            consolidation.consolidate_orders(as_principal(admin), [order.id])

    def test_unpaid_order_is_rejected(
            self, admin, buyer, seller, factory, place_order, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        result = place_order(buyer, [(variant, 1)])
        with pytest.raises(InvalidTransitionError) as exc:
            consolidation.consolidate_orders(
                as_principal(admin), [result.orders[0].id])
        assert exc.value.current_status == 'pending_payment'

    def test_different_addresses_are_rejected(
            self, admin, buyer, seller, factory, place_order, pay,
            make_ready, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        first = place_order(buyer, [(variant, 1)])
        second = place_order(buyer, [(variant, 1)])
        for result in (first, second):
            pay(result.session.payment_reference)
            make_ready(result.orders[0])

        with pytest.raises(ValidationError):
            consolidation.consolidate_orders(
                as_principal(admin),
                [first.orders[0].id, second.orders[0].id])

    def test_already_consolidated(
            self, admin, paid_orders, make_ready, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        ids = [o.id for o in orders]
        consolidation.consolidate_orders(as_principal(admin), ids)
        with pytest.raises(ValidationError):
            consolidation.consolidate_orders(as_principal(admin), ids)

    def test_admin_only(self, seller, paid_orders, as_principal):
        with pytest.raises(ForbiddenError):
            consolidation.consolidate_orders(
                as_principal(seller), [paid_orders.orders[0].id])

    def test_non_integer_order_ids_are_rejected(self, admin, as_principal):
        with pytest.raises(ValidationError) as exc:
            consolidation.consolidate_orders(as_principal(admin), ['abc'])
        assert exc.value.field == 'order_ids'

    def test_rollback_after_booking_keeps_awb_on_record(
            self, admin, paid_orders, make_ready, carrier, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        moved = orders[0].id

        def seller_unflags_order():
            Order.query.filter_by(id=moved).update({'ready_to_ship': False})
            db.session.commit()

        carrier.on_booked = seller_unflags_order

        with pytest.raises(ValidationError):
            consolidation.consolidate_orders(
                as_principal(admin), [o.id for o in orders])

        assert ConsolidatedShipment.query.count() == 0
        assert Order.query.filter_by(
            status=OrderStatus.SHIPPED).count() == 0
        audit = AuditLog.query.filter_by(
            action='SHIPMENT_CARRIER_ORPHANED').one()
        payload = audit.get_payload()
        assert payload['carrier_awb'] == 'AWB000001'
        assert payload['order_ids'] == sorted(o.id for o in orders)


class TestCarrierFailure:

    def test_failure_leaves_shipment_pending_then_retry(
            self, admin, paid_orders, make_ready, carrier, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        carrier.fail_with = 'Carrier unreachable'

        shipment = consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        assert shipment.status == ShipmentStatus.PENDING
        assert shipment.carrier_awb is None
        assert shipment.carrier_error == 'Carrier unreachable'
        for order in Order.query.all():
            assert order.status == OrderStatus.SHIPPED
            assert order.tracking_number is None

        carrier.fail_with = None
        retried = consolidation.retry_carrier_booking(
            as_principal(admin), shipment.id)

        assert retried.status == ShipmentStatus.PICKED_UP
        assert retried.carrier_awb == 'AWB000001'
        assert retried.carrier_error is None
        db.session.expire_all()
        assert {o.tracking_number for o in Order.query.all()} == {
            'AWB000001'}

        with pytest.raises(InvalidTransitionError):
            consolidation.retry_carrier_booking(
                as_principal(admin), shipment.id)

    def test_failed_retry_records_error(
            self, admin, paid_orders, make_ready, carrier, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        carrier.fail_with = 'timeout'
        shipment = consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        carrier.fail_with = 'still down'
        retried = consolidation.retry_carrier_booking(
            as_principal(admin), shipment.id)
        assert retried.status == ShipmentStatus.PENDING
        assert retried.carrier_error == 'still down'

    def test_html_reply_from_carrier_leaves_shipment_pending(
            self, app, admin, paid_orders, make_ready, monkeypatch,
            as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        client, sent = _http_carrier(monkeypatch, FakeResponse(
            text='<html>Gateway maintenance</html>',
            content_type='text/html'))
        monkeypatch.setitem(app.extensions, 'carrier_client', client)

        shipment = consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        assert len(sent) == 1
        assert shipment.status == ShipmentStatus.PENDING
        assert shipment.carrier_awb is None
        assert 'non-JSON' in shipment.carrier_error
        for order in Order.query.all():
            assert order.status == OrderStatus.SHIPPED


class TestHttpCarrierClient:

    def test_books_shipment(self, monkeypatch):
        client, sent = _http_carrier(monkeypatch, FakeResponse(body={
            'awbId': 12345,
            'labelUrl': 'https://carrier.example.com/labels/12345.pdf',
            'cost': '14.75',
        }))

        shipment = client.create_shipment(_request())

        assert shipment.awb_id == '12345'
        assert shipment.cost == Decimal('14.75')
        assert sent[0]['url'] == 'https://carrier.example.com/shipments'
        assert sent[0]['json']['reference'] == 'CONS-1'

    def test_non_json_body_is_a_carrier_error(self, monkeypatch):
        client, _ = _http_carrier(monkeypatch, FakeResponse(
            text='<html>oops</html>', content_type='text/html'))
        with pytest.raises(CarrierError) as exc:
            client.create_shipment(_request())
        assert 'non-JSON' in str(exc.value)

    def test_unexpected_body_is_a_carrier_error(self, monkeypatch):
        client, _ = _http_carrier(monkeypatch, FakeResponse(body=['AWB1']))
        with pytest.raises(CarrierError):
            client.create_shipment(_request())

    def test_invalid_cost_is_a_carrier_error(self, monkeypatch):
        client, _ = _http_carrier(monkeypatch, FakeResponse(
            body={'awbId': 'AWB1', 'cost': 'free'}))
        with pytest.raises(CarrierError):
            client.create_shipment(_request())

    def test_error_status_uses_json_message(self, monkeypatch):
        client, _ = _http_carrier(monkeypatch, FakeResponse(
            status_code=422, body={'error': 'Postal code not served'}))
        with pytest.raises(CarrierError) as exc:
            client.create_shipment(_request())
        assert str(exc.value) == 'Postal code not served'

    def test_error_status_with_html_body(self, monkeypatch):
        client, _ = _http_carrier(monkeypatch, FakeResponse(
            status_code=502, text='<html>Bad gateway</html>',
            content_type='application/json'))
        with pytest.raises(CarrierError) as exc:
            client.create_shipment(_request())
        assert str(exc.value) == 'Carrier returned HTTP 502'


class TestShipmentQueries:

    def test_ready_list_flags_incomplete_sessions(
            self, admin, paid_orders, make_ready, as_principal):
        first, second, _ = paid_orders.orders
        make_ready(first)
        make_ready(second)

        rows = consolidation.list_ready_to_ship(as_principal(admin))

        assert [r['order'].id for r in rows] == [first.id, second.id]
        assert all(r['checkout_session_incomplete'] for r in rows)

    def test_mark_carrier_paid_once(
            self, admin, paid_orders, make_ready, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        shipment = consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        paid = consolidation.mark_carrier_paid(
            as_principal(admin), shipment.id)
        assert paid.carrier_payment_status == CarrierPaymentStatus.PAID
        assert paid.carrier_paid_at is not None
        with pytest.raises(InvalidTransitionError):
            consolidation.mark_carrier_paid(as_principal(admin), shipment.id)
        assert consolidation.list_shipments(as_principal(admin)) == [paid]
