"""Return requests from submission to refund."""
from decimal import Decimal

import pytest

from marketplace.errors import (
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    Notification,
    OrderStatus,
    ReturnStatus,
    SellerReturnStatus,
    Transaction,
    TransactionStatus,
)
from marketplace.services import consolidation
from marketplace.services import orders as order_service
from marketplace.services import returns
from marketplace.services.checkout import book_service

SELLER_NOTE = 'Item arrived damaged, happy to refund in full.'


@pytest.fixture
def delivered_order(admin, paid_orders, make_ready, as_principal):
    for order in paid_orders.orders:
        make_ready(order)
    consolidation.consolidate_orders(
        as_principal(admin), [o.id for o in paid_orders.orders])
    return order_service.mark_order_delivered(
        as_principal(admin), paid_orders.orders[0].id)


@pytest.fixture
def paid_booking(buyer, seller, factory, pay, as_principal):
    package = factory.package(factory.service(seller, price='100.00'))
    booking = book_service(as_principal(buyer), package.id, 'ipg')
    order_service.update_booking_status(
        as_principal(seller), booking.id, 'confirmed')
    pay(booking.payment_reference)
    db.session.refresh(booking)
    return booking


class TestSubmit:

    def test_buyer_submits_for_delivered_order(
            self, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer),
            'damaged',
            order_id=delivered_order.id,
            description='Cracked on arrival',
            evidence_urls=['https://files.example.com/evidence/1.jpg'])

        assert request.status == ReturnStatus.REQUESTED
        assert request.seller_status == SellerReturnStatus.PENDING
        assert request.requested_refund_amount == Decimal('50.00')
        assert request.evidence_urls == [
            'https://files.example.com/evidence/1.jpg']
        db.session.refresh(delivered_order)
        assert delivered_order.return_attempt_count == 1
        assert Notification.query.filter_by(
            user_id=seller.id, type='return_requested').count() == 1

    def test_order_must_be_delivered(
            self, buyer, paid_orders, as_principal):
        with pytest.raises(InvalidTransitionError) as exc:
            returns.submit_return(
                as_principal(buyer), 'defective',
                order_id=paid_orders.orders[0].id)
        assert exc.value.current_status == 'paid'

    def test_one_active_request_per_order(
            self, buyer, delivered_order, as_principal):
        returns.submit_return(
            as_principal(buyer), 'defective', order_id=delivered_order.id)
        with pytest.raises(ValidationError):
            returns.submit_return(
                as_principal(buyer), 'defective',
                order_id=delivered_order.id)

    def test_attempts_are_capped(
            self, buyer, delivered_order, as_principal):
        for _ in range(3):
            request = returns.submit_return(
                as_principal(buyer), 'changed_mind',
                order_id=delivered_order.id)
            returns.cancel_return(as_principal(buyer), request.id)

        with pytest.raises(ValidationError) as exc:
            returns.submit_return(
                as_principal(buyer), 'changed_mind',
                order_id=delivered_order.id)
        assert 'Maximum of 3' in exc.value.message
        db.session.refresh(delivered_order)
        assert delivered_order.return_attempt_count == 3

    def test_amount_cannot_exceed_total(
            self, buyer, delivered_order, as_principal):
        with pytest.raises(ValidationError):
            returns.submit_return(
                as_principal(buyer), 'defective',
                order_id=delivered_order.id, requested_amount='50.01')

    def test_only_the_buyer(self, factory, delivered_order, as_principal):
        with pytest.raises(ForbiddenError):
            returns.submit_return(
                as_principal(factory.user()), 'defective',
                order_id=delivered_order.id)

    def test_unknown_reason(self, buyer, delivered_order, as_principal):
        with pytest.raises(ValidationError):
            returns.submit_return(
                as_principal(buyer), 'meh', order_id=delivered_order.id)


class TestResolution:

    def test_order_refund_flow(
            self, admin, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)

        request = returns.seller_respond(
            as_principal(seller), request.id, 'approved', SELLER_NOTE)
        assert request.status == ReturnStatus.SELLER_APPROVED
        assert request.seller_proposed_amount == Decimal('50.00')
        assert request.under_review_at is not None

        request = returns.admin_resolve(
            as_principal(admin), request.id, 'approve',
            notes='Agreed', approved_refund_amount='50.00')
        assert request.status == ReturnStatus.ADMIN_APPROVED
        assert request.admin_override is False

        request = returns.process_refund(as_principal(admin), request.id)
        assert request.status == ReturnStatus.REFUNDED
        assert request.commission_reversed_amount == Decimal('10.00')
        transaction = Transaction.query.filter_by(
            order_id=delivered_order.id).one()
        assert transaction.status == TransactionStatus.REFUNDED
        assert transaction.refunded_amount == Decimal('50.00')
        assert transaction.commission_reversed_amount == Decimal('10.00')
        db.session.refresh(delivered_order)
        assert delivered_order.status == OrderStatus.DELIVERED

        request = returns.complete_return(as_principal(admin), request.id)
        assert request.status == ReturnStatus.COMPLETED
        assert request.completed_at is not None

    def test_admin_cannot_resolve_unreviewed_request(
            self, admin, buyer, paid_booking, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'not_as_described',
            booking_id=paid_booking.id)
        with pytest.raises(InvalidTransitionError) as exc:
            returns.admin_resolve(
                as_principal(admin), request.id, 'approve',
                approved_refund_amount='40.00')
        assert exc.value.current_status == 'requested'
        assert returns.get_return(request.id).status == \
            ReturnStatus.REQUESTED

    def test_short_seller_response(
            self, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        with pytest.raises(ValidationError) as exc:
            returns.seller_respond(
                as_principal(seller), request.id, 'rejected', 'No.')
        assert exc.value.field == 'response'

    def test_admin_override_of_seller_rejection(
            self, admin, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'wrong_item', order_id=delivered_order.id)
        returns.seller_respond(
            as_principal(seller), request.id, 'rejected',
            'The buyer ordered this exact item.')
        request = returns.admin_resolve(
            as_principal(admin), request.id, 'approve',
            approved_refund_amount='25.00')
        assert request.admin_override is True
        assert request.reviewed_by == admin.id

    def test_approval_needs_amount(
            self, admin, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        returns.seller_respond(
            as_principal(seller), request.id, 'approved', SELLER_NOTE)
        with pytest.raises(ValidationError):
            returns.admin_resolve(as_principal(admin), request.id, 'approve')

    def test_refund_only_from_admin_approved(
            self, admin, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        returns.seller_respond(
            as_principal(seller), request.id, 'approved', SELLER_NOTE)
        with pytest.raises(InvalidTransitionError) as exc:
            returns.process_refund(as_principal(admin), request.id)
        assert exc.value.current_status == 'seller_approved'

    def test_rejected_return_is_final(
            self, admin, buyer, seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        returns.seller_respond(
            as_principal(seller), request.id, 'approved', SELLER_NOTE)
        returns.admin_resolve(as_principal(admin), request.id, 'reject')
        with pytest.raises(InvalidTransitionError):
            returns.cancel_return(as_principal(buyer), request.id)
        with pytest.raises(InvalidTransitionError):
            returns.complete_return(as_principal(admin), request.id)

    def test_wrong_seller_cannot_respond(
            self, buyer, other_seller, delivered_order, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        with pytest.raises(ForbiddenError):
            returns.seller_respond(
                as_principal(other_seller), request.id, 'approved',
                SELLER_NOTE)


class TestBookingReturns:

    def test_booking_refund_caps_commission_reversal(
            self, admin, buyer, seller, paid_booking, as_principal):
        request = returns.submit_return(
            as_principal(buyer), 'not_as_described',
            booking_id=paid_booking.id)
        returns.seller_respond(
            as_principal(seller), request.id, 'approved',
            'Photographer left early, partial refund offered.',
            proposed_amount='40.00')
        returns.admin_resolve(
            as_principal(admin), request.id, 'approve',
            approved_refund_amount='40.00')

        request = returns.process_refund(as_principal(admin), request.id)

        # 20% of the refunded 40.00, not of the full booking.
        assert request.commission_reversed_amount == Decimal('8.00')
        db.session.refresh(paid_booking)
        assert paid_booking.return_attempt_count == 1


class TestListing:

    def test_returns_are_scoped(
            self, buyer, seller, other_seller, admin, delivered_order,
            as_principal):
        returns.submit_return(
            as_principal(buyer), 'damaged', order_id=delivered_order.id)
        assert len(returns.list_returns(as_principal(buyer))) == 1
        assert len(returns.list_returns(as_principal(seller))) == 1
        assert returns.list_returns(as_principal(other_seller)) == []
        assert len(returns.list_returns(
            as_principal(admin), status='requested')) == 1
        with pytest.raises(ValidationError):
            returns.list_returns(as_principal(admin), status='bogus')
