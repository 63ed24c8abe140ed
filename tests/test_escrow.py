"""Escrow ledger: payment confirmation, webhook handling and release."""
from decimal import Decimal

import pytest

from marketplace.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    BookingStatus,
    CheckoutSession,
    CheckoutSessionStatus,
    Notification,
    Order,
    OrderStatus,
    Transaction,
    TransactionStatus,
)
from marketplace.services import consolidation, escrow
from marketplace.services import orders as order_service
from marketplace.services.checkout import book_service

from tests.conftest import WEBHOOK_SECRET


@pytest.fixture
def two_line_checkout(buyer, seller, other_seller, factory, place_order):
    first = factory.variants(factory.product(seller, price='30.00'))[0]
    second = factory.variants(factory.product(other_seller, price='20.00'))[0]
    return place_order(buyer, [(first, 1), (second, 1)])


class TestPaymentWebhook:

    def test_success_moves_every_order_to_escrow(
            self, two_line_checkout, pay):
        session = two_line_checkout.session
        result = pay(session.payment_reference, '50.00')

        assert result == {
            'reference': session.payment_reference,
            'processed': True,
            'changed': True,
        }
        assert {o.status for o in Order.query.all()} == {OrderStatus.PAID}
        assert {t.status for t in Transaction.query.all()} == {
            TransactionStatus.ESCROW}
        assert all(t.escrow_at is not None for t in Transaction.query.all())
        session = db.session.get(CheckoutSession, session.id)
        assert session.status == CheckoutSessionStatus.PAID

    def test_repeated_webhook_changes_nothing(self, two_line_checkout, pay):
        reference = two_line_checkout.session.payment_reference
        pay(reference)
        notifications = Notification.query.count()
        escrow_times = {t.id: t.escrow_at for t in Transaction.query.all()}

        result = pay(reference)

        assert result['processed'] is True
        assert result['changed'] is False
        assert Notification.query.count() == notifications
        db.session.expire_all()
        assert {t.id: t.escrow_at for t in Transaction.query.all()} == \
            escrow_times

    def test_bad_secret(self, two_line_checkout):
        with pytest.raises(ForbiddenError):
            escrow.handle_payment_webhook(
                {'reference': two_line_checkout.session.payment_reference,
                 'status': 'SUCCESS'},
                'wrong-secret')
        assert Transaction.query.filter_by(
            status=TransactionStatus.ESCROW).count() == 0

    def test_failed_status_is_ignored(self, two_line_checkout):
        result = escrow.handle_payment_webhook(
            {'reference': two_line_checkout.session.payment_reference,
             'status': 'FAILED'},
            WEBHOOK_SECRET)
        assert result['processed'] is False
        assert Order.query.filter_by(
            status=OrderStatus.PAID).count() == 0

    def test_amount_mismatch(self, two_line_checkout, pay):
        with pytest.raises(ValidationError):
            pay(two_line_checkout.session.payment_reference, '49.99')
        assert Order.query.filter_by(
            status=OrderStatus.PAID).count() == 0

    @pytest.mark.parametrize('amount', ['abc', 'NaN'])
    def test_non_numeric_amount_is_rejected(
            self, two_line_checkout, pay, amount):
        with pytest.raises(ValidationError) as exc:
            pay(two_line_checkout.session.payment_reference, amount)
        assert exc.value.field == 'amount'
        assert Order.query.filter_by(
            status=OrderStatus.PAID).count() == 0

    def test_unknown_reference(self, app, pay):
        with pytest.raises(NotFoundError):
            pay('CS-DOESNOTEXIST')

    def test_booking_reference(
            self, buyer, seller, factory, as_principal, pay):
        package = factory.package(factory.service(seller, price='80.00'))
        booking = book_service(as_principal(buyer), package.id, 'ipg')
        order_service.update_booking_status(
            as_principal(seller), booking.id, 'confirmed')

        result = pay(booking.payment_reference, '80.00')

        assert result['changed'] is True
        db.session.refresh(booking)
        assert booking.status == BookingStatus.PAID
        transaction = Transaction.query.filter_by(
            booking_id=booking.id).one()
        assert transaction.status == TransactionStatus.ESCROW


class TestAdminConfirmation:

    def test_confirm_transaction(
            self, admin, two_line_checkout, as_principal):
        order = two_line_checkout.orders[0]
        transaction = order.transactions.one()

        confirmed = escrow.confirm_transaction_payment(
            as_principal(admin), transaction.id)

        assert confirmed.status == TransactionStatus.ESCROW
        db.session.refresh(order)
        assert order.status == OrderStatus.PAID
        session = db.session.get(
            CheckoutSession, order.checkout_session_id)
        # The second order of the session is still unpaid.
        assert session.status == CheckoutSessionStatus.PENDING_PAYMENT

        with pytest.raises(InvalidTransitionError) as exc:
            escrow.confirm_transaction_payment(
                as_principal(admin), transaction.id)
        assert exc.value.current_status == 'escrow'

    def test_confirm_order_payment(
            self, admin, two_line_checkout, as_principal):
        for order in two_line_checkout.orders:
            escrow.confirm_order_payment(as_principal(admin), order.id)
        session = db.session.get(
            CheckoutSession, two_line_checkout.session.id)
        assert session.status == CheckoutSessionStatus.PAID

    def test_only_admin_confirms(
            self, seller, two_line_checkout, as_principal):
        transaction = two_line_checkout.orders[0].transactions.one()
        with pytest.raises(ForbiddenError):
            escrow.confirm_transaction_payment(
                as_principal(seller), transaction.id)


class TestRelease:

    def test_release_requires_shipment(
            self, admin, paid_orders, as_principal):
        transaction = paid_orders.orders[0].transactions.one()
        with pytest.raises(InvalidTransitionError) as exc:
            escrow.release_transaction(as_principal(admin), transaction.id)
        assert 'shipped or delivered' in exc.value.message
        db.session.refresh(transaction)
        assert transaction.status == TransactionStatus.ESCROW

    def test_release_after_consolidation(
            self, admin, seller, paid_orders, make_ready, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])

        transaction = orders[0].transactions.one()
        released = escrow.release_transaction(
            as_principal(admin), transaction.id)

        assert released.status == TransactionStatus.RELEASED
        assert released.released_at is not None
        assert released.amount == (
            released.seller_payout + released.commission_amount)
        assert Notification.query.filter_by(
            user_id=seller.id, type='payment_released').count() == 1

        with pytest.raises(InvalidTransitionError):
            escrow.release_transaction(as_principal(admin), transaction.id)

    def test_release_order_payments_skips_settled(
            self, admin, paid_orders, make_ready, as_principal):
        orders = paid_orders.orders
        for order in orders:
            make_ready(order)
        consolidation.consolidate_orders(
            as_principal(admin), [o.id for o in orders])
        order = orders[0]
        transaction_id = order.transactions.one().id

        first = escrow.release_order_payments(as_principal(admin), order.id)
        second = escrow.release_order_payments(as_principal(admin), order.id)

        assert first == {'released': [transaction_id], 'skipped': []}
        assert second == {'released': [], 'skipped': [transaction_id]}

    def test_list_transactions_filters(self, admin, paid_orders):
        escrowed = escrow.list_transactions(status=TransactionStatus.ESCROW)
        assert len(escrowed) == 3
        assert escrow.list_transactions(
            status=TransactionStatus.RELEASED) == []
        assert sum(t.amount for t in escrowed) == Decimal('150.00')
