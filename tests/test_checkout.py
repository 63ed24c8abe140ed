"""Cart, atomic multi-seller checkout and service bookings."""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace.errors import (
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    AuditLog,
    BookingStatus,
    CartItem,
    CheckoutSession,
    CheckoutSessionStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace.services import design_approvals, quotes
from marketplace.services.checkout import (
    add_to_cart,
    book_service,
    checkout,
    distribute_shipping,
    remove_cart_item,
)

from tests.conftest import FILES


def _quote_into_cart(buyer, seller, product, variant, factory, as_principal,
                     price='50.00', qty=2):
    conversation = factory.conversation(buyer, seller, product=product)
    quotes.request_quote(
        as_principal(buyer), conversation.id,
        product_id=product.id, variant_id=variant.id, quantity=qty)
    quote = quotes.send_quote(
        as_principal(seller), conversation.id, price, qty,
        product_id=product.id, variant_id=variant.id)
    return quotes.accept_quote(as_principal(buyer), quote.id)


class TestCart:

    def test_adding_same_variant_merges_quantity(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        add_to_cart(as_principal(buyer), variant.id, 1)
        item = add_to_cart(as_principal(buyer), variant.id, 2)
        assert item.quantity == 3
        assert CartItem.query.count() == 1

    def test_quote_gated_variant_cannot_be_added_directly(
            self, buyer, seller, factory, as_principal):
        product = factory.product(seller, requires_quote=True)
        with pytest.raises(ValidationError):
            add_to_cart(as_principal(buyer), factory.variants(product)[0].id)

    def test_design_gated_variant_needs_approved_design(
            self, buyer, seller, factory, as_principal):
        product = factory.product(seller, requires_design=True)
        with pytest.raises(RequirementNotMetError) as exc:
            add_to_cart(as_principal(buyer), factory.variants(product)[0].id)
        assert exc.value.reasons == ['design_missing']

    def test_design_gated_line_records_approved_design(
            self, buyer, seller, factory, as_principal):
        product = factory.product(seller, requires_design=True)
        variant = factory.variants(product)[0]
        conversation = factory.conversation(buyer, seller, product=product)
        design = design_approvals.submit_design(
            as_principal(buyer), conversation.id, 'product', FILES,
            product_id=product.id, variant_id=variant.id)
        design_approvals.approve_design(as_principal(seller), design.id)

        item = add_to_cart(as_principal(buyer), variant.id, 2)

        assert item.quantity == 2
        assert item.design_approval_id == design.id

    def test_plain_line_has_no_design(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        item = add_to_cart(as_principal(buyer), variant.id)
        assert item.design_approval_id is None

    def test_quantity_must_be_positive(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        with pytest.raises(ValidationError):
            add_to_cart(as_principal(buyer), variant.id, 0)

    def test_remove_only_own_items(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        item = add_to_cart(as_principal(buyer), variant.id)
        with pytest.raises(NotFoundError):
            remove_cart_item(as_principal(factory.user()), item.id)
        remove_cart_item(as_principal(buyer), item.id)
        assert CartItem.query.count() == 0


class TestCheckout:

    def test_quoted_price_flows_into_order(
            self, buyer, seller, factory, as_principal):
        product = factory.product(seller, price='70.00', requires_quote=True)
        variant = factory.variants(product)[0]
        _quote_into_cart(buyer, seller, product, variant, factory,
                         as_principal)

        address = factory.address(buyer)
        result = checkout(as_principal(buyer), 'ipg', address.id)

        assert len(result.orders) == 1
        order = Order.query.one()
        assert order.unit_price == Decimal('50.00')
        assert order.quantity == 2
        assert order.total_amount == Decimal('100.00')
        assert order.status == OrderStatus.PENDING_PAYMENT
        transaction = Transaction.query.one()
        assert transaction.order_id == order.id
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.type == TransactionType.ORDER
        assert result.redirect['reference'] == \
            result.session.payment_reference
        assert result.redirect['amount'] == '100.00'
        assert CartItem.query.count() == 0

    def test_multi_seller_checkout_creates_one_session(
            self, buyer, seller, other_seller, factory, place_order):
        first = factory.variants(factory.product(seller, price='10.00'))[0]
        second = factory.variants(
            factory.product(other_seller, price='20.00'))[0]

        result = place_order(
            buyer, [(first, 1), (second, 2)], shipping_cost='5.00')

        session = CheckoutSession.query.one()
        assert session.status == CheckoutSessionStatus.PENDING_PAYMENT
        assert session.total_amount == Decimal('55.00')
        assert {o.seller_id for o in result.orders} == {
            seller.id, other_seller.id}
        assert all(o.checkout_session_id == session.id
                   for o in result.orders)
        assert AuditLog.query.filter_by(action='ORDER_CHECKOUT').count() == 1

    def test_expired_quote_aborts_whole_checkout(
            self, buyer, seller, other_seller, factory, as_principal):
        first = factory.variants(factory.product(seller))[0]
        second = factory.variants(factory.product(other_seller))[0]
        quoted = factory.product(other_seller, requires_quote=True)
        quoted_variant = factory.variants(quoted)[0]

        add_to_cart(as_principal(buyer), first.id, 1)
        add_to_cart(as_principal(buyer), second.id, 1)
        quote = _quote_into_cart(buyer, other_seller, quoted, quoted_variant,
                                 factory, as_principal)
        quote.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()
        cart_before = sorted(
            (i.id, i.variant_id, i.quantity, i.quote_id)
            for i in CartItem.query.all())
        assert len(cart_before) == 3

        address = factory.address(buyer)
        with pytest.raises(RequirementNotMetError) as exc:
            checkout(as_principal(buyer), 'ipg', address.id)

        assert exc.value.reasons == ['quote_expired']
        assert Order.query.count() == 0
        assert Transaction.query.count() == 0
        assert CheckoutSession.query.count() == 0
        cart_after = sorted(
            (i.id, i.variant_id, i.quantity, i.quote_id)
            for i in CartItem.query.all())
        assert cart_after == cart_before

    def test_empty_cart(self, buyer, factory, as_principal):
        address = factory.address(buyer)
        with pytest.raises(ValidationError):
            checkout(as_principal(buyer), 'ipg', address.id)

    def test_address_must_belong_to_buyer(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        add_to_cart(as_principal(buyer), variant.id)
        someone_else = factory.address(factory.user())
        with pytest.raises(NotFoundError):
            checkout(as_principal(buyer), 'ipg', someone_else.id)
        assert CartItem.query.count() == 1

    def test_bank_transfer_requires_slip(
            self, buyer, seller, factory, as_principal):
        variant = factory.variants(factory.product(seller))[0]
        add_to_cart(as_principal(buyer), variant.id)
        address = factory.address(buyer)
        account = factory.bank_account()

        with pytest.raises(ValidationError) as exc:
            checkout(as_principal(buyer), 'bank_transfer', address.id,
                     bank_account_id=account.id)
        assert exc.value.field == 'payment_slip_url'

        result = checkout(
            as_principal(buyer), 'bank_transfer', address.id,
            bank_account_id=account.id,
            payment_slip_url='https://files.example.com/slips/1.jpg')
        assert result.redirect is None
        transaction = Transaction.query.one()
        assert transaction.payment_method == PaymentMethod.BANK_TRANSFER
        assert transaction.bank_account_id == account.id

    def test_unknown_payment_method(
            self, buyer, seller, factory, as_principal):
        address = factory.address(buyer)
        with pytest.raises(ValidationError):
            checkout(as_principal(buyer), 'cash', address.id)


class TestLedgerInvariants:
    """Amounts recorded by checkout always add up"""

    def test_order_and_transaction_amounts(
            self, buyer, seller, other_seller, factory, place_order):
        lines = [
            (factory.variants(factory.product(seller, price='19.99'))[0], 3),
            (factory.variants(
                factory.product(other_seller, price='7.35'))[0], 1),
            (factory.variants(factory.product(seller, price='0.10'))[0], 7),
        ]
        place_order(buyer, lines, shipping_cost='12.00')

        for order in Order.query.all():
            assert order.total_amount == order.unit_price * order.quantity
            assert order.shipping_cost >= 0
        for transaction in Transaction.query.all():
            assert transaction.amount == (
                transaction.seller_payout + transaction.commission_amount)

    def test_commission_uses_seller_rate(
            self, buyer, other_seller, factory, place_order):
        variant = factory.variants(
            factory.product(other_seller, price='40.00'))[0]
        place_order(buyer, [(variant, 1)])
        transaction = Transaction.query.one()
        assert transaction.commission_rate == Decimal('10.00')
        assert transaction.commission_amount == Decimal('4.00')
        assert transaction.seller_payout == Decimal('36.00')


class TestShippingDistribution:

    def test_single_line_takes_everything(self):
        assert distribute_shipping('9.99', [Decimal('3')]) == [
            Decimal('9.99')]

    def test_split_by_weight(self):
        shares = distribute_shipping(
            '10.00', [Decimal('1'), Decimal('3')])
        assert shares == [Decimal('2.50'), Decimal('7.50')]

    def test_each_share_rounds_on_its_own(self):
        shares = distribute_shipping(
            '10.00', [Decimal('1'), Decimal('1'), Decimal('1')])
        assert shares == [Decimal('3.33')] * 3

    def test_order_weight_is_per_unit(
            self, buyer, seller, factory, place_order):
        variant = factory.variants(
            factory.product(seller, weight='0.250'))[0]
        result = place_order(buyer, [(variant, 4)], shipping_cost='6.00')
        order = result.orders[0]
        assert order.product_weight == Decimal('0.250')
        assert order.shipping_cost == Decimal('6.00')


class TestBookings:

    def test_booking_creates_pending_transaction(
            self, buyer, seller, factory, as_principal):
        service = factory.service(seller, price='120.00')
        package = factory.package(service)

        booking = book_service(as_principal(buyer), package.id, 'ipg',
                               quantity=2)

        assert booking.status == BookingStatus.PENDING_CONFIRMATION
        assert booking.total_amount == Decimal('240.00')
        assert booking.payment_reference.startswith('BK-')
        transaction = Transaction.query.filter_by(
            booking_id=booking.id).one()
        assert transaction.type == TransactionType.BOOKING
        assert transaction.amount == Decimal('240.00')
        assert transaction.commission_amount == Decimal('48.00')

    def test_quote_gated_service_needs_quote(
            self, buyer, seller, factory, as_principal):
        service = factory.service(seller, requires_quote=True)
        with pytest.raises(RequirementNotMetError) as exc:
            book_service(as_principal(buyer), factory.package(service).id,
                         'ipg')
        assert exc.value.reasons == ['quote_missing']
