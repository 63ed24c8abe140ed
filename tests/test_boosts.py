"""Seller boost purchases: the platform is the payee."""
from decimal import Decimal

import pytest

from marketplace.errors import ForbiddenError, ValidationError
from marketplace.models import (
    BoostedItem,
    BoostPurchaseStatus,
    Notification,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace.services import boosts, escrow


@pytest.fixture
def boost(seller, factory, as_principal):
    package = factory.boost_package(price='5.00', days=7)
    product = factory.product(seller)
    purchase, redirect = boosts.purchase_boost(
        as_principal(seller), package.id, product_id=product.id)
    return purchase, redirect, product


class TestBoostPurchase:

    def test_purchase_creates_platform_transaction(self, boost):
        purchase, redirect, _ = boost

        assert purchase.status == BoostPurchaseStatus.PENDING
        assert purchase.payment_reference in redirect['url']
        transaction = Transaction.query.filter_by(
            boost_purchase_id=purchase.id).one()
        assert transaction.type == TransactionType.BOOST
        assert transaction.seller_id is None
        assert transaction.commission_amount == Decimal('0.00')
        assert transaction.seller_payout == transaction.amount
        assert transaction.amount == Decimal('5.00')

    def test_cannot_boost_someone_elses_listing(
            self, other_seller, seller, factory, as_principal):
        package = factory.boost_package()
        product = factory.product(seller)
        with pytest.raises(ForbiddenError):
            boosts.purchase_boost(
                as_principal(other_seller), package.id,
                product_id=product.id)

    def test_buyers_cannot_boost(self, buyer, seller, factory, as_principal):
        package = factory.boost_package()
        product = factory.product(seller)
        with pytest.raises(ForbiddenError):
            boosts.purchase_boost(
                as_principal(buyer), package.id, product_id=product.id)

    def test_exactly_one_item(self, seller, factory, as_principal):
        package = factory.boost_package()
        with pytest.raises(ValidationError):
            boosts.purchase_boost(as_principal(seller), package.id)


class TestBoostActivation:

    def test_webhook_activates_once(self, seller, boost, pay):
        purchase, _, product = boost

        first = pay(purchase.payment_reference, '5.00')
        second = pay(purchase.payment_reference)

        assert first['changed'] is True
        assert second['changed'] is False
        boosted = BoostedItem.query.filter_by(product_id=product.id).one()
        assert boosted.is_active is True
        assert (boosted.ends_at - boosted.starts_at).days == 7
        transaction = Transaction.query.filter_by(
            boost_purchase_id=purchase.id).one()
        assert transaction.status == TransactionStatus.PAID
        assert Notification.query.filter_by(
            user_id=seller.id, type='boost_payment_confirmed').count() == 1

    def test_new_boost_replaces_active_one(
            self, seller, boost, factory, pay, as_principal):
        purchase, _, product = boost
        pay(purchase.payment_reference)
        package = factory.boost_package(price='9.00', days=14)
        again, _ = boosts.purchase_boost(
            as_principal(seller), package.id, product_id=product.id)
        pay(again.payment_reference)

        active = BoostedItem.query.filter_by(
            product_id=product.id, is_active=True).all()
        assert len(active) == 1
        assert (active[0].ends_at - active[0].starts_at).days == 14

    def test_admin_activation(self, admin, boost, as_principal):
        purchase, _, _ = boost
        activated, changed = boosts.activate_boost(
            as_principal(admin), purchase.id)
        assert changed is True
        assert activated.status == BoostPurchaseStatus.PAID
        assert activated.boosted_item_id is not None

    def test_seller_cannot_self_activate(self, seller, boost, as_principal):
        purchase, _, _ = boost
        with pytest.raises(ForbiddenError):
            boosts.activate_boost(as_principal(seller), purchase.id)

    def test_boost_money_never_moves_through_escrow(
            self, admin, boost, pay, as_principal):
        purchase, _, _ = boost
        transaction = Transaction.query.filter_by(
            boost_purchase_id=purchase.id).one()
        with pytest.raises(ValidationError):
            escrow.confirm_transaction_payment(
                as_principal(admin), transaction.id)

        pay(purchase.payment_reference)
        with pytest.raises(ValidationError):
            escrow.release_transaction(as_principal(admin), transaction.id)
