from datetime import datetime, timedelta
from decimal import Decimal
from marketplace.extensions import db
from marketplace.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.models import (
    BoostedItem,
    BoostPackage,
    BoostPurchase,
    BoostPurchaseStatus,
    PaymentMethod,
    Product,
    Service,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.notification_service import notify
from marketplace.services.payment_gateway import (
    build_redirect,
    new_payment_reference,
)
from marketplace.services.unit_of_work import lock, unit_of_work
from marketplace.utils import money
import logging

logger = logging.getLogger(__name__)


def list_boost_packages():
    return (
        BoostPackage.query
        .filter_by(is_active=True)
        .order_by(BoostPackage.price)
        .all()
    )


def _seller_item(principal, product_id, service_id):
    if bool(product_id) == bool(service_id):
        raise ValidationError('Provide exactly one of product_id or service_id')
    model = Product if product_id else Service
    item = db.session.get(model, product_id or service_id)
    if item is None:
        raise NotFoundError(model.__name__, product_id or service_id)
    if item.seller_id != principal.id:
        raise ForbiddenError('You can only boost your own listings')
    return item


def purchase_boost(principal, package_id, product_id=None, service_id=None):
    """Start a boost purchase. Returns (purchase, redirect)."""
    if not principal.is_seller:
        raise ForbiddenError('Only sellers can buy boosts')
    package = db.session.get(BoostPackage, package_id)
    if package is None or not package.is_active:
        raise NotFoundError('Boost package', package_id)
    item = _seller_item(principal, product_id, service_id)
    amount = money(package.price)

    with unit_of_work() as uow:
        purchase = uow.add(BoostPurchase(
            seller_id=principal.id,
            package_id=package.id,
            product_id=product_id,
            service_id=service_id,
            amount=amount,
            payment_reference=new_payment_reference('BST'),
            status=BoostPurchaseStatus.PENDING,
        ))
        uow.flush()
        # The platform is the payee; no commission split applies.
        uow.add(Transaction(
            type=TransactionType.BOOST,
            boost_purchase_id=purchase.id,
            buyer_id=principal.id,
            seller_id=None,
            amount=amount,
            commission_rate=Decimal('0.00'),
            commission_amount=Decimal('0.00'),
            seller_payout=amount,
            payment_method=PaymentMethod.IPG,
            status=TransactionStatus.PENDING,
        ))
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='BOOST_PURCHASE',
            target_type='BOOST_PURCHASE',
            target_id=purchase.id,
            payload={'package_id': package.id, 'item': item.name},
            commit=False)

    logger.info(
        "Boost purchase %s started by seller %s", purchase.id, principal.id)
    return purchase, build_redirect(purchase.payment_reference, amount)


def activate_boost(principal, purchase_id):
    """Mark a boost paid and start it. Returns (purchase, changed).

    ``principal`` is None when called from the payment webhook.
    """
    if principal is not None and not principal.is_admin:
        raise ForbiddenError('Admin access required')
    now = datetime.utcnow()
    with unit_of_work() as uow:
        purchase = lock(BoostPurchase, purchase_id, 'Boost purchase')
        if purchase.status == BoostPurchaseStatus.PAID:
            return purchase, False
        count = (
            BoostPurchase.query
            .filter(
                BoostPurchase.id == purchase.id,
                BoostPurchase.status == BoostPurchaseStatus.PENDING)
            .update(
                {'status': BoostPurchaseStatus.PAID, 'paid_at': now},
                synchronize_session='fetch')
        )
        if not count:
            raise ValidationError(
                f'Boost purchase is {purchase.status.value}')

        item_filter = (
            {'product_id': purchase.product_id} if purchase.product_id
            else {'service_id': purchase.service_id})
        BoostedItem.query.filter_by(is_active=True, **item_filter).update(
            {'is_active': False}, synchronize_session='fetch')
        boosted = uow.add(BoostedItem(
            starts_at=now,
            ends_at=now + timedelta(days=purchase.package.duration_days),
            is_active=True,
            **item_filter))
        uow.flush()
        purchase.boosted_item_id = boosted.id

        Transaction.query.filter(
            Transaction.boost_purchase_id == purchase.id,
            Transaction.status == TransactionStatus.PENDING).update(
            {'status': TransactionStatus.PAID, 'escrow_at': now},
            synchronize_session='fetch')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='BOOST_ACTIVATE',
            target_type='BOOST_PURCHASE',
            target_id=purchase.id,
            payload={'boosted_item_id': boosted.id, 'ends_at': boosted.ends_at},
            commit=False)
        uow.after_commit(
            notify,
            purchase.seller_id,
            'boost_payment_confirmed',
            'Boost active',
            f'Your boost is live until {boosted.ends_at:%Y-%m-%d}.',
            {'boost_purchase_id': purchase.id})

    logger.info("Boost purchase %s activated", purchase.id)
    return purchase, True
