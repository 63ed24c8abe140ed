"""Escrow transaction ledger.

pending -> escrow -> released | refunded. Every move is a status-guarded
UPDATE, so repeating a confirmation (for example a re-delivered payment
webhook) changes nothing.
"""
from datetime import datetime
from marketplace.extensions import db
from marketplace.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.models import (
    Booking,
    BookingStatus,
    BoostPurchase,
    CheckoutSession,
    CheckoutSessionStatus,
    Order,
    OrderStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.notification_service import notify
from marketplace.services.payment_gateway import (
    WEBHOOK_SUCCESS,
    verify_webhook_secret,
)
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
from marketplace.utils import money, parse_money
import logging

logger = logging.getLogger(__name__)

TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING: (
        TransactionStatus.ESCROW,
        TransactionStatus.PAID,
        TransactionStatus.REFUNDED,
    ),
    TransactionStatus.ESCROW: (
        TransactionStatus.RELEASED,
        TransactionStatus.REFUNDED,
    ),
}

RELEASABLE_ORDER_STATUSES = (OrderStatus.SHIPPED, OrderStatus.DELIVERED)
RELEASABLE_BOOKING_STATUSES = (BookingStatus.COMPLETED,)
PAYABLE_BOOKING_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.PENDING_PAYMENT,
)


def require_admin(principal):
    if principal is None or not principal.is_admin:
        raise ForbiddenError('Admin access required')


def get_transaction(transaction_id):
    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError('Transaction', transaction_id)
    return transaction


def _escrow_pending(now, **parent):
    """Move the parent's pending transactions to escrow. Returns the count."""
    return (
        Transaction.query
        .filter_by(status=TransactionStatus.PENDING, **parent)
        .update(
            {'status': TransactionStatus.ESCROW, 'escrow_at': now},
            synchronize_session='fetch')
    )


def refund_parent_transactions(now, **parent):
    """Refund every unsettled transaction of an order or booking."""
    transactions = (
        Transaction.query
        .filter(
            Transaction.status.in_(
                [TransactionStatus.PENDING, TransactionStatus.ESCROW]))
        .filter_by(**parent)
        .all()
    )
    for transaction in transactions:
        guarded_transition(
            Transaction,
            transaction.id,
            [TransactionStatus.PENDING, TransactionStatus.ESCROW],
            {
                'status': TransactionStatus.REFUNDED,
                'refunded_at': now,
                'refunded_amount': transaction.amount,
            },
            TRANSACTION_TRANSITIONS,
            'Transaction')
    return transactions


def _mark_session_paid_if_complete(session_id, now):
    if session_id is None:
        return False
    unpaid = (
        Order.query
        .filter(
            Order.checkout_session_id == session_id,
            Order.status == OrderStatus.PENDING_PAYMENT)
        .count()
    )
    if unpaid:
        return False
    return bool(
        CheckoutSession.query
        .filter(
            CheckoutSession.id == session_id,
            CheckoutSession.status == CheckoutSessionStatus.PENDING_PAYMENT)
        .update(
            {'status': CheckoutSessionStatus.PAID, 'paid_at': now},
            synchronize_session='fetch')
    )


def _pay_order(uow, order_id, now):
    """pending_payment -> paid plus escrow. Returns True if anything moved."""
    moved = (
        Order.query
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.PENDING_PAYMENT)
        .update({'status': OrderStatus.PAID}, synchronize_session='fetch')
    )
    escrowed = _escrow_pending(now, order_id=order_id)
    if moved:
        order = db.session.get(Order, order_id)
        uow.after_commit(
            notify,
            order.seller_id,
            'order_paid',
            'Order paid',
            f'Payment for order #{order.id} is confirmed and held in escrow.',
            {'order_id': order.id})
    return bool(moved or escrowed)


def _pay_booking(uow, booking_id, now):
    moved = (
        Booking.query
        .filter(
            Booking.id == booking_id,
            Booking.status.in_(list(PAYABLE_BOOKING_STATUSES)))
        .update({'status': BookingStatus.PAID}, synchronize_session='fetch')
    )
    escrowed = _escrow_pending(now, booking_id=booking_id)
    if moved:
        booking = db.session.get(Booking, booking_id)
        for user_id in (booking.buyer_id, booking.seller_id):
            uow.after_commit(
                notify,
                user_id,
                'payment_confirmed',
                'Booking paid',
                f'Payment for booking #{booking.id} is confirmed.',
                {'booking_id': booking.id})
    return bool(moved or escrowed)


def confirm_transaction_payment(principal, transaction_id):
    """Admin attests that money for a transaction has arrived."""
    require_admin(principal)
    now = datetime.utcnow()
    with unit_of_work() as uow:
        transaction = lock(Transaction, transaction_id, 'Transaction')
        if transaction.type == TransactionType.BOOST:
            raise ValidationError(
                'Boost payments are confirmed by activating the boost')

        if transaction.order_id:
            order = lock(Order, transaction.order_id, 'Order')
            if order.status not in (
                    OrderStatus.PENDING_PAYMENT, OrderStatus.PAID):
                raise InvalidTransitionError(
                    'Order is not awaiting payment',
                    current_status=order.status)
        else:
            booking = lock(Booking, transaction.booking_id, 'Booking')
            if booking.status not in PAYABLE_BOOKING_STATUSES + (
                    BookingStatus.PAID,):
                raise InvalidTransitionError(
                    'Booking is not awaiting payment',
                    current_status=booking.status,
                    allowed=[])

        transaction = guarded_transition(
            Transaction,
            transaction_id,
            [TransactionStatus.PENDING],
            {'status': TransactionStatus.ESCROW, 'escrow_at': now},
            TRANSACTION_TRANSITIONS,
            'Transaction')
        if transaction.order_id:
            _pay_order(uow, transaction.order_id, now)
            _mark_session_paid_if_complete(
                transaction.order.checkout_session_id, now)
        else:
            _pay_booking(uow, transaction.booking_id, now)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='PAYMENT_CONFIRM',
            target_type='TRANSACTION',
            target_id=transaction.id,
            payload={'amount': transaction.amount},
            commit=False)

    logger.info("Transaction %s moved to escrow", transaction.id)
    return transaction


def confirm_order_payment(principal, order_id):
    require_admin(principal)
    now = datetime.utcnow()
    with unit_of_work() as uow:
        order = guarded_transition(
            Order,
            order_id,
            [OrderStatus.PENDING_PAYMENT],
            {'status': OrderStatus.PAID},
            {OrderStatus.PENDING_PAYMENT: (OrderStatus.PAID,)},
            'Order')
        _escrow_pending(now, order_id=order.id)
        _mark_session_paid_if_complete(order.checkout_session_id, now)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='PAYMENT_CONFIRM_ORDER',
            target_type='ORDER',
            target_id=order.id,
            payload={'total_amount': order.total_amount},
            commit=False)
        for user_id in (order.buyer_id, order.seller_id):
            uow.after_commit(
                notify,
                user_id,
                'order_paid',
                'Order paid',
                f'Payment for order #{order.id} is confirmed.',
                {'order_id': order.id})
    return order


def _check_amount(received, expected, reference):
    if received is None or received == '':
        return
    received = parse_money(received, 'amount', allow_zero=True)
    if received != money(expected):
        logger.warning(
            "Webhook amount mismatch for %s: received %s expected %s",
            reference, received, expected)
        raise ValidationError(
            'Payment amount does not match', field='amount')


def handle_payment_webhook(payload, secret):
    """Apply a gateway callback ``{reference, status, amount}``.

    Only SUCCESS callbacks move money state. Returns a small summary;
    ``changed`` is False for repeats of an already applied callback.
    """
    if not verify_webhook_secret(secret):
        logger.warning("Rejected payment webhook with a bad secret")
        raise ForbiddenError('Invalid webhook secret')

    payload = payload or {}
    reference = payload.get('reference')
    status = str(payload.get('status') or '').upper()
    amount = payload.get('amount')
    if not reference:
        raise ValidationError('reference is required', field='reference')
    if status != WEBHOOK_SUCCESS:
        logger.info(
            "Ignoring payment webhook %s with status %s", reference, status)
        return {'reference': reference, 'processed': False, 'changed': False}

    now = datetime.utcnow()
    session = CheckoutSession.query.filter_by(
        payment_reference=reference).first()
    if session is not None:
        with unit_of_work() as uow:
            session = lock(CheckoutSession, session.id, 'Checkout session')
            _check_amount(amount, session.total_amount, reference)
            changed = False
            for order in session.orders.filter(
                    Order.status != OrderStatus.CANCELLED).all():
                changed = _pay_order(uow, order.id, now) or changed
            changed = _mark_session_paid_if_complete(session.id, now) \
                or changed
            if changed:
                log_audit(
                    action='PAYMENT_WEBHOOK',
                    target_type='CHECKOUT_SESSION',
                    target_id=session.id,
                    payload={'reference': reference, 'amount': amount},
                    commit=False)
                uow.after_commit(
                    notify,
                    session.buyer_id,
                    'payment_confirmed',
                    'Payment received',
                    'Your payment was received and is held in escrow.',
                    {'checkout_session_id': session.id})
        logger.info(
            "Webhook %s applied to checkout session %s (changed=%s)",
            reference, session.id, changed)
        return {'reference': reference, 'processed': True, 'changed': changed}

    booking = Booking.query.filter_by(payment_reference=reference).first()
    if booking is not None:
        with unit_of_work() as uow:
            booking = lock(Booking, booking.id, 'Booking')
            _check_amount(amount, booking.total_amount, reference)
            changed = _pay_booking(uow, booking.id, now)
            if changed:
                log_audit(
                    action='PAYMENT_WEBHOOK',
                    target_type='BOOKING',
                    target_id=booking.id,
                    payload={'reference': reference, 'amount': amount},
                    commit=False)
        return {'reference': reference, 'processed': True, 'changed': changed}

    purchase = BoostPurchase.query.filter_by(
        payment_reference=reference).first()
    if purchase is not None:
        from marketplace.services.boosts import activate_boost

        _check_amount(amount, purchase.amount, reference)
        _, changed = activate_boost(None, purchase.id)
        return {'reference': reference, 'processed': True, 'changed': changed}

    raise NotFoundError('Payment reference', reference)


def _check_releasable(transaction):
    if transaction.type == TransactionType.BOOST:
        raise ValidationError('Boost payments are never released to sellers')
    if transaction.order_id:
        order = db.session.get(Order, transaction.order_id)
        if order.status not in RELEASABLE_ORDER_STATUSES:
            raise InvalidTransitionError(
                'Order must be shipped or delivered before releasing payment',
                current_status=order.status,
                allowed=[])
    else:
        booking = db.session.get(Booking, transaction.booking_id)
        if booking.status not in RELEASABLE_BOOKING_STATUSES:
            raise InvalidTransitionError(
                'Booking must be completed before releasing payment',
                current_status=booking.status,
                allowed=[])


def release_transaction(principal, transaction_id):
    require_admin(principal)
    now = datetime.utcnow()
    with unit_of_work() as uow:
        transaction = lock(Transaction, transaction_id, 'Transaction')
        _check_releasable(transaction)
        transaction = guarded_transition(
            Transaction,
            transaction_id,
            [TransactionStatus.ESCROW],
            {'status': TransactionStatus.RELEASED, 'released_at': now},
            TRANSACTION_TRANSITIONS,
            'Transaction')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='ESCROW_RELEASE',
            target_type='TRANSACTION',
            target_id=transaction.id,
            payload={'seller_payout': transaction.seller_payout},
            commit=False)
        uow.after_commit(
            notify,
            transaction.seller_id,
            'payment_released',
            'Payment released',
            f'{transaction.seller_payout} has been released to you.',
            {'transaction_id': transaction.id})

    logger.info("Transaction %s released", transaction.id)
    return transaction


def release_order_payments(principal, order_id):
    """Release every escrowed transaction of one order.

    Each release commits on its own; transactions not in escrow are skipped.
    """
    require_admin(principal)
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order', order_id)
    if order.status not in RELEASABLE_ORDER_STATUSES:
        raise InvalidTransitionError(
            'Order must be shipped or delivered before releasing payment',
            current_status=order.status,
            allowed=[])

    released = []
    skipped = []
    for transaction in order.transactions.order_by(Transaction.id).all():
        now = datetime.utcnow()
        with unit_of_work() as uow:
            count = (
                Transaction.query
                .filter(
                    Transaction.id == transaction.id,
                    Transaction.status == TransactionStatus.ESCROW)
                .update(
                    {'status': TransactionStatus.RELEASED,
                     'released_at': now},
                    synchronize_session='fetch')
            )
            if count:
                released.append(transaction.id)
                actor_id, actor_role = actor_fields(principal)
                log_audit(
                    actor_id=actor_id,
                    actor_role=actor_role,
                    action='ESCROW_RELEASE',
                    target_type='TRANSACTION',
                    target_id=transaction.id,
                    payload={'order_id': order.id},
                    commit=False)
                uow.after_commit(
                    notify,
                    transaction.seller_id,
                    'payment_released',
                    'Payment released',
                    f'Payment for order #{order.id} has been released.',
                    {'transaction_id': transaction.id})
            else:
                skipped.append(transaction.id)

    logger.info(
        "Order %s release: released=%s skipped=%s",
        order.id, released, skipped)
    return {'released': released, 'skipped': skipped}


def list_transactions(status=None, type=None):
    query = Transaction.query
    if status is not None:
        query = query.filter(Transaction.status == status)
    if type is not None:
        query = query.filter(Transaction.type == type)
    return query.order_by(Transaction.created_at.desc()).all()
