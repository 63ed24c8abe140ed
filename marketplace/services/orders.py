"""Order and booking lifecycle after checkout.

Orders only reach ``shipped`` through consolidation; the seller table below
deliberately has no path into it.
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
    CheckoutSession,
    CheckoutSessionStatus,
    Order,
    OrderStatus,
    UserRole,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.escrow import refund_parent_transactions
from marketplace.services.notification_service import notify
from marketplace.services.payment_gateway import build_redirect
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
import logging

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    ),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
}

SELLER_ORDER_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: (OrderStatus.CANCELLED,),
    OrderStatus.PAID: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.CANCELLED,),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED,),
}

CANCELLABLE_BY_ROLE = {
    UserRole.BUYER: (OrderStatus.PENDING_PAYMENT,),
    UserRole.SELLER: (
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
    ),
    UserRole.ADMIN: (
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
    ),
}

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING_CONFIRMATION: (
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    ),
    BookingStatus.CONFIRMED: (
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.PAID,
        BookingStatus.CANCELLED,
    ),
    BookingStatus.PENDING_PAYMENT: (
        BookingStatus.PAID,
        BookingStatus.CANCELLED,
    ),
    BookingStatus.PAID: (BookingStatus.ONGOING, BookingStatus.CANCELLED),
    BookingStatus.ONGOING: (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
}

SELLER_BOOKING_TRANSITIONS = {
    BookingStatus.PENDING_CONFIRMATION: (
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    ),
    BookingStatus.CONFIRMED: (
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.CANCELLED,
    ),
    BookingStatus.PENDING_PAYMENT: (BookingStatus.CANCELLED,),
    BookingStatus.PAID: (BookingStatus.ONGOING, BookingStatus.CANCELLED),
    BookingStatus.ONGOING: (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
}

BUYER_CANCELLABLE_BOOKING = (
    BookingStatus.PENDING_CONFIRMATION,
    BookingStatus.CONFIRMED,
    BookingStatus.PENDING_PAYMENT,
)


def _parse_status(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise ValidationError(f'Unknown status: {value}', field='status')


def get_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order', order_id)
    return order


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError('Booking', booking_id)
    return booking


def _check_party(principal, record, noun):
    if principal.is_admin:
        return
    if principal.id not in (record.buyer_id, record.seller_id):
        raise ForbiddenError(f'You are not a party to this {noun}')


def list_orders(principal, status=None):
    query = Order.query
    if principal.is_seller:
        query = query.filter(Order.seller_id == principal.id)
    elif not principal.is_admin:
        query = query.filter(Order.buyer_id == principal.id)
    if status is not None:
        query = query.filter(
            Order.status == _parse_status(OrderStatus, status))
    return query.order_by(Order.created_at.desc()).all()


def list_bookings(principal, status=None):
    query = Booking.query
    if principal.is_seller:
        query = query.filter(Booking.seller_id == principal.id)
    elif not principal.is_admin:
        query = query.filter(Booking.buyer_id == principal.id)
    if status is not None:
        query = query.filter(
            Booking.status == _parse_status(BookingStatus, status))
    return query.order_by(Booking.created_at.desc()).all()


def _cancel_session_if_empty(session_id):
    if session_id is None:
        return False
    live = (
        Order.query
        .filter(
            Order.checkout_session_id == session_id,
            Order.status != OrderStatus.CANCELLED)
        .count()
    )
    if live:
        return False
    return bool(
        CheckoutSession.query
        .filter(
            CheckoutSession.id == session_id,
            CheckoutSession.status != CheckoutSessionStatus.CANCELLED)
        .update(
            {'status': CheckoutSessionStatus.CANCELLED},
            synchronize_session='fetch')
    )


def cancel_order(principal, order_id, reason=None):
    now = datetime.utcnow()
    with unit_of_work() as uow:
        order = lock(Order, order_id, 'Order')
        _check_party(principal, order, 'order')
        if principal.is_buyer and order.buyer_id != principal.id:
            raise ForbiddenError('You are not the buyer of this order')
        if principal.is_seller and order.seller_id != principal.id:
            raise ForbiddenError('You are not the seller of this order')

        allowed_from = CANCELLABLE_BY_ROLE[principal.role]
        order = guarded_transition(
            Order,
            order_id,
            allowed_from,
            {
                'status': OrderStatus.CANCELLED,
                'cancellation_reason': reason,
                'ready_to_ship': False,
            },
            ORDER_TRANSITIONS,
            'Order')
        refunded = refund_parent_transactions(now, order_id=order.id)
        session_cancelled = _cancel_session_if_empty(
            order.checkout_session_id)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='ORDER_CANCEL',
            target_type='ORDER',
            target_id=order.id,
            payload={
                'reason': reason,
                'refunded_transactions': [t.id for t in refunded],
                'session_cancelled': session_cancelled,
            },
            commit=False)
        other_party = (
            order.seller_id if principal.id == order.buyer_id
            else order.buyer_id)
        uow.after_commit(
            notify,
            other_party,
            'order_cancelled',
            'Order cancelled',
            f'Order #{order.id} was cancelled.',
            {'order_id': order.id, 'reason': reason})

    logger.info(
        "Order %s cancelled by %s (%s)", order.id, principal, reason)
    return order


def update_order_status(principal, order_id, status, tracking_number=None):
    """Seller-driven order transitions.

    Admins may use the same entry point; ``shipped`` is never reachable
    from here.
    """
    target = _parse_status(OrderStatus, status)
    if target == OrderStatus.CANCELLED:
        return cancel_order(principal, order_id)
    if target == OrderStatus.SHIPPED:
        raise ValidationError(
            'Orders are shipped through consolidation', field='status')
    if target == OrderStatus.DELIVERED and principal.is_admin:
        return mark_order_delivered(principal, order_id)

    with unit_of_work() as uow:
        order = lock(Order, order_id, 'Order')
        if not principal.is_admin and order.seller_id != principal.id:
            raise ForbiddenError('You are not the seller of this order')

        from_statuses = [
            current for current, targets in SELLER_ORDER_TRANSITIONS.items()
            if target in targets
        ]
        values = {'status': target}
        if target == OrderStatus.DELIVERED:
            values['delivered_at'] = datetime.utcnow()
        if tracking_number:
            values['tracking_number'] = tracking_number
        previous = order.status
        order = guarded_transition(
            Order,
            order_id,
            from_statuses,
            values,
            SELLER_ORDER_TRANSITIONS,
            'Order')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='ORDER_STATUS',
            target_type='ORDER',
            target_id=order.id,
            payload={'from': previous.value, 'to': target.value},
            commit=False)
        uow.after_commit(
            notify,
            order.buyer_id,
            f'order_{target.value}',
            'Order updated',
            f'Your order #{order.id} is now {target.value}.',
            {'order_id': order.id})

    logger.info("Order %s moved %s -> %s", order.id, previous, target)
    return order


def mark_ready_to_ship(principal, order_id):
    with unit_of_work():
        order = lock(Order, order_id, 'Order')
        if not principal.is_admin and order.seller_id != principal.id:
            raise ForbiddenError('You are not the seller of this order')
        if order.ready_to_ship:
            return order
        if order.status != OrderStatus.PROCESSING:
            raise InvalidTransitionError(
                'Order must be processing before it can be marked ready '
                'to ship',
                current_status=order.status,
                allowed=SELLER_ORDER_TRANSITIONS.get(order.status, ()))
        count = (
            Order.query
            .filter(
                Order.id == order_id,
                Order.status == OrderStatus.PROCESSING,
                Order.ready_to_ship.is_(False))
            .update({'ready_to_ship': True}, synchronize_session='fetch')
        )
        if count:
            actor_id, actor_role = actor_fields(principal)
            log_audit(
                actor_id=actor_id,
                actor_role=actor_role,
                action='ORDER_READY_TO_SHIP',
                target_type='ORDER',
                target_id=order.id,
                commit=False)
    db.session.refresh(order)
    return order


def mark_order_delivered(principal, order_id):
    if not principal.is_admin:
        raise ForbiddenError('Admin access required')
    with unit_of_work() as uow:
        order = guarded_transition(
            Order,
            order_id,
            [OrderStatus.SHIPPED],
            {
                'status': OrderStatus.DELIVERED,
                'delivered_at': datetime.utcnow(),
            },
            ORDER_TRANSITIONS,
            'Order')
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='ORDER_DELIVERED',
            target_type='ORDER',
            target_id=order.id,
            commit=False)
        uow.after_commit(
            notify,
            order.buyer_id,
            'order_delivered',
            'Order delivered',
            f'Your order #{order.id} has been delivered.',
            {'order_id': order.id})
    return order


def update_booking_status(principal, booking_id, status):
    target = _parse_status(BookingStatus, status)
    if target == BookingStatus.CANCELLED:
        return cancel_booking(principal, booking_id)
    if target == BookingStatus.PAID:
        raise ValidationError(
            'Bookings are marked paid by payment confirmation',
            field='status')

    with unit_of_work() as uow:
        booking = lock(Booking, booking_id, 'Booking')
        if not principal.is_admin and booking.seller_id != principal.id:
            raise ForbiddenError('You are not the seller of this booking')

        from_statuses = [
            current for current, targets in SELLER_BOOKING_TRANSITIONS.items()
            if target in targets
        ]
        previous = booking.status
        booking = guarded_transition(
            Booking,
            booking_id,
            from_statuses,
            {'status': target},
            SELLER_BOOKING_TRANSITIONS,
            'Booking')

        redirect = None
        if target == BookingStatus.CONFIRMED:
            # A confirmed booking is immediately payable.
            booking = guarded_transition(
                Booking,
                booking_id,
                [BookingStatus.CONFIRMED],
                {'status': BookingStatus.PENDING_PAYMENT},
                SELLER_BOOKING_TRANSITIONS,
                'Booking')
        if booking.status == BookingStatus.PENDING_PAYMENT:
            redirect = build_redirect(
                booking.payment_reference, booking.total_amount)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='BOOKING_STATUS',
            target_type='BOOKING',
            target_id=booking.id,
            payload={'from': previous.value, 'to': booking.status.value},
            commit=False)
        metadata = {'booking_id': booking.id}
        if redirect:
            metadata['payment_url'] = redirect['url']
        uow.after_commit(
            notify,
            booking.buyer_id,
            f'booking_{booking.status.value}',
            'Booking updated',
            f'Your booking #{booking.id} is now '
            f'{booking.status.value.replace("_", " ")}.',
            metadata)

    logger.info(
        "Booking %s moved %s -> %s", booking.id, previous, booking.status)
    return booking


def cancel_booking(principal, booking_id, reason=None):
    now = datetime.utcnow()
    with unit_of_work() as uow:
        booking = lock(Booking, booking_id, 'Booking')
        _check_party(principal, booking, 'booking')
        if principal.is_admin:
            allowed_from = tuple(BOOKING_TRANSITIONS)
        elif principal.id == booking.seller_id:
            allowed_from = tuple(SELLER_BOOKING_TRANSITIONS)
        else:
            allowed_from = BUYER_CANCELLABLE_BOOKING

        booking = guarded_transition(
            Booking,
            booking_id,
            allowed_from,
            {
                'status': BookingStatus.CANCELLED,
                'cancellation_reason': reason,
            },
            BOOKING_TRANSITIONS,
            'Booking')
        refunded = refund_parent_transactions(now, booking_id=booking.id)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='BOOKING_CANCEL',
            target_type='BOOKING',
            target_id=booking.id,
            payload={
                'reason': reason,
                'refunded_transactions': [t.id for t in refunded],
            },
            commit=False)
        other_party = (
            booking.seller_id if principal.id == booking.buyer_id
            else booking.buyer_id)
        uow.after_commit(
            notify,
            other_party,
            'booking_cancelled',
            'Booking cancelled',
            f'Booking #{booking.id} was cancelled.',
            {'booking_id': booking.id, 'reason': reason})

    logger.info("Booking %s cancelled by %s", booking.id, principal)
    return booking
