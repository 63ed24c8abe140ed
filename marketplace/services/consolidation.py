"""Admin shipment consolidation.

Groups ready orders for one buyer and one destination into a single carrier
shipment. The carrier is called before the database transaction opens; a
carrier failure leaves the shipment ``pending`` for a later retry but the
orders still move to ``shipped``.
"""
from datetime import datetime
from decimal import Decimal
from flask import current_app
from marketplace.extensions import db
from marketplace.errors import (
    ForbiddenError,
    IncompleteCheckoutSessionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.models import (
    CarrierPaymentStatus,
    ConsolidatedShipment,
    Order,
    OrderStatus,
    ShipmentStatus,
    ShippingAddress,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.carrier import (
    CarrierError,
    ShipmentRequest,
    get_carrier_client,
)
from marketplace.services.notification_service import notify
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
from marketplace.utils import money
import logging

logger = logging.getLogger(__name__)

CONSOLIDATABLE_STATUSES = (OrderStatus.PAID, OrderStatus.PROCESSING)

SHIPMENT_TRANSITIONS = {
    ShipmentStatus.PENDING: (ShipmentStatus.PICKED_UP, ShipmentStatus.CANCELLED),
    ShipmentStatus.PICKED_UP: (ShipmentStatus.IN_TRANSIT,),
    ShipmentStatus.IN_TRANSIT: (ShipmentStatus.DELIVERED,),
}


def _require_admin(principal):
    if principal is None or not principal.is_admin:
        raise ForbiddenError('Admin access required')


def get_shipment(shipment_id):
    shipment = db.session.get(ConsolidatedShipment, shipment_id)
    if shipment is None:
        raise NotFoundError('Shipment', shipment_id)
    return shipment


def incomplete_sessions(orders):
    """Checkout session ids with a live sibling order that is not ready."""
    session_ids = {o.checkout_session_id for o in orders
                   if o.checkout_session_id}
    if not session_ids:
        return []
    selected = {o.id for o in orders}
    blocking = (
        Order.query
        .filter(
            Order.checkout_session_id.in_(session_ids),
            Order.status != OrderStatus.CANCELLED,
            ~Order.id.in_(selected),
            Order.ready_to_ship.is_(False))
        .all()
    )
    return sorted({o.checkout_session_id for o in blocking})


def _validate_orders(orders, order_ids):
    found = {o.id for o in orders}
    missing = [i for i in order_ids if i not in found]
    if missing:
        raise NotFoundError('Order', missing[0])

    for order in orders:
        if order.consolidated_shipment_id is not None:
            raise ValidationError(
                f'Order #{order.id} is already consolidated',
                field='order_ids')
        if order.status not in CONSOLIDATABLE_STATUSES:
            raise InvalidTransitionError(
                f'Order #{order.id} is not paid or processing',
                current_status=order.status,
                allowed=[])
        if not order.ready_to_ship:
            raise ValidationError(
                f'Order #{order.id} is not ready to ship', field='order_ids')

    if len({o.buyer_id for o in orders}) > 1:
        raise ValidationError(
            'All orders must belong to the same buyer', field='order_ids')
    if len({o.shipping_address_id for o in orders}) > 1:
        raise ValidationError(
            'All orders must ship to the same address', field='order_ids')


def _totals(orders):
    default_weight = Decimal(
        str(current_app.config['DEFAULT_ITEM_WEIGHT_KG']))
    weight = sum(
        (Decimal(str(o.product_weight)) if o.product_weight is not None
         else default_weight) * o.quantity
        for o in orders)
    shipping = sum((money(o.shipping_cost) for o in orders), Decimal('0'))
    declared = sum((money(o.total_amount) for o in orders), Decimal('0'))
    return weight, money(shipping), money(declared)


def _consignee(address_id):
    address = db.session.get(ShippingAddress, address_id) \
        if address_id else None
    if address is None:
        return {}
    return {
        'name': address.recipient_name,
        'phone': address.phone,
        'address_line': address.address_line,
        'city': address.city,
        'postal_code': address.postal_code,
        'country': address.country,
    }


def _book_carrier(reference, weight, pieces, address_id, declared):
    """Returns (CarrierShipment or None, error message or None)."""
    request = ShipmentRequest(
        reference=reference,
        weight_kg=weight,
        pieces=pieces,
        description=f'Marketplace consolidated shipment ({pieces} items)',
        consignee=_consignee(address_id),
        declared_value=declared)
    try:
        return get_carrier_client().create_shipment(request), None
    except CarrierError as e:
        logger.warning(
            "Carrier booking failed for %s: %s", reference, e)
        return None, str(e)


def consolidate_orders(
        principal,
        order_ids,
        override_incomplete=False,
        override_reason=None):
    _require_admin(principal)
    try:
        order_ids = sorted({int(i) for i in order_ids or []})
    except (TypeError, ValueError):
        raise ValidationError(
            'order_ids must be a list of integers', field='order_ids')
    if not order_ids:
        raise ValidationError('No orders selected', field='order_ids')
    if override_incomplete and not (override_reason or '').strip():
        raise ValidationError(
            'A reason is required to override an incomplete checkout '
            'session',
            field='override_reason')

    # Preconditions, read before anything external is touched.
    orders = Order.query.filter(Order.id.in_(order_ids)).all()
    _validate_orders(orders, order_ids)
    blocking = incomplete_sessions(orders)
    if blocking and not override_incomplete:
        raise IncompleteCheckoutSessionError(blocking)

    weight, shipping, declared = _totals(orders)
    buyer_id = orders[0].buyer_id
    address_id = orders[0].shipping_address_id
    reference = 'CONS-' + '-'.join(str(i) for i in order_ids)
    booked, carrier_error = _book_carrier(
        reference, weight, len(orders), address_id, declared)

    now = datetime.utcnow()
    try:
        with unit_of_work() as uow:
            # Re-read under lock; a seller may have moved an order.
            orders = (
                Order.query
                .filter(Order.id.in_(order_ids))
                .populate_existing()
                .with_for_update()
                .all()
            )
            _validate_orders(orders, order_ids)
            blocking = incomplete_sessions(orders)
            if blocking and not override_incomplete:
                raise IncompleteCheckoutSessionError(blocking)

            shipment = uow.add(ConsolidatedShipment(
                buyer_id=buyer_id,
                shipping_address_id=address_id,
                order_count=len(orders),
                total_weight=weight,
                total_shipping_cost=shipping,
                carrier_awb=booked.awb_id if booked else None,
                carrier_label_url=booked.label_url if booked else None,
                carrier_cost=booked.cost if booked else None,
                carrier_error=carrier_error,
                status=(
                    ShipmentStatus.PICKED_UP if booked
                    else ShipmentStatus.PENDING),
                override_incomplete=bool(blocking and override_incomplete),
                override_reason=override_reason if blocking else None,
                created_by=principal.id,
            ))
            uow.flush()

            values = {
                'status': OrderStatus.SHIPPED,
                'consolidated_shipment_id': shipment.id,
                'shipped_at': now,
            }
            if booked:
                values['tracking_number'] = booked.awb_id
            count = (
                Order.query
                .filter(
                    Order.id.in_(order_ids),
                    Order.status.in_(list(CONSOLIDATABLE_STATUSES)),
                    Order.ready_to_ship.is_(True),
                    Order.consolidated_shipment_id.is_(None))
                .update(values, synchronize_session='fetch')
            )
            if count != len(order_ids):
                raise InvalidTransitionError(
                    'Orders changed while consolidating; nothing was shipped',
                    current_status=None,
                    allowed=[])

            if blocking:
                logger.warning(
                    "Consolidating %s with incomplete checkout sessions %s "
                    "(override by admin %s: %s)",
                    order_ids, blocking, principal.id, override_reason)

            actor_id, actor_role = actor_fields(principal)
            log_audit(
                actor_id=actor_id,
                actor_role=actor_role,
                action='SHIPMENT_CONSOLIDATE',
                target_type='CONSOLIDATED_SHIPMENT',
                target_id=shipment.id,
                payload={
                    'order_ids': order_ids,
                    'total_weight': weight,
                    'carrier_awb': shipment.carrier_awb,
                    'carrier_error': carrier_error,
                    'override_incomplete': shipment.override_incomplete,
                    'override_reason': shipment.override_reason,
                    'incomplete_sessions': blocking,
                },
                commit=False)
            uow.after_commit(
                notify,
                buyer_id,
                'order_shipped',
                'Your orders have shipped',
                f'{len(order_ids)} order(s) were shipped together.',
                {
                    'shipment_id': shipment.id,
                    'order_ids': order_ids,
                    'tracking_number': shipment.carrier_awb,
                })
            for seller_id in sorted({o.seller_id for o in orders}):
                uow.after_commit(
                    notify,
                    seller_id,
                    'order_shipped',
                    'Orders shipped',
                    'Your ready orders were handed to the carrier.',
                    {'shipment_id': shipment.id})
    except Exception:
        if booked is not None:
            # The carrier booking already exists; keep a record of it.
            logger.warning(
                "Consolidation of %s rolled back after carrier booked AWB %s",
                order_ids, booked.awb_id)
            actor_id, actor_role = actor_fields(principal)
            log_audit(
                actor_id=actor_id,
                actor_role=actor_role,
                action='SHIPMENT_CARRIER_ORPHANED',
                target_type='CONSOLIDATED_SHIPMENT',
                target_id=None,
                payload={
                    'order_ids': order_ids,
                    'reference': reference,
                    'carrier_awb': booked.awb_id,
                    'carrier_label_url': booked.label_url,
                    'carrier_cost': booked.cost,
                },
                commit=True)
        raise

    logger.info(
        "Consolidated shipment %s created for orders %s (status %s)",
        shipment.id, order_ids, shipment.status.value)
    return shipment


def retry_carrier_booking(principal, shipment_id):
    """Book the carrier again for a shipment left pending by a failure."""
    _require_admin(principal)
    shipment = get_shipment(shipment_id)
    if shipment.status != ShipmentStatus.PENDING or shipment.carrier_awb:
        raise InvalidTransitionError(
            'Only pending shipments without a carrier booking can be retried',
            current_status=shipment.status,
            allowed=SHIPMENT_TRANSITIONS.get(shipment.status, ()))

    orders = shipment.orders.all()
    _, _, declared = _totals(orders)
    booked, carrier_error = _book_carrier(
        f'CONS-RETRY-{shipment.id}',
        shipment.total_weight,
        shipment.order_count,
        shipment.shipping_address_id,
        declared)

    with unit_of_work():
        if booked is None:
            shipment = lock(ConsolidatedShipment, shipment_id, 'Shipment')
            shipment.carrier_error = carrier_error
        else:
            shipment = guarded_transition(
                ConsolidatedShipment,
                shipment_id,
                [ShipmentStatus.PENDING],
                {
                    'status': ShipmentStatus.PICKED_UP,
                    'carrier_awb': booked.awb_id,
                    'carrier_label_url': booked.label_url,
                    'carrier_cost': booked.cost,
                    'carrier_error': None,
                },
                SHIPMENT_TRANSITIONS,
                'Shipment')
            Order.query.filter_by(
                consolidated_shipment_id=shipment.id).update(
                {'tracking_number': booked.awb_id},
                synchronize_session='fetch')
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='SHIPMENT_CARRIER_RETRY',
            target_type='CONSOLIDATED_SHIPMENT',
            target_id=shipment.id,
            payload={
                'carrier_awb': booked.awb_id if booked else None,
                'carrier_error': carrier_error,
            },
            commit=False)
    return shipment


def mark_carrier_paid(principal, shipment_id):
    _require_admin(principal)
    with unit_of_work():
        count = (
            ConsolidatedShipment.query
            .filter(
                ConsolidatedShipment.id == shipment_id,
                ConsolidatedShipment.carrier_payment_status
                == CarrierPaymentStatus.UNPAID)
            .update(
                {
                    'carrier_payment_status': CarrierPaymentStatus.PAID,
                    'carrier_paid_at': datetime.utcnow(),
                },
                synchronize_session='fetch')
        )
        shipment = get_shipment(shipment_id)
        if not count:
            raise InvalidTransitionError(
                'Carrier payment is already recorded',
                current_status=shipment.carrier_payment_status,
                allowed=[])
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='SHIPMENT_CARRIER_PAID',
            target_type='CONSOLIDATED_SHIPMENT',
            target_id=shipment.id,
            payload={'carrier_cost': shipment.carrier_cost},
            commit=False)
    return shipment


def list_ready_to_ship(principal):
    """Ready, unconsolidated orders with a per-order incomplete-session flag."""
    _require_admin(principal)
    orders = (
        Order.query
        .filter(
            Order.ready_to_ship.is_(True),
            Order.status.in_(list(CONSOLIDATABLE_STATUSES)),
            Order.consolidated_shipment_id.is_(None))
        .order_by(Order.buyer_id, Order.shipping_address_id, Order.id)
        .all()
    )
    rows = []
    for order in orders:
        rows.append({
            'order': order,
            'checkout_session_incomplete': bool(
                incomplete_sessions([order])),
        })
    return rows


def list_shipments(principal, status=None):
    _require_admin(principal)
    query = ConsolidatedShipment.query
    if status is not None:
        query = query.filter(ConsolidatedShipment.status == status)
    return query.order_by(ConsolidatedShipment.created_at.desc()).all()
