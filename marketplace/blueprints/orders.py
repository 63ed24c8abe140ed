from flask import Blueprint, jsonify, request
from flask_login import login_required
from marketplace.errors import ForbiddenError
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import (
    booking_to_dict,
    notification_to_dict,
    order_to_dict,
    transaction_to_dict,
)
from marketplace.services import orders as order_service
from marketplace.services.notification_service import list_notifications
from marketplace.utils import request_payload

bp = Blueprint('orders', __name__)


@bp.route('/orders', methods=['GET'])
@login_required
def list_orders():
    items = order_service.list_orders(
        current_principal(), status=request.args.get('status'))
    return jsonify({'orders': [order_to_dict(o) for o in items]})


@bp.route('/orders/<int:order_id>', methods=['GET'])
@login_required
def get_order(order_id):
    principal = current_principal()
    order = order_service.get_order(order_id)
    if not principal.is_admin and principal.id not in (
            order.buyer_id, order.seller_id):
        raise ForbiddenError('You are not a party to this order')
    data = order_to_dict(order)
    data['transactions'] = [
        transaction_to_dict(t) for t in order.transactions]
    return jsonify({'order': data})


@bp.route('/bookings/<int:booking_id>', methods=['GET'])
@login_required
def get_booking(booking_id):
    principal = current_principal()
    booking = order_service.get_booking(booking_id)
    if not principal.is_admin and principal.id not in (
            booking.buyer_id, booking.seller_id):
        raise ForbiddenError('You are not a party to this booking')
    return jsonify({'booking': booking_to_dict(booking)})


@bp.route('/orders/<int:order_id>/status', methods=['POST'])
@login_required
@role_required('seller', 'admin')
def update_order_status(order_id):
    data = request_payload()
    order = order_service.update_order_status(
        current_principal(),
        order_id,
        data.get('status'),
        tracking_number=data.get('tracking_number'))
    return jsonify({'order': order_to_dict(order)})


@bp.route('/orders/<int:order_id>/cancel', methods=['POST'])
@login_required
def cancel_order(order_id):
    data = request_payload()
    order = order_service.cancel_order(
        current_principal(), order_id, reason=data.get('reason'))
    return jsonify({'order': order_to_dict(order)})


@bp.route('/orders/<int:order_id>/ready-to-ship', methods=['POST'])
@login_required
@role_required('seller', 'admin')
def mark_ready_to_ship(order_id):
    order = order_service.mark_ready_to_ship(current_principal(), order_id)
    return jsonify({'order': order_to_dict(order)})


@bp.route('/orders/<int:order_id>/delivered', methods=['POST'])
@login_required
@role_required('admin')
def mark_delivered(order_id):
    order = order_service.mark_order_delivered(current_principal(), order_id)
    return jsonify({'order': order_to_dict(order)})


@bp.route('/bookings', methods=['GET'])
@login_required
def list_bookings():
    items = order_service.list_bookings(
        current_principal(), status=request.args.get('status'))
    return jsonify({'bookings': [booking_to_dict(b) for b in items]})


@bp.route('/bookings/<int:booking_id>/status', methods=['POST'])
@login_required
@role_required('seller', 'admin')
def update_booking_status(booking_id):
    data = request_payload()
    booking = order_service.update_booking_status(
        current_principal(), booking_id, data.get('status'))
    return jsonify({'booking': booking_to_dict(booking)})


@bp.route('/bookings/<int:booking_id>/cancel', methods=['POST'])
@login_required
def cancel_booking(booking_id):
    data = request_payload()
    booking = order_service.cancel_booking(
        current_principal(), booking_id, reason=data.get('reason'))
    return jsonify({'booking': booking_to_dict(booking)})


@bp.route('/notifications', methods=['GET'])
@login_required
def notifications():
    unread_only = request.args.get('unread') == '1'
    items = list_notifications(current_principal().id, unread_only)
    return jsonify({
        'notifications': [notification_to_dict(n) for n in items]})
