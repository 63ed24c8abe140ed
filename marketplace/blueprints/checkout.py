from flask import Blueprint, jsonify, request
from flask_login import login_required
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import (
    booking_to_dict,
    cart_item_to_dict,
    order_to_dict,
    session_to_dict,
)
from marketplace.services import checkout as checkout_service
from marketplace.services.purchase_requirements import can_purchase
from marketplace.utils import parse_datetime, request_payload

bp = Blueprint('checkout', __name__)


@bp.route('/purchase-requirements', methods=['GET'])
@login_required
@role_required('buyer')
def purchase_requirements():
    args = request.args
    check = can_purchase(
        current_principal().id,
        product_id=args.get('product_id', type=int),
        service_id=args.get('service_id', type=int),
        variant_id=args.get('variant_id', type=int),
        package_id=args.get('package_id', type=int),
        quantity=args.get('quantity', type=int),
        quote_id=args.get('quote_id', type=int),
    )
    return jsonify(check.to_dict())


@bp.route('/cart', methods=['GET'])
@login_required
@role_required('buyer')
def get_cart():
    items = checkout_service.list_cart(current_principal())
    return jsonify({'items': [cart_item_to_dict(i) for i in items]})


@bp.route('/cart', methods=['POST'])
@login_required
@role_required('buyer')
def add_to_cart():
    data = request_payload()
    item = checkout_service.add_to_cart(
        current_principal(),
        data.get('variant_id'),
        quantity=data.get('quantity', 1))
    return jsonify({'item': cart_item_to_dict(item)}), 201


@bp.route('/cart/<int:cart_item_id>', methods=['DELETE'])
@login_required
@role_required('buyer')
def remove_cart_item(cart_item_id):
    checkout_service.remove_cart_item(current_principal(), cart_item_id)
    return jsonify({'success': True})


@bp.route('/checkout', methods=['POST'])
@login_required
@role_required('buyer')
def checkout():
    data = request_payload()
    result = checkout_service.checkout(
        current_principal(),
        payment_method=data.get('payment_method'),
        shipping_address_id=data.get('shipping_address_id'),
        shipping_cost=data.get('shipping_cost', 0),
        bank_account_id=data.get('bank_account_id'),
        payment_slip_url=data.get('payment_slip_url'),
        notes=data.get('notes'),
    )
    return jsonify({
        'checkout_session': session_to_dict(result.session),
        'orders': [order_to_dict(o) for o in result.orders],
        'redirect': result.redirect,
    }), 201


@bp.route('/bookings', methods=['POST'])
@login_required
@role_required('buyer')
def book_service():
    data = request_payload()
    booking = checkout_service.book_service(
        current_principal(),
        package_id=data.get('package_id'),
        payment_method=data.get('payment_method'),
        quantity=data.get('quantity', 1),
        quote_id=data.get('quote_id'),
        scheduled_at=parse_datetime(data.get('scheduled_at'), 'scheduled_at'),
        bank_account_id=data.get('bank_account_id'),
        payment_slip_url=data.get('payment_slip_url'),
        notes=data.get('notes'),
    )
    return jsonify({'booking': booking_to_dict(booking)}), 201


@bp.route('/bookings/<int:booking_id>/payment', methods=['GET'])
@login_required
@role_required('buyer')
def booking_payment(booking_id):
    redirect = checkout_service.booking_payment_redirect(
        current_principal(), booking_id)
    return jsonify({'redirect': redirect})
