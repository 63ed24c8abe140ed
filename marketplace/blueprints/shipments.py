from flask import Blueprint, jsonify
from flask_login import login_required
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import order_to_dict, shipment_to_dict
from marketplace.services import consolidation
from marketplace.utils import request_payload

bp = Blueprint('shipments', __name__)


@bp.route('/shipments/ready', methods=['GET'])
@login_required
@role_required('admin')
def ready_to_ship():
    rows = consolidation.list_ready_to_ship(current_principal())
    orders = []
    for row in rows:
        data = order_to_dict(row['order'])
        data['checkout_session_incomplete'] = row[
            'checkout_session_incomplete']
        orders.append(data)
    return jsonify({'orders': orders})


@bp.route('/shipments', methods=['GET'])
@login_required
@role_required('admin')
def list_shipments():
    items = consolidation.list_shipments(current_principal())
    return jsonify({'shipments': [shipment_to_dict(s) for s in items]})


@bp.route('/shipments/consolidate', methods=['POST'])
@login_required
@role_required('admin')
def consolidate():
    data = request_payload()
    shipment = consolidation.consolidate_orders(
        current_principal(),
        data.get('order_ids') or [],
        override_incomplete=bool(data.get('override_incomplete')),
        override_reason=data.get('override_reason'),
    )
    return jsonify({'shipment': shipment_to_dict(shipment)}), 201


@bp.route('/shipments/<int:shipment_id>/retry-carrier', methods=['POST'])
@login_required
@role_required('admin')
def retry_carrier(shipment_id):
    shipment = consolidation.retry_carrier_booking(
        current_principal(), shipment_id)
    return jsonify({'shipment': shipment_to_dict(shipment)})


@bp.route('/shipments/<int:shipment_id>/carrier-paid', methods=['POST'])
@login_required
@role_required('admin')
def carrier_paid(shipment_id):
    shipment = consolidation.mark_carrier_paid(
        current_principal(), shipment_id)
    return jsonify({'shipment': shipment_to_dict(shipment)})
