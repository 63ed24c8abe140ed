from flask import Blueprint, jsonify, request
from flask_login import login_required
from marketplace.errors import ForbiddenError
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import return_to_dict
from marketplace.services import returns as return_service
from marketplace.utils import request_payload

bp = Blueprint('returns', __name__)


@bp.route('/returns', methods=['GET'])
@login_required
def list_returns():
    items = return_service.list_returns(
        current_principal(), status=request.args.get('status'))
    return jsonify({'returns': [return_to_dict(r) for r in items]})


@bp.route('/returns/<int:return_id>', methods=['GET'])
@login_required
def get_return(return_id):
    principal = current_principal()
    item = return_service.get_return(return_id)
    if not principal.is_admin and principal.id not in (
            item.buyer_id, item.seller_id):
        raise ForbiddenError('You are not a party to this return')
    return jsonify({'return': return_to_dict(item)})


@bp.route('/returns', methods=['POST'])
@login_required
@role_required('buyer')
def submit_return():
    data = request_payload()
    item = return_service.submit_return(
        current_principal(),
        data.get('reason'),
        order_id=data.get('order_id'),
        booking_id=data.get('booking_id'),
        description=data.get('description'),
        requested_amount=data.get('requested_amount'),
        evidence_urls=data.get('evidence_urls'),
    )
    return jsonify({'return': return_to_dict(item)}), 201


@bp.route('/returns/<int:return_id>/seller-response', methods=['POST'])
@login_required
@role_required('seller')
def seller_respond(return_id):
    data = request_payload()
    item = return_service.seller_respond(
        current_principal(),
        return_id,
        data.get('seller_status'),
        data.get('response'),
        proposed_amount=data.get('proposed_amount'),
    )
    return jsonify({'return': return_to_dict(item)})


@bp.route('/returns/<int:return_id>/resolve', methods=['POST'])
@login_required
@role_required('admin')
def admin_resolve(return_id):
    data = request_payload()
    item = return_service.admin_resolve(
        current_principal(),
        return_id,
        data.get('decision'),
        notes=data.get('notes'),
        approved_refund_amount=data.get('approved_refund_amount'),
    )
    return jsonify({'return': return_to_dict(item)})


@bp.route('/returns/<int:return_id>/refund', methods=['POST'])
@login_required
@role_required('admin')
def process_refund(return_id):
    item = return_service.process_refund(current_principal(), return_id)
    return jsonify({'return': return_to_dict(item)})


@bp.route('/returns/<int:return_id>/complete', methods=['POST'])
@login_required
@role_required('admin')
def complete_return(return_id):
    item = return_service.complete_return(current_principal(), return_id)
    return jsonify({'return': return_to_dict(item)})


@bp.route('/returns/<int:return_id>/cancel', methods=['POST'])
@login_required
@role_required('buyer', 'admin')
def cancel_return(return_id):
    item = return_service.cancel_return(current_principal(), return_id)
    return jsonify({'return': return_to_dict(item)})
