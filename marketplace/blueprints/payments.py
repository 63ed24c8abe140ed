from flask import Blueprint, jsonify, request
from flask_login import login_required
from marketplace.middleware import current_principal, role_required
from marketplace.models import TransactionStatus, TransactionType
from marketplace.serializers import order_to_dict, transaction_to_dict
from marketplace.services import escrow
from marketplace.errors import ValidationError
from marketplace.utils import request_payload

bp = Blueprint('payments', __name__)


@bp.route('/payments/webhook', methods=['POST'])
def payment_webhook():
    # Authenticated by shared secret, not by a login session.
    result = escrow.handle_payment_webhook(
        request_payload(), request.headers.get('X-Webhook-Secret'))
    return jsonify(result)


@bp.route('/transactions', methods=['GET'])
@login_required
@role_required('admin')
def list_transactions():
    try:
        status = request.args.get('status')
        type_ = request.args.get('type')
        status = TransactionStatus(status) if status else None
        type_ = TransactionType(type_) if type_ else None
    except ValueError:
        raise ValidationError('Unknown transaction status or type')
    items = escrow.list_transactions(status=status, type=type_)
    return jsonify({'transactions': [transaction_to_dict(t) for t in items]})


@bp.route('/transactions/<int:transaction_id>', methods=['GET'])
@login_required
@role_required('admin')
def get_transaction(transaction_id):
    transaction = escrow.get_transaction(transaction_id)
    return jsonify({'transaction': transaction_to_dict(transaction)})


@bp.route('/transactions/<int:transaction_id>/confirm', methods=['POST'])
@login_required
@role_required('admin')
def confirm_transaction(transaction_id):
    transaction = escrow.confirm_transaction_payment(
        current_principal(), transaction_id)
    return jsonify({'transaction': transaction_to_dict(transaction)})


@bp.route('/transactions/<int:transaction_id>/release', methods=['POST'])
@login_required
@role_required('admin')
def release_transaction(transaction_id):
    transaction = escrow.release_transaction(
        current_principal(), transaction_id)
    return jsonify({'transaction': transaction_to_dict(transaction)})


@bp.route('/orders/<int:order_id>/confirm-payment', methods=['POST'])
@login_required
@role_required('admin')
def confirm_order_payment(order_id):
    order = escrow.confirm_order_payment(current_principal(), order_id)
    return jsonify({'order': order_to_dict(order)})


@bp.route('/orders/<int:order_id>/release-payments', methods=['POST'])
@login_required
@role_required('admin')
def release_order_payments(order_id):
    result = escrow.release_order_payments(current_principal(), order_id)
    return jsonify(result)
