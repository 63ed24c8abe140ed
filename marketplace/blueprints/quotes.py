from flask import Blueprint, jsonify
from flask_login import login_required
from marketplace.errors import ForbiddenError
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import quote_to_dict
from marketplace.services import quotes
from marketplace.services.catalog import get_conversation
from marketplace.utils import parse_datetime, request_payload

bp = Blueprint('quotes', __name__)


@bp.route('/conversations/<int:conversation_id>/quotes', methods=['GET'])
@login_required
def list_quotes(conversation_id):
    principal = current_principal()
    conversation = get_conversation(conversation_id)
    if not principal.is_admin and principal.id not in (
            conversation.buyer_id, conversation.seller_id):
        raise ForbiddenError('You are not part of this conversation')
    items = quotes.list_conversation_quotes(conversation.id)
    return jsonify({'quotes': [quote_to_dict(q) for q in items]})


@bp.route('/conversations/<int:conversation_id>/quotes/request',
          methods=['POST'])
@login_required
@role_required('buyer')
def request_quote(conversation_id):
    data = request_payload()
    quote = quotes.request_quote(
        current_principal(),
        conversation_id,
        product_id=data.get('product_id'),
        service_id=data.get('service_id'),
        variant_id=data.get('variant_id'),
        package_id=data.get('package_id'),
        quantity=data.get('quantity', 1),
        specifications=data.get('specifications'),
    )
    return jsonify({'quote': quote_to_dict(quote)}), 201


@bp.route('/conversations/<int:conversation_id>/quotes', methods=['POST'])
@login_required
@role_required('seller')
def send_quote(conversation_id):
    data = request_payload()
    quote = quotes.send_quote(
        current_principal(),
        conversation_id,
        quoted_price=data.get('quoted_price'),
        quantity=data.get('quantity', 1),
        product_id=data.get('product_id'),
        service_id=data.get('service_id'),
        variant_id=data.get('variant_id'),
        package_id=data.get('package_id'),
        expires_at=parse_datetime(data.get('expires_at'), 'expires_at'),
        design_approval_id=data.get('design_approval_id'),
        specifications=data.get('specifications'),
    )
    return jsonify({'quote': quote_to_dict(quote)}), 201


@bp.route('/quotes/<int:quote_id>', methods=['GET'])
@login_required
def get_quote(quote_id):
    principal = current_principal()
    quote = quotes.get_quote(quote_id)
    if not principal.is_admin and principal.id not in (
            quote.buyer_id, quote.seller_id):
        raise ForbiddenError('You are not part of this conversation')
    return jsonify({'quote': quote_to_dict(quote)})


@bp.route('/quotes/<int:quote_id>/accept', methods=['POST'])
@login_required
@role_required('buyer')
def accept_quote(quote_id):
    quote = quotes.accept_quote(current_principal(), quote_id)
    return jsonify({'quote': quote_to_dict(quote)})


@bp.route('/quotes/<int:quote_id>/reject', methods=['POST'])
@login_required
@role_required('buyer')
def reject_quote(quote_id):
    data = request_payload()
    quote = quotes.reject_quote(
        current_principal(), quote_id, reason=data.get('reason'))
    return jsonify({'quote': quote_to_dict(quote)})
