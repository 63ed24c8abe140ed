from flask import Blueprint, jsonify
from flask_login import login_required
from marketplace.errors import ForbiddenError
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import design_to_dict
from marketplace.services import design_approvals
from marketplace.services.catalog import get_conversation
from marketplace.utils import request_payload

bp = Blueprint('designs', __name__)


def _party_conversation(conversation_id):
    principal = current_principal()
    conversation = get_conversation(conversation_id)
    if not principal.is_admin and principal.id not in (
            conversation.buyer_id, conversation.seller_id):
        raise ForbiddenError('You are not part of this conversation')
    return conversation


@bp.route('/conversations/<int:conversation_id>/designs', methods=['GET'])
@login_required
def list_designs(conversation_id):
    conversation = _party_conversation(conversation_id)
    approvals = design_approvals.list_conversation_designs(conversation.id)
    return jsonify({
        'designs': [design_to_dict(a) for a in approvals],
        'banner': design_approvals.buyer_design_banner(conversation.id),
    })


@bp.route('/conversations/<int:conversation_id>/designs', methods=['POST'])
@login_required
@role_required('buyer')
def submit_design(conversation_id):
    data = request_payload()
    approval = design_approvals.submit_design(
        current_principal(),
        conversation_id,
        context=data.get('context'),
        files=data.get('files'),
        product_id=data.get('product_id'),
        service_id=data.get('service_id'),
        variant_id=data.get('variant_id'),
        package_id=data.get('package_id'),
        quote_id=data.get('quote_id'),
        notes=data.get('notes'),
    )
    return jsonify({'design': design_to_dict(approval)}), 201


@bp.route('/designs/<int:approval_id>', methods=['GET'])
@login_required
def get_design(approval_id):
    approval = design_approvals.get_design_approval(approval_id)
    _party_conversation(approval.conversation_id)
    return jsonify({'design': design_to_dict(approval)})


@bp.route('/designs/<int:approval_id>/review', methods=['POST'])
@login_required
@role_required('seller')
def review_design(approval_id):
    data = request_payload()
    action = (data.get('action') or '').lower()
    principal = current_principal()
    notes = data.get('notes')
    if action == 'approve':
        approval = design_approvals.approve_design(
            principal, approval_id, notes)
    elif action == 'reject':
        approval = design_approvals.reject_design(
            principal, approval_id, notes)
    elif action == 'request_changes':
        approval = design_approvals.request_design_changes(
            principal, approval_id, notes)
    elif action == 'under_review':
        approval = design_approvals.mark_design_under_review(
            principal, approval_id)
    else:
        return jsonify({
            'error': 'action must be approve, reject, request_changes or '
                     'under_review',
        }), 400
    return jsonify({'design': design_to_dict(approval)})


@bp.route('/designs/<int:approval_id>/resubmit', methods=['POST'])
@login_required
@role_required('buyer')
def resubmit_design(approval_id):
    data = request_payload()
    approval = design_approvals.resubmit_design(
        current_principal(),
        approval_id,
        files=data.get('files'),
        notes=data.get('notes'))
    return jsonify({'design': design_to_dict(approval)})


@bp.route('/designs/<int:approval_id>/copy', methods=['POST'])
@login_required
@role_required('buyer')
def copy_design(approval_id):
    data = request_payload()
    approval = design_approvals.copy_design_to_target(
        current_principal(),
        approval_id,
        variant_id=data.get('variant_id'),
        package_id=data.get('package_id'))
    return jsonify({'design': design_to_dict(approval)}), 201
