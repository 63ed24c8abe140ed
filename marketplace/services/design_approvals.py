"""Buyer-submitted designs that need seller sign-off."""
from datetime import datetime
from marketplace.extensions import db
from marketplace.errors import (
    CrossSellerCopyError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from marketplace.models import (
    DesignApproval,
    DesignApprovalStatus,
    DesignContext,
    ProductVariant,
    Quote,
    ServicePackage,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.catalog import (
    ItemRef,
    conversation_for_buyer,
    ensure_item_in_conversation,
    resolve_item,
)
from marketplace.services.notification_service import notify
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
import json
import logging

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = (
    DesignApprovalStatus.PENDING,
    DesignApprovalStatus.UNDER_REVIEW,
    DesignApprovalStatus.RESUBMITTED,
)

DESIGN_TRANSITIONS = {
    DesignApprovalStatus.PENDING: (
        DesignApprovalStatus.UNDER_REVIEW,
        DesignApprovalStatus.APPROVED,
        DesignApprovalStatus.REJECTED,
        DesignApprovalStatus.CHANGES_REQUESTED,
    ),
    DesignApprovalStatus.UNDER_REVIEW: (
        DesignApprovalStatus.APPROVED,
        DesignApprovalStatus.REJECTED,
        DesignApprovalStatus.CHANGES_REQUESTED,
    ),
    DesignApprovalStatus.RESUBMITTED: (
        DesignApprovalStatus.UNDER_REVIEW,
        DesignApprovalStatus.APPROVED,
        DesignApprovalStatus.REJECTED,
        DesignApprovalStatus.CHANGES_REQUESTED,
    ),
    DesignApprovalStatus.CHANGES_REQUESTED: (
        DesignApprovalStatus.RESUBMITTED,
    ),
}

# Statuses that make an older changes_requested record stale.
_NEWER_SUBMISSION_STATUSES = (
    DesignApprovalStatus.PENDING,
    DesignApprovalStatus.UNDER_REVIEW,
    DesignApprovalStatus.RESUBMITTED,
    DesignApprovalStatus.APPROVED,
)


def get_design_approval(approval_id):
    approval = db.session.get(DesignApproval, approval_id)
    if approval is None:
        raise NotFoundError('Design approval', approval_id)
    return approval


def list_conversation_designs(conversation_id):
    return (
        DesignApproval.query
        .filter_by(conversation_id=conversation_id)
        .order_by(DesignApproval.created_at.asc(), DesignApproval.id.asc())
        .all()
    )


def normalize_files(files):
    if not files or not isinstance(files, (list, tuple)):
        raise ValidationError(
            'At least one design file is required', field='files')
    normalized = []
    for index, f in enumerate(files):
        if not isinstance(f, dict) or not f.get('url') or not f.get('name'):
            raise ValidationError(
                f'File {index + 1} needs a url and a name', field='files')
        size = f.get('size')
        if size is not None:
            try:
                size = int(size)
            except (TypeError, ValueError):
                raise ValidationError(
                    f'File {index + 1} has an invalid size', field='files')
            if size < 0:
                raise ValidationError(
                    f'File {index + 1} has an invalid size', field='files')
        normalized.append({
            'url': f['url'],
            'name': f['name'],
            'size': size,
            'mime_type': f.get('mime_type'),
        })
    return normalized


def _parse_context(context):
    try:
        return DesignContext(context)
    except ValueError:
        raise ValidationError(
            "context must be 'product' or 'quote'", field='context')


def submit_design(
        principal,
        conversation_id,
        context,
        files,
        product_id=None,
        service_id=None,
        variant_id=None,
        package_id=None,
        quote_id=None,
        notes=None):
    conversation = conversation_for_buyer(principal, conversation_id)
    context = _parse_context(context)
    ref = resolve_item(product_id, service_id, variant_id, package_id)
    ensure_item_in_conversation(conversation, ref)
    files = normalize_files(files)

    if context == DesignContext.QUOTE and ref.option is not None:
        raise ValidationError(
            'Quote designs describe custom specifications and cannot '
            'reference a variant or package',
            field='variant_id' if ref.is_product else 'package_id')
    if context == DesignContext.PRODUCT and ref.option is None:
        only = ref.single_variant()
        if only is None:
            raise ValidationError(
                'Product designs must name the variant or package they '
                'apply to',
                field='variant_id' if ref.is_product else 'package_id')
        ref = ref.with_option(only)

    if quote_id:
        quote = db.session.get(Quote, quote_id)
        if quote is None or quote.conversation_id != conversation.id:
            raise ValidationError(
                'Quote does not belong to this conversation',
                field='quote_id')
        if context != DesignContext.QUOTE:
            raise ValidationError(
                'Only quote designs can reference a quote', field='quote_id')

    with unit_of_work() as uow:
        approval = uow.add(DesignApproval(
            conversation_id=conversation.id,
            buyer_id=conversation.buyer_id,
            seller_id=conversation.seller_id,
            context=context,
            product_id=ref.product_id,
            variant_id=ref.variant_id,
            service_id=ref.service_id,
            package_id=ref.package_id,
            quote_id=quote_id,
            buyer_notes=notes,
            status=DesignApprovalStatus.PENDING,
        ))
        approval.files = files
        uow.flush()

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='DESIGN_SUBMIT',
            target_type='DESIGN_APPROVAL',
            target_id=approval.id,
            payload={'context': context.value, 'files': len(files)},
            commit=False)
        uow.after_commit(
            notify,
            conversation.seller_id,
            'design_submitted',
            'New design submitted',
            f'A buyer submitted a design for {ref.item.name}.',
            {'design_approval_id': approval.id,
             'conversation_id': conversation.id})

    logger.info(
        "Design approval %s submitted in conversation %s",
        approval.id, conversation.id)
    return approval


def _review(
        principal,
        approval_id,
        from_statuses,
        new_status,
        notes,
        action,
        notification):
    now = datetime.utcnow()
    with unit_of_work() as uow:
        approval = lock(DesignApproval, approval_id, 'Design approval')
        if approval.seller_id != principal.id:
            raise ForbiddenError('Only the seller can review this design')
        values = {'status': new_status, 'reviewed_at': now}
        if notes is not None:
            values['seller_notes'] = notes
        approval = guarded_transition(
            DesignApproval,
            approval_id,
            from_statuses,
            values,
            DESIGN_TRANSITIONS,
            'Design approval')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            target_type='DESIGN_APPROVAL',
            target_id=approval.id,
            payload={'status': new_status.value, 'notes': notes},
            commit=False)
        if notification:
            type_, title = notification
            uow.after_commit(
                notify,
                approval.buyer_id,
                type_,
                title,
                notes or title,
                {'design_approval_id': approval.id,
                 'conversation_id': approval.conversation_id})

    logger.info(
        "Design approval %s moved to %s", approval.id, new_status.value)
    return approval


def _require_notes(notes, what):
    if not notes or not notes.strip():
        raise ValidationError(
            f'Notes are required when {what}', field='notes')
    return notes.strip()


def mark_design_under_review(principal, approval_id):
    return _review(
        principal,
        approval_id,
        (DesignApprovalStatus.PENDING, DesignApprovalStatus.RESUBMITTED),
        DesignApprovalStatus.UNDER_REVIEW,
        None,
        'DESIGN_UNDER_REVIEW',
        None)


def approve_design(principal, approval_id, notes=None):
    return _review(
        principal,
        approval_id,
        REVIEWABLE_STATUSES,
        DesignApprovalStatus.APPROVED,
        notes,
        'DESIGN_APPROVE',
        ('design_approved', 'Design approved'))


def reject_design(principal, approval_id, notes):
    notes = _require_notes(notes, 'rejecting a design')
    return _review(
        principal,
        approval_id,
        REVIEWABLE_STATUSES,
        DesignApprovalStatus.REJECTED,
        notes,
        'DESIGN_REJECT',
        ('design_rejected', 'Design rejected'))


def request_design_changes(principal, approval_id, notes):
    notes = _require_notes(notes, 'requesting changes')
    return _review(
        principal,
        approval_id,
        REVIEWABLE_STATUSES,
        DesignApprovalStatus.CHANGES_REQUESTED,
        notes,
        'DESIGN_REQUEST_CHANGES',
        ('design_changes_requested', 'Changes requested on your design'))


def resubmit_design(principal, approval_id, files, notes=None):
    files = normalize_files(files)
    with unit_of_work() as uow:
        approval = lock(DesignApproval, approval_id, 'Design approval')
        if approval.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer can resubmit this design')
        values = {
            'status': DesignApprovalStatus.RESUBMITTED,
            'files_json': json.dumps(files, ensure_ascii=False),
        }
        if notes is not None:
            values['buyer_notes'] = notes
        approval = guarded_transition(
            DesignApproval,
            approval_id,
            [DesignApprovalStatus.CHANGES_REQUESTED],
            values,
            DESIGN_TRANSITIONS,
            'Design approval')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='DESIGN_RESUBMIT',
            target_type='DESIGN_APPROVAL',
            target_id=approval.id,
            payload={'files': len(files)},
            commit=False)
        uow.after_commit(
            notify,
            approval.seller_id,
            'design_submitted',
            'Design resubmitted',
            'A buyer resubmitted a design for your review.',
            {'design_approval_id': approval.id,
             'conversation_id': approval.conversation_id})

    return approval


def copy_design_to_target(
        principal,
        approval_id,
        variant_id=None,
        package_id=None):
    """Copy an approved design onto a sibling variant or package.

    The copy is a new, independently approved record. Copying never
    crosses sellers.
    """
    if bool(variant_id) == bool(package_id):
        raise ValidationError(
            'Exactly one of variant_id or package_id is required',
            field='variant_id')

    with unit_of_work() as uow:
        source = lock(DesignApproval, approval_id, 'Design approval')
        if source.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer can copy this design')
        if source.status != DesignApprovalStatus.APPROVED:
            raise ValidationError('Only approved designs can be copied')

        if variant_id:
            target = db.session.get(ProductVariant, variant_id)
            if target is None:
                raise NotFoundError('Variant', variant_id)
            item = target.product
            same_item = source.product_id == item.id
        else:
            target = db.session.get(ServicePackage, package_id)
            if target is None:
                raise NotFoundError('Package', package_id)
            item = target.service
            same_item = source.service_id == item.id

        if item.seller_id != source.seller_id:
            raise CrossSellerCopyError()
        if not same_item:
            raise ValidationError(
                'Designs can only be copied to a variant or package of the '
                'same item')

        ref = ItemRef(item, target)
        existing = (
            DesignApproval.query
            .filter(
                DesignApproval.buyer_id == source.buyer_id,
                DesignApproval.status == DesignApprovalStatus.APPROVED,
                *ref.scope_filter(DesignApproval))
            .first()
        )
        if existing is not None:
            return existing

        copy = uow.add(DesignApproval(
            conversation_id=source.conversation_id,
            buyer_id=source.buyer_id,
            seller_id=source.seller_id,
            context=DesignContext.PRODUCT,
            product_id=ref.product_id,
            variant_id=ref.variant_id,
            service_id=ref.service_id,
            package_id=ref.package_id,
            files_json=source.files_json,
            buyer_notes=source.buyer_notes,
            seller_notes=source.seller_notes,
            status=DesignApprovalStatus.APPROVED,
            copied_from_id=source.id,
            reviewed_at=datetime.utcnow(),
        ))
        uow.flush()

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='DESIGN_COPY',
            target_type='DESIGN_APPROVAL',
            target_id=copy.id,
            payload={'source_id': source.id,
                     'variant_id': ref.variant_id,
                     'package_id': ref.package_id},
            commit=False)

    logger.info(
        "Design approval %s copied from %s", copy.id, source.id)
    return copy


def _same_scope(a, b):
    return (
        a.conversation_id == b.conversation_id
        and a.product_id == b.product_id
        and a.service_id == b.service_id
        and a.variant_id == b.variant_id
        and a.package_id == b.package_id
    )


def effective_changes_requested(approvals):
    """changes_requested records the buyer still has to act on.

    Read-side only: a changes_requested record is hidden once a newer
    submission for the same scope exists. Stored statuses are untouched.
    """
    active = []
    for approval in approvals:
        if approval.status != DesignApprovalStatus.CHANGES_REQUESTED:
            continue
        newer = any(
            other.id != approval.id
            and _same_scope(approval, other)
            and other.status in _NEWER_SUBMISSION_STATUSES
            and (other.created_at, other.id)
            > (approval.created_at, approval.id)
            for other in approvals
        )
        if not newer:
            active.append(approval)
    return active


def buyer_design_banner(conversation_id):
    pending = effective_changes_requested(
        list_conversation_designs(conversation_id))
    return {
        'changes_requested': bool(pending),
        'design_approval_ids': [a.id for a in pending],
        'notes': [a.seller_notes for a in pending if a.seller_notes],
    }
