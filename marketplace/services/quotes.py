"""Quote negotiation between a buyer and a seller inside a conversation.

A quote is either buyer-initiated ("requested", no price yet) or sent by the
seller with a price. The buyer then accepts or rejects it. Expiry is never
written by a background job: a sent quote past ``expires_at`` simply reads
as expired and cannot be accepted.
"""
from datetime import datetime, timedelta
from flask import current_app
from marketplace.extensions import db
from marketplace.errors import (
    DesignRequiredError,
    ExpiredError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)
from marketplace.models import (
    CartItem,
    DesignApproval,
    DesignApprovalStatus,
    Quote,
    QuoteStatus,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.catalog import (
    conversation_for_buyer,
    conversation_for_seller,
    ensure_item_in_conversation,
    resolve_item,
)
from marketplace.services.notification_service import notify
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
from marketplace.utils import parse_money, parse_quantity
from sqlalchemy import or_
import logging

logger = logging.getLogger(__name__)

QUOTE_TRANSITIONS = {
    QuoteStatus.REQUESTED: (QuoteStatus.SENT, QuoteStatus.SUPERSEDED),
    QuoteStatus.SENT: (
        QuoteStatus.ACCEPTED,
        QuoteStatus.REJECTED,
        QuoteStatus.EXPIRED,
        QuoteStatus.SUPERSEDED,
    ),
}


def effective_quote_status(quote, now=None):
    if quote.status == QuoteStatus.SENT and quote.is_expired(now):
        return QuoteStatus.EXPIRED
    return quote.status


def get_quote(quote_id):
    quote = db.session.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError('Quote', quote_id)
    return quote


def list_conversation_quotes(conversation_id):
    return (
        Quote.query
        .filter_by(conversation_id=conversation_id)
        .order_by(Quote.created_at.desc(), Quote.id.desc())
        .all()
    )


def find_approved_design(conversation_id, buyer_id, ref):
    """Newest approved design in the conversation with exactly this scope.

    A scope without a variant/package is the "custom" scope and only
    matches designs that carry neither.
    """
    return (
        DesignApproval.query
        .filter(
            DesignApproval.conversation_id == conversation_id,
            DesignApproval.buyer_id == buyer_id,
            DesignApproval.status == DesignApprovalStatus.APPROVED,
            *ref.scope_filter(DesignApproval))
        .order_by(DesignApproval.updated_at.desc(), DesignApproval.id.desc())
        .first()
    )


def _outstanding_request(conversation_id, ref):
    """A still-open "requested" quote for the same negotiation.

    Prefers an exact scope match, then one requested without a
    variant/package for the same item.
    """
    base = Quote.query.filter(
        Quote.conversation_id == conversation_id,
        Quote.status == QuoteStatus.REQUESTED,
        Quote.product_id == ref.product_id
        if ref.is_product else Quote.service_id == ref.service_id,
    )
    exact = base.filter(*ref.scope_filter(Quote)).first()
    if exact is not None or ref.option is None:
        return exact
    return base.filter(
        Quote.variant_id.is_(None),
        Quote.package_id.is_(None)).first()


def request_quote(
        principal,
        conversation_id,
        product_id=None,
        service_id=None,
        variant_id=None,
        package_id=None,
        quantity=1,
        specifications=None):
    conversation = conversation_for_buyer(principal, conversation_id)
    ref = resolve_item(product_id, service_id, variant_id, package_id)
    ensure_item_in_conversation(conversation, ref)
    quantity = parse_quantity(quantity)

    with unit_of_work() as uow:
        quote = (
            Quote.query
            .filter(
                Quote.conversation_id == conversation.id,
                Quote.status == QuoteStatus.REQUESTED,
                *ref.scope_filter(Quote))
            .with_for_update()
            .first()
        )
        if quote is not None:
            # One open request per negotiation.
            quote.quantity = quantity
            if specifications is not None:
                quote.specifications = specifications
        else:
            quote = uow.add(Quote(
                conversation_id=conversation.id,
                buyer_id=conversation.buyer_id,
                seller_id=conversation.seller_id,
                product_id=ref.product_id,
                variant_id=ref.variant_id,
                service_id=ref.service_id,
                package_id=ref.package_id,
                status=QuoteStatus.REQUESTED,
                quantity=quantity,
                specifications=specifications,
            ))
        uow.flush()

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='QUOTE_REQUEST',
            target_type='QUOTE',
            target_id=quote.id,
            payload={'quantity': quantity, 'item': ref.kind},
            commit=False)
        uow.after_commit(
            notify,
            conversation.seller_id,
            'quote_requested',
            'New quote request',
            f'A buyer requested a quote for {ref.item.name}.',
            {'quote_id': quote.id, 'conversation_id': conversation.id})

    logger.info(
        "Quote %s requested in conversation %s", quote.id, conversation.id)
    return quote


def send_quote(
        principal,
        conversation_id,
        quoted_price,
        quantity,
        product_id=None,
        service_id=None,
        variant_id=None,
        package_id=None,
        expires_at=None,
        design_approval_id=None,
        specifications=None):
    conversation = conversation_for_seller(principal, conversation_id)
    ref = resolve_item(product_id, service_id, variant_id, package_id)
    ensure_item_in_conversation(conversation, ref)
    price = parse_money(quoted_price, 'quoted_price')
    quantity = parse_quantity(quantity)

    now = datetime.utcnow()
    if expires_at is None:
        expires_at = now + timedelta(
            days=current_app.config['QUOTE_DEFAULT_EXPIRY_DAYS'])
    elif expires_at <= now:
        raise ValidationError(
            'Expiry must be in the future', field='expires_at')

    with unit_of_work() as uow:
        design = None
        if design_approval_id:
            design = lock(DesignApproval, design_approval_id, 'Design approval')
            if design.conversation_id != conversation.id:
                raise ValidationError(
                    'Design approval belongs to a different conversation',
                    field='design_approval_id')
            if design.status != DesignApprovalStatus.APPROVED:
                raise RequirementNotMetError(
                    'Linked design approval is not approved',
                    reasons=['design_pending'])
            if not ref.matches(design):
                raise ValidationError(
                    'Design approval does not match the quoted item',
                    field='design_approval_id')

        if ref.requires_quote and ref.requires_design and design is None:
            design = find_approved_design(
                conversation.id, conversation.buyer_id, ref)
            if design is None:
                raise DesignRequiredError()

        values = {
            'status': QuoteStatus.SENT,
            'quoted_price': price,
            'quantity': quantity,
            'expires_at': expires_at,
            'variant_id': ref.variant_id,
            'package_id': ref.package_id,
            'design_approval_id': design.id if design else None,
        }
        if specifications is not None:
            values['specifications'] = specifications

        requested = _outstanding_request(conversation.id, ref)
        if requested is not None:
            quote = guarded_transition(
                Quote,
                requested.id,
                [QuoteStatus.REQUESTED],
                values,
                QUOTE_TRANSITIONS,
                'Quote')
        else:
            quote = uow.add(Quote(
                conversation_id=conversation.id,
                buyer_id=conversation.buyer_id,
                seller_id=conversation.seller_id,
                product_id=ref.product_id,
                service_id=ref.service_id,
                **values))
            uow.flush()

        superseded = (
            Quote.query
            .filter(
                Quote.conversation_id == conversation.id,
                Quote.status == QuoteStatus.SENT,
                Quote.id != quote.id,
                *ref.scope_filter(Quote))
            .update(
                {'status': QuoteStatus.SUPERSEDED},
                synchronize_session='fetch')
        )

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='QUOTE_SEND',
            target_type='QUOTE',
            target_id=quote.id,
            payload={
                'quoted_price': price,
                'quantity': quantity,
                'design_approval_id': values['design_approval_id'],
                'updated_request': requested is not None,
                'superseded': superseded,
            },
            commit=False)
        uow.after_commit(
            notify,
            conversation.buyer_id,
            'quote_received',
            'Quote received',
            f'You received a quote of {price} for {ref.item.name}.',
            {'quote_id': quote.id, 'conversation_id': conversation.id})

    logger.info(
        "Quote %s sent at %s x %s (design=%s)",
        quote.id, price, quantity, quote.design_approval_id)
    return quote


def _place_in_cart(quote):
    item = CartItem.query.filter_by(
        buyer_id=quote.buyer_id,
        variant_id=quote.variant_id).first()
    if item is None:
        item = CartItem(buyer_id=quote.buyer_id, variant_id=quote.variant_id)
        db.session.add(item)
    item.quantity = quote.quantity
    item.quote_id = quote.id
    item.design_approval_id = quote.design_approval_id
    return item


def accept_quote(principal, quote_id):
    now = datetime.utcnow()
    with unit_of_work() as uow:
        quote = lock(Quote, quote_id, 'Quote')
        if quote.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer can accept this quote')

        if quote.status == QuoteStatus.SENT:
            if quote.is_expired(now):
                raise ExpiredError(
                    'Quote has expired',
                    current_status=QuoteStatus.EXPIRED)
            if quote.design_approval_id:
                design = db.session.get(
                    DesignApproval, quote.design_approval_id)
                if (design is None
                        or design.status != DesignApprovalStatus.APPROVED):
                    raise RequirementNotMetError(
                        'The design linked to this quote is no longer '
                        'approved',
                        reasons=['design_pending'])

        try:
            quote = guarded_transition(
                Quote,
                quote_id,
                [QuoteStatus.SENT],
                {'status': QuoteStatus.ACCEPTED, 'accepted_at': now},
                QUOTE_TRANSITIONS,
                'Quote',
                criteria=(or_(
                    Quote.expires_at.is_(None), Quote.expires_at >= now),))
        except InvalidTransitionError as e:
            # Expired between the check above and the update.
            if (e.current_status == QuoteStatus.SENT.value
                    and quote.is_expired(datetime.utcnow())):
                raise ExpiredError(
                    'Quote has expired',
                    current_status=QuoteStatus.EXPIRED) from e
            raise

        cart_item = None
        if quote.variant_id:
            cart_item = _place_in_cart(quote)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='QUOTE_ACCEPT',
            target_type='QUOTE',
            target_id=quote.id,
            payload={'added_to_cart': cart_item is not None},
            commit=False)
        uow.after_commit(
            notify,
            quote.seller_id,
            'quote_accepted',
            'Quote accepted',
            f'Your quote #{quote.id} was accepted.',
            {'quote_id': quote.id})

    logger.info("Quote %s accepted by buyer %s", quote.id, principal.id)
    return quote


def reject_quote(principal, quote_id, reason=None):
    now = datetime.utcnow()
    with unit_of_work() as uow:
        quote = lock(Quote, quote_id, 'Quote')
        if quote.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer can reject this quote')
        quote = guarded_transition(
            Quote,
            quote_id,
            [QuoteStatus.SENT],
            {
                'status': QuoteStatus.REJECTED,
                'rejected_at': now,
                'rejection_reason': reason,
            },
            QUOTE_TRANSITIONS,
            'Quote')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='QUOTE_REJECT',
            target_type='QUOTE',
            target_id=quote.id,
            payload={'reason': reason},
            commit=False)
        uow.after_commit(
            notify,
            quote.seller_id,
            'quote_rejected',
            'Quote rejected',
            f'Your quote #{quote.id} was rejected.',
            {'quote_id': quote.id, 'reason': reason})

    logger.info("Quote %s rejected by buyer %s", quote.id, principal.id)
    return quote
