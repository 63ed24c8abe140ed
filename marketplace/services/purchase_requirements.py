"""Read-only purchase gating for quote- and design-gated items.

Nothing here writes. Checkout calls ``can_purchase`` again inside its own
transaction right before creating order lines, so a stale answer from an
earlier page view is never trusted.
"""
from datetime import datetime
from flask import current_app
from marketplace.extensions import db
from marketplace.errors import (
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)
from marketplace.models import (
    DesignApproval,
    DesignApprovalStatus,
    Quote,
    QuoteStatus,
)
from marketplace.services.catalog import resolve_item

ITEM_NOT_FOUND = 'item_not_found'
VARIANT_MISMATCH = 'variant_mismatch'
QUOTE_MISSING = 'quote_missing'
QUOTE_PENDING = 'quote_pending'
QUOTE_EXPIRED = 'quote_expired'
QUOTE_REJECTED = 'quote_rejected'
QUOTE_QUANTITY_MISMATCH = 'quote_quantity_mismatch'
DESIGN_MISSING = 'design_missing'
DESIGN_PENDING = 'design_pending'
DESIGN_REJECTED = 'design_rejected'
DESIGN_CHANGES_REQUESTED = 'design_changes_requested'
DESIGN_NOT_LINKED = 'design_not_linked'

_DESIGN_STATUS_REASONS = {
    DesignApprovalStatus.PENDING: DESIGN_PENDING,
    DesignApprovalStatus.UNDER_REVIEW: DESIGN_PENDING,
    DesignApprovalStatus.RESUBMITTED: DESIGN_PENDING,
    DesignApprovalStatus.REJECTED: DESIGN_REJECTED,
    DesignApprovalStatus.CHANGES_REQUESTED: DESIGN_CHANGES_REQUESTED,
}


class PurchaseCheck:
    def __init__(
            self,
            allowed,
            reasons=(),
            requires_quote=False,
            requires_design=False,
            quote=None,
            design=None):
        self.allowed = allowed
        self.reasons = list(reasons)
        self.requires_quote = requires_quote
        self.requires_design = requires_design
        self.quote = quote
        self.design = design

    def to_dict(self):
        return {
            'allowed': self.allowed,
            'reasons': self.reasons,
            'requires_quote': self.requires_quote,
            'requires_design_approval': self.requires_design,
            'quote_id': self.quote.id if self.quote else None,
            'design_approval_id': self.design.id if self.design else None,
        }

    def __repr__(self):
        return f'<PurchaseCheck allowed={self.allowed} reasons={self.reasons}>'


def quote_reason(quote, now):
    if quote.status == QuoteStatus.REJECTED:
        return QUOTE_REJECTED
    if quote.status == QuoteStatus.EXPIRED or (
            quote.status in (QuoteStatus.SENT, QuoteStatus.ACCEPTED)
            and quote.is_expired(now)):
        return QUOTE_EXPIRED
    if quote.status in (QuoteStatus.REQUESTED, QuoteStatus.SENT):
        return QUOTE_PENDING
    if quote.status == QuoteStatus.ACCEPTED:
        return None
    return QUOTE_MISSING


def _check_quote(buyer_id, ref, quantity, quote_id, now):
    scope = ref.scope_filter(Quote)
    if quote_id:
        quote = db.session.get(Quote, quote_id)
        if quote is None or quote.buyer_id != buyer_id:
            return None, [QUOTE_MISSING]
        if not ref.matches(quote):
            return None, [VARIANT_MISMATCH]
    else:
        quote = (
            Quote.query
            .filter(
                Quote.buyer_id == buyer_id,
                Quote.status == QuoteStatus.ACCEPTED,
                *scope)
            .order_by(Quote.accepted_at.desc(), Quote.id.desc())
            .first()
        )
        if quote is None or quote.is_expired(now):
            quote = (
                Quote.query
                .filter(Quote.buyer_id == buyer_id, *scope)
                .order_by(Quote.updated_at.desc(), Quote.id.desc())
                .first()
            )
        if quote is None:
            return None, [QUOTE_MISSING]

    reason = quote_reason(quote, now)
    if reason:
        return quote, [reason]
    if quantity is not None and quote.quantity != quantity:
        return quote, [QUOTE_QUANTITY_MISMATCH]
    return quote, []


def _latest_design(buyer_id, ref):
    return (
        DesignApproval.query
        .filter(DesignApproval.buyer_id == buyer_id, *ref.scope_filter(
            DesignApproval))
        .order_by(DesignApproval.updated_at.desc(), DesignApproval.id.desc())
        .first()
    )


def _approved_product_design(buyer_id, ref):
    approved = DesignApproval.query.filter(
        DesignApproval.buyer_id == buyer_id,
        DesignApproval.status == DesignApprovalStatus.APPROVED)
    design = approved.filter(*ref.scope_filter(DesignApproval)).first()
    if design is not None or ref.option is None:
        return design

    # Legacy records stored without a variant for single-variant products.
    # Kept for old data only; new submissions always carry the variant.
    if (ref.is_product
            and current_app.config.get(
                'LEGACY_SINGLE_VARIANT_DESIGN_FALLBACK')
            and ref.single_variant() is not None):
        return approved.filter(
            DesignApproval.product_id == ref.product_id,
            DesignApproval.variant_id.is_(None)).first()
    return None


def _design_reason(buyer_id, ref):
    latest = _latest_design(buyer_id, ref)
    if latest is None:
        return None, DESIGN_MISSING
    return latest, _DESIGN_STATUS_REASONS.get(latest.status, DESIGN_MISSING)


def can_purchase(
        buyer_id,
        product_id=None,
        service_id=None,
        variant_id=None,
        package_id=None,
        quantity=None,
        quote_id=None,
        now=None):
    now = now or datetime.utcnow()
    try:
        ref = resolve_item(product_id, service_id, variant_id, package_id)
    except NotFoundError:
        return PurchaseCheck(False, [ITEM_NOT_FOUND])
    except ValidationError:
        return PurchaseCheck(False, [VARIANT_MISMATCH])
    if not ref.item.is_active:
        return PurchaseCheck(False, [ITEM_NOT_FOUND])

    requires_quote = ref.requires_quote
    requires_design = ref.requires_design
    if not requires_quote and not requires_design:
        return PurchaseCheck(True)

    reasons = []
    quote = None
    design = None

    if requires_quote:
        quote, quote_reasons = _check_quote(
            buyer_id, ref, quantity, quote_id, now)
        reasons.extend(quote_reasons)

    if requires_design and requires_quote:
        # Both gates must be satisfied by the same negotiation: the
        # accepted quote has to carry the approved design.
        if quote is not None and not reasons:
            if quote.design_approval_id is None:
                reasons.append(DESIGN_NOT_LINKED)
            else:
                design = db.session.get(
                    DesignApproval, quote.design_approval_id)
                if design is None:
                    reasons.append(DESIGN_NOT_LINKED)
                elif design.status != DesignApprovalStatus.APPROVED:
                    reasons.append(
                        _DESIGN_STATUS_REASONS.get(
                            design.status, DESIGN_MISSING))
        else:
            design = _approved_product_design(buyer_id, ref)
            if design is None:
                design, reason = _design_reason(buyer_id, ref)
                reasons.append(reason)
    elif requires_design:
        design = _approved_product_design(buyer_id, ref)
        if design is None:
            design, reason = _design_reason(buyer_id, ref)
            reasons.append(reason)

    return PurchaseCheck(
        not reasons,
        reasons,
        requires_quote=requires_quote,
        requires_design=requires_design,
        quote=quote,
        design=design)


def require_purchase(buyer_id, message=None, **kwargs):
    check = can_purchase(buyer_id, **kwargs)
    if not check.allowed:
        raise RequirementNotMetError(
            message or 'Purchase requirements are not met',
            reasons=check.reasons)
    return check
