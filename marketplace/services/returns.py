"""Return requests: buyer asks, seller recommends, admin decides.

A refund is only ever issued by ``process_refund`` from ``admin_approved``.
"""
from datetime import datetime
from decimal import Decimal
from flask import current_app
from marketplace.extensions import db
from marketplace.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.models import (
    Booking,
    BookingStatus,
    Order,
    OrderStatus,
    ReturnReason,
    ReturnRequest,
    ReturnStatus,
    SellerReturnStatus,
    Transaction,
    TransactionStatus,
)
from marketplace.services.audit_service import actor_fields, log_audit
from marketplace.services.escrow import TRANSACTION_TRANSITIONS
from marketplace.services.notification_service import notify
from marketplace.services.unit_of_work import (
    guarded_transition,
    lock,
    unit_of_work,
)
from marketplace.utils import money, parse_money
import logging
import json

logger = logging.getLogger(__name__)

RETURN_TRANSITIONS = {
    ReturnStatus.REQUESTED: (ReturnStatus.UNDER_REVIEW, ReturnStatus.CANCELLED),
    ReturnStatus.UNDER_REVIEW: (
        ReturnStatus.SELLER_APPROVED,
        ReturnStatus.SELLER_REJECTED,
        ReturnStatus.ADMIN_APPROVED,
        ReturnStatus.ADMIN_REJECTED,
        ReturnStatus.CANCELLED,
    ),
    ReturnStatus.SELLER_APPROVED: (
        ReturnStatus.ADMIN_APPROVED,
        ReturnStatus.ADMIN_REJECTED,
        ReturnStatus.CANCELLED,
    ),
    ReturnStatus.SELLER_REJECTED: (
        ReturnStatus.ADMIN_APPROVED,
        ReturnStatus.ADMIN_REJECTED,
        ReturnStatus.CANCELLED,
    ),
    ReturnStatus.ADMIN_APPROVED: (ReturnStatus.REFUNDED, ReturnStatus.CANCELLED),
    ReturnStatus.REFUNDED: (ReturnStatus.COMPLETED,),
}

# Requests in these states block a new request for the same order/booking.
ACTIVE_STATUSES = (
    ReturnStatus.REQUESTED,
    ReturnStatus.UNDER_REVIEW,
    ReturnStatus.SELLER_APPROVED,
    ReturnStatus.SELLER_REJECTED,
    ReturnStatus.ADMIN_APPROVED,
    ReturnStatus.REFUNDED,
)

CANCELLABLE_STATUSES = tuple(
    s for s, targets in RETURN_TRANSITIONS.items()
    if ReturnStatus.CANCELLED in targets)

SELLER_RESPONSE_STATUSES = (ReturnStatus.REQUESTED, ReturnStatus.UNDER_REVIEW)
ADMIN_RESOLVE_STATUSES = (
    ReturnStatus.SELLER_APPROVED,
    ReturnStatus.SELLER_REJECTED,
    ReturnStatus.UNDER_REVIEW,
)
RETURNABLE_BOOKING_STATUSES = (
    BookingStatus.PAID,
    BookingStatus.ONGOING,
    BookingStatus.COMPLETED,
)


def get_return(return_id):
    request = db.session.get(ReturnRequest, return_id)
    if request is None:
        raise NotFoundError('Return request', return_id)
    return request


def list_returns(principal, status=None):
    query = ReturnRequest.query
    if principal.is_seller:
        query = query.filter(ReturnRequest.seller_id == principal.id)
    elif not principal.is_admin:
        query = query.filter(ReturnRequest.buyer_id == principal.id)
    if status is not None:
        try:
            status = ReturnStatus(status)
        except ValueError:
            raise ValidationError(f'Unknown status: {status}', field='status')
        query = query.filter(ReturnRequest.status == status)
    return query.order_by(ReturnRequest.created_at.desc()).all()


def _parse_reason(value):
    if isinstance(value, ReturnReason):
        return value
    try:
        return ReturnReason(str(value or '').lower())
    except ValueError:
        raise ValidationError(f'Unknown return reason: {value}', field='reason')


def _parent_total(request):
    parent = request.order if request.order_id else request.booking
    return money(parent.total_amount)


def _active_request(**parent):
    return (
        ReturnRequest.query
        .filter(ReturnRequest.status.in_(list(ACTIVE_STATUSES)))
        .filter_by(**parent)
        .first()
    )


def submit_return(
        principal,
        reason,
        order_id=None,
        booking_id=None,
        description=None,
        requested_amount=None,
        evidence_urls=None):
    if bool(order_id) == bool(booking_id):
        raise ValidationError('Provide exactly one of order_id or booking_id')
    reason = _parse_reason(reason)
    max_attempts = current_app.config['MAX_RETURN_ATTEMPTS']

    with unit_of_work() as uow:
        if order_id:
            parent = lock(Order, order_id, 'Order')
            if parent.status != OrderStatus.DELIVERED:
                raise InvalidTransitionError(
                    'Only delivered orders can be returned',
                    current_status=parent.status,
                    allowed=[])
            parent_filter = {'order_id': parent.id}
        else:
            parent = lock(Booking, booking_id, 'Booking')
            if parent.status not in RETURNABLE_BOOKING_STATUSES:
                raise InvalidTransitionError(
                    'This booking cannot be returned in its current state',
                    current_status=parent.status,
                    allowed=[])
            parent_filter = {'booking_id': parent.id}
        if parent.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer can request a return')

        existing = _active_request(**parent_filter)
        if existing is not None:
            raise ValidationError(
                f'Return request #{existing.id} is already open',
                field='order_id' if order_id else 'booking_id')

        total = money(parent.total_amount)
        if requested_amount in (None, ''):
            amount = total
        else:
            amount = parse_money(requested_amount, 'requested_amount')
            if amount > total:
                raise ValidationError(
                    'Refund amount cannot exceed the amount paid',
                    field='requested_amount')

        if order_id:
            # The attempt cap is part of the UPDATE predicate.
            count = (
                Order.query
                .filter(
                    Order.id == parent.id,
                    Order.return_attempt_count < max_attempts)
                .update(
                    {'return_attempt_count': Order.return_attempt_count + 1},
                    synchronize_session='fetch')
            )
            if not count:
                raise ValidationError(
                    f'Maximum of {max_attempts} return requests reached '
                    'for this order',
                    field='order_id')
        else:
            Booking.query.filter(Booking.id == parent.id).update(
                {'return_attempt_count': Booking.return_attempt_count + 1},
                synchronize_session='fetch')

        request = uow.add(ReturnRequest(
            buyer_id=parent.buyer_id,
            seller_id=parent.seller_id,
            reason=reason,
            description=description,
            evidence_json=json.dumps(list(evidence_urls or [])),
            requested_refund_amount=amount,
            status=ReturnStatus.REQUESTED,
            seller_status=SellerReturnStatus.PENDING,
            **parent_filter))
        uow.flush()

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_REQUEST',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            payload=dict(
                parent_filter,
                reason=reason.value,
                requested_refund_amount=amount),
            commit=False)
        uow.after_commit(
            notify,
            parent.seller_id,
            'return_requested',
            'Return requested',
            f'A buyer requested a return ({reason.value}).',
            dict(parent_filter, return_id=request.id))

    logger.info(
        "Return %s requested by buyer %s for %s",
        request.id, principal.id, parent_filter)
    return request


def seller_respond(
        principal,
        return_id,
        seller_status,
        response,
        proposed_amount=None):
    try:
        decision = SellerReturnStatus(str(seller_status or '').lower())
    except ValueError:
        decision = None
    if decision not in (SellerReturnStatus.APPROVED,
                        SellerReturnStatus.REJECTED):
        raise ValidationError(
            'seller_status must be approved or rejected',
            field='seller_status')
    min_length = current_app.config['RETURN_SELLER_RESPONSE_MIN_LENGTH']
    response = (response or '').strip()
    if len(response) < min_length:
        raise ValidationError(
            f'Response must be at least {min_length} characters',
            field='response')

    now = datetime.utcnow()
    with unit_of_work() as uow:
        request = lock(ReturnRequest, return_id, 'Return request')
        if request.seller_id != principal.id:
            raise ForbiddenError('You are not the seller for this return')
        if request.status not in SELLER_RESPONSE_STATUSES:
            raise InvalidTransitionError(
                'The seller can no longer respond to this return',
                current_status=request.status,
                allowed=RETURN_TRANSITIONS.get(request.status, ()))

        amount = None
        if decision == SellerReturnStatus.APPROVED:
            if proposed_amount in (None, ''):
                amount = money(request.requested_refund_amount)
            else:
                amount = parse_money(proposed_amount, 'proposed_amount')
                if amount > _parent_total(request):
                    raise ValidationError(
                        'Refund amount cannot exceed the amount paid',
                        field='proposed_amount')

        if request.status == ReturnStatus.REQUESTED:
            guarded_transition(
                ReturnRequest,
                return_id,
                [ReturnStatus.REQUESTED],
                {'status': ReturnStatus.UNDER_REVIEW, 'under_review_at': now},
                RETURN_TRANSITIONS,
                'Return request')

        target = (
            ReturnStatus.SELLER_APPROVED
            if decision == SellerReturnStatus.APPROVED
            else ReturnStatus.SELLER_REJECTED)
        request = guarded_transition(
            ReturnRequest,
            return_id,
            [ReturnStatus.UNDER_REVIEW],
            {
                'status': target,
                'seller_status': decision,
                'seller_response': response,
                'seller_proposed_amount': amount,
                'seller_responded_at': now,
            },
            RETURN_TRANSITIONS,
            'Return request')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_SELLER_RESPONSE',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            payload={'seller_status': decision.value, 'amount': amount},
            commit=False)
        uow.after_commit(
            notify,
            request.buyer_id,
            f'return_seller_{decision.value}',
            'Seller responded to your return',
            f'The seller {decision.value} your return request; an admin '
            'will make the final decision.',
            {'return_id': request.id})

    return request


def admin_resolve(
        principal,
        return_id,
        decision,
        notes=None,
        approved_refund_amount=None):
    if not principal.is_admin:
        raise ForbiddenError('Admin access required')
    decision = str(decision or '').lower()
    if decision in ('approve', 'approved', 'admin_approved'):
        target = ReturnStatus.ADMIN_APPROVED
    elif decision in ('reject', 'rejected', 'admin_rejected'):
        target = ReturnStatus.ADMIN_REJECTED
    else:
        raise ValidationError(
            'decision must be approve or reject', field='decision')

    amount = None
    if target == ReturnStatus.ADMIN_APPROVED:
        amount = parse_money(approved_refund_amount, 'approved_refund_amount')

    now = datetime.utcnow()
    with unit_of_work() as uow:
        request = lock(ReturnRequest, return_id, 'Return request')
        if amount is not None and amount > _parent_total(request):
            raise ValidationError(
                'Refund amount cannot exceed the amount paid',
                field='approved_refund_amount')

        override = (
            (request.seller_status == SellerReturnStatus.APPROVED
             and target == ReturnStatus.ADMIN_REJECTED)
            or (request.seller_status == SellerReturnStatus.REJECTED
                and target == ReturnStatus.ADMIN_APPROVED)
        )
        request = guarded_transition(
            ReturnRequest,
            return_id,
            ADMIN_RESOLVE_STATUSES,
            {
                'status': target,
                'approved_refund_amount': amount,
                'admin_notes': notes,
                'admin_override': override,
                'reviewed_by': principal.id,
                'resolved_at': now,
            },
            RETURN_TRANSITIONS,
            'Return request')
        if override:
            logger.warning(
                "Admin %s overrode seller decision on return %s",
                principal.id, request.id)

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_RESOLVE',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            payload={
                'decision': target.value,
                'approved_refund_amount': amount,
                'admin_override': override,
            },
            commit=False)
        notification_type = (
            'return_approved' if target == ReturnStatus.ADMIN_APPROVED
            else 'return_rejected')
        for user_id in (request.buyer_id, request.seller_id):
            uow.after_commit(
                notify,
                user_id,
                notification_type,
                'Return request resolved',
                f'Return request #{request.id} was '
                f'{"approved" if amount is not None else "rejected"}.',
                {'return_id': request.id, 'refund_amount': amount})

    return request


def _commission_reversal(request, transaction, refund):
    rate = Decimal(str(transaction.commission_rate or 0))
    if request.order_id:
        return money(money(request.order.total_amount) * rate / 100)
    reversal = money(refund * rate / 100)
    return min(reversal, money(transaction.commission_amount))


def process_refund(principal, return_id):
    if not principal.is_admin:
        raise ForbiddenError('Admin access required')
    now = datetime.utcnow()
    with unit_of_work() as uow:
        request = lock(ReturnRequest, return_id, 'Return request')
        if request.status != ReturnStatus.ADMIN_APPROVED:
            raise InvalidTransitionError(
                'Only admin-approved returns can be refunded',
                current_status=request.status,
                allowed=RETURN_TRANSITIONS.get(request.status, ()))

        parent = {'order_id': request.order_id} if request.order_id \
            else {'booking_id': request.booking_id}
        transaction = (
            Transaction.query
            .filter_by(**parent)
            .order_by(Transaction.id)
            .first()
        )
        if transaction is None:
            raise NotFoundError('Transaction', None)

        refund = money(request.approved_refund_amount)
        reversal = _commission_reversal(request, transaction, refund)
        guarded_transition(
            Transaction,
            transaction.id,
            [TransactionStatus.ESCROW],
            {
                'status': TransactionStatus.REFUNDED,
                'refunded_amount': refund,
                'commission_reversed_amount': reversal,
                'refunded_at': now,
            },
            TRANSACTION_TRANSITIONS,
            'Transaction')
        request = guarded_transition(
            ReturnRequest,
            return_id,
            [ReturnStatus.ADMIN_APPROVED],
            {
                'status': ReturnStatus.REFUNDED,
                'commission_reversed_amount': reversal,
                'refunded_at': now,
            },
            RETURN_TRANSITIONS,
            'Return request')

        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_REFUND',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            payload={
                'transaction_id': transaction.id,
                'refunded_amount': refund,
                'commission_reversed_amount': reversal,
            },
            commit=False)
        for user_id in (request.buyer_id, request.seller_id):
            uow.after_commit(
                notify,
                user_id,
                'refund_processed',
                'Refund processed',
                f'A refund of {refund} was issued for return '
                f'#{request.id}.',
                {'return_id': request.id, 'amount': refund})

    logger.info(
        "Return %s refunded %s (commission reversed %s)",
        request.id, refund, reversal)
    return request


def complete_return(principal, return_id):
    if not principal.is_admin:
        raise ForbiddenError('Admin access required')
    with unit_of_work():
        request = guarded_transition(
            ReturnRequest,
            return_id,
            [ReturnStatus.REFUNDED],
            {'status': ReturnStatus.COMPLETED,
             'completed_at': datetime.utcnow()},
            RETURN_TRANSITIONS,
            'Return request')
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_COMPLETE',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            commit=False)
    return request


def cancel_return(principal, return_id):
    with unit_of_work() as uow:
        request = lock(ReturnRequest, return_id, 'Return request')
        if not principal.is_admin and request.buyer_id != principal.id:
            raise ForbiddenError('Only the buyer or an admin can cancel')
        request = guarded_transition(
            ReturnRequest,
            return_id,
            CANCELLABLE_STATUSES,
            {'status': ReturnStatus.CANCELLED,
             'cancelled_at': datetime.utcnow()},
            RETURN_TRANSITIONS,
            'Return request')
        actor_id, actor_role = actor_fields(principal)
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='RETURN_CANCEL',
            target_type='RETURN_REQUEST',
            target_id=request.id,
            commit=False)
        uow.after_commit(
            notify,
            request.seller_id,
            'return_cancelled',
            'Return cancelled',
            f'Return request #{request.id} was cancelled.',
            {'return_id': request.id})
    return request
