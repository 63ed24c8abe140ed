from marketplace.extensions import db
from marketplace.models import AuditLog
from flask import has_request_context, request
import logging
import json

logger = logging.getLogger(__name__)
major_logger = logging.getLogger('major_events')
if not major_logger.handlers:
    handler = logging.FileHandler('major_events.log')
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)
    major_logger.addHandler(handler)
    major_logger.setLevel(logging.INFO)
    major_logger.propagate = False

MAJOR_ACTION_PREFIXES = (
    'QUOTE_',
    'DESIGN_',
    'ORDER_',
    'BOOKING_',
    'PAYMENT_',
    'ESCROW_',
    'RETURN_',
    'SHIPMENT_',
    'BOOST_',
)


def _should_log_major(action: str) -> bool:
    if not action:
        return False
    return action.startswith(MAJOR_ACTION_PREFIXES)


def actor_fields(principal):
    if principal is None:
        return None, 'SYSTEM'
    return principal.id, principal.role.value.upper()


def log_audit(
        actor_id=None,
        actor_role='SYSTEM',
        action='',
        target_type=None,
        target_id=None,
        payload=None,
        commit=True):
    """Record an audit row.

    With commit=False the row joins the caller's open transaction and is
    written or discarded together with it.
    """
    try:
        ip = None
        user_agent = None
        path = None
        method = None
        if has_request_context():
            ip = request.remote_addr
            user_agent = request.headers.get('User-Agent')
            path = request.path
            method = request.method

        audit = AuditLog(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip=ip,
            user_agent=user_agent
        )

        if payload:
            audit.set_payload(payload)

        db.session.add(audit)
        if commit:
            db.session.commit()

        payload_brief = None
        if payload is not None:
            payload_brief = json.dumps(
                payload, ensure_ascii=False, separators=(',', ':'),
                default=str)
            if len(payload_brief) > 600:
                payload_brief = payload_brief[:600] + '...'

        logger.info(
            "AUDIT action=%s actor_role=%s actor_id=%s target_type=%s "
            "target_id=%s method=%s path=%s payload=%s",
            action,
            actor_role,
            actor_id,
            target_type,
            target_id,
            method,
            path,
            payload_brief,
        )

        if _should_log_major(action):
            major_logger.info(
                "action=%s actor_role=%s actor_id=%s target_type=%s "
                "target_id=%s payload=%s",
                action,
                actor_role,
                actor_id,
                target_type,
                target_id,
                payload_brief,
            )

    except Exception as e:
        logger.error(f"Failed to log audit: {e}", exc_info=True)
        if commit:
            db.session.rollback()
