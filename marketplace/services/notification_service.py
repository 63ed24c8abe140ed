from marketplace.extensions import db
from marketplace.models import Notification
import logging
import json

logger = logging.getLogger(__name__)


def notify(user_id, type, title, message, metadata=None):
    """Fire-and-forget user notification.

    Runs after the business transaction has committed; a failure here is
    logged and never propagates.
    """
    if not user_id:
        return None
    try:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_json=json.dumps(
                metadata or {}, ensure_ascii=False, default=str),
        )
        db.session.add(notification)
        db.session.commit()
        logger.info(
            "Notification %s sent to user %s", type, user_id)
        return notification
    except Exception as e:
        logger.error(
            f"Failed to send notification {type} to user {user_id}: {e}",
            exc_info=True)
        db.session.rollback()
        return None


def list_notifications(user_id, unread_only=False):
    query = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter_by(is_read=False)
    return query.order_by(Notification.created_at.desc()).all()
