"""
NOTIFICATION SERVICE
====================

Durable, append-only outbox of messages keyed by recipient.

Writers only ADD rows to the current session; the workflow that produced
them commits them together with its ledger change. Readers poll.
"""

import logging
from flask import current_app
from stokvel.extensions import db
from stokvel.errors import NotFoundError
from stokvel.models import (
    Notification, NotificationType, User, UserRole, UserStatus
)

logger = logging.getLogger(__name__)


# ============================================================
# WRITERS (no commit - caller owns the transaction)
# ============================================================

def notify(user_id, message, notification_type=NotificationType.SYSTEM.value,
           related_id=None, related_model=None):
    """Append one notification for ``user_id``."""
    notification = Notification(
        user_id=user_id,
        message=message,
        type=notification_type,
        read=False,
        related_id=related_id,
        related_model=related_model
    )
    db.session.add(notification)
    return notification


def notify_many(user_ids, message, notification_type=NotificationType.SYSTEM.value,
                related_id=None, related_model=None):
    """Append the same message once per distinct recipient."""
    notifications = []
    seen = set()
    for user_id in user_ids:
        if user_id in seen:
            continue
        seen.add(user_id)
        notifications.append(
            notify(user_id, message, notification_type, related_id, related_model)
        )
    return notifications


def get_active_admin_ids():
    rows = db.session.query(User.id).filter(
        User.role == UserRole.ADMIN.value,
        User.status == UserStatus.ACTIVE.value
    ).all()
    return [row.id for row in rows]


def notify_admins(message, notification_type=NotificationType.SYSTEM.value,
                  related_id=None, related_model=None):
    """Broadcast to every active admin."""
    return notify_many(get_active_admin_ids(), message, notification_type,
                       related_id, related_model)


# ============================================================
# READERS
# ============================================================

def list_notifications(user_id, limit=None, unread_only=False):
    """Newest first, plus the user's unread count."""
    if limit is None:
        limit = current_app.config['NOTIFICATION_PAGE_SIZE']

    query = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter_by(read=False)

    notifications = query.order_by(
        Notification.created_at.desc(), Notification.id.desc()
    ).limit(limit).all()

    return {
        'notifications': [n.to_dict() for n in notifications],
        'unreadCount': count_unread(user_id)
    }


def count_unread(user_id):
    return Notification.query.filter_by(user_id=user_id, read=False).count()


# ============================================================
# READ-FLAG TOGGLES
# ============================================================

def mark_as_read(notification_id, user_id):
    changed = Notification.query.filter_by(
        id=notification_id,
        user_id=user_id
    ).update({Notification.read: True}, synchronize_session=False)

    if not changed:
        db.session.rollback()
        raise NotFoundError("Notification not found")

    db.session.commit()
    return True


def mark_all_as_read(user_id):
    changed = Notification.query.filter_by(
        user_id=user_id,
        read=False
    ).update({Notification.read: True}, synchronize_session=False)
    db.session.commit()

    logger.debug("Marked %s notification(s) read for user %s", changed, user_id)
    return changed
