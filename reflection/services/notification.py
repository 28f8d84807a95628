"""
Reflection Waves
Notification Service.

Creates and queries in-app notifications. The session-completed event from
the expiration reconciler is persisted here, then handed to the optional
dispatcher (push/email delivery lives outside the engine).
"""

import logging

from flask import current_app

from reflection.models import db
from reflection.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", category="system", severity="info",
               entity_type="", entity_id=None, payload=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_session_completed(*, user_id, session_id, total_completed_sessions):
        """Persist and dispatch the completion event for one session."""
        notif = NotificationService.create(
            user_id=user_id,
            title="Reflection complete",
            message=(f"Your wave has ended. You have completed "
                     f"{total_completed_sessions} reflection session"
                     f"{'' if total_completed_sessions == 1 else 's'}."),
            category="session_completed",
            severity="success",
            entity_type="reflection_session",
            entity_id=session_id,
            payload={
                "user_id": user_id,
                "session_id": session_id,
                "total_completed_sessions": total_completed_sessions,
            },
        )
        dispatcher = current_app.extensions["collaborators"].dispatcher
        if dispatcher is not None:
            dispatcher(notif.to_dict())
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (q.order_by(Notification.created_at.desc(), Notification.id.desc())
                 .offset(offset).limit(limit).all())
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Returns None if not the user's."""
        notif = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif
