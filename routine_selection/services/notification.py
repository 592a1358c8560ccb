"""
Routine Selection Service
Notification Service.

Central service for creating and querying in-app notifications, plus the
selection-process hooks (turn started, process completed).

The hooks never raise: a failed notification is logged and rolled back,
and the state transition that triggered it stands.
"""

import logging
from datetime import datetime, timezone

from routine_selection.models import db
from routine_selection.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, organization_id, recipient_id, title, message="", type="system",
               severity="info", stable_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            organization_id=organization_id,
            stable_id=stable_id,
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, organization_id, recipient_ids, title, message="", type="system",
                  severity="info", stable_id=None, entity_type="", entity_id=None):
        """
        Send the same notification to several recipients in one commit.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for recipient_id in recipient_ids:
            notif = Notification(
                organization_id=organization_id,
                stable_id=stable_id,
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(organization_id, recipient_id, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(
            organization_id=organization_id, recipient_id=recipient_id,
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(organization_id, recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(
            organization_id=organization_id, recipient_id=recipient_id, is_read=False,
        ).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, organization_id, recipient_id):
        """Mark a single notification as read. Returns None if not the recipient's."""
        notif = Notification.query.filter_by(
            id=notification_id, organization_id=organization_id, recipient_id=recipient_id,
        ).first()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(organization_id, recipient_id):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter_by(
            organization_id=organization_id, recipient_id=recipient_id, is_read=False,
        )
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    # ── Selection process hooks ───────────────────────────────────────────

    @staticmethod
    def notify_turn_started(process, turn):
        """Tell the member whose turn just became active."""
        try:
            return NotificationService.create(
                organization_id=process.organization_id,
                stable_id=process.stable_id,
                recipient_id=turn.user_id,
                type="selection_turn_started",
                title=f"Your turn to pick routines: {process.name}",
                message=(
                    f"Pick your routines for {process.selection_start_date.isoformat()}"
                    f" – {process.selection_end_date.isoformat()}, then complete your turn."
                ),
                severity="info",
                entity_type="selection_process",
                entity_id=process.id,
            )
        except Exception:
            db.session.rollback()
            logger.exception(
                "Failed to send turn-started notification",
                extra={"process_id": process.id, "user_id": turn.user_id,
                       "organization_id": process.organization_id},
            )
            return None

    @staticmethod
    def notify_process_completed(process):
        """Tell every participant the selection is over."""
        try:
            return NotificationService.broadcast(
                organization_id=process.organization_id,
                stable_id=process.stable_id,
                recipient_ids=[t.user_id for t in process.turns],
                type="selection_process_completed",
                title=f"Routine selection completed: {process.name}",
                message="Every member has picked. Your routines are in the schedule.",
                severity="success",
                entity_type="selection_process",
                entity_id=process.id,
            )
        except Exception:
            db.session.rollback()
            logger.exception(
                "Failed to send process-completed notifications",
                extra={"process_id": process.id, "organization_id": process.organization_id},
            )
            return []
