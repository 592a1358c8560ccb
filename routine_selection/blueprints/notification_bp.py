"""
Notification Blueprint — the caller's in-app notifications.

Endpoints:
    GET  /api/v1/notifications               newest first (?unread_only=true)
    POST /api/v1/notifications/<id>/read     mark one as read
    POST /api/v1/notifications/read-all      mark all as read
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from routine_selection.blueprints import current_identity, register_error_handlers
from routine_selection.services.notification import NotificationService
from routine_selection.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")

register_error_handlers(notification_bp, logger)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    organization_id, user_id = current_identity()
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit = request.args.get("limit", current_app.config.get("SELECTION_LIST_DEFAULT_LIMIT", 50), type=int)
    offset = request.args.get("offset", 0, type=int)

    items, total = NotificationService.list_for_recipient(
        organization_id, user_id, unread_only=unread_only,
        limit=max(min(limit, 200), 1), offset=max(offset, 0),
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(organization_id, user_id),
    })


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    organization_id, user_id = current_identity()
    notif = NotificationService.mark_read(nid, organization_id, user_id)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    organization_id, user_id = current_identity()
    count = NotificationService.mark_all_read(organization_id, user_id)
    return jsonify({"marked_read": count})
