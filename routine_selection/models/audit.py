"""
Routine Selection Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import UTC, datetime

from routine_selection.models import db
from routine_selection.models.base import iso

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"selection_process"}

AUDIT_ACTIONS = {
    "selection_process.create",
    "selection_process.update",
    "selection_process.start",
    "selection_process.record_selection",
    "selection_process.complete_turn",
    "selection_process.complete",
    "selection_process.cancel",
    "selection_process.update_dates",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action.  ``diff_json`` carries the old→new snapshot
    for field-level changes, or the event payload for ledger writes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=True, index=True)
    stable_id = db.Column(db.String(64), nullable=True, index=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="selection_process | …",
    )
    entity_id = db.Column(
        db.String(64), nullable=False,
        comment="PK of the referenced entity",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="selection_process.start | selection_process.cancel | …",
    )
    actor = db.Column(
        db.String(128), nullable=False, default="system",
        comment="User id or 'system'",
    )

    # Change payload
    diff_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {field: {old, new}} for updates, event payload otherwise",
    )

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "stable_id": self.stable_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    organization_id: str | None = None,
    stable_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if organization_id is None:
        from flask import g, has_request_context
        if has_request_context():
            organization_id = getattr(g, "organization_id", None)

    log = AuditLog(
        organization_id=organization_id,
        stable_id=stable_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
