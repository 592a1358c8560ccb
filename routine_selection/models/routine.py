"""
Routine Selection Service
Routine instance model — the selectable unit of work.

A RoutineInstance is one scheduled occurrence of a routine template
(e.g. "Morning feeding" on 2026-11-03). Its points_value is the fairness
weight used by the turn-order algorithms and snapshotted on every
SelectionEntry.
"""

from routine_selection.models import db
from routine_selection.models.base import OrganizationModel, _uuid, _utcnow, iso

# ── Constants ────────────────────────────────────────────────────────────────

INSTANCE_STATUSES = {"scheduled", "started", "completed", "cancelled"}
ASSIGNMENT_TYPES = {"unassigned", "manual", "selection", "auto"}


class RoutineInstance(OrganizationModel):
    """One scheduled occurrence of a routine in a stable."""

    __tablename__ = "routine_instances"
    __table_args__ = (
        db.Index("ix_routine_instances_stable_date", "stable_id", "scheduled_date"),
        db.Index("ix_routine_instances_stable_status", "stable_id", "status"),
    )

    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    stable_id = db.Column(
        db.String(64), db.ForeignKey("stables.id", ondelete="CASCADE"), nullable=False,
    )
    template_name = db.Column(db.String(200), nullable=False)
    scheduled_date = db.Column(db.Date, nullable=False)
    points_value = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(20), nullable=False, default="scheduled")

    # Assignment
    assignment_type = db.Column(db.String(20), nullable=False, default="unassigned")
    assigned_to = db.Column(db.String(128), nullable=True)
    assigned_to_name = db.Column(db.String(200), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Completion (feeds points_balance)
    completed_by = db.Column(db.String(128), nullable=True, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    points_awarded = db.Column(
        db.Integer, nullable=True,
        comment="Points actually credited on completion (holiday multiplier etc.); falls back to points_value",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def is_claimed(self) -> bool:
        return self.assignment_type != "unassigned" or bool(self.assigned_to)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "stable_id": self.stable_id,
            "template_name": self.template_name,
            "scheduled_date": iso(self.scheduled_date),
            "points_value": self.points_value,
            "status": self.status,
            "assignment_type": self.assignment_type,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assigned_to_name,
            "assigned_at": iso(self.assigned_at),
            "completed_by": self.completed_by,
            "completed_at": iso(self.completed_at),
            "points_awarded": self.points_awarded,
        }

    def __repr__(self):
        return f"<RoutineInstance {self.id}: {self.template_name} {self.scheduled_date}>"
