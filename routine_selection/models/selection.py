"""
Routine Selection Service
Selection process domain models.

Models:
    - SelectionProcess: aggregate root of a turn-based selection round
    - SelectionProcessTurn: one member's place in the queue (embedded value)
    - SelectionEntry: append-only ledger of picks
    - SelectionProcessHistory: write-once archive of a completed process

State machine (SelectionProcess.status):
    draft  ──start──▶ active ──last turn completed──▶ completed
      │                 │
      └──cancel──▶ cancelled ◀──cancel──┘

completed and cancelled are terminal: no field of the process or its
turns changes afterwards. Rows are never hard-deleted.
"""

from routine_selection.models import db
from routine_selection.models.base import OrganizationModel, _uuid, _utcnow, iso

# ── Constants ────────────────────────────────────────────────────────────────

SELECTION_ALGORITHMS = ("manual", "quota_based", "points_balance", "fair_rotation")
PROCESS_STATUSES = {"draft", "active", "completed", "cancelled"}

# Allowed source statuses per process operation
PROCESS_TRANSITIONS = {
    "update": {"from": ["draft"], "to": "draft"},
    "start": {"from": ["draft"], "to": "active"},
    "record_selection": {"from": ["active"], "to": "active"},
    "complete_turn": {"from": ["active"], "to": "active"},
    "update_dates": {"from": ["active"], "to": "active"},
    "cancel": {"from": ["draft", "active"], "to": "cancelled"},
}


class SelectionProcess(OrganizationModel):
    """
    Turn-based routine selection round for one stable.

    current_turn_index / current_turn_user_id mirror the active turn and are
    only ever written in the same flush as the turns they describe.
    ``version`` is the optimistic-concurrency counter: every UPDATE is
    conditioned on it, so a losing concurrent writer gets StaleDataError.
    """

    __tablename__ = "selection_processes"
    __table_args__ = (
        db.Index("ix_selection_processes_org_stable_status", "organization_id", "stable_id", "status"),
        # At most one active process per stable
        db.Index(
            "uq_selection_processes_active_stable", "stable_id", unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    stable_id = db.Column(
        db.String(64), db.ForeignKey("stables.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Selectable period (inclusive)
    selection_start_date = db.Column(db.Date, nullable=False)
    selection_end_date = db.Column(db.Date, nullable=False)

    # Turn pointer
    current_turn_index = db.Column(db.Integer, nullable=False, default=-1)
    current_turn_user_id = db.Column(db.String(128), nullable=True, index=True)

    # Algorithm (immutable after creation)
    algorithm = db.Column(db.String(30), nullable=False, default="manual")
    quota_per_member = db.Column(db.Float, nullable=True, comment="quota_based only")
    total_available_points = db.Column(db.Integer, nullable=True, comment="quota_based only")

    status = db.Column(db.String(20), nullable=False, default="draft")

    # Cancellation
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)

    # Audit timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = db.Column(db.String(128), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_by = db.Column(db.String(128), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    turns = db.relationship(
        "SelectionProcessTurn",
        back_populates="process",
        order_by="SelectionProcessTurn.order",
        cascade="all, delete-orphan",
    )
    entries = db.relationship(
        "SelectionEntry",
        back_populates="process",
        order_by="SelectionEntry.sequence",
        cascade="all, delete-orphan",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def current_turn(self):
        """The turn at current_turn_index, or None when no turn is active."""
        if 0 <= self.current_turn_index < len(self.turns):
            return self.turns[self.current_turn_index]
        return None

    def turn_for(self, user_id):
        return next((t for t in self.turns if t.user_id == user_id), None)

    def to_dict(self, include_turns=True):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "stable_id": self.stable_id,
            "name": self.name,
            "description": self.description,
            "selection_start_date": iso(self.selection_start_date),
            "selection_end_date": iso(self.selection_end_date),
            "current_turn_index": self.current_turn_index,
            "current_turn_user_id": self.current_turn_user_id,
            "algorithm": self.algorithm,
            "quota_per_member": self.quota_per_member,
            "total_available_points": self.total_available_points,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "created_at": iso(self.created_at),
            "created_by": self.created_by,
            "updated_at": iso(self.updated_at),
            "updated_by": self.updated_by,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "version": self.version,
        }
        if include_turns:
            d["turns"] = [t.to_dict() for t in self.turns]
        return d

    def __repr__(self):
        return f"<SelectionProcess {self.id}: {self.name} [{self.status}]>"


class SelectionProcessTurn(db.Model):
    """
    A member's position in the selection queue.

    user_name / user_email are a point-in-time snapshot taken when the
    process is created; they are never re-joined against the member table.
    """

    __tablename__ = "selection_process_turns"
    __table_args__ = (
        db.UniqueConstraint("process_id", "user_id", name="uq_selection_turn_user"),
        db.UniqueConstraint("process_id", "turn_order", name="uq_selection_turn_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.String(36), db.ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.String(128), nullable=False)
    user_name = db.Column(db.String(200), nullable=False)
    user_email = db.Column(db.String(200), nullable=False, default="")
    order = db.Column("turn_order", db.Integer, nullable=False, comment="1-based queue position")
    status = db.Column(db.String(20), nullable=False, default="pending")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    selections_count = db.Column(db.Integer, nullable=False, default=0)

    process = db.relationship("SelectionProcess", back_populates="turns")

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "order": self.order,
            "status": self.status,
            "completed_at": iso(self.completed_at),
            "selections_count": self.selections_count,
        }

    def __repr__(self):
        return f"<SelectionProcessTurn #{self.order} {self.user_id} [{self.status}]>"


class SelectionEntry(db.Model):
    """
    Append-only record of one pick.

    Business rules:
    - Rows are NEVER updated or deleted.
    - (process_id, routine_instance_id) is unique — no double booking.
    - sequence is the 1-based ledger position; selected_at increases with it.
    - points_value is snapshotted so later weight changes do not rewrite history.
    """

    __tablename__ = "selection_entries"
    __table_args__ = (
        db.UniqueConstraint("process_id", "routine_instance_id", name="uq_selection_entry_instance"),
        db.UniqueConstraint("process_id", "sequence", name="uq_selection_entry_sequence"),
        db.Index("ix_selection_entries_process_user", "process_id", "selected_by"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False,
    )
    sequence = db.Column(db.Integer, nullable=False)
    routine_instance_id = db.Column(db.String(64), nullable=False, index=True)
    selected_by = db.Column(db.String(128), nullable=False)
    selected_by_name = db.Column(db.String(200), nullable=False)
    turn_order = db.Column(db.Integer, nullable=False)
    routine_template_name = db.Column(db.String(200), nullable=True)
    scheduled_date = db.Column(db.Date, nullable=True)
    selected_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    points_value = db.Column(db.Integer, nullable=False, default=0)

    process = db.relationship("SelectionProcess", back_populates="entries")

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "sequence": self.sequence,
            "routine_instance_id": self.routine_instance_id,
            "selected_by": self.selected_by,
            "selected_by_name": self.selected_by_name,
            "turn_order": self.turn_order,
            "routine_template_name": self.routine_template_name,
            "scheduled_date": iso(self.scheduled_date),
            "selected_at": iso(self.selected_at),
            "points_value": self.points_value,
        }

    def __repr__(self):
        return f"<SelectionEntry {self.process_id}#{self.sequence} {self.routine_instance_id}>"


class SelectionProcessHistory(OrganizationModel):
    """
    Immutable archive of a completed selection process.

    Exactly one row per completed process (unique process_id); none for
    cancelled processes. Read only by the turn-order algorithms of later
    processes on the same stable.

    final_turn_order:
        [{"user_id", "user_name", "order", "selections_count", "total_points_picked"}, ...]
    """

    __tablename__ = "selection_process_history"
    __table_args__ = (
        db.Index("ix_selection_history_org_stable_completed", "organization_id", "stable_id", "completed_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    stable_id = db.Column(db.String(64), nullable=False, index=True)
    process_id = db.Column(
        db.String(36), db.ForeignKey("selection_processes.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    process_name = db.Column(db.String(200), nullable=False)
    algorithm = db.Column(db.String(30), nullable=False)
    final_turn_order = db.Column(db.JSON, nullable=False, default=list)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "stable_id": self.stable_id,
            "process_id": self.process_id,
            "process_name": self.process_name,
            "algorithm": self.algorithm,
            "final_turn_order": list(self.final_turn_order or []),
            "completed_at": iso(self.completed_at),
            "archived_at": iso(self.archived_at),
        }

    def __repr__(self):
        return f"<SelectionProcessHistory {self.id} process={self.process_id}>"
