"""
Routine Selection Service
Stable domain model — membership collaborator.

Models:
    - Stable: a stable within an organization, with its owner snapshot and
      points-system settings.
    - StableMember: a user's membership in a stable (role + status).

The stable owner is NOT a StableMember row; ownership is tracked via
Stable.owner_id and the owner snapshot columns.
"""

from routine_selection.models import db
from routine_selection.models.base import OrganizationModel, _utcnow, iso

# ── Constants ────────────────────────────────────────────────────────────────

MEMBER_ROLES = {"member", "administrator", "schedule_planner"}
MEMBER_STATUSES = {"active", "inactive"}

# Roles allowed to manage selection processes (besides the owner)
MANAGER_ROLES = frozenset({"administrator", "schedule_planner"})


class Stable(OrganizationModel):
    """A stable whose members share routine duties."""

    __tablename__ = "stables"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    # Owner snapshot (owner is not a StableMember)
    owner_id = db.Column(db.String(128), nullable=False)
    owner_name = db.Column(db.String(200))
    owner_email = db.Column(db.String(200))

    # Points system
    memory_horizon_days = db.Column(
        db.Integer, nullable=True,
        comment="Rolling window for points_balance / quota_based; NULL = app default",
    )
    default_selection_algorithm = db.Column(
        db.String(30), nullable=True,
        comment="manual | quota_based | points_balance | fair_rotation",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    members = db.relationship(
        "StableMember", back_populates="stable", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "memory_horizon_days": self.memory_horizon_days,
            "default_selection_algorithm": self.default_selection_algorithm,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Stable {self.id}: {self.name}>"


class StableMember(db.Model):
    """Membership of a user in a stable."""

    __tablename__ = "stable_members"

    id = db.Column(db.Integer, primary_key=True)
    stable_id = db.Column(
        db.String(64), db.ForeignKey("stables.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(128), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    email = db.Column(db.String(200))
    role = db.Column(db.String(30), nullable=False, default="member")
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("stable_id", "user_id", name="uq_stable_member_user"),
    )

    stable = db.relationship("Stable", back_populates="members")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email or self.user_id

    def to_dict(self):
        return {
            "id": self.id,
            "stable_id": self.stable_id,
            "user_id": self.user_id,
            "name": self.display_name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
        }

    def __repr__(self):
        return f"<StableMember {self.user_id}@{self.stable_id} ({self.role})>"
