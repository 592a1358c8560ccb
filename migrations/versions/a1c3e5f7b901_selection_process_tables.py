"""Selection process — stables, routine instances, selection ledger, history

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-18 09:00:00.000000

Changes:
  - Create stables / stable_members (membership collaborator)
  - Create routine_instances (selectable units)
  - Create selection_processes with version counter for optimistic locking
  - Create selection_process_turns, selection_entries, selection_process_history
  - Create notifications, audit_logs
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Stable & membership ──
    op.create_table(
        "stables",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("owner_name", sa.String(200), nullable=True),
        sa.Column("owner_email", sa.String(200), nullable=True),
        sa.Column("memory_horizon_days", sa.Integer(), nullable=True),
        sa.Column("default_selection_algorithm", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "stable_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stable_id", sa.String(64),
                  sa.ForeignKey("stables.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(200), nullable=True),
        sa.Column("role", sa.String(30), nullable=False, server_default="member"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("stable_id", "user_id", name="uq_stable_member_user"),
    )

    # ── Routine instances ──
    op.create_table(
        "routine_instances",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False, index=True),
        sa.Column("stable_id", sa.String(64),
                  sa.ForeignKey("stables.id", ondelete="CASCADE"), nullable=False),
        sa.Column("template_name", sa.String(200), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("points_value", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("assignment_type", sa.String(20), nullable=False, server_default="unassigned"),
        sa.Column("assigned_to", sa.String(128), nullable=True),
        sa.Column("assigned_to_name", sa.String(200), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(128), nullable=True, index=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("points_awarded", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_routine_instances_stable_date", "routine_instances", ["stable_id", "scheduled_date"])
    op.create_index("ix_routine_instances_stable_status", "routine_instances", ["stable_id", "status"])

    # ── Selection process ──
    op.create_table(
        "selection_processes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False, index=True),
        sa.Column("stable_id", sa.String(64),
                  sa.ForeignKey("stables.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("selection_start_date", sa.Date(), nullable=False),
        sa.Column("selection_end_date", sa.Date(), nullable=False),
        sa.Column("current_turn_index", sa.Integer(), nullable=False, server_default="-1"),
        sa.Column("current_turn_user_id", sa.String(128), nullable=True, index=True),
        sa.Column("algorithm", sa.String(30), nullable=False, server_default="manual"),
        sa.Column("quota_per_member", sa.Float(), nullable=True),
        sa.Column("total_available_points", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index(
        "ix_selection_processes_org_stable_status", "selection_processes",
        ["organization_id", "stable_id", "status"],
    )
    op.create_index(
        "uq_selection_processes_active_stable", "selection_processes", ["stable_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "selection_process_turns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("process_id", sa.String(36),
                  sa.ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("user_email", sa.String(200), nullable=False, server_default=""),
        sa.Column("turn_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("selections_count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("process_id", "user_id", name="uq_selection_turn_user"),
        sa.UniqueConstraint("process_id", "turn_order", name="uq_selection_turn_order"),
    )

    op.create_table(
        "selection_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("process_id", sa.String(36),
                  sa.ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("routine_instance_id", sa.String(64), nullable=False, index=True),
        sa.Column("selected_by", sa.String(128), nullable=False),
        sa.Column("selected_by_name", sa.String(200), nullable=False),
        sa.Column("turn_order", sa.Integer(), nullable=False),
        sa.Column("routine_template_name", sa.String(200), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("selected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("points_value", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("process_id", "routine_instance_id", name="uq_selection_entry_instance"),
        sa.UniqueConstraint("process_id", "sequence", name="uq_selection_entry_sequence"),
    )
    op.create_index(
        "ix_selection_entries_process_user", "selection_entries", ["process_id", "selected_by"],
    )

    op.create_table(
        "selection_process_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False, index=True),
        sa.Column("stable_id", sa.String(64), nullable=False, index=True),
        sa.Column("process_id", sa.String(36),
                  sa.ForeignKey("selection_processes.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("process_name", sa.String(200), nullable=False),
        sa.Column("algorithm", sa.String(30), nullable=False),
        sa.Column("final_turn_order", sa.JSON(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_selection_history_org_stable_completed", "selection_process_history",
        ["organization_id", "stable_id", "completed_at"],
    )

    # ── Notifications & audit ──
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False, index=True),
        sa.Column("stable_id", sa.String(64), nullable=True, index=True),
        sa.Column("recipient_id", sa.String(128), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="system"),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=True),
        sa.Column("entity_type", sa.String(30), nullable=True),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_org_recipient", "notifications", ["organization_id", "recipient_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=True, index=True),
        sa.Column("stable_id", sa.String(64), nullable=True, index=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("actor", sa.String(128), nullable=False, server_default="system"),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("selection_process_history")
    op.drop_table("selection_entries")
    op.drop_table("selection_process_turns")
    op.drop_index("uq_selection_processes_active_stable", table_name="selection_processes")
    op.drop_table("selection_processes")
    op.drop_table("routine_instances")
    op.drop_table("stable_members")
    op.drop_table("stables")
