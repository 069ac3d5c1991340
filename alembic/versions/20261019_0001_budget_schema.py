"""budget allocation schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


reallocation_type = postgresql.ENUM(
    "phase_to_phase", "project_to_phase", "phase_to_project", name="reallocation_type", create_type=False
)
reallocation_status = postgresql.ENUM("pending", "executed", "rejected", name="reallocation_status", create_type=False)
cost_source = postgresql.ENUM("materials", "expenses", "equipment", "labour", name="cost_source", create_type=False)
cost_stage = postgresql.ENUM("estimated", "committed", "approved", name="cost_stage", create_type=False)


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default=sa.text("0"))


def upgrade() -> None:
    reallocation_type.create(op.get_bind(), checkfirst=True)
    reallocation_status.create(op.get_bind(), checkfirst=True)
    cost_source.create(op.get_bind(), checkfirst=True)
    cost_stage.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=2000), nullable=True),
        _money("budget_total"),
        _money("budget_materials"),
        _money("budget_labour"),
        _money("budget_contingency"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("budget_total >= 0", name="ck_projects_budget_total_non_negative"),
        sa.UniqueConstraint("code", name="uq_projects_code"),
    )

    op.create_table(
        "phases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("planned_start_date", sa.Date(), nullable=True),
        sa.Column("planned_end_date", sa.Date(), nullable=True),
        _money("allocation_total"),
        _money("allocation_materials"),
        _money("allocation_labour"),
        _money("allocation_equipment"),
        _money("allocation_subcontractors"),
        _money("allocation_contingency"),
        _money("actual_total"),
        _money("actual_materials"),
        _money("actual_expenses"),
        _money("actual_equipment"),
        _money("actual_labour"),
        _money("committed_cost"),
        _money("estimated_cost"),
        _money("remaining_budget"),
        sa.Column("last_recalculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("allocation_total >= 0", name="ck_phases_allocation_total_non_negative"),
        sa.CheckConstraint("remaining_budget >= 0", name="ck_phases_remaining_non_negative"),
        sa.UniqueConstraint("project_id", "sequence_no", name="uq_phases_project_sequence"),
    )
    op.create_index("ix_phases_project_id", "phases", ["project_id"])

    op.create_table(
        "phase_dependencies",
        sa.Column("phase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("phases.id"), primary_key=True),
        sa.Column(
            "depends_on_phase_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("phases.id"),
            primary_key=True,
        ),
        sa.CheckConstraint("phase_id <> depends_on_phase_id", name="ck_phase_dependencies_not_self"),
    )
    op.create_index("ix_phase_dependencies_depends_on", "phase_dependencies", ["depends_on_phase_id"])

    op.create_table(
        "budget_reallocations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("from_phase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("phases.id"), nullable=True),
        sa.Column("to_phase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("phases.id"), nullable=True),
        sa.Column("reallocation_type", reallocation_type, nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("reason", sa.String(length=2000), nullable=False),
        sa.Column("status", reallocation_status, nullable=False),
        sa.Column("requested_by", sa.String(length=128), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approval_notes", sa.String(length=2000), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=128), nullable=True),
        sa.Column("rejection_reason", sa.String(length=2000), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_budget_reallocations_amount_positive"),
    )
    op.create_index("ix_budget_reallocations_project_status", "budget_reallocations", ["project_id", "status"])
    op.create_index("ix_budget_reallocations_requested_at", "budget_reallocations", ["requested_at"])

    op.create_table(
        "phase_cost_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("phase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("phases.id"), nullable=False),
        sa.Column("source", cost_source, nullable=False),
        sa.Column("stage", cost_stage, nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=True),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_phase_cost_entries_amount_non_negative"),
    )
    op.create_index(
        "ix_phase_cost_entries_phase_source_stage", "phase_cost_entries", ["phase_id", "source", "stage"]
    )

    op.create_table(
        "spend_change_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("phase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("phases.id"), nullable=False),
        sa.Column("reason", sa.String(length=128), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_spend_change_events_pending", "spend_change_events", ["processed_at", "phase_id"])

    op.create_table(
        "project_finances",
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), primary_key=True),
        _money("total_invested"),
        _money("total_used"),
        _money("total_loans"),
        _money("total_equity"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("entity_name", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("before_payload", postgresql.JSONB(), nullable=True),
        sa.Column("after_payload", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_project_id", "audit_events", ["project_id"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_project_id", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_table("project_finances")

    op.drop_index("ix_spend_change_events_pending", table_name="spend_change_events")
    op.drop_table("spend_change_events")

    op.drop_index("ix_phase_cost_entries_phase_source_stage", table_name="phase_cost_entries")
    op.drop_table("phase_cost_entries")

    op.drop_index("ix_budget_reallocations_requested_at", table_name="budget_reallocations")
    op.drop_index("ix_budget_reallocations_project_status", table_name="budget_reallocations")
    op.drop_table("budget_reallocations")

    op.drop_index("ix_phase_dependencies_depends_on", table_name="phase_dependencies")
    op.drop_table("phase_dependencies")

    op.drop_index("ix_phases_project_id", table_name="phases")
    op.drop_table("phases")

    op.drop_table("projects")

    cost_stage.drop(op.get_bind(), checkfirst=True)
    cost_source.drop(op.get_bind(), checkfirst=True)
    reallocation_status.drop(op.get_bind(), checkfirst=True)
    reallocation_type.drop(op.get_bind(), checkfirst=True)
