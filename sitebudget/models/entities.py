"""ORM entities for the budget allocation schema."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, MappedColumn, composite, mapped_column

from sitebudget.db.base import Base
from sitebudget.domain.budget import ZERO, ActualSpending, Budget, BudgetAllocation, FinancialStates


class ReallocationType(str, enum.Enum):
    PHASE_TO_PHASE = "phase_to_phase"
    PROJECT_TO_PHASE = "project_to_phase"
    PHASE_TO_PROJECT = "phase_to_project"


class ReallocationStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    REJECTED = "rejected"


class CostSource(str, enum.Enum):
    MATERIALS = "materials"
    EXPENSES = "expenses"
    EQUIPMENT = "equipment"
    LABOUR = "labour"


class CostStage(str, enum.Enum):
    ESTIMATED = "estimated"
    COMMITTED = "committed"
    APPROVED = "approved"


def _money_column() -> MappedColumn[Decimal]:
    return mapped_column(Numeric(14, 2), nullable=False, default=ZERO)


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint("budget_total >= 0", name="ck_projects_budget_total_non_negative"),
        UniqueConstraint("code", name="uq_projects_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    budget_total: Mapped[Decimal] = _money_column()
    budget_materials: Mapped[Decimal] = _money_column()
    budget_labour: Mapped[Decimal] = _money_column()
    budget_contingency: Mapped[Decimal] = _money_column()
    budget: Mapped[Budget] = composite("budget_total", "budget_materials", "budget_labour", "budget_contingency")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class Phase(Base):
    __tablename__ = "phases"
    __table_args__ = (
        CheckConstraint("allocation_total >= 0", name="ck_phases_allocation_total_non_negative"),
        CheckConstraint("remaining_budget >= 0", name="ck_phases_remaining_non_negative"),
        Index("ix_phases_project_id", "project_id"),
        UniqueConstraint("project_id", "sequence_no", name="uq_phases_project_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    planned_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    allocation_total: Mapped[Decimal] = _money_column()
    allocation_materials: Mapped[Decimal] = _money_column()
    allocation_labour: Mapped[Decimal] = _money_column()
    allocation_equipment: Mapped[Decimal] = _money_column()
    allocation_subcontractors: Mapped[Decimal] = _money_column()
    allocation_contingency: Mapped[Decimal] = _money_column()
    allocation: Mapped[BudgetAllocation] = composite(
        "allocation_total",
        "allocation_materials",
        "allocation_labour",
        "allocation_equipment",
        "allocation_subcontractors",
        "allocation_contingency",
    )
    actual_total: Mapped[Decimal] = _money_column()
    actual_materials: Mapped[Decimal] = _money_column()
    actual_expenses: Mapped[Decimal] = _money_column()
    actual_equipment: Mapped[Decimal] = _money_column()
    actual_labour: Mapped[Decimal] = _money_column()
    actual_spending: Mapped[ActualSpending] = composite(
        "actual_total", "actual_materials", "actual_expenses", "actual_equipment", "actual_labour"
    )
    committed_cost: Mapped[Decimal] = _money_column()
    estimated_cost: Mapped[Decimal] = _money_column()
    remaining_budget: Mapped[Decimal] = _money_column()
    financial_states: Mapped[FinancialStates] = composite("committed_cost", "estimated_cost", "remaining_budget")
    last_recalculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class PhaseDependency(Base):
    __tablename__ = "phase_dependencies"
    __table_args__ = (
        CheckConstraint("phase_id <> depends_on_phase_id", name="ck_phase_dependencies_not_self"),
        Index("ix_phase_dependencies_depends_on", "depends_on_phase_id"),
    )

    phase_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("phases.id"), primary_key=True)
    depends_on_phase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("phases.id"), primary_key=True
    )


class BudgetReallocation(Base):
    __tablename__ = "budget_reallocations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_budget_reallocations_amount_positive"),
        Index("ix_budget_reallocations_project_status", "project_id", "status"),
        Index("ix_budget_reallocations_requested_at", "requested_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    from_phase_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("phases.id"), nullable=True
    )
    to_phase_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("phases.id"), nullable=True)
    reallocation_type: Mapped[ReallocationType] = mapped_column(
        SQLEnum(
            ReallocationType,
            name="reallocation_type",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reason: Mapped[str] = mapped_column(String(2000), nullable=False)
    status: Mapped[ReallocationStatus] = mapped_column(
        SQLEnum(
            ReallocationStatus,
            name="reallocation_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=ReallocationStatus.PENDING,
    )
    requested_by: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    approved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class PhaseCostEntry(Base):
    __tablename__ = "phase_cost_entries"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_phase_cost_entries_amount_non_negative"),
        Index("ix_phase_cost_entries_phase_source_stage", "phase_id", "source", "stage"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    phase_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("phases.id"), nullable=False)
    source: Mapped[CostSource] = mapped_column(
        SQLEnum(
            CostSource,
            name="cost_source",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    stage: Mapped[CostStage] = mapped_column(
        SQLEnum(
            CostStage,
            name="cost_stage",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class SpendChangeEvent(Base):
    __tablename__ = "spend_change_events"
    __table_args__ = (Index("ix_spend_change_events_pending", "processed_at", "phase_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phase_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("phases.id"), nullable=False)
    reason: Mapped[str] = mapped_column(String(128), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ProjectFinance(Base):
    """Capital figures maintained by the financing ledger; read-only here."""

    __tablename__ = "project_finances"

    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id"), primary_key=True)
    total_invested: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    total_used: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    total_loans: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    total_equity: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=ZERO)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_project_id", "project_id"),
        Index("ix_audit_events_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    before_payload: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    after_payload: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
