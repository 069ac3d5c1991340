"""Repository helpers for projects, phases, spend sources and reallocations."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from sitebudget.models.entities import (
    AuditEvent,
    BudgetReallocation,
    CostSource,
    CostStage,
    Phase,
    PhaseCostEntry,
    PhaseDependency,
    Project,
    ProjectFinance,
    ReallocationStatus,
    SpendChangeEvent,
)


class BudgetRepository:
    """Persistence operations used by the budget engine services."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Projects ----------
    def get_project(self, project_id: UUID, *, for_update: bool = False) -> Project | None:
        stmt = select(Project).where(and_(Project.id == project_id, Project.deleted_at.is_(None)))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.scalar(stmt)

    def get_project_by_code(self, code: str) -> Project | None:
        return self.db.scalar(select(Project).where(Project.code == code))

    def add_project(self, project: Project) -> Project:
        self.db.add(project)
        self.db.flush()
        return project

    # ---------- Phases ----------
    def list_phases(self, project_id: UUID) -> list[Phase]:
        return self.db.scalars(
            select(Phase)
            .where(and_(Phase.project_id == project_id, Phase.deleted_at.is_(None)))
            .order_by(Phase.sequence_no.asc(), Phase.code.asc())
        ).all()

    def get_phase(self, phase_id: UUID, *, for_update: bool = False) -> Phase | None:
        stmt = select(Phase).where(and_(Phase.id == phase_id, Phase.deleted_at.is_(None)))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.scalar(stmt)

    def get_phases(self, phase_ids: Iterable[UUID]) -> list[Phase]:
        ids = list(phase_ids)
        if not ids:
            return []
        return self.db.scalars(select(Phase).where(Phase.id.in_(ids))).all()

    def add_phase(self, phase: Phase) -> Phase:
        self.db.add(phase)
        self.db.flush()
        return phase

    def sum_phase_allocations(self, project_id: UUID) -> Decimal:
        total = self.db.scalar(
            select(func.coalesce(func.sum(Phase.allocation_total), 0)).where(
                and_(Phase.project_id == project_id, Phase.deleted_at.is_(None))
            )
        )
        return Decimal(total or 0)

    def sum_phase_financials(self, project_id: UUID) -> tuple[Decimal, Decimal, Decimal]:
        row = self.db.execute(
            select(
                func.coalesce(func.sum(Phase.actual_total), 0),
                func.coalesce(func.sum(Phase.committed_cost), 0),
                func.coalesce(func.sum(Phase.estimated_cost), 0),
            ).where(and_(Phase.project_id == project_id, Phase.deleted_at.is_(None)))
        ).one()
        return Decimal(row[0] or 0), Decimal(row[1] or 0), Decimal(row[2] or 0)

    # ---------- Phase dependencies ----------
    def list_dependency_ids(self, phase_id: UUID) -> list[UUID]:
        return self.db.scalars(
            select(PhaseDependency.depends_on_phase_id)
            .where(PhaseDependency.phase_id == phase_id)
            .order_by(PhaseDependency.depends_on_phase_id.asc())
        ).all()

    def replace_dependencies(self, phase_id: UUID, depends_on: Iterable[UUID]) -> None:
        for row in self.db.scalars(select(PhaseDependency).where(PhaseDependency.phase_id == phase_id)).all():
            self.db.delete(row)
        self.db.flush()
        for dependency_id in depends_on:
            self.db.add(PhaseDependency(phase_id=phase_id, depends_on_phase_id=dependency_id))
        self.db.flush()

    # ---------- Cost entries ----------
    def get_cost_entry(self, entry_id: UUID) -> PhaseCostEntry | None:
        return self.db.scalar(
            select(PhaseCostEntry).where(and_(PhaseCostEntry.id == entry_id, PhaseCostEntry.deleted_at.is_(None)))
        )

    def list_cost_entries(self, phase_id: UUID) -> list[PhaseCostEntry]:
        return self.db.scalars(
            select(PhaseCostEntry)
            .where(and_(PhaseCostEntry.phase_id == phase_id, PhaseCostEntry.deleted_at.is_(None)))
            .order_by(PhaseCostEntry.created_at.asc(), PhaseCostEntry.id.asc())
        ).all()

    def add_cost_entry(self, entry: PhaseCostEntry) -> PhaseCostEntry:
        self.db.add(entry)
        self.db.flush()
        return entry

    def sum_cost_entries(self, phase_id: UUID, *, source: CostSource, stage: CostStage) -> Decimal:
        total = self.db.scalar(
            select(func.coalesce(func.sum(PhaseCostEntry.amount), 0)).where(
                and_(
                    PhaseCostEntry.phase_id == phase_id,
                    PhaseCostEntry.source == source,
                    PhaseCostEntry.stage == stage,
                    PhaseCostEntry.deleted_at.is_(None),
                )
            )
        )
        return Decimal(total or 0)

    # ---------- Spend change outbox ----------
    def add_spend_event(self, phase_id: UUID, *, reason: str) -> SpendChangeEvent:
        event = SpendChangeEvent(phase_id=phase_id, reason=reason, attempts=0, created_at=datetime.utcnow())
        self.db.add(event)
        self.db.flush()
        return event

    def list_pending_spend_events(self, phase_ids: Iterable[UUID] | None = None) -> list[SpendChangeEvent]:
        conditions = [SpendChangeEvent.processed_at.is_(None)]
        if phase_ids is not None:
            ids = list(phase_ids)
            if not ids:
                return []
            conditions.append(SpendChangeEvent.phase_id.in_(ids))
        return self.db.scalars(
            select(SpendChangeEvent)
            .where(and_(*conditions))
            .order_by(SpendChangeEvent.created_at.asc(), SpendChangeEvent.id.asc())
        ).all()

    def mark_spend_events_processed(self, event_ids: Iterable[UUID], *, processed_at: datetime) -> None:
        ids = list(event_ids)
        if not ids:
            return
        self.db.execute(
            update(SpendChangeEvent)
            .where(SpendChangeEvent.id.in_(ids))
            .values(processed_at=processed_at, attempts=SpendChangeEvent.attempts + 1, last_error=None)
        )

    def mark_spend_events_failed(self, event_ids: Iterable[UUID], *, error: str) -> None:
        ids = list(event_ids)
        if not ids:
            return
        self.db.execute(
            update(SpendChangeEvent)
            .where(SpendChangeEvent.id.in_(ids))
            .values(attempts=SpendChangeEvent.attempts + 1, last_error=error[:2000])
        )

    # ---------- Financing ledger (read-only) ----------
    def get_project_finance(self, project_id: UUID) -> ProjectFinance | None:
        return self.db.scalar(select(ProjectFinance).where(ProjectFinance.project_id == project_id))

    # ---------- Reallocations ----------
    def get_reallocation(self, reallocation_id: UUID, *, for_update: bool = False) -> BudgetReallocation | None:
        stmt = select(BudgetReallocation).where(
            and_(BudgetReallocation.id == reallocation_id, BudgetReallocation.deleted_at.is_(None))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.scalar(stmt)

    def add_reallocation(self, reallocation: BudgetReallocation) -> BudgetReallocation:
        self.db.add(reallocation)
        self.db.flush()
        return reallocation

    def list_reallocations(
        self,
        *,
        project_id: UUID | None = None,
        phase_id: UUID | None = None,
        status: ReallocationStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[BudgetReallocation], int]:
        conditions = [BudgetReallocation.deleted_at.is_(None)]
        if project_id is not None:
            conditions.append(BudgetReallocation.project_id == project_id)
        if phase_id is not None:
            conditions.append(
                or_(BudgetReallocation.from_phase_id == phase_id, BudgetReallocation.to_phase_id == phase_id)
            )
        if status is not None:
            conditions.append(BudgetReallocation.status == status)

        total = self.db.scalar(select(func.count()).select_from(BudgetReallocation).where(and_(*conditions)))
        rows = self.db.scalars(
            select(BudgetReallocation)
            .where(and_(*conditions))
            .order_by(BudgetReallocation.requested_at.desc(), BudgetReallocation.id.asc())
            .offset(offset)
            .limit(limit)
        ).all()
        return rows, int(total or 0)

    def transition_reallocation(
        self,
        reallocation_id: UUID,
        *,
        from_status: ReallocationStatus,
        values: dict[str, object],
    ) -> bool:
        """Compare-and-set the request status; False when another writer got there first."""

        result = self.db.execute(
            update(BudgetReallocation)
            .where(and_(BudgetReallocation.id == reallocation_id, BudgetReallocation.status == from_status))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ---------- Audit ----------
    def add_audit_event(self, event: AuditEvent) -> AuditEvent:
        self.db.add(event)
        self.db.flush()
        return event

    def list_audit_events(self, *, entity_name: str, entity_id: str) -> list[AuditEvent]:
        return self.db.scalars(
            select(AuditEvent)
            .where(and_(AuditEvent.entity_name == entity_name, AuditEvent.entity_id == entity_id))
            .order_by(AuditEvent.created_at.asc())
        ).all()
