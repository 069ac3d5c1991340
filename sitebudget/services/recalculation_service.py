"""Phase and project recalculation engine.

This service is the only writer of a phase's derived spend figures
(``actual_spending`` and ``financial_states``). Spend mutations never touch
those columns directly: they record a ``SpendChangeEvent`` in their own
transaction and, after committing, hand the affected phases to
``process_spend_events``. Calling ``process_spend_events()`` with no filter is
the reconciliation pass that drains anything left pending.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sitebudget.core.errors import ConcurrencyConflictError, NotFoundError, PartialFailure
from sitebudget.core.logging import get_logger
from sitebudget.domain.budget import FinancialStates, budget_total, q2, remaining_budget
from sitebudget.models.entities import Phase
from sitebudget.repositories.budget_repository import BudgetRepository
from sitebudget.services.capital_service import FinancingLedger, SqlFinancingLedger
from sitebudget.services.financial_summary_service import FinancialSummaryService, PhaseFinancialSummary

logger = get_logger("services.recalculation")


@dataclass(frozen=True, slots=True)
class ProjectTotals:
    project_id: UUID
    budget_total: Decimal
    total_phase_budgets: Decimal
    unallocated_budget: Decimal
    total_actual: Decimal
    total_committed: Decimal
    total_estimated: Decimal
    total_invested: Decimal
    total_used: Decimal
    total_loans: Decimal
    total_equity: Decimal
    available_capital: Decimal

    def as_dict(self) -> dict[str, str]:
        return {
            "project_id": str(self.project_id),
            "budget_total": str(self.budget_total),
            "total_phase_budgets": str(self.total_phase_budgets),
            "unallocated_budget": str(self.unallocated_budget),
            "total_actual": str(self.total_actual),
            "total_committed": str(self.total_committed),
            "total_estimated": str(self.total_estimated),
            "total_invested": str(self.total_invested),
            "total_used": str(self.total_used),
            "total_loans": str(self.total_loans),
            "total_equity": str(self.total_equity),
            "available_capital": str(self.available_capital),
        }


@dataclass(slots=True)
class RecalculationReport:
    summaries: dict[UUID, PhaseFinancialSummary] = field(default_factory=dict)
    failures: list[PartialFailure] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [str(failure) for failure in self.failures]


class RecalculationService:
    def __init__(
        self,
        db: Session,
        *,
        summary_service: FinancialSummaryService | None = None,
        ledger: FinancingLedger | None = None,
    ) -> None:
        self.db = db
        self.repo = BudgetRepository(db)
        self.summaries = summary_service if summary_service is not None else FinancialSummaryService(db)
        self.ledger = ledger if ledger is not None else SqlFinancingLedger(self.repo)

    def recalculate_phase_spending(self, phase_id: UUID) -> PhaseFinancialSummary:
        """Persist the freshly derived summary onto the phase and commit.

        Running it twice with no spend change in between writes nothing the
        second time.
        """

        phase = self.repo.get_phase(phase_id, for_update=True)
        if phase is None:
            raise NotFoundError("Phase not found.", phase_id=phase_id)

        summary = self.summaries.summarize(phase)
        if phase.actual_spending != summary.actual_spending or phase.financial_states != summary.financial_states:
            phase.actual_spending = summary.actual_spending
            phase.financial_states = summary.financial_states
            phase.last_recalculated_at = datetime.utcnow()

        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("phase_recalculation_conflict", extra={"phase_id": str(phase_id)})
            raise ConcurrencyConflictError(
                "Phase was modified concurrently; retry the recalculation.",
                phase_id=phase_id,
            ) from exc
        return summary

    def recalculate_phases(self, phase_ids: Iterable[UUID]) -> RecalculationReport:
        """Recalculate each phase independently; one failure never stops the rest."""

        report = RecalculationReport()
        for phase_id in dict.fromkeys(phase_ids):
            try:
                report.summaries[phase_id] = self.recalculate_phase_spending(phase_id)
            except Exception as exc:
                self.db.rollback()
                logger.exception("phase_recalculation_failed", extra={"phase_id": str(phase_id)})
                report.failures.append(PartialFailure(phase_id=phase_id, reason=str(exc) or type(exc).__name__))
        return report

    def refresh_remaining(self, phase: Phase) -> FinancialStates:
        """Recompute ``remaining`` after an allocation change, inside the caller's transaction."""

        states = replace(
            phase.financial_states,
            remaining=q2(
                remaining_budget(phase.allocation.total, phase.actual_spending.total, phase.financial_states.committed)
            ),
        )
        phase.financial_states = states
        return states

    def calculate_total_phase_budgets(self, project_id: UUID) -> Decimal:
        return self.repo.sum_phase_allocations(project_id)

    def calculate_project_totals(self, project_id: UUID) -> ProjectTotals:
        project = self.repo.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found.", project_id=project_id)

        project_total = budget_total(project.budget)
        phase_budgets = self.calculate_total_phase_budgets(project_id)
        actual, committed, estimated = self.repo.sum_phase_financials(project_id)
        snapshot = self.ledger.get_capital_snapshot(project_id)
        return ProjectTotals(
            project_id=project_id,
            budget_total=q2(project_total),
            total_phase_budgets=q2(phase_budgets),
            unallocated_budget=q2(project_total - phase_budgets),
            total_actual=q2(actual),
            total_committed=q2(committed),
            total_estimated=q2(estimated),
            total_invested=snapshot.total_invested,
            total_used=snapshot.total_used,
            total_loans=snapshot.total_loans,
            total_equity=snapshot.total_equity,
            available_capital=snapshot.available,
        )

    def process_spend_events(self, phase_ids: Iterable[UUID] | None = None) -> RecalculationReport:
        """Drain pending spend-change events, one recalculation per phase.

        Events of a phase whose recalculation fails stay pending with the
        error recorded, so a later unfiltered call picks them up again.
        """

        events = self.repo.list_pending_spend_events(phase_ids)
        by_phase: dict[UUID, list[UUID]] = {}
        for event in events:
            by_phase.setdefault(event.phase_id, []).append(event.id)

        report = self.recalculate_phases(by_phase)
        failed = {failure.phase_id: failure for failure in report.failures}
        now = datetime.utcnow()
        for phase_id, event_ids in by_phase.items():
            if phase_id in failed:
                self.repo.mark_spend_events_failed(event_ids, error=failed[phase_id].reason)
            else:
                self.repo.mark_spend_events_processed(event_ids, processed_at=now)
        self.db.commit()

        if by_phase:
            logger.info(
                "spend_events_processed",
                extra={
                    "events": len(events),
                    "phases": len(by_phase),
                    "failed_phases": len(failed),
                },
            )
        return report
