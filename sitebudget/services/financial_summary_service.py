"""Phase financial summary calculator.

The calculator owns none of the spend data. Each spend source (materials,
expenses, equipment, labour) is reached through a ``SpendAggregator`` and the
results are summed per phase. The default aggregators read the
``phase_cost_entries`` table; callers may inject their own.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from sitebudget.core.config import get_settings
from sitebudget.core.errors import NotFoundError
from sitebudget.domain.budget import (
    ZERO,
    ActualSpending,
    BudgetAllocation,
    BudgetStatus,
    FinancialStates,
    classify_budget_status,
    q2,
    remaining_budget,
    to_decimal,
)
from sitebudget.models.entities import CostSource, CostStage, Phase
from sitebudget.repositories.budget_repository import BudgetRepository


class SpendAggregator(Protocol):
    def sum_approved_cost(self, phase_id: UUID) -> Decimal: ...

    def sum_committed_cost(self, phase_id: UUID) -> Decimal: ...

    def sum_estimated_cost(self, phase_id: UUID) -> Decimal: ...


class CostEntryAggregator:
    """Aggregates one spend source from recorded phase cost entries."""

    def __init__(self, repo: BudgetRepository, source: CostSource) -> None:
        self.repo = repo
        self.source = source

    def sum_approved_cost(self, phase_id: UUID) -> Decimal:
        return self.repo.sum_cost_entries(phase_id, source=self.source, stage=CostStage.APPROVED)

    def sum_committed_cost(self, phase_id: UUID) -> Decimal:
        return self.repo.sum_cost_entries(phase_id, source=self.source, stage=CostStage.COMMITTED)

    def sum_estimated_cost(self, phase_id: UUID) -> Decimal:
        return self.repo.sum_cost_entries(phase_id, source=self.source, stage=CostStage.ESTIMATED)


def default_aggregators(repo: BudgetRepository) -> dict[str, SpendAggregator]:
    return {source.value: CostEntryAggregator(repo, source) for source in CostSource}


@dataclass(frozen=True, slots=True)
class PhaseFinancialSummary:
    phase_id: UUID
    budget_allocation: BudgetAllocation
    actual_spending: ActualSpending
    committed: Decimal
    estimated: Decimal
    remaining: Decimal
    status: BudgetStatus

    @property
    def financial_states(self) -> FinancialStates:
        return FinancialStates(committed=self.committed, estimated=self.estimated, remaining=self.remaining)

    def as_dict(self) -> dict[str, object]:
        return {
            "phase_id": str(self.phase_id),
            "budget_allocation": self.budget_allocation.as_dict(),
            "actual_spending": self.actual_spending.as_dict(),
            "committed": str(self.committed),
            "estimated": str(self.estimated),
            "remaining": str(self.remaining),
            "status": self.status.value,
        }


class FinancialSummaryService:
    """Derives allocation, spend and status figures for a single phase."""

    def __init__(self, db: Session, *, aggregators: Mapping[str, SpendAggregator] | None = None) -> None:
        self.db = db
        self.repo = BudgetRepository(db)
        self.settings = get_settings()
        self.aggregators = dict(aggregators) if aggregators is not None else default_aggregators(self.repo)

    def get_phase_financial_summary(self, phase_id: UUID) -> PhaseFinancialSummary:
        """Read-only summary; a missing phase is an error, never a zeroed summary."""

        phase = self.repo.get_phase(phase_id)
        if phase is None:
            raise NotFoundError("Phase not found.", phase_id=phase_id)
        return self.summarize(phase)

    def summarize(self, phase: Phase) -> PhaseFinancialSummary:
        actual_by_source: dict[str, Decimal] = {}
        committed = ZERO
        estimated = ZERO
        for name, aggregator in self.aggregators.items():
            actual_by_source[name] = q2(to_decimal(aggregator.sum_approved_cost(phase.id)))
            committed += to_decimal(aggregator.sum_committed_cost(phase.id))
            estimated += to_decimal(aggregator.sum_estimated_cost(phase.id))

        allocation = phase.allocation
        actual = ActualSpending.from_sources(actual_by_source)
        committed = q2(committed)
        estimated = q2(estimated)
        return PhaseFinancialSummary(
            phase_id=phase.id,
            budget_allocation=allocation,
            actual_spending=actual,
            committed=committed,
            estimated=estimated,
            remaining=q2(remaining_budget(allocation.total, actual.total, committed)),
            status=classify_budget_status(
                allocation.total,
                actual.total,
                committed,
                estimated,
                approaching_ratio=self.settings.approaching_budget_ratio,
            ),
        )
