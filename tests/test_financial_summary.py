from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from conftest import make_phase, make_project
from sitebudget.core.errors import NotFoundError
from sitebudget.domain.budget import BudgetStatus
from sitebudget.models.entities import CostSource, CostStage, PhaseCostEntry
from sitebudget.services.financial_summary_service import FinancialSummaryService


class FixedAggregator:
    def __init__(self, approved: str = "0", committed: str = "0", estimated: str = "0") -> None:
        self.approved = Decimal(approved)
        self.committed = Decimal(committed)
        self.estimated = Decimal(estimated)

    def sum_approved_cost(self, phase_id: uuid.UUID) -> Decimal:
        return self.approved

    def sum_committed_cost(self, phase_id: uuid.UUID) -> Decimal:
        return self.committed

    def sum_estimated_cost(self, phase_id: uuid.UUID) -> Decimal:
        return self.estimated


def _add_entry(db: Session, phase, *, source: CostSource, stage: CostStage, amount: str) -> None:
    now = datetime.utcnow()
    db.add(
        PhaseCostEntry(
            project_id=phase.project_id,
            phase_id=phase.id,
            source=source,
            stage=stage,
            description=f"{source.value} {stage.value}",
            amount=Decimal(amount),
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()


def test_summary_matches_scenario_a(db_session: Session) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="10000", actual="2000", committed="1000")

    summary = FinancialSummaryService(db_session).get_phase_financial_summary(phase.id)

    assert summary.budget_allocation.total == Decimal("10000")
    assert summary.actual_spending.total == Decimal("2000")
    assert summary.committed == Decimal("1000")
    assert summary.remaining == Decimal("7000")
    assert summary.status is BudgetStatus.WITHIN_BUDGET


def test_summary_sums_every_spend_source(db_session: Session) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="1000")
    _add_entry(db_session, phase, source=CostSource.MATERIALS, stage=CostStage.APPROVED, amount="100")
    _add_entry(db_session, phase, source=CostSource.EXPENSES, stage=CostStage.APPROVED, amount="50")
    _add_entry(db_session, phase, source=CostSource.EQUIPMENT, stage=CostStage.APPROVED, amount="25")
    _add_entry(db_session, phase, source=CostSource.LABOUR, stage=CostStage.APPROVED, amount="300")
    _add_entry(db_session, phase, source=CostSource.MATERIALS, stage=CostStage.COMMITTED, amount="200")
    _add_entry(db_session, phase, source=CostSource.MATERIALS, stage=CostStage.ESTIMATED, amount="80")

    summary = FinancialSummaryService(db_session).get_phase_financial_summary(phase.id)

    assert summary.actual_spending.total == Decimal("475")
    assert summary.actual_spending.labour == Decimal("300")
    assert summary.actual_spending.expenses == Decimal("50")
    assert summary.committed == Decimal("200")
    assert summary.estimated == Decimal("80")
    assert summary.remaining == Decimal("325")


def test_summary_ignores_deleted_cost_entries(db_session: Session) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="1000", actual="400")
    entry = db_session.query(PhaseCostEntry).filter_by(phase_id=phase.id).one()
    entry.deleted_at = datetime.utcnow()
    db_session.commit()

    summary = FinancialSummaryService(db_session).get_phase_financial_summary(phase.id)

    assert summary.actual_spending.total == Decimal("0")
    assert summary.remaining == Decimal("1000")


def test_remaining_clamps_at_zero_when_over_budget(db_session: Session) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="1000")
    service = FinancialSummaryService(
        db_session,
        aggregators={"materials": FixedAggregator(approved="900", committed="500")},
    )

    summary = service.get_phase_financial_summary(phase.id)

    assert summary.remaining == Decimal("0")
    assert summary.status is BudgetStatus.COMMITTED_OVER_BUDGET


@pytest.mark.parametrize(
    ("aggregator", "expected"),
    [
        (FixedAggregator(approved="1200"), BudgetStatus.OVER_BUDGET),
        (FixedAggregator(approved="100", estimated="1500"), BudgetStatus.ESTIMATED_OVER_BUDGET),
        (FixedAggregator(approved="950"), BudgetStatus.APPROACHING_BUDGET),
        (FixedAggregator(approved="100"), BudgetStatus.WITHIN_BUDGET),
    ],
)
def test_status_from_injected_aggregators(db_session: Session, aggregator: FixedAggregator, expected: BudgetStatus) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="1000")

    summary = FinancialSummaryService(db_session, aggregators={"labour": aggregator}).get_phase_financial_summary(
        phase.id
    )

    assert summary.status is expected


def test_summary_for_missing_phase_raises_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        FinancialSummaryService(db_session).get_phase_financial_summary(uuid.uuid4())


def test_summary_for_soft_deleted_phase_raises_not_found(db_session: Session) -> None:
    project = make_project(db_session)
    phase = make_phase(db_session, project, code="X", sequence_no=1, allocation="1000")
    phase.deleted_at = datetime.utcnow()
    db_session.commit()

    with pytest.raises(NotFoundError):
        FinancialSummaryService(db_session).get_phase_financial_summary(phase.id)
