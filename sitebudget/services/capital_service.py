"""Capital availability checks against the financing ledger."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from sitebudget.core.config import get_settings
from sitebudget.core.logging import get_logger
from sitebudget.domain.budget import ZERO, q2, to_decimal
from sitebudget.repositories.budget_repository import BudgetRepository

logger = get_logger("services.capital")


@dataclass(frozen=True, slots=True)
class CapitalSnapshot:
    project_id: UUID
    total_invested: Decimal = ZERO
    total_used: Decimal = ZERO
    total_loans: Decimal = ZERO
    total_equity: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.total_invested - self.total_used


class FinancingLedger(Protocol):
    def get_capital_snapshot(self, project_id: UUID) -> CapitalSnapshot: ...


class SqlFinancingLedger:
    """Reads the ``project_finances`` rows kept by the financing ledger."""

    def __init__(self, repo: BudgetRepository) -> None:
        self.repo = repo

    def get_capital_snapshot(self, project_id: UUID) -> CapitalSnapshot:
        row = self.repo.get_project_finance(project_id)
        if row is None:
            return CapitalSnapshot(project_id=project_id)
        return CapitalSnapshot(
            project_id=project_id,
            total_invested=to_decimal(row.total_invested),
            total_used=to_decimal(row.total_used),
            total_loans=to_decimal(row.total_loans),
            total_equity=to_decimal(row.total_equity),
        )


@dataclass(frozen=True, slots=True)
class CapitalCheck:
    project_id: UUID
    proposed_spend: Decimal
    available: Decimal
    is_valid: bool
    warning_threshold: Decimal
    total_invested: Decimal
    total_used: Decimal

    @property
    def exceeds_warning_threshold(self) -> bool:
        return self.proposed_spend > self.warning_threshold

    def as_dict(self) -> dict[str, object]:
        return {
            "project_id": str(self.project_id),
            "proposed_spend": str(self.proposed_spend),
            "available": str(self.available),
            "is_valid": self.is_valid,
            "warning_threshold": str(self.warning_threshold),
            "total_invested": str(self.total_invested),
            "total_used": str(self.total_used),
        }


class CapitalService:
    def __init__(self, db: Session, *, ledger: FinancingLedger | None = None) -> None:
        self.db = db
        self.repo = BudgetRepository(db)
        self.settings = get_settings()
        self.ledger = ledger if ledger is not None else SqlFinancingLedger(self.repo)

    def validate_capital_availability(self, project_id: UUID, proposed_spend: Decimal) -> CapitalCheck:
        """Advisory comparison of an amount with invested-minus-used capital."""

        snapshot = self.ledger.get_capital_snapshot(project_id)
        amount = to_decimal(proposed_spend)
        available = snapshot.available
        return CapitalCheck(
            project_id=project_id,
            proposed_spend=amount,
            available=available,
            is_valid=amount <= available,
            warning_threshold=q2(available * self.settings.capital_warning_ratio),
            total_invested=snapshot.total_invested,
            total_used=snapshot.total_used,
        )

    def reallocation_advisory(self, project_id: UUID, amount: Decimal) -> str | None:
        """Warning text when a reallocation is large next to available capital.

        Reallocations move ceilings, not money, so this never blocks.
        """

        check = self.validate_capital_availability(project_id, amount)
        if not check.exceeds_warning_threshold:
            return None

        logger.warning(
            "reallocation_capital_warning",
            extra={
                "project_id": str(project_id),
                "amount": str(check.proposed_spend),
                "available_capital": str(check.available),
                "warning_threshold": str(check.warning_threshold),
            },
        )
        return (
            f"Reallocating {check.proposed_spend:,.2f} exceeds {self.settings.capital_warning_ratio:.0%} "
            f"of available capital ({check.available:,.2f})."
        )
