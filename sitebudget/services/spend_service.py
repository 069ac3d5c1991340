"""Phase cost entries: the spend sources read by the summary calculator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from sitebudget.core.errors import InvalidRequestError, NotFoundError
from sitebudget.core.logging import get_logger
from sitebudget.domain.budget import q2, to_decimal
from sitebudget.models.entities import CostSource, CostStage, Phase, PhaseCostEntry
from sitebudget.repositories.budget_repository import BudgetRepository
from sitebudget.services.financial_summary_service import PhaseFinancialSummary
from sitebudget.services.recalculation_service import RecalculationService

logger = get_logger("services.spend")


@dataclass(slots=True)
class CostEntryCreateData:
    source: CostSource
    stage: CostStage
    description: str
    amount: Decimal | None = None
    quantity: Decimal | None = None
    unit_cost: Decimal | None = None


@dataclass(slots=True)
class CostEntryUpdateData:
    stage: CostStage | None = None
    description: str | None = None
    amount: Decimal | None = None
    quantity: Decimal | None = None
    unit_cost: Decimal | None = None


@dataclass(slots=True)
class SpendMutationResult:
    entry: PhaseCostEntry
    summary: PhaseFinancialSummary | None = None
    warnings: list[str] = field(default_factory=list)


def resolve_amount(amount: Decimal | None, quantity: Decimal | None, unit_cost: Decimal | None) -> Decimal:
    """``quantity * unit_cost`` when both are given, else the explicit amount."""

    if quantity is not None and unit_cost is not None:
        quantity = to_decimal(quantity)
        unit_cost = to_decimal(unit_cost)
        if quantity < 0 or unit_cost < 0:
            raise InvalidRequestError("Quantity and unit cost must be non-negative.")
        return q2(quantity * unit_cost)
    if amount is None:
        raise InvalidRequestError("Provide either amount or both quantity and unit_cost.")
    value = to_decimal(amount)
    if value < 0:
        raise InvalidRequestError("Amount must be non-negative.", amount=value)
    return q2(value)


class SpendService:
    def __init__(self, db: Session, *, recalculation_service: RecalculationService | None = None) -> None:
        self.db = db
        self.repo = BudgetRepository(db)
        self.recalculation = (
            recalculation_service if recalculation_service is not None else RecalculationService(db)
        )

    @staticmethod
    def serialize_cost_entry(entry: PhaseCostEntry) -> dict[str, object]:
        return {
            "id": str(entry.id),
            "project_id": str(entry.project_id),
            "phase_id": str(entry.phase_id),
            "source": entry.source.value,
            "stage": entry.stage.value,
            "description": entry.description,
            "quantity": str(entry.quantity) if entry.quantity is not None else None,
            "unit_cost": str(entry.unit_cost) if entry.unit_cost is not None else None,
            "amount": str(entry.amount),
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
            "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
        }

    def _get_phase_or_404(self, phase_id: UUID) -> Phase:
        phase = self.repo.get_phase(phase_id)
        if phase is None:
            raise NotFoundError("Phase not found.", phase_id=phase_id)
        return phase

    def _get_entry_or_404(self, entry_id: UUID) -> PhaseCostEntry:
        entry = self.repo.get_cost_entry(entry_id)
        if entry is None:
            raise NotFoundError("Cost entry not found.", cost_entry_id=entry_id)
        return entry

    def list_cost_entries(self, phase_id: UUID) -> list[PhaseCostEntry]:
        self._get_phase_or_404(phase_id)
        return self.repo.list_cost_entries(phase_id)

    def record_cost_entry(self, *, phase_id: UUID, data: CostEntryCreateData) -> SpendMutationResult:
        phase = self._get_phase_or_404(phase_id)
        description = (data.description or "").strip()
        if not description:
            raise InvalidRequestError("Description is required.")

        now = datetime.utcnow()
        entry = PhaseCostEntry(
            project_id=phase.project_id,
            phase_id=phase.id,
            source=data.source,
            stage=data.stage,
            description=description,
            quantity=data.quantity,
            unit_cost=data.unit_cost,
            amount=resolve_amount(data.amount, data.quantity, data.unit_cost),
            created_at=now,
            updated_at=now,
        )
        try:
            self.repo.add_cost_entry(entry)
            self.repo.add_spend_event(phase.id, reason="cost_entry_recorded")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._after_commit(entry, "cost_entry_recorded")

    def update_cost_entry(self, *, entry_id: UUID, data: CostEntryUpdateData) -> SpendMutationResult:
        entry = self._get_entry_or_404(entry_id)

        if data.description is not None:
            description = data.description.strip()
            if not description:
                raise InvalidRequestError("Description cannot be empty.")
            entry.description = description
        if data.stage is not None:
            entry.stage = data.stage
        if data.quantity is not None:
            entry.quantity = data.quantity
        if data.unit_cost is not None:
            entry.unit_cost = data.unit_cost
        if data.amount is not None or data.quantity is not None or data.unit_cost is not None:
            if data.amount is not None and data.quantity is None and data.unit_cost is None:
                entry.quantity = None
                entry.unit_cost = None
            entry.amount = resolve_amount(
                data.amount if data.amount is not None else entry.amount,
                entry.quantity,
                entry.unit_cost,
            )
        entry.updated_at = datetime.utcnow()

        try:
            self.repo.add_spend_event(entry.phase_id, reason="cost_entry_updated")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._after_commit(entry, "cost_entry_updated")

    def delete_cost_entry(self, *, entry_id: UUID) -> SpendMutationResult:
        entry = self._get_entry_or_404(entry_id)
        now = datetime.utcnow()
        entry.deleted_at = now
        entry.updated_at = now
        try:
            self.repo.add_spend_event(entry.phase_id, reason="cost_entry_deleted")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._after_commit(entry, "cost_entry_deleted")

    def _after_commit(self, entry: PhaseCostEntry, action: str) -> SpendMutationResult:
        phase_id = entry.phase_id
        logger.info(
            action,
            extra={"cost_entry_id": str(entry.id), "phase_id": str(phase_id), "amount": str(entry.amount)},
        )
        report = self.recalculation.process_spend_events([phase_id])
        self.db.refresh(entry)
        return SpendMutationResult(entry=entry, summary=report.summaries.get(phase_id), warnings=report.warnings)
