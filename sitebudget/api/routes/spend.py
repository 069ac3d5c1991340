"""Cost entry endpoints and the spend-change reconciliation trigger."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sitebudget.db.dependencies import get_db_session
from sitebudget.models.entities import CostSource, CostStage
from sitebudget.services.recalculation_service import RecalculationService
from sitebudget.services.spend_service import (
    CostEntryCreateData,
    CostEntryUpdateData,
    SpendMutationResult,
    SpendService,
)

router = APIRouter(tags=["spend"])


class CostEntryCreatePayload(BaseModel):
    source: CostSource
    stage: CostStage
    description: str = Field(min_length=1, max_length=500)
    amount: Decimal | None = Field(default=None, ge=0)
    quantity: Decimal | None = Field(default=None, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)


class CostEntryUpdatePayload(BaseModel):
    stage: CostStage | None = None
    description: str | None = Field(default=None, min_length=1, max_length=500)
    amount: Decimal | None = Field(default=None, ge=0)
    quantity: Decimal | None = Field(default=None, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)


class SpendEventsProcessPayload(BaseModel):
    phase_ids: list[UUID] | None = None


def _mutation_response(result: SpendMutationResult) -> dict[str, object]:
    return {
        "cost_entry": SpendService.serialize_cost_entry(result.entry),
        "financial_summary": result.summary.as_dict() if result.summary is not None else None,
        "warnings": result.warnings,
    }


@router.post("/phases/{phase_id}/cost-entries", status_code=201)
def create_cost_entry(
    phase_id: UUID,
    payload: CostEntryCreatePayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    result = SpendService(db).record_cost_entry(
        phase_id=phase_id,
        data=CostEntryCreateData(**payload.model_dump()),
    )
    return _mutation_response(result)


@router.get("/phases/{phase_id}/cost-entries")
def list_cost_entries(phase_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = SpendService(db)
    return {"items": [service.serialize_cost_entry(entry) for entry in service.list_cost_entries(phase_id)]}


@router.patch("/cost-entries/{entry_id}")
def update_cost_entry(
    entry_id: UUID,
    payload: CostEntryUpdatePayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    result = SpendService(db).update_cost_entry(
        entry_id=entry_id,
        data=CostEntryUpdateData(**payload.model_dump()),
    )
    return _mutation_response(result)


@router.delete("/cost-entries/{entry_id}")
def delete_cost_entry(entry_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    return _mutation_response(SpendService(db).delete_cost_entry(entry_id=entry_id))


@router.post("/spend-events/process")
def process_spend_events(
    payload: SpendEventsProcessPayload | None = None,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    phase_ids = payload.phase_ids if payload is not None else None
    report = RecalculationService(db).process_spend_events(phase_ids)
    return {
        "processed_phase_ids": [str(phase_id) for phase_id in report.summaries],
        "warnings": report.warnings,
    }
