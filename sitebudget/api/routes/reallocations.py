"""Budget reallocation endpoints."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sitebudget.core.auth import RequestActor, get_current_actor
from sitebudget.db.dependencies import get_db_session
from sitebudget.models.entities import ReallocationStatus, ReallocationType
from sitebudget.services.reallocation_service import (
    ReallocationCreateData,
    ReallocationOutcome,
    ReallocationService,
)

router = APIRouter(prefix="/budget-reallocations", tags=["reallocations"])


class ReallocationCreatePayload(BaseModel):
    project_id: UUID
    reallocation_type: ReallocationType
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1, max_length=2000)
    from_phase_id: UUID | None = None
    to_phase_id: UUID | None = None


class ReallocationApprovePayload(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class ReallocationRejectPayload(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


def _outcome_response(outcome: ReallocationOutcome) -> dict[str, object]:
    return {
        "reallocation": ReallocationService.serialize_reallocation(outcome.reallocation),
        "warnings": outcome.warnings,
    }


@router.get("")
def list_reallocations(
    project_id: UUID | None = None,
    phase_id: UUID | None = None,
    status: ReallocationStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = ReallocationService(db)
    rows, total = service.list_reallocations(
        project_id=project_id,
        phase_id=phase_id,
        status=status,
        page=page,
        limit=limit,
    )
    effective_limit = min(limit, service.settings.reallocation_page_limit_max)
    return {
        "items": [service.serialize_reallocation(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": effective_limit,
            "total": total,
            "pages": (total + effective_limit - 1) // effective_limit,
        },
    }


@router.post("", status_code=201)
def create_reallocation(
    payload: ReallocationCreatePayload,
    actor: RequestActor = Depends(get_current_actor),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    outcome = ReallocationService(db).create_reallocation_request(
        actor=actor,
        data=ReallocationCreateData(**payload.model_dump()),
    )
    return _outcome_response(outcome)


@router.get("/{reallocation_id}")
def get_reallocation(reallocation_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = ReallocationService(db)
    return service.serialize_reallocation(service.get_reallocation(reallocation_id))


@router.post("/{reallocation_id}/approve")
def approve_reallocation(
    reallocation_id: UUID,
    payload: ReallocationApprovePayload | None = None,
    actor: RequestActor = Depends(get_current_actor),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    outcome = ReallocationService(db).approve_reallocation(
        reallocation_id=reallocation_id,
        approver=actor,
        notes=payload.notes if payload is not None else None,
    )
    return _outcome_response(outcome)


@router.post("/{reallocation_id}/reject")
def reject_reallocation(
    reallocation_id: UUID,
    payload: ReallocationRejectPayload,
    actor: RequestActor = Depends(get_current_actor),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = ReallocationService(db)
    row = service.reject_reallocation(reallocation_id=reallocation_id, actor=actor, reason=payload.reason)
    return {"reallocation": service.serialize_reallocation(row), "warnings": []}
