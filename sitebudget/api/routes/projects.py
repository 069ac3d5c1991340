"""Project and phase endpoints, including financial read models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sitebudget.db.dependencies import get_db_session
from sitebudget.domain.budget import Budget, BudgetAllocation
from sitebudget.services.capital_service import CapitalService
from sitebudget.services.financial_summary_service import FinancialSummaryService
from sitebudget.services.project_service import PhaseCreateData, ProjectCreateData, ProjectService
from sitebudget.services.recalculation_service import RecalculationService

router = APIRouter(tags=["projects"])


class BudgetPayload(BaseModel):
    total: Decimal = Field(default=Decimal("0"), ge=0)
    materials: Decimal = Field(default=Decimal("0"), ge=0)
    labour: Decimal = Field(default=Decimal("0"), ge=0)
    contingency: Decimal = Field(default=Decimal("0"), ge=0)


class BudgetAllocationPayload(BudgetPayload):
    equipment: Decimal = Field(default=Decimal("0"), ge=0)
    subcontractors: Decimal = Field(default=Decimal("0"), ge=0)


class ProjectCreatePayload(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    budget: BudgetPayload = Field(default_factory=BudgetPayload)


class PhaseCreatePayload(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    sequence_no: int = Field(ge=1)
    planned_start_date: date | None = None
    planned_end_date: date | None = None
    budget_allocation: BudgetAllocationPayload = Field(default_factory=BudgetAllocationPayload)
    depends_on: list[UUID] = Field(default_factory=list)


class PhaseDependenciesPayload(BaseModel):
    depends_on: list[UUID]


@router.post("/projects", status_code=201)
def create_project(payload: ProjectCreatePayload, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = ProjectService(db)
    project = service.create_project(
        ProjectCreateData(
            code=payload.code,
            name=payload.name,
            description=payload.description,
            budget=Budget(**payload.budget.model_dump()),
        )
    )
    return service.serialize_project(project)


@router.get("/projects/{project_id}")
def get_project(project_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = ProjectService(db)
    return service.serialize_project(service.get_project(project_id))


@router.get("/projects/{project_id}/totals")
def get_project_totals(project_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, str]:
    return RecalculationService(db).calculate_project_totals(project_id).as_dict()


@router.get("/projects/{project_id}/capital-check")
def check_project_capital(
    project_id: UUID,
    amount: Decimal = Query(ge=0),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    ProjectService(db).get_project(project_id)
    return CapitalService(db).validate_capital_availability(project_id, amount).as_dict()


@router.post("/projects/{project_id}/phases", status_code=201)
def create_phase(
    project_id: UUID,
    payload: PhaseCreatePayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = ProjectService(db)
    phase = service.create_phase(
        project_id,
        PhaseCreateData(
            code=payload.code,
            name=payload.name,
            sequence_no=payload.sequence_no,
            allocation=BudgetAllocation(**payload.budget_allocation.model_dump()),
            planned_start_date=payload.planned_start_date,
            planned_end_date=payload.planned_end_date,
            depends_on=payload.depends_on,
        ),
    )
    return service.serialize_phase(phase)


@router.get("/projects/{project_id}/phases")
def list_phases(project_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = ProjectService(db)
    return {"items": [service.serialize_phase(phase) for phase in service.list_phases(project_id)]}


@router.get("/phases/{phase_id}")
def get_phase(phase_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    service = ProjectService(db)
    return service.serialize_phase(service.get_phase(phase_id))


@router.put("/phases/{phase_id}/dependencies")
def put_phase_dependencies(
    phase_id: UUID,
    payload: PhaseDependenciesPayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = ProjectService(db)
    phase = service.set_phase_dependencies(phase_id, payload.depends_on)
    return service.serialize_phase(phase)


@router.get("/phases/{phase_id}/financial-summary")
def get_phase_financial_summary(phase_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    return FinancialSummaryService(db).get_phase_financial_summary(phase_id).as_dict()


@router.post("/phases/{phase_id}/recalculate")
def recalculate_phase(phase_id: UUID, db: Session = Depends(get_db_session)) -> dict[str, object]:
    return RecalculationService(db).recalculate_phase_spending(phase_id).as_dict()
