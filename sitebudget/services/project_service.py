"""Project and phase setup, including phase dependencies."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sitebudget.core.errors import InconsistentDataError, InvalidRequestError, NotFoundError
from sitebudget.core.logging import get_logger
from sitebudget.domain.budget import Budget, BudgetAllocation, FinancialStates, budget_total
from sitebudget.models.entities import Phase, Project
from sitebudget.repositories.budget_repository import BudgetRepository

logger = get_logger("services.project")


@dataclass(slots=True)
class ProjectCreateData:
    code: str
    name: str
    budget: Budget
    description: str | None = None


@dataclass(slots=True)
class PhaseCreateData:
    code: str
    name: str
    sequence_no: int
    allocation: BudgetAllocation
    planned_start_date: date | None = None
    planned_end_date: date | None = None
    depends_on: list[UUID] = field(default_factory=list)


class ProjectService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = BudgetRepository(db)

    @staticmethod
    def serialize_project(project: Project) -> dict[str, object]:
        return {
            "id": str(project.id),
            "code": project.code,
            "name": project.name,
            "description": project.description,
            "budget": project.budget.as_dict(),
            "version": project.version,
            "created_at": project.created_at.isoformat() if project.created_at else None,
            "updated_at": project.updated_at.isoformat() if project.updated_at else None,
        }

    def serialize_phase(self, phase: Phase) -> dict[str, object]:
        can_start_after = self.can_start_after(phase)
        return {
            "id": str(phase.id),
            "project_id": str(phase.project_id),
            "code": phase.code,
            "name": phase.name,
            "sequence_no": phase.sequence_no,
            "planned_start_date": phase.planned_start_date.isoformat() if phase.planned_start_date else None,
            "planned_end_date": phase.planned_end_date.isoformat() if phase.planned_end_date else None,
            "budget_allocation": phase.allocation.as_dict(),
            "actual_spending": phase.actual_spending.as_dict(),
            "financial_states": phase.financial_states.as_dict(),
            "depends_on": [str(item) for item in self.repo.list_dependency_ids(phase.id)],
            "can_start_after": can_start_after.isoformat() if can_start_after else None,
            "last_recalculated_at": phase.last_recalculated_at.isoformat() if phase.last_recalculated_at else None,
            "version": phase.version,
        }

    # ---------- Projects ----------
    def get_project(self, project_id: UUID) -> Project:
        project = self.repo.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found.", project_id=project_id)
        return project

    def create_project(self, data: ProjectCreateData) -> Project:
        code = data.code.strip()
        name = data.name.strip()
        if not code or not name:
            raise InvalidRequestError("Project code and name are required.")
        if data.budget.total < 0:
            raise InvalidRequestError("Project budget total must be non-negative.")
        if self.repo.get_project_by_code(code) is not None:
            raise InconsistentDataError("Project code already exists.", code=code)

        now = datetime.utcnow()
        project = Project(
            code=code,
            name=name,
            description=data.description.strip() if data.description else None,
            budget=data.budget,
            created_at=now,
            updated_at=now,
        )
        try:
            self.repo.add_project(project)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InconsistentDataError("Project code already exists.", code=code) from exc

        self.db.refresh(project)
        logger.info("project_created", extra={"project_id": str(project.id), "code": code})
        return project

    # ---------- Phases ----------
    def get_phase(self, phase_id: UUID) -> Phase:
        phase = self.repo.get_phase(phase_id)
        if phase is None:
            raise NotFoundError("Phase not found.", phase_id=phase_id)
        return phase

    def list_phases(self, project_id: UUID) -> list[Phase]:
        self.get_project(project_id)
        return self.repo.list_phases(project_id)

    def create_phase(self, project_id: UUID, data: PhaseCreateData) -> Phase:
        """Create a phase with zero spend; ``remaining`` starts at the allocation total."""

        project = self.get_project(project_id)
        code = data.code.strip()
        name = data.name.strip()
        if not code or not name:
            raise InvalidRequestError("Phase code and name are required.")
        if data.sequence_no < 1:
            raise InvalidRequestError("Phase sequence number must be at least 1.", sequence_no=data.sequence_no)
        if data.allocation.total < 0:
            raise InvalidRequestError("Phase allocation total must be non-negative.")
        if (
            data.planned_start_date is not None
            and data.planned_end_date is not None
            and data.planned_end_date < data.planned_start_date
        ):
            raise InvalidRequestError("Planned end date cannot be before planned start date.")
        depends_on = self._validate_dependency_targets(project.id, data.depends_on)

        now = datetime.utcnow()
        phase = Phase(
            project_id=project.id,
            code=code,
            name=name,
            sequence_no=data.sequence_no,
            planned_start_date=data.planned_start_date,
            planned_end_date=data.planned_end_date,
            allocation=data.allocation,
            financial_states=FinancialStates(remaining=data.allocation.total),
            created_at=now,
            updated_at=now,
        )
        try:
            self.repo.add_phase(phase)
            self.repo.replace_dependencies(phase.id, depends_on)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InconsistentDataError(
                "Phase sequence number already exists in project.",
                project_id=project.id,
                sequence_no=data.sequence_no,
            ) from exc

        self.db.refresh(phase)
        phase_budgets = self.repo.sum_phase_allocations(project.id)
        if phase_budgets > budget_total(project.budget):
            logger.warning(
                "phase_budgets_exceed_project_budget",
                extra={
                    "project_id": str(project.id),
                    "phase_budgets": str(phase_budgets),
                    "project_budget": str(budget_total(project.budget)),
                },
            )
        logger.info("phase_created", extra={"phase_id": str(phase.id), "project_id": str(project.id)})
        return phase

    # ---------- Dependencies ----------
    def _validate_dependency_targets(self, project_id: UUID, depends_on: Iterable[UUID]) -> list[UUID]:
        ids = list(dict.fromkeys(depends_on))
        found = {phase.id: phase for phase in self.repo.get_phases(ids)}
        for dependency_id in ids:
            dependency = found.get(dependency_id)
            if dependency is None or dependency.deleted_at is not None:
                raise InconsistentDataError("Dependency phase not found.", phase_id=dependency_id)
            if dependency.project_id != project_id:
                raise InconsistentDataError(
                    "Dependency phase belongs to a different project.",
                    phase_id=dependency_id,
                    project_id=project_id,
                )
        return ids

    def _creates_cycle(self, phase_id: UUID, depends_on: list[UUID]) -> bool:
        stack = list(depends_on)
        seen: set[UUID] = set()
        while stack:
            current = stack.pop()
            if current == phase_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.repo.list_dependency_ids(current))
        return False

    def set_phase_dependencies(self, phase_id: UUID, depends_on: Iterable[UUID]) -> Phase:
        phase = self.get_phase(phase_id)
        ids = list(dict.fromkeys(depends_on))
        if phase.id in ids:
            raise InvalidRequestError("Phase cannot depend on itself.", phase_id=phase.id)
        ids = self._validate_dependency_targets(phase.project_id, ids)
        if self._creates_cycle(phase.id, ids):
            raise InconsistentDataError("Phase dependencies would form a cycle.", phase_id=phase.id)

        try:
            self.repo.replace_dependencies(phase.id, ids)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InconsistentDataError("Phase dependencies violate a data constraint.", phase_id=phase.id) from exc

        self.db.refresh(phase)
        return phase

    def can_start_after(self, phase: Phase) -> date | None:
        """Latest planned end date among the dependencies; informational only."""

        dependency_ids = self.repo.list_dependency_ids(phase.id)
        if not dependency_ids:
            return None
        dependencies = {item.id: item for item in self.repo.get_phases(dependency_ids)}
        end_dates: list[date] = []
        for dependency_id in dependency_ids:
            dependency = dependencies.get(dependency_id)
            if dependency is None or dependency.deleted_at is not None:
                raise InconsistentDataError(
                    "Phase depends on a phase that no longer exists.",
                    phase_id=phase.id,
                    dependency_id=dependency_id,
                )
            if dependency.planned_end_date is not None:
                end_dates.append(dependency.planned_end_date)
        return max(end_dates) if end_dates else None
