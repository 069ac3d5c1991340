from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from conftest import make_project
from sitebudget.core.errors import InconsistentDataError, InvalidRequestError, NotFoundError
from sitebudget.domain.budget import Budget, BudgetAllocation
from sitebudget.services.project_service import PhaseCreateData, ProjectCreateData, ProjectService


def _phase_data(code: str, sequence_no: int, *, end: date | None = None, depends_on=None) -> PhaseCreateData:
    return PhaseCreateData(
        code=code,
        name=f"Phase {code}",
        sequence_no=sequence_no,
        allocation=BudgetAllocation(total=Decimal("1000")),
        planned_end_date=end,
        depends_on=list(depends_on or []),
    )


def test_create_project_stores_budget_and_version(db_session: Session) -> None:
    project = ProjectService(db_session).create_project(
        ProjectCreateData(code=" PRJ-9 ", name="Depot", budget=Budget(total=Decimal("75000"), labour=Decimal("30000")))
    )

    assert project.code == "PRJ-9"
    assert project.budget.total == Decimal("75000")
    assert project.budget.labour == Decimal("30000")
    assert project.version == 1


def test_new_phase_starts_with_zero_spend(db_session: Session) -> None:
    project = make_project(db_session)

    phase = ProjectService(db_session).create_phase(project.id, _phase_data("A", 1))

    assert phase.actual_spending.total == Decimal("0")
    assert phase.financial_states.committed == Decimal("0")
    assert phase.financial_states.remaining == Decimal("1000")


def test_duplicate_sequence_number_conflicts(db_session: Session) -> None:
    project = make_project(db_session)
    service = ProjectService(db_session)
    service.create_phase(project.id, _phase_data("A", 1))

    with pytest.raises(InconsistentDataError):
        service.create_phase(project.id, _phase_data("B", 1))


def test_phase_for_unknown_project_is_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        ProjectService(db_session).create_phase(uuid.uuid4(), _phase_data("A", 1))


def test_end_before_start_rejected(db_session: Session) -> None:
    project = make_project(db_session)
    data = _phase_data("A", 1, end=date(2026, 1, 1))
    data.planned_start_date = date(2026, 2, 1)

    with pytest.raises(InvalidRequestError):
        ProjectService(db_session).create_phase(project.id, data)


def test_can_start_after_is_latest_dependency_end(db_session: Session) -> None:
    project = make_project(db_session)
    service = ProjectService(db_session)
    first = service.create_phase(project.id, _phase_data("A", 1, end=date(2026, 3, 31)))
    second = service.create_phase(project.id, _phase_data("B", 2, end=date(2026, 5, 15)))
    undated = service.create_phase(project.id, _phase_data("C", 3))
    later = service.create_phase(project.id, _phase_data("D", 4, depends_on=[first.id, second.id, undated.id]))

    assert service.can_start_after(later) == date(2026, 5, 15)
    assert service.can_start_after(first) is None


def test_can_start_after_with_deleted_dependency_is_inconsistent(db_session: Session) -> None:
    project = make_project(db_session)
    service = ProjectService(db_session)
    first = service.create_phase(project.id, _phase_data("A", 1, end=date(2026, 3, 31)))
    later = service.create_phase(project.id, _phase_data("B", 2, depends_on=[first.id]))
    first.deleted_at = datetime.utcnow()
    db_session.commit()

    with pytest.raises(InconsistentDataError):
        service.can_start_after(later)


def test_dependencies_must_share_project(db_session: Session) -> None:
    project = make_project(db_session)
    other = make_project(db_session, code="PRJ-2")
    service = ProjectService(db_session)
    foreign = service.create_phase(other.id, _phase_data("Z", 1))
    phase = service.create_phase(project.id, _phase_data("A", 1))

    with pytest.raises(InconsistentDataError):
        service.set_phase_dependencies(phase.id, [foreign.id])
    with pytest.raises(InvalidRequestError):
        service.set_phase_dependencies(phase.id, [phase.id])


def test_replace_dependencies(db_session: Session) -> None:
    project = make_project(db_session)
    service = ProjectService(db_session)
    first = service.create_phase(project.id, _phase_data("A", 1))
    second = service.create_phase(project.id, _phase_data("B", 2))
    third = service.create_phase(project.id, _phase_data("C", 3, depends_on=[first.id]))

    service.set_phase_dependencies(third.id, [second.id])

    assert service.repo.list_dependency_ids(third.id) == [second.id]
