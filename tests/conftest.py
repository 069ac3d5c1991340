from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sitebudget.db.base import Base
from sitebudget.db.dependencies import get_db_session
import sitebudget.models.entities  # noqa: F401
from sitebudget.domain.budget import Budget, BudgetAllocation
from sitebudget.main import create_app
from sitebudget.models.entities import (
    AuditEvent,
    BudgetReallocation,
    CostSource,
    CostStage,
    Phase,
    PhaseCostEntry,
    PhaseDependency,
    Project,
    ProjectFinance,
    SpendChangeEvent,
)
from sitebudget.services.recalculation_service import RecalculationService

TEST_TABLES = [
    Project.__table__,
    Phase.__table__,
    PhaseDependency.__table__,
    BudgetReallocation.__table__,
    PhaseCostEntry.__table__,
    SpendChangeEvent.__table__,
    ProjectFinance.__table__,
    AuditEvent.__table__,
]


@pytest.fixture()
def db_engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)


@pytest.fixture()
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def actor_headers(actor_id: str = "pm-1", actor_name: str = "Project Manager") -> dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Name": actor_name}


def make_project(db: Session, *, code: str = "PRJ-1", total: str = "100000") -> Project:
    now = datetime.utcnow()
    project = Project(
        code=code,
        name=f"Project {code}",
        budget=Budget(total=Decimal(total)),
        created_at=now,
        updated_at=now,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def make_phase(
    db: Session,
    project: Project,
    *,
    code: str,
    sequence_no: int,
    allocation: str,
    actual: str = "0",
    committed: str = "0",
) -> Phase:
    """Seed a phase; ``actual`` and ``committed`` are backed by matching cost entries."""

    now = datetime.utcnow()
    phase = Phase(
        project_id=project.id,
        code=code,
        name=f"Phase {code}",
        sequence_no=sequence_no,
        allocation=BudgetAllocation(total=Decimal(allocation)),
        created_at=now,
        updated_at=now,
    )
    db.add(phase)
    db.flush()
    for stage, amount in ((CostStage.APPROVED, actual), (CostStage.COMMITTED, committed)):
        if Decimal(amount) > 0:
            db.add(
                PhaseCostEntry(
                    project_id=project.id,
                    phase_id=phase.id,
                    source=CostSource.MATERIALS,
                    stage=stage,
                    description=f"seed {stage.value}",
                    amount=Decimal(amount),
                    created_at=now,
                    updated_at=now,
                )
            )
    db.commit()

    RecalculationService(db).recalculate_phase_spending(phase.id)
    db.refresh(phase)
    return phase


def set_capital(db: Session, project_id: UUID, *, invested: str, used: str = "0") -> ProjectFinance:
    row = ProjectFinance(
        project_id=project_id,
        total_invested=Decimal(invested),
        total_used=Decimal(used),
        updated_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    return row
