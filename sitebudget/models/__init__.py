"""ORM model package."""

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
    ReallocationStatus,
    ReallocationType,
    SpendChangeEvent,
)

__all__ = [
    "AuditEvent",
    "BudgetReallocation",
    "CostSource",
    "CostStage",
    "Phase",
    "PhaseCostEntry",
    "PhaseDependency",
    "Project",
    "ProjectFinance",
    "ReallocationStatus",
    "ReallocationType",
    "SpendChangeEvent",
]
