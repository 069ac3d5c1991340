"""Budget value objects and pure arithmetic over them.

Budgets are modelled as frozen dataclasses with zero defaults. Legacy records
that only carry some of the fields (or nothing at all) are normalized when a
value object is built, so callers never need ``or 0`` checks of their own.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Any, TypeVar

ZERO = Decimal("0.00")
Q2 = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def q2(value: Decimal) -> Decimal:
    return value.quantize(Q2)


class _MoneyFields:
    """Shared normalization for money value objects."""

    __slots__ = ()

    def __post_init__(self) -> None:
        for item in fields(self):  # type: ignore[arg-type]
            object.__setattr__(self, item.name, to_decimal(getattr(self, item.name)))

    def __composite_values__(self) -> tuple[Decimal, ...]:
        return tuple(getattr(self, item.name) for item in fields(self))  # type: ignore[arg-type]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None):
        if not data:
            return cls()
        names = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in data.items() if key in names})

    def as_dict(self) -> dict[str, str]:
        return {item.name: str(getattr(self, item.name)) for item in fields(self)}  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Budget(_MoneyFields):
    """Project-level ceiling. The parts are advisory, not forced to sum to total."""

    total: Decimal = ZERO
    materials: Decimal = ZERO
    labour: Decimal = ZERO
    contingency: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class BudgetAllocation(_MoneyFields):
    """Phase-level ceiling with advisory sub-categories."""

    total: Decimal = ZERO
    materials: Decimal = ZERO
    labour: Decimal = ZERO
    equipment: Decimal = ZERO
    subcontractors: Decimal = ZERO
    contingency: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class ActualSpending(_MoneyFields):
    total: Decimal = ZERO
    materials: Decimal = ZERO
    expenses: Decimal = ZERO
    equipment: Decimal = ZERO
    labour: Decimal = ZERO

    @classmethod
    def from_sources(cls, by_source: Mapping[str, Decimal]) -> ActualSpending:
        parts = {key: to_decimal(value) for key, value in by_source.items()}
        names = {item.name for item in fields(cls)} - {"total"}
        return cls(total=sum(parts.values(), ZERO), **{key: value for key, value in parts.items() if key in names})


@dataclass(frozen=True, slots=True)
class FinancialStates(_MoneyFields):
    committed: Decimal = ZERO
    estimated: Decimal = ZERO
    remaining: Decimal = ZERO


BudgetLike = Budget | BudgetAllocation | Mapping[str, Any] | None
TBudget = TypeVar("TBudget", Budget, BudgetAllocation)


def coerce_budget(budget: BudgetLike) -> Budget:
    if isinstance(budget, Budget):
        return budget
    if isinstance(budget, BudgetAllocation):
        return Budget(total=budget.total, materials=budget.materials, labour=budget.labour, contingency=budget.contingency)
    return Budget.from_mapping(budget)


def budget_total(budget: BudgetLike) -> Decimal:
    return coerce_budget(budget).total


def materials_share(budget: BudgetLike) -> Decimal:
    return coerce_budget(budget).materials


def labour_share(budget: BudgetLike) -> Decimal:
    return coerce_budget(budget).labour


def contingency_share(budget: BudgetLike) -> Decimal:
    return coerce_budget(budget).contingency


def with_total_delta(budget: TBudget, delta: Decimal) -> TBudget:
    """Return a copy with ``total`` moved by ``delta``, clamped at zero.

    The clamp is lossy: a decrement larger than the current total silently
    floors at zero instead of failing.
    """

    return replace(budget, total=max(ZERO, budget.total + to_decimal(delta)))


def remaining_budget(allocation_total: Decimal, actual_total: Decimal, committed: Decimal) -> Decimal:
    """Clamped residual ``max(0, allocation - actual - committed)``."""

    return max(ZERO, to_decimal(allocation_total) - to_decimal(actual_total) - to_decimal(committed))


class BudgetStatus(str, enum.Enum):
    OVER_BUDGET = "over_budget"
    COMMITTED_OVER_BUDGET = "committed_over_budget"
    ESTIMATED_OVER_BUDGET = "estimated_over_budget"
    APPROACHING_BUDGET = "approaching_budget"
    WITHIN_BUDGET = "within_budget"


def classify_budget_status(
    allocation_total: Decimal,
    actual_total: Decimal,
    committed: Decimal,
    estimated: Decimal,
    *,
    approaching_ratio: Decimal = Decimal("0.9"),
) -> BudgetStatus:
    # Order matters: first match wins.
    if actual_total > allocation_total:
        return BudgetStatus.OVER_BUDGET
    if committed > allocation_total:
        return BudgetStatus.COMMITTED_OVER_BUDGET
    if estimated > allocation_total:
        return BudgetStatus.ESTIMATED_OVER_BUDGET
    if actual_total > allocation_total * approaching_ratio:
        return BudgetStatus.APPROACHING_BUDGET
    return BudgetStatus.WITHIN_BUDGET
