from __future__ import annotations

from decimal import Decimal

from sitebudget.domain.budget import (
    ActualSpending,
    Budget,
    BudgetAllocation,
    BudgetStatus,
    budget_total,
    classify_budget_status,
    contingency_share,
    labour_share,
    materials_share,
    remaining_budget,
    with_total_delta,
)


def test_budget_accessors_default_missing_fields_to_zero() -> None:
    legacy = {"total": "1200.50", "materials": 300}

    assert budget_total(legacy) == Decimal("1200.50")
    assert materials_share(legacy) == Decimal("300")
    assert labour_share(legacy) == Decimal("0")
    assert contingency_share(legacy) == Decimal("0")

    assert budget_total(None) == Decimal("0")
    assert budget_total({}) == Decimal("0")


def test_budget_accessors_accept_value_objects() -> None:
    allocation = BudgetAllocation(total=Decimal("900"), labour=Decimal("400"), equipment=Decimal("100"))

    assert budget_total(allocation) == Decimal("900")
    assert labour_share(allocation) == Decimal("400")
    assert budget_total(Budget(total=Decimal("5"))) == Decimal("5")


def test_value_objects_normalize_none_and_numbers() -> None:
    budget = Budget(total=None, materials=10, labour=2.5)  # type: ignore[arg-type]

    assert budget.total == Decimal("0")
    assert budget.materials == Decimal("10")
    assert budget.labour == Decimal("2.5")
    assert budget.as_dict()["contingency"] == "0.00"


def test_budget_from_mapping_ignores_unknown_keys() -> None:
    budget = Budget.from_mapping({"total": "10", "unexpected": "99"})

    assert budget == Budget(total=Decimal("10"))


def test_with_total_delta_moves_only_total() -> None:
    allocation = BudgetAllocation(total=Decimal("1000"), materials=Decimal("600"))

    raised = with_total_delta(allocation, Decimal("250"))

    assert raised.total == Decimal("1250")
    assert raised.materials == Decimal("600")
    assert allocation.total == Decimal("1000")


def test_with_total_delta_clamps_at_zero() -> None:
    budget = Budget(total=Decimal("100"))

    assert with_total_delta(budget, Decimal("-150")).total == Decimal("0")


def test_remaining_budget_never_negative() -> None:
    assert remaining_budget(Decimal("10000"), Decimal("2000"), Decimal("1000")) == Decimal("7000")
    assert remaining_budget(Decimal("100"), Decimal("90"), Decimal("50")) == Decimal("0")


def test_actual_spending_from_sources_sums_breakdown() -> None:
    actual = ActualSpending.from_sources(
        {"materials": Decimal("100"), "expenses": Decimal("20"), "equipment": Decimal("5"), "labour": Decimal("75")}
    )

    assert actual.total == Decimal("200")
    assert actual.expenses == Decimal("20")


def test_status_priority_order() -> None:
    allocation = Decimal("1000")

    assert classify_budget_status(allocation, Decimal("1001"), Decimal("5000"), Decimal("0")) is BudgetStatus.OVER_BUDGET
    assert (
        classify_budget_status(allocation, Decimal("950"), Decimal("1001"), Decimal("5000"))
        is BudgetStatus.COMMITTED_OVER_BUDGET
    )
    assert (
        classify_budget_status(allocation, Decimal("950"), Decimal("10"), Decimal("1001"))
        is BudgetStatus.ESTIMATED_OVER_BUDGET
    )
    assert classify_budget_status(allocation, Decimal("901"), Decimal("0"), Decimal("0")) is BudgetStatus.APPROACHING_BUDGET
    assert classify_budget_status(allocation, Decimal("900"), Decimal("0"), Decimal("0")) is BudgetStatus.WITHIN_BUDGET
