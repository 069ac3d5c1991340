"""Typed errors raised by the budget engine services.

Every error is an ``HTTPException`` so routes can let it propagate, and also
carries a machine-readable ``code`` plus structured ``extra`` fields so
service callers can branch on type instead of parsing messages.

    BudgetEngineError
    +-- NotFoundError            (404, NOT_FOUND)
    +-- InvalidStateError        (409, INVALID_STATE)
    +-- InconsistentDataError    (409, INCONSISTENT_DATA)
    +-- ConcurrencyConflictError (409, CONCURRENCY_CONFLICT)
    +-- InsufficientBudgetError  (422, INSUFFICIENT_BUDGET)
    +-- InvalidRequestError      (422, INVALID_REQUEST)

Partial failures (a committed mutation followed by a failed recalculation)
are not raised; they travel as ``PartialFailure`` warnings on the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class BudgetEngineError(HTTPException):
    code: str = "BUDGET_ENGINE_ERROR"
    status_code_default: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.extra = extra

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        for key, value in self.extra.items():
            if isinstance(value, (Decimal, UUID)):
                value = str(value)
            payload[key] = value
        return payload


class NotFoundError(BudgetEngineError):
    code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND


class InvalidStateError(BudgetEngineError):
    code = "INVALID_STATE"
    status_code_default = status.HTTP_409_CONFLICT


class InconsistentDataError(BudgetEngineError):
    code = "INCONSISTENT_DATA"
    status_code_default = status.HTTP_409_CONFLICT


class ConcurrencyConflictError(BudgetEngineError):
    code = "CONCURRENCY_CONFLICT"
    status_code_default = status.HTTP_409_CONFLICT


class InvalidRequestError(BudgetEngineError):
    code = "INVALID_REQUEST"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientBudgetError(BudgetEngineError):
    code = "INSUFFICIENT_BUDGET"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, *, requested: Decimal, available: Decimal, **extra: Any) -> None:
        super().__init__(
            f"{message} Available: {available:,.2f}, Requested: {requested:,.2f}",
            requested=requested,
            available=available,
            **extra,
        )
        self.requested = requested
        self.available = available


@dataclass(frozen=True, slots=True)
class PartialFailure:
    """A committed mutation whose follow-up recalculation did not complete."""

    phase_id: UUID
    reason: str

    def __str__(self) -> str:
        return f"Phase {self.phase_id} summary is stale: {self.reason}"


async def budget_engine_error_handler(_: Request, exc: BudgetEngineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
