"""Budget reallocation workflow: request, approve (execute) and reject.

Approval runs as:

1. reload the request, project and phases fresh (row-locked where the
   backend supports it) and re-validate availability;
2. compute the advisory capital warning;
3. in one transaction, claim the request with a compare-and-set on its
   status, move the allocation, refresh ``remaining`` on touched phases and
   write the audit row;
4. after commit, recalculate the touched phases. Failures there are
   returned as warnings and never undo the committed transfer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sitebudget.core.auth import RequestActor
from sitebudget.core.config import get_settings
from sitebudget.core.errors import (
    ConcurrencyConflictError,
    InconsistentDataError,
    InsufficientBudgetError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PartialFailure,
)
from sitebudget.core.logging import get_logger
from sitebudget.domain.budget import Q2, budget_total, q2, remaining_budget, to_decimal, with_total_delta
from sitebudget.models.entities import BudgetReallocation, Phase, Project, ReallocationStatus, ReallocationType
from sitebudget.repositories.budget_repository import BudgetRepository
from sitebudget.services.audit_service import AuditLog, SqlAuditLog
from sitebudget.services.capital_service import CapitalService
from sitebudget.services.recalculation_service import RecalculationService

logger = get_logger("services.reallocation")

ENTITY_NAME = "budget_reallocation"


@dataclass(slots=True)
class ReallocationCreateData:
    project_id: UUID
    reallocation_type: ReallocationType
    amount: Decimal
    reason: str
    from_phase_id: UUID | None = None
    to_phase_id: UUID | None = None


@dataclass(slots=True)
class ReallocationOutcome:
    reallocation: BudgetReallocation
    warnings: list[str] = field(default_factory=list)
    partial_failures: list[PartialFailure] = field(default_factory=list)


@dataclass(slots=True)
class _TransferPlan:
    project: Project
    source: Phase | None = None
    target: Phase | None = None


class ReallocationService:
    def __init__(
        self,
        db: Session,
        *,
        capital_service: CapitalService | None = None,
        recalculation_service: RecalculationService | None = None,
        audit_log: AuditLog | None = None,
    ) -> None:
        self.db = db
        self.repo = BudgetRepository(db)
        self.settings = get_settings()
        self.capital = capital_service if capital_service is not None else CapitalService(db)
        self.recalculation = (
            recalculation_service if recalculation_service is not None else RecalculationService(db)
        )
        self.audit = audit_log if audit_log is not None else SqlAuditLog(self.repo)

    @staticmethod
    def serialize_reallocation(row: BudgetReallocation) -> dict[str, object]:
        return {
            "id": str(row.id),
            "project_id": str(row.project_id),
            "from_phase_id": str(row.from_phase_id) if row.from_phase_id else None,
            "to_phase_id": str(row.to_phase_id) if row.to_phase_id else None,
            "reallocation_type": row.reallocation_type.value,
            "amount": str(row.amount),
            "reason": row.reason,
            "status": row.status.value,
            "requested_by": row.requested_by,
            "requested_at": row.requested_at.isoformat() if row.requested_at else None,
            "approved_by": row.approved_by,
            "approval_notes": row.approval_notes,
            "approved_at": row.approved_at.isoformat() if row.approved_at else None,
            "executed_at": row.executed_at.isoformat() if row.executed_at else None,
            "rejected_by": row.rejected_by,
            "rejection_reason": row.rejection_reason,
            "rejected_at": row.rejected_at.isoformat() if row.rejected_at else None,
        }

    # ---------- Queries ----------
    def get_reallocation(self, reallocation_id: UUID) -> BudgetReallocation:
        return self._get_reallocation_or_404(reallocation_id)

    def list_reallocations(
        self,
        *,
        project_id: UUID | None = None,
        phase_id: UUID | None = None,
        status: ReallocationStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[BudgetReallocation], int]:
        """Newest first. ``limit`` is capped by ``reallocation_page_limit_max``."""

        if page < 1:
            raise InvalidRequestError("Page must be at least 1.", page=page)
        if limit < 1:
            raise InvalidRequestError("Limit must be at least 1.", limit=limit)
        limit = min(limit, self.settings.reallocation_page_limit_max)
        return self.repo.list_reallocations(
            project_id=project_id,
            phase_id=phase_id,
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
        )

    # ---------- Commands ----------
    def create_reallocation_request(self, *, actor: RequestActor, data: ReallocationCreateData) -> ReallocationOutcome:
        amount = to_decimal(data.amount)
        if amount <= 0:
            raise InvalidRequestError("Amount must be greater than 0.", amount=amount)
        if amount != q2(amount):
            raise InvalidRequestError("Amount must have at most 2 decimal places.", amount=amount)
        amount = q2(amount)
        reason = (data.reason or "").strip()
        if not reason:
            raise InvalidRequestError("Reason is required.")
        self._validate_phase_shape(data.reallocation_type, data.from_phase_id, data.to_phase_id)

        self._validate_transfer(
            project_id=data.project_id,
            reallocation_type=data.reallocation_type,
            amount=amount,
            from_phase_id=data.from_phase_id,
            to_phase_id=data.to_phase_id,
            for_update=False,
        )
        warnings = self._capital_warnings(data.project_id, amount)

        now = datetime.utcnow()
        row = BudgetReallocation(
            project_id=data.project_id,
            from_phase_id=data.from_phase_id,
            to_phase_id=data.to_phase_id,
            reallocation_type=data.reallocation_type,
            amount=amount,
            reason=reason,
            status=ReallocationStatus.PENDING,
            requested_by=actor.actor_id,
            requested_at=now,
            updated_at=now,
        )
        try:
            self.repo.add_reallocation(row)
            self.audit.record(
                actor_id=actor.actor_id,
                project_id=row.project_id,
                entity_name=ENTITY_NAME,
                entity_id=str(row.id),
                action_type="requested",
                before=None,
                after={
                    "status": ReallocationStatus.PENDING.value,
                    "reallocation_type": row.reallocation_type.value,
                    "amount": str(amount),
                    "from_phase_id": str(row.from_phase_id) if row.from_phase_id else None,
                    "to_phase_id": str(row.to_phase_id) if row.to_phase_id else None,
                },
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InconsistentDataError("Reallocation request violates a data constraint.") from exc

        self.db.refresh(row)
        logger.info(
            "reallocation_requested",
            extra={
                "reallocation_id": str(row.id),
                "project_id": str(row.project_id),
                "reallocation_type": row.reallocation_type.value,
                "amount": str(amount),
                "actor_id": actor.actor_id,
            },
        )
        return ReallocationOutcome(reallocation=row, warnings=warnings)

    def approve_reallocation(
        self,
        *,
        reallocation_id: UUID,
        approver: RequestActor,
        notes: str | None = None,
    ) -> ReallocationOutcome:
        reallocation = self._get_reallocation_or_404(reallocation_id, for_update=True)
        self._require_pending(reallocation, action="approve")

        amount = q2(to_decimal(reallocation.amount))
        try:
            plan = self._validate_transfer(
                project_id=reallocation.project_id,
                reallocation_type=reallocation.reallocation_type,
                amount=amount,
                from_phase_id=reallocation.from_phase_id,
                to_phase_id=reallocation.to_phase_id,
                for_update=True,
            )
            warnings = self._capital_warnings(reallocation.project_id, amount)
        except Exception:
            self.db.rollback()
            raise

        now = datetime.utcnow()
        approval_notes = notes.strip() if notes and notes.strip() else None
        try:
            claimed = self.repo.transition_reallocation(
                reallocation_id,
                from_status=ReallocationStatus.PENDING,
                values={
                    "status": ReallocationStatus.EXECUTED,
                    "approved_by": approver.actor_id,
                    "approval_notes": approval_notes,
                    "approved_at": now,
                    "executed_at": now,
                    "updated_at": now,
                },
            )
            if not claimed:
                raise InvalidStateError(
                    "Reallocation was already processed by another request.",
                    reallocation_id=reallocation_id,
                )

            touched = self._apply_transfer(reallocation.reallocation_type, plan, amount, now)
            self.audit.record(
                actor_id=approver.actor_id,
                project_id=reallocation.project_id,
                entity_name=ENTITY_NAME,
                entity_id=str(reallocation_id),
                action_type="approved",
                before={"status": ReallocationStatus.PENDING.value},
                after={
                    "status": ReallocationStatus.EXECUTED.value,
                    "reallocation_type": reallocation.reallocation_type.value,
                    "amount": str(amount),
                    "from_phase_id": str(reallocation.from_phase_id) if reallocation.from_phase_id else None,
                    "to_phase_id": str(reallocation.to_phase_id) if reallocation.to_phase_id else None,
                    "approval_notes": approval_notes,
                },
            )
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("reallocation_version_conflict", extra={"reallocation_id": str(reallocation_id)})
            raise ConcurrencyConflictError(
                "Budget records changed during approval; retry the approval.",
                reallocation_id=reallocation_id,
            ) from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "reallocation_executed",
            extra={
                "reallocation_id": str(reallocation_id),
                "project_id": str(reallocation.project_id),
                "reallocation_type": reallocation.reallocation_type.value,
                "amount": str(amount),
                "actor_id": approver.actor_id,
            },
        )

        report = self.recalculation.recalculate_phases(touched)
        warnings.extend(report.warnings)
        self.db.refresh(reallocation)
        return ReallocationOutcome(reallocation=reallocation, warnings=warnings, partial_failures=report.failures)

    def reject_reallocation(
        self,
        *,
        reallocation_id: UUID,
        actor: RequestActor,
        reason: str,
    ) -> BudgetReallocation:
        rejection_reason = (reason or "").strip()
        if not rejection_reason:
            raise InvalidRequestError("Rejection reason is required.")

        reallocation = self._get_reallocation_or_404(reallocation_id, for_update=True)
        self._require_pending(reallocation, action="reject")

        now = datetime.utcnow()
        try:
            claimed = self.repo.transition_reallocation(
                reallocation_id,
                from_status=ReallocationStatus.PENDING,
                values={
                    "status": ReallocationStatus.REJECTED,
                    "rejected_by": actor.actor_id,
                    "rejection_reason": rejection_reason,
                    "rejected_at": now,
                    "updated_at": now,
                },
            )
            if not claimed:
                raise InvalidStateError(
                    "Reallocation was already processed by another request.",
                    reallocation_id=reallocation_id,
                )
            self.audit.record(
                actor_id=actor.actor_id,
                project_id=reallocation.project_id,
                entity_name=ENTITY_NAME,
                entity_id=str(reallocation_id),
                action_type="rejected",
                before={"status": ReallocationStatus.PENDING.value},
                after={
                    "status": ReallocationStatus.REJECTED.value,
                    "amount": str(reallocation.amount),
                    "rejection_reason": rejection_reason,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(reallocation)
        logger.info(
            "reallocation_rejected",
            extra={"reallocation_id": str(reallocation_id), "actor_id": actor.actor_id},
        )
        return reallocation

    # ---------- Validation ----------
    def _get_reallocation_or_404(self, reallocation_id: UUID, *, for_update: bool = False) -> BudgetReallocation:
        reallocation = self.repo.get_reallocation(reallocation_id, for_update=for_update)
        if reallocation is None:
            raise NotFoundError("Reallocation request not found.", reallocation_id=reallocation_id)
        return reallocation

    @staticmethod
    def _require_pending(reallocation: BudgetReallocation, *, action: str) -> None:
        if reallocation.status is not ReallocationStatus.PENDING:
            raise InvalidStateError(
                f"Cannot {action} reallocation with status: {reallocation.status.value}.",
                reallocation_id=reallocation.id,
                status=reallocation.status.value,
            )

    @staticmethod
    def _validate_phase_shape(
        reallocation_type: ReallocationType,
        from_phase_id: UUID | None,
        to_phase_id: UUID | None,
    ) -> None:
        needs_source = reallocation_type in (ReallocationType.PHASE_TO_PHASE, ReallocationType.PHASE_TO_PROJECT)
        needs_target = reallocation_type in (ReallocationType.PHASE_TO_PHASE, ReallocationType.PROJECT_TO_PHASE)

        if needs_source and from_phase_id is None:
            raise InvalidRequestError(f"Source phase is required for {reallocation_type.value} reallocation.")
        if not needs_source and from_phase_id is not None:
            raise InvalidRequestError(f"Source phase must be empty for {reallocation_type.value} reallocation.")
        if needs_target and to_phase_id is None:
            raise InvalidRequestError(f"Target phase is required for {reallocation_type.value} reallocation.")
        if not needs_target and to_phase_id is not None:
            raise InvalidRequestError(f"Target phase must be empty for {reallocation_type.value} reallocation.")
        if from_phase_id is not None and from_phase_id == to_phase_id:
            raise InvalidRequestError("Source and target phases must differ.")

    def _load_phase(self, phase_id: UUID | None, *, project_id: UUID, role: str, for_update: bool) -> Phase:
        if phase_id is None:
            raise InconsistentDataError(f"Reallocation has no {role} phase.", project_id=project_id)
        phase = self.repo.get_phase(phase_id, for_update=for_update)
        if phase is None:
            raise NotFoundError(f"{role.capitalize()} phase not found.", phase_id=phase_id)
        if phase.project_id != project_id:
            raise InconsistentDataError(
                f"{role.capitalize()} phase does not belong to the reallocation project.",
                phase_id=phase_id,
                project_id=project_id,
            )
        return phase

    @staticmethod
    def phase_available(phase: Phase) -> Decimal:
        return remaining_budget(phase.allocation.total, phase.actual_spending.total, phase.financial_states.committed)

    def _check_source_available(self, source: Phase, amount: Decimal) -> None:
        available = self.phase_available(source)
        if amount > available:
            raise InsufficientBudgetError(
                "Insufficient budget in source phase.",
                requested=amount,
                available=available,
                phase_id=source.id,
            )

    def _check_project_available(self, project: Project, amount: Decimal) -> None:
        project_total = budget_total(project.budget)
        phase_budgets = self.recalculation.calculate_total_phase_budgets(project.id)
        project_available = project_total - phase_budgets
        if amount > project_available:
            raise InsufficientBudgetError(
                "Insufficient project budget.",
                requested=amount,
                available=project_available,
                project_id=project.id,
            )
        if phase_budgets + amount > project_total:
            raise InsufficientBudgetError(
                "Reallocation would exceed the project budget.",
                requested=amount,
                available=project_available,
                project_id=project.id,
            )
        # The project total shrinks by the amount handed out, so the phases
        # must still fit under the reduced total.
        if phase_budgets + amount > project_total - amount:
            raise InsufficientBudgetError(
                "Reallocation would leave phase budgets above the reduced project budget.",
                requested=amount,
                available=(project_available / 2).quantize(Q2, rounding=ROUND_DOWN),
                project_id=project.id,
            )

    def _validate_transfer(
        self,
        *,
        project_id: UUID,
        reallocation_type: ReallocationType,
        amount: Decimal,
        from_phase_id: UUID | None,
        to_phase_id: UUID | None,
        for_update: bool,
    ) -> _TransferPlan:
        project = self.repo.get_project(project_id, for_update=for_update)
        if project is None:
            raise NotFoundError("Project not found.", project_id=project_id)

        plan = _TransferPlan(project=project)
        if reallocation_type is ReallocationType.PHASE_TO_PHASE:
            plan.source = self._load_phase(from_phase_id, project_id=project_id, role="source", for_update=for_update)
            plan.target = self._load_phase(to_phase_id, project_id=project_id, role="target", for_update=for_update)
            if plan.source.id == plan.target.id:
                raise InconsistentDataError("Source and target phases must differ.", phase_id=plan.source.id)
            self._check_source_available(plan.source, amount)
        elif reallocation_type is ReallocationType.PROJECT_TO_PHASE:
            plan.target = self._load_phase(to_phase_id, project_id=project_id, role="target", for_update=for_update)
            self._check_project_available(project, amount)
        else:
            plan.source = self._load_phase(from_phase_id, project_id=project_id, role="source", for_update=for_update)
            self._check_source_available(plan.source, amount)
        return plan

    def _capital_warnings(self, project_id: UUID, amount: Decimal) -> list[str]:
        advisory = self.capital.reallocation_advisory(project_id, amount)
        return [advisory] if advisory else []

    # ---------- Execution ----------
    def _move_allocation(self, phase: Phase, delta: Decimal, now: datetime) -> None:
        phase.allocation = with_total_delta(phase.allocation, delta)
        self.recalculation.refresh_remaining(phase)
        phase.updated_at = now

    def _apply_transfer(
        self,
        reallocation_type: ReallocationType,
        plan: _TransferPlan,
        amount: Decimal,
        now: datetime,
    ) -> list[UUID]:
        touched: list[UUID] = []
        if plan.source is not None:
            self._move_allocation(plan.source, -amount, now)
            touched.append(plan.source.id)
        if plan.target is not None:
            self._move_allocation(plan.target, amount, now)
            touched.append(plan.target.id)

        if reallocation_type is ReallocationType.PROJECT_TO_PHASE:
            plan.project.budget = with_total_delta(plan.project.budget, -amount)
            plan.project.updated_at = now
        elif reallocation_type is ReallocationType.PHASE_TO_PROJECT:
            plan.project.budget = with_total_delta(plan.project.budget, amount)
            plan.project.updated_at = now

        self.db.flush()
        return touched
