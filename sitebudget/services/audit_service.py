"""Audit trail writer for budget mutations."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sitebudget.models.entities import AuditEvent
from sitebudget.repositories.budget_repository import BudgetRepository


class AuditLog(Protocol):
    def record(
        self,
        *,
        actor_id: str,
        project_id: UUID,
        entity_name: str,
        entity_id: str,
        action_type: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None: ...


class SqlAuditLog:
    """Writes audit rows into the caller's open transaction.

    Nothing is committed here, so an audit row exists exactly when the
    mutation it describes does.
    """

    def __init__(self, repo: BudgetRepository) -> None:
        self.repo = repo

    def record(
        self,
        *,
        actor_id: str,
        project_id: UUID,
        entity_name: str,
        entity_id: str,
        action_type: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        self.repo.add_audit_event(
            AuditEvent(
                actor_id=actor_id,
                project_id=project_id,
                entity_name=entity_name,
                entity_id=entity_id,
                action_type=action_type,
                before_payload=before,
                after_payload=after,
                created_at=datetime.utcnow(),
            )
        )
