"""Request actor extraction."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from sitebudget.core.config import get_settings


@dataclass(frozen=True)
class RequestActor:
    """Actor on whose behalf a request mutates budget state."""

    actor_id: str
    display_name: str


def _require_actor_headers(x_actor_id: str | None, x_actor_name: str | None) -> RequestActor:
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor headers. Expected X-Actor-Id or enable development principal fallback.",
        )

    actor_id = x_actor_id.strip()
    display_name = (x_actor_name or "").strip() or actor_id
    return RequestActor(actor_id=actor_id, display_name=display_name)


def resolve_actor(x_actor_id: str | None, x_actor_name: str | None) -> RequestActor:
    settings = get_settings()
    if x_actor_id and x_actor_id.strip():
        return _require_actor_headers(x_actor_id, x_actor_name)

    if settings.auth_allow_dev_principal:
        return RequestActor(
            actor_id=settings.auth_dev_actor_id.strip(),
            display_name=settings.auth_dev_actor_name.strip(),
        )

    return _require_actor_headers(x_actor_id, x_actor_name)


def get_current_actor(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    x_actor_name: str | None = Header(default=None, alias="X-Actor-Name"),
) -> RequestActor:
    """Resolve the acting user from trusted proxy headers."""

    return resolve_actor(x_actor_id, x_actor_name)
