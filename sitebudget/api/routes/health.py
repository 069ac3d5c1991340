"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from sitebudget.core.config import get_settings
from sitebudget.db.dependencies import get_db_session

router = APIRouter()


@router.get("/health")
def health(db: Session = Depends(get_db_session)) -> dict[str, str]:
    """Liveness plus a round trip to the budget database."""

    db.execute(text("SELECT 1"))
    return {"status": "ok", "database": "ok", "environment": get_settings().app_env}
