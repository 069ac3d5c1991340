"""Database dependencies for FastAPI endpoints."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from sitebudget.db.session import SessionLocal


def get_db_session() -> Generator[Session, None, None]:
    """Yield a request-scoped session; uncommitted work is rolled back on error."""

    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
