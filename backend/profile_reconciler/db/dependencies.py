"""FastAPI dependencies for database access and service wiring."""

from collections.abc import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from profile_reconciler.db.session import SessionLocal
from profile_reconciler.services.reconciliation import ReconciliationService, build_reconciliation_service


def get_db() -> Iterator[Session]:
    """Yield a request-scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_reconciliation_service(db: Session = Depends(get_db)) -> ReconciliationService:
    """Build the reconciliation service for one request."""

    return build_reconciliation_service(db)
