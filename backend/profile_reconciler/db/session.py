"""Database engine and session factory."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from profile_reconciler.config import get_settings

_settings = get_settings()


def _connect_args(database_url: str) -> dict[str, object]:
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={_settings.database_statement_timeout_ms}"}
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    _settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args(_settings.database_url),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
