"""FastAPI application entrypoint."""

import asyncio
from contextlib import asynccontextmanager, suppress
import logging

from fastapi import FastAPI
from sqlalchemy import text

from profile_reconciler.config import get_settings
from profile_reconciler.db.session import SessionLocal
from profile_reconciler.routers import proposals, rules
from profile_reconciler.services.expiration import ExpirationSweeper

logger = logging.getLogger(__name__)


def _check_database() -> None:
    """Prime the DB connection at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database warm-up failed; continuing without startup check.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    _check_database()
    sweeper = ExpirationSweeper(
        SessionLocal,
        interval_seconds=settings.expiration_sweep_interval_seconds,
        retention_days=settings.expired_retention_days,
    )
    task = asyncio.create_task(sweeper.run_forever())
    try:
        yield
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)

app.include_router(proposals.router, tags=["proposals"])
app.include_router(rules.router, tags=["rules"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
