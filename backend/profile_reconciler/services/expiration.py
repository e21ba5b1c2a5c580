"""Periodic expiry and purge of stale proposals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter

from sqlalchemy.orm import Session

from profile_reconciler.services.proposal_store import ProposalStore, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    expired: int
    purged: int


class ExpirationSweeper:
    """Expire overdue PENDING proposals and purge old EXPIRED rows.

    Each sweep uses its own session. ``run_forever`` hands every sweep to a
    worker thread so the event loop serving requests is never blocked.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        interval_seconds: float = 3600,
        retention_days: int = 30,
    ) -> None:
        self._session_factory = session_factory
        self._interval_seconds = interval_seconds
        self._retention = timedelta(days=retention_days)

    def run_once(self, now: datetime | None = None) -> SweepResult:
        started = perf_counter()
        now = now or utcnow()
        db = self._session_factory()
        try:
            store = ProposalStore(db)
            expired = store.expire_stale(now)
            purged = store.purge_expired(now - self._retention)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "expiration.sweep_failed elapsed_ms=%.2f",
                (perf_counter() - started) * 1000.0,
            )
            raise
        finally:
            db.close()
        logger.info(
            "expiration.sweep_timing expired=%d purged=%d total_ms=%.2f",
            expired,
            purged,
            (perf_counter() - started) * 1000.0,
        )
        return SweepResult(expired=expired, purged=purged)

    async def run_forever(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("expiration.sweep_retry_scheduled interval_seconds=%s", self._interval_seconds)
            await asyncio.sleep(self._interval_seconds)
