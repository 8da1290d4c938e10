"""Periodic matchup refresh on an APScheduler interval job."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from warroom.core.store import MatchupDataStore

logger = logging.getLogger(__name__)

JOB_ID = "refresh_matchups"


async def tick_refresh(store: MatchupDataStore) -> set[str]:
    """Refresh every cached league whose TTL has expired.

    Exceptions are caught and logged so the scheduler is never interrupted.
    """
    try:
        changed = await store.refresh(force=False)
    except Exception:
        logger.exception("tick_refresh_error")
        return set()
    if changed:
        logger.info("tick_refresh changed_players=%d", len(changed))
    return changed


class RefreshRunner:
    """Owns the scheduler that drives ``store.refresh`` every ``interval_seconds``.

    One refresh at a time: a tick due while the previous one still runs is
    folded into the next.
    """

    def __init__(
        self,
        store: MatchupDataStore,
        interval_seconds: float,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._store = store
        self._interval_seconds = interval_seconds
        self._scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Schedule the refresh job and start the scheduler. Must run inside the event loop."""
        self._scheduler.add_job(
            tick_refresh,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            kwargs={"store": self._store},
            id=JOB_ID,
            name="Refresh cached matchups",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("refresh_runner_started interval=%ss", self._interval_seconds)

    def stop(self) -> None:
        """Stop scheduling refreshes. A refresh already running is left to finish."""
        if not self._scheduler.running:
            return
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        self._scheduler.shutdown(wait=False)
        logger.info("refresh_runner_stopped")
