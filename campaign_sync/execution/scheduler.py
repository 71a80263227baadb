"""Background scheduler for the sync jobs."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.execution.pipeline import (
    SyncComponents,
    run_fund_reconciliation,
    run_ingest_cycle,
    run_token_issuance,
)
from campaign_sync.services.database import check_database

logger = logging.getLogger(__name__)


class GuardedJob:
    """A job body that never overlaps itself and never raises into the scheduler."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        health_check: Callable[[Callable[[], AsyncSession]], Awaitable[bool]] = check_database,
    ) -> None:
        self.name = name
        self.func = func
        self.session_factory = session_factory
        self.health_check = health_check
        self.running = False

    async def run(self) -> Optional[Any]:
        if self.running:
            logger.debug("%s still running, skipping tick", self.name)
            return None
        self.running = True
        try:
            if self.session_factory is not None and not await self.health_check(self.session_factory):
                logger.warning("Database unavailable, skipping %s", self.name)
                return None
            return await self.func()
        except Exception as exc:
            logger.exception("%s job failed: %s", self.name, exc)
            return None
        finally:
            self.running = False


class SyncScheduler:
    def __init__(
        self,
        components: SyncComponents,
        scheduler: Optional[AsyncIOScheduler] = None,
        interval_seconds: Optional[int] = None,
    ) -> None:
        self.components = components
        self.scheduler = scheduler or AsyncIOScheduler()
        self.interval_seconds = interval_seconds or settings.sync_interval_seconds
        self._running = False
        factory = components.session_factory
        self.jobs: dict[str, GuardedJob] = {
            "ingest": GuardedJob("ingest", lambda: run_ingest_cycle(components), factory),
            "fund_reconcile": GuardedJob(
                "fund-reconcile", lambda: run_fund_reconciliation(components), factory
            ),
            "token_issuance": GuardedJob(
                "token-issuance", lambda: run_token_issuance(components), factory
            ),
        }
        self.start_offsets = {
            "ingest": 0,
            "fund_reconcile": settings.fund_reconcile_start_delay_seconds,
            "token_issuance": settings.token_issuance_start_delay_seconds,
        }

    async def start(self) -> None:
        if self._running:
            return
        logger.info("Starting sync scheduler (interval %ss)...", self.interval_seconds)
        now = datetime.now(timezone.utc)
        for job_id, job in self.jobs.items():
            self.scheduler.add_job(
                job.run,
                IntervalTrigger(seconds=self.interval_seconds),
                id=job_id,
                name=job.name,
                replace_existing=True,
                next_run_time=now + timedelta(seconds=self.start_offsets.get(job_id, 0)),
            )
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started")

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self._running = False

    async def trigger(self, job_id: str) -> Optional[Any]:
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        return await job.run()
