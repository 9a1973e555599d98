"""Background scheduler that runs due escalation follow-ups on an interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from incidentdesk.config import settings
from incidentdesk.database import async_session
from incidentdesk.services.escalation import EscalationEngine, escalation_engine
from incidentdesk.services.follow_ups import DurableFollowUpScheduler, follow_up_scheduler

logger = logging.getLogger("incidentdesk.scheduler")


class BackgroundScheduler:
    """Asyncio-based poller running inside the FastAPI event loop.

    On each tick:
      1. Claim due pending follow-ups
      2. Hand each to the escalation engine, which re-checks the incident
      3. Mark the job done, or failed with the error text
    """

    def __init__(
        self,
        engine: Optional[EscalationEngine] = None,
        jobs: Optional[DurableFollowUpScheduler] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ) -> None:
        self.interval = settings.escalation_poll_interval_seconds
        self.batch_size = settings.escalation_batch_size
        self.engine = engine or escalation_engine
        self.jobs = jobs or follow_up_scheduler
        self.session_factory = session_factory or async_session
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background scheduler."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Scheduler started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the background scheduler gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in tick: {e}")
                await asyncio.sleep(10)  # back off on error

    async def tick(self) -> int:
        """Run every due follow-up once. Returns how many jobs were processed."""
        async with self.session_factory() as session:
            jobs = await self.jobs.claim_due(session, limit=self.batch_size)

        for job in jobs:
            error: Optional[str] = None
            try:
                outcome = await self.engine.handle_follow_up(job.incident_id, job.contact_index)
                logger.info(
                    f"Follow-up finished: {outcome.value}",
                    extra={"incident_id": job.incident_id, "contact_index": job.contact_index},
                )
            except Exception as e:
                error = str(e) or e.__class__.__name__
                logger.exception(
                    "Follow-up failed",
                    extra={"incident_id": job.incident_id, "contact_index": job.contact_index},
                )

            async with self.session_factory() as session:
                await self.jobs.mark_finished(session, job.id, error=error)

        if jobs:
            logger.info(f"Tick complete: {len(jobs)} follow-ups processed")
        return len(jobs)


# Global scheduler instance
scheduler = BackgroundScheduler()
