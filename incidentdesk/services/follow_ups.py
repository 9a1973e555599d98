"""Durable escalation follow-ups.

A follow-up is a row carrying ``(incident_id, contact_index, run_at)``. There is
no cancel operation: the escalation engine re-reads the incident when the job
fires and turns it into a no-op if someone has picked the incident up.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.config import settings
from incidentdesk.models.escalation import EscalationFollowUp, FollowUpStatus
from incidentdesk.utils.time import utc_now

logger = logging.getLogger("incidentdesk.scheduler")


class FollowUpScheduler(Protocol):
    async def schedule(
        self,
        session: AsyncSession,
        delay_minutes: int,
        incident_id: int,
        contact_index: int,
    ) -> None: ...


class DurableFollowUpScheduler:
    """Persists follow-ups in the caller's transaction; ``BackgroundScheduler`` runs them."""

    async def schedule(
        self,
        session: AsyncSession,
        delay_minutes: int,
        incident_id: int,
        contact_index: int,
    ) -> EscalationFollowUp:
        job = EscalationFollowUp(
            incident_id=incident_id,
            contact_index=contact_index,
            run_at=utc_now() + timedelta(minutes=delay_minutes),
            status=FollowUpStatus.PENDING.value,
        )
        session.add(job)
        await session.flush()
        logger.info(
            f"Scheduled escalation follow-up in {delay_minutes} min",
            extra={"incident_id": incident_id, "contact_index": contact_index},
        )
        return job

    async def claim_due(
        self,
        session: AsyncSession,
        now: Optional[datetime] = None,
        limit: int = 20,
        lease_seconds: Optional[int] = None,
    ) -> list[EscalationFollowUp]:
        """Move due jobs to ``running``; a job lost to another worker is skipped.

        A ``running`` job whose claim is older than the lease belongs to a
        worker that died before ``mark_finished`` and is claimed again.
        """
        now = now or utc_now()
        lease = settings.follow_up_lease_seconds if lease_seconds is None else lease_seconds
        claimable = or_(
            and_(
                EscalationFollowUp.status == FollowUpStatus.PENDING.value,
                EscalationFollowUp.run_at <= now,
            ),
            and_(
                EscalationFollowUp.status == FollowUpStatus.RUNNING.value,
                or_(
                    EscalationFollowUp.claimed_at.is_(None),
                    EscalationFollowUp.claimed_at <= now - timedelta(seconds=lease),
                ),
            ),
        )
        result = await session.execute(
            select(EscalationFollowUp)
            .where(claimable)
            .order_by(EscalationFollowUp.run_at, EscalationFollowUp.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        claimed: list[EscalationFollowUp] = []
        for job in result.scalars().all():
            reclaimed = job.status == FollowUpStatus.RUNNING.value
            swapped = await session.execute(
                update(EscalationFollowUp)
                .where(EscalationFollowUp.id == job.id, claimable)
                .values(status=FollowUpStatus.RUNNING.value, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            if swapped.rowcount == 1:
                if reclaimed:
                    logger.warning(
                        "Reclaimed follow-up after an expired lease",
                        extra={"incident_id": job.incident_id, "contact_index": job.contact_index},
                    )
                claimed.append(job)
        await session.commit()
        return claimed

    async def mark_finished(
        self,
        session: AsyncSession,
        job_id: int,
        error: Optional[str] = None,
    ) -> None:
        await session.execute(
            update(EscalationFollowUp)
            .where(EscalationFollowUp.id == job_id)
            .values(
                status=FollowUpStatus.FAILED.value if error else FollowUpStatus.DONE.value,
                error=error,
                finished_at=utc_now(),
            )
        )
        await session.commit()


follow_up_scheduler = DurableFollowUpScheduler()
