"""Tests for durable escalation follow-ups and the background worker."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from incidentdesk.models.escalation import EscalationEvent, EscalationFollowUp
from incidentdesk.models.incident import Incident
from incidentdesk.services.escalation import EscalationEngine
from incidentdesk.services.follow_ups import DurableFollowUpScheduler
from incidentdesk.utils.time import as_utc, utc_now
from incidentdesk.workers.scheduler import BackgroundScheduler


async def _follow_ups(session_factory, incident_id: int) -> list[EscalationFollowUp]:
    async with session_factory() as session:
        result = await session.execute(
            select(EscalationFollowUp)
            .where(EscalationFollowUp.incident_id == incident_id)
            .order_by(EscalationFollowUp.id)
        )
        return list(result.scalars().all())


async def _attempts(session_factory, incident_id: int) -> list[EscalationEvent]:
    async with session_factory() as session:
        result = await session.execute(
            select(EscalationEvent).where(EscalationEvent.incident_id == incident_id)
        )
        return list(result.scalars().all())


def _worker(dispatcher, session_factory) -> BackgroundScheduler:
    engine = EscalationEngine(dispatcher=dispatcher, session_factory=session_factory)
    return BackgroundScheduler(engine=engine, session_factory=session_factory)


@pytest.mark.asyncio
async def test_schedule_persists_pending_job(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)

    before = utc_now()
    job = await DurableFollowUpScheduler().schedule(db_session, 10, incident.id, 1)
    await db_session.commit()

    assert job.status == "pending"
    assert job.contact_index == 1
    assert as_utc(job.run_at) >= before + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_claim_due_takes_only_due_jobs_once(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)

    jobs = DurableFollowUpScheduler()
    due = await jobs.schedule(db_session, 0, incident.id, 0)
    await jobs.schedule(db_session, 10, incident.id, 1)
    await db_session.commit()

    claimed = await jobs.claim_due(db_session)
    assert [job.id for job in claimed] == [due.id]
    assert await jobs.claim_due(db_session) == []

    later = await jobs.claim_due(db_session, now=utc_now() + timedelta(minutes=11))
    assert [job.contact_index for job in later] == [1]


@pytest.mark.asyncio
async def test_job_left_running_by_a_dead_worker_is_reclaimed_after_lease(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)

    jobs = DurableFollowUpScheduler()
    job = await jobs.schedule(db_session, 0, incident.id, 0)
    await db_session.commit()

    # Claimed, but the worker never reaches mark_finished.
    assert [j.id for j in await jobs.claim_due(db_session, lease_seconds=60)] == [job.id]
    assert await jobs.claim_due(db_session, now=utc_now() + timedelta(seconds=30), lease_seconds=60) == []

    reclaimed = await jobs.claim_due(db_session, now=utc_now() + timedelta(days=1), lease_seconds=60)
    assert [j.id for j in reclaimed] == [job.id]

    stored = await db_session.get(EscalationFollowUp, job.id, populate_existing=True)
    assert stored.status == "running"
    assert stored.claimed_at is not None
    assert stored.finished_at is None


@pytest.mark.asyncio
async def test_tick_runs_due_follow_up_and_chains_next(seed, dispatcher, session_factory, db_session):
    org = await seed.organization()
    tech = await seed.user(org)
    primary = await seed.user(org, "Pat Primary")
    incident = await seed.incident(org, tech)
    await seed.on_call(org, primary, timeout_minutes=10)
    await DurableFollowUpScheduler().schedule(db_session, 0, incident.id, 0)
    await db_session.commit()

    worker = _worker(dispatcher, session_factory)
    assert await worker.tick() == 1

    jobs = await _follow_ups(session_factory, incident.id)
    assert [(job.contact_index, job.status) for job in jobs] == [(0, "done"), (1, "pending")]
    assert as_utc(jobs[1].run_at) > utc_now() + timedelta(minutes=9)
    assert [a.user_id for a in await _attempts(session_factory, incident.id)] == [primary.id]

    # Nothing else is due until the timeout elapses.
    assert await worker.tick() == 0


@pytest.mark.asyncio
async def test_follow_up_after_pickup_is_a_no_op(seed, dispatcher, session_factory, db_session):
    org = await seed.organization()
    tech = await seed.user(org)
    primary = await seed.user(org, "Pat Primary")
    incident = await seed.incident(org, tech)
    await seed.on_call(org, primary)
    await DurableFollowUpScheduler().schedule(db_session, 0, incident.id, 1)
    await db_session.execute(update(Incident).where(Incident.id == incident.id).values(status="active"))
    await db_session.commit()

    worker = _worker(dispatcher, session_factory)
    assert await worker.tick() == 1

    jobs = await _follow_ups(session_factory, incident.id)
    assert [(job.contact_index, job.status) for job in jobs] == [(1, "done")]
    assert await _attempts(session_factory, incident.id) == []
    assert dispatcher.sent == []


class _ExplodingEngine:
    async def handle_follow_up(self, incident_id: int, contact_index: int):
        raise RuntimeError("on-call lookup failed")


@pytest.mark.asyncio
async def test_failed_follow_up_is_marked_failed(seed, session_factory, db_session):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)
    await DurableFollowUpScheduler().schedule(db_session, 0, incident.id, 0)
    await db_session.commit()

    worker = BackgroundScheduler(engine=_ExplodingEngine(), session_factory=session_factory)
    assert await worker.tick() == 1

    job = (await _follow_ups(session_factory, incident.id))[0]
    assert job.status == "failed"
    assert job.error == "on-call lookup failed"
    assert job.finished_at is not None


@pytest.mark.asyncio
async def test_start_and_stop_toggle_running(session_factory):
    worker = BackgroundScheduler(engine=_ExplodingEngine(), session_factory=session_factory)

    await worker.start()
    assert worker.running is True

    await worker.stop()
    assert worker.running is False
