"""Tests for the incident status state machine."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from incidentdesk.exceptions import InvalidTransitionError
from incidentdesk.models.activity import ActivityEvent
from incidentdesk.models.escalation import EscalationEvent
from incidentdesk.models.incident import Incident
from incidentdesk.models.organization import UserRole
from incidentdesk.services.status_transitions import (
    ALLOWED_TRANSITIONS,
    StatusTransitionService,
    allowed_transitions,
    is_valid_transition,
)
from incidentdesk.utils.time import as_utc, utc_now

VALID_EDGES = sorted(
    (source, target) for source, targets in ALLOWED_TRANSITIONS.items() for target in targets
)


async def _status_events(session, incident_id: int) -> list[ActivityEvent]:
    result = await session.execute(
        select(ActivityEvent)
        .where(
            ActivityEvent.incident_id == incident_id,
            ActivityEvent.event_type == "status_changed",
        )
        .order_by(ActivityEvent.created_at)
    )
    return list(result.scalars().all())


async def _escalations(session, incident_id: int) -> list[EscalationEvent]:
    result = await session.execute(
        select(EscalationEvent)
        .where(EscalationEvent.incident_id == incident_id)
        .order_by(EscalationEvent.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def test_standard_and_quote_paths_converge_at_active():
    assert allowed_transitions("acknowledged") == ["active", "on_hold"]
    assert is_valid_transition("proposal_signed", "active")
    assert allowed_transitions("closed") == []
    assert allowed_transitions("no_such_status") == []


def test_nothing_transitions_back_to_new():
    assert all("new" not in targets for targets in ALLOWED_TRANSITIONS.values())


@pytest.mark.asyncio
@pytest.mark.parametrize("source,target", VALID_EDGES)
async def test_every_allowed_edge_is_applied(db_session, seed, source, target):
    org = await seed.organization()
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    incident = await seed.incident(org, manager, status=source)

    await StatusTransitionService().transition(db_session, incident, target, manager)

    stored = await db_session.get(Incident, incident.id)
    assert stored.status == target
    events = await _status_events(db_session, incident.id)
    assert len(events) == 1
    assert events[0].event_metadata == {"old_status": source, "new_status": target}
    assert events[0].performed_by_user_id == manager.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "source,target",
    [
        ("acknowledged", "completed"),
        ("new", "active"),
        ("closed", "active"),
        ("active", "active"),
        ("proposal_requested", "active"),
        ("paid", "active"),
        ("active", "new"),
        ("active", "not_a_status"),
    ],
)
async def test_invalid_edges_are_rejected_without_mutation(db_session, seed, source, target):
    org = await seed.organization()
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    incident = await seed.incident(org, manager, status=source)

    with pytest.raises(InvalidTransitionError) as exc:
        await StatusTransitionService().transition(db_session, incident, target, manager)

    assert exc.value.requested_status == target
    assert exc.value.current_status == source
    assert target in str(exc.value)

    stored = await db_session.get(Incident, incident.id)
    assert stored.status == source
    assert stored.last_activity_at is None
    assert await _status_events(db_session, incident.id) == []


@pytest.mark.asyncio
async def test_transition_moves_last_activity_forward(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)

    before = utc_now()
    await StatusTransitionService().transition(db_session, incident, "on_hold", tech)

    assert as_utc(incident.last_activity_at) >= before


@pytest.mark.asyncio
async def test_entering_active_resolves_outstanding_escalations(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    primary = await seed.user(org, "Pat Primary")
    incident = await seed.incident(org, tech)

    db_session.add_all(
        [
            EscalationEvent(
                incident_id=incident.id, user_id=primary.id, contact_method="email", status="sent"
            ),
            EscalationEvent(
                incident_id=incident.id, user_id=primary.id, contact_method="sms", status="failed"
            ),
        ]
    )
    await db_session.commit()

    await StatusTransitionService().transition(db_session, incident, "active", tech)

    escalations = await _escalations(db_session, incident.id)
    assert len(escalations) == 2
    for escalation in escalations:
        assert escalation.resolved_at is not None
        assert escalation.resolved_by_user_id == tech.id
        assert escalation.resolution_reason == "incident_marked_active"


@pytest.mark.asyncio
async def test_resolution_is_written_once(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    primary = await seed.user(org, "Pat Primary")
    incident = await seed.incident(org, tech)

    db_session.add(
        EscalationEvent(
            incident_id=incident.id, user_id=primary.id, contact_method="email", status="sent"
        )
    )
    await db_session.commit()

    service = StatusTransitionService()
    await service.transition(db_session, incident, "active", tech)
    first = (await _escalations(db_session, incident.id))[0]
    resolved_at = first.resolved_at

    await service.transition(db_session, incident, "on_hold", manager)
    await service.transition(db_session, incident, "active", manager)

    again = (await _escalations(db_session, incident.id))[0]
    assert again.resolved_at == resolved_at
    assert again.resolved_by_user_id == tech.id


@pytest.mark.asyncio
async def test_non_active_transition_leaves_escalations_open(db_session, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    primary = await seed.user(org, "Pat Primary")
    incident = await seed.incident(org, tech)

    db_session.add(
        EscalationEvent(
            incident_id=incident.id, user_id=primary.id, contact_method="email", status="sent"
        )
    )
    await db_session.commit()

    await StatusTransitionService().transition(db_session, incident, "on_hold", tech)

    escalation = (await _escalations(db_session, incident.id))[0]
    assert escalation.resolved_at is None
    assert escalation.resolution_reason is None


@pytest.mark.asyncio
async def test_concurrent_transitions_from_same_status_one_wins(session_factory, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    seeded = await seed.incident(org, tech)

    service = StatusTransitionService()
    async with session_factory() as first, session_factory() as second:
        mine = await first.get(Incident, seeded.id)
        theirs = await second.get(Incident, seeded.id)

        await service.transition(first, mine, "active", tech)

        with pytest.raises(InvalidTransitionError) as exc:
            await service.transition(second, theirs, "on_hold", manager)

        assert exc.value.current_status == "active"
        assert theirs.status == "active"

    async with session_factory() as check:
        assert (await check.get(Incident, seeded.id)).status == "active"
        assert len(await _status_events(check, seeded.id)) == 1


@pytest.mark.asyncio
async def test_other_active_assignees_are_emailed_after_commit(db_session, seed, dispatcher):
    org = await seed.organization()
    tech = await seed.user(org)
    helper = await seed.user(org, "Hal Helper")
    former = await seed.user(org, "Fern Former", active=False)
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    incident = await seed.incident(org, tech, assigned=[helper, former, manager])

    await StatusTransitionService(dispatcher=dispatcher).transition(db_session, incident, "active", manager)

    assert dispatcher.sent == [
        ("status_change", tech.id, incident.id),
        ("status_change", helper.id, incident.id),
    ]


@pytest.mark.asyncio
async def test_failed_status_email_does_not_undo_transition(db_session, seed, dispatcher_factory):
    org = await seed.organization()
    tech = await seed.user(org)
    helper = await seed.user(org, "Hal Helper")
    incident = await seed.incident(org, tech, assigned=[helper])
    dispatcher = dispatcher_factory(fail_for=[helper.id])

    await StatusTransitionService(dispatcher=dispatcher).transition(db_session, incident, "on_hold", tech)

    assert incident.status == "on_hold"
    assert dispatcher.sent == []
    assert len(await _status_events(db_session, incident.id)) == 1
