"""Incident lifecycle API endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.api.deps import get_current_user, get_visible_incident
from incidentdesk.database import get_session
from incidentdesk.exceptions import InvalidTransitionError, UnknownEventTypeError
from incidentdesk.models.activity import ActivityEventCreate, ActivityEventResponse
from incidentdesk.models.escalation import EscalationEvent, EscalationEventResponse
from incidentdesk.models.incident import (
    Incident,
    IncidentCreate,
    IncidentResponse,
    IncidentTransitionRequest,
)
from incidentdesk.models.message import MarkReadRequest, MessageCreate, MessageResponse
from incidentdesk.models.organization import User
from incidentdesk.services.activity_logger import activity_logger
from incidentdesk.services.incident_creation import incident_creation_service
from incidentdesk.services.messages import message_service
from incidentdesk.services.read_state import read_state_service
from incidentdesk.services.status_transitions import allowed_transitions, status_transition_service

router = APIRouter(prefix="/api/incidents", tags=["incidents"])


def _incident_response(incident: Incident) -> IncidentResponse:
    response = IncidentResponse.model_validate(incident)
    response.allowed_transitions = allowed_transitions(incident.status)
    return response


@router.post("", response_model=IncidentResponse, status_code=201)
async def create_incident(
    data: IncidentCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    incident = await incident_creation_service.create(session, user, data)
    return _incident_response(incident)


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident: Incident = Depends(get_visible_incident)):
    return _incident_response(incident)


@router.post("/{incident_id}/transition", response_model=IncidentResponse)
async def transition_incident(
    data: IncidentTransitionRequest,
    incident: Incident = Depends(get_visible_incident),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Move an incident along the status graph; 409 names the rejected target."""
    try:
        await status_transition_service.transition(session, incident, data.status, user)
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "current_status": exc.current_status,
                "requested_status": exc.requested_status,
            },
        ) from exc
    return _incident_response(incident)


# ── Activity timeline ───────────────────────────────────────────


@router.get("/{incident_id}/timeline", response_model=list[ActivityEventResponse])
async def get_incident_timeline(
    event_type: list[str] | None = Query(None),
    since: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    incident: Incident = Depends(get_visible_incident),
    session: AsyncSession = Depends(get_session),
):
    """Activity events, newest first."""
    events = await activity_logger.timeline(
        session, incident.id, event_types=event_type, since=since, limit=limit
    )
    return [ActivityEventResponse.model_validate(e) for e in events]


@router.post("/{incident_id}/activity", response_model=ActivityEventResponse, status_code=201)
async def log_activity(
    data: ActivityEventCreate,
    incident: Incident = Depends(get_visible_incident),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Record an event owned by a daily-log feature (labor, equipment, notes…)."""
    try:
        event = await activity_logger.record_activity(
            session, incident, data.event_type, user, data.metadata
        )
    except UnknownEventTypeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ActivityEventResponse.model_validate(event)


# ── Messages & read state ───────────────────────────────────────


@router.post("/{incident_id}/messages", response_model=MessageResponse, status_code=201)
async def post_message(
    data: MessageCreate,
    incident: Incident = Depends(get_visible_incident),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    message = await message_service.post(session, incident, user, data.body)
    return MessageResponse.model_validate(message)


@router.post("/{incident_id}/read", status_code=204)
async def mark_read(
    data: MarkReadRequest,
    incident: Incident = Depends(get_visible_incident),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await read_state_service.mark_read(session, incident, user, data.tab)


# ── Escalation history ──────────────────────────────────────────


@router.get("/{incident_id}/escalations", response_model=list[EscalationEventResponse])
async def list_escalations(
    incident: Incident = Depends(get_visible_incident),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        select(EscalationEvent)
        .where(EscalationEvent.incident_id == incident.id)
        .order_by(desc(EscalationEvent.attempted_at), desc(EscalationEvent.id))
    )
    return [EscalationEventResponse.model_validate(e) for e in result.scalars().all()]
