"""Incident intake: create, auto-advance the initial status, assign, and queue escalation."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.models.incident import (
    QUOTE_PROJECT_TYPES,
    Incident,
    IncidentAssignment,
    IncidentCreate,
    IncidentStatus,
    ProjectType,
)
from incidentdesk.models.organization import User
from incidentdesk.services.activity_logger import ActivityLogger, activity_logger
from incidentdesk.services.escalation import EscalationEngine, escalation_engine
from incidentdesk.services.unread_cache import UnreadCache, unread_cache

logger = logging.getLogger("incidentdesk.intake")


def intake_status(project_type: str) -> str:
    """Status an incident leaves ``new`` for at creation time."""
    if project_type in QUOTE_PROJECT_TYPES:
        return IncidentStatus.PROPOSAL_REQUESTED.value
    return IncidentStatus.ACKNOWLEDGED.value


class IncidentCreationService:
    def __init__(
        self,
        logger_service: Optional[ActivityLogger] = None,
        engine: Optional[EscalationEngine] = None,
        cache: Optional[UnreadCache] = None,
    ) -> None:
        self.activity = logger_service or activity_logger
        self.escalation = engine or escalation_engine
        self.cache = cache or unread_cache

    async def create(self, session: AsyncSession, creator: User, data: IncidentCreate) -> Incident:
        project_type = ProjectType(data.project_type).value
        try:
            incident = Incident(
                organization_id=creator.organization_id,
                created_by_user_id=creator.id,
                property_name=data.property_name,
                status=IncidentStatus.NEW.value,
                project_type=project_type,
                emergency=project_type == ProjectType.EMERGENCY_RESPONSE.value,
                damage_type=data.damage_type.value,
                description=data.description,
            )
            session.add(incident)
            await session.flush()

            await self._assign(session, incident, creator, data.assigned_user_ids)

            incident.status = intake_status(project_type)
            await self.activity.log(
                session,
                incident,
                "incident_created",
                creator,
                {"project_type": project_type, "emergency": incident.emergency},
            )
            await self.activity.log(
                session,
                incident,
                "status_changed",
                creator,
                {"old_status": IncidentStatus.NEW.value, "new_status": incident.status},
            )
            await self.escalation.enqueue_initial(session, incident)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(
            f"Created {project_type} incident (status={incident.status})",
            extra={"incident_id": incident.id, "user_id": creator.id},
        )
        await self.cache.expire_for_incident(session, incident, exclude_user_id=creator.id)
        return incident

    @staticmethod
    async def _assign(
        session: AsyncSession,
        incident: Incident,
        creator: User,
        user_ids: list[int],
    ) -> None:
        wanted = {creator.id, *user_ids}
        result = await session.execute(
            select(User.id).where(
                User.id.in_(wanted),
                User.active.is_(True),
            )
        )
        for user_id in sorted(result.scalars().all()):
            session.add(IncidentAssignment(incident_id=incident.id, user_id=user_id))
        await session.flush()


incident_creation_service = IncidentCreationService()
