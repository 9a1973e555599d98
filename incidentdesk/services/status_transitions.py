"""Incident status state machine.

The legal edges live in ``ALLOWED_TRANSITIONS``; standard and quote paths
converge at ``active``. A transition changes the status, appends a
``status_changed`` event, touches ``last_activity_at`` and, when entering
``active``, resolves outstanding escalation attempts. All of it commits as one
unit or not at all. After the commit, every other active assignee is emailed
about the change; a failed email never undoes the transition.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.config import settings
from incidentdesk.exceptions import InvalidTransitionError
from incidentdesk.models.escalation import RESOLUTION_INCIDENT_MARKED_ACTIVE, EscalationEvent
from incidentdesk.models.incident import Incident, IncidentAssignment, IncidentStatus as S
from incidentdesk.models.organization import User
from incidentdesk.observability.metrics import metrics
from incidentdesk.services.activity_logger import ActivityLogger, activity_logger
from incidentdesk.services.notifier import NotificationDispatcher, notification_dispatcher
from incidentdesk.services.unread_cache import UnreadCache, unread_cache
from incidentdesk.utils.time import utc_now

logger = logging.getLogger("incidentdesk.transitions")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    # Intake picks the path; nothing ever transitions back into "new".
    S.NEW.value: frozenset({S.ACKNOWLEDGED.value, S.PROPOSAL_REQUESTED.value}),
    S.ACKNOWLEDGED.value: frozenset({S.ACTIVE.value, S.ON_HOLD.value}),
    S.PROPOSAL_REQUESTED.value: frozenset({S.PROPOSAL_SUBMITTED.value}),
    S.PROPOSAL_SUBMITTED.value: frozenset({S.PROPOSAL_SIGNED.value}),
    S.PROPOSAL_SIGNED.value: frozenset({S.ACTIVE.value}),
    S.ACTIVE.value: frozenset({S.JOB_STARTED.value, S.ON_HOLD.value, S.COMPLETED.value}),
    S.JOB_STARTED.value: frozenset({S.COMPLETED.value, S.ON_HOLD.value}),
    S.ON_HOLD.value: frozenset({S.ACTIVE.value, S.JOB_STARTED.value, S.COMPLETED.value}),
    S.COMPLETED.value: frozenset({S.COMPLETED_BILLED.value, S.ACTIVE.value}),
    S.COMPLETED_BILLED.value: frozenset({S.PAID.value, S.ACTIVE.value}),
    S.PAID.value: frozenset({S.CLOSED.value}),
    S.CLOSED.value: frozenset(),
}


def allowed_transitions(status: str) -> list[str]:
    return sorted(ALLOWED_TRANSITIONS.get(status, frozenset()))


def is_valid_transition(current_status: str, requested_status: str) -> bool:
    return requested_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


class StatusTransitionService:
    def __init__(
        self,
        logger_service: Optional[ActivityLogger] = None,
        cache: Optional[UnreadCache] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.activity = logger_service or activity_logger
        self.cache = cache or unread_cache
        self.dispatcher = dispatcher or notification_dispatcher

    async def transition(
        self,
        session: AsyncSession,
        incident: Incident,
        requested_status: str,
        actor: User,
    ) -> Incident:
        old_status = incident.status
        if not is_valid_transition(old_status, requested_status):
            metrics.increment("transitions.rejected")
            logger.info(
                "Rejected transition %s -> %s",
                old_status,
                requested_status,
                extra={"incident_id": incident.id, "user_id": actor.id},
            )
            raise InvalidTransitionError(old_status, requested_status)

        try:
            # Compare-and-swap on the observed status: of two actors racing from
            # the same source status exactly one matches a row.
            result = await session.execute(
                update(Incident)
                .where(Incident.id == incident.id, Incident.status == old_status)
                .values(status=requested_status)
            )
            if result.rowcount != 1:
                await session.rollback()
                await session.refresh(incident)
                metrics.increment("transitions.conflicted")
                raise InvalidTransitionError(incident.status, requested_status)

            incident.status = requested_status
            await self.activity.log(
                session,
                incident,
                "status_changed",
                actor,
                {"old_status": old_status, "new_status": requested_status},
            )

            resolved = 0
            if requested_status == S.ACTIVE.value:
                resolved = await self._resolve_escalations(session, incident, actor)

            await session.commit()
        except InvalidTransitionError:
            raise
        except Exception:
            await session.rollback()
            await session.refresh(incident)
            raise

        metrics.increment("transitions.applied")
        logger.info(
            "Incident %s -> %s (resolved %d escalation attempts)",
            old_status,
            requested_status,
            resolved,
            extra={"incident_id": incident.id, "user_id": actor.id},
        )
        await self.cache.expire_for_incident(session, incident, exclude_user_id=actor.id)
        await self._notify_assignees(session, incident, actor, old_status, requested_status)
        return incident

    async def _notify_assignees(
        self,
        session: AsyncSession,
        incident: Incident,
        actor: User,
        old_status: str,
        new_status: str,
    ) -> int:
        result = await session.execute(
            select(User)
            .join(IncidentAssignment, IncidentAssignment.user_id == User.id)
            .where(
                IncidentAssignment.incident_id == incident.id,
                User.active.is_(True),
                User.id != actor.id,
            )
            .order_by(User.id)
        )
        notified = 0
        for user in result.scalars().all():
            try:
                await asyncio.wait_for(
                    self.dispatcher.send_status_change(user, incident, old_status, new_status),
                    timeout=settings.notification_timeout_seconds,
                )
                notified += 1
            except Exception as exc:
                metrics.increment("transitions.notification_failed")
                logger.warning(
                    f"Status change email failed: {exc!r}",
                    extra={"incident_id": incident.id, "user_id": user.id},
                )
        return notified

    @staticmethod
    async def _resolve_escalations(session: AsyncSession, incident: Incident, actor: User) -> int:
        # Only rows still unresolved are touched; earlier resolutions keep their reason.
        result = await session.execute(
            update(EscalationEvent)
            .where(
                EscalationEvent.incident_id == incident.id,
                EscalationEvent.resolved_at.is_(None),
            )
            .values(
                resolved_at=utc_now(),
                resolved_by_user_id=actor.id,
                resolution_reason=RESOLUTION_INCIDENT_MARKED_ACTIVE,
            )
        )
        return result.rowcount or 0


status_transition_service = StatusTransitionService()
