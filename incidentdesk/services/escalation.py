"""On-call escalation engine for emergency incidents nobody has picked up yet.

Each invocation contacts one user of the organization's on-call chain and
schedules the next index after the configured timeout. The chain is addressed
by index: 0 is the configuration's primary user, N >= 1 is the escalation
contact at position N (see ``resolve_contact``). The engine stops when the
incident leaves the pre-active statuses or the chain runs out.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incidentdesk.config import settings
from incidentdesk.database import async_session
from incidentdesk.models.escalation import (
    ContactMethod,
    EscalationContact,
    EscalationEvent,
    EscalationStatus,
    OnCallConfiguration,
    RESOLUTION_INCIDENT_MARKED_ACTIVE,
)
from incidentdesk.models.incident import Incident
from incidentdesk.models.organization import User
from incidentdesk.observability.metrics import metrics
from incidentdesk.services.activity_logger import ActivityLogger, activity_logger
from incidentdesk.services.follow_ups import FollowUpScheduler, follow_up_scheduler
from incidentdesk.services.notifier import NotificationDispatcher, notification_dispatcher
from incidentdesk.services.unread_cache import UnreadCache, unread_cache
from incidentdesk.utils.time import utc_now

logger = logging.getLogger("incidentdesk.escalation")


class EscalationOutcome(str, enum.Enum):
    NOT_APPLICABLE = "not_applicable"
    SKIPPED = "skipped"
    EXHAUSTED = "exhausted"
    ATTEMPTED = "attempted"


async def resolve_contact(
    session: AsyncSession,
    config: OnCallConfiguration,
    contact_index: int,
) -> Optional[User]:
    """Map a chain index to a user: 0 is the primary, N >= 1 is the contact at position N."""
    if contact_index == 0:
        return await session.get(User, config.primary_user_id)

    result = await session.execute(
        select(User)
        .join(EscalationContact, EscalationContact.user_id == User.id)
        .where(
            EscalationContact.on_call_configuration_id == config.id,
            EscalationContact.position == contact_index,
        )
    )
    return result.scalar_one_or_none()


class EscalationEngine:
    def __init__(
        self,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[FollowUpScheduler] = None,
        logger_service: Optional[ActivityLogger] = None,
        cache: Optional[UnreadCache] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ) -> None:
        self.dispatcher = dispatcher or notification_dispatcher
        self.scheduler = scheduler or follow_up_scheduler
        self.activity = logger_service or activity_logger
        self.cache = cache or unread_cache
        self.session_factory = session_factory or async_session

    async def enqueue_initial(self, session: AsyncSession, incident: Incident) -> None:
        """Queue the index-0 attempt for a freshly created emergency, inside the creation transaction."""
        if not incident.emergency:
            return
        await self.scheduler.schedule(session, 0, incident.id, 0)

    async def start_escalation(self, incident_id: int) -> EscalationOutcome:
        """Contact index 0 right away, for callers that create incidents outside ``enqueue_initial``."""
        return await self.handle_follow_up(incident_id, 0)

    async def handle_follow_up(self, incident_id: int, contact_index: int) -> EscalationOutcome:
        """Fire-time entry point: reload the incident, then escalate if it still needs an owner."""
        async with self.session_factory() as session:
            incident = await session.get(Incident, incident_id)
            if incident is None:
                logger.warning(
                    "Follow-up for missing incident",
                    extra={"incident_id": incident_id, "contact_index": contact_index},
                )
                return EscalationOutcome.NOT_APPLICABLE
            return await self.escalate(session, incident, contact_index)

    async def escalate(
        self,
        session: AsyncSession,
        incident: Incident,
        contact_index: int,
    ) -> EscalationOutcome:
        context = {"incident_id": incident.id, "contact_index": contact_index}

        # Re-checked on every call: a follow-up may fire after the incident went active.
        if not incident.emergency or not incident.awaiting_pickup:
            logger.info(f"Escalation not needed (status={incident.status})", extra=context)
            return EscalationOutcome.NOT_APPLICABLE

        try:
            config = await self._load_configuration(session, incident)
            if config is None:
                await self.activity.log(
                    session,
                    incident,
                    "escalation_skipped",
                    None,
                    {"reason": "no_on_call_configuration"},
                )
                await session.commit()
                metrics.increment("escalation.skipped")
                logger.info("Escalation skipped: no on-call configuration", extra=context)
                outcome = EscalationOutcome.SKIPPED
            else:
                outcome = await self._attempt(session, incident, config, contact_index)
        except Exception:
            await session.rollback()
            raise

        await self.cache.expire_for_incident(session, incident)
        return outcome

    async def _attempt(
        self,
        session: AsyncSession,
        incident: Incident,
        config: OnCallConfiguration,
        contact_index: int,
    ) -> EscalationOutcome:
        context = {"incident_id": incident.id, "contact_index": contact_index}

        user = await resolve_contact(session, config, contact_index)
        if user is None:
            await self.activity.log(
                session,
                incident,
                "escalation_exhausted",
                None,
                {"contacts_tried": contact_index},
            )
            await session.commit()
            metrics.increment("escalation.exhausted")
            logger.warning("Escalation chain exhausted", extra=context)
            return EscalationOutcome.EXHAUSTED

        status, error = await self._notify(user, incident)

        # The incident may have been picked up while the notification was in
        # flight. Re-read it under the row lock so this attempt either lands
        # before the activation (and gets resolved by it) or sees it.
        await session.execute(
            select(Incident)
            .where(Incident.id == incident.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        picked_up = not incident.awaiting_pickup

        attempt = EscalationEvent(
            incident_id=incident.id,
            user_id=user.id,
            contact_method=ContactMethod.SMS.value if user.phone else ContactMethod.EMAIL.value,
            status=status,
            error=error,
            attempted_at=utc_now(),
        )
        if picked_up:
            attempt.resolved_at = attempt.attempted_at
            attempt.resolution_reason = RESOLUTION_INCIDENT_MARKED_ACTIVE
        session.add(attempt)
        await self.activity.log(
            session,
            incident,
            "escalation_attempted",
            None,
            {
                "contact_index": contact_index,
                "user_id": user.id,
                "user_name": user.full_name,
                "delivery_status": status,
            },
        )
        if picked_up:
            await session.commit()
            metrics.increment(f"escalation.{status}")
            logger.info(
                f"Escalation attempt {status} for user {user.id}; incident picked up meanwhile "
                f"(status={incident.status}), chain stopped",
                extra=context,
            )
            return EscalationOutcome.ATTEMPTED

        # Scheduled whatever the delivery outcome; a failed contact still gets its timeout.
        await self.scheduler.schedule(
            session, config.escalation_timeout_minutes, incident.id, contact_index + 1
        )
        await session.commit()

        metrics.increment(f"escalation.{status}")
        logger.info(f"Escalation attempt {status} for user {user.id}", extra=context)
        return EscalationOutcome.ATTEMPTED

    async def _notify(self, user: User, incident: Incident) -> tuple[str, Optional[str]]:
        try:
            await asyncio.wait_for(
                self._dispatch(user, incident),
                timeout=settings.notification_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Escalation notification timed out after {settings.notification_timeout_seconds}s",
                extra={"incident_id": incident.id, "user_id": user.id},
            )
            return EscalationStatus.FAILED.value, "notification timed out"
        except Exception as exc:
            logger.error(
                f"Escalation notification failed: {exc}",
                extra={"incident_id": incident.id, "user_id": user.id},
            )
            return EscalationStatus.FAILED.value, str(exc)
        return EscalationStatus.SENT.value, None

    async def _dispatch(self, user: User, incident: Incident) -> None:
        await self.dispatcher.send_email(user, incident)
        if user.phone:
            await self.dispatcher.send_sms(user, incident)

    @staticmethod
    async def _load_configuration(
        session: AsyncSession,
        incident: Incident,
    ) -> Optional[OnCallConfiguration]:
        result = await session.execute(
            select(OnCallConfiguration).where(
                OnCallConfiguration.organization_id == incident.organization_id
            )
        )
        return result.scalar_one_or_none()


escalation_engine = EscalationEngine()
