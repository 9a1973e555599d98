"""Activity log: the append-only ledger every lifecycle component writes to."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.exceptions import UnknownEventTypeError
from incidentdesk.models.activity import EVENT_TYPES, ActivityEvent
from incidentdesk.models.incident import Incident
from incidentdesk.models.organization import User
from incidentdesk.services.unread_cache import UnreadCache, unread_cache
from incidentdesk.utils.time import as_utc, utc_now

logger = logging.getLogger("incidentdesk.activity")

_TICK = timedelta(microseconds=1)


class ActivityLogger:
    """Appends activity events and keeps ``incident.last_activity_at`` current.

    ``log`` joins the caller's transaction: it flushes but never commits, so a
    status change and its ``status_changed`` event land or roll back together.
    Callers invalidate the unread cache after their commit.
    """

    def __init__(self, cache: Optional[UnreadCache] = None) -> None:
        self.cache = cache or unread_cache

    async def log(
        self,
        session: AsyncSession,
        incident: Incident,
        event_type: str,
        actor: Optional[User] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ActivityEvent:
        if event_type not in EVENT_TYPES:
            raise UnknownEventTypeError(event_type)

        # Serializes writers on the incident row (no-op on SQLite, which locks the whole file).
        await session.execute(
            select(Incident.id).where(Incident.id == incident.id).with_for_update()
        )
        created_at = await self._next_timestamp(session, incident.id)

        event = ActivityEvent(
            incident_id=incident.id,
            event_type=event_type,
            performed_by_user_id=actor.id if actor is not None else None,
            event_metadata=dict(metadata or {}),
            created_at=created_at,
        )
        session.add(event)

        previous = as_utc(incident.last_activity_at)
        if previous is None or previous < created_at:
            incident.last_activity_at = created_at

        await session.flush()
        logger.debug(
            "Logged %s",
            event_type,
            extra={"incident_id": incident.id, "event_type": event_type},
        )
        return event

    async def record_activity(
        self,
        session: AsyncSession,
        incident: Incident,
        event_type: str,
        actor: Optional[User] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ActivityEvent:
        """Log, commit, and expire unread state, for features that log outside a larger unit of work."""
        # Rejected before the unit of work opens, so the caller's loaded objects stay intact.
        if event_type not in EVENT_TYPES:
            raise UnknownEventTypeError(event_type)

        try:
            event = await self.log(session, incident, event_type, actor, metadata)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        await self.cache.expire_for_incident(
            session, incident, exclude_user_id=actor.id if actor is not None else None
        )
        return event

    async def timeline(
        self,
        session: AsyncSession,
        incident_id: int,
        event_types: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[ActivityEvent]:
        """Most recent events first, optionally filtered by type and lower time bound."""
        query = select(ActivityEvent).where(ActivityEvent.incident_id == incident_id)
        if event_types:
            query = query.where(ActivityEvent.event_type.in_(list(event_types)))
        if since is not None:
            query = query.where(ActivityEvent.created_at > as_utc(since))

        query = query.order_by(desc(ActivityEvent.created_at), desc(ActivityEvent.id)).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def events_since(
        self,
        session: AsyncSession,
        incident_id: int,
        since: datetime,
        event_types: Optional[Iterable[str]] = None,
    ) -> list[ActivityEvent]:
        """Events strictly after ``since``, oldest first, for incremental polling."""
        query = select(ActivityEvent).where(
            ActivityEvent.incident_id == incident_id,
            ActivityEvent.created_at > as_utc(since),
        )
        if event_types:
            query = query.where(ActivityEvent.event_type.in_(list(event_types)))
        result = await session.execute(query.order_by(ActivityEvent.created_at, ActivityEvent.id))
        return list(result.scalars().all())

    @staticmethod
    async def _next_timestamp(session: AsyncSession, incident_id: int) -> datetime:
        # Creation order and timestamp order must agree within one incident.
        now = utc_now()
        latest = as_utc(
            (
                await session.execute(
                    select(func.max(ActivityEvent.created_at)).where(
                        ActivityEvent.incident_id == incident_id
                    )
                )
            ).scalar()
        )
        if latest is not None and latest >= now:
            return latest + _TICK
        return now


activity_logger = ActivityLogger()
