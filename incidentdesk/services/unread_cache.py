"""Unread cache: a derived, invalidate-on-write view of unseen messages and daily-log activity.

Entries are read-through: computed from messages, activity events and read
states on the first lookup, then served from the store until a write that
could change them deletes the key. Nothing is ever updated in place. The TTL
only bounds how long an entry can outlive a missed invalidation.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.config import settings
from incidentdesk.models.activity import DAILY_LOG_EVENT_TYPES, ActivityEvent
from incidentdesk.models.incident import Incident
from incidentdesk.models.message import IncidentReadState, Message
from incidentdesk.models.organization import User
from incidentdesk.services.cache_store import CacheStore, build_cache_store
from incidentdesk.services.visibility import VisibilityResolver, visibility_resolver

logger = logging.getLogger("incidentdesk.unread")

UnreadCounts = dict[int, dict[str, int]]


def _has_unread_key(user_id: int) -> str:
    return f"has_unread:{user_id}"


def _unread_counts_key(user_id: int) -> str:
    return f"unread_counts:{user_id}"


class UnreadCache:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        resolver: Optional[VisibilityResolver] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.store = store or build_cache_store()
        self.resolver = resolver or visibility_resolver
        self.ttl_seconds = ttl_seconds or settings.unread_cache_ttl_seconds

    async def has_unread(self, session: AsyncSession, user: User) -> bool:
        """Nav badge: does this user have anything unread in any visible incident?"""
        key = _has_unread_key(user.id)
        cached = await self.store.get(key)
        if cached is not None:
            return bool(cached)

        value = await self._compute_has_unread(session, user)
        await self.store.set(key, value, self.ttl_seconds)
        return value

    async def unread_counts(self, session: AsyncSession, user: User) -> UnreadCounts:
        """Per-incident ``{"messages": n, "activity": n}``; incidents with nothing unread are omitted."""
        key = _unread_counts_key(user.id)
        cached = await self.store.get(key)
        if cached is not None:
            return {int(incident_id): dict(entry) for incident_id, entry in cached.items()}

        counts = await self._compute_unread_counts(session, user)
        await self.store.set(
            key,
            {str(incident_id): entry for incident_id, entry in counts.items()},
            self.ttl_seconds,
        )
        return counts

    async def expire_for_user(self, user_id: int) -> None:
        await self.store.delete(_has_unread_key(user_id), _unread_counts_key(user_id))

    async def expire_for_incident(
        self,
        session: AsyncSession,
        incident: Incident,
        exclude_user_id: Optional[int] = None,
    ) -> None:
        user_ids = await self.resolver.visible_user_ids(session, incident)
        user_ids.discard(exclude_user_id)
        keys: list[str] = []
        for user_id in sorted(user_ids):
            keys.extend((_has_unread_key(user_id), _unread_counts_key(user_id)))
        await self.store.delete(*keys)
        logger.debug(
            "Expired unread cache for %d users",
            len(user_ids),
            extra={"incident_id": incident.id},
        )

    # ── Source-of-truth queries ──────────────────────────────

    def _unread_messages(self, user: User, *columns) -> Select:
        read_state = and_(
            IncidentReadState.incident_id == Message.incident_id,
            IncidentReadState.user_id == user.id,
        )
        return (
            select(*columns)
            .select_from(Message)
            .outerjoin(IncidentReadState, read_state)
            .where(
                Message.incident_id.in_(self.resolver.visible_incident_ids(user)),
                Message.user_id != user.id,
                or_(
                    IncidentReadState.last_message_read_at.is_(None),
                    Message.created_at > IncidentReadState.last_message_read_at,
                ),
            )
        )

    def _unread_activity(self, user: User, *columns) -> Select:
        read_state = and_(
            IncidentReadState.incident_id == ActivityEvent.incident_id,
            IncidentReadState.user_id == user.id,
        )
        return (
            select(*columns)
            .select_from(ActivityEvent)
            .outerjoin(IncidentReadState, read_state)
            .where(
                ActivityEvent.incident_id.in_(self.resolver.visible_incident_ids(user)),
                ActivityEvent.event_type.in_(DAILY_LOG_EVENT_TYPES),
                or_(
                    ActivityEvent.performed_by_user_id.is_(None),
                    ActivityEvent.performed_by_user_id != user.id,
                ),
                or_(
                    IncidentReadState.last_activity_read_at.is_(None),
                    ActivityEvent.created_at > IncidentReadState.last_activity_read_at,
                ),
            )
        )

    async def _compute_has_unread(self, session: AsyncSession, user: User) -> bool:
        messages = self._unread_messages(user, Message.id).limit(1)
        if (await session.execute(messages)).first() is not None:
            return True

        activity = self._unread_activity(user, ActivityEvent.id).limit(1)
        return (await session.execute(activity)).first() is not None

    async def _compute_unread_counts(self, session: AsyncSession, user: User) -> UnreadCounts:
        counts: UnreadCounts = {}

        messages = self._unread_messages(user, Message.incident_id, func.count(Message.id)).group_by(
            Message.incident_id
        )
        for incident_id, total in (await session.execute(messages)).all():
            counts.setdefault(int(incident_id), {"messages": 0, "activity": 0})["messages"] = int(total)

        activity = self._unread_activity(
            user, ActivityEvent.incident_id, func.count(ActivityEvent.id)
        ).group_by(ActivityEvent.incident_id)
        for incident_id, total in (await session.execute(activity)).all():
            counts.setdefault(int(incident_id), {"messages": 0, "activity": 0})["activity"] = int(total)

        return counts


unread_cache = UnreadCache()
