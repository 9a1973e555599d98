"""Message posting: the write path that feeds message unread counts."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.models.incident import Incident
from incidentdesk.models.message import Message
from incidentdesk.models.organization import User
from incidentdesk.services.unread_cache import UnreadCache, unread_cache
from incidentdesk.utils.time import as_utc, utc_now


class MessageService:
    def __init__(self, cache: Optional[UnreadCache] = None) -> None:
        self.cache = cache or unread_cache

    async def post(self, session: AsyncSession, incident: Incident, author: User, body: str) -> Message:
        now = utc_now()
        message = Message(incident_id=incident.id, user_id=author.id, body=body, created_at=now)
        session.add(message)
        previous = as_utc(incident.last_activity_at)
        if previous is None or previous < now:
            incident.last_activity_at = now
        await session.commit()

        await self.cache.expire_for_incident(session, incident, exclude_user_id=author.id)
        return message


message_service = MessageService()
