"""Per-user read watermarks for an incident's messages and daily-log tabs."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.models.incident import Incident
from incidentdesk.models.message import IncidentReadState, ReadTab
from incidentdesk.models.organization import User
from incidentdesk.services.unread_cache import UnreadCache, unread_cache
from incidentdesk.utils.time import utc_now


class ReadStateService:
    def __init__(self, cache: Optional[UnreadCache] = None) -> None:
        self.cache = cache or unread_cache

    async def mark_read(
        self,
        session: AsyncSession,
        incident: Incident,
        user: User,
        tab: ReadTab,
        read_at: Optional[datetime] = None,
    ) -> IncidentReadState:
        read_at = read_at or utc_now()
        result = await session.execute(
            select(IncidentReadState).where(
                IncidentReadState.incident_id == incident.id,
                IncidentReadState.user_id == user.id,
            )
        )
        state = result.scalar_one_or_none()
        if state is None:
            state = IncidentReadState(incident_id=incident.id, user_id=user.id)
            session.add(state)

        if ReadTab(tab) is ReadTab.MESSAGES:
            state.last_message_read_at = read_at
        else:
            state.last_activity_read_at = read_at
        await session.commit()

        await self.cache.expire_for_user(user.id)
        return state


read_state_service = ReadStateService()
