"""Request-scoped dependencies: acting user and visible incident lookup.

Authentication happens upstream; the gateway forwards the authenticated user id
in ``X-User-Id``.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.database import get_session
from incidentdesk.models.incident import Incident
from incidentdesk.models.organization import User
from incidentdesk.services.visibility import visibility_resolver


async def get_current_user(
    x_user_id: int | None = Header(None),
    session: AsyncSession = Depends(get_session),
) -> User:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await session.get(User, x_user_id)
    if user is None or not user.active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return user


async def get_visible_incident(
    incident_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Incident:
    result = await session.execute(
        select(Incident).where(
            Incident.id == incident_id,
            Incident.id.in_(visibility_resolver.visible_incident_ids(user)),
        )
    )
    incident = result.scalar_one_or_none()
    if not incident:
        raise HTTPException(status_code=404, detail="Incident not found")
    return incident
