"""Unread badge API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.api.deps import get_current_user
from incidentdesk.database import get_session
from incidentdesk.models.message import UnreadSummaryResponse
from incidentdesk.models.organization import User
from incidentdesk.services.unread_cache import unread_cache

router = APIRouter(prefix="/api", tags=["unread"])


@router.get("/unread", response_model=UnreadSummaryResponse)
async def unread_summary(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Nav badge flag plus per-incident counts for the acting user."""
    return UnreadSummaryResponse(
        has_unread=await unread_cache.has_unread(session, user),
        counts=await unread_cache.unread_counts(session, user),
    )
