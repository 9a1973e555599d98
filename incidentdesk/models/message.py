"""Incident messages and per-user read watermarks."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from pydantic import BaseModel, Field

from incidentdesk.database import Base
from incidentdesk.utils.time import utc_now


class ReadTab(str, enum.Enum):
    MESSAGES = "messages"
    ACTIVITY = "activity"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_incident_id_created_at", "incident_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class IncidentReadState(Base):
    __tablename__ = "incident_read_states"
    __table_args__ = (
        UniqueConstraint("incident_id", "user_id", name="uq_incident_read_states_incident_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    last_message_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


# ── Pydantic Schemas ─────────────────────────────────────────

class MessageCreate(BaseModel):
    body: str = Field(min_length=1)


class MessageResponse(BaseModel):
    id: int
    incident_id: int
    user_id: int
    body: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadRequest(BaseModel):
    tab: ReadTab


class UnreadSummaryResponse(BaseModel):
    has_unread: bool
    counts: dict[int, dict[str, int]]
