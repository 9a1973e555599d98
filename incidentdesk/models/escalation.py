"""On-call configuration, escalation attempts, and durable follow-up jobs."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from pydantic import BaseModel

from incidentdesk.database import Base
from incidentdesk.utils.time import utc_now

RESOLUTION_INCIDENT_MARKED_ACTIVE = "incident_marked_active"


class ContactMethod(str, enum.Enum):
    VOICE = "voice"
    SMS = "sms"
    EMAIL = "email"


class EscalationStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


class FollowUpStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class OnCallConfiguration(Base):
    __tablename__ = "on_call_configurations"
    __table_args__ = (
        CheckConstraint("escalation_timeout_minutes > 0", name="ck_on_call_timeout_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), unique=True)
    primary_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    escalation_timeout_minutes: Mapped[int] = mapped_column(Integer, default=10)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class EscalationContact(Base):
    __tablename__ = "escalation_contacts"
    __table_args__ = (
        UniqueConstraint(
            "on_call_configuration_id", "position", name="uq_escalation_contacts_config_position"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    on_call_configuration_id: Mapped[int] = mapped_column(
        ForeignKey("on_call_configurations.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)


class EscalationEvent(Base):
    """One row per contact attempt. Resolution fields are written once."""

    __tablename__ = "escalation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    contact_method: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), index=True)  # "sent" | "failed"
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    resolution_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class EscalationFollowUp(Base):
    """Durable scheduled escalation attempt, re-checked against the incident at fire time."""

    __tablename__ = "escalation_follow_ups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    contact_index: Mapped[int] = mapped_column(Integer)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(20), default=FollowUpStatus.PENDING.value, index=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ── Pydantic Schemas ─────────────────────────────────────────

class EscalationEventResponse(BaseModel):
    id: int
    incident_id: int
    user_id: int
    contact_method: str
    status: str
    error: str | None = None
    attempted_at: datetime
    resolved_at: datetime | None = None
    resolved_by_user_id: int | None = None
    resolution_reason: str | None = None

    model_config = {"from_attributes": True}
