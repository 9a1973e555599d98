"""Activity event model for the append-only incident ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from pydantic import BaseModel, Field

from incidentdesk.database import Base
from incidentdesk.utils.time import utc_now

EVENT_TYPES = frozenset(
    {
        "incident_created",
        "status_changed",
        "user_assigned",
        "user_unassigned",
        "labor_created",
        "labor_updated",
        "activity_logged",
        "activity_updated",
        "equipment_placed",
        "equipment_removed",
        "equipment_updated",
        "attachment_uploaded",
        "operational_note_added",
        "escalation_attempted",
        "escalation_skipped",
        "escalation_exhausted",
        "contact_added",
        "contact_removed",
    }
)

# Field-work entries that drive the "Daily Log" unread badge. Administrative
# events (status changes, assignments, escalations) stay out of this count.
DAILY_LOG_EVENT_TYPES = frozenset(
    {
        "activity_logged",
        "activity_updated",
        "labor_created",
        "labor_updated",
        "equipment_placed",
        "equipment_removed",
        "equipment_updated",
        "operational_note_added",
    }
)


class ActivityEvent(Base):
    """Immutable once written; corrections are new, compensating events."""

    __tablename__ = "activity_events"
    __table_args__ = (
        Index("ix_activity_events_incident_id_created_at", "incident_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    performed_by_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    event_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ── Pydantic Schemas ─────────────────────────────────────────

class ActivityEventCreate(BaseModel):
    event_type: str
    metadata: dict[str, Any] = {}


class ActivityEventResponse(BaseModel):
    id: int
    incident_id: int
    event_type: str
    performed_by_user_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime

    model_config = {"from_attributes": True}
