"""Incident data model and the status vocabulary shared by the lifecycle core."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from pydantic import BaseModel, Field

from incidentdesk.database import Base
from incidentdesk.utils.time import utc_now


class IncidentStatus(str, enum.Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    PROPOSAL_REQUESTED = "proposal_requested"
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_SIGNED = "proposal_signed"
    ACTIVE = "active"
    JOB_STARTED = "job_started"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    COMPLETED_BILLED = "completed_billed"
    PAID = "paid"
    CLOSED = "closed"


class ProjectType(str, enum.Enum):
    EMERGENCY_RESPONSE = "emergency_response"
    MITIGATION_RFQ = "mitigation_rfq"
    BUILDBACK_RFQ = "buildback_rfq"
    CAPEX_RFQ = "capex_rfq"
    OTHER = "other"


class DamageType(str, enum.Enum):
    FLOOD = "flood"
    FIRE = "fire"
    SMOKE = "smoke"
    MOLD = "mold"
    ODOR = "odor"
    OTHER = "other"
    NOT_APPLICABLE = "not_applicable"


QUOTE_PROJECT_TYPES = frozenset(
    {
        ProjectType.MITIGATION_RFQ.value,
        ProjectType.BUILDBACK_RFQ.value,
        ProjectType.CAPEX_RFQ.value,
    }
)

# Statuses in which nobody has picked the incident up yet. Escalation only
# runs while an emergency incident sits in one of these. This is wider than a
# check for "active" alone: on_hold, job_started and every later status also
# stop the chain, since each is only reachable after someone took ownership.
PRE_ACTIVE_STATUSES = frozenset(
    {
        IncidentStatus.NEW.value,
        IncidentStatus.ACKNOWLEDGED.value,
        IncidentStatus.PROPOSAL_REQUESTED.value,
        IncidentStatus.PROPOSAL_SUBMITTED.value,
        IncidentStatus.PROPOSAL_SIGNED.value,
    }
)

DAMAGE_LABELS = {
    "flood": "Flood",
    "fire": "Fire",
    "smoke": "Smoke",
    "mold": "Mold",
    "odor": "Odor",
    "other": "Other",
    "not_applicable": "Not Applicable",
}


class Incident(Base):
    __tablename__ = "incidents"
    __table_args__ = (
        Index("ix_incidents_status_last_activity_at", "status", "last_activity_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    property_name: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(30), default=IncidentStatus.NEW.value, index=True)
    project_type: Mapped[str] = mapped_column(String(30), index=True)
    emergency: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    damage_type: Mapped[str] = mapped_column(String(30), default=DamageType.OTHER.value)
    description: Mapped[str] = mapped_column(Text)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    @property
    def is_quote(self) -> bool:
        return self.project_type in QUOTE_PROJECT_TYPES

    @property
    def awaiting_pickup(self) -> bool:
        return self.status in PRE_ACTIVE_STATUSES


class IncidentAssignment(Base):
    __tablename__ = "incident_assignments"
    __table_args__ = (UniqueConstraint("incident_id", "user_id", name="uq_incident_assignments_incident_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(ForeignKey("incidents.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ── Pydantic Schemas ─────────────────────────────────────────

class IncidentCreate(BaseModel):
    project_type: ProjectType
    damage_type: DamageType = DamageType.OTHER
    description: str = Field(min_length=1)
    property_name: str = ""
    assigned_user_ids: list[int] = []


class IncidentTransitionRequest(BaseModel):
    status: str


class IncidentResponse(BaseModel):
    id: int
    organization_id: int
    created_by_user_id: int
    property_name: str
    status: str
    project_type: str
    emergency: bool
    damage_type: str
    description: str
    last_activity_at: datetime | None = None
    created_at: datetime
    allowed_transitions: list[str] = []

    model_config = {"from_attributes": True}
