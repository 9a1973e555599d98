"""Organization and user models, owned by the surrounding CRUD layer."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from pydantic import BaseModel

from incidentdesk.database import Base
from incidentdesk.utils.time import utc_now


class UserRole(str, enum.Enum):
    MANAGER = "manager"
    OFFICE_SALES = "office_sales"
    TECHNICIAN = "technician"
    PROPERTY_MANAGER = "property_manager"
    AREA_MANAGER = "area_manager"
    PM_MANAGER = "pm_manager"


# Roles that see every incident belonging to their organization.
ORG_WIDE_ROLES = frozenset({UserRole.MANAGER.value, UserRole.OFFICE_SALES.value})


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    role: Mapped[str] = mapped_column(String(30), default=UserRole.TECHNICIAN.value)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ── Pydantic Schemas ─────────────────────────────────────────

class UserResponse(BaseModel):
    id: int
    organization_id: int
    email: str
    full_name: str
    role: str

    model_config = {"from_attributes": True}
