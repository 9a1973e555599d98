"""Incident visibility scoping used by the unread cache."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import Select, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.models.incident import Incident, IncidentAssignment
from incidentdesk.models.organization import ORG_WIDE_ROLES, User


class VisibilityResolver(Protocol):
    async def visible_user_ids(self, session: AsyncSession, incident: Incident) -> set[int]: ...

    def visible_incident_ids(self, user: User) -> Select: ...


class AssignmentVisibilityResolver:
    """Org-wide roles see every incident of their organization; everyone else sees assignments."""

    async def visible_user_ids(self, session: AsyncSession, incident: Incident) -> set[int]:
        org_users = await session.execute(
            select(User.id).where(
                User.organization_id == incident.organization_id,
                User.role.in_(ORG_WIDE_ROLES),
                User.active.is_(True),
            )
        )
        assigned_users = await session.execute(
            select(User.id)
            .join(IncidentAssignment, IncidentAssignment.user_id == User.id)
            .where(IncidentAssignment.incident_id == incident.id, User.active.is_(True))
        )
        return set(org_users.scalars().all()) | set(assigned_users.scalars().all())

    def visible_incident_ids(self, user: User) -> Select:
        assigned = select(IncidentAssignment.incident_id.label("id")).where(
            IncidentAssignment.user_id == user.id
        )
        if user.role not in ORG_WIDE_ROLES:
            return assigned
        org_wide = select(Incident.id.label("id")).where(Incident.organization_id == user.organization_id)
        scoped = union(org_wide, assigned).subquery()
        return select(scoped.c.id)


visibility_resolver = AssignmentVisibilityResolver()
