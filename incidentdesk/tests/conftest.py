"""Shared test fixtures for IncidentDesk tests."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from incidentdesk.database import Base, import_models
from incidentdesk.exceptions import NotificationDispatchError
from incidentdesk.models.escalation import EscalationContact, OnCallConfiguration
from incidentdesk.models.incident import Incident, IncidentAssignment, IncidentStatus, ProjectType
from incidentdesk.models.organization import Organization, User, UserRole
from incidentdesk.services.cache_store import InMemoryCacheStore
from incidentdesk.services.unread_cache import unread_cache


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test, so several sessions can share it."""
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'incidentdesk.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clear_unread_cache():
    if isinstance(unread_cache.store, InMemoryCacheStore):
        unread_cache.store.clear()
    yield
    if isinstance(unread_cache.store, InMemoryCacheStore):
        unread_cache.store.clear()


class RecordingDispatcher:
    """Stands in for the notification dispatcher; records every delivery."""

    def __init__(self, fail_for: Iterable[int] = (), delay: float = 0.0) -> None:
        self.fail_for = set(fail_for)
        self.delay = delay
        self.sent: list[tuple[str, int, int]] = []

    async def send_email(self, user: User, incident: Incident) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        if user.id in self.fail_for:
            raise NotificationDispatchError("email", "mailbox unavailable")
        self.sent.append(("email", user.id, incident.id))
        return {"status": "sent"}

    async def send_sms(self, user: User, incident: Incident) -> dict:
        self.sent.append(("sms", user.id, incident.id))
        return {"status": "sent"}

    async def send_status_change(self, user: User, incident: Incident, old_status: str, new_status: str) -> dict:
        if user.id in self.fail_for:
            raise NotificationDispatchError("email", "mailbox unavailable")
        self.sent.append(("status_change", user.id, incident.id))
        return {"status": "sent"}


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[int, int, int]] = []

    async def schedule(
        self,
        session: AsyncSession,
        delay_minutes: int,
        incident_id: int,
        contact_index: int,
    ) -> None:
        self.scheduled.append((delay_minutes, incident_id, contact_index))


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def dispatcher_factory():
    return RecordingDispatcher


@pytest.fixture
def recording_scheduler() -> RecordingScheduler:
    return RecordingScheduler()


class Seeder:
    """Inserts organizations, users and incidents the way the CRUD layer would."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._users = 0

    async def organization(self, name: str = "Harbor Restoration") -> Organization:
        org = Organization(name=name)
        self.session.add(org)
        await self.session.commit()
        return org

    async def user(
        self,
        org: Organization,
        full_name: str = "Sam Tech",
        role: UserRole = UserRole.TECHNICIAN,
        phone: Optional[str] = None,
        active: bool = True,
    ) -> User:
        self._users += 1
        user = User(
            organization_id=org.id,
            email=f"user{self._users}@example.com",
            full_name=full_name,
            phone=phone,
            role=role.value,
            active=active,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def incident(
        self,
        org: Organization,
        creator: User,
        status: str = IncidentStatus.ACKNOWLEDGED.value,
        project_type: str = ProjectType.EMERGENCY_RESPONSE.value,
        assigned: Iterable[User] = (),
    ) -> Incident:
        incident = Incident(
            organization_id=org.id,
            created_by_user_id=creator.id,
            property_name="Bayview Apartments",
            status=status,
            project_type=project_type,
            emergency=project_type == ProjectType.EMERGENCY_RESPONSE.value,
            description="Water coming through the ceiling in unit 4B",
        )
        self.session.add(incident)
        await self.session.flush()
        for user_id in sorted({creator.id, *(u.id for u in assigned)}):
            self.session.add(IncidentAssignment(incident_id=incident.id, user_id=user_id))
        await self.session.commit()
        return incident

    async def on_call(
        self,
        org: Organization,
        primary: User,
        contacts: Iterable[User] = (),
        timeout_minutes: int = 10,
    ) -> OnCallConfiguration:
        config = OnCallConfiguration(
            organization_id=org.id,
            primary_user_id=primary.id,
            escalation_timeout_minutes=timeout_minutes,
        )
        self.session.add(config)
        await self.session.flush()
        for position, contact in enumerate(contacts, start=1):
            self.session.add(
                EscalationContact(
                    on_call_configuration_id=config.id,
                    user_id=contact.id,
                    position=position,
                )
            )
        await self.session.commit()
        return config


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)
