"""Tests for the incident lifecycle and unread API routes."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.api.incidents import router as incidents_router
from incidentdesk.api.unread import router as unread_router
from incidentdesk.database import get_session
from incidentdesk.models.organization import UserRole


@pytest.fixture
def api_app(db_session: AsyncSession):
    app = FastAPI()

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_session] = _override_session
    app.include_router(incidents_router)
    app.include_router(unread_router)
    return app


def _as(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


@pytest.mark.asyncio
async def test_requests_without_user_are_rejected(api_app):
    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/unread")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_and_transition_incident(api_app, seed):
    org = await seed.organization()
    tech = await seed.user(org)

    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(
            "/api/incidents",
            json={"project_type": "other", "damage_type": "mold", "description": "Mold behind drywall"},
            headers=_as(tech),
        )
        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "acknowledged"
        assert body["allowed_transitions"] == ["active", "on_hold"]

        rejected = await client.post(
            f"/api/incidents/{body['id']}/transition",
            json={"status": "completed"},
            headers=_as(tech),
        )
        assert rejected.status_code == 409
        assert rejected.json()["detail"]["current_status"] == "acknowledged"
        assert rejected.json()["detail"]["requested_status"] == "completed"

        moved = await client.post(
            f"/api/incidents/{body['id']}/transition",
            json={"status": "active"},
            headers=_as(tech),
        )
        assert moved.status_code == 200
        assert moved.json()["status"] == "active"
        assert moved.json()["allowed_transitions"] == ["completed", "job_started", "on_hold"]

        timeline = await client.get(
            f"/api/incidents/{body['id']}/timeline",
            params={"event_type": "status_changed"},
            headers=_as(tech),
        )
        assert timeline.status_code == 200
        assert [e["metadata"]["new_status"] for e in timeline.json()] == ["active", "acknowledged"]


@pytest.mark.asyncio
async def test_incident_hidden_from_unassigned_technician(api_app, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    outsider = await seed.user(org, "Uma Unassigned")
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    incident = await seed.incident(org, tech)

    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get(f"/api/incidents/{incident.id}", headers=_as(outsider))).status_code == 404
        assert (await client.get(f"/api/incidents/{incident.id}", headers=_as(manager))).status_code == 200


@pytest.mark.asyncio
async def test_activity_route_rejects_unknown_event_types(api_app, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)
    incident_id, tech_id = incident.id, tech.id

    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        bad = await client.post(
            f"/api/incidents/{incident_id}/activity",
            json={"event_type": "lunch", "metadata": {}},
            headers={"X-User-Id": str(tech_id)},
        )
        assert bad.status_code == 422

        good = await client.post(
            f"/api/incidents/{incident_id}/activity",
            json={"event_type": "equipment_placed", "metadata": {"dehumidifiers": 2}},
            headers={"X-User-Id": str(tech_id)},
        )
        assert good.status_code == 201
        assert good.json()["metadata"] == {"dehumidifiers": 2}
        assert good.json()["performed_by_user_id"] == tech_id


@pytest.mark.asyncio
async def test_unread_flow_over_http(api_app, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    manager = await seed.user(org, "Morgan Lead", role=UserRole.MANAGER)
    incident = await seed.incident(org, tech)

    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        posted = await client.post(
            f"/api/incidents/{incident.id}/messages",
            json={"body": "Need more fans on site"},
            headers=_as(tech),
        )
        assert posted.status_code == 201

        unread = (await client.get("/api/unread", headers=_as(manager))).json()
        assert unread["has_unread"] is True
        assert unread["counts"][str(incident.id)] == {"messages": 1, "activity": 0}

        assert (await client.get("/api/unread", headers=_as(tech))).json()["has_unread"] is False

        marked = await client.post(
            f"/api/incidents/{incident.id}/read",
            json={"tab": "messages"},
            headers=_as(manager),
        )
        assert marked.status_code == 204

        unread = (await client.get("/api/unread", headers=_as(manager))).json()
        assert unread == {"has_unread": False, "counts": {}}


@pytest.mark.asyncio
async def test_escalation_history_route(api_app, seed):
    org = await seed.organization()
    tech = await seed.user(org)
    incident = await seed.incident(org, tech)

    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(f"/api/incidents/{incident.id}/escalations", headers=_as(tech))
    assert response.status_code == 200
    assert response.json() == []
