"""Notification dispatch service: email (Resend) + SMS gateway webhook."""

from __future__ import annotations

import asyncio
import html
import logging

import httpx
import resend

from incidentdesk.config import settings
from incidentdesk.exceptions import NotificationDispatchError
from incidentdesk.models.incident import DAMAGE_LABELS, Incident
from incidentdesk.models.organization import User

logger = logging.getLogger("incidentdesk.notifier")


# ── Message formatting ────────────────────────────────────────

def _incident_label(incident: Incident) -> str:
    return incident.property_name or f"Incident #{incident.id}"


def _incident_link(incident: Incident) -> str:
    return f"{settings.app_base_url.rstrip('/')}/incidents/{incident.id}"


def escalation_sms_text(incident: Incident) -> str:
    damage = DAMAGE_LABELS.get(incident.damage_type, "Damage")
    return f"EMERGENCY: {_incident_label(incident)} - {damage} incident requires immediate attention."


def format_escalation_email(incident: Incident, user: User) -> tuple[str, str]:
    """Return (subject, html) for an on-call escalation alert."""
    label = _incident_label(incident)
    damage = DAMAGE_LABELS.get(incident.damage_type, "Damage")
    description = html.escape((incident.description or "")[:300])

    subject = f"EMERGENCY: {label} requires immediate attention"
    body = f"""
    <div style="font-family: -apple-system, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background: #dc2626; padding: 20px; border-radius: 12px 12px 0 0;">
            <h2 style="color: white; margin: 0;">Emergency incident needs an owner</h2>
        </div>
        <div style="background: #1a1a2e; color: #e0e0e0; padding: 24px; border-radius: 0 0 12px 12px;">
            <p style="margin-top: 0;">Hi {html.escape(user.full_name)}, you are on call for this incident.</p>
            <table style="width: 100%; border-collapse: collapse;">
                <tr><td style="padding: 8px 0; color: #999;">Property</td><td style="padding: 8px 0;">{html.escape(label)}</td></tr>
                <tr><td style="padding: 8px 0; color: #999;">Damage</td><td style="padding: 8px 0;">{html.escape(damage)}</td></tr>
                <tr><td style="padding: 8px 0; color: #999;">Status</td><td style="padding: 8px 0;">{html.escape(incident.status)}</td></tr>
            </table>
            <p style="margin-top: 16px; color: #ccc;">{description}</p>
            <a href="{html.escape(_incident_link(incident))}" style="display: inline-block; margin-top: 16px; padding: 10px 20px;
               background: #6366f1; color: white; border-radius: 8px; text-decoration: none;">
                Open incident
            </a>
        </div>
    </div>
    """
    return subject, body


def format_status_change_email(
    incident: Incident,
    user: User,
    old_status: str,
    new_status: str,
) -> tuple[str, str]:
    """Return (subject, html) telling an assignee the incident moved."""
    label = _incident_label(incident)
    subject = f"{label}: status changed to {new_status}"
    body = f"""
    <div style="font-family: -apple-system, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background: #1a1a2e; color: #e0e0e0; padding: 24px; border-radius: 12px;">
            <p style="margin-top: 0;">Hi {html.escape(user.full_name)},</p>
            <p><strong>{html.escape(label)}</strong> moved from
               <strong>{html.escape(old_status)}</strong> to <strong>{html.escape(new_status)}</strong>.</p>
            <a href="{html.escape(_incident_link(incident))}" style="display: inline-block; margin-top: 16px; padding: 10px 20px;
               background: #6366f1; color: white; border-radius: 8px; text-decoration: none;">
                Open incident
            </a>
        </div>
    </div>
    """
    return subject, body


# ── Dispatcher ────────────────────────────────────────────────

class NotificationDispatcher:
    """Delivers escalation alerts and status-change emails. Raises ``NotificationDispatchError`` on failure.

    An unconfigured channel is skipped with a warning rather than treated as a failure.
    """

    async def send_email(self, user: User, incident: Incident) -> dict:
        subject, body = format_escalation_email(incident, user)
        result = await self._deliver_email(user, subject, body)
        if result["status"] == "sent":
            logger.info(f"Escalation email sent to {user.email}", extra={"incident_id": incident.id})
        return result

    async def send_status_change(
        self,
        user: User,
        incident: Incident,
        old_status: str,
        new_status: str,
    ) -> dict:
        subject, body = format_status_change_email(incident, user, old_status, new_status)
        result = await self._deliver_email(user, subject, body)
        if result["status"] == "sent":
            logger.info(
                f"Status change email sent to {user.email}",
                extra={"incident_id": incident.id, "user_id": user.id},
            )
        return result

    async def _deliver_email(self, user: User, subject: str, body: str) -> dict:
        if not settings.resend_api_key:
            logger.warning("Resend API key not configured — skipping email")
            return {"status": "skipped", "reason": "RESEND_API_KEY not set"}

        resend.api_key = settings.resend_api_key
        try:
            # The Resend SDK is synchronous; a worker thread keeps the event loop free and cancellable.
            result = await asyncio.to_thread(
                resend.Emails.send,
                {
                    "from": settings.notification_from_email,
                    "to": [user.email],
                    "subject": subject,
                    "html": body,
                },
            )
        except Exception as exc:
            logger.error(f"Failed to send email to {user.email}: {exc}")
            raise NotificationDispatchError("email", str(exc)) from exc

        return {"status": "sent", "id": result.get("id", "")}

    async def send_sms(self, user: User, incident: Incident) -> dict:
        if not user.phone:
            return {"status": "skipped", "reason": "no phone number"}
        if not settings.sms_webhook_url:
            logger.warning("SMS webhook not configured — skipping SMS")
            return {"status": "skipped", "reason": "SMS_WEBHOOK_URL not set"}

        headers = {}
        if settings.sms_webhook_token:
            headers["Authorization"] = f"Bearer {settings.sms_webhook_token}"
        payload = {"to": user.phone, "message": escalation_sms_text(incident)}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(settings.sms_webhook_url, json=payload, headers=headers, timeout=10)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"SMS to {user.phone} failed: {exc}")
            raise NotificationDispatchError("sms", str(exc)) from exc

        logger.info(f"Escalation SMS sent to {user.phone}", extra={"incident_id": incident.id})
        return {"status": "sent"}


notification_dispatcher = NotificationDispatcher()
