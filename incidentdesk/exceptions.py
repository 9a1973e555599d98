"""Domain errors raised by the incident lifecycle core."""

from __future__ import annotations


class IncidentDeskError(Exception):
    """Base class for IncidentDesk domain errors."""


class InvalidTransitionError(IncidentDeskError):
    """Requested status is not a direct successor of the current status.

    Nothing has been mutated when this is raised; callers surface it as a
    rejected action naming ``requested_status``.
    """

    def __init__(self, current_status: str, requested_status: str) -> None:
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot transition from '{current_status}' to '{requested_status}'"
        )


class UnknownEventTypeError(IncidentDeskError, ValueError):
    """Activity event type outside the allow-list. Always a programming error."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Unknown activity event type: {event_type!r}")


class NotificationDispatchError(IncidentDeskError):
    """A notification channel failed to deliver."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} dispatch failed: {reason}")
