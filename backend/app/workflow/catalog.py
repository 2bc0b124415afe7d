"""Catalog of trigger events, action types and node types known to the engine."""
from __future__ import annotations

from collections.abc import Iterable
from copy import deepcopy
from dataclasses import dataclass
from datetime import date
from typing import Any


@dataclass(frozen=True)
class TriggerDefinition:
    """Metadata describing a domain event that can start workflows."""

    key: str
    label: str
    description: str
    available_data: tuple[str, ...]


@dataclass(frozen=True)
class ActionDefinition:
    """Metadata describing a side-effecting action an action node may run."""

    key: str
    label: str
    description: str


_TRIGGERS: list[TriggerDefinition] = [
    TriggerDefinition(
        key="gallery_created",
        label="Gallery created",
        description="A new gallery has been created.",
        available_data=("gallery_id", "gallery_name", "address", "company_id"),
    ),
    TriggerDefinition(
        key="gallery_sent_to_client",
        label="Gallery sent to client",
        description="A gallery has been sent to its clients.",
        available_data=("gallery_id", "client_emails", "gallery_url", "gallery_name"),
    ),
    TriggerDefinition(
        key="gallery_review_submitted",
        label="Client selection submitted",
        description="A client has finished selecting photos.",
        available_data=(
            "gallery_id",
            "selected_count",
            "staging_count",
            "blue_hour_count",
            "feedback",
        ),
    ),
    TriggerDefinition(
        key="gallery_delivered",
        label="Gallery delivered",
        description="The final photos have been delivered.",
        available_data=("gallery_id", "download_link", "file_count"),
    ),
    TriggerDefinition(
        key="booking_created",
        label="Booking received",
        description="A new booking has been created.",
        available_data=(
            "booking_id",
            "contact_email",
            "contact_name",
            "address",
            "scheduled_date",
            "package_type",
        ),
    ),
    TriggerDefinition(
        key="staging_requested",
        label="Staging requested",
        description="A client has requested virtual staging.",
        available_data=("request_id", "gallery_id", "photo_count", "staging_style"),
    ),
    TriggerDefinition(
        key="reopen_request_submitted",
        label="Reopen requested",
        description="A client asked to reopen a gallery.",
        available_data=("request_id", "gallery_id", "message", "user_email"),
    ),
    TriggerDefinition(
        key="reopen_request_approved",
        label="Reopen approved",
        description="A reopen request has been approved.",
        available_data=("request_id", "gallery_id", "user_email"),
    ),
    TriggerDefinition(
        key="client_created",
        label="Client created",
        description="A new client has been created.",
        available_data=("client_id", "email", "vorname", "nachname", "company_id"),
    ),
]

_ACTIONS: list[ActionDefinition] = [
    ActionDefinition("send_email", "Send email", "Sends a templated email."),
    ActionDefinition("send_webhook", "Send webhook", "Sends an HTTP request to an external URL."),
    ActionDefinition(
        "create_calendar_event", "Create calendar event", "Creates a calendar entry."
    ),
    ActionDefinition("create_gallery", "Create gallery", "Creates a new gallery."),
    ActionDefinition(
        "update_gallery_status", "Update gallery status", "Changes the status of a gallery."
    ),
    ActionDefinition("notify_admin", "Notify admin", "Records a notification for admins."),
]

TRIGGER_EVENTS = frozenset(trigger.key for trigger in _TRIGGERS)
ACTION_TYPES = frozenset(action.key for action in _ACTIONS)

_SAMPLE_VALUES: dict[str, Any] = {
    "gallery_id": "test-gallery-id",
    "gallery_name": "Test Gallery",
    "client_emails": ["test@example.com"],
    "selected_count": 5,
    "staging_count": 2,
    "blue_hour_count": 1,
    "booking_id": "test-booking-id",
    "contact_email": "customer@example.com",
    "contact_name": "Max Mustermann",
    "address": "Musterstrasse 123, 86150 Augsburg",
    "package_type": "Photo",
    "request_id": "test-request-id",
    "message": "Test message",
    "file_count": 25,
    "photo_count": 3,
}


def iter_triggers() -> Iterable[TriggerDefinition]:
    """Yield the registered trigger definitions."""

    yield from _TRIGGERS


def iter_actions() -> Iterable[ActionDefinition]:
    yield from _ACTIONS


def find_trigger(key: str) -> TriggerDefinition | None:
    """Return a trigger definition by key, if available."""

    for trigger in _TRIGGERS:
        if trigger.key == key:
            return trigger
    return None


def sample_payload(event: str) -> dict[str, Any]:
    """Build a representative payload for the given trigger event."""

    trigger = find_trigger(event)
    if trigger is None:
        return {}

    payload: dict[str, Any] = {}
    for field in trigger.available_data:
        if field == "scheduled_date":
            payload[field] = date.today().isoformat()
        elif field in _SAMPLE_VALUES:
            payload[field] = deepcopy(_SAMPLE_VALUES[field])
        else:
            payload[field] = f"test_{field}"
    return payload
