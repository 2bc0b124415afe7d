"""Tests for the action dispatcher and the bundled handlers."""

from __future__ import annotations

import json

import pytest
import requests

from backend.app.models.logs import RunLog
from backend.app.workflow import actions
from backend.app.workflow.actions import (
    ActionDispatcher,
    ActionInvocation,
    ActionResult,
    render_config,
    render_template,
)
from backend.app.workflow.errors import TransientActionError


class FakeResponse:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code


def test_render_template_replaces_known_placeholders():
    context = {"gallery_name": "Altstadt", "count": 12, "empty": None}

    assert render_template("{gallery_name}: {count} photos{empty}", context) == "Altstadt: 12 photos"
    assert render_template("Hello {unknown}", context) == "Hello {unknown}"
    assert render_config({"subject": "{gallery_name}", "tags": ["{count}", 3]}, context) == {
        "subject": "Altstadt",
        "tags": ["12", 3],
    }


def test_dispatch_without_handler_fails(app):
    result = ActionDispatcher().dispatch("create_gallery", {}, {})

    assert result.success is False
    assert result.error == "no handler registered for action 'create_gallery'"


def test_dispatch_retries_transient_errors_until_exhausted(app):
    attempts = []
    sleeps = []

    def flaky(invocation):
        attempts.append(invocation.idempotency_key)
        raise TransientActionError("gateway timeout")

    dispatcher = ActionDispatcher({"send_webhook": flaky}, max_attempts=3, backoff=0.5, sleep=sleeps.append)
    result = dispatcher.dispatch("send_webhook", {}, {}, idempotency_key="1:2:3")

    assert result.success is False
    assert result.error == "gateway timeout"
    assert attempts == ["1:2:3"] * 3
    assert sleeps == [0.5, 1.0]


def test_dispatch_does_not_retry_permanent_errors(app):
    attempts = []

    def broken(invocation):
        attempts.append(invocation)
        raise ValueError("bad config")

    dispatcher = ActionDispatcher({"send_webhook": broken}, max_attempts=3, sleep=lambda s: None)
    result = dispatcher.dispatch("send_webhook", {}, {})

    assert result == ActionResult(success=False, error="bad config")
    assert len(attempts) == 1


def test_send_webhook_posts_context(app, monkeypatch: pytest.MonkeyPatch):
    captured = {}

    def fake_request(method, url, **kwargs):
        captured.update(method=method, url=url, **kwargs)
        return FakeResponse(202)

    monkeypatch.setattr(actions.requests, "request", fake_request)
    invocation = ActionInvocation(
        action_type="send_webhook",
        config={"url": "https://hooks.example.com/bookings"},
        context={"booking_id": "b-1"},
        idempotency_key="4:5:1",
    )

    result = actions.send_webhook(invocation)

    assert result.success is True
    assert result.context_updates == {"webhook_status": 202}
    assert captured["method"] == "POST"
    assert captured["json"] == {"booking_id": "b-1"}
    assert captured["headers"]["Idempotency-Key"] == "4:5:1"
    assert captured["timeout"] == app.config["WEBHOOK_TIMEOUT"]


def test_send_webhook_classifies_failures(app, monkeypatch: pytest.MonkeyPatch):
    invocation = ActionInvocation(action_type="send_webhook", config={"url": "https://x.test"}, context={})

    monkeypatch.setattr(actions.requests, "request", lambda *a, **k: FakeResponse(503))
    with pytest.raises(TransientActionError):
        actions.send_webhook(invocation)

    monkeypatch.setattr(actions.requests, "request", lambda *a, **k: FakeResponse(404))
    with pytest.raises(RuntimeError):
        actions.send_webhook(invocation)

    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(actions.requests, "request", unreachable)
    with pytest.raises(TransientActionError):
        actions.send_webhook(invocation)

    missing_url = ActionInvocation(action_type="send_webhook", config={}, context={})
    assert actions.send_webhook(missing_url).success is False


def test_send_email_relays_one_message_per_recipient(app, monkeypatch: pytest.MonkeyPatch):
    posted = []

    def fake_post(url, **kwargs):
        posted.append((url, kwargs["json"], kwargs["headers"]["Idempotency-Key"]))
        return FakeResponse(200)

    monkeypatch.setattr(actions.requests, "post", fake_post)
    invocation = ActionInvocation(
        action_type="send_email",
        config={"template_key": "gallery_ready", "recipient_type": "gallery_clients"},
        context={"client_emails": ["a@example.com", "b@example.com"], "gallery_name": "Altstadt"},
        idempotency_key="7:3:1",
    )

    result = actions.send_email(invocation)

    assert result.success is True
    assert result.context_updates == {"email_recipients": ["a@example.com", "b@example.com"]}
    assert [body["recipient_email"] for _, body, _ in posted] == ["a@example.com", "b@example.com"]
    assert posted[0][0] == app.config["EMAIL_RELAY_URL"]
    assert posted[0][1]["template_key"] == "gallery_ready"
    assert posted[0][1]["placeholders"]["gallery_name"] == "Altstadt"
    assert [key for _, _, key in posted] == ["7:3:1:a@example.com", "7:3:1:b@example.com"]


@pytest.mark.parametrize(
    ("config", "context", "expected"),
    [
        ({"recipient_type": "admin"}, {}, ["admin@galleryflow.test"]),
        ({"recipient_type": "new_client"}, {"email": "n@example.com"}, ["n@example.com"]),
        ({"recipient_type": "booking_contact"}, {"contact_email": "c@example.com"}, ["c@example.com"]),
        ({"recipient_type": "requester"}, {"requester_email": "r@example.com"}, ["r@example.com"]),
        ({"recipient_type": "custom", "custom_recipients": "x@a.de, y@a.de"}, {}, ["x@a.de", "y@a.de"]),
        ({"recipient_type": "booking_contact"}, {}, []),
    ],
)
def test_recipient_resolution(app, config, context, expected):
    assert actions._resolve_recipients(config, context) == expected


def test_send_email_without_recipients_skips(app, monkeypatch: pytest.MonkeyPatch):
    def fail_post(*args, **kwargs):
        raise AssertionError("no email should be sent")

    monkeypatch.setattr(actions.requests, "post", fail_post)
    invocation = ActionInvocation(
        action_type="send_email",
        config={"template_key": "welcome", "recipient_type": "new_client"},
        context={},
    )

    assert actions.send_email(invocation).success is True
    assert actions.send_email(
        ActionInvocation(action_type="send_email", config={}, context={})
    ).success is False


def test_notify_admin_writes_action_log(app):
    invocation = ActionInvocation(
        action_type="notify_admin",
        config={"message_template": "Reopen request for {gallery_name}", "priority": "high"},
        context={},
        run_id=11,
    )

    actions.notify_admin(invocation)

    entry = RunLog.query.filter_by(source="action", workflow_run_id=11).one()
    assert json.loads(entry.message) == {
        "action": "notify_admin",
        "priority": "high",
        "message": "Reopen request for {gallery_name}",
    }


def test_app_dispatcher_bundles_builtin_handlers(app):
    dispatcher = actions.get_dispatcher()

    assert dispatcher.handles("send_webhook")
    assert dispatcher.handles("send_email")
    assert dispatcher.handles("notify_admin")
    assert not dispatcher.handles("create_gallery")
