"""Dispatching of side-effecting actions for action nodes.

The engine only knows the ``(action_type, config, context) -> ActionResult``
contract. Concrete side effects are registered as handlers; the bundled
ones cover webhooks, email relay and admin notifications.
"""
from __future__ import annotations

import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import requests
from flask import current_app

from .errors import TransientActionError
from .runlog import persist_run_log

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass
class ActionResult:
    success: bool
    context_updates: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ActionInvocation:
    """Everything a handler gets to see for one action execution."""

    action_type: str
    config: Mapping[str, Any]
    context: Mapping[str, Any]
    idempotency_key: str | None = None
    run_id: int | None = None


Handler = Callable[[ActionInvocation], "ActionResult | None"]


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Replace ``{key}`` placeholders with values from the context."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        value = context[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def render_config(value: Any, context: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return render_template(value, context)
    if isinstance(value, Mapping):
        return {key: render_config(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_config(item, context) for item in value]
    return value


class ActionDispatcher:
    """Registry of action handlers with a bounded retry policy."""

    def __init__(
        self,
        handlers: Mapping[str, Handler] | None = None,
        *,
        max_attempts: int = 1,
        backoff: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep

    def register(self, action_type: str, handler: Handler) -> None:
        self._handlers[action_type] = handler

    def handles(self, action_type: str) -> bool:
        return action_type in self._handlers

    def dispatch(
        self,
        action_type: str,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
        run_id: int | None = None,
    ) -> ActionResult:
        handler = self._handlers.get(action_type)
        if handler is None:
            return ActionResult.failed(f"no handler registered for action {action_type!r}")

        invocation = ActionInvocation(
            action_type=action_type,
            config=render_config(dict(config), context),
            context=dict(context),
            idempotency_key=idempotency_key,
            run_id=run_id,
        )

        attempt = 1
        while True:
            try:
                result = handler(invocation)
            except TransientActionError as exc:
                if attempt >= self.max_attempts:
                    return ActionResult.failed(str(exc) or type(exc).__name__)
                current_app.logger.warning(
                    "Action %s attempt %s/%s failed: %s",
                    action_type,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                self._sleep(self.backoff * attempt)
                attempt += 1
                continue
            except Exception as exc:
                current_app.logger.exception("Action %s raised", action_type)
                return ActionResult.failed(str(exc) or type(exc).__name__)

            if result is None:
                return ActionResult(success=True)
            return result


def _resolve_recipients(config: Mapping[str, Any], context: Mapping[str, Any]) -> list[str]:
    recipient_type = config.get("recipient_type") or "admin"

    if recipient_type == "admin":
        return [current_app.config["ADMIN_EMAIL"]]
    if recipient_type == "new_client":
        return [context["email"]] if context.get("email") else []
    if recipient_type == "booking_contact":
        return [context["contact_email"]] if context.get("contact_email") else []
    if recipient_type == "gallery_clients":
        emails = context.get("client_emails")
        if isinstance(emails, list):
            return [str(email) for email in emails if email]
        return [emails] if emails else []
    if recipient_type == "requester":
        email = context.get("user_email") or context.get("requester_email")
        return [email] if email else []
    if recipient_type == "custom":
        custom = config.get("custom_recipients") or ""
        return [email.strip() for email in str(custom).split(",") if email.strip()]
    return []


def _headers(invocation: ActionInvocation, scope: str | None = None) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if invocation.idempotency_key:
        key = invocation.idempotency_key
        # Each outgoing request gets its own key.
        headers["Idempotency-Key"] = f"{key}:{scope}" if scope else key
    return headers


def _check_response(response: requests.Response, what: str) -> None:
    if response.status_code >= 500:
        raise TransientActionError(f"{what} failed with status {response.status_code}")
    if response.status_code >= 400:
        raise RuntimeError(f"{what} failed with status {response.status_code}")


def send_webhook(invocation: ActionInvocation) -> ActionResult:
    """Send the run context (or a rendered custom body) to an external URL."""

    config = invocation.config
    url = config.get("url") or config.get("webhook_url")
    if not url:
        return ActionResult.failed("no URL specified for send_webhook action")

    method = str(config.get("method") or "POST").upper()
    kwargs: dict[str, Any] = {
        "headers": _headers(invocation),
        "timeout": current_app.config["WEBHOOK_TIMEOUT"],
    }
    if method != "GET":
        custom_body = config.get("custom_body")
        if custom_body:
            kwargs["data"] = custom_body
        else:
            kwargs["json"] = dict(invocation.context)

    try:
        response = requests.request(method, url, **kwargs)
    except requests.RequestException as exc:
        raise TransientActionError(f"webhook request failed: {exc}") from exc

    _check_response(response, "webhook")
    return ActionResult(success=True, context_updates={"webhook_status": response.status_code})


def send_email(invocation: ActionInvocation) -> ActionResult:
    """Relay one templated email per recipient to the configured mail service."""

    config = invocation.config
    template_key = config.get("template_key") or config.get("template_id")
    if not template_key:
        return ActionResult.failed("no template_key specified for send_email action")

    relay_url = current_app.config.get("EMAIL_RELAY_URL")
    if not relay_url:
        return ActionResult.failed("EMAIL_RELAY_URL not configured")

    recipients = _resolve_recipients(config, invocation.context)
    if not recipients:
        current_app.logger.info("No recipients for template %s, skipping email", template_key)
        return ActionResult(success=True, context_updates={"email_recipients": []})

    for recipient in recipients:
        try:
            response = requests.post(
                relay_url,
                json={
                    "template_key": template_key,
                    "recipient_email": recipient,
                    "placeholders": dict(invocation.context),
                },
                headers=_headers(invocation, recipient),
                timeout=current_app.config["WEBHOOK_TIMEOUT"],
            )
        except requests.RequestException as exc:
            raise TransientActionError(f"email relay request failed: {exc}") from exc
        _check_response(response, "email relay")

    return ActionResult(success=True, context_updates={"email_recipients": recipients})


def notify_admin(invocation: ActionInvocation) -> ActionResult:
    config = invocation.config
    message = config.get("message_template") or config.get("message") or "Workflow notification"
    priority = config.get("priority") or "normal"
    persist_run_log(
        "action",
        {"action": "notify_admin", "priority": priority, "message": message},
        run_id=invocation.run_id,
    )
    return ActionResult(success=True)


BUNDLED_HANDLERS: dict[str, Handler] = {
    "send_webhook": send_webhook,
    "send_email": send_email,
    "notify_admin": notify_admin,
}


def build_dispatcher(config: Mapping[str, Any]) -> ActionDispatcher:
    """Create a dispatcher with the bundled handlers and the configured retry policy."""

    return ActionDispatcher(
        BUNDLED_HANDLERS,
        max_attempts=int(config.get("ACTION_MAX_ATTEMPTS", 1)),
        backoff=float(config.get("ACTION_RETRY_BACKOFF", 0.0)),
    )


def get_dispatcher() -> ActionDispatcher:
    """Return the dispatcher bound to the current application."""

    return current_app.extensions["workflow_actions"]
