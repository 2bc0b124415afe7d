"""Bearer service-key protection for engine endpoints."""

from __future__ import annotations

import functools
import hashlib
import hmac
from collections.abc import Callable
from http import HTTPStatus
from typing import Any, TypeVar, cast

from flask import current_app, jsonify, request

TCallable = TypeVar("TCallable", bound=Callable[..., Any])


def extract_bearer_token() -> str | None:
    """Return the token of an ``Authorization: Bearer`` header, if present."""
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _unauthorized(message: str):
    response = jsonify({"error": message})
    response.status_code = HTTPStatus.UNAUTHORIZED
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


def require_service_key(func: TCallable) -> TCallable:
    """Require ``Authorization: Bearer <ENGINE_SERVICE_KEY>`` when a key is configured."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        expected = current_app.config.get("ENGINE_SERVICE_KEY")
        if not expected:
            return func(*args, **kwargs)

        token_value = extract_bearer_token()
        if not token_value:
            return _unauthorized("missing bearer token")

        if not hmac.compare_digest(token_value.encode("utf-8"), expected.encode("utf-8")):
            return _unauthorized("invalid token")

        return func(*args, **kwargs)

    return cast(TCallable, wrapper)
