"""Helpers for persisting workflow run log entries."""

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from ..extensions import db
from ..models.logs import RunLog


def persist_run_log(source: str, message: str | dict[str, Any], run_id: int | None = None) -> None:
    """Persist a run log entry without raising exceptions.

    The entry is committed on its own so that it survives a later rollback
    of the run's transaction.
    """
    if not message:
        return
    if not isinstance(message, str):
        message = json.dumps(message, default=str)

    try:
        entry = RunLog(source=source, message=message, workflow_run_id=run_id)
        db.session.add(entry)
        db.session.commit()
    except Exception:  # pragma: no cover - logging must never break a run
        current_app.logger.exception("Failed to persist run log entry")
        db.session.rollback()
