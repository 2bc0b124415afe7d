"""API endpoints exposing run log entries."""

from __future__ import annotations

import json
from http import HTTPStatus

from flask import Blueprint, Response, jsonify, request

from ..models.logs import LOG_SOURCES, RunLog

bp = Blueprint("logs", __name__)


def _serialize_entry(entry: RunLog) -> dict[str, object]:
    try:
        message: object = json.loads(entry.message)
    except ValueError:
        message = entry.message
    return {
        "id": entry.id,
        "source": entry.source,
        "runId": entry.workflow_run_id,
        "message": message,
        "createdAt": entry.created_at.isoformat() + "Z",
    }


def _filtered_query():
    source = request.args.get("source")
    run_id = request.args.get("run_id", type=int)

    query = RunLog.query
    if source:
        if source not in LOG_SOURCES:
            return None
        query = query.filter_by(source=source)
    if run_id is not None:
        query = query.filter_by(workflow_run_id=run_id)
    return query


@bp.get("/logs")
def get_logs() -> tuple[object, int]:
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 200))

    query = _filtered_query()
    if query is None:
        return jsonify({"error": "invalid source"}), HTTPStatus.BAD_REQUEST

    entries = query.order_by(RunLog.id.desc()).limit(limit).all()
    return jsonify([_serialize_entry(entry) for entry in entries]), HTTPStatus.OK


@bp.get("/logs/download")
def download_logs() -> Response | tuple[object, int]:
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 1000))

    query = _filtered_query()
    if query is None:
        return jsonify({"error": "invalid source"}), HTTPStatus.BAD_REQUEST

    entries = query.order_by(RunLog.id.desc()).limit(limit).all()
    lines = [
        json.dumps(_serialize_entry(entry))
        for entry in reversed(entries)
    ]
    payload = "\n".join(lines)
    response = Response(payload, mimetype="application/x-ndjson")
    response.headers["Content-Disposition"] = "attachment; filename=run-logs.ndjson"
    return response
