"""Dry-run endpoint for exercising a workflow without side effects."""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from ..extensions import limiter
from ..models.workflow import Workflow
from ..utils.auth import require_service_key
from ..workflow.catalog import sample_payload
from ..workflow.triggers import start_test_run
from .runs import serialize_run

bp = Blueprint("dry_run", __name__)


@bp.get("/triggers/<event>/sample")
def get_sample_payload(event: str) -> tuple[object, int]:
    return jsonify(sample_payload(event)), HTTPStatus.OK


@bp.post("/workflows/<int:workflow_id>/test")
@require_service_key
@limiter.limit("10 per minute")
def test_workflow(workflow_id: int) -> tuple[object, int]:
    workflow = Workflow.query.get_or_404(workflow_id)
    body = request.get_json(force=True, silent=True) or {}

    payload = body.get("payload")
    if payload is None:
        payload = sample_payload(workflow.trigger_event)
    if not isinstance(payload, dict):
        return jsonify({"error": "payload must be an object"}), HTTPStatus.BAD_REQUEST

    run = start_test_run(workflow, payload)
    return jsonify(serialize_run(run)), HTTPStatus.OK
