"""API endpoints driving the engine: triggers, the scheduler and run inspection."""

from __future__ import annotations

from datetime import datetime
from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify, request

from ..models.run import RUN_STATUSES, ScheduledWorkflowStep, WorkflowRun
from ..utils.auth import require_service_key
from ..workflow.actions import get_dispatcher
from ..workflow.catalog import TRIGGER_EVENTS, iter_actions, iter_triggers
from ..workflow.scheduler import process_scheduled_steps
from ..workflow.store import StepStore
from ..workflow.triggers import dispatch_trigger

bp = Blueprint("runs", __name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() + "Z" if value is not None else None


def serialize_step(step: ScheduledWorkflowStep) -> dict[str, Any]:
    return {
        "id": step.id,
        "workflow_run_id": step.workflow_run_id,
        "node_id": step.node_id,
        "scheduled_for": _iso(step.scheduled_for),
        "payload": step.payload,
        "status": step.status,
        "error_message": step.error_message,
        "processed_at": _iso(step.processed_at),
    }


def serialize_run(run: WorkflowRun, *, with_steps: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": run.id,
        "workflow_id": run.workflow_id,
        "trigger_event": run.trigger_event,
        "trigger_payload": run.trigger_payload,
        "status": run.status,
        "current_node_id": run.current_node_id,
        "execution_path": list(run.execution_path or []),
        "error_message": run.error_message,
        "is_test": run.is_test,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
    }
    if with_steps:
        data["scheduled_steps"] = [serialize_step(step) for step in StepStore().for_run(run.id)]
    return data


@bp.get("/triggers")
def list_triggers() -> tuple[object, int]:
    payload = [
        {
            "key": trigger.key,
            "label": trigger.label,
            "description": trigger.description,
            "available_data": list(trigger.available_data),
        }
        for trigger in iter_triggers()
    ]
    return jsonify(payload), HTTPStatus.OK


@bp.get("/actions")
def list_actions() -> tuple[object, int]:
    dispatcher = get_dispatcher()
    payload = [
        {
            "key": action.key,
            "label": action.label,
            "description": action.description,
            "available": dispatcher.handles(action.key),
        }
        for action in iter_actions()
    ]
    return jsonify(payload), HTTPStatus.OK


@bp.post("/triggers/<event>")
@require_service_key
def fire_trigger(event: str) -> tuple[object, int]:
    if event not in TRIGGER_EVENTS:
        return jsonify({"error": f"unknown trigger event {event!r}"}), HTTPStatus.BAD_REQUEST

    payload = request.get_json(force=True, silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return jsonify({"error": "payload must be an object"}), HTTPStatus.BAD_REQUEST

    runs = dispatch_trigger(event, payload)
    return (
        jsonify({"event": event, "runs": [serialize_run(run) for run in runs]}),
        HTTPStatus.OK,
    )


@bp.post("/scheduler/process")
@require_service_key
def run_scheduler() -> tuple[object, int]:
    result = process_scheduled_steps()
    return jsonify(result.to_dict()), HTTPStatus.OK


@bp.get("/runs")
def list_runs() -> tuple[object, int]:
    status = request.args.get("status")
    workflow_id = request.args.get("workflow_id", type=int)
    limit = request.args.get("limit", type=int) or 50
    limit = max(1, min(limit, 200))

    query = WorkflowRun.query
    if status:
        if status not in RUN_STATUSES:
            return jsonify({"error": "invalid status"}), HTTPStatus.BAD_REQUEST
        query = query.filter_by(status=status)
    if workflow_id is not None:
        query = query.filter_by(workflow_id=workflow_id)

    runs = query.order_by(WorkflowRun.started_at.desc(), WorkflowRun.id.desc()).limit(limit).all()
    return jsonify([serialize_run(run) for run in runs]), HTTPStatus.OK


@bp.get("/runs/<int:run_id>")
def get_run(run_id: int) -> tuple[object, int]:
    run = WorkflowRun.query.get_or_404(run_id)
    return jsonify(serialize_run(run, with_steps=True)), HTTPStatus.OK
