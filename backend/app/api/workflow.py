"""REST API endpoints for storing and retrieving workflows and their graphs."""

from __future__ import annotations

import math
from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from ..extensions import db
from ..models.run import STEP_PENDING, STEP_PROCESSING, ScheduledWorkflowStep, WorkflowRun
from ..models.workflow import EDGE_LABELS, NODE_TYPES, Workflow, WorkflowEdge, WorkflowNode
from ..utils.auth import require_service_key
from ..workflow.catalog import ACTION_TYPES, TRIGGER_EVENTS
from ..workflow.graph import GraphEdge, GraphNode, WorkflowGraph, decode_node_config, validate_graph
from .runs import serialize_run

bp = Blueprint("workflows", __name__)

MAX_GRAPH_NODES = 500


def _serialize_node(node: WorkflowNode) -> dict[str, Any]:
    return {
        "id": node.id,
        "node_type": node.node_type,
        "action_type": node.action_type,
        "node_config": node.node_config or {},
        "position_x": node.position_x,
        "position_y": node.position_y,
    }


def _serialize_edge(edge: WorkflowEdge) -> dict[str, Any]:
    return {
        "id": edge.id,
        "source_node_id": edge.source_node_id,
        "target_node_id": edge.target_node_id,
        "edge_label": edge.edge_label,
        "sort_order": edge.sort_order,
    }


def _serialize_workflow(workflow: Workflow, *, with_graph: bool = False) -> dict[str, Any]:
    """Return a JSON serialisable representation of a workflow."""

    data: dict[str, Any] = {
        "id": workflow.id,
        "name": workflow.name,
        "description": workflow.description,
        "trigger_event": workflow.trigger_event,
        "is_active": workflow.is_active,
        "conditions": workflow.conditions or {},
        "created_at": workflow.created_at.isoformat() + "Z",
        "updated_at": workflow.updated_at.isoformat() + "Z",
    }
    if with_graph:
        data["nodes"] = [_serialize_node(node) for node in workflow.nodes]
        data["edges"] = [_serialize_edge(edge) for edge in workflow.edges]
        data["validation_errors"] = validate_graph(
            WorkflowGraph.from_rows(workflow.id, workflow.nodes, workflow.edges)
        )
    return data


def _is_name_unique(name: str, workflow_id: int | None = None) -> bool:
    """Check whether the workflow name is unique."""

    query = Workflow.query.filter(func.lower(Workflow.name) == name.lower())
    if workflow_id is not None:
        query = query.filter(Workflow.id != workflow_id)
    return not db.session.query(query.exists()).scalar()


def _normalize_event(value: Any) -> tuple[str | None, list[str]]:
    if not isinstance(value, str) or not value.strip():
        return None, ["trigger_event is required"]
    candidate = value.strip()
    if candidate not in TRIGGER_EVENTS:
        return None, [f"trigger_event {candidate!r} is not supported"]
    return candidate, []


def _graph_errors(workflow: Workflow) -> list[str]:
    return validate_graph(WorkflowGraph.from_rows(workflow.id, workflow.nodes, workflow.edges))


@bp.post("/workflows")
@require_service_key
def create_workflow() -> tuple[object, int]:
    payload = request.get_json(silent=True, force=True) or {}
    name = (payload.get("name") or "").strip()

    if not name:
        return jsonify({"error": "name is required"}), HTTPStatus.BAD_REQUEST

    event, errors = _normalize_event(payload.get("trigger_event"))
    if errors:
        return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    if not _is_name_unique(name):
        return jsonify({"error": "workflow with this name already exists"}), HTTPStatus.CONFLICT

    workflow = Workflow(
        name=name,
        description=payload.get("description"),
        trigger_event=event,
        is_active=False,
        conditions={},
    )
    db.session.add(workflow)
    db.session.commit()

    return jsonify(_serialize_workflow(workflow, with_graph=True)), HTTPStatus.CREATED


@bp.get("/workflows")
def list_workflows() -> tuple[object, int]:
    query = Workflow.query
    event = request.args.get("trigger_event")
    if event:
        query = query.filter_by(trigger_event=event)
    workflows = query.order_by(Workflow.created_at.desc(), Workflow.id.desc()).all()
    return jsonify([_serialize_workflow(workflow) for workflow in workflows]), HTTPStatus.OK


@bp.get("/workflows/<int:workflow_id>")
def get_workflow(workflow_id: int) -> tuple[object, int]:
    workflow = Workflow.query.get_or_404(workflow_id)
    return jsonify(_serialize_workflow(workflow, with_graph=True)), HTTPStatus.OK


@bp.put("/workflows/<int:workflow_id>")
@require_service_key
def update_workflow(workflow_id: int) -> tuple[object, int]:
    workflow = Workflow.query.get_or_404(workflow_id)
    payload = request.get_json(silent=True, force=True) or {}

    name = payload.get("name")
    if name is not None:
        name = str(name).strip()
        if not name:
            return jsonify({"error": "name must not be empty"}), HTTPStatus.BAD_REQUEST
        if not _is_name_unique(name, workflow_id):
            return jsonify({"error": "workflow with this name already exists"}), HTTPStatus.CONFLICT
        workflow.name = name

    if "description" in payload:
        workflow.description = payload.get("description")

    if "trigger_event" in payload:
        event, errors = _normalize_event(payload.get("trigger_event"))
        if errors:
            return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST
        workflow.trigger_event = event

    if "is_active" in payload:
        is_active = payload.get("is_active")
        if not isinstance(is_active, bool):
            return jsonify({"error": "is_active must be a boolean"}), HTTPStatus.BAD_REQUEST
        if is_active:
            errors = _graph_errors(workflow)
            if errors:
                db.session.rollback()
                return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST
        workflow.is_active = is_active

    db.session.commit()
    return jsonify(_serialize_workflow(workflow, with_graph=True)), HTTPStatus.OK


@bp.delete("/workflows/<int:workflow_id>")
@require_service_key
def delete_workflow(workflow_id: int) -> tuple[object, int]:
    workflow = Workflow.query.get_or_404(workflow_id)
    # Runs outlive their workflow as audit records.
    WorkflowRun.query.filter_by(workflow_id=workflow.id).update(
        {"workflow_id": None}, synchronize_session=False
    )
    db.session.delete(workflow)
    db.session.commit()
    return "", HTTPStatus.NO_CONTENT


def _validate_graph_payload(
    payload: dict[str, Any],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[str]]:
    """Validate the bulk graph payload; edges reference nodes by client ``key``."""

    errors: list[str] = []
    raw_nodes = payload.get("nodes")
    raw_edges = payload.get("edges") or []

    if not isinstance(raw_nodes, list):
        return [], [], ["nodes must be a list"]
    if not isinstance(raw_edges, list):
        return [], [], ["edges must be a list"]
    if len(raw_nodes) > MAX_GRAPH_NODES:
        return [], [], [f"a workflow may have at most {MAX_GRAPH_NODES} nodes"]

    nodes: list[dict[str, Any]] = []
    keys: set[str] = set()
    for index, item in enumerate(raw_nodes, start=1):
        if not isinstance(item, dict):
            errors.append(f"nodes[{index}] must be an object")
            continue
        key = item.get("key")
        if key is None or str(key) in keys:
            errors.append(f"nodes[{index}] needs a unique key")
            continue
        node_type = item.get("node_type")
        if node_type not in NODE_TYPES:
            errors.append(f"nodes[{index}] has invalid node_type {node_type!r}")
            continue
        action_type = item.get("action_type") if node_type == "action" else None
        if node_type == "action" and (
            not isinstance(action_type, str) or action_type not in ACTION_TYPES
        ):
            errors.append(f"nodes[{index}] has invalid action_type {action_type!r}")
            continue
        node_config = item.get("node_config") or {}
        if not isinstance(node_config, dict):
            errors.append(f"nodes[{index}].node_config must be an object")
            continue
        try:
            position_x = float(item.get("position_x") or 0)
            position_y = float(item.get("position_y") or 0)
        except (TypeError, ValueError):
            errors.append(f"nodes[{index}] position must be numeric")
            continue
        if not (math.isfinite(position_x) and math.isfinite(position_y)):
            errors.append(f"nodes[{index}] position must be numeric")
            continue
        keys.add(str(key))
        nodes.append(
            {
                "key": str(key),
                "node_type": node_type,
                "action_type": action_type,
                "node_config": node_config,
                "position_x": position_x,
                "position_y": position_y,
            }
        )

    edges: list[dict[str, Any]] = []
    for index, item in enumerate(raw_edges, start=1):
        if not isinstance(item, dict):
            errors.append(f"edges[{index}] must be an object")
            continue
        source = str(item.get("source"))
        target = str(item.get("target"))
        if source not in keys or target not in keys:
            errors.append(f"edges[{index}] references an unknown node key")
            continue
        label = item.get("edge_label") or "default"
        if label not in EDGE_LABELS:
            errors.append(f"edges[{index}] has invalid edge_label {label!r}")
            continue
        try:
            sort_order = int(item.get("sort_order") or 0)
        except (TypeError, ValueError):
            errors.append(f"edges[{index}].sort_order must be an integer")
            continue
        edges.append({"source": source, "target": target, "edge_label": label, "sort_order": sort_order})

    return nodes, edges, errors


def _has_suspended_runs(workflow: Workflow) -> bool:
    query = (
        ScheduledWorkflowStep.query.join(
            WorkflowRun, ScheduledWorkflowStep.workflow_run_id == WorkflowRun.id
        )
        .filter(WorkflowRun.workflow_id == workflow.id)
        .filter(ScheduledWorkflowStep.status.in_((STEP_PENDING, STEP_PROCESSING)))
    )
    return db.session.query(query.exists()).scalar()


@bp.put("/workflows/<int:workflow_id>/graph")
@require_service_key
def replace_graph(workflow_id: int) -> tuple[object, int]:
    """Replace all nodes and edges of a workflow in one transaction."""

    workflow = Workflow.query.get_or_404(workflow_id)
    payload = request.get_json(silent=True, force=True) or {}

    nodes, edges, errors = _validate_graph_payload(payload)
    if errors:
        return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    if _has_suspended_runs(workflow):
        return (
            jsonify({"error": "workflow has suspended runs; wait for them or fail them first"}),
            HTTPStatus.CONFLICT,
        )

    # Validate the new structure before touching stored rows.
    index_by_key = {node["key"]: index for index, node in enumerate(nodes, start=1)}
    preview = WorkflowGraph(
        workflow.id,
        [
            GraphNode(
                id=index_by_key[node["key"]],
                node_type=node["node_type"],
                config=decode_node_config(node["node_type"], node["action_type"], node["node_config"]),
            )
            for node in nodes
        ],
        [
            GraphEdge(
                id=index,
                source_id=index_by_key[edge["source"]],
                target_id=index_by_key[edge["target"]],
                label=edge["edge_label"],
                sort_order=edge["sort_order"],
            )
            for index, edge in enumerate(edges, start=1)
        ],
    )
    validation_errors = validate_graph(preview)
    if workflow.is_active and validation_errors:
        return jsonify({"errors": validation_errors}), HTTPStatus.BAD_REQUEST

    workflow.edges.clear()
    workflow.nodes.clear()
    db.session.flush()

    rows_by_key: dict[str, WorkflowNode] = {}
    for node in nodes:
        row = WorkflowNode(
            workflow_id=workflow.id,
            node_type=node["node_type"],
            action_type=node["action_type"],
            node_config=node["node_config"],
            position_x=node["position_x"],
            position_y=node["position_y"],
        )
        db.session.add(row)
        rows_by_key[node["key"]] = row
    db.session.flush()

    for edge in edges:
        db.session.add(
            WorkflowEdge(
                workflow_id=workflow.id,
                source_node_id=rows_by_key[edge["source"]].id,
                target_node_id=rows_by_key[edge["target"]].id,
                edge_label=edge["edge_label"],
                sort_order=edge["sort_order"],
            )
        )
    db.session.commit()

    data = _serialize_workflow(workflow, with_graph=True)
    data["node_ids"] = {key: row.id for key, row in rows_by_key.items()}
    return jsonify(data), HTTPStatus.OK


@bp.get("/workflows/<int:workflow_id>/runs")
def list_workflow_runs(workflow_id: int) -> tuple[object, int]:
    Workflow.query.get_or_404(workflow_id)
    limit = request.args.get("limit", type=int) or 50
    limit = max(1, min(limit, 200))
    runs = (
        WorkflowRun.query.filter_by(workflow_id=workflow_id)
        .order_by(WorkflowRun.started_at.desc(), WorkflowRun.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify([serialize_run(run) for run in runs]), HTTPStatus.OK
