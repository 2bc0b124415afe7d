"""Seed the database with example workflows."""
from __future__ import annotations

import pathlib
import sys
from typing import Any

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app
from backend.app.extensions import db
from backend.app.models.workflow import Workflow, WorkflowEdge, WorkflowNode

# name -> (trigger event, nodes, edges); edges reference node positions in the list
EXAMPLES: dict[str, tuple[str, list[dict[str, Any]], list[tuple[int, int, str]]]] = {
    "Booking confirmation": (
        "booking_created",
        [
            {"node_type": "trigger"},
            {
                "node_type": "action",
                "action_type": "send_email",
                "node_config": {
                    "template_key": "booking_confirmation",
                    "recipient_type": "booking_contact",
                },
            },
            {"node_type": "end"},
        ],
        [(0, 1, "default"), (1, 2, "default")],
    ),
    "Review follow-up": (
        "gallery_review_submitted",
        [
            {"node_type": "trigger"},
            {"node_type": "delay", "node_config": {"delay_value": 1, "delay_unit": "days"}},
            {
                "node_type": "condition",
                "node_config": {"field": "selected_count", "operator": "greater_than", "value": 5},
            },
            {
                "node_type": "action",
                "action_type": "notify_admin",
                "node_config": {"message_template": "Large selection for gallery {gallery_id}"},
            },
            {"node_type": "end"},
        ],
        [(0, 1, "default"), (1, 2, "default"), (2, 3, "true"), (2, 4, "false"), (3, 4, "default")],
    ),
}


def _ensure_workflow(name: str, event: str, nodes: list[dict[str, Any]], edges) -> bool:
    """Create the example workflow unless one with the same name exists."""

    if Workflow.query.filter_by(name=name).first() is not None:
        return False

    workflow = Workflow(name=name, trigger_event=event, is_active=True, conditions={})
    db.session.add(workflow)
    db.session.flush()

    rows = []
    for index, node in enumerate(nodes):
        row = WorkflowNode(
            workflow_id=workflow.id,
            node_type=node["node_type"],
            action_type=node.get("action_type"),
            node_config=node.get("node_config", {}),
            position_x=0,
            position_y=index * 120,
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()

    for sort_order, (source, target, label) in enumerate(edges):
        db.session.add(
            WorkflowEdge(
                workflow_id=workflow.id,
                source_node_id=rows[source].id,
                target_node_id=rows[target].id,
                edge_label=label,
                sort_order=sort_order,
            )
        )
    return True


def main() -> None:
    app = create_app()
    with app.app_context():
        created = 0
        for name, (event, nodes, edges) in EXAMPLES.items():
            created += int(_ensure_workflow(name, event, nodes, edges))
        db.session.commit()

        print("Seed completed", f"workflows created={created}")


if __name__ == "__main__":
    main()
