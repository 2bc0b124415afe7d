"""Workflow graph model definitions."""

from __future__ import annotations

from datetime import datetime

from ..extensions import db

NODE_TYPES = ("trigger", "action", "delay", "condition", "end")
EDGE_LABELS = ("default", "true", "false")


class Workflow(db.Model):
    """An automation bound to one trigger event."""

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    trigger_event = db.Column(db.String(64), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    # Legacy free-form filter, not evaluated by the graph engine.
    conditions = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    nodes = db.relationship(
        "WorkflowNode",
        backref="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowNode.id",
    )
    edges = db.relationship(
        "WorkflowEdge",
        backref="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowEdge.sort_order",
    )

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<Workflow {self.name!r} on {self.trigger_event}>"


class WorkflowNode(db.Model):
    """A single node of a workflow graph."""

    __tablename__ = "workflow_nodes"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    node_type = db.Column(db.Enum(*NODE_TYPES, name="workflow_node_type"), nullable=False)
    action_type = db.Column(db.String(64), nullable=True)
    node_config = db.Column(db.JSON, nullable=False, default=dict)
    position_x = db.Column(db.Float, nullable=False, default=0)
    position_y = db.Column(db.Float, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<WorkflowNode {self.id} {self.node_type}>"


class WorkflowEdge(db.Model):
    """A directed, labelled connection between two nodes of one workflow."""

    __tablename__ = "workflow_edges"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_node_id = db.Column(
        db.Integer, db.ForeignKey("workflow_nodes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_node_id = db.Column(
        db.Integer, db.ForeignKey("workflow_nodes.id", ondelete="CASCADE"), nullable=False
    )
    edge_label = db.Column(
        db.Enum(*EDGE_LABELS, name="workflow_edge_label"), nullable=False, default="default"
    )
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<WorkflowEdge {self.source_node_id}->{self.target_node_id} {self.edge_label}>"
