"""Durable execution state: workflow runs and their scheduled resumptions."""

from __future__ import annotations

from datetime import datetime

from ..extensions import db

RUN_PENDING = "pending"
RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_STATUSES = (RUN_PENDING, RUN_RUNNING, RUN_SUCCESS, RUN_FAILED)

STEP_PENDING = "pending"
STEP_PROCESSING = "processing"
STEP_COMPLETED = "completed"
STEP_FAILED = "failed"
STEP_STATUSES = (STEP_PENDING, STEP_PROCESSING, STEP_COMPLETED, STEP_FAILED)


class WorkflowRun(db.Model):
    """One execution of a workflow for one trigger occurrence."""

    __tablename__ = "workflow_runs"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True, index=True
    )
    trigger_event = db.Column(db.String(64), nullable=False)
    trigger_payload = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.Enum(*RUN_STATUSES, name="workflow_run_status"), nullable=False, default=RUN_PENDING
    )
    current_node_id = db.Column(db.Integer, nullable=True)
    execution_path = db.Column(db.JSON, nullable=False, default=list)
    error_message = db.Column(db.Text, nullable=True)
    is_test = db.Column(db.Boolean, nullable=False, default=False)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    steps = db.relationship(
        "ScheduledWorkflowStep",
        backref="run",
        cascade="all, delete-orphan",
        order_by="ScheduledWorkflowStep.scheduled_for",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (RUN_SUCCESS, RUN_FAILED)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<WorkflowRun {self.id} {self.status}>"


class ScheduledWorkflowStep(db.Model):
    """A suspension created by a delay node, resumed by the scheduler."""

    __tablename__ = "scheduled_workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # The delay node that suspended the run, not the node to resume at.
    node_id = db.Column(db.Integer, nullable=False)
    scheduled_for = db.Column(db.DateTime, nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.Enum(*STEP_STATUSES, name="scheduled_step_status"),
        nullable=False,
        default=STEP_PENDING,
        index=True,
    )
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<ScheduledWorkflowStep {self.id} run={self.workflow_run_id} {self.status}>"
