"""SQLAlchemy backed repositories used by the engine.

The run coordinator and the scheduler only talk to these three narrow
stores, never to the session directly, so they can run against in-memory
fakes in tests.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.run import (
    RUN_PENDING,
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_PENDING,
    STEP_PROCESSING,
    ScheduledWorkflowStep,
    WorkflowRun,
)
from ..models.workflow import Workflow, WorkflowEdge, WorkflowNode
from .graph import WorkflowGraph
from .runlog import persist_run_log


class GraphStore:
    """Read-only access to workflows and their graphs."""

    def active_workflows(self, event: str) -> list[Workflow]:
        return (
            Workflow.query.filter(Workflow.trigger_event == event)
            .filter(Workflow.is_active.is_(True))
            .order_by(Workflow.id.asc())
            .all()
        )

    def get_workflow(self, workflow_id: int) -> Workflow | None:
        return db.session.get(Workflow, workflow_id)

    def load(self, workflow_id: int) -> WorkflowGraph:
        nodes = WorkflowNode.query.filter_by(workflow_id=workflow_id).all()
        edges = WorkflowEdge.query.filter_by(workflow_id=workflow_id).all()
        return WorkflowGraph.from_rows(workflow_id, nodes, edges)


class RunStore:
    """Creation and persistence of workflow runs."""

    def create(
        self,
        workflow: Workflow,
        event: str,
        payload: dict[str, Any],
        current_node_id: int | None,
        *,
        is_test: bool = False,
    ) -> WorkflowRun:
        run = WorkflowRun(
            workflow_id=workflow.id,
            trigger_event=event,
            trigger_payload=dict(payload),
            status=RUN_PENDING,
            current_node_id=current_node_id,
            execution_path=[],
            is_test=is_test,
        )
        db.session.add(run)
        db.session.commit()
        return run

    def get(self, run_id: int) -> WorkflowRun | None:
        return db.session.get(WorkflowRun, run_id)

    def save(self, run: WorkflowRun) -> None:
        try:
            db.session.add(run)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def log(self, source: str, message: str | dict[str, Any], run_id: int | None = None) -> None:
        persist_run_log(source, message, run_id=run_id)


class StepStore:
    """Scheduled workflow steps: creation, claiming and termination."""

    def create(
        self,
        run: WorkflowRun,
        node_id: int,
        scheduled_for: datetime,
        payload: dict[str, Any],
    ) -> ScheduledWorkflowStep:
        step = ScheduledWorkflowStep(
            workflow_run_id=run.id,
            node_id=node_id,
            scheduled_for=scheduled_for,
            payload=dict(payload),
            status=STEP_PENDING,
        )
        try:
            db.session.add(step)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return step

    def due(self, now: datetime, limit: int) -> list[ScheduledWorkflowStep]:
        return (
            ScheduledWorkflowStep.query.filter(ScheduledWorkflowStep.status == STEP_PENDING)
            .filter(ScheduledWorkflowStep.scheduled_for <= now)
            .order_by(ScheduledWorkflowStep.scheduled_for.asc(), ScheduledWorkflowStep.id.asc())
            .limit(limit)
            .all()
        )

    def claim(self, step: ScheduledWorkflowStep) -> bool:
        """Move ``pending -> processing`` in a single conditional write.

        Returns ``False`` when another poller claimed the step first.
        """

        result = db.session.execute(
            update(ScheduledWorkflowStep)
            .where(ScheduledWorkflowStep.id == step.id)
            .where(ScheduledWorkflowStep.status == STEP_PENDING)
            .values(status=STEP_PROCESSING)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        claimed = result.rowcount == 1
        db.session.refresh(step)
        return claimed

    def complete(self, step: ScheduledWorkflowStep, now: datetime) -> None:
        step.status = STEP_COMPLETED
        step.processed_at = now
        db.session.commit()

    def fail(self, step: ScheduledWorkflowStep, error: str, now: datetime) -> None:
        db.session.rollback()
        step.status = STEP_FAILED
        step.error_message = error
        step.processed_at = now
        db.session.commit()

    def for_run(self, run_id: int) -> list[ScheduledWorkflowStep]:
        return db.session.scalars(
            select(ScheduledWorkflowStep)
            .where(ScheduledWorkflowStep.workflow_run_id == run_id)
            .order_by(ScheduledWorkflowStep.scheduled_for.asc())
        ).all()

    def purge_completed(self, before: datetime) -> int:
        result = db.session.execute(
            delete(ScheduledWorkflowStep)
            .where(ScheduledWorkflowStep.status == STEP_COMPLETED)
            .where(ScheduledWorkflowStep.processed_at < before)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount or 0
