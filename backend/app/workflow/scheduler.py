"""Scheduler / poller resuming runs suspended at delay nodes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from flask import current_app

from ..models.run import RUN_FAILED, RUN_SUCCESS
from ..utils.clock import utcnow
from .errors import MalformedGraphError, WorkflowExecutionError
from .runner import RunCoordinator, build_coordinator
from .store import GraphStore, RunStore, StepStore


class StepProcessingError(WorkflowExecutionError):
    """Raised when resuming a scheduled step leaves its run failed."""


@dataclass
class PollResult:
    processed: int
    errors: int
    skipped: int
    purged: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "purged": self.purged,
            "timestamp": self.timestamp.isoformat() + "Z",
        }


def _resume(step, now: datetime, graphs: GraphStore, runs: RunStore, coordinator: RunCoordinator) -> None:
    run = runs.get(step.workflow_run_id)
    if run is None:
        raise WorkflowExecutionError(f"workflow run {step.workflow_run_id} not found")
    if run.status in (RUN_SUCCESS, RUN_FAILED):
        current_app.logger.warning(
            "Run %s is already %s; nothing to resume for step %s", run.id, run.status, step.id
        )
        return
    if run.workflow_id is None:
        raise MalformedGraphError(f"workflow of run {run.id} no longer exists")

    graph = graphs.load(run.workflow_id)
    if step.node_id not in graph.nodes:
        raise MalformedGraphError(f"delay node {step.node_id} no longer exists")

    edges = graph.outgoing(step.node_id)
    if not edges:
        # The delay was the last node of the run.
        run.status = RUN_SUCCESS
        run.current_node_id = None
        run.completed_at = now
        runs.save(run)
        return

    coordinator.advance(run, graph, edges[0].target_id, context=step.payload or {})
    if run.status == RUN_FAILED:
        raise StepProcessingError(run.error_message or "run failed")


def _fail_step(step, reason: str, now: datetime, runs: RunStore, steps: StepStore) -> None:
    steps.fail(step, reason, now)

    run = runs.get(step.workflow_run_id)
    if run is None:
        return
    run.status = RUN_FAILED
    run.error_message = f"Scheduled step failed: {reason}"
    run.current_node_id = None
    run.completed_at = now
    runs.save(run)
    runs.log("scheduler", {"step": step.id, "status": "failed", "error": reason}, run_id=run.id)


def process_scheduled_steps(
    now: datetime | None = None,
    *,
    batch_size: int | None = None,
    retention_days: int | None = None,
    graphs: GraphStore | None = None,
    runs: RunStore | None = None,
    steps: StepStore | None = None,
    coordinator: RunCoordinator | None = None,
) -> PollResult:
    """Resume due scheduled steps and purge old completed ones.

    Each step is claimed with a conditional update first; steps claimed by a
    concurrent poller are skipped. Failures are recorded on the step and its
    run and are never retried.
    """

    now = now or utcnow()
    batch_size = batch_size or int(current_app.config.get("SCHEDULER_BATCH_SIZE", 50))
    if retention_days is None:
        retention_days = int(current_app.config.get("STEP_RETENTION_DAYS", 7))
    graphs = graphs or GraphStore()
    runs = runs or RunStore()
    steps = steps or StepStore()
    coordinator = coordinator or build_coordinator(clock=lambda: now)

    due = steps.due(now, batch_size)
    current_app.logger.info("Found %s due scheduled step(s)", len(due))

    processed = errors = skipped = 0
    for step in due:
        if not steps.claim(step):
            skipped += 1
            continue

        try:
            _resume(step, now, graphs, runs, coordinator)
        except WorkflowExecutionError as exc:
            _fail_step(step, str(exc), now, runs, steps)
            errors += 1
            continue
        except Exception as exc:
            current_app.logger.exception("Error processing scheduled step %s", step.id)
            _fail_step(step, str(exc) or type(exc).__name__, now, runs, steps)
            errors += 1
            continue

        steps.complete(step, now)
        runs.log("scheduler", {"step": step.id, "status": "completed"}, run_id=step.workflow_run_id)
        processed += 1

    purged = steps.purge_completed(now - timedelta(days=retention_days))

    current_app.logger.info(
        "Scheduler pass finished: processed=%s errors=%s skipped=%s purged=%s",
        processed,
        errors,
        skipped,
        purged,
    )
    return PollResult(
        processed=processed, errors=errors, skipped=skipped, purged=purged, timestamp=now
    )
