"""Trigger dispatcher: turns a domain event into workflow runs."""
from __future__ import annotations

from typing import Any

from flask import current_app

from ..models.run import WorkflowRun
from ..models.workflow import Workflow
from .errors import MalformedGraphError
from .runner import RunCoordinator, build_coordinator
from .store import GraphStore, RunStore


def _start_run(
    workflow: Workflow,
    event: str,
    payload: dict[str, Any],
    *,
    is_test: bool,
    graphs: GraphStore,
    runs: RunStore,
    coordinator: RunCoordinator,
) -> WorkflowRun:
    graph = graphs.load(workflow.id)
    try:
        trigger = graph.trigger_node()
    except MalformedGraphError as exc:
        run = runs.create(workflow, event, payload, None, is_test=is_test)
        coordinator.fail(run, str(exc))
        return run

    run = runs.create(workflow, event, payload, trigger.id, is_test=is_test)
    runs.log(
        "trigger",
        {"event": event, "workflow_id": workflow.id, "workflow": workflow.name, "test": is_test},
        run_id=run.id,
    )
    return coordinator.advance(run, graph, trigger.id)


def dispatch_trigger(
    event: str,
    payload: dict[str, Any] | None,
    *,
    graphs: GraphStore | None = None,
    runs: RunStore | None = None,
    coordinator: RunCoordinator | None = None,
) -> list[WorkflowRun]:
    """Start one run for every active workflow listening on ``event``.

    No matching workflow is not an error; an empty list is returned.
    """

    graphs = graphs or GraphStore()
    runs = runs or RunStore()
    coordinator = coordinator or build_coordinator()
    payload = dict(payload or {})

    workflows = graphs.active_workflows(event)
    current_app.logger.info("Event %s matched %s active workflow(s)", event, len(workflows))

    return [
        _start_run(
            workflow,
            event,
            payload,
            is_test=False,
            graphs=graphs,
            runs=runs,
            coordinator=coordinator,
        )
        for workflow in workflows
    ]


def start_test_run(
    workflow: Workflow,
    payload: dict[str, Any] | None,
    *,
    graphs: GraphStore | None = None,
    runs: RunStore | None = None,
    coordinator: RunCoordinator | None = None,
) -> WorkflowRun:
    """Run ``workflow`` once as a dry run, active or not.

    Actions are recorded but not dispatched and delays do not suspend.
    """

    return _start_run(
        workflow,
        workflow.trigger_event,
        dict(payload or {}),
        is_test=True,
        graphs=graphs or GraphStore(),
        runs=runs or RunStore(),
        coordinator=coordinator or build_coordinator(),
    )
