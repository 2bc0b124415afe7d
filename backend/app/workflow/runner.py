"""Run coordinator: advances a workflow run one node at a time."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from flask import current_app

from ..models.run import RUN_FAILED, RUN_RUNNING, RUN_SUCCESS
from ..utils.clock import utcnow
from .actions import ActionDispatcher, ActionResult, get_dispatcher
from .conditions import evaluate_condition
from .errors import (
    ActionDispatchError,
    GraphCycleError,
    MalformedGraphError,
    SchedulingError,
    WorkflowExecutionError,
)
from .graph import ActionConfig, ConditionConfig, DelayConfig, GraphNode, InvalidConfig, WorkflowGraph
from .store import RunStore, StepStore


TConfig = TypeVar("TConfig")


def _typed_config(node: GraphNode, expected: type[TConfig]) -> TConfig:
    if not isinstance(node.config, expected):
        raise MalformedGraphError(
            f"{node.node_type} node {node.id} has {type(node.config).__name__}, expected {expected.__name__}"
        )
    return node.config


class RunCoordinator:
    """State machine executing a run's nodes until it suspends or terminates.

    A burst starts at ``node_id`` and follows edges synchronously. It ends
    when a delay node persists a scheduled step, when an end node (or an
    action without outgoing edge) completes the run, or when any node fails.
    Failures are recorded on the run; they are never raised to the caller.
    """

    def __init__(
        self,
        runs: RunStore,
        steps: StepStore,
        dispatcher: ActionDispatcher,
        *,
        max_nodes_per_burst: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.runs = runs
        self.steps = steps
        self.dispatcher = dispatcher
        self.max_nodes_per_burst = max_nodes_per_burst
        self.clock = clock

    def advance(
        self,
        run: Any,
        graph: WorkflowGraph,
        node_id: int,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Execute ``node_id`` and everything reachable without suspension."""

        if run.status in (RUN_SUCCESS, RUN_FAILED):
            current_app.logger.warning(
                "Run %s is already %s; not advancing to node %s", run.id, run.status, node_id
            )
            return run

        context = dict(run.trigger_payload or {}) if context is None else dict(context)
        run.status = RUN_RUNNING

        visited = 0
        try:
            node: GraphNode | None = graph.node(node_id)
            while node is not None:
                visited += 1
                if visited > self.max_nodes_per_burst:
                    raise GraphCycleError(
                        f"graph cycle suspected: more than {self.max_nodes_per_burst} nodes in one burst"
                    )
                run.current_node_id = node.id
                node = self._execute(run, graph, node, context)
        except WorkflowExecutionError as exc:
            self.fail(run, str(exc))
        except Exception as exc:
            current_app.logger.exception("Unexpected error while advancing run %s", run.id)
            self.fail(run, f"unexpected error: {exc}")

        return run

    def _execute(
        self, run: Any, graph: WorkflowGraph, node: GraphNode, context: dict[str, Any]
    ) -> GraphNode | None:
        if isinstance(node.config, InvalidConfig):
            raise MalformedGraphError(f"{node.node_type} node {node.id}: {node.config.reason}")

        if node.node_type == "trigger":
            return self._execute_trigger(run, graph, node)
        if node.node_type == "action":
            return self._execute_action(run, graph, node, context)
        if node.node_type == "condition":
            return self._execute_condition(run, graph, node, context)
        if node.node_type == "delay":
            return self._execute_delay(run, graph, node, context)
        if node.node_type == "end":
            self._visit(run, node, {"status": "completed"})
            self._complete(run)
            return None
        raise MalformedGraphError(f"unknown node type {node.node_type!r}")

    def _execute_trigger(self, run: Any, graph: WorkflowGraph, node: GraphNode) -> GraphNode:
        next_node = graph.next_node(node.id, "default")
        if next_node is None:
            raise MalformedGraphError(f"trigger node {node.id} has no outgoing edge")
        self._visit(run, node, {"status": "completed"})
        return next_node

    def _execute_action(
        self, run: Any, graph: WorkflowGraph, node: GraphNode, context: dict[str, Any]
    ) -> GraphNode | None:
        config = _typed_config(node, ActionConfig)

        if run.is_test:
            result = ActionResult(success=True)
            details: dict[str, Any] = {"status": "skipped", "action_type": config.action_type}
        else:
            result = self.dispatcher.dispatch(
                config.action_type,
                config.params,
                context,
                idempotency_key=f"{run.id}:{node.id}:{len(run.execution_path or [])}",
                run_id=run.id,
            )
            details = {"status": "completed", "action_type": config.action_type}

        if not result.success:
            raise ActionDispatchError(result.error or f"action {config.action_type} failed")

        context.update(result.context_updates or {})
        self._visit(run, node, details)

        next_node = graph.next_node(node.id, "default")
        if next_node is None:
            self._complete(run)
        return next_node

    def _execute_condition(
        self, run: Any, graph: WorkflowGraph, node: GraphNode, context: dict[str, Any]
    ) -> GraphNode:
        config = _typed_config(node, ConditionConfig)

        result = evaluate_condition(config.field, config.operator, config.value, context)
        branch = "true" if result else "false"
        next_node = graph.next_node(node.id, branch)
        if next_node is None:
            raise MalformedGraphError(f"condition node {node.id} has no '{branch}' edge")

        self._visit(
            run,
            node,
            {
                "status": "completed",
                "field": config.field,
                "operator": config.operator,
                "value": config.value,
                "result": result,
            },
        )
        return next_node

    def _execute_delay(
        self, run: Any, graph: WorkflowGraph, node: GraphNode, context: dict[str, Any]
    ) -> GraphNode | None:
        config = _typed_config(node, DelayConfig)

        if run.is_test:
            self._visit(run, node, {"status": "skipped", "delay": f"{config.amount:g} {config.unit}"})
            next_node = graph.next_node(node.id, "default")
            if next_node is None:
                self._complete(run)
            return next_node

        scheduled_for = self.clock() + config.duration()
        try:
            self.steps.create(run, node.id, scheduled_for, context)
        except Exception as exc:
            raise SchedulingError(f"could not schedule delay node {node.id}: {exc}") from exc

        self._visit(
            run, node, {"status": "waiting", "scheduled_for": scheduled_for.isoformat()}
        )
        return None

    def _visit(self, run: Any, node: GraphNode, details: dict[str, Any]) -> None:
        run.execution_path = [*(run.execution_path or []), node.id]
        self.runs.save(run)
        self.runs.log(
            "engine",
            {"node": node.id, "node_type": node.node_type, **details},
            run_id=run.id,
        )

    def _complete(self, run: Any) -> None:
        run.status = RUN_SUCCESS
        run.current_node_id = None
        run.completed_at = self.clock()
        self.runs.save(run)
        current_app.logger.info("Workflow run %s completed", run.id)

    def fail(self, run: Any, message: str) -> None:
        """Terminate ``run`` as failed with ``message``."""

        run.status = RUN_FAILED
        run.error_message = message
        run.current_node_id = None
        run.completed_at = self.clock()
        self.runs.save(run)
        self.runs.log("engine", {"status": "failed", "error": message}, run_id=run.id)
        current_app.logger.warning("Workflow run %s failed: %s", run.id, message)


def build_coordinator(clock: Callable[[], datetime] | None = None) -> RunCoordinator:
    """Create a coordinator wired to the SQL stores and the app's dispatcher."""

    return RunCoordinator(
        RunStore(),
        StepStore(),
        get_dispatcher(),
        max_nodes_per_burst=int(current_app.config.get("MAX_NODES_PER_BURST", 100)),
        clock=clock or utcnow,
    )
