"""Typed, read-only view of a workflow graph.

Node configuration is stored as free-form JSON. It is decoded exactly once,
when a graph is loaded, into one of the frozen config dataclasses below.
Configuration that cannot be decoded becomes an ``InvalidConfig`` which the
run coordinator turns into a malformed-graph failure when (and only when)
the node is reached.
"""
from __future__ import annotations

import heapq
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Union

from .catalog import ACTION_TYPES
from .errors import MalformedGraphError

DELAY_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}
DEFAULT_DELAY_VALUE = 1
DEFAULT_DELAY_UNIT = "hours"
MAX_DELAY = timedelta(days=3650)


@dataclass(frozen=True)
class TriggerConfig:
    pass


@dataclass(frozen=True)
class EndConfig:
    pass


@dataclass(frozen=True)
class DelayConfig:
    amount: float
    unit: str

    def duration(self) -> timedelta:
        return DELAY_UNITS[self.unit] * self.amount


@dataclass(frozen=True)
class ConditionConfig:
    field: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class ActionConfig:
    action_type: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InvalidConfig:
    reason: str


NodeConfig = Union[TriggerConfig, EndConfig, DelayConfig, ConditionConfig, ActionConfig, InvalidConfig]


def _decode_delay(raw: Mapping[str, Any]) -> NodeConfig:
    amount = raw.get("delay_value", raw.get("amount", DEFAULT_DELAY_VALUE))
    unit = raw.get("delay_unit", raw.get("unit", DEFAULT_DELAY_UNIT))

    if isinstance(amount, bool):
        return InvalidConfig(f"delay amount must be a number, got {amount!r}")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        return InvalidConfig(f"delay amount must be a number, got {amount!r}")
    if not math.isfinite(amount) or amount <= 0:
        return InvalidConfig("delay amount must be a positive, finite number")
    if not isinstance(unit, str) or unit not in DELAY_UNITS:
        return InvalidConfig(f"unknown delay unit {unit!r}")
    if amount * DELAY_UNITS[unit].total_seconds() > MAX_DELAY.total_seconds():
        return InvalidConfig(f"delay must not exceed {MAX_DELAY.days} days")
    return DelayConfig(amount=amount, unit=unit)


def _decode_condition(raw: Mapping[str, Any]) -> NodeConfig:
    field_name = raw.get("field")
    if not isinstance(field_name, str) or not field_name.strip():
        return InvalidConfig("condition field is required")
    operator = raw.get("operator")
    # Unknown operators are kept; they evaluate to false.
    return ConditionConfig(
        field=field_name.strip(),
        operator=operator if isinstance(operator, str) else "",
        value=raw.get("value"),
    )


def decode_node_config(
    node_type: str, action_type: str | None, raw: Mapping[str, Any] | None
) -> NodeConfig:
    """Decode the JSON configuration of a node into its typed variant."""

    raw = raw if isinstance(raw, Mapping) else {}

    if node_type == "trigger":
        return TriggerConfig()
    if node_type == "end":
        return EndConfig()
    if node_type == "delay":
        return _decode_delay(raw)
    if node_type == "condition":
        return _decode_condition(raw)
    if node_type == "action":
        if action_type not in ACTION_TYPES:
            return InvalidConfig(f"unknown action type {action_type!r}")
        return ActionConfig(action_type=action_type, params=dict(raw))
    return InvalidConfig(f"unknown node type {node_type!r}")


@dataclass(frozen=True)
class GraphNode:
    id: int
    node_type: str
    config: NodeConfig


@dataclass(frozen=True)
class GraphEdge:
    id: int
    source_id: int
    target_id: int
    label: str = "default"
    sort_order: int = 0


class WorkflowGraph:
    """Immutable snapshot of a workflow's nodes and edges."""

    def __init__(
        self,
        workflow_id: int,
        nodes: Iterable[GraphNode],
        edges: Iterable[GraphEdge],
    ) -> None:
        self.workflow_id = workflow_id
        self.nodes: dict[int, GraphNode] = {node.id: node for node in nodes}
        self._outgoing: dict[int, list[GraphEdge]] = {}
        self._incoming: dict[int, list[GraphEdge]] = {}
        for edge in sorted(edges, key=lambda e: (e.sort_order, e.id)):
            self._outgoing.setdefault(edge.source_id, []).append(edge)
            self._incoming.setdefault(edge.target_id, []).append(edge)

    @classmethod
    def from_rows(cls, workflow_id: int, node_rows: Iterable[Any], edge_rows: Iterable[Any]) -> WorkflowGraph:
        """Build a graph from ``WorkflowNode``/``WorkflowEdge`` rows."""

        nodes = [
            GraphNode(
                id=row.id,
                node_type=row.node_type,
                config=decode_node_config(row.node_type, row.action_type, row.node_config),
            )
            for row in node_rows
        ]
        edges = [
            GraphEdge(
                id=row.id,
                source_id=row.source_node_id,
                target_id=row.target_node_id,
                label=row.edge_label or "default",
                sort_order=row.sort_order or 0,
            )
            for row in edge_rows
        ]
        return cls(workflow_id, nodes, edges)

    def node(self, node_id: int) -> GraphNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise MalformedGraphError(
                f"node {node_id} does not belong to workflow {self.workflow_id}"
            ) from None

    def trigger_nodes(self) -> list[GraphNode]:
        return [node for node in self.nodes.values() if node.node_type == "trigger"]

    def trigger_node(self) -> GraphNode:
        triggers = self.trigger_nodes()
        if len(triggers) != 1:
            raise MalformedGraphError(
                f"workflow {self.workflow_id} must have exactly one trigger node, found {len(triggers)}"
            )
        return triggers[0]

    def outgoing(self, node_id: int, label: str | None = None) -> list[GraphEdge]:
        """Return outgoing edges ordered by ``sort_order``, optionally by label."""

        edges = self._outgoing.get(node_id, [])
        if label is None:
            return list(edges)
        return [edge for edge in edges if edge.label == label]

    def incoming(self, node_id: int) -> list[GraphEdge]:
        return list(self._incoming.get(node_id, []))

    def next_node(self, node_id: int, label: str = "default") -> GraphNode | None:
        """Return the target of the lowest-ordered edge with ``label``."""

        edges = self.outgoing(node_id, label)
        if not edges:
            return None
        return self.node(edges[0].target_id)


def _reachable(graph: WorkflowGraph, start: int) -> set[int]:
    seen: set[int] = set()
    stack = [start]
    while stack:
        node_id = stack.pop()
        if node_id in seen or node_id not in graph.nodes:
            continue
        seen.add(node_id)
        stack.extend(edge.target_id for edge in graph.outgoing(node_id))
    return seen


def _has_cycle(graph: WorkflowGraph, node_ids: set[int]) -> bool:
    indegree = {node_id: 0 for node_id in node_ids}
    for node_id in node_ids:
        for edge in graph.outgoing(node_id):
            if edge.target_id in indegree:
                indegree[edge.target_id] += 1

    heap = [node_id for node_id, degree in indegree.items() if degree == 0]
    heapq.heapify(heap)
    ordered = 0
    while heap:
        node_id = heapq.heappop(heap)
        ordered += 1
        for edge in graph.outgoing(node_id):
            if edge.target_id not in indegree:
                continue
            indegree[edge.target_id] -= 1
            if indegree[edge.target_id] == 0:
                heapq.heappush(heap, edge.target_id)
    return ordered != len(node_ids)


def _expect_edges(
    graph: WorkflowGraph, node: GraphNode, errors: list[str], *, minimum: int, maximum: int
) -> None:
    edges = graph.outgoing(node.id)
    if not minimum <= len(edges) <= maximum:
        if minimum == maximum:
            expected = str(minimum)
        else:
            expected = f"{minimum}-{maximum}"
        errors.append(
            f"{node.node_type} node {node.id} must have {expected} outgoing edge(s), has {len(edges)}"
        )
    for edge in edges:
        if edge.label != "default":
            errors.append(f"{node.node_type} node {node.id} has non-default edge {edge.id}")


def validate_graph(graph: WorkflowGraph) -> list[str]:
    """Return a list of structural problems; an empty list means the graph is valid."""

    errors: list[str] = []

    triggers = graph.trigger_nodes()
    if len(triggers) != 1:
        errors.append(f"workflow must have exactly one trigger node, found {len(triggers)}")

    for node in graph.nodes.values():
        if isinstance(node.config, InvalidConfig):
            errors.append(f"node {node.id}: {node.config.reason}")

        for edge in graph.outgoing(node.id):
            if edge.target_id not in graph.nodes:
                errors.append(f"edge {edge.id} points to unknown node {edge.target_id}")

        if node.node_type == "trigger":
            if graph.incoming(node.id):
                errors.append(f"trigger node {node.id} must not have incoming edges")
            _expect_edges(graph, node, errors, minimum=1, maximum=1)
        elif node.node_type == "delay":
            _expect_edges(graph, node, errors, minimum=1, maximum=1)
        elif node.node_type == "action":
            _expect_edges(graph, node, errors, minimum=0, maximum=1)
        elif node.node_type == "end":
            _expect_edges(graph, node, errors, minimum=0, maximum=0)
        elif node.node_type == "condition":
            labels = sorted(edge.label for edge in graph.outgoing(node.id))
            if labels != ["false", "true"]:
                errors.append(
                    f"condition node {node.id} needs exactly one 'true' and one 'false' edge"
                )

    if len(triggers) == 1 and _has_cycle(graph, _reachable(graph, triggers[0].id)):
        errors.append("cycle detected in workflow graph")

    return errors
