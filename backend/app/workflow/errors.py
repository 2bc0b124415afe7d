"""Exceptions raised while executing workflow runs."""
from __future__ import annotations


class WorkflowExecutionError(Exception):
    """Raised when a workflow run cannot continue."""


class MalformedGraphError(WorkflowExecutionError):
    """The graph lacks an edge or node configuration the run needs."""


class GraphCycleError(MalformedGraphError):
    """A single burst visited more nodes than allowed."""


class ActionDispatchError(WorkflowExecutionError):
    """An action node's side effect reported failure."""


class SchedulingError(WorkflowExecutionError):
    """A delay suspension could not be persisted."""


class TransientActionError(Exception):
    """Raised by action handlers for failures that may succeed when retried."""
