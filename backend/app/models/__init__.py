"""Database models for the gallery workflow engine."""

from .logs import RunLog
from .run import ScheduledWorkflowStep, WorkflowRun
from .workflow import Workflow, WorkflowEdge, WorkflowNode

__all__ = [
    "RunLog",
    "ScheduledWorkflowStep",
    "Workflow",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowRun",
]
