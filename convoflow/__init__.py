"""Convoflow: conversational workflow orchestration."""

from .contracts import (
    InfoRequirement,
    Workflow,
    WorkflowContext,
    WorkflowError,
    WorkflowStatus,
    WorkflowTemplate,
)
from .engine import WorkflowEngine
from .execute import RunOutcome, RunStatus, WorkflowRunner
from .persistence import get_repository
from .providers import ActionRequest, ActionResult, InMemoryActionExecutor
from .registry import TemplateRegistry, seed_templates

__version__ = "0.1.0"
__all__ = [
    "ActionRequest",
    "ActionResult",
    "InMemoryActionExecutor",
    "InfoRequirement",
    "RunOutcome",
    "RunStatus",
    "TemplateRegistry",
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowRunner",
    "WorkflowStatus",
    "WorkflowTemplate",
    "get_repository",
    "seed_templates",
]
