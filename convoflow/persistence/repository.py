"""Repository abstraction for workflow engine persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import TaskStatus, WorkflowStatus
from .models import (
    DependencyRecord,
    ExecutionRecord,
    LearningRecord,
    TaskRecord,
    TemplateRecord,
    WorkflowRecord,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every method is an atomic single-row (or single-query) operation; the
    engine composes them without cross-call transactions.
    """

    # -- templates -------------------------------------------------------
    async def save_template(self, template: TemplateRecord) -> None:
        """Insert or replace a catalog template."""

    async def get_template(self, template_id: str) -> TemplateRecord | None:
        """Retrieve a template by id."""

    async def list_templates(
        self, category: Optional[str] = None, active_only: bool = True
    ) -> list[TemplateRecord]:
        """Return templates ordered by success rate, best first."""

    async def update_template_success_rate(self, template_id: str, rate: float) -> None:
        """Persist a recomputed rolling success rate."""

    # -- workflows -------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> None:
        """Persist a new workflow row."""

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        """Retrieve the workflow by id."""

    async def list_workflows(
        self, template_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        """Return workflows, oldest first, optionally for one template."""

    async def count_workflows(self, template_id: str) -> int:
        """Number of workflows ever run against ``template_id``."""

    async def update_workflow_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        at: datetime,
        failure_reason: Optional[str] = None,
    ) -> None:
        """Set the status, stamping started/completed times as appropriate."""

    # -- tasks -----------------------------------------------------------
    async def create_task(self, task: TaskRecord) -> None:
        """Persist a new task row."""

    async def get_task(self, task_id: str) -> TaskRecord | None:
        """Retrieve a task by id."""

    async def list_tasks(
        self, workflow_id: str, statuses: Optional[list[TaskStatus]] = None
    ) -> list[TaskRecord]:
        """Return tasks of a workflow in creation order."""

    async def mark_task_started(self, task_id: str, at: datetime) -> bool:
        """Move a ``pending`` task to ``active``.

        The status is compared and set in one step; returns ``False`` when
        the task was not pending, e.g. another resolver claimed it first.
        """

    async def mark_task_completed(
        self,
        task_id: str,
        data: dict[str, Any],
        at: datetime,
        duration_ms: Optional[int] = None,
    ) -> None:
        """Move a task to ``completed`` storing the collected data."""

    async def mark_task_failed(self, task_id: str, error: str, at: datetime) -> None:
        """Move a task to ``failed``."""

    # -- dependencies ----------------------------------------------------
    async def create_dependency(self, dependency: DependencyRecord) -> None:
        """Persist a dependency edge."""

    async def list_dependencies(self, task_id: str) -> list[DependencyRecord]:
        """Edges leaving ``task_id``."""

    async def list_workflow_dependencies(
        self, workflow_id: str
    ) -> list[DependencyRecord]:
        """All edges between tasks of a workflow."""

    # -- execution log ---------------------------------------------------
    async def log_execution(self, entry: ExecutionRecord) -> None:
        """Append an execution log entry."""

    async def list_executions(
        self, workflow_id: str, action: Optional[str] = None
    ) -> list[ExecutionRecord]:
        """Entries of a workflow in insertion order."""

    # -- learning --------------------------------------------------------
    async def find_pattern(
        self, template_id: str, pattern_type: str, pattern_data: dict[str, Any]
    ) -> LearningRecord | None:
        """Return the pattern row with identical payload, if any."""

    async def save_pattern(self, pattern: LearningRecord) -> None:
        """Insert a new pattern row."""

    async def update_pattern(self, pattern: LearningRecord) -> None:
        """Overwrite score, counters and observation time of a pattern."""

    async def list_patterns(
        self,
        template_id: str,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[LearningRecord]:
        """Patterns of a template ordered by confidence, best first."""
