"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..contracts import TaskStatus, WorkflowStatus
from .models import (
    DependencyRecord,
    ExecutionRecord,
    LearningRecord,
    TaskRecord,
    TemplateRecord,
    WorkflowRecord,
    canonical_json,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._templates: Dict[str, TemplateRecord] = {}
        self._workflows: Dict[str, WorkflowRecord] = {}
        self._tasks: Dict[str, TaskRecord] = {}
        self._dependencies: List[DependencyRecord] = []
        self._executions: List[ExecutionRecord] = []
        self._patterns: Dict[str, LearningRecord] = {}
        self._execution_id = 0

    # ------------------------------------------------------------------
    async def save_template(self, template: TemplateRecord) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> TemplateRecord | None:
        tpl = self._templates.get(template_id)
        return tpl.model_copy(deep=True) if tpl else None

    async def list_templates(
        self, category: Optional[str] = None, active_only: bool = True
    ) -> list[TemplateRecord]:
        templates = [
            t
            for t in self._templates.values()
            if (category is None or t.category == category)
            and (not active_only or t.is_active)
        ]
        templates.sort(key=lambda t: t.success_rate, reverse=True)
        return [t.model_copy(deep=True) for t in templates]

    async def update_template_success_rate(self, template_id: str, rate: float) -> None:
        tpl = self._templates.get(template_id)
        if tpl:
            tpl.success_rate = rate

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self, template_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if template_id is None or wf.template_id == template_id
        ]

    async def count_workflows(self, template_id: str) -> int:
        return sum(1 for wf in self._workflows.values() if wf.template_id == template_id)

    async def update_workflow_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        at: datetime,
        failure_reason: Optional[str] = None,
    ) -> None:
        wf = self._workflows.get(workflow_id)
        if not wf:
            return
        wf.status = status
        if status is WorkflowStatus.ACTIVE and wf.started_at is None:
            wf.started_at = at
        if status.is_terminal:
            wf.completed_at = at
            wf.failure_reason = failure_reason

    # ------------------------------------------------------------------
    async def create_task(self, task: TaskRecord) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> TaskRecord | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(
        self, workflow_id: str, statuses: Optional[list[TaskStatus]] = None
    ) -> list[TaskRecord]:
        tasks = [
            t
            for t in self._tasks.values()
            if t.workflow_id == workflow_id and (statuses is None or t.status in statuses)
        ]
        tasks.sort(key=lambda t: (t.created_at, t.sequence))
        return [t.model_copy(deep=True) for t in tasks]

    async def mark_task_started(self, task_id: str, at: datetime) -> bool:
        task = self._tasks.get(task_id)
        if task is None or task.status is not TaskStatus.PENDING:
            return False
        task.status = TaskStatus.ACTIVE
        task.started_at = at
        return True

    async def mark_task_completed(
        self,
        task_id: str,
        data: dict[str, Any],
        at: datetime,
        duration_ms: Optional[int] = None,
    ) -> None:
        task = self._tasks.get(task_id)
        if task:
            task.status = TaskStatus.COMPLETED
            task.completed_at = at
            task.duration_ms = duration_ms
            task.data_collected = dict(data)

    async def mark_task_failed(self, task_id: str, error: str, at: datetime) -> None:
        task = self._tasks.get(task_id)
        if task:
            task.status = TaskStatus.FAILED
            task.completed_at = at
            task.error = error

    # ------------------------------------------------------------------
    async def create_dependency(self, dependency: DependencyRecord) -> None:
        self._dependencies.append(dependency.model_copy(deep=True))

    async def list_dependencies(self, task_id: str) -> list[DependencyRecord]:
        return [d.model_copy() for d in self._dependencies if d.task_id == task_id]

    async def list_workflow_dependencies(
        self, workflow_id: str
    ) -> list[DependencyRecord]:
        task_ids = {t.id for t in self._tasks.values() if t.workflow_id == workflow_id}
        return [d.model_copy() for d in self._dependencies if d.task_id in task_ids]

    # ------------------------------------------------------------------
    async def log_execution(self, entry: ExecutionRecord) -> None:
        self._execution_id += 1
        self._executions.append(entry.model_copy(update={"id": self._execution_id}, deep=True))

    async def list_executions(
        self, workflow_id: str, action: Optional[str] = None
    ) -> list[ExecutionRecord]:
        return [
            e.model_copy(deep=True)
            for e in self._executions
            if e.workflow_id == workflow_id and (action is None or e.action == action)
        ]

    # ------------------------------------------------------------------
    async def find_pattern(
        self, template_id: str, pattern_type: str, pattern_data: dict[str, Any]
    ) -> LearningRecord | None:
        wanted = canonical_json(pattern_data)
        for pattern in self._patterns.values():
            if (
                pattern.template_id == template_id
                and pattern.pattern_type == pattern_type
                and canonical_json(pattern.pattern_data) == wanted
            ):
                return pattern.model_copy(deep=True)
        return None

    async def save_pattern(self, pattern: LearningRecord) -> None:
        self._patterns[pattern.id] = pattern.model_copy(deep=True)

    async def update_pattern(self, pattern: LearningRecord) -> None:
        if pattern.id in self._patterns:
            self._patterns[pattern.id] = pattern.model_copy(deep=True)

    async def list_patterns(
        self,
        template_id: str,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[LearningRecord]:
        patterns = [
            p
            for p in self._patterns.values()
            if p.template_id == template_id
            and (min_confidence is None or p.confidence_score >= min_confidence)
        ]
        patterns.sort(key=lambda p: p.confidence_score, reverse=True)
        if limit is not None:
            patterns = patterns[:limit]
        return [p.model_copy(deep=True) for p in patterns]
