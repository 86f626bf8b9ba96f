"""Resolve and progress the runnable tasks of a workflow."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .contracts import DependencyType, TaskNotFoundError, TaskStatus, utcnow
from .persistence import ExecutionRecord, TaskRecord, WorkflowRepository
from .providers import TaskBoard

logger = logging.getLogger(__name__)

_UNFINISHED = (TaskStatus.PENDING, TaskStatus.ACTIVE)


class TaskScheduler:
    """Stateless next-task resolver.

    Every call re-reads the store; nothing about a workflow is cached
    between calls.
    """

    def __init__(
        self, repository: WorkflowRepository, task_board: Optional[TaskBoard] = None
    ) -> None:
        self._repository = repository
        self._task_board = task_board

    async def get_next_task(self, workflow_id: str) -> TaskRecord | None:
        """Return the first unfinished task whose blocking deps are completed.

        An activated task stays the next task until it is completed or
        failed. Returns ``None`` when the workflow is finished or every
        remaining task is blocked.
        """

        tasks = await self._repository.list_tasks(workflow_id)
        status = {t.id: t.status for t in tasks}

        for task in tasks:
            if task.status not in _UNFINISHED:
                continue
            try:
                deps = await self._repository.list_dependencies(task.id)
            except Exception as exc:
                logger.warning(
                    f"Error fetching dependencies of {task.id}, assuming none: {exc}"
                )
                deps = []
            blocked = any(
                dep.dependency_type is DependencyType.BLOCKS
                and status.get(dep.depends_on_task_id) is not TaskStatus.COMPLETED
                for dep in deps
            )
            if not blocked:
                return task
        return None

    async def activate_task(self, task_id: str) -> TaskRecord:
        task = await self._repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status is not TaskStatus.PENDING:
            return task
        if await self._repository.mark_task_started(task_id, utcnow()):
            await self._mirror(task_id, "in_progress")
            await self._log(task.workflow_id, task_id, "task_started")
        else:
            logger.info(f"Task {task_id} was already claimed")
        return await self._repository.get_task(task_id)

    async def complete_task(
        self, task_id: str, data: Optional[Dict[str, Any]] = None
    ) -> None:
        task = await self._repository.get_task(task_id)
        if task is None:
            logger.warning(f"Cannot complete unknown task {task_id}")
            return

        completed_at = utcnow()
        duration_ms = (
            int((completed_at - task.started_at).total_seconds() * 1000)
            if task.started_at
            else None
        )
        await self._repository.mark_task_completed(
            task_id, data or {}, completed_at, duration_ms
        )
        await self._mirror(task_id, "completed")
        await self._log(
            task.workflow_id,
            task_id,
            "task_completed",
            {"data": data or {}, "duration": duration_ms},
        )
        logger.info(f"Task {task.step_id} of workflow {task.workflow_id} completed")

    async def fail_task(self, task_id: str, error: str) -> None:
        task = await self._repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        await self._repository.mark_task_failed(task_id, error, utcnow())
        await self._mirror(task_id, "failed")
        await self._log(task.workflow_id, task_id, "task_failed", {"error": error})
        logger.warning(f"Task {task.step_id} of workflow {task.workflow_id} failed: {error}")

    async def is_finished(self, workflow_id: str) -> bool:
        tasks = await self._repository.list_tasks(workflow_id)
        return all(t.status is TaskStatus.COMPLETED for t in tasks)

    async def _mirror(self, task_id: str, status: str) -> None:
        if self._task_board is None:
            return
        try:
            await self._task_board.update_status(task_id, status)
        except Exception as exc:
            logger.warning(f"Task board update failed for {task_id}: {exc}")

    async def _log(
        self,
        workflow_id: str,
        task_id: str,
        action: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._repository.log_execution(
            ExecutionRecord(
                workflow_id=workflow_id,
                task_id=task_id,
                action=action,
                input_data=data or {},
            )
        )
