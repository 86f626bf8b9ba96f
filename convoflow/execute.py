"""Caller driven progression of a workflow through its tasks."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from .config import EngineConfig
from .contracts import (
    ConversationPrompt,
    FieldType,
    InfoRequirement,
    StepDefinition,
    StepKind,
    TaskStatus,
    Workflow,
    WorkflowStatus,
)
from .info import InformationOrchestrator
from .info.validation import TIME_PATTERN, normalize_value, parse_datetime
from .learning import OutcomeRecorder
from .persistence import TaskRecord, WorkflowRepository
from .providers import ActionExecutor, ActionRequest, ActionResult
from .scheduler import TaskScheduler
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"


class RunOutcome(BaseModel):
    """Where a run stopped and what the caller should do next."""

    workflow_id: str
    status: RunStatus
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    prompts: List[ConversationPrompt] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    errors: Dict[str, List[str]] = Field(default_factory=dict)
    error: Optional[str] = None
    completed_steps: List[str] = Field(default_factory=list)


class WorkflowRunner:
    """Advance a workflow as far as the known data allows.

    Gather steps complete when every required field is known or answered;
    otherwise the run stops and returns prompts for the missing fields.
    Execute and notify steps are delegated to the :class:`ActionExecutor`,
    retrying with exponential backoff when the step allows it. A failing
    task fails the whole workflow.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        scheduler: TaskScheduler,
        orchestrator: InformationOrchestrator,
        recorder: OutcomeRecorder,
        executor: ActionExecutor,
        config: Optional[EngineConfig] = None,
        require_confirmation: bool = False,
    ) -> None:
        self._repository = repository
        self._scheduler = scheduler
        self._orchestrator = orchestrator
        self._recorder = recorder
        self._executor = executor
        self._config = config or EngineConfig()
        self._require_confirmation = require_confirmation

    async def run(
        self,
        workflow: Workflow,
        answers: Optional[Mapping[str, Any]] = None,
        prompt_context: Optional[Mapping[str, Any]] = None,
    ) -> RunOutcome:
        answers = dict(answers or {})
        if workflow.status.is_terminal:
            return RunOutcome(
                workflow_id=workflow.id,
                status=(
                    RunStatus.COMPLETED
                    if workflow.status is WorkflowStatus.COMPLETED
                    else RunStatus.FAILED
                ),
                error=None
                if workflow.status is WorkflowStatus.COMPLETED
                else f"Workflow is {workflow.status.value}",
            )

        completed: List[str] = []
        while True:
            task = await self._scheduler.get_next_task(workflow.id)
            if task is None:
                if await self._scheduler.is_finished(workflow.id):
                    await self._recorder.record_outcome(workflow, True)
                    return RunOutcome(
                        workflow_id=workflow.id,
                        status=RunStatus.COMPLETED,
                        completed_steps=completed,
                    )
                return RunOutcome(
                    workflow_id=workflow.id,
                    status=RunStatus.BLOCKED,
                    completed_steps=completed,
                )

            task = await self._scheduler.activate_task(task.id)
            step = workflow.step(task.step_id)
            kind = step.kind if step is not None else StepKind(task.task_type)
            logger.info(f"Processing task: {task.title} ({kind.value})")

            if kind is StepKind.GATHER:
                stop = await self._gather(workflow, task, answers, prompt_context)
                if stop is not None:
                    stop.completed_steps = completed
                    return stop
            elif kind is StepKind.VALIDATE:
                error = self._check_time_range(await self._workflow_data(workflow))
                if error:
                    return await self._fail(workflow, task, error, completed)
                await self._scheduler.complete_task(task.id, {})
            elif kind is StepKind.CONFIRM:
                if self._require_confirmation and not _is_yes(answers.get("confirmed")):
                    return await self._ask_confirmation(
                        workflow, task, prompt_context, completed
                    )
                await self._scheduler.complete_task(task.id, {"confirmed": True})
            elif kind is StepKind.DECISION:
                await self._scheduler.complete_task(task.id, {})
            else:
                result = await self._perform(workflow, task, step)
                if not result.success:
                    return await self._fail(
                        workflow, task, result.error or "Action failed", completed
                    )
                await self._scheduler.complete_task(task.id, result.data)
            completed.append(task.step_id)

    # ------------------------------------------------------------------
    async def _gather(
        self,
        workflow: Workflow,
        task: TaskRecord,
        answers: Dict[str, Any],
        prompt_context: Optional[Mapping[str, Any]],
    ) -> RunOutcome | None:
        threshold = self._config.missing_info_threshold
        collected: Dict[str, Any] = {}
        missing: List[InfoRequirement] = []
        errors: Dict[str, List[str]] = {}

        requirements = await self._orchestrator.resolve_requirements(workflow, task.id)
        for requirement in requirements:
            if requirement.field in answers:
                value, problems = self._check_answer(answers[requirement.field], requirement)
                if not problems:
                    collected[requirement.field] = value
                    continue
                errors[requirement.field] = problems
                missing.append(requirement)
            elif requirement.confidence >= threshold:
                collected[requirement.field] = requirement.current_value
            elif requirement.required:
                missing.append(requirement)

        # A range gathered in one step is checked before it is accepted.
        if not missing and "startTime" in collected and "endTime" in collected:
            range_error = self._check_time_range(collected)
            if range_error:
                errors["endTime"] = [range_error]
                missing = [r for r in requirements if r.field == "endTime"]

        if missing:
            return RunOutcome(
                workflow_id=workflow.id,
                status=RunStatus.AWAITING_INPUT,
                task_id=task.id,
                step_id=task.step_id,
                prompts=self._orchestrator.build_conversation_flow(missing, prompt_context),
                missing=[r.field for r in missing],
                errors=errors,
            )
        await self._scheduler.complete_task(task.id, collected)
        return None

    def _check_answer(
        self, value: Any, requirement: InfoRequirement
    ) -> tuple[Any, List[str]]:
        # A list answer for a scalar type (several attendee emails) is
        # validated element by element.
        if isinstance(value, list) and requirement.type is not FieldType.MULTISELECT:
            normalized, problems = [], []
            for item in value:
                result = self._orchestrator.validate_info(item, requirement)
                problems.extend(result.errors)
                normalized.append(result.normalized_value)
            return normalized, problems
        result = self._orchestrator.validate_info(value, requirement)
        return result.normalized_value, result.errors

    async def _ask_confirmation(
        self,
        workflow: Workflow,
        task: TaskRecord,
        prompt_context: Optional[Mapping[str, Any]],
        completed: List[str],
    ) -> RunOutcome:
        data = await self._workflow_data(workflow)
        details = "\n".join(f"- {k}: {v}" for k, v in data.items())
        context = {**(prompt_context or {}), "details": details}
        prompt = self._orchestrator.generate_prompt(
            InfoRequirement(field="confirmation", type=FieldType.BOOLEAN), context
        )
        return RunOutcome(
            workflow_id=workflow.id,
            status=RunStatus.AWAITING_INPUT,
            task_id=task.id,
            step_id=task.step_id,
            prompts=[prompt],
            missing=["confirmed"],
            completed_steps=completed,
        )

    async def _perform(
        self, workflow: Workflow, task: TaskRecord, step: Optional[StepDefinition]
    ) -> ActionResult:
        action = (
            (step.extension.action if step is not None else None)
            or task.metadata.get("action")
            or task.step_id
        )
        request = ActionRequest(
            type=action,
            payload=await self._workflow_data(workflow),
            conversation_id=workflow.conversation_id,
            user_id=workflow.context.user_id,
            workflow_id=workflow.id,
            task_id=task.id,
        )
        attempts = (
            self._config.max_action_attempts
            if step is not None and step.retry_on_failure
            else 1
        )

        result = ActionResult(success=False, error="Action not attempted")
        for attempt in range(1, attempts + 1):
            try:
                result = await self._executor.execute(request)
            except Exception as exc:
                logger.warning(f"Action {action} raised: {exc}")
                result = ActionResult(success=False, error=str(exc))
            if result.success:
                break
            if attempt < attempts:
                delay = await schedule_retry(
                    attempt, self._config.retry_base, self._config.retry_jitter
                )
                logger.info(
                    f"Retrying {action} (attempt {attempt + 1}/{attempts}) after {delay:.2f}s"
                )
        return result

    async def _fail(
        self, workflow: Workflow, task: TaskRecord, error: str, completed: List[str]
    ) -> RunOutcome:
        await self._scheduler.fail_task(task.id, error)
        await self._recorder.record_outcome(workflow, False, error)
        return RunOutcome(
            workflow_id=workflow.id,
            status=RunStatus.FAILED,
            task_id=task.id,
            step_id=task.step_id,
            error=error,
            completed_steps=completed,
        )

    async def _workflow_data(self, workflow: Workflow) -> Dict[str, Any]:
        """Context data overlaid with everything completed tasks collected."""
        data = dict(workflow.context.existing_data)
        for task in await self._repository.list_tasks(
            workflow.id, [TaskStatus.COMPLETED]
        ):
            data.update(task.data_collected)
        return data

    @staticmethod
    def _check_time_range(data: Mapping[str, Any]) -> Optional[str]:
        start, end = data.get("startTime"), data.get("endTime")
        if not (isinstance(start, str) and isinstance(end, str)):
            return None
        start_at, end_at = parse_datetime(start), parse_datetime(end)
        if start_at is None or end_at is None:
            # bare HH:MM times compare lexically once zero padded
            start_at, end_at = _clock_time(start), _clock_time(end)
            if start_at is None or end_at is None:
                return None
        try:
            if end_at <= start_at:
                return "End time must be after start time"
        except TypeError:
            # naive and aware datetimes cannot be ordered
            return None
        return None


def _clock_time(value: str) -> Optional[str]:
    if not TIME_PATTERN.match(value.strip()):
        return None
    return normalize_value(value, FieldType.TIME)


def _is_yes(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "y", "true")
    return value is True
