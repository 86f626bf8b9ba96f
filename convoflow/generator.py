"""Expand a template into a persisted, context adapted task graph."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from .config import EngineConfig
from .constants import DEFAULT_SCHEDULING_TEMPLATE_ID
from .contracts import (
    DegradedEdge,
    DependencyError,
    DependencyType,
    StepDefinition,
    StepKind,
    TemplateCategory,
    TemplateStructureError,
    Workflow,
    WorkflowContext,
    WorkflowStatus,
    WorkflowTemplate,
    utcnow,
)
from .info.sources import known_confidence
from .persistence import (
    DependencyRecord,
    ExecutionRecord,
    TaskRecord,
    WorkflowRecord,
    WorkflowRepository,
)
from .providers import ConversationTask, TaskBoard
from .registry import default_scheduling_template
from .scheduler import TaskScheduler

logger = logging.getLogger(__name__)


def can_skip_step(
    step: StepDefinition, context: WorkflowContext, threshold: float
) -> bool:
    """A step is skipped when all of its required data is already known.

    Only gather steps qualify unless the step is flagged ``skip_if_known``.
    Steps without required data are never skipped.
    """

    if not step.required_data:
        return False
    if any(known_confidence(f, context) < threshold for f in step.required_data):
        return False
    return step.extension.skip_if_known or step.kind is StepKind.GATHER


def adapt_step(step: StepDefinition, context: WorkflowContext) -> StepDefinition:
    """Attach timezone and language hints from the context."""
    adapted = step.model_copy(deep=True)
    if context.timezone and step.kind is StepKind.EXECUTE and "schedule" in step.id:
        adapted.extension.timezone = context.timezone
    if context.language and step.kind is StepKind.GATHER:
        adapted.extension.language = context.language
    return adapted


def plan_steps(
    steps: List[StepDefinition], context: WorkflowContext, threshold: float
) -> Tuple[List[StepDefinition], List[str]]:
    """Return the surviving adapted steps and the ids of skipped ones.

    Dependencies are rewritten to point only at surviving steps declared
    earlier, so the resulting graph is acyclic.
    """

    adapted_steps: List[StepDefinition] = []
    skipped: List[str] = []
    declared: Set[str] = set()

    for step in steps:
        if can_skip_step(step, context, threshold):
            logger.info(f"Skipping step: {step.title} - data already available")
            skipped.append(step.id)
            declared.add(step.id)
            continue

        adapted = adapt_step(step, context)
        kept = []
        for dep in adapted.depends_on:
            if dep in skipped:
                continue
            if dep not in declared:
                logger.warning(
                    f"Step {step.id} depends on {dep} which is not declared before it; dropping"
                )
                continue
            kept.append(dep)
        adapted.depends_on = kept
        adapted_steps.append(adapted)
        declared.add(step.id)

    return adapted_steps, skipped


class WorkflowGenerator:
    """Instantiate workflows from templates."""

    def __init__(
        self,
        repository: WorkflowRepository,
        task_board: Optional[TaskBoard] = None,
        scheduler: Optional[TaskScheduler] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._repository = repository
        self._task_board = task_board
        self._scheduler = scheduler or TaskScheduler(repository, task_board)
        self._config = config or EngineConfig()

    async def generate_workflow(
        self, template: WorkflowTemplate, context: WorkflowContext
    ) -> Workflow:
        """Persist a workflow, its tasks and dependencies, then activate it.

        Raises:
            TemplateStructureError: The template has no valid step list and
                is not a scheduling template.
        """

        logger.info(f"Generating workflow from template: {template.name}")
        steps = self._resolve_steps(template)
        adapted, skipped = plan_steps(
            steps, context, self._config.missing_info_threshold
        )

        record = WorkflowRecord(
            conversation_id=context.conversation_id,
            template_id=(
                None if template.id == DEFAULT_SCHEDULING_TEMPLATE_ID else template.id
            ),
            template_name=template.name,
            category=template.category,
            status=WorkflowStatus.PLANNING,
            context=context.model_dump(mode="json"),
            plan=[s.model_dump(mode="json", by_alias=True) for s in adapted],
            skipped_steps=skipped,
        )
        await self._repository.create_workflow(record)
        workflow = Workflow(
            id=record.id,
            template_id=record.template_id,
            template_name=template.name,
            category=template.category,
            conversation_id=context.conversation_id,
            status=WorkflowStatus.PLANNING,
            steps=adapted,
            skipped_steps=skipped,
            context=context,
        )

        for step_id in skipped:
            await self._log(workflow.id, None, "task_skipped", {"step_id": step_id})

        for sequence, step in enumerate(adapted):
            workflow.task_ids[step.id] = await self._create_task(
                workflow, step, sequence
            )

        for step in adapted:
            for dep in step.depends_on:
                error = await self._create_dependency(
                    workflow.task_ids[step.id], workflow.task_ids[dep]
                )
                if error is not None:
                    workflow.degraded_edges.append(DegradedEdge.from_error(error))
                    await self._log(
                        workflow.id,
                        error.task_id,
                        "dependency_failed",
                        DegradedEdge.from_error(error).model_dump(),
                    )

        await self._repository.update_workflow_status(
            workflow.id, WorkflowStatus.ACTIVE, at=utcnow()
        )
        workflow.status = WorkflowStatus.ACTIVE

        try:
            first = await self._scheduler.get_next_task(workflow.id)
            if first is not None:
                await self._scheduler.activate_task(first.id)
        except Exception as exc:
            logger.warning(f"Could not activate first task of {workflow.id}: {exc}")

        await self._log(
            workflow.id,
            None,
            "workflow_created",
            {"template": template.name, "stepsCount": len(adapted)},
        )
        if workflow.degraded_edges:
            logger.warning(
                f"Workflow {workflow.id} runs with {len(workflow.degraded_edges)} missing dependencies"
            )
        return workflow

    def _resolve_steps(self, template: WorkflowTemplate) -> List[StepDefinition]:
        try:
            return template.parse_steps()
        except TemplateStructureError as exc:
            if (
                template.category == TemplateCategory.SCHEDULING.value
                or template.id == DEFAULT_SCHEDULING_TEMPLATE_ID
            ):
                logger.warning(f"{exc}; using default scheduling structure")
                return default_scheduling_template().parse_steps()
            logger.error(str(exc))
            raise

    async def _create_task(
        self, workflow: Workflow, step: StepDefinition, sequence: int
    ) -> str:
        parent_id = step.extension.parent_id
        task = TaskRecord(
            workflow_id=workflow.id,
            parent_task_id=workflow.task_ids.get(parent_id) if parent_id else None,
            step_id=step.id,
            task_type=step.kind.value,
            title=step.title,
            description=step.description,
            prerequisites=[
                spec.model_dump(mode="json") for spec in step.prerequisite_fields()
            ],
            validation_rules=dict(step.validation),
            metadata=step.extension.model_dump(
                mode="json", exclude_none=True, exclude_defaults=True
            ),
            sequence=sequence,
        )
        await self._repository.create_task(task)

        if self._task_board is not None:
            mirror = ConversationTask(
                conversation_id=workflow.conversation_id,
                workflow_task_id=task.id,
                title=step.title,
                description=step.description,
                priority="high" if step.critical else "medium",
                workflow_metadata={
                    "workflowId": workflow.id,
                    "stepId": step.id,
                    "type": step.kind.value,
                },
            )
            try:
                await self._task_board.create_task(mirror)
            except Exception as exc:
                logger.warning(f"Task board write failed for {task.id}: {exc}")
        return task.id

    async def _create_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        dependency_type: DependencyType = DependencyType.BLOCKS,
    ) -> DependencyError | None:
        """Persist one edge; a failure is returned so the caller can degrade."""
        try:
            await self._repository.create_dependency(
                DependencyRecord(
                    task_id=task_id,
                    depends_on_task_id=depends_on_task_id,
                    dependency_type=dependency_type,
                )
            )
        except Exception as exc:
            logger.warning(f"Continuing without dependency {task_id} -> {depends_on_task_id}: {exc}")
            return DependencyError(task_id, depends_on_task_id, str(exc))
        return None

    async def _log(
        self,
        workflow_id: str,
        task_id: Optional[str],
        action: str,
        data: Dict,
    ) -> None:
        await self._repository.log_execution(
            ExecutionRecord(
                workflow_id=workflow_id, task_id=task_id, action=action, input_data=data
            )
        )
