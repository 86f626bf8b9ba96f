"""Workflow engine facade wiring the components to one store."""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Mapping, Optional

from .config import ConvoflowConfig, load_config
from .contracts import (
    ConversationPrompt,
    DegradedEdge,
    InfoRequirement,
    InvalidTransitionError,
    Optimization,
    PartialDataOutcome,
    PartialDataStrategy,
    StepDefinition,
    ValidationResult,
    Workflow,
    WorkflowContext,
    WorkflowNotFoundError,
    WorkflowStatus,
    WorkflowTemplate,
    utcnow,
)
from .db import TaskBoardDB
from .execute import RunOutcome, WorkflowRunner
from .generator import WorkflowGenerator
from .info import InformationOrchestrator
from .info.partial import InferenceRule
from .learning import OptimizationAdvisor, OutcomeRecorder
from .persistence import ExecutionRecord, TaskRecord, WorkflowRepository, get_repository
from .providers import (
    ActionExecutor,
    InMemoryActionExecutor,
    MemoryProvider,
    ProfileProvider,
    TaskBoard,
)
from .registry import TemplateRegistry, seed_templates
from .scheduler import TaskScheduler
from .triggers import SecondaryDetector, TriggerDetector

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Entry point used by a conversational assistant.

    All state lives in the repository; the engine itself can be rebuilt at
    any time and continue a workflow from :meth:`load_workflow`.
    """

    def __init__(
        self,
        repository: Optional[WorkflowRepository] = None,
        config: Optional[ConvoflowConfig] = None,
        executor: Optional[ActionExecutor] = None,
        memory_provider: Optional[MemoryProvider] = None,
        profile_provider: Optional[ProfileProvider] = None,
        task_board: Optional[TaskBoard] = None,
        secondary_detector: Optional[SecondaryDetector] = None,
        rng: Optional[random.Random] = None,
        require_confirmation: bool = False,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository()
        if task_board is None and self.config.task_board_url:
            task_board = TaskBoardDB(self.config.task_board_url)
        self.task_board = task_board
        engine_config = self.config.engine

        self.registry = TemplateRegistry(self.repository)
        self.detector = TriggerDetector(self.registry, secondary_detector)
        self.scheduler = TaskScheduler(self.repository, task_board)
        self.generator = WorkflowGenerator(
            self.repository, task_board, self.scheduler, engine_config
        )
        self.orchestrator = InformationOrchestrator(
            self.repository, memory_provider, profile_provider, engine_config, rng
        )
        self.recorder = OutcomeRecorder(self.repository)
        self.advisor = OptimizationAdvisor(self.repository, engine_config)
        self.runner = WorkflowRunner(
            self.repository,
            self.scheduler,
            self.orchestrator,
            self.recorder,
            executor or InMemoryActionExecutor(),
            engine_config,
            require_confirmation=require_confirmation,
        )

    # -- detection and generation ----------------------------------------
    async def detect_workflow_need(
        self, message: str, context: Optional[WorkflowContext] = None
    ) -> WorkflowTemplate | None:
        return await self.detector.detect(message, context)

    async def generate_workflow(
        self, template: WorkflowTemplate, context: WorkflowContext
    ) -> Workflow:
        return await self.generator.generate_workflow(template, context)

    async def start_workflow(
        self, message: str, context: WorkflowContext
    ) -> Workflow | None:
        """Detect and, when needed, instantiate a workflow for ``message``."""
        template = await self.detect_workflow_need(message, context)
        if template is None:
            return None
        return await self.generate_workflow(template, context)

    async def seed_templates(self) -> List[str]:
        return await seed_templates(self.repository)

    # -- tasks -------------------------------------------------------------
    async def get_next_task(self, workflow_id: str) -> TaskRecord | None:
        return await self.scheduler.get_next_task(workflow_id)

    async def complete_task(
        self, task_id: str, data: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.scheduler.complete_task(task_id, data)

    async def fail_task(self, task_id: str, error: str) -> None:
        await self.scheduler.fail_task(task_id, error)

    async def run_workflow(
        self,
        workflow: Workflow,
        answers: Optional[Mapping[str, Any]] = None,
        prompt_context: Optional[Mapping[str, Any]] = None,
    ) -> RunOutcome:
        return await self.runner.run(workflow, answers, prompt_context)

    # -- information -------------------------------------------------------
    async def identify_missing_info(
        self, workflow: Workflow, task_id: str
    ) -> List[InfoRequirement]:
        return await self.orchestrator.identify_missing_info(workflow, task_id)

    def generate_prompt(
        self, requirement: InfoRequirement, context: Optional[Mapping[str, Any]] = None
    ) -> ConversationPrompt:
        return self.orchestrator.generate_prompt(requirement, context)

    def build_conversation_flow(
        self,
        requirements: List[InfoRequirement],
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[ConversationPrompt]:
        return self.orchestrator.build_conversation_flow(requirements, context)

    def validate_info(self, data: Any, requirement: InfoRequirement) -> ValidationResult:
        return self.orchestrator.validate_info(data, requirement)

    def handle_partial_info(
        self,
        workflow: Workflow,
        available: Dict[str, Any],
        strategy: Optional[PartialDataStrategy] = None,
        rules: Optional[Mapping[str, InferenceRule]] = None,
    ) -> PartialDataOutcome:
        return self.orchestrator.handle_partial_info(workflow, available, strategy, rules)

    # -- outcomes ------------------------------------------------------------
    async def record_outcome(
        self, workflow: Workflow, success: bool, feedback: Optional[str] = None
    ) -> None:
        await self.recorder.record_outcome(workflow, success, feedback)

    async def suggest_optimizations(self, workflow: Workflow) -> List[Optimization]:
        return await self.advisor.suggest_optimizations(workflow)

    async def cancel_workflow(
        self, workflow_id: str, reason: Optional[str] = None
    ) -> None:
        """Cancel a workflow that has not finished yet.

        Raises:
            WorkflowNotFoundError: Unknown ``workflow_id``.
            InvalidTransitionError: The workflow already reached a terminal
                status.
        """

        record = await self.repository.get_workflow(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        if not record.status.can_transition_to(WorkflowStatus.CANCELLED):
            raise InvalidTransitionError(
                workflow_id, record.status, WorkflowStatus.CANCELLED
            )
        await self.repository.update_workflow_status(
            workflow_id, WorkflowStatus.CANCELLED, at=utcnow(), failure_reason=reason
        )
        await self.repository.log_execution(
            ExecutionRecord(
                workflow_id=workflow_id,
                action="workflow_cancelled",
                input_data={"reason": reason},
            )
        )
        logger.info(f"Workflow {workflow_id} cancelled")

    async def load_workflow(self, workflow_id: str) -> Workflow:
        """Rebuild the runtime view of a stored workflow.

        Raises:
            WorkflowNotFoundError: Unknown ``workflow_id``.
        """

        record = await self.repository.get_workflow(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        tasks = await self.repository.list_tasks(workflow_id)
        degraded = [
            DegradedEdge.model_validate(entry.input_data)
            for entry in await self.repository.list_executions(
                workflow_id, action="dependency_failed"
            )
        ]
        return Workflow(
            id=record.id,
            template_id=record.template_id,
            template_name=record.template_name,
            category=record.category,
            conversation_id=record.conversation_id,
            status=record.status,
            steps=[StepDefinition.model_validate(step) for step in record.plan],
            skipped_steps=list(record.skipped_steps),
            task_ids={t.step_id: t.id for t in tasks},
            degraded_edges=degraded,
            context=WorkflowContext.model_validate(
                record.context or {"conversation_id": record.conversation_id}
            ),
        )
