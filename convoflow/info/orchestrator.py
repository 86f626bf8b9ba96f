"""Information orchestrator facade."""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Mapping, Optional

from ..config import EngineConfig
from ..constants import EXISTING_DATA_CONFIDENCE
from ..contracts import (
    ConversationPrompt,
    DataSource,
    FieldSpec,
    InfoRequirement,
    PartialDataOutcome,
    PartialDataStrategy,
    ValidationResult,
    Workflow,
)
from ..persistence import WorkflowRepository
from ..providers import MemoryProvider, ProfileProvider
from .partial import InferenceRule, handle_partial_info
from .prompts import build_conversation_flow, generate_prompt
from .sources import DataSourceChain, has_value, infer_field_type
from .validation import validate_info

logger = logging.getLogger(__name__)


def to_requirement(spec: FieldSpec) -> InfoRequirement:
    return InfoRequirement(
        field=spec.field,
        type=spec.type or infer_field_type(spec.field),
        required=spec.required,
        options=spec.options,
        constraints=dict(spec.constraints),
    )


class InformationOrchestrator:
    """Find, phrase and check the information a task needs."""

    def __init__(
        self,
        repository: WorkflowRepository,
        memory_provider: Optional[MemoryProvider] = None,
        profile_provider: Optional[ProfileProvider] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._config = config or EngineConfig()
        self._sources = DataSourceChain(
            memory_provider, profile_provider, lookback=self._config.memory_lookback
        )
        self._rng = rng

    async def resolve_requirements(
        self, workflow: Workflow, task_id: str
    ) -> List[InfoRequirement]:
        """Every prerequisite of a task with the best value found for it."""

        task = await self._repository.get_task(task_id)
        if task is None:
            logger.warning(f"Task {task_id} not found while resolving requirements")
            return []

        resolved: List[InfoRequirement] = []
        for raw in task.prerequisites:
            requirement = to_requirement(FieldSpec.model_validate(raw))
            collected = task.data_collected.get(requirement.field)
            known = workflow.context.existing_data.get(requirement.field)
            if has_value(collected):
                requirement.current_value = collected
                requirement.source = DataSource.USER
                requirement.confidence = 1.0
            elif has_value(known):
                requirement.current_value = known
                requirement.source = DataSource.USER
                requirement.confidence = EXISTING_DATA_CONFIDENCE
            else:
                lookup = await self._sources.search(requirement.field, workflow.context)
                if lookup.found:
                    requirement.current_value = lookup.value
                    requirement.source = lookup.source
                    requirement.confidence = lookup.confidence
            resolved.append(requirement)
        return resolved

    async def identify_missing_info(
        self, workflow: Workflow, task_id: str
    ) -> List[InfoRequirement]:
        """Prerequisites of ``task_id`` not known with enough confidence."""
        threshold = self._config.missing_info_threshold
        return [
            r
            for r in await self.resolve_requirements(workflow, task_id)
            if r.confidence < threshold
        ]

    def generate_prompt(
        self, requirement: InfoRequirement, context: Optional[Mapping[str, Any]] = None
    ) -> ConversationPrompt:
        return generate_prompt(requirement, context, self._rng)

    def build_conversation_flow(
        self,
        requirements: List[InfoRequirement],
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[ConversationPrompt]:
        return build_conversation_flow(requirements, context, self._rng)

    def validate_info(self, data: Any, requirement: InfoRequirement) -> ValidationResult:
        return validate_info(data, requirement)

    def handle_partial_info(
        self,
        workflow: Workflow,
        available: Dict[str, Any],
        strategy: Optional[PartialDataStrategy] = None,
        rules: Optional[Mapping[str, InferenceRule]] = None,
    ) -> PartialDataOutcome:
        return handle_partial_info(workflow, available, strategy, rules)
