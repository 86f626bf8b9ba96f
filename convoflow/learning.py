"""Outcome recording, pattern learning and optimisation suggestions."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .config import EngineConfig
from .constants import (
    CONFIDENCE_FAILURE_PENALTY,
    CONFIDENCE_SUCCESS_BOOST,
    MAX_CONFIDENCE_WEIGHT,
    NEW_PATTERN_FAILURE_CONFIDENCE,
    NEW_PATTERN_SUCCESS_CONFIDENCE,
    PATTERN_SUGGESTION_CONFIDENCE,
    PATTERN_SUGGESTION_LIMIT,
)
from .contracts import (
    Impact,
    InvalidTransitionError,
    Optimization,
    OptimizationType,
    StepKind,
    TemplateCategory,
    Workflow,
    WorkflowNotFoundError,
    WorkflowStatus,
    utcnow,
)
from .info.validation import parse_datetime
from .persistence import ExecutionRecord, LearningRecord, WorkflowRepository

logger = logging.getLogger(__name__)

SCHEDULING_PREFERENCE = "scheduling_preference"
DATA_COLLECTION = "data_collection"

_DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def update_confidence(old: float, occurrences: int, success: bool) -> float:
    """Weighted moving confidence, clamped to ``[0, 100]``.

    The more often a pattern was seen, the more its previous score weighs:
    ``w = min(occurrences / 10, 0.9)``.
    """

    weight = min(max(occurrences, 0) / 10, MAX_CONFIDENCE_WEIGHT)
    boost = CONFIDENCE_SUCCESS_BOOST if success else CONFIDENCE_FAILURE_PENALTY
    return max(0.0, min(100.0, old * weight + boost * (1 - weight)))


def rolling_success_rate(old_rate: float, n: int, success: bool) -> float:
    """Fold one more outcome into a rate over ``n`` runs."""
    if n <= 0:
        return old_rate
    return (old_rate * (n - 1) + (100.0 if success else 0.0)) / n


class ObservedPattern(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


def _is_scheduling(workflow: Workflow) -> bool:
    if workflow.category == TemplateCategory.SCHEDULING.value:
        return True
    return any("schedule" in s.id or "book" in s.id for s in workflow.steps)


def _scheduled_time(workflow: Workflow, fallback: datetime) -> datetime:
    raw = workflow.context.existing_data.get("startTime")
    if isinstance(raw, str):
        parsed = parse_datetime(raw)
        if parsed is not None:
            return parsed
    return fallback


def extract_patterns(
    workflow: Workflow, observed_at: Optional[datetime] = None
) -> List[ObservedPattern]:
    """Return the coarse patterns a finished workflow exhibits.

    Pattern payloads never include the outcome itself, so a success and a
    failure of the same shape update the same learning row.
    """

    observed_at = observed_at or utcnow()
    patterns: List[ObservedPattern] = []

    if _is_scheduling(workflow):
        when = _scheduled_time(workflow, observed_at)
        day = _DAY_NAMES[when.isoweekday() % 7]
        patterns.append(
            ObservedPattern(
                type=SCHEDULING_PREFERENCE,
                data={
                    "timeOfDay": when.hour,
                    "dayOfWeek": when.isoweekday() % 7,
                    "description": f"Meetings are often scheduled around {when.hour:02d}:00 on {day}",
                },
            )
        )

    gather_steps = [s for s in workflow.steps if s.kind is StepKind.GATHER]
    if gather_steps:
        fields = [f for s in gather_steps for f in s.required_data]
        patterns.append(
            ObservedPattern(
                type=DATA_COLLECTION,
                data={
                    "fieldsRequested": fields,
                    "attemptCount": len(gather_steps),
                    "description": f"Collect {', '.join(fields) or 'details'} in {len(gather_steps)} step(s)",
                },
            )
        )
    return patterns


class OutcomeRecorder:
    """Persist the end of a workflow and learn from it."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def record_outcome(
        self,
        workflow: Workflow,
        success: bool,
        feedback: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """Finish ``workflow`` and fold the outcome into metrics and patterns.

        The status change and its log entry must succeed. The template
        metric and each pattern upsert are attempted independently; a store
        error in one is logged and does not stop the others.

        Raises:
            WorkflowNotFoundError: The workflow is not in the store.
            InvalidTransitionError: The workflow already reached a terminal
                status.
        """

        at = at or utcnow()
        target = WorkflowStatus.COMPLETED if success else WorkflowStatus.FAILED
        record = await self._repository.get_workflow(workflow.id)
        if record is None:
            raise WorkflowNotFoundError(workflow.id)
        if not record.status.can_transition_to(target):
            logger.error(
                f"Cannot record outcome for {workflow.id} in status {record.status.value}"
            )
            raise InvalidTransitionError(workflow.id, record.status, target)

        await self._repository.update_workflow_status(
            workflow.id,
            target,
            at=at,
            failure_reason=None if success else feedback,
        )
        workflow.status = target
        await self._repository.log_execution(
            ExecutionRecord(
                workflow_id=workflow.id,
                action="workflow_completed" if success else "workflow_failed",
                input_data={"feedback": feedback},
            )
        )
        logger.info(f"Workflow {workflow.id} {target.value}")

        if not workflow.template_id:
            return

        try:
            await self._update_template_metrics(workflow.template_id, success)
        except Exception as exc:
            logger.error(f"Failed to update metrics of {workflow.template_id}: {exc}")

        for pattern in extract_patterns(workflow, at):
            try:
                await self._upsert_pattern(workflow.template_id, pattern, success, at)
            except Exception as exc:
                logger.error(f"Failed to store {pattern.type} pattern: {exc}")

    async def _update_template_metrics(self, template_id: str, success: bool) -> None:
        template = await self._repository.get_template(template_id)
        if template is None:
            return
        n = await self._repository.count_workflows(template_id)
        if n == 0:
            return
        rate = rolling_success_rate(template.success_rate, n, success)
        await self._repository.update_template_success_rate(template_id, rate)

    async def _upsert_pattern(
        self, template_id: str, pattern: ObservedPattern, success: bool, at: datetime
    ) -> None:
        existing = await self._repository.find_pattern(
            template_id, pattern.type, pattern.data
        )
        if existing is not None:
            await self._repository.update_pattern(
                existing.model_copy(
                    update={
                        "confidence_score": update_confidence(
                            existing.confidence_score, existing.occurrence_count, success
                        ),
                        "occurrence_count": existing.occurrence_count + 1,
                        "success_count": existing.success_count + (1 if success else 0),
                        "last_observed": at,
                    }
                )
            )
            return
        await self._repository.save_pattern(
            LearningRecord(
                template_id=template_id,
                pattern_type=pattern.type,
                pattern_data=pattern.data,
                confidence_score=(
                    NEW_PATTERN_SUCCESS_CONFIDENCE
                    if success
                    else NEW_PATTERN_FAILURE_CONFIDENCE
                ),
                occurrence_count=1,
                success_count=1 if success else 0,
                first_observed=at,
                last_observed=at,
            )
        )


def parallel_pairs(
    order: List[str], edges: Dict[str, Set[str]]
) -> List[List[str]]:
    """Pairs of nodes with no direct or transitive dependency between them.

    ``edges`` maps a node to the nodes it depends on; ``order`` fixes the
    output order.
    """

    ancestors: Dict[str, Set[str]] = {}

    def _ancestors(node: str, visiting: Set[str]) -> Set[str]:
        if node in ancestors:
            return ancestors[node]
        found: Set[str] = set()
        for dep in edges.get(node, ()):
            if dep in visiting:
                continue
            found.add(dep)
            found |= _ancestors(dep, visiting | {node})
        ancestors[node] = found
        return found

    for node in order:
        _ancestors(node, set())

    pairs = []
    for i, a in enumerate(order):
        for b in order[i + 1 :]:
            if b not in ancestors[a] and a not in ancestors[b]:
                pairs.append([a, b])
    return pairs


class OptimizationAdvisor:
    """Read-only suggestions derived from history and learned patterns."""

    def __init__(
        self, repository: WorkflowRepository, config: Optional[EngineConfig] = None
    ) -> None:
        self._repository = repository
        self._config = config or EngineConfig()

    async def suggest_optimizations(self, workflow: Workflow) -> List[Optimization]:
        optimizations: List[Optimization] = []

        skip = await self._repeated_skips(workflow)
        if skip is not None:
            optimizations.append(skip)

        parallel = await self._parallel_opportunities(workflow)
        if parallel is not None:
            optimizations.append(parallel)

        optimizations.extend(await self._pattern_suggestions(workflow))
        return optimizations

    async def _repeated_skips(self, workflow: Workflow) -> Optimization | None:
        if workflow.template_id:
            workflow_ids = [
                wf.id for wf in await self._repository.list_workflows(workflow.template_id)
            ]
        else:
            workflow_ids = [workflow.id]

        counts: Counter = Counter()
        for workflow_id in workflow_ids:
            for entry in await self._repository.list_executions(
                workflow_id, action="task_skipped"
            ):
                step_id = entry.input_data.get("step_id")
                if step_id:
                    counts[step_id] += 1

        threshold = self._config.repeated_skip_threshold
        repeated = [step for step, n in counts.items() if n >= threshold]
        if not repeated:
            return None
        return Optimization(
            type=OptimizationType.SKIP_STEP,
            description="Some steps are consistently skipped and could be removed",
            confidence=0.8,
            impact=Impact.MEDIUM,
            suggestion={
                "stepsToRemove": repeated,
                "skipCounts": {step: counts[step] for step in repeated},
            },
        )

    async def _parallel_opportunities(self, workflow: Workflow) -> Optimization | None:
        tasks = await self._repository.list_tasks(workflow.id)
        if len(tasks) < 2:
            return None
        step_of = {t.id: t.step_id for t in tasks}
        edges: Dict[str, Set[str]] = {}
        for dep in await self._repository.list_workflow_dependencies(workflow.id):
            if dep.task_id in step_of and dep.depends_on_task_id in step_of:
                edges.setdefault(step_of[dep.task_id], set()).add(
                    step_of[dep.depends_on_task_id]
                )

        pairs = parallel_pairs([t.step_id for t in tasks], edges)
        if not pairs:
            return None
        return Optimization(
            type=OptimizationType.PARALLEL,
            description="Some tasks could be executed in parallel",
            confidence=0.9,
            impact=Impact.HIGH,
            suggestion={"parallelGroups": pairs},
        )

    async def _pattern_suggestions(self, workflow: Workflow) -> List[Optimization]:
        if not workflow.template_id:
            return []
        patterns = await self._repository.list_patterns(
            workflow.template_id,
            min_confidence=PATTERN_SUGGESTION_CONFIDENCE,
            limit=PATTERN_SUGGESTION_LIMIT,
        )
        return [
            Optimization(
                type=OptimizationType.MODIFY_VALIDATION,
                description=p.pattern_data.get("description", p.pattern_type),
                confidence=p.confidence_score / 100,
                impact=Impact.MEDIUM,
                suggestion=dict(p.pattern_data),
            )
            for p in patterns
            if p.confidence_score > PATTERN_SUGGESTION_CONFIDENCE
        ]
