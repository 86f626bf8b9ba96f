"""Decide how to continue a workflow when only part of its data is known."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..constants import MAX_MISSING_CRITICAL_FOR_ASK, PARTIAL_DATA_DEFAULTS
from ..contracts import (
    PartialDataOutcome,
    PartialDataStrategy,
    StepDefinition,
    StrategyKind,
    Workflow,
)
from .sources import has_value

logger = logging.getLogger(__name__)

InferenceRule = Callable[[Mapping[str, Any]], Any]


def critical_fields(steps: List[StepDefinition]) -> List[str]:
    """Required fields of every critical step, first occurrence first."""
    fields: List[str] = []
    for step in steps:
        if step.critical:
            fields.extend(f for f in step.required_data if f not in fields)
    return fields


def determine_strategy(
    steps: List[StepDefinition], available: Mapping[str, Any]
) -> PartialDataStrategy:
    missing = [f for f in critical_fields(steps) if not has_value(available.get(f))]
    if missing:
        kind = (
            StrategyKind.ASK
            if len(missing) <= MAX_MISSING_CRITICAL_FOR_ASK
            else StrategyKind.WAIT
        )
        return PartialDataStrategy(strategy=kind, critical_fields=missing)
    return PartialDataStrategy(
        strategy=StrategyKind.DEFAULT, defaults=dict(PARTIAL_DATA_DEFAULTS)
    )


def infer_missing_data(
    available: Mapping[str, Any],
    rules: Optional[Mapping[str, InferenceRule]] = None,
) -> Dict[str, Any]:
    """Fill gaps that can be derived from other collected values.

    ``duration`` is in minutes. Caller supplied ``rules`` map a field to a
    callable receiving the available data; they only run for absent fields.
    """

    inferred: Dict[str, Any] = {}

    if not has_value(available.get("endTime")) and has_value(available.get("startTime")):
        duration = available.get("duration")
        if duration:
            try:
                start = datetime.fromisoformat(str(available["startTime"]))
                inferred["endTime"] = (
                    start + timedelta(minutes=float(duration))
                ).isoformat()
            except (TypeError, ValueError) as exc:
                logger.debug(f"Cannot infer endTime: {exc}")

    if not has_value(available.get("location")) and available.get("includeMeetingLink"):
        inferred["location"] = "Video meeting (link will be provided)"

    if (
        not has_value(available.get("title"))
        and has_value(available.get("attendees"))
        and has_value(available.get("purpose"))
    ):
        attendees = available["attendees"]
        count = len(attendees) if isinstance(attendees, list) else 1
        inferred["title"] = f"{available['purpose']} with {count} attendee(s)"

    for field, rule in (rules or {}).items():
        if not has_value(available.get(field)) and callable(rule):
            inferred[field] = rule(available)

    return inferred


def handle_partial_info(
    workflow: Workflow,
    available: Mapping[str, Any],
    strategy: Optional[PartialDataStrategy] = None,
    rules: Optional[Mapping[str, InferenceRule]] = None,
) -> PartialDataOutcome:
    """Apply ``strategy`` (computed from the workflow if omitted)."""

    strategy = strategy or determine_strategy(workflow.steps, available)
    available = dict(available)
    outcome = PartialDataOutcome(
        workflow_id=workflow.id, strategy=strategy.strategy, status="active"
    )

    if strategy.strategy is StrategyKind.WAIT:
        outcome.status = "blocked"
        outcome.waiting_for = list(strategy.critical_fields)
    elif strategy.strategy is StrategyKind.ASK:
        outcome.status = "gathering"
        outcome.waiting_for = list(strategy.critical_fields)
        outcome.data = available
    elif strategy.strategy is StrategyKind.DEFAULT:
        outcome.data = {**strategy.defaults, **available}
    elif strategy.strategy is StrategyKind.INFER:
        inferred = infer_missing_data(available, rules)
        outcome.data = {**available, **inferred}
        outcome.inferred_fields = list(inferred)
    else:
        outcome.data = available

    logger.info(
        f"Partial data for workflow {workflow.id}: {strategy.strategy.value} -> {outcome.status}"
    )
    return outcome
