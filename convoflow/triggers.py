"""Detect when a user utterance calls for a multi-step workflow."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Pattern, Protocol

from .contracts import TemplateCategory, WorkflowContext, WorkflowTemplate
from .registry import TemplateRegistry

logger = logging.getLogger(__name__)

# Categories are checked in insertion order; scheduling wins ties.
WORKFLOW_TRIGGERS: Dict[str, List[Pattern[str]]] = {
    TemplateCategory.SCHEDULING.value: [
        re.compile(
            r"\b(schedule|book|arrange|set up|organize)\b.*\b(meeting|call|appointment|session|interview)\b",
            re.IGNORECASE,
        ),
        re.compile(r"\b(meeting|call|appointment)\b.*\b(with|for|at|on)\b", re.IGNORECASE),
        re.compile(r"\b(calendar|availability|free time|slot)\b", re.IGNORECASE),
        re.compile(r"\b(let'?s meet|can we meet|available to meet)\b", re.IGNORECASE),
    ],
    TemplateCategory.SUPPORT.value: [
        re.compile(
            r"\b(help|issue|problem|error|bug|broken|not working|failed|stuck)\b",
            re.IGNORECASE,
        ),
        re.compile(r"\b(support|ticket|report|complaint)\b", re.IGNORECASE),
        re.compile(r"\b(can'?t|unable to|having trouble|difficulty)\b", re.IGNORECASE),
    ],
    TemplateCategory.COMMUNICATION.value: [
        re.compile(
            r"\b(send|email|message|notify|inform|tell|contact)\b.*\b(team|person|group|everyone)\b",
            re.IGNORECASE,
        ),
        re.compile(r"\b(announcement|update|broadcast)\b", re.IGNORECASE),
    ],
    TemplateCategory.DATA_COLLECTION.value: [
        re.compile(r"\b(collect|gather|survey|feedback|form|questionnaire)\b", re.IGNORECASE),
        re.compile(r"\b(information|data|details|requirements)\b.*\b(from|about)\b", re.IGNORECASE),
    ],
}


def matched_categories(message: str) -> List[str]:
    """Return every category with at least one matching trigger, in order."""
    return [
        category
        for category, patterns in WORKFLOW_TRIGGERS.items()
        if any(p.search(message) for p in patterns)
    ]


class SecondaryDetector(Protocol):
    """Fallback consulted when no trigger pattern matches."""

    async def detect(
        self, message: str, context: Optional[WorkflowContext] = None
    ) -> WorkflowTemplate | None:
        ...


class NullSecondaryDetector:
    """Secondary detector that never asks for a workflow."""

    async def detect(
        self, message: str, context: Optional[WorkflowContext] = None
    ) -> WorkflowTemplate | None:
        return None


class TriggerDetector:
    """Pattern based intent detection backed by the template registry."""

    def __init__(
        self,
        registry: TemplateRegistry,
        secondary: Optional[SecondaryDetector] = None,
    ) -> None:
        self._registry = registry
        self._secondary = secondary or NullSecondaryDetector()

    async def detect(
        self, message: str, context: Optional[WorkflowContext] = None
    ) -> WorkflowTemplate | None:
        """Return the template the message calls for, or ``None``.

        A category whose registry lookup yields nothing lets the next
        matching category try. The secondary detector only runs when no
        pattern matched at all.
        """

        capabilities = context.capabilities if context is not None else None
        categories = matched_categories(message)
        for category in categories:
            logger.info(f"Detected {category} workflow trigger")
            template = await self._registry.get_template_for_category(
                category, capabilities
            )
            if template is not None:
                return template

        if categories:
            return None
        return await self._secondary.detect(message, context)
