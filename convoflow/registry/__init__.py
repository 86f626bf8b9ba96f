"""Template registry: maps a workflow category to a template."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..contracts import TemplateCategory, WorkflowTemplate
from ..persistence import TemplateRecord, WorkflowRepository
from .builtin import (
    BUILTIN_TEMPLATES,
    DEFAULT_SCHEDULING_TEMPLATE,
    default_scheduling_template,
    seed_templates,
)

logger = logging.getLogger(__name__)


def to_template(record: TemplateRecord) -> WorkflowTemplate:
    """Convert a catalog row into the immutable engine view."""
    return WorkflowTemplate(
        id=record.id,
        name=record.name,
        category=record.category,
        base_structure=record.base_structure,
        required_capabilities=list(record.required_capabilities),
        success_rate=record.success_rate,
        is_active=record.is_active,
    )


class TemplateRegistry:
    """Read-only view over the template catalog.

    Only the scheduling category has a built-in fallback. Any other
    category with no usable template yields ``None`` and the caller is told
    no workflow is needed.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def get_template_for_category(
        self, category: str, capabilities: Optional[List[str]] = None
    ) -> WorkflowTemplate | None:
        is_scheduling = category == TemplateCategory.SCHEDULING.value
        try:
            records = await self._repository.list_templates(category=category)
        except Exception as exc:
            logger.error(f"Error fetching template for {category}: {exc}")
            return default_scheduling_template() if is_scheduling else None

        if not records:
            logger.info(f"No template found for category: {category}")
            return default_scheduling_template() if is_scheduling else None

        record = next(
            (r for r in records if self._has_capabilities(r, capabilities)), None
        )
        if record is None:
            logger.info(
                f"No {category} template matches capabilities {capabilities or []}"
            )
            return default_scheduling_template() if is_scheduling else None

        template = to_template(record)
        if not template.has_valid_structure():
            logger.warning(f"Template {template.id} has an invalid structure")
            return default_scheduling_template() if is_scheduling else None

        logger.debug(f"Template fetched: {template.id} ({template.name})")
        return template

    @staticmethod
    def _has_capabilities(
        record: TemplateRecord, capabilities: Optional[List[str]]
    ) -> bool:
        # Callers that do not advertise capabilities are not filtered.
        if capabilities is None or not record.required_capabilities:
            return True
        return set(record.required_capabilities).issubset(capabilities)


__all__ = [
    "BUILTIN_TEMPLATES",
    "DEFAULT_SCHEDULING_TEMPLATE",
    "TemplateRegistry",
    "default_scheduling_template",
    "seed_templates",
    "to_template",
]
