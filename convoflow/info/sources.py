"""Locate values for requested fields outside of direct user input."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel

from ..constants import (
    EXISTING_DATA_CONFIDENCE,
    INFERENCE_CONFIDENCE,
    MEMORY_CONFIDENCE,
    MEMORY_INFERABLE_FIELDS,
    MEMORY_LOOKBACK,
    PROFILE_CONFIDENCE,
    PROFILE_FIELD_MAP,
    USER_INFO_MEMORY_TYPE,
)
from ..contracts import DataSource, FieldType, MemoryEntry, WorkflowContext
from ..providers import MemoryProvider, ProfileProvider

logger = logging.getLogger(__name__)


class DataLookup(BaseModel):
    value: Any = None
    source: Optional[DataSource] = None
    confidence: float = 0.0

    @property
    def found(self) -> bool:
        return has_value(self.value)


def has_value(value: Any) -> bool:
    """``False`` for ``None``, blank strings and empty collections."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def infer_field_type(field_name: str) -> FieldType:
    """Guess the semantic type of a field from its name."""
    lower = field_name.lower()
    if "email" in lower:
        return FieldType.EMAIL
    if "phone" in lower or "tel" in lower:
        return FieldType.PHONE
    if "date" in lower:
        return FieldType.DATE
    if "time" in lower:
        return FieldType.TIME
    if "number" in lower or "count" in lower or "amount" in lower:
        return FieldType.NUMBER
    if "is_" in lower or "has_" in lower or "should_" in lower:
        return FieldType.BOOLEAN
    return FieldType.TEXT


def known_confidence(field: str, context: WorkflowContext) -> float:
    """Confidence with which ``field`` is known at generation time.

    Only the context snapshot is consulted: caller supplied data, then
    ``user_info`` memories for the fields memory can carry.
    """

    if has_value(context.existing_data.get(field)):
        return EXISTING_DATA_CONFIDENCE
    if field in MEMORY_INFERABLE_FIELDS:
        for memory in context.memories:
            if memory.type == USER_INFO_MEMORY_TYPE and has_value(memory.content.get(field)):
                return MEMORY_CONFIDENCE
    return 0.0


class DataSourceChain:
    """Search memory, profile and context inference in that order."""

    def __init__(
        self,
        memory_provider: Optional[MemoryProvider] = None,
        profile_provider: Optional[ProfileProvider] = None,
        lookback: int = MEMORY_LOOKBACK,
    ) -> None:
        self._memory_provider = memory_provider
        self._profile_provider = profile_provider
        self._lookback = lookback

    async def search(self, field: str, context: WorkflowContext) -> DataLookup:
        for lookup in (self._from_memory, self._from_profile, self._from_inference):
            result = await lookup(field, context)
            if result.found:
                logger.debug(
                    f"Found {field} via {result.source.value} ({result.confidence})"
                )
                return result
        return DataLookup()

    async def _recent_memories(self, context: WorkflowContext) -> List[MemoryEntry]:
        if self._memory_provider is not None:
            return await self._memory_provider.recent_memories(
                context.conversation_id, self._lookback
            )
        entries = sorted(context.memories, key=lambda m: m.created_at, reverse=True)
        return entries[: self._lookback]

    async def _from_memory(self, field: str, context: WorkflowContext) -> DataLookup:
        for memory in await self._recent_memories(context):
            value = memory.content.get(field)
            if has_value(value):
                return DataLookup(
                    value=value, source=DataSource.MEMORY, confidence=MEMORY_CONFIDENCE
                )
        return DataLookup()

    async def _from_profile(self, field: str, context: WorkflowContext) -> DataLookup:
        profile_field = PROFILE_FIELD_MAP.get(field)
        if not profile_field or not context.user_id or self._profile_provider is None:
            return DataLookup()
        profile = await self._profile_provider.get_profile(context.user_id)
        if profile and has_value(profile.get(profile_field)):
            return DataLookup(
                value=profile[profile_field],
                source=DataSource.PROFILE,
                confidence=PROFILE_CONFIDENCE,
            )
        return DataLookup()

    async def _from_inference(self, field: str, context: WorkflowContext) -> DataLookup:
        metadata = context.metadata
        if field == "timezone":
            value = metadata.get("timezone") or context.timezone or "UTC"
        elif field == "language":
            value = metadata.get("language") or context.language or "en"
        elif field == "priority":
            value = "high" if metadata.get("urgent") else "medium"
        else:
            return DataLookup()
        return DataLookup(
            value=value, source=DataSource.INFERENCE, confidence=INFERENCE_CONFIDENCE
        )
