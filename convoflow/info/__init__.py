"""Information gathering: sourcing, prompting, validation and partial data."""

from __future__ import annotations

from .orchestrator import InformationOrchestrator, to_requirement
from .partial import (
    critical_fields,
    determine_strategy,
    handle_partial_info,
    infer_missing_data,
)
from .prompts import (
    PROMPT_TEMPLATES,
    build_conversation_flow,
    determine_tone,
    generate_prompt,
    group_related_fields,
)
from .sources import DataLookup, DataSourceChain, has_value, infer_field_type, known_confidence
from .validation import damerau_levenshtein, normalize_value, validate_info

__all__ = [
    "PROMPT_TEMPLATES",
    "DataLookup",
    "DataSourceChain",
    "InformationOrchestrator",
    "build_conversation_flow",
    "critical_fields",
    "damerau_levenshtein",
    "determine_strategy",
    "determine_tone",
    "generate_prompt",
    "group_related_fields",
    "handle_partial_info",
    "has_value",
    "infer_field_type",
    "infer_missing_data",
    "known_confidence",
    "normalize_value",
    "to_requirement",
    "validate_info",
]
