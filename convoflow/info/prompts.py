"""Phrase requests for missing information as conversational prompts."""

from __future__ import annotations

import random
import re
from typing import Any, Dict, List, Mapping, Optional

from ..contracts import ConversationPrompt, FieldType, InfoRequirement, Tone

PROMPT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "email": {
        "initial": "What email address should I use for {purpose}?",
        "follow_up": "Please provide a valid email address (e.g., name@example.com)",
        "clarification": "I need an email address to {action}. Can you provide one?",
    },
    "attendees": {
        "initial": "Who should attend this {eventType}?",
        "follow_up": "Please provide the email addresses of the attendees, separated by commas.",
        "clarification": "I can add multiple attendees. Just list their email addresses.",
    },
    "dateTime": {
        "initial": "When would you like to {action}?",
        "follow_up": "Please specify a date and time (e.g., 'tomorrow at 2pm' or 'Friday, March 15 at 10:30am')",
        "clarification": "I need both the date and time for scheduling.",
    },
    "title": {
        "initial": "What should we call this {itemType}?",
        "follow_up": "Please provide a brief, descriptive title.",
        "clarification": "A short title will help identify this {itemType} later.",
    },
    "description": {
        "initial": "How would you describe {subject}?",
        "follow_up": "Please provide more details about {subject}.",
        "clarification": "Additional context will help me {action} more effectively.",
    },
    "priority": {
        "initial": "How urgent is this {itemType}?",
        "follow_up": "Please choose a priority level: Low, Medium, High, or Urgent",
        "clarification": "This helps me understand how quickly to handle your request.",
    },
    "confirmation": {
        "initial": "I have the following details:\n{details}\n\nShall I proceed?",
        "follow_up": "Please confirm with 'yes' to proceed or 'no' to make changes.",
        "clarification": "I want to make sure everything is correct before {action}.",
    },
}

_TEMPLATES_BY_KEY = {key.lower(): key for key in PROMPT_TEMPLATES}

_TEMPLATE_FOR_TYPE = {
    FieldType.EMAIL: "email",
    FieldType.DATE: "dateTime",
    FieldType.TIME: "dateTime",
    FieldType.DATETIME: "dateTime",
}

PLACEHOLDER_DEFAULTS: Dict[str, str] = {
    "purpose": "this request",
    "action": "proceed",
    "eventType": "meeting",
    "itemType": "item",
    "subject": "this",
    "details": "",
}

FIELD_EXAMPLES: Dict[str, List[str]] = {
    "email": ["john.doe@example.com", "team@company.org"],
    "phone": ["+1 (555) 123-4567", "555-0123"],
    "date": ["2024-03-15", "tomorrow", "next Monday"],
    "time": ["14:30", "2:30 PM", "3pm"],
    "datetime": ["2024-03-15T14:30:00", "2024-03-15T09:00:00+01:00"],
    "priority": ["Low", "Medium", "High", "Urgent"],
}

FRIENDLY_PREFIXES = (
    "I'd be happy to help! ",
    "Great! ",
    "Perfect! ",
    "Sounds good! ",
)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def template_for(requirement: InfoRequirement) -> Dict[str, str]:
    """Pick the phrasing for a field: by name, then by type, then generic."""
    key = _TEMPLATES_BY_KEY.get(requirement.field.lower())
    if key is None:
        key = _TEMPLATE_FOR_TYPE.get(requirement.type, "description")
    return PROMPT_TEMPLATES[key]


def determine_tone(context: Optional[Mapping[str, Any]] = None) -> Tone:
    context = context or {}
    if context.get("urgent") or context.get("priority") == "urgent":
        return Tone.URGENT
    if context.get("formal") or context.get("businessContext"):
        return Tone.PROFESSIONAL
    if context.get("casual") or context.get("friendlyMode"):
        return Tone.CASUAL
    return Tone.FRIENDLY


def replace_placeholders(template: str, values: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` markers; unknown markers are left as written."""

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


def field_examples(requirement: InfoRequirement) -> List[str]:
    examples = FIELD_EXAMPLES.get(requirement.type.value)
    if examples is None:
        examples = FIELD_EXAMPLES.get(requirement.field.lower(), [])
    return list(examples)


def apply_tone(message: str, tone: Tone, rng: Optional[random.Random] = None) -> str:
    if tone is Tone.FRIENDLY:
        return (rng or random).choice(FRIENDLY_PREFIXES) + message
    if tone is Tone.URGENT:
        return "⚠️ " + message + " (This is time-sensitive)"
    return message


def generate_prompt(
    requirement: InfoRequirement,
    context: Optional[Mapping[str, Any]] = None,
    rng: Optional[random.Random] = None,
) -> ConversationPrompt:
    """Build the prompt asking the user for ``requirement``."""

    context = dict(context or {})
    template = template_for(requirement)
    tone = determine_tone(context)
    values = {**PLACEHOLDER_DEFAULTS}
    values.update({k: v for k, v in context.items() if k in PLACEHOLDER_DEFAULTS and v})

    return ConversationPrompt(
        message=apply_tone(replace_placeholders(template["initial"], values), tone, rng),
        follow_up=replace_placeholders(template["follow_up"], values),
        examples=field_examples(requirement),
        clarification=replace_placeholders(template["clarification"], values),
        tone=tone,
        fields=[requirement.field],
    )


def group_related_fields(
    requirements: List[InfoRequirement],
) -> List[List[InfoRequirement]]:
    """Pair each date field with a time field naming the same concept.

    ``meetingDate`` pairs with ``meetingTime``; every other field forms its
    own group. Input order is preserved.
    """

    groups: List[List[InfoRequirement]] = []
    used: set[str] = set()
    for req in requirements:
        if req.field in used:
            continue
        used.add(req.field)
        if req.type is FieldType.DATE:
            stem = req.field.lower().replace("date", "")
            partner = next(
                (
                    r
                    for r in requirements
                    if r.type is FieldType.TIME
                    and r.field not in used
                    and stem in r.field.lower()
                ),
                None,
            )
            if partner is not None:
                used.add(partner.field)
                groups.append([req, partner])
                continue
        groups.append([req])
    return groups


def generate_combined_prompt(fields: List[InfoRequirement]) -> ConversationPrompt:
    names = " and ".join(f.field for f in fields)
    return ConversationPrompt(
        message=f"Please provide the {names}",
        follow_up=f"I need {len(fields)} pieces of information: {names}",
        examples=[example for f in fields for example in field_examples(f)],
        tone=Tone.FRIENDLY,
        fields=[f.field for f in fields],
    )


def build_conversation_flow(
    requirements: List[InfoRequirement],
    context: Optional[Mapping[str, Any]] = None,
    rng: Optional[random.Random] = None,
) -> List[ConversationPrompt]:
    """One prompt per group of related missing fields."""
    prompts = []
    for group in group_related_fields(requirements):
        if len(group) == 1:
            prompts.append(generate_prompt(group[0], context, rng))
        else:
            prompts.append(generate_combined_prompt(group))
    return prompts
