"""Built-in template catalog."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..constants import DEFAULT_SCHEDULING_TEMPLATE_ID
from ..contracts import TemplateCategory, WorkflowTemplate
from ..persistence import TemplateRecord, WorkflowRepository

logger = logging.getLogger(__name__)


_DEFAULT_SCHEDULING_STEPS: List[Dict[str, Any]] = [
    {
        "id": "gather_attendees",
        "type": "gather",
        "title": "Gather attendee information",
        "description": "Collect email addresses of meeting participants",
        "requiredData": ["attendees"],
        "critical": True,
    },
    {
        "id": "gather_datetime",
        "type": "gather",
        "title": "Determine meeting time",
        "description": "Specify when the meeting should occur",
        "requiredData": ["startTime", "endTime"],
        "critical": True,
        "prerequisites": [
            {"field": "startTime", "type": "datetime", "required": True},
            {"field": "endTime", "type": "datetime", "required": True},
        ],
    },
    {
        "id": "check_availability",
        "type": "execute",
        "title": "Check calendar availability",
        "description": "Verify the time slot is available",
        "dependsOn": ["gather_datetime"],
        "critical": True,
        "action": "check_availability",
    },
    {
        "id": "confirm_details",
        "type": "confirm",
        "title": "Confirm meeting details",
        "description": "Review all details before booking",
        "dependsOn": ["gather_attendees", "gather_datetime"],
        "critical": True,
    },
    {
        "id": "book_meeting",
        "type": "execute",
        "title": "Book the meeting",
        "description": "Create calendar event and send invites",
        "dependsOn": ["confirm_details", "check_availability"],
        "critical": True,
        "retryOnFailure": True,
        "action": "schedule_meeting",
    },
]

DEFAULT_SCHEDULING_TEMPLATE = WorkflowTemplate(
    id=DEFAULT_SCHEDULING_TEMPLATE_ID,
    name="Schedule Meeting",
    category=TemplateCategory.SCHEDULING.value,
    base_structure={"steps": _DEFAULT_SCHEDULING_STEPS},
    required_capabilities=["calendar"],
)


def default_scheduling_template() -> WorkflowTemplate:
    """Return a fresh copy of the fallback scheduling template."""
    return DEFAULT_SCHEDULING_TEMPLATE.model_copy(deep=True)


BUILTIN_TEMPLATES: List[TemplateRecord] = [
    TemplateRecord(
        id="schedule-meeting",
        name="Schedule Meeting",
        category=TemplateCategory.SCHEDULING.value,
        required_capabilities=["calendar"],
        success_rate=85.0,
        base_structure={
            "steps": [
                {
                    "id": "gather_attendees",
                    "type": "gather",
                    "title": "Gather attendee information",
                    "description": "Collect email addresses of meeting participants",
                    "requiredData": ["attendees"],
                    "critical": True,
                    "skip_if_known": True,
                    "prerequisites": [
                        {"field": "attendees", "type": "email", "required": True}
                    ],
                },
                {
                    "id": "gather_datetime",
                    "type": "gather",
                    "title": "Determine meeting time",
                    "description": "Specify when the meeting should occur",
                    "requiredData": ["startTime", "endTime"],
                    "critical": True,
                    "skip_if_known": True,
                    "prerequisites": [
                        {"field": "startTime", "type": "datetime", "required": True},
                        {"field": "endTime", "type": "datetime", "required": True},
                    ],
                },
                {
                    "id": "gather_details",
                    "type": "gather",
                    "title": "Collect meeting details",
                    "description": "Optional details like location and description",
                    "requiredData": [],
                    "optionalData": ["location", "description"],
                    "critical": False,
                    "skip_if_known": True,
                    "dependsOn": ["gather_attendees", "gather_datetime"],
                },
                {
                    "id": "check_availability",
                    "type": "execute",
                    "title": "Check calendar availability",
                    "description": "Find available time slots",
                    "requiredData": ["startTime", "endTime"],
                    "dependsOn": ["gather_datetime"],
                    "critical": True,
                    "action": "check_availability",
                },
                {
                    "id": "select_slot",
                    "type": "decision",
                    "title": "Select available time slot",
                    "description": "Choose from available slots or suggest alternatives",
                    "dependsOn": ["check_availability"],
                    "critical": True,
                },
                {
                    "id": "confirm_details",
                    "type": "confirm",
                    "title": "Confirm meeting details",
                    "description": "Review all details before booking",
                    "dependsOn": ["gather_attendees", "gather_datetime", "select_slot"],
                    "critical": True,
                },
                {
                    "id": "book_meeting",
                    "type": "execute",
                    "title": "Book the meeting",
                    "description": "Create calendar event and send invites",
                    "dependsOn": ["confirm_details"],
                    "critical": True,
                    "retryOnFailure": True,
                    "action": "schedule_meeting",
                },
                {
                    "id": "notify_success",
                    "type": "notify",
                    "title": "Send confirmation",
                    "description": "Notify about successful booking",
                    "dependsOn": ["book_meeting"],
                    "critical": False,
                    "action": "send_notification",
                },
            ]
        },
    ),
    TemplateRecord(
        id="create-support-ticket",
        name="Create Support Ticket",
        category=TemplateCategory.SUPPORT.value,
        success_rate=90.0,
        base_structure={
            "steps": [
                {
                    "id": "gather_issue",
                    "type": "gather",
                    "title": "Describe the issue",
                    "description": "Collect details about the problem",
                    "requiredData": ["issue_description", "severity"],
                    "critical": True,
                },
                {
                    "id": "gather_contact",
                    "type": "gather",
                    "title": "Contact information",
                    "description": "How to reach you about this issue",
                    "requiredData": ["contact_email"],
                    "optionalData": ["phone"],
                    "critical": True,
                },
                {
                    "id": "categorize",
                    "type": "decision",
                    "title": "Categorize issue",
                    "description": "Determine issue type and priority",
                    "dependsOn": ["gather_issue"],
                    "critical": False,
                },
                {
                    "id": "create_ticket",
                    "type": "execute",
                    "title": "Create support ticket",
                    "description": "Submit the ticket to support system",
                    "dependsOn": ["gather_issue", "gather_contact"],
                    "critical": True,
                    "action": "create_ticket",
                },
                {
                    "id": "send_confirmation",
                    "type": "notify",
                    "title": "Send confirmation",
                    "description": "Email ticket details and number",
                    "dependsOn": ["create_ticket"],
                    "critical": False,
                    "action": "send_email",
                },
            ]
        },
    ),
    TemplateRecord(
        id="send-team-update",
        name="Send Team Update",
        category=TemplateCategory.COMMUNICATION.value,
        required_capabilities=["email", "slack"],
        success_rate=95.0,
        base_structure={
            "steps": [
                {
                    "id": "gather_recipients",
                    "type": "gather",
                    "title": "Select recipients",
                    "description": "Who should receive this update",
                    "requiredData": ["recipients"],
                    "critical": True,
                },
                {
                    "id": "compose_message",
                    "type": "gather",
                    "title": "Compose message",
                    "description": "Write your update message",
                    "requiredData": ["subject", "message"],
                    "critical": True,
                },
                {
                    "id": "review",
                    "type": "confirm",
                    "title": "Review message",
                    "description": "Check message before sending",
                    "dependsOn": ["gather_recipients", "compose_message"],
                    "critical": True,
                },
                {
                    "id": "send",
                    "type": "execute",
                    "title": "Send update",
                    "description": "Deliver message to recipients",
                    "dependsOn": ["review"],
                    "critical": True,
                    "action": "send_message",
                },
            ]
        },
    ),
    TemplateRecord(
        id="collect-feedback",
        name="Collect Feedback",
        category=TemplateCategory.DATA_COLLECTION.value,
        success_rate=88.0,
        base_structure={
            "steps": [
                {
                    "id": "define_questions",
                    "type": "gather",
                    "title": "Define questions",
                    "description": "What information to collect",
                    "requiredData": ["questions"],
                    "critical": True,
                },
                {
                    "id": "select_audience",
                    "type": "gather",
                    "title": "Select audience",
                    "description": "Who to collect feedback from",
                    "requiredData": ["audience"],
                    "critical": True,
                },
                {
                    "id": "set_deadline",
                    "type": "gather",
                    "title": "Set deadline",
                    "description": "When responses are needed by",
                    "requiredData": ["deadline"],
                    "critical": False,
                },
                {
                    "id": "create_form",
                    "type": "execute",
                    "title": "Create feedback form",
                    "description": "Generate the collection form",
                    "dependsOn": ["define_questions"],
                    "critical": True,
                    "action": "create_form",
                },
                {
                    "id": "distribute",
                    "type": "execute",
                    "title": "Distribute form",
                    "description": "Send to selected audience",
                    "dependsOn": ["create_form", "select_audience"],
                    "critical": True,
                    "action": "distribute_form",
                },
            ]
        },
    ),
]


async def seed_templates(repository: WorkflowRepository) -> List[str]:
    """Insert the built-in templates that are not yet in the catalog.

    Existing rows are left untouched so learned success rates survive a
    reseed. Returns the ids that were inserted.
    """

    inserted: List[str] = []
    for template in BUILTIN_TEMPLATES:
        if await repository.get_template(template.id) is not None:
            continue
        await repository.save_template(template.model_copy(deep=True))
        inserted.append(template.id)
    logger.info(f"Seeded {len(inserted)} workflow templates")
    return inserted
