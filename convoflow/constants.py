"""Shared tunables for the workflow engine."""

DEFAULT_SCHEDULING_TEMPLATE_ID = "default-scheduling"

# A value is "known" when its source confidence reaches this threshold.
MISSING_INFO_CONFIDENCE_THRESHOLD = 0.7
MEMORY_LOOKBACK = 10

EXISTING_DATA_CONFIDENCE = 1.0
MEMORY_CONFIDENCE = 0.9
PROFILE_CONFIDENCE = 1.0
INFERENCE_CONFIDENCE = 0.5

USER_INFO_MEMORY_TYPE = "user_info"
MEMORY_INFERABLE_FIELDS = ("email", "name", "phone", "preferences")
PROFILE_FIELD_MAP = {
    "email": "email",
    "name": "name",
    "phone": "phone",
    "timezone": "timezone",
}

# Learning store
NEW_PATTERN_SUCCESS_CONFIDENCE = 60.0
NEW_PATTERN_FAILURE_CONFIDENCE = 40.0
CONFIDENCE_SUCCESS_BOOST = 5.0
CONFIDENCE_FAILURE_PENALTY = -3.0
MAX_CONFIDENCE_WEIGHT = 0.9
PATTERN_SUGGESTION_CONFIDENCE = 70.0
PATTERN_SUGGESTION_LIMIT = 5

PARTIAL_DATA_DEFAULTS = {
    "priority": "medium",
    "includeMeetingLink": True,
    "sendNotifications": True,
    "timezone": "UTC",
}
MAX_MISSING_CRITICAL_FOR_ASK = 2
