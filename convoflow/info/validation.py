"""Validate and normalise values collected from the user.

Validation never raises: every problem is reported on the returned
:class:`~convoflow.contracts.ValidationResult` so it can be relayed back
to the user conversationally.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, List, Optional

from ..contracts import FieldType, InfoRequirement, ValidationResult, ValidationRule

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\s\-\(\)]*\d[\d\s\-\(\)]*$")
TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

PERSONAL_EMAIL_PROVIDERS = ("gmail", "yahoo", "hotmail", "outlook")
COMMON_EMAIL_DOMAINS = ("gmail.com", "outlook.com", "yahoo.com")
HOLIDAYS = ("01-01", "07-04", "12-25")

_DATE_FORMATS = ("%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y", "%B %d, %Y", "%b %d, %Y")

_STRING_TYPES = {
    FieldType.TEXT,
    FieldType.EMAIL,
    FieldType.PHONE,
    FieldType.DATE,
    FieldType.TIME,
    FieldType.DATETIME,
    FieldType.SELECT,
}
_TRIMMED_TYPES = {
    FieldType.EMAIL,
    FieldType.PHONE,
    FieldType.DATE,
    FieldType.TIME,
    FieldType.DATETIME,
}


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime, accepting a trailing ``Z``."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date(value: str) -> Optional[date]:
    """Parse ISO dates and datetimes plus a few common written forms."""
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed.date()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def damerau_levenshtein(a: str, b: str) -> int:
    """Edit distance counting adjacent transpositions as one edit."""
    rows = len(a) + 1
    cols = len(b) + 1
    d = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        d[i][0] = i
    for j in range(cols):
        d[0][j] = j
    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            d[i][j] = min(d[i - 1][j] + 1, d[i][j - 1] + 1, d[i - 1][j - 1] + cost)
            if i > 1 and j > 1 and a[i - 1] == b[j - 2] and a[i - 2] == b[j - 1]:
                d[i][j] = min(d[i][j], d[i - 2][j - 2] + 1)
    return d[-1][-1]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _check_type(value: Any, field_type: FieldType) -> bool:
    if field_type in _STRING_TYPES:
        return isinstance(value, str)
    if field_type is FieldType.NUMBER:
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return True
        try:
            float(value)
        except (TypeError, ValueError):
            return False
        return True
    if field_type is FieldType.BOOLEAN:
        return isinstance(value, bool) or (
            isinstance(value, str) and value.strip().lower() in ("true", "false")
        )
    if field_type is FieldType.MULTISELECT:
        return isinstance(value, list)
    return True


def _apply_rule(value: Any, rule: ValidationRule) -> List[str]:
    if rule.type == "regex" and rule.pattern:
        if not re.search(rule.pattern, str(value)):
            return [rule.message or "Value does not match expected pattern"]
    elif rule.type == "function" and rule.validator is not None:
        try:
            accepted = rule.validator(value)
        except Exception as exc:
            logger.warning(f"Custom validator raised: {exc}")
            accepted = False
        if not accepted:
            return [rule.message or "Validation failed"]
    return []


def _check_field(
    value: Any, requirement: InfoRequirement, result: ValidationResult, today: date
) -> None:
    constraints = requirement.constraints or {}
    field_type = requirement.type

    if field_type is FieldType.EMAIL:
        if not EMAIL_PATTERN.match(value):
            result.errors.append("Invalid email address format")
        elif constraints.get("businessOnly"):
            domain = value.split("@", 1)[1].lower()
            if domain.startswith(PERSONAL_EMAIL_PROVIDERS):
                result.warnings.append(
                    "Personal email addresses may not be suitable for business communications"
                )

    elif field_type is FieldType.PHONE:
        if not PHONE_PATTERN.match(value):
            result.errors.append("Invalid phone number format")

    elif field_type is FieldType.DATE:
        parsed = parse_date(value)
        if parsed is None:
            result.errors.append("Invalid date format")
            return
        if constraints.get("futureOnly") and parsed < today:
            result.errors.append("Date must be in the future")
        if constraints.get("businessDays") and parsed.weekday() >= 5:
            result.warnings.append("Selected date is not a business day")

    elif field_type is FieldType.TIME:
        match = TIME_PATTERN.match(value)
        if not match or int(match.group(1)) > 23 or int(match.group(2)) > 59:
            result.errors.append("Invalid time format")
            return
        if constraints.get("businessHours"):
            hours = int(match.group(1))
            if hours < 9 or hours >= 18:
                result.warnings.append(
                    "Selected time is outside business hours (9 AM - 6 PM)"
                )

    elif field_type is FieldType.DATETIME:
        moment = parse_datetime(value)
        if moment is None:
            result.errors.append("Invalid date and time format")
            return
        if constraints.get("futureOnly") and moment.date() < today:
            result.errors.append("Date must be in the future")

    elif field_type is FieldType.NUMBER:
        number = float(value)
        minimum = constraints.get("min")
        maximum = constraints.get("max")
        if minimum is not None and number < minimum:
            result.errors.append(f"Value must be at least {minimum}")
        if maximum is not None and number > maximum:
            result.errors.append(f"Value must be at most {maximum}")

    elif field_type is FieldType.SELECT:
        if requirement.options and value not in requirement.options:
            result.errors.append(
                f"Value must be one of: {', '.join(requirement.options)}"
            )

    elif field_type is FieldType.MULTISELECT:
        if requirement.options:
            invalid = [item for item in value if item not in requirement.options]
            if invalid:
                result.errors.append(f"Invalid options: {', '.join(map(str, invalid))}")


def normalize_value(value: Any, field_type: FieldType) -> Any:
    """Canonical form of a value that already passed validation."""
    if field_type is FieldType.EMAIL:
        return value.strip().lower()
    if field_type is FieldType.PHONE:
        digits = re.sub(r"\D", "", value)
        return "+" + digits if value.strip().startswith("+") else digits
    if field_type is FieldType.DATE:
        parsed = parse_date(value.strip())
        return parsed.isoformat() if parsed else value
    if field_type is FieldType.TIME:
        match = TIME_PATTERN.match(value.strip())
        if match:
            return f"{int(match.group(1)):02d}:{match.group(2)}"
        return value
    if field_type is FieldType.DATETIME:
        moment = parse_datetime(value)
        return moment.isoformat() if moment else value
    if field_type is FieldType.BOOLEAN:
        return value is True or (isinstance(value, str) and value.strip().lower() == "true")
    if field_type is FieldType.NUMBER:
        number = float(value)
        return int(number) if number.is_integer() else number
    return value


def _suggestions(value: Any, requirement: InfoRequirement) -> List[str]:
    suggestions: List[str] = []
    if requirement.type is FieldType.EMAIL and isinstance(value, str) and "@" in value:
        local, domain = value.lower().split("@", 1)
        if domain:
            similar = next(
                (d for d in COMMON_EMAIL_DOMAINS if damerau_levenshtein(domain, d) <= 2),
                None,
            )
            if similar and similar != domain:
                suggestions.append(f"Did you mean {local}@{similar}?")
    elif requirement.type is FieldType.DATE and isinstance(value, str):
        parsed = parse_date(value)
        if parsed is not None:
            suggestions.append(f"This is a {parsed.strftime('%A')}")
            if parsed.strftime("%m-%d") in HOLIDAYS:
                suggestions.append("Note: This date is a holiday")
    return suggestions


def validate_info(
    data: Any, requirement: InfoRequirement, today: Optional[date] = None
) -> ValidationResult:
    """Check ``data`` against ``requirement`` and normalise it.

    Strings of the email, phone, date and time types are trimmed before any
    check. The normalised value is only set on a valid result.
    """

    result = ValidationResult()
    today = today or date.today()
    value = data
    if requirement.type in _TRIMMED_TYPES and isinstance(value, str):
        value = value.strip()

    if _is_empty(value):
        if requirement.required:
            result.valid = False
            result.errors.append(f"{requirement.field} is required")
        return result

    if not _check_type(value, requirement.type):
        result.valid = False
        result.errors.append(
            f"Expected {requirement.type.value} but got {type(data).__name__}"
        )
        return result

    if requirement.validation is not None:
        result.errors.extend(_apply_rule(value, requirement.validation))

    _check_field(value, requirement, result, today)
    result.suggestions.extend(_suggestions(value, requirement))

    if result.errors:
        result.valid = False
        logger.debug(f"Validation of {requirement.field} failed: {result.errors}")
        return result

    result.normalized_value = normalize_value(value, requirement.type)
    return result
