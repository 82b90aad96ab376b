"""Input validation for task mutations.

Shared by the task store, the CLI and the HTTP layer so every entry point
rejects the same inputs.
"""

import re
from typing import Any, Dict, Optional

from tasksync.protocols import ValidationError

MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 5000

UPDATABLE_FIELDS = ("title", "description", "completed")


def sanitize_string(
    value: Any, field_name: str, max_length: int = 1000, required: bool = True
) -> Optional[str]:
    """Sanitize and validate string inputs.

    Args:
        value: The value to sanitize.
        field_name: Name of the field for error messages.
        max_length: Maximum allowed string length.
        required: If True, empty strings are rejected.

    Returns:
        Sanitized string, or None when an optional value is None.

    Raises:
        ValidationError: If validation fails.
    """
    if value is None and not required:
        return None

    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string, got {type(value).__name__}")

    if required and not value.strip():
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} too long (max {max_length} characters, got {len(value)})"
        )

    # Remove null bytes and control characters except newlines and tabs
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value)


def validate_task_create(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a create payload; title is required."""
    if not isinstance(data, dict):
        raise ValidationError("Task payload must be an object")
    validated = {
        "title": sanitize_string(data.get("title"), "title", MAX_TITLE_LENGTH),
        "description": sanitize_string(
            data.get("description"), "description", MAX_DESCRIPTION_LENGTH, required=False
        ),
        "completed": _validate_bool(data.get("completed", False), "completed"),
    }
    return validated


def validate_task_update(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a partial update; only provided fields are returned."""
    if not isinstance(data, dict):
        raise ValidationError("Task payload must be an object")
    if not data:
        raise ValidationError("Request body cannot be empty")

    updates: Dict[str, Any] = {}
    if "title" in data and data["title"] is not None:
        updates["title"] = sanitize_string(data["title"], "title", MAX_TITLE_LENGTH)
    if "description" in data:
        updates["description"] = sanitize_string(
            data["description"], "description", MAX_DESCRIPTION_LENGTH, required=False
        )
    if "completed" in data and data["completed"] is not None:
        updates["completed"] = _validate_bool(data["completed"], "completed")

    if not updates:
        raise ValidationError(f"No updatable fields given (expected one of {UPDATABLE_FIELDS})")
    return updates


def _validate_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a boolean")
    return value
