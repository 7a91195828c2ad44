"""
Input Validation Utilities

Length checks for user-submitted saying fields. Each validator returns the
cleaned value or raises twokinds.errors.ValidationError naming the
offending field.
"""

from twokinds.errors import ValidationError
from twokinds.utils.text import collapse_whitespace


# Bounds for first_kind / second_kind
KIND_MIN_LENGTH = 3
KIND_MAX_LENGTH = 100

# Bounds for a user-proposed type name
TYPE_NAME_MIN_LENGTH = 3
TYPE_NAME_MAX_LENGTH = 50

FIELD_LABELS = {
    "first_kind": "First kind",
    "second_kind": "Second kind",
    "new_type": "New type",
}


def _validate_length(field: str, value: str | None, min_length: int, max_length: int) -> str:
    label = FIELD_LABELS.get(field, field)
    value = collapse_whitespace(value or "")
    if len(value) < min_length:
        raise ValidationError(field, f"{label} must be at least {min_length} characters")
    if len(value) > max_length:
        raise ValidationError(field, f"{label} must not exceed {max_length} characters")
    return value


def validate_kind(field: str, value: str | None) -> str:
    """
    Validate one half of a saying.

    Whitespace is collapsed before measuring, so "  a  " does not pass as
    three characters.

    Example:
        >>> validate_kind("first_kind", "  eat the crust  first ")
        'eat the crust first'
    """
    return _validate_length(field, value, KIND_MIN_LENGTH, KIND_MAX_LENGTH)


def validate_type_name(value: str | None) -> str:
    return _validate_length("new_type", value, TYPE_NAME_MIN_LENGTH, TYPE_NAME_MAX_LENGTH)
