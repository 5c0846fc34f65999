"""
Schema validation against caller-supplied contracts.

validate() is pure and total: it reports every violation in one pass and
never raises.
"""

from .schema_validator import (
    validate,
    validate_or_raise,
    is_conformant,
    only_enum_violations,
    expected_label,
)

__all__ = [
    "validate",
    "validate_or_raise",
    "is_conformant",
    "only_enum_violations",
    "expected_label",
]
