"""
Schema Validator.

Walks a SchemaContract against parsed data and reports EVERY violation in a
single pass, in document order. Pure and total: any Python value is accepted
and the function never raises.
"""
import logging
from typing import Any, List

from ..errors import SchemaViolation
from ..models.contract import FieldSpec, FieldType, SchemaContract
from ..models.results import ValidationViolation, ViolationKind
from ..utils.helpers import ROOT_PATH, join_path

logger = logging.getLogger(__name__)


def validate(data: Any, contract: SchemaContract) -> List[ValidationViolation]:
    """
    Validate data against a contract.

    Args:
        data: Parsed payload (usually the result of json.loads)
        contract: Declared shape

    Returns:
        Ordered list of violations; empty iff data is fully conformant
    """
    violations: List[ValidationViolation] = []
    try:
        _check(data, contract.root, ROOT_PATH, violations)
    except RecursionError:
        violations.append(ValidationViolation(
            path=ROOT_PATH,
            kind=ViolationKind.STRUCTURAL_INVALID,
            expected="payload nested within interpreter recursion limit",
            received="<too deeply nested>",
        ))
    return violations


def validate_or_raise(data: Any, contract: SchemaContract) -> Any:
    """Return data unchanged if conformant, else raise SchemaViolation."""
    violations = validate(data, contract)
    if violations:
        raise SchemaViolation(violations)
    return data


def is_conformant(data: Any, contract: SchemaContract) -> bool:
    return not validate(data, contract)


def only_enum_violations(violations: List[ValidationViolation]) -> bool:
    """True when the list is non-empty and every entry is an EnumViolation."""
    return bool(violations) and all(v.kind == ViolationKind.ENUM_VIOLATION for v in violations)


# =============================================================================
# INTERNAL WALK
# =============================================================================

def expected_label(spec: FieldSpec) -> str:
    """Short human-readable label for what a spec accepts."""
    described = spec.describe()
    if isinstance(described, str):
        return described
    return "object" if spec.type == FieldType.OBJECT else "array"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _enum_member(value: Any, allowed: tuple) -> bool:
    """Exact membership: True never matches 1, 1 never matches "1"."""
    for candidate in allowed:
        if isinstance(candidate, bool) != isinstance(value, bool):
            continue
        if type(candidate) is str and type(value) is not str:
            continue
        try:
            if candidate == value:
                return True
        except Exception:  # exotic __eq__ implementations
            continue
    return False


def _check(value: Any, spec: FieldSpec, path: str, out: List[ValidationViolation]) -> None:
    if spec.type == FieldType.ANY:
        return

    if value is None:
        if not spec.nullable:
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), None))
        return

    if spec.type == FieldType.STRING:
        if not isinstance(value, str):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))
            return
        _check_length(value, len(value), "characters", spec, path, out)

    elif spec.type == FieldType.NUMBER:
        if not _is_number(value):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))

    elif spec.type == FieldType.INTEGER:
        if not isinstance(value, int) or isinstance(value, bool):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))

    elif spec.type == FieldType.BOOLEAN:
        if not isinstance(value, bool):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))

    elif spec.type == FieldType.ENUM:
        if not _enum_member(value, spec.allowed_values):
            out.append(ValidationViolation(path, ViolationKind.ENUM_VIOLATION, expected_label(spec), value))

    elif spec.type == FieldType.ARRAY:
        if not isinstance(value, (list, tuple)):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))
            return
        _check_length(value, len(value), "items", spec, path, out)
        if spec.items is not None:
            for index, item in enumerate(value):
                _check(item, spec.items, join_path(path, index), out)

    elif spec.type == FieldType.OBJECT:
        if not isinstance(value, dict):
            out.append(ValidationViolation(path, ViolationKind.TYPE_MISMATCH, expected_label(spec), value))
            return
        _check_length(value, len(value), "properties", spec, path, out)

        for name, child in spec.fields.items():
            child_path = join_path(path, name)
            if name not in value:
                if child.required:
                    out.append(ValidationViolation(
                        child_path, ViolationKind.MISSING_REQUIRED, expected_label(child), None
                    ))
                continue
            _check(value[name], child, child_path, out)

        if not spec.additional_properties:
            for key in value:
                if key not in spec.fields:
                    out.append(ValidationViolation(
                        join_path(path, str(key)),
                        ViolationKind.EXTRA_PROPERTY,
                        "no undeclared properties",
                        value[key],
                    ))


def _check_length(
    value: Any,
    size: int,
    unit: str,
    spec: FieldSpec,
    path: str,
    out: List[ValidationViolation],
) -> None:
    """Cardinality bounds are reported as StructuralInvalid."""
    if spec.min_length is not None and size < spec.min_length:
        out.append(ValidationViolation(
            path,
            ViolationKind.STRUCTURAL_INVALID,
            f"at least {spec.min_length} {unit}",
            value,
        ))
    if spec.max_length is not None and size > spec.max_length:
        out.append(ValidationViolation(
            path,
            ViolationKind.STRUCTURAL_INVALID,
            f"at most {spec.max_length} {unit}",
            value,
        ))
