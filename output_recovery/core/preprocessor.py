"""
Preprocessor - deterministic, zero-cost normalization before validation.

Enum values are lowercased, trimmed and separator-collapsed, then looked up
in the caller's synonym table. Every substitution is logged with its
before/after values so silent semantic rewriting stays auditable.

Zero network calls and zero failure modes: the worst case is "no change".
"""
import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.contract import FieldSpec, FieldType, SchemaContract
from ..models.schemas import RegenerationConfig
from ..utils.field_names import fix_field_names
from ..utils.helpers import ROOT_PATH, join_path, normalize_text, parse_path, resolve_synonyms, strip_indices

logger = logging.getLogger(__name__)

StructureNormalizer = Callable[[Any], Any]


def _synonym_table(field: str, config: RegenerationConfig) -> Dict[str, str]:
    """Resolved alias table for a field; the index-free path wins over the bare name."""
    segments = [s for s in parse_path(field) if isinstance(s, str)]
    candidates = [strip_indices(field)]
    if segments:
        candidates.append(segments[-1])

    for key in candidates:
        aliases = config.enum_synonyms.get(key)
        if aliases:
            return resolve_synonyms(aliases)
    return {}


def normalize(
    value: Any,
    field: str,
    config: RegenerationConfig,
    allowed_values: Optional[tuple] = None,
) -> Tuple[Any, bool, str]:
    """
    Normalize one enum value.

    Args:
        value: Raw value from the payload
        field: Field path or bare field name (keys enum_synonyms)
        config: Per-call configuration holding the synonym table
        allowed_values: Contract's allowed set, used to restore exact spelling

    Returns:
        (normalized_value, changed, description)
    """
    if not isinstance(value, str):
        return value, False, ""

    normalized = normalize_text(value)
    table = _synonym_table(field, config)

    if normalized in table:
        return _outcome(value, table[normalized], "synonym")

    for canonical in table.values():
        if normalize_text(canonical) == normalized:
            return _outcome(value, canonical, "canonical form")

    for allowed in allowed_values or ():
        if isinstance(allowed, str) and normalize_text(allowed) == normalized:
            return _outcome(value, allowed, "normalized")

    return _outcome(value, normalized, "normalized")


def _outcome(value: str, result: str, how: str) -> Tuple[str, bool, str]:
    if result == value:
        return result, False, ""
    return result, True, f"{how} {value!r} -> {result!r}"


def preprocess(
    data: Any,
    contract: SchemaContract,
    config: RegenerationConfig,
    structure_normalizer: Optional[StructureNormalizer] = None,
) -> Tuple[Any, List[str]]:
    """
    Run the whole preprocessing pass over a parsed payload.

    Order: field-name repair -> structure normalizer hook -> enum normalization.
    Enum values are only written back when the normalized value is allowed.

    Returns:
        (new_data, change descriptions). The input is never mutated.
    """
    changes: List[str] = []
    working = copy.deepcopy(data)

    if config.fix_field_names:
        working, renamed = fix_field_names(working, contract.root)
        changes.extend(renamed)

    if structure_normalizer is not None:
        try:
            reshaped = structure_normalizer(copy.deepcopy(working))
            if reshaped != working:
                logger.info("[PREPROCESS] structure normalizer reshaped payload")
                changes.append("structure normalizer reshaped payload")
            working = reshaped
        except Exception as e:
            logger.warning(f"Structure normalizer failed, continuing with un-normalized data: {e}")

    working = _normalize_enums(working, contract.root, ROOT_PATH, config, changes)
    return working, changes


def _normalize_enums(
    value: Any,
    spec: Optional[FieldSpec],
    path: str,
    config: RegenerationConfig,
    changes: List[str],
) -> Any:
    if spec is None:
        return value

    if spec.type == FieldType.ENUM:
        if not isinstance(value, str) or value in spec.allowed_values:
            return value
        normalized, changed, description = normalize(value, path, config, spec.allowed_values)
        if changed and normalized in spec.allowed_values:
            logger.info(f"[PREPROCESS] {path}: {description}")
            changes.append(f"{path}: {description}")
            return normalized
        return value

    if spec.type == FieldType.ARRAY and isinstance(value, list) and spec.items is not None:
        for index, item in enumerate(value):
            value[index] = _normalize_enums(item, spec.items, join_path(path, index), config, changes)
        return value

    if spec.type == FieldType.OBJECT and isinstance(value, dict):
        for name, child in spec.fields.items():
            if name in value:
                value[name] = _normalize_enums(value[name], child, join_path(path, name), config, changes)
        return value

    return value
