"""
Field-name repair.

LLMs often answer snake_case contracts with camelCase keys
(courseTitle instead of course_title). Keys are renamed only when the
snake_case form is declared by the contract and not already present.
"""
import logging
import re
from typing import Any

from ..models.contract import FieldSpec, FieldType
from .helpers import ROOT_PATH, join_path

logger = logging.getLogger(__name__)

_FIRST_CAP_RE = re.compile(r"(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATOR_RE = re.compile(r"[\s\-]+")


def to_snake_case(name: str) -> str:
    """courseTitle -> course_title, HTTPStatus -> http_status, lesson-id -> lesson_id."""
    name = _SEPARATOR_RE.sub("_", name.strip())
    name = _FIRST_CAP_RE.sub(r"\1_\2", name)
    name = _ALL_CAP_RE.sub(r"\1_\2", name)
    return re.sub(r"_+", "_", name).lower()


def fix_field_names(data: Any, spec: FieldSpec, path: str = ROOT_PATH) -> tuple[Any, list[str]]:
    """
    Rename undeclared keys to their declared snake_case form, recursively.

    Returns:
        (new_data, change descriptions). Input is never mutated.
    """
    changes: list[str] = []
    fixed = _fix(data, spec, path, changes)
    return fixed, changes


def _fix(data: Any, spec: FieldSpec, path: str, changes: list[str]) -> Any:
    if spec is None:
        return data

    if spec.type == FieldType.ARRAY and isinstance(data, list) and spec.items is not None:
        return [_fix(item, spec.items, join_path(path, i), changes) for i, item in enumerate(data)]

    if spec.type != FieldType.OBJECT or not isinstance(data, dict):
        return data

    result: dict = {}
    for key, value in data.items():
        new_key = key
        if isinstance(key, str) and key not in spec.fields:
            candidate = to_snake_case(key)
            if candidate != key and candidate in spec.fields and candidate not in data and candidate not in result:
                new_key = candidate
                changes.append(f"renamed {join_path(path, key)} -> {join_path(path, candidate)}")
                logger.info(f"Field name fixed: {key!r} -> {candidate!r} at {path}")

        child_spec = spec.fields.get(new_key) if isinstance(new_key, str) else None
        if child_spec is not None:
            value = _fix(value, child_spec, join_path(path, new_key), changes)
        result[new_key] = value

    return result
