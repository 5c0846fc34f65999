"""Utility helper functions for JSON paths and payload handling."""
import json
import re
from datetime import datetime, timezone
from typing import Any, Union

ROOT_PATH = "$"

PathSegment = Union[str, int]

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def parse_path(path: str) -> list[PathSegment]:
    """
    Split a dot/index path into segments.

    "sections[0].lessons[2].title" -> ["sections", 0, "lessons", 2, "title"]
    "$" and "" both address the document root.
    """
    if not path or path == ROOT_PATH:
        return []
    if path.startswith(ROOT_PATH):
        path = path[len(ROOT_PATH):].lstrip(".")

    segments: list[PathSegment] = []
    for key, index in _SEGMENT_RE.findall(path):
        if index:
            segments.append(int(index))
        else:
            segments.append(key)
    return segments


def format_path(segments: list[PathSegment]) -> str:
    """Inverse of parse_path."""
    if not segments:
        return ROOT_PATH

    path = ""
    for segment in segments:
        if isinstance(segment, int):
            path += f"[{segment}]"
        else:
            path = f"{path}.{segment}" if path else segment
    return path


def join_path(base: str, segment: PathSegment) -> str:
    """Append a key or index to an existing path."""
    return format_path(parse_path(base) + [segment])


def strip_indices(path: str) -> str:
    """Drop array indices: "sections[0].exercise_type" -> "sections.exercise_type"."""
    return ".".join(s for s in parse_path(path) if isinstance(s, str))


_MISSING = object()


def get_by_path(obj: Any, path: str, default: Any = None) -> Any:
    """Get value from nested dicts/lists using dot/index notation."""
    current = obj
    for segment in parse_path(path):
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                return default
            current = current[segment]
        else:
            if not isinstance(current, dict) or segment not in current:
                return default
            current = current[segment]
    return current


def path_exists(obj: Any, path: str) -> bool:
    """Check whether a path resolves to a value (None counts as a value)."""
    return get_by_path(obj, path, _MISSING) is not _MISSING


def set_by_path(obj: Any, path: str, value: Any) -> Any:
    """
    Set value in nested dicts/lists using dot/index notation.

    Setting the root path replaces the document, so the (possibly new)
    document is returned.
    """
    segments = parse_path(path)
    if not segments:
        return value

    current = obj
    for segment in segments[:-1]:
        current = current[segment]
    current[segments[-1]] = value
    return obj


def common_path_prefix(paths: list[str]) -> list[PathSegment]:
    """Longest shared segment prefix of several paths."""
    if not paths:
        return []

    split = [parse_path(p) for p in paths]
    prefix: list[PathSegment] = []
    for parts in zip(*split):
        first = parts[0]
        if all(p == first for p in parts):
            prefix.append(first)
        else:
            break
    return prefix


SEPARATOR = "_"

_SEPARATOR_RUN_RE = re.compile(r"[\s\-_]+")


def normalize_text(value: str) -> str:
    """Lowercase, trim and collapse hyphens/whitespace runs to one separator."""
    collapsed = _SEPARATOR_RUN_RE.sub(SEPARATOR, value.strip().lower())
    return collapsed.strip(SEPARATOR)


def resolve_synonyms(aliases: dict[str, str]) -> dict[str, str]:
    """
    Key an alias table by normalized alias and follow alias chains to the end.

    {"a": "b", "b": "c"} resolves to {"a": "c", "b": "c"}. An alias mapping
    to its own normalized form ends a chain.

    Raises:
        ValueError: If the aliases form a cycle
    """
    table = {normalize_text(alias): canonical for alias, canonical in aliases.items()}
    resolved = {}
    for alias, canonical in table.items():
        seen = [alias]
        key = normalize_text(canonical)
        while key in table and key not in seen:
            seen.append(key)
            canonical = table[key]
            key = normalize_text(canonical)
        if key in seen and key != seen[-1]:
            raise ValueError(f"synonym cycle: {' -> '.join(seen + [key])}")
        resolved[alias] = canonical
    return resolved


def estimate_tokens(text: str) -> int:
    """Conservative token estimate (~3 chars per token)."""
    return len(text) // 3 + 1


def truncate_for_preview(text: str, max_length: int = 100) -> str:
    """Truncate text for preview display."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def preview_value(value: Any, max_length: int = 100) -> str:
    """Render any value compactly for logs and prompts."""
    if isinstance(value, str):
        return truncate_for_preview(json.dumps(value, ensure_ascii=False), max_length)
    try:
        rendered = json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        rendered = repr(value)
    return truncate_for_preview(rendered, max_length)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
