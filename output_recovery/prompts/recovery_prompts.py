"""
Recovery prompt builders.

Critique-Revise sends the whole invalid output back with the violation list;
Partial Regeneration sends only the smallest failing subtree plus its parent
for context. Model Escalation re-issues the caller's prompt unchanged, so it
has no template here.
"""
import json
import logging
from typing import Any, Optional

from ..models.contract import FieldSpec, SchemaContract
from ..models.results import ValidationViolation
from ..utils.helpers import truncate_for_preview

logger = logging.getLogger(__name__)

# Read-only parent context is clipped; text the model must return in full never is
MAX_CONTEXT_CHARS = 12000


CRITIQUE_REVISE_PROMPT = """You previously produced output for the task below, but it does not satisfy the required schema.

## SECTION 1: ORIGINAL TASK
{original_prompt}

## SECTION 2: YOUR PREVIOUS OUTPUT
```
{bad_output}
```

## SECTION 3: SCHEMA VIOLATIONS
{violations}

## SECTION 4: REQUIRED SCHEMA ({schema_name})
Keys ending in "?" are optional. Enum fields accept ONLY the listed values, spelled exactly.
```json
{schema}
```

## RULES
1. Fix EVERY violation listed above
2. Keep all content that is already valid
3. Return the COMPLETE corrected output, not a diff
4. No markdown, no commentary

## OUTPUT (JSON only):
"""


PARTIAL_REGENERATION_PROMPT = """Part of a larger JSON document is invalid. Regenerate ONLY that part.

## SECTION 1: ORIGINAL TASK
{original_prompt}

## SECTION 2: PART TO REGENERATE
Path: {target_path}
Current value:
```json
{current_value}
```

## SECTION 3: SURROUNDING CONTEXT (read-only)
```json
{parent_context}
```

## SECTION 4: VIOLATIONS INSIDE THIS PART
{violations}

## SECTION 5: SCHEMA FOR THIS PART
```json
{schema}
```

## RULES
1. Return ONLY the value for {target_path}, not the whole document
2. It must satisfy the schema in Section 5 exactly
3. No markdown, no commentary

## OUTPUT (JSON only):
"""


def render_violations(violations: list[ValidationViolation]) -> str:
    """One line per violation, in document order."""
    if not violations:
        return "(none)"
    return "\n".join(v.render() for v in violations)


def _dump(value: Any, limit: Optional[int] = None) -> str:
    try:
        text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return truncate_for_preview(text, limit) if limit else text


def build_critique_prompt(
    original_prompt: str,
    bad_output: str,
    violations: list[ValidationViolation],
    contract: SchemaContract,
) -> str:
    """Full-document critique and revision request."""
    return CRITIQUE_REVISE_PROMPT.format(
        original_prompt=original_prompt,
        bad_output=bad_output or "",
        violations=render_violations(violations),
        schema_name=contract.name,
        schema=contract.describe(),
    )


def build_partial_prompt(
    original_prompt: str,
    target_path: str,
    current_value: Any,
    parent_context: Optional[Any],
    target_spec: Optional[FieldSpec],
    violations: list[ValidationViolation],
) -> str:
    """Subtree-only regeneration request."""
    schema = target_spec.describe() if target_spec is not None else "any"
    return PARTIAL_REGENERATION_PROMPT.format(
        original_prompt=original_prompt,
        target_path=target_path,
        current_value=_dump(current_value),
        parent_context=_dump(parent_context, MAX_CONTEXT_CHARS) if parent_context is not None else "(document root)",
        violations=render_violations(violations),
        schema=json.dumps(schema, indent=2, ensure_ascii=False),
    )
