"""Prompt builders for LLM recovery strategies."""

from .recovery_prompts import (
    build_critique_prompt,
    build_partial_prompt,
    render_violations,
    CRITIQUE_REVISE_PROMPT,
    PARTIAL_REGENERATION_PROMPT,
)

__all__ = [
    "build_critique_prompt",
    "build_partial_prompt",
    "render_violations",
    "CRITIQUE_REVISE_PROMPT",
    "PARTIAL_REGENERATION_PROMPT",
]
