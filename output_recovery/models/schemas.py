"""Pydantic models for per-call pipeline configuration."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.config import config
from ..utils.helpers import resolve_synonyms
from .results import RepairLayer


class RegenerationConfig(BaseModel):
    """
    Caller-supplied knobs for one regenerate() call.

    allow_warning_fallback is the single switch between strict callers
    (data bound for constrained storage) and advisory callers (text consumed
    by another LLM stage).
    """
    model_config = ConfigDict(frozen=True)

    max_attempts_per_layer: int = Field(
        default_factory=lambda: config.MAX_ATTEMPTS_PER_LAYER,
        ge=1,
        description="Attempts allowed for each LLM recovery layer",
    )
    max_total_token_cost: int = Field(
        default_factory=lambda: config.MAX_TOTAL_TOKEN_COST,
        ge=0,
        description="Ceiling on tokens spent across all recovery attempts",
    )
    allow_warning_fallback: bool = Field(
        False,
        description="Accept best-effort output with validated=False when every layer fails",
    )
    enum_synonyms: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="field -> alias -> canonical enum value",
    )
    semantic_match_threshold: float = Field(
        default_factory=lambda: config.SEMANTIC_MATCH_THRESHOLD,
        ge=0.0,
        le=1.0,
    )
    escalation_model: Optional[str] = Field(
        default_factory=lambda: config.ESCALATION_MODEL or None,
        description="Stronger model used once after cheaper layers fail",
    )
    max_output_tokens: int = Field(default_factory=lambda: config.MAX_OUTPUT_TOKENS, ge=1)
    llm_timeout_seconds: float = Field(default_factory=lambda: config.LLM_TIMEOUT_SECONDS, gt=0)
    embedding_timeout_seconds: float = Field(
        default_factory=lambda: config.EMBEDDING_TIMEOUT_SECONDS, gt=0
    )
    enabled_layers: frozenset[RepairLayer] = Field(
        default_factory=lambda: frozenset(RepairLayer),
        description="Layers this caller allows; anything left out is skipped",
    )
    fix_field_names: bool = True
    metrics_tracking: bool = True

    def layer_enabled(self, layer: RepairLayer) -> bool:
        return layer in self.enabled_layers

    @field_validator("enum_synonyms")
    @classmethod
    def _valid_synonym_tables(cls, value: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
        for field_name, aliases in value.items():
            for alias, canonical in aliases.items():
                if not canonical:
                    raise ValueError(f"enum_synonyms[{field_name!r}][{alias!r}] has an empty canonical value")
            try:
                resolve_synonyms(aliases)
            except ValueError as e:
                raise ValueError(f"enum_synonyms[{field_name!r}]: {e}") from e
        return value

    @classmethod
    def strict(cls, **kwargs) -> "RegenerationConfig":
        """Database-bound consumers: unresolved violations are fatal."""
        return cls(allow_warning_fallback=False, **kwargs)

    @classmethod
    def advisory(cls, **kwargs) -> "RegenerationConfig":
        """LLM-to-LLM consumers: best effort is acceptable."""
        return cls(allow_warning_fallback=True, **kwargs)
