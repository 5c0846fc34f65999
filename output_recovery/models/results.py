"""Violation, attempt and result records produced by one pipeline run."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..utils.helpers import preview_value, utc_now


class ViolationKind(str, Enum):
    """Kinds of contract deviation."""
    TYPE_MISMATCH = "type_mismatch"
    ENUM_VIOLATION = "enum_violation"
    MISSING_REQUIRED = "missing_required"
    EXTRA_PROPERTY = "extra_property"
    STRUCTURAL_INVALID = "structural_invalid"
    QUALITY_REJECTED = "quality_rejected"


class RepairLayer(str, Enum):
    """Recovery layers, cheapest first."""
    PREPROCESS_NORMALIZE = "preprocess_normalize"
    SYNTAX_REPAIR = "syntax_repair"
    SEMANTIC_MATCH = "semantic_match"
    CRITIQUE_REVISE = "critique_revise"
    PARTIAL_REGENERATION = "partial_regeneration"
    MODEL_ESCALATION = "model_escalation"
    WARNING_FALLBACK = "warning_fallback"


LLM_LAYERS = (
    RepairLayer.CRITIQUE_REVISE,
    RepairLayer.PARTIAL_REGENERATION,
    RepairLayer.MODEL_ESCALATION,
)


@dataclass(frozen=True)
class ValidationViolation:
    """A single recorded deviation between data and its contract."""
    path: str
    kind: ViolationKind
    expected: str
    received: Any = None

    def render(self) -> str:
        """One-line form used in critique prompts."""
        return (
            f"- {self.path}: {self.kind.value} (expected {self.expected}, "
            f"received {preview_value(self.received, 80)})"
        )

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "kind": self.kind.value,
            "expected": self.expected,
            "received": preview_value(self.received, 200),
        }


@dataclass
class RepairAttempt:
    """Record of one layer's attempt within a single run."""
    layer: RepairLayer
    started_at: datetime = field(default_factory=utc_now)
    duration_ms: int = 0
    token_cost: int = 0
    succeeded: bool = False
    remaining_violations: list[ValidationViolation] = field(default_factory=list)
    model: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "layer": self.layer.value,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "token_cost": self.token_cost,
            "succeeded": self.succeeded,
            "remaining_violations": [v.to_dict() for v in self.remaining_violations],
            "model": self.model,
            "detail": self.detail,
        }


@dataclass
class RegenerationResult:
    """The only object handed back to a caller of regenerate()."""
    data: Any
    validated: bool
    layer_used: RepairLayer
    attempts: list[RepairAttempt] = field(default_factory=list)
    total_cost: int = 0

    @property
    def llm_calls(self) -> int:
        return sum(1 for a in self.attempts if a.layer in LLM_LAYERS)

    def count_layer(self, layer: RepairLayer) -> int:
        return sum(1 for a in self.attempts if a.layer == layer)

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "validated": self.validated,
            "layer_used": self.layer_used.value,
            "total_cost": self.total_cost,
            "attempts": [a.to_dict() for a in self.attempts],
        }
