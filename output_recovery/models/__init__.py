"""Data models for the structured output recovery pipeline."""

from .contract import (
    FieldType,
    FieldSpec,
    SchemaContract,
)
from .results import (
    ViolationKind,
    ValidationViolation,
    RepairLayer,
    RepairAttempt,
    RegenerationResult,
    LLM_LAYERS,
)
from .schemas import RegenerationConfig

__all__ = [
    "FieldType",
    "FieldSpec",
    "SchemaContract",
    "ViolationKind",
    "ValidationViolation",
    "RepairLayer",
    "RepairAttempt",
    "RegenerationResult",
    "LLM_LAYERS",
    "RegenerationConfig",
]
