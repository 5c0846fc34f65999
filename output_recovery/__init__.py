"""
Structured output validation and recovery for LLM responses.

Typical use:

    from output_recovery import FieldSpec, SchemaContract, RegenerationConfig, regenerate

    contract = SchemaContract.from_fields({
        "title": FieldSpec.string(min_length=1),
        "exercise_type": FieldSpec.enum(["case_study", "quiz", "discussion"]),
    })
    result = await regenerate(raw_text, contract, prompt, RegenerationConfig.strict())
"""

from .errors import (
    RecoveryError,
    ParseFailure,
    SchemaViolation,
    ServiceFailure,
    LLMServiceError,
    EmbeddingServiceError,
    RegenerationError,
    BudgetExceeded,
    RegenerationExhausted,
)
from .models import (
    FieldType,
    FieldSpec,
    SchemaContract,
    ViolationKind,
    ValidationViolation,
    RepairLayer,
    RepairAttempt,
    RegenerationResult,
    RegenerationConfig,
)
from .validators import validate, validate_or_raise
from .core import (
    RegenerationOrchestrator,
    build_orchestrator,
    regenerate,
    RegenerationUnit,
    UnitOutcome,
    run_units,
)
from .services import (
    LLMService,
    LLMResponse,
    EmbeddingService,
    EmbeddingCache,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "RecoveryError",
    "ParseFailure",
    "SchemaViolation",
    "ServiceFailure",
    "LLMServiceError",
    "EmbeddingServiceError",
    "RegenerationError",
    "BudgetExceeded",
    "RegenerationExhausted",
    # Models
    "FieldType",
    "FieldSpec",
    "SchemaContract",
    "ViolationKind",
    "ValidationViolation",
    "RepairLayer",
    "RepairAttempt",
    "RegenerationResult",
    "RegenerationConfig",
    # Validation
    "validate",
    "validate_or_raise",
    # Pipeline
    "RegenerationOrchestrator",
    "build_orchestrator",
    "regenerate",
    "RegenerationUnit",
    "UnitOutcome",
    "run_units",
    # Services
    "LLMService",
    "LLMResponse",
    "EmbeddingService",
    "EmbeddingCache",
]
