"""
Error taxonomy for the recovery pipeline.

Only BudgetExceeded and RegenerationExhausted ever reach a caller of
regenerate(). ServiceFailure is absorbed inside the pipeline, ParseFailure
and SchemaViolation are raised by the standalone parse/validate helpers.
"""
from typing import Optional


class RecoveryError(Exception):
    """Base class for every error raised by output_recovery."""
    pass


class ParseFailure(RecoveryError):
    """Text is not valid serialized JSON at all."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class SchemaViolation(RecoveryError):
    """Data parses but fails its contract."""

    def __init__(self, violations: list):
        self.violations = list(violations)
        paths = ", ".join(v.path for v in self.violations[:5])
        super().__init__(f"{len(self.violations)} schema violation(s): {paths}")


class ServiceFailure(RecoveryError):
    """An LLM or embedding call failed or timed out."""
    pass


class LLMServiceError(ServiceFailure):
    """LLM inference call failed."""
    pass


class EmbeddingServiceError(ServiceFailure):
    """Embedding call failed."""
    pass


class RegenerationError(RecoveryError):
    """Caller-visible terminal failure of one pipeline run."""

    def __init__(
        self,
        message: str,
        attempts: Optional[list] = None,
        violations: Optional[list] = None,
        total_cost: int = 0,
    ):
        super().__init__(message)
        self.attempts = list(attempts or [])
        self.violations = list(violations or [])
        self.total_cost = total_cost

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "total_cost": self.total_cost,
            "violations": [v.to_dict() for v in self.violations],
            "attempts": [a.to_dict() for a in self.attempts],
        }


class BudgetExceeded(RegenerationError):
    """Token-cost ceiling was hit before the output could be resolved."""
    pass


class RegenerationExhausted(RegenerationError):
    """Every recovery layer was tried and violations remain."""
    pass
