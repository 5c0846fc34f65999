"""
Semantic Matcher - embedding-similarity substitution for enum values.

Only consulted for EnumViolation entries whose received value is a string.
Failures never escape: an embedding error or timeout means "no match".
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from langsmith import traceable

from ..errors import ServiceFailure
from ..services.embeddings import EmbeddingCache

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Closest allowed value and whether it clears the threshold."""
    matched: Optional[str]
    similarity: float
    accepted: bool

    def to_dict(self) -> dict:
        return {
            "matched": self.matched,
            "similarity": round(self.similarity, 4),
            "accepted": self.accepted,
        }


NO_MATCH = MatchResult(matched=None, similarity=0.0, accepted=False)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class SemanticMatcher:
    """Maps an invalid enum value onto the nearest allowed value."""

    def __init__(self, cache: EmbeddingCache, timeout_seconds: Optional[float] = None):
        self.cache = cache
        self.timeout_seconds = timeout_seconds

    @traceable(name="semantic_match", run_type="chain")
    async def match(
        self,
        invalid_value: str,
        allowed_values: Sequence,
        threshold: float,
        timeout: Optional[float] = None,
    ) -> MatchResult:
        """
        Find the allowed value most similar to invalid_value.

        The strictly highest similarity wins; on an exact tie the first
        allowed value in declaration order is kept.
        """
        candidates = [v for v in allowed_values if isinstance(v, str)]
        if not isinstance(invalid_value, str) or not candidates:
            return NO_MATCH

        timeout = timeout or self.timeout_seconds
        try:
            query = await self.cache.get_or_embed(invalid_value, timeout)
            vectors = [await self.cache.get_or_embed(c, timeout) for c in candidates]
        except ServiceFailure as e:
            logger.error(f"[SEMANTIC] Embedding failed for {invalid_value!r}: {e}")
            return NO_MATCH

        best_value: Optional[str] = None
        best_similarity = float("-inf")
        for candidate, vector in zip(candidates, vectors):
            similarity = cosine_similarity(query, vector)
            if similarity > best_similarity:
                best_value, best_similarity = candidate, similarity

        accepted = best_similarity >= threshold
        logger.info(
            f"[SEMANTIC] {invalid_value!r} -> {best_value!r} "
            f"(similarity={best_similarity:.3f}, threshold={threshold}, accepted={accepted})"
        )
        return MatchResult(matched=best_value, similarity=best_similarity, accepted=accepted)
