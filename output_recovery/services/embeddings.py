"""
Embedding service interface, OpenAI default, and the process-wide cache.

Uses text-embedding-3-small by default (fast, cheap, good quality).
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from openai import AsyncOpenAI

from ..errors import EmbeddingServiceError
from ..utils.config import config
from ..utils.helpers import normalize_text

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 30000


class EmbeddingService(ABC):
    """Consumed interface: text in, vector out."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            EmbeddingServiceError: on any provider failure
        """

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts; override when the provider batches natively."""
        return [await self.embed(text) for text in texts]


class OpenAIEmbeddingService(EmbeddingService):
    """EmbeddingService backed by the openai async client."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        batch_size: int = 100,
    ):
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size
        self._client = AsyncOpenAI(
            api_key=api_key or config.OPENAI_API_KEY,
            timeout=timeout_seconds or config.EMBEDDING_TIMEOUT_SECONDS,
            max_retries=0,
        )

    async def embed(self, text: str) -> list[float]:
        if len(text) > MAX_EMBED_CHARS:
            text = text[:MAX_EMBED_CHARS]
            logger.warning(f"Text truncated to {MAX_EMBED_CHARS} chars for embedding")

        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding call failed: {e}") from e
        return response.data[0].embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = [t[:MAX_EMBED_CHARS] for t in texts[i:i + self.batch_size]]
            try:
                response = await self._client.embeddings.create(model=self.model, input=batch)
            except Exception as e:
                raise EmbeddingServiceError(f"Batch embedding call failed: {e}") from e

            # Extract embeddings in order
            ordered = sorted(response.data, key=lambda item: item.index)
            all_embeddings.extend(item.embedding for item in ordered)
            logger.debug(f"Embedded batch {i // self.batch_size + 1}, total: {len(all_embeddings)}")

        return all_embeddings

    async def aclose(self) -> None:
        await self._client.close()


# =============================================================================
# CACHE
# =============================================================================

class EmbeddingCache:
    """
    Process-wide normalized-string -> vector cache.

    Warmed once with the contract's enum values, filled lazily afterwards and
    never invalidated. Lives on a single event loop; two coroutines embedding
    the same string both write the same vector, so races are harmless.
    """

    def __init__(self, service: EmbeddingService, timeout_seconds: Optional[float] = None):
        self.service = service
        self.timeout_seconds = timeout_seconds or config.EMBEDDING_TIMEOUT_SECONDS
        self._vectors: dict[str, list[float]] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(text: str) -> str:
        """Cache key, and the text actually embedded: "Role Play" and "role-play" share one vector."""
        return normalize_text(text) or text

    def __contains__(self, text: str) -> bool:
        return self.key(text) in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)

    def get(self, text: str) -> Optional[list[float]]:
        return self._vectors.get(self.key(text))

    async def get_or_embed(self, text: str, timeout: Optional[float] = None) -> list[float]:
        """
        Cached vector for text, embedding it on a miss.

        Raises:
            EmbeddingServiceError: service failure or timeout
        """
        key = self.key(text)
        cached = self._vectors.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        try:
            vector = await asyncio.wait_for(self.service.embed(key), timeout or self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(f"Embedding timed out for {key!r}") from e
        except EmbeddingServiceError:
            raise
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding failed for {key!r}: {e}") from e

        return self._vectors.setdefault(key, list(vector))

    async def warmup(self, values: Iterable) -> int:
        """
        Pre-embed values in one batch.

        Accepts plain strings or allowed-value sets (as returned by
        SchemaContract.enum_sets()). Non-strings are ignored. A failed warm-up
        is logged and left to lazy population.

        Returns:
            Number of newly cached strings
        """
        pending: list[str] = []
        for value in values:
            group = value if isinstance(value, (list, tuple, set, frozenset)) else (value,)
            for item in group:
                if not isinstance(item, str):
                    continue
                key = self.key(item)
                if key not in self._vectors and key not in pending:
                    pending.append(key)

        if not pending:
            return 0

        try:
            vectors = await asyncio.wait_for(self.service.embed_batch(pending), self.timeout_seconds)
        except Exception as e:
            logger.warning(f"Embedding cache warm-up failed for {len(pending)} values: {e}")
            return 0

        for key, vector in zip(pending, vectors):
            self._vectors.setdefault(key, list(vector))

        logger.info(f"Embedding cache warmed with {len(pending)} values (size={len(self._vectors)})")
        return len(pending)
