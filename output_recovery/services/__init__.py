"""External service adapters."""
from .embeddings import EmbeddingCache, EmbeddingService, OpenAIEmbeddingService
from .llm import ChatOpenAILLMService, LLMResponse, LLMService

__all__ = [
    "LLMService",
    "LLMResponse",
    "ChatOpenAILLMService",
    "EmbeddingService",
    "OpenAIEmbeddingService",
    "EmbeddingCache",
]
