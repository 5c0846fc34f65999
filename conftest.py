"""
Pytest configuration and fixtures for output_recovery tests.

Every external service is faked: no network in tests.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import pytest

from output_recovery.core.regeneration_graph import RegenerationOrchestrator
from output_recovery.errors import EmbeddingServiceError, LLMServiceError
from output_recovery.models import FieldSpec, SchemaContract
from output_recovery.services.embeddings import EmbeddingCache, EmbeddingService
from output_recovery.services.llm import LLMResponse, LLMService
from output_recovery.utils.recovery_stats import reset_stats

EXERCISE_TYPES = ("case_study", "quiz", "discussion", "simulation")

# role_play is ~0.90 cosine to discussion, ~0.44 to quiz, 0 to the rest
EMBEDDINGS = {
    "case_study": [0.0, 0.0, 1.0],
    "quiz": [0.0, 1.0, 0.0],
    "discussion": [1.0, 0.0, 0.0],
    "simulation": [0.0, 0.6, 0.8],
    "role_play": [0.9, 0.43589, 0.0],
}


@dataclass
class LLMCall:
    prompt: str
    model: str
    max_tokens: int


class FakeLLMService(LLMService):
    """
    Scripted LLM.

    Replies are consumed in order: str/dict become LLMResponse, an exception
    instance is raised. When the script runs out, default_reply is used.
    """

    def __init__(
        self,
        replies: Optional[list] = None,
        default_reply: Any = None,
        input_tokens: int = 100,
        output_tokens: int = 50,
        delay: float = 0.0,
    ):
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.delay = delay
        self.calls: list[LLMCall] = []

    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        self.calls.append(LLMCall(prompt, model, max_tokens))
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self.replies.pop(0) if self.replies else self.default_reply
        if reply is None:
            raise LLMServiceError("no scripted reply left")
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, LLMResponse):
            return reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return LLMResponse(text=reply, input_tokens=self.input_tokens, output_tokens=self.output_tokens)


class FakeEmbeddingService(EmbeddingService):
    """Looks vectors up in a table; unknown text gets a zero vector."""

    def __init__(self, vectors: Optional[dict] = None, fail: bool = False, delay: float = 0.0):
        self.vectors = dict(EMBEDDINGS if vectors is None else vectors)
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingServiceError("embedding backend unavailable")
        return list(self.vectors.get(text, [0.0, 0.0, 0.0]))

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail:
            raise EmbeddingServiceError("embedding backend unavailable")
        return [list(self.vectors.get(t, [0.0, 0.0, 0.0])) for t in texts]


@pytest.fixture(autouse=True)
def _fresh_stats():
    """Process-wide statistics start empty for every test."""
    reset_stats()
    yield
    reset_stats()


@pytest.fixture
def exercise_contract():
    return SchemaContract.from_fields(
        {"exercise_type": FieldSpec.enum(EXERCISE_TYPES)},
        name="exercise",
    )


@pytest.fixture
def number_contract():
    return SchemaContract.from_fields({"a": FieldSpec.number()}, name="simple")


@pytest.fixture
def course_contract():
    lesson = FieldSpec.object({
        "title": FieldSpec.string(min_length=1),
        "exercise_type": FieldSpec.enum(EXERCISE_TYPES),
        "duration_minutes": FieldSpec.integer(),
    })
    section = FieldSpec.object({
        "name": FieldSpec.string(),
        "lessons": FieldSpec.array(lesson, min_length=1),
    })
    return SchemaContract.from_fields(
        {
            "course_title": FieldSpec.string(min_length=1),
            "level": FieldSpec.enum(("beginner", "intermediate", "advanced")),
            "sections": FieldSpec.array(section, min_length=1),
            "summary": FieldSpec.string(required=False, nullable=True),
        },
        name="course",
    )


@pytest.fixture
def sample_course():
    return {
        "course_title": "Machine Learning Basics",
        "level": "beginner",
        "sections": [
            {
                "name": "Foundations",
                "lessons": [
                    {"title": "What is ML", "exercise_type": "quiz", "duration_minutes": 20},
                    {"title": "Data prep", "exercise_type": "case_study", "duration_minutes": 45},
                ],
            }
        ],
    }


@pytest.fixture
def fake_llm():
    return FakeLLMService()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingService()


@pytest.fixture
def embedding_cache(fake_embeddings):
    return EmbeddingCache(fake_embeddings, timeout_seconds=1.0)


@pytest.fixture
def make_orchestrator():
    """Factory: orchestrator over a FakeLLMService and, optionally, fake embeddings."""

    def _make(llm: Optional[LLMService] = None, embeddings: Optional[EmbeddingService] = None):
        llm = llm or FakeLLMService()
        cache = EmbeddingCache(embeddings, timeout_seconds=1.0) if embeddings is not None else None
        return RegenerationOrchestrator(llm=llm, embedding_cache=cache, default_model="test-model")

    return _make
