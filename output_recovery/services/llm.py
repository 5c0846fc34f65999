"""
LLM service interface and the ChatOpenAI-backed default.

The pipeline only ever talks to LLMService.generate(); tests inject fakes.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from langsmith import traceable

from ..errors import LLMServiceError
from ..utils.config import config
from ..utils.helpers import estimate_tokens

logger = logging.getLogger(__name__)

# Every recovery prompt is sent as the human turn under a fixed JSON-only system turn
CHAT_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "Reply with a single JSON value only. No markdown fences, no commentary."),
    ("human", "{input}"),
])


@dataclass
class LLMResponse:
    """Raw completion plus the token usage the service reported."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMService(ABC):
    """Consumed interface: prompt in, text and token usage out."""

    @abstractmethod
    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        """
        Run one completion.

        Raises:
            LLMServiceError: on any provider failure
        """


def _build_chat_model(model: str, api_key: str, temperature: float, timeout_seconds: float) -> ChatOpenAI:
    """
    Create a ChatOpenAI client with its own httpx.AsyncClient.

    Each model gets a dedicated connection pool so concurrent units do not
    serialize on one client.
    """
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds, connect=30.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=50),
    )

    return ChatOpenAI(
        model=model,
        temperature=temperature,
        max_retries=0,  # the pipeline never retries a call transparently
        request_timeout=timeout_seconds,
        http_async_client=http_client,
        api_key=api_key,
    )


def _content_text(message) -> str:
    content = message.content if hasattr(message, "content") else message
    if isinstance(content, list):
        # content blocks
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class ChatOpenAILLMService(LLMService):
    """LLMService backed by langchain_openai.ChatOpenAI."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_concurrent_calls: Optional[int] = None,
    ):
        self.api_key = api_key or config.OPENAI_API_KEY
        self.temperature = config.OPENAI_TEMPERATURE if temperature is None else temperature
        self.timeout_seconds = timeout_seconds or config.LLM_TIMEOUT_SECONDS
        self.max_concurrent_calls = max_concurrent_calls or config.MAX_CONCURRENT_UNITS
        self._models: dict[str, ChatOpenAI] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _get_llm(self, model: str) -> ChatOpenAI:
        if model not in self._models:
            self._models[model] = _build_chat_model(
                model, self.api_key, self.temperature, self.timeout_seconds
            )
        return self._models[model]

    def _get_semaphore(self) -> asyncio.Semaphore:
        """Created lazily, must be called inside the running loop."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent_calls)
        return self._semaphore

    @traceable(name="llm_generate", run_type="llm")
    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        llm = self._get_llm(model)
        messages = CHAT_PROMPT.format_messages(input=prompt)

        try:
            async with self._get_semaphore():
                logger.debug(f"[LLM] Invoking {model} (max_tokens={max_tokens})")
                result = await llm.bind(max_tokens=max_tokens).ainvoke(messages)
        except Exception as e:
            logger.error(f"[LLM] Call to {model} failed: {e}")
            raise LLMServiceError(f"LLM call to {model} failed: {e}") from e

        text = _content_text(result)
        usage = getattr(result, "usage_metadata", None) or {}
        input_tokens = usage.get("input_tokens") or estimate_tokens(prompt)
        output_tokens = usage.get("output_tokens") or estimate_tokens(text)

        return LLMResponse(text=text, input_tokens=input_tokens, output_tokens=output_tokens)

    async def aclose(self) -> None:
        """Close every underlying httpx client."""
        for llm in self._models.values():
            client = getattr(llm, "http_async_client", None)
            if client is not None:
                await client.aclose()
        self._models.clear()
