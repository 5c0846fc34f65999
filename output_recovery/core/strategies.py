"""
LLM Recovery Strategies.

Three strategies share one contract:

    recover(original_prompt, bad_output, violations, model_override, *,
            contract, data, max_tokens) -> (new_raw_text, token_cost)

Internally each is split into prepare() (build the request, no I/O, so the
orchestrator can budget-check the prompt first) and execute() (the LLM call,
bounded by asyncio.wait_for). Token cost is input + output tokens as reported
by the service.

Strategies:
1. CritiqueRevise      - whole output + violation list, same model tier
2. PartialRegeneration - only the smallest subtree enclosing every violation
3. ModelEscalation     - original prompt, unchanged, on the stronger model
"""
import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from langsmith import traceable

from ..errors import LLMServiceError, ParseFailure
from ..models.contract import SchemaContract
from ..models.results import RepairLayer, ValidationViolation
from ..prompts.recovery_prompts import build_critique_prompt, build_partial_prompt
from ..services.llm import LLMResponse, LLMService
from ..utils.helpers import (
    ROOT_PATH,
    common_path_prefix,
    estimate_tokens,
    format_path,
    get_by_path,
    parse_path,
    set_by_path,
)
from .syntax_repair import parse_json, repair

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class StrategyRequest:
    """A prepared, not yet executed, LLM call."""
    layer: RepairLayer
    prompt: str
    model: str
    target_path: Optional[str] = None

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.prompt)


@dataclass
class StrategyOutput:
    """New raw candidate text plus what it cost."""
    text: str
    token_cost: int
    detail: str = ""


class RecoveryStrategy(ABC):
    """Base class: prepare -> execute."""

    layer: RepairLayer

    def __init__(self, llm: LLMService, default_model: str):
        self.llm = llm
        self.default_model = default_model

    @abstractmethod
    def prepare(
        self,
        original_prompt: str,
        bad_output: str,
        violations: list[ValidationViolation],
        model_override: Optional[str] = None,
        *,
        contract: SchemaContract,
        data: Any = None,
    ) -> Optional[StrategyRequest]:
        """Build the request, or None when the strategy does not apply."""

    async def execute(
        self,
        request: StrategyRequest,
        max_tokens: int,
        timeout: Optional[float] = None,
        data: Any = None,
    ) -> StrategyOutput:
        """
        Run the prepared call.

        Raises:
            LLMServiceError: service failure or timeout
        """
        try:
            response = await asyncio.wait_for(
                self.llm.generate(request.prompt, request.model, max_tokens),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise LLMServiceError(f"{self.layer.value} call to {request.model} timed out after {timeout}s") from e
        except LLMServiceError:
            raise
        except Exception as e:
            raise LLMServiceError(f"{self.layer.value} call to {request.model} failed: {e}") from e

        return self._finish(request, response, data)

    def _finish(self, request: StrategyRequest, response: LLMResponse, data: Any) -> StrategyOutput:
        return StrategyOutput(text=response.text, token_cost=response.total_tokens)

    async def recover(
        self,
        original_prompt: str,
        bad_output: str,
        violations: list[ValidationViolation],
        model_override: Optional[str] = None,
        *,
        contract: SchemaContract,
        data: Any = None,
        max_tokens: int,
        timeout: Optional[float] = None,
    ) -> tuple[str, int]:
        """Prepare and execute in one step (no budget check)."""
        request = self.prepare(
            original_prompt, bad_output, violations, model_override,
            contract=contract, data=data,
        )
        if request is None:
            raise ValueError(f"{self.layer.value} is not applicable to this output")
        output = await self.execute(request, max_tokens, timeout=timeout, data=data)
        return output.text, output.token_cost


# =============================================================================
# CRITIQUE-REVISE
# =============================================================================

class CritiqueReviseStrategy(RecoveryStrategy):
    """Ask the same model tier to fix its own output given the violations."""

    layer = RepairLayer.CRITIQUE_REVISE

    def prepare(self, original_prompt, bad_output, violations, model_override=None, *, contract, data=None):
        prompt = build_critique_prompt(original_prompt, bad_output, violations, contract)
        return StrategyRequest(self.layer, prompt, model_override or self.default_model)

    @traceable(name="critique_revise", run_type="llm")
    async def execute(self, request, max_tokens, timeout=None, data=None):
        return await super().execute(request, max_tokens, timeout, data)


# =============================================================================
# PARTIAL REGENERATION
# =============================================================================

def select_target_path(data: Any, violations: list[ValidationViolation]) -> str:
    """
    Smallest subtree enclosing every violation.

    Starts from the longest common prefix of all violation paths and climbs
    until the path resolves to an existing object or array.
    """
    prefix = common_path_prefix([v.path for v in violations])
    while prefix:
        value = get_by_path(data, format_path(prefix), _MISSING)
        if isinstance(value, (dict, list)):
            break
        prefix = prefix[:-1]
    return format_path(prefix)


def _parent_path(path: str) -> Optional[str]:
    segments = parse_path(path)
    if not segments:
        return None
    return format_path(segments[:-1])


class PartialRegenerationStrategy(RecoveryStrategy):
    """Regenerate only the failing subtree and splice it back."""

    layer = RepairLayer.PARTIAL_REGENERATION

    def prepare(self, original_prompt, bad_output, violations, model_override=None, *, contract, data=None):
        if data is None or not violations:
            return None

        target = select_target_path(data, violations)
        parent = _parent_path(target)
        prompt = build_partial_prompt(
            original_prompt=original_prompt,
            target_path=target,
            current_value=get_by_path(data, target),
            parent_context=get_by_path(data, parent) if parent is not None else None,
            target_spec=contract.spec_at(target),
            violations=violations,
        )
        logger.debug(f"[PARTIAL] Target subtree: {target}")
        return StrategyRequest(self.layer, prompt, model_override or self.default_model, target_path=target)

    @traceable(name="partial_regeneration", run_type="llm")
    async def execute(self, request, max_tokens, timeout=None, data=None):
        return await super().execute(request, max_tokens, timeout, data)

    def _finish(self, request: StrategyRequest, response: LLMResponse, data: Any) -> StrategyOutput:
        target = request.target_path or ROOT_PATH
        cost = response.total_tokens

        try:
            subtree = parse_json(response.text)
        except ParseFailure:
            repaired = repair(response.text)
            if not repaired.success:
                logger.warning(f"[PARTIAL] Unparseable reply for {target}, document left unchanged")
                return StrategyOutput(
                    text=json.dumps(data, ensure_ascii=False),
                    token_cost=cost,
                    detail=f"unparseable reply for {target}",
                )
            subtree = repaired.data

        document = set_by_path(copy.deepcopy(data), target, subtree)
        return StrategyOutput(
            text=json.dumps(document, ensure_ascii=False),
            token_cost=cost,
            detail=f"spliced at {target}",
        )


# =============================================================================
# MODEL ESCALATION
# =============================================================================

class ModelEscalationStrategy(RecoveryStrategy):
    """Re-issue the original prompt on the stronger model."""

    layer = RepairLayer.MODEL_ESCALATION

    def prepare(self, original_prompt, bad_output, violations, model_override=None, *, contract, data=None):
        if not model_override:
            return None
        return StrategyRequest(self.layer, original_prompt, model_override)

    @traceable(name="model_escalation", run_type="llm")
    async def execute(self, request, max_tokens, timeout=None, data=None):
        return await super().execute(request, max_tokens, timeout, data)
