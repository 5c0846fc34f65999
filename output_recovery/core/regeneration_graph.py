"""
Regeneration Orchestrator - LangGraph state machine.

All nodes have @traceable for LangSmith observability.

    parse ──ok──> normalize ──> validate ──clean──> finalize
      │                           │   ▲
      └─fail─> syntax_repair ─────┘   │ (only enum violations, once per candidate)
                   │                  semantic_match
                   └─fail─┐
                          ▼
              select_strategy ──> critique_revise ──────┐
                   │        ├──> partial_regeneration ──┼──> parse (new candidate)
                   │        └──> model_escalation ──────┘
                   └──exhausted / over budget──> finalize

Ordering is fixed: Critique-Revise (<= max_attempts_per_layer), Partial
Regeneration (<= max_attempts_per_layer), Model Escalation (once). After
escalation only Critique-Revise runs again, with a fresh attempt budget, on
the stronger model. A layer whose call failed is not retried.

The cost ceiling always wins over attempt counters: before any LLM state the
prompt estimate plus a minimum output allowance is checked against the
remaining budget, and each call's max_tokens is capped at what is left.
"""
import inspect
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypedDict, Union

from langgraph.graph import StateGraph, END
from langsmith import traceable

from ..errors import BudgetExceeded, ParseFailure, RegenerationExhausted, ServiceFailure
from ..models.contract import SchemaContract
from ..models.results import (
    RegenerationResult,
    RepairAttempt,
    RepairLayer,
    ValidationViolation,
    ViolationKind,
)
from ..models.schemas import RegenerationConfig
from ..services.embeddings import EmbeddingCache
from ..services.llm import LLMService
from ..utils.config import config as settings
from ..utils.helpers import ROOT_PATH, set_by_path, truncate_for_preview, utc_now
from ..utils.recovery_stats import StatsTimer, get_stats
from ..validators.schema_validator import only_enum_violations, validate
from .preprocessor import StructureNormalizer, preprocess
from .semantic_matcher import SemanticMatcher
from .strategies import (
    CritiqueReviseStrategy,
    ModelEscalationStrategy,
    PartialRegenerationStrategy,
    RecoveryStrategy,
    StrategyRequest,
)
from .syntax_repair import parse_json, repair

logger = logging.getLogger(__name__)

# Smallest completion worth paying for
MIN_OUTPUT_ALLOWANCE = 128

# Worst-case graph steps per LLM call:
# select -> llm -> parse -> syntax_repair -> normalize -> validate -> semantic -> validate
STEPS_PER_LLM_CYCLE = 8
BASE_STEPS = 16

# Layers that cannot claim layer_used from an LLM-produced candidate
_CLEANUP_LAYERS = (None, RepairLayer.SYNTAX_REPAIR, RepairLayer.PREPROCESS_NORMALIZE)

# Caller predicate run on schema-valid data; False counts as unresolved
QualityValidator = Callable[[Any], Union[bool, Awaitable[bool]]]


class RegenerationState(TypedDict, total=False):
    """State of one pipeline run. Created per call, never shared."""

    # ==========================================================================
    # INPUT
    # ==========================================================================
    raw_output: str
    contract: SchemaContract
    recovery_config: RegenerationConfig
    original_prompt: str
    structure_normalizer: Optional[StructureNormalizer]
    quality_validator: Optional[QualityValidator]

    # ==========================================================================
    # CURRENT CANDIDATE
    # ==========================================================================
    candidate_text: str
    data: Any
    parse_ok: bool
    violations: list                          # list[ValidationViolation]
    semantic_tried: bool                      # reset for every new candidate
    open_attempt: Optional[int]               # LLM attempt awaiting its verdict
    last_parsed: Optional[dict]               # newest candidate that parsed: text, data, violations

    # ==========================================================================
    # RECOVERY PROGRESS
    # ==========================================================================
    model: str                                # current tier
    escalated: bool
    critique_attempts: int
    partial_attempts: int
    failed_layers: list                       # layers whose call failed this round
    pending: Optional[StrategyRequest]
    pending_max_tokens: int

    # ==========================================================================
    # ACCOUNTING
    # ==========================================================================
    attempts: list                            # list[RepairAttempt]
    total_cost: int
    layer_used: Optional[RepairLayer]
    observed_paths: list                      # every violation path seen this run
    budget_exhausted: bool                    # pre-check refused a call
    budget_overrun: bool                      # a call reported more than was left

    # ==========================================================================
    # OUTPUT
    # ==========================================================================
    outcome: str                              # validated | fallback | exhausted | budget_exceeded


def create_initial_state(
    raw_output: str,
    contract: SchemaContract,
    original_prompt: str,
    config: RegenerationConfig,
    model: str,
    structure_normalizer: Optional[StructureNormalizer] = None,
    quality_validator: Optional[QualityValidator] = None,
) -> RegenerationState:
    """Fresh state for one run."""
    return RegenerationState(
        raw_output=raw_output,
        contract=contract,
        recovery_config=config,
        original_prompt=original_prompt,
        structure_normalizer=structure_normalizer,
        quality_validator=quality_validator,
        candidate_text=raw_output,
        data=None,
        parse_ok=False,
        violations=[],
        semantic_tried=False,
        open_attempt=None,
        last_parsed=None,
        model=model,
        escalated=False,
        critique_attempts=0,
        partial_attempts=0,
        failed_layers=[],
        pending=None,
        pending_max_tokens=0,
        attempts=[],
        total_cost=0,
        layer_used=None,
        observed_paths=[],
        budget_exhausted=False,
        budget_overrun=False,
        outcome="",
    )


def recursion_limit_for(config: RegenerationConfig) -> int:
    """Upper bound on graph steps, derived from the attempt ceilings."""
    max_llm_calls = 3 * config.max_attempts_per_layer + 1
    return BASE_STEPS + STEPS_PER_LLM_CYCLE * max_llm_calls


def _unparseable_violation(text: Any) -> ValidationViolation:
    preview = truncate_for_preview(text, 200) if isinstance(text, str) else text
    return ValidationViolation(ROOT_PATH, ViolationKind.STRUCTURAL_INVALID, "valid JSON document", preview)


def _record_paths(state: RegenerationState, violations: list) -> None:
    for v in violations:
        if v.path not in state["observed_paths"]:
            state["observed_paths"].append(v.path)


def _settle_open_attempt(state: RegenerationState, violations: list) -> None:
    """Give a pending LLM attempt its verdict once its candidate was checked."""
    index = state.get("open_attempt")
    if index is None:
        return
    attempt = state["attempts"][index]
    attempt.remaining_violations = list(violations)
    attempt.succeeded = not violations
    state["open_attempt"] = None


def _discard_unparseable(state: RegenerationState, text: str) -> None:
    """Record an unreadable candidate, then fall back to the last parsed one if any."""
    violations = [_unparseable_violation(text)]
    state["violations"] = violations
    _record_paths(state, violations)
    _settle_open_attempt(state, violations)

    previous = state.get("last_parsed")
    if previous is not None:
        state["candidate_text"] = previous["text"]
        state["data"] = previous["data"]
        state["violations"] = previous["violations"]
        state["parse_ok"] = True
        state["semantic_tried"] = True
        state["layer_used"] = previous["layer_used"]


def _blocks_fallback(violations: list) -> bool:
    """A root-level type/structure failure means there is nothing usable to hand back."""
    return any(
        v.path == ROOT_PATH and v.kind in (ViolationKind.TYPE_MISMATCH, ViolationKind.STRUCTURAL_INVALID)
        for v in violations
    )


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class RegenerationOrchestrator:
    """
    Coordinates every recovery layer for one raw LLM response at a time.

    Holds only the injected services; all run state lives in
    RegenerationState, so one orchestrator serves many concurrent runs.
    """

    def __init__(
        self,
        llm: LLMService,
        embedding_cache: Optional[EmbeddingCache] = None,
        default_model: Optional[str] = None,
    ):
        self.llm = llm
        self.embedding_cache = embedding_cache
        self.matcher = SemanticMatcher(embedding_cache) if embedding_cache is not None else None
        self.default_model = default_model or settings.RECOVERY_MODEL

        self.critique = CritiqueReviseStrategy(llm, self.default_model)
        self.partial = PartialRegenerationStrategy(llm, self.default_model)
        self.escalation = ModelEscalationStrategy(llm, self.default_model)

        self.workflow = self._create_workflow()

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    async def warmup(self, contract: SchemaContract) -> int:
        """Pre-embed every enum value of a contract. Call once at process start."""
        if self.embedding_cache is None:
            return 0
        return await self.embedding_cache.warmup(contract.enum_sets())

    @traceable(name="regenerate")
    async def regenerate(
        self,
        raw_output: str,
        contract: SchemaContract,
        original_prompt: str,
        config: Optional[RegenerationConfig] = None,
        structure_normalizer: Optional[Callable[[Any], Any]] = None,
        quality_validator: Optional[QualityValidator] = None,
    ) -> RegenerationResult:
        """
        Turn raw LLM text into contract-conformant data, or fail.

        Args:
            raw_output: Raw text returned by the generating LLM call
            contract: Shape the data must satisfy
            original_prompt: Prompt that produced raw_output
            config: Per-call knobs (strict vs advisory, budgets, synonyms)
            structure_normalizer: Optional reshaping hook run during preprocessing
            quality_validator: Optional sync or async predicate over schema-valid
                data; a False verdict is treated like a remaining violation

        Returns:
            RegenerationResult (validated=False only with warning fallback)

        Raises:
            BudgetExceeded: token ceiling hit before resolution
            RegenerationExhausted: every layer tried, violations remain
        """
        config = config or RegenerationConfig()
        start_time = time.time()

        initial_state = create_initial_state(
            raw_output=raw_output,
            contract=contract,
            original_prompt=original_prompt,
            config=config,
            model=self.default_model,
            structure_normalizer=structure_normalizer,
            quality_validator=quality_validator,
        )

        # Run workflow with recursion limit (safety net)
        final_state = await self.workflow.ainvoke(
            initial_state,
            config={"recursion_limit": recursion_limit_for(config)},
        )

        outcome = final_state["outcome"]
        attempts = final_state["attempts"]
        violations = final_state["violations"]
        total_cost = final_state["total_cost"]

        if config.metrics_tracking:
            get_stats().add_run(
                outcome,
                attempts=attempts,
                violation_paths=final_state["observed_paths"],
                token_cost=total_cost,
                elapsed_time=time.time() - start_time,
            )

        logger.info(
            f"Regeneration complete: outcome={outcome}, layer={final_state.get('layer_used')}, "
            f"attempts={len(attempts)}, cost={total_cost}"
        )

        if outcome == "validated":
            return RegenerationResult(
                data=final_state["data"],
                validated=True,
                layer_used=final_state["layer_used"],
                attempts=attempts,
                total_cost=total_cost,
            )

        if outcome == "fallback":
            return RegenerationResult(
                data=final_state["data"],
                validated=False,
                layer_used=RepairLayer.WARNING_FALLBACK,
                attempts=attempts,
                total_cost=total_cost,
            )

        if outcome == "budget_exceeded":
            raise BudgetExceeded(
                f"Token budget of {config.max_total_token_cost} exhausted "
                f"with {len(violations)} violation(s) remaining (spent {total_cost})",
                attempts=attempts,
                violations=violations,
                total_cost=total_cost,
            )

        raise RegenerationExhausted(
            f"All recovery layers exhausted with {len(violations)} violation(s) remaining",
            attempts=attempts,
            violations=violations,
            total_cost=total_cost,
        )

    # ==========================================================================
    # DETERMINISTIC NODES
    # ==========================================================================

    @traceable(name="parse_node")
    async def parse_node(self, state: RegenerationState) -> RegenerationState:
        """Strict parse of the current candidate."""
        try:
            state["data"] = parse_json(state["candidate_text"])
            state["parse_ok"] = True
        except ParseFailure as e:
            logger.info(f"[PARSE] Candidate is not valid JSON: {e}")
            state["data"] = None
            state["parse_ok"] = False
        return state

    @traceable(name="syntax_repair_node")
    async def syntax_repair_node(self, state: RegenerationState) -> RegenerationState:
        """Deterministic text-level repair. Zero cost."""
        text = state["candidate_text"] if isinstance(state["candidate_text"], str) else ""

        if not state["recovery_config"].layer_enabled(RepairLayer.SYNTAX_REPAIR):
            logger.info("[SYNTAX] Layer disabled, candidate stays unparsed")
            _discard_unparseable(state, text)
            return state

        attempt = RepairAttempt(layer=RepairLayer.SYNTAX_REPAIR, started_at=utc_now())

        with StatsTimer() as timer:
            result = repair(text)

        attempt.duration_ms = timer.elapsed_ms
        attempt.detail = result.strategy_used

        if result.success:
            state["data"] = result.data
            state["parse_ok"] = True
            attempt.succeeded = True
            attempt.remaining_violations = validate(result.data, state["contract"])
            if state.get("layer_used") is None:
                state["layer_used"] = RepairLayer.SYNTAX_REPAIR
            logger.info(f"[SYNTAX] Repaired with '{result.strategy_used}'")
            state["attempts"].append(attempt)
            return state

        logger.warning("[SYNTAX] All repair strategies failed")
        attempt.remaining_violations = [_unparseable_violation(text)]
        state["attempts"].append(attempt)
        _discard_unparseable(state, text)
        return state

    @traceable(name="normalize_node")
    async def normalize_node(self, state: RegenerationState) -> RegenerationState:
        """Field-name repair, structure hook and enum normalization."""
        if not state["recovery_config"].layer_enabled(RepairLayer.PREPROCESS_NORMALIZE):
            return state

        attempt = RepairAttempt(layer=RepairLayer.PREPROCESS_NORMALIZE, started_at=utc_now())

        with StatsTimer() as timer:
            data, changes = preprocess(
                state["data"],
                state["contract"],
                state["recovery_config"],
                state.get("structure_normalizer"),
            )

        if changes:
            state["data"] = data
            attempt.duration_ms = timer.elapsed_ms
            attempt.succeeded = True
            attempt.detail = "; ".join(changes)
            attempt.remaining_violations = validate(data, state["contract"])
            state["attempts"].append(attempt)
            if state.get("layer_used") in _CLEANUP_LAYERS:
                state["layer_used"] = RepairLayer.PREPROCESS_NORMALIZE

        return state

    @traceable(name="validate_node")
    async def validate_node(self, state: RegenerationState) -> RegenerationState:
        violations = validate(state["data"], state["contract"])
        if not violations and state.get("quality_validator") is not None:
            violations = await self._check_quality(state)
        state["violations"] = violations
        _record_paths(state, violations)
        _settle_open_attempt(state, violations)
        state["last_parsed"] = {
            "text": state["candidate_text"],
            "data": state["data"],
            "violations": violations,
            "layer_used": state.get("layer_used"),
        }

        if violations:
            logger.info(f"[VALIDATE] {len(violations)} violation(s): {[v.path for v in violations[:5]]}")
        return state

    async def _check_quality(self, state: RegenerationState) -> list:
        """Run the caller's quality predicate; a rejection becomes a root violation."""
        try:
            verdict = state["quality_validator"](state["data"])
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception as e:
            logger.warning(f"[VALIDATE] Quality validator raised, treating as rejected: {e}")
            verdict = False

        if verdict:
            return []
        logger.info("[VALIDATE] Schema-valid candidate rejected by quality validator")
        return [ValidationViolation(
            ROOT_PATH, ViolationKind.QUALITY_REJECTED, "output accepted by quality validator", None
        )]

    @traceable(name="semantic_match_node")
    async def semantic_match_node(self, state: RegenerationState) -> RegenerationState:
        """Replace invalid enum strings with their nearest allowed value."""
        state["semantic_tried"] = True
        config: RegenerationConfig = state["recovery_config"]
        contract: SchemaContract = state["contract"]
        attempt = RepairAttempt(layer=RepairLayer.SEMANTIC_MATCH, started_at=utc_now())
        substitutions = []

        with StatsTimer() as timer:
            for violation in state["violations"]:
                if not isinstance(violation.received, str):
                    continue
                spec = contract.spec_at(violation.path)
                if spec is None:
                    continue
                match = await self.matcher.match(
                    violation.received,
                    spec.allowed_values,
                    config.semantic_match_threshold,
                    timeout=config.embedding_timeout_seconds,
                )
                if match.accepted:
                    state["data"] = set_by_path(state["data"], violation.path, match.matched)
                    substitutions.append(
                        f"{violation.path}: {violation.received!r} -> {match.matched!r} ({match.similarity:.3f})"
                    )

        attempt.duration_ms = timer.elapsed_ms
        attempt.succeeded = bool(substitutions)
        attempt.detail = "; ".join(substitutions) or "no match above threshold"
        attempt.remaining_violations = validate(state["data"], contract)
        state["attempts"].append(attempt)

        if substitutions:
            state["layer_used"] = RepairLayer.SEMANTIC_MATCH
        return state

    # ==========================================================================
    # STRATEGY SELECTION
    # ==========================================================================

    def _next_strategy(self, state: RegenerationState) -> list[tuple[RecoveryStrategy, Optional[str]]]:
        """Remaining strategies for this round, in order, with their model."""
        config: RegenerationConfig = state["recovery_config"]
        failed = state["failed_layers"]
        limit = config.max_attempts_per_layer
        candidates = []

        def open_layer(layer: RepairLayer) -> bool:
            return config.layer_enabled(layer) and layer not in failed

        if open_layer(RepairLayer.CRITIQUE_REVISE) and state["critique_attempts"] < limit:
            candidates.append((self.critique, state["model"]))

        if state["escalated"]:
            return candidates

        if open_layer(RepairLayer.PARTIAL_REGENERATION) and state["partial_attempts"] < limit:
            candidates.append((self.partial, state["model"]))
        if config.escalation_model and config.layer_enabled(RepairLayer.MODEL_ESCALATION):
            candidates.append((self.escalation, config.escalation_model))
        return candidates

    @traceable(name="select_strategy_node")
    async def select_strategy_node(self, state: RegenerationState) -> RegenerationState:
        """Pick the next applicable strategy and budget-check its prompt."""
        config: RegenerationConfig = state["recovery_config"]
        state["pending"] = None

        bad_output = (
            json.dumps(state["data"], ensure_ascii=False, default=str)
            if state["parse_ok"]
            else state["candidate_text"]
        )

        for strategy, model in self._next_strategy(state):
            request = strategy.prepare(
                state["original_prompt"],
                bad_output,
                state["violations"],
                model,
                contract=state["contract"],
                data=state["data"] if state["parse_ok"] else None,
            )
            if request is None:
                logger.debug(f"[SELECT] {strategy.layer.value} not applicable, skipping")
                continue

            remaining = config.max_total_token_cost - state["total_cost"]
            needed = request.estimated_tokens + MIN_OUTPUT_ALLOWANCE
            if needed > remaining:
                logger.warning(
                    f"[BUDGET] {strategy.layer.value} needs ~{needed} tokens, "
                    f"only {remaining} left of {config.max_total_token_cost}"
                )
                state["budget_exhausted"] = True
                return state

            state["pending"] = request
            state["pending_max_tokens"] = min(config.max_output_tokens, remaining - request.estimated_tokens)
            logger.info(f"[SELECT] Next strategy: {strategy.layer.value} on {request.model}")
            return state

        logger.info("[SELECT] No recovery strategies left")
        return state

    # ==========================================================================
    # LLM NODES
    # ==========================================================================

    async def _run_strategy(self, state: RegenerationState, strategy: RecoveryStrategy) -> RegenerationState:
        """Execute the pending request and install its output as the new candidate."""
        config: RegenerationConfig = state["recovery_config"]
        request: StrategyRequest = state["pending"]
        state["pending"] = None

        if strategy.layer == RepairLayer.CRITIQUE_REVISE:
            state["critique_attempts"] += 1
        elif strategy.layer == RepairLayer.PARTIAL_REGENERATION:
            state["partial_attempts"] += 1

        attempt = RepairAttempt(layer=strategy.layer, started_at=utc_now(), model=request.model)

        with StatsTimer() as timer:
            try:
                output = await strategy.execute(
                    request,
                    state["pending_max_tokens"],
                    timeout=config.llm_timeout_seconds,
                    data=state["data"] if state["parse_ok"] else None,
                )
            except ServiceFailure as e:
                output = None
                logger.error(f"[{strategy.layer.value.upper()}] Call failed, advancing: {e}")
                attempt.detail = str(e)

        attempt.duration_ms = timer.elapsed_ms

        if output is None:
            attempt.remaining_violations = list(state["violations"])
            state["attempts"].append(attempt)
            state["failed_layers"].append(strategy.layer)
            return state

        attempt.token_cost = output.token_cost
        attempt.detail = output.detail
        state["total_cost"] += output.token_cost
        state["attempts"].append(attempt)
        state["open_attempt"] = len(state["attempts"]) - 1

        if state["total_cost"] > config.max_total_token_cost:
            logger.error(
                f"[BUDGET] {strategy.layer.value} reported {output.token_cost} tokens, "
                f"total {state['total_cost']} exceeds {config.max_total_token_cost}"
            )
            state["budget_overrun"] = True
            attempt.remaining_violations = list(state["violations"])
            state["open_attempt"] = None
            return state

        # New candidate: everything downstream starts over
        state["candidate_text"] = output.text
        state["data"] = None
        state["parse_ok"] = False
        state["semantic_tried"] = False
        state["layer_used"] = strategy.layer
        return state

    @traceable(name="critique_revise_node")
    async def critique_revise_node(self, state: RegenerationState) -> RegenerationState:
        return await self._run_strategy(state, self.critique)

    @traceable(name="partial_regeneration_node")
    async def partial_regeneration_node(self, state: RegenerationState) -> RegenerationState:
        return await self._run_strategy(state, self.partial)

    @traceable(name="model_escalation_node")
    async def model_escalation_node(self, state: RegenerationState) -> RegenerationState:
        """
        Re-issue the original prompt on the escalation model, once.

        Escalation is spent even when the call fails. After a successful call
        the next round runs Critique-Revise only, on the stronger model, with
        fresh counters; after a failed call the current tier and counters stay.
        """
        escalation_model = state["pending"].model
        state = await self._run_strategy(state, self.escalation)
        state["escalated"] = True

        if RepairLayer.MODEL_ESCALATION in state["failed_layers"]:
            logger.warning(f"[ESCALATION] {escalation_model} failed, staying on {state['model']}")
            return state

        state["model"] = escalation_model
        state["critique_attempts"] = 0
        state["failed_layers"] = []
        return state

    # ==========================================================================
    # FINALIZE
    # ==========================================================================

    @traceable(name="finalize_node")
    async def finalize_node(self, state: RegenerationState) -> RegenerationState:
        config: RegenerationConfig = state["recovery_config"]
        violations = state["violations"]

        if state["budget_overrun"]:
            state["outcome"] = "budget_exceeded"
            return state

        if state["parse_ok"] and not violations:
            if state.get("layer_used") is None:
                state["layer_used"] = RepairLayer.PREPROCESS_NORMALIZE
            state["outcome"] = "validated"
            return state

        if (
            config.allow_warning_fallback
            and config.layer_enabled(RepairLayer.WARNING_FALLBACK)
            and state["parse_ok"]
            and not _blocks_fallback(violations)
        ):
            logger.warning(
                f"[FALLBACK] Returning unvalidated output with {len(violations)} violation(s)"
            )
            state["attempts"].append(RepairAttempt(
                layer=RepairLayer.WARNING_FALLBACK,
                succeeded=False,
                remaining_violations=list(violations),
                detail="best-effort output accepted without validation",
            ))
            state["layer_used"] = RepairLayer.WARNING_FALLBACK
            state["outcome"] = "fallback"
            return state

        state["outcome"] = "budget_exceeded" if state["budget_exhausted"] else "exhausted"
        return state

    # ==========================================================================
    # ROUTING
    # ==========================================================================

    @staticmethod
    def route_after_parse(state: RegenerationState) -> str:
        return "normalize" if state["parse_ok"] else "syntax_repair"

    @staticmethod
    def route_after_syntax_repair(state: RegenerationState) -> str:
        last = state["attempts"][-1] if state["attempts"] else None
        if last is not None and last.layer == RepairLayer.SYNTAX_REPAIR and last.succeeded:
            return "normalize"
        return "select_strategy"

    def route_after_validate(self, state: RegenerationState) -> str:
        violations = state["violations"]
        if not violations:
            return "finalize"
        if (
            self.matcher is not None
            and state["recovery_config"].layer_enabled(RepairLayer.SEMANTIC_MATCH)
            and not state["semantic_tried"]
            and only_enum_violations(violations)
            and any(isinstance(v.received, str) for v in violations)
        ):
            return "semantic_match"
        return "select_strategy"

    @staticmethod
    def route_after_select(state: RegenerationState) -> str:
        request = state.get("pending")
        if request is None:
            return "finalize"
        return request.layer.value

    @staticmethod
    def route_after_llm(state: RegenerationState) -> str:
        if state["budget_overrun"]:
            return "finalize"
        if state.get("open_attempt") is None:
            # call failed, candidate unchanged
            return "select_strategy"
        return "parse"

    # ==========================================================================
    # GRAPH
    # ==========================================================================

    def _create_workflow(self):
        """Build and compile the recovery StateGraph."""
        workflow = StateGraph(RegenerationState)

        # ==========================================================================
        # ADD NODES
        # ==========================================================================
        workflow.add_node("parse", self.parse_node)
        workflow.add_node("syntax_repair", self.syntax_repair_node)
        workflow.add_node("normalize", self.normalize_node)
        workflow.add_node("validate", self.validate_node)
        workflow.add_node("semantic_match", self.semantic_match_node)
        workflow.add_node("select_strategy", self.select_strategy_node)
        workflow.add_node(RepairLayer.CRITIQUE_REVISE.value, self.critique_revise_node)
        workflow.add_node(RepairLayer.PARTIAL_REGENERATION.value, self.partial_regeneration_node)
        workflow.add_node(RepairLayer.MODEL_ESCALATION.value, self.model_escalation_node)
        workflow.add_node("finalize", self.finalize_node)

        # ==========================================================================
        # SET ENTRY POINT
        # ==========================================================================
        workflow.set_entry_point("parse")

        # ==========================================================================
        # ADD EDGES
        # ==========================================================================
        workflow.add_conditional_edges(
            "parse",
            self.route_after_parse,
            {"normalize": "normalize", "syntax_repair": "syntax_repair"},
        )
        workflow.add_conditional_edges(
            "syntax_repair",
            self.route_after_syntax_repair,
            {"normalize": "normalize", "select_strategy": "select_strategy"},
        )
        workflow.add_edge("normalize", "validate")
        workflow.add_conditional_edges(
            "validate",
            self.route_after_validate,
            {
                "finalize": "finalize",
                "semantic_match": "semantic_match",
                "select_strategy": "select_strategy",
            },
        )
        workflow.add_edge("semantic_match", "validate")
        workflow.add_conditional_edges(
            "select_strategy",
            self.route_after_select,
            {
                RepairLayer.CRITIQUE_REVISE.value: RepairLayer.CRITIQUE_REVISE.value,
                RepairLayer.PARTIAL_REGENERATION.value: RepairLayer.PARTIAL_REGENERATION.value,
                RepairLayer.MODEL_ESCALATION.value: RepairLayer.MODEL_ESCALATION.value,
                "finalize": "finalize",
            },
        )
        for layer in (
            RepairLayer.CRITIQUE_REVISE,
            RepairLayer.PARTIAL_REGENERATION,
            RepairLayer.MODEL_ESCALATION,
        ):
            workflow.add_conditional_edges(
                layer.value,
                self.route_after_llm,
                {"parse": "parse", "select_strategy": "select_strategy", "finalize": "finalize"},
            )
        workflow.add_edge("finalize", END)

        # ==========================================================================
        # COMPILE
        # ==========================================================================
        return workflow.compile()


# =============================================================================
# DEFAULT ORCHESTRATOR
# =============================================================================

_default_orchestrator: Optional[RegenerationOrchestrator] = None


def build_orchestrator() -> RegenerationOrchestrator:
    """Orchestrator wired to the OpenAI-backed services from environment settings."""
    from ..services.embeddings import OpenAIEmbeddingService
    from ..services.llm import ChatOpenAILLMService

    return RegenerationOrchestrator(
        llm=ChatOpenAILLMService(),
        embedding_cache=EmbeddingCache(OpenAIEmbeddingService()),
        default_model=settings.RECOVERY_MODEL,
    )


def get_orchestrator() -> RegenerationOrchestrator:
    """Get or create the process-wide default orchestrator."""
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = build_orchestrator()
    return _default_orchestrator


async def regenerate(
    raw_output: str,
    contract: SchemaContract,
    original_prompt: str,
    config: Optional[RegenerationConfig] = None,
    structure_normalizer: Optional[Callable[[Any], Any]] = None,
    quality_validator: Optional[QualityValidator] = None,
) -> RegenerationResult:
    """Convenience entry point using the default orchestrator."""
    return await get_orchestrator().regenerate(
        raw_output, contract, original_prompt, config,
        structure_normalizer=structure_normalizer,
        quality_validator=quality_validator,
    )
