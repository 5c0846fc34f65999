"""
Core recovery modules.

Modules:
- preprocessor: enum normalization, field-name repair, structure hook
- syntax_repair: deterministic text-level JSON repair
- semantic_matcher: embedding-similarity enum substitution
- strategies: Critique-Revise, Partial Regeneration, Model Escalation
- regeneration_graph: LangGraph orchestrator and regenerate() entry point
- worker_pool: bounded concurrency over many units
"""

from .preprocessor import (
    normalize,
    preprocess,
)

from .syntax_repair import (
    RepairResult,
    extract_json_block,
    parse_json,
    repair,
    STRATEGIES,
)

from .semantic_matcher import (
    MatchResult,
    SemanticMatcher,
    cosine_similarity,
)

from .strategies import (
    StrategyRequest,
    StrategyOutput,
    RecoveryStrategy,
    CritiqueReviseStrategy,
    PartialRegenerationStrategy,
    ModelEscalationStrategy,
    select_target_path,
)

from .regeneration_graph import (
    RegenerationOrchestrator,
    RegenerationState,
    build_orchestrator,
    get_orchestrator,
    regenerate,
)

from .worker_pool import (
    RegenerationUnit,
    UnitOutcome,
    run_units,
)

__all__ = [
    # Preprocessor
    "normalize",
    "preprocess",
    # Syntax Repair
    "RepairResult",
    "extract_json_block",
    "parse_json",
    "repair",
    "STRATEGIES",
    # Semantic Matcher
    "MatchResult",
    "SemanticMatcher",
    "cosine_similarity",
    # Strategies
    "StrategyRequest",
    "StrategyOutput",
    "RecoveryStrategy",
    "CritiqueReviseStrategy",
    "PartialRegenerationStrategy",
    "ModelEscalationStrategy",
    "select_target_path",
    # Orchestrator
    "RegenerationOrchestrator",
    "RegenerationState",
    "build_orchestrator",
    "get_orchestrator",
    "regenerate",
    # Worker Pool
    "RegenerationUnit",
    "UnitOutcome",
    "run_units",
]
