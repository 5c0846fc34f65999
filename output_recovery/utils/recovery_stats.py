"""
Recovery Statistics Tracking.

Tracks outcomes, per-layer attempts, token cost, timing and recurring
violation paths across all pipeline runs in the process. A path that keeps
failing run after run points at prompt or schema drift.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable
import time
import logging

from .helpers import ROOT_PATH, strip_indices

logger = logging.getLogger(__name__)


@dataclass
class RecoveryStatistics:
    """Statistics for pipeline runs."""
    total_runs: int = 0
    validated_runs: int = 0
    fallback_runs: int = 0
    failed_runs: int = 0
    budget_exceeded_runs: int = 0

    # Token tracking
    total_token_cost: int = 0

    # Timing
    total_time: float = 0.0

    # Retry stats (caller-level unit retries)
    retry_attempts: int = 0
    total_retry_wait_time: float = 0.0

    # Per-layer tracking
    layer_stats: dict = field(default_factory=dict)

    # Index-free violation path -> number of runs it appeared in
    violation_paths: Counter = field(default_factory=Counter)

    def add_attempt(self, layer: str, succeeded: bool, token_cost: int = 0, elapsed_ms: int = 0):
        """Record one layer attempt."""
        if layer not in self.layer_stats:
            self.layer_stats[layer] = {"attempts": 0, "successes": 0, "token_cost": 0, "time_ms": 0}
        entry = self.layer_stats[layer]
        entry["attempts"] += 1
        entry["token_cost"] += token_cost
        entry["time_ms"] += elapsed_ms
        if succeeded:
            entry["successes"] += 1

    def add_run(
        self,
        outcome: str,
        attempts: Iterable = (),
        violation_paths: Iterable[str] = (),
        token_cost: int = 0,
        elapsed_time: float = 0.0,
    ):
        """
        Record a finished run.

        Args:
            outcome: "validated", "fallback", "exhausted" or "budget_exceeded"
            attempts: RepairAttempt records of the run
            violation_paths: every violation path observed during the run
            token_cost: total tokens spent
            elapsed_time: wall time in seconds
        """
        self.total_runs += 1
        if outcome == "validated":
            self.validated_runs += 1
        elif outcome == "fallback":
            self.fallback_runs += 1
        else:
            self.failed_runs += 1
            if outcome == "budget_exceeded":
                self.budget_exceeded_runs += 1

        self.total_token_cost += token_cost
        self.total_time += elapsed_time

        for attempt in attempts:
            self.add_attempt(attempt.layer.value, attempt.succeeded, attempt.token_cost, attempt.duration_ms)

        # Count each path once per run
        seen = {strip_indices(p) or ROOT_PATH for p in violation_paths}
        self.violation_paths.update(seen)

    def add_retry(self, wait_time: float = 0.0):
        """Record a unit retry."""
        self.retry_attempts += 1
        self.total_retry_wait_time += wait_time

    def get_recurring_violation_paths(self, min_count: int = 2) -> list[tuple[str, int]]:
        """Paths that failed in at least min_count runs, most frequent first."""
        return [(path, count) for path, count in self.violation_paths.most_common() if count >= min_count]

    def get_summary(self) -> dict[str, Any]:
        """Get summary of statistics."""
        return {
            "runs": {
                "total": self.total_runs,
                "validated": self.validated_runs,
                "fallback": self.fallback_runs,
                "failed": self.failed_runs,
                "budget_exceeded": self.budget_exceeded_runs,
                "success_rate": f"{(self.validated_runs / max(self.total_runs, 1)) * 100:.1f}%"
            },
            "tokens": {
                "total": self.total_token_cost,
                "avg_per_run": round(self.total_token_cost / max(self.total_runs, 1), 1),
            },
            "timing": {
                "total_seconds": round(self.total_time, 2),
                "avg_per_run": round(self.total_time / max(self.total_runs, 1), 3),
            },
            "retries": {
                "attempts": self.retry_attempts,
                "total_wait_time": round(self.total_retry_wait_time, 2),
            },
            "per_layer": self.layer_stats,
            "recurring_violation_paths": self.get_recurring_violation_paths()[:20],
        }


# Global statistics instance
_stats = RecoveryStatistics()


def get_stats() -> RecoveryStatistics:
    """Get global statistics instance."""
    return _stats


def get_stats_summary() -> dict[str, Any]:
    """Get statistics summary."""
    return _stats.get_summary()


def get_recurring_violation_paths(min_count: int = 2) -> list[tuple[str, int]]:
    return _stats.get_recurring_violation_paths(min_count)


def reset_stats():
    """Reset statistics."""
    global _stats
    _stats = RecoveryStatistics()


class StatsTimer:
    """Context manager for timing pipeline steps."""

    def __init__(self, label: str = None):
        self.label = label
        self.start_time = None
        self.elapsed = 0.0

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed * 1000)

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        return False  # Don't suppress exceptions
