"""
Tests for recovery statistics and the retry handler.
"""

import asyncio
import time

import pytest

from output_recovery.errors import RegenerationExhausted
from output_recovery.models import RepairAttempt, RepairLayer
from output_recovery.utils.recovery_stats import (
    RecoveryStatistics,
    StatsTimer,
    get_stats,
    get_stats_summary,
    reset_stats,
)
from output_recovery.utils.retry_handler import RetryConfig, RetryExhaustedError, retry_with_backoff


class TestRecoveryStatistics:

    def test_outcome_counters(self):
        stats = RecoveryStatistics()
        stats.add_run("validated", token_cost=100)
        stats.add_run("fallback", token_cost=50)
        stats.add_run("exhausted")
        stats.add_run("budget_exceeded")

        summary = stats.get_summary()
        assert summary["runs"]["total"] == 4
        assert summary["runs"]["validated"] == 1
        assert summary["runs"]["fallback"] == 1
        assert summary["runs"]["failed"] == 2
        assert summary["runs"]["budget_exceeded"] == 1
        assert summary["runs"]["success_rate"] == "25.0%"
        assert summary["tokens"]["total"] == 150

    def test_per_layer_attempts(self):
        stats = RecoveryStatistics()
        attempts = [
            RepairAttempt(layer=RepairLayer.CRITIQUE_REVISE, token_cost=120, succeeded=False),
            RepairAttempt(layer=RepairLayer.CRITIQUE_REVISE, token_cost=80, succeeded=True),
        ]
        stats.add_run("validated", attempts=attempts)

        entry = stats.layer_stats["critique_revise"]
        assert entry["attempts"] == 2
        assert entry["successes"] == 1
        assert entry["token_cost"] == 200

    def test_recurring_paths_ignore_indices(self):
        """A path counts once per run, whatever the array index"""
        stats = RecoveryStatistics()
        stats.add_run("fallback", violation_paths=[
            "sections[0].lessons[1].exercise_type",
            "sections[0].lessons[4].exercise_type",
        ])
        stats.add_run("fallback", violation_paths=["sections[2].lessons[0].exercise_type", "level"])
        stats.add_run("validated", violation_paths=["$"])

        assert stats.get_recurring_violation_paths(2) == [("sections.lessons.exercise_type", 2)]
        assert ("$", 1) in stats.get_recurring_violation_paths(1)

    def test_global_instance_reset(self):
        get_stats().add_run("validated")
        assert get_stats_summary()["runs"]["total"] == 1
        reset_stats()
        assert get_stats().total_runs == 0

    def test_timer(self):
        with StatsTimer("step") as timer:
            time.sleep(0.01)
        assert timer.elapsed > 0
        assert timer.elapsed_ms == int(timer.elapsed * 1000)


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_succeeds_after_retry(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise RegenerationExhausted("not yet")
            return "ok"

        result = await retry_with_backoff(flaky, config=RetryConfig(min_wait=0.001, jitter=False))

        assert result == "ok"
        assert len(calls) == 2
        assert get_stats().retry_attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted(self):
        async def always_fails():
            raise asyncio.TimeoutError()

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_backoff(always_fails, config=RetryConfig(max_attempts=2, min_wait=0.001))

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self):
        calls = []

        async def broken():
            calls.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_with_backoff(broken, config=RetryConfig(min_wait=0.001))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []

        async def flaky():
            if not seen:
                raise RegenerationExhausted("first")
            return 1

        await retry_with_backoff(
            flaky,
            config=RetryConfig(min_wait=0.001, jitter=False),
            on_retry=lambda attempt, error, wait: seen.append((attempt, type(error).__name__)),
        )
        assert seen == [(1, "RegenerationExhausted")]
