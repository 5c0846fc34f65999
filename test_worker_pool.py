"""
Tests for the bounded worker pool.

Tests cover:
- Outcomes come back in input order
- A failing unit never affects the others
- The concurrency bound is honored
- Per-unit timeouts cancel only that unit
- Caller-level retries
- Cancelling the pool cancels every in-flight unit
"""

import asyncio

import pytest

from output_recovery.core.worker_pool import RegenerationUnit, run_units
from output_recovery.errors import RegenerationExhausted
from output_recovery.models import RegenerationConfig, RegenerationResult, RepairLayer
from output_recovery.utils.retry_handler import RetryConfig

from conftest import FakeLLMService

PROMPT = "Design one exercise. Return JSON."


class StubOrchestrator:
    """Scripted regenerate(): per-unit delay, failure and cancellation tracking."""

    def __init__(self, delays=None, failures=None, fail_times=None):
        self.delays = delays or {}
        self.failures = set(failures or ())
        self.fail_times = dict(fail_times or {})
        self.running = 0
        self.peak = 0
        self.calls = []
        self.cancelled = []

    async def regenerate(self, raw_output, contract, original_prompt, config=None,
                         structure_normalizer=None, quality_validator=None):
        self.calls.append(raw_output)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self.delays.get(raw_output, 0.01))
            if raw_output in self.failures:
                raise RegenerationExhausted(f"{raw_output} exhausted")
            if self.fail_times.get(raw_output, 0) > 0:
                self.fail_times[raw_output] -= 1
                raise RegenerationExhausted(f"{raw_output} exhausted, will recover")
            return RegenerationResult(data={"raw": raw_output}, validated=True,
                                      layer_used=RepairLayer.PREPROCESS_NORMALIZE)
        except asyncio.CancelledError:
            self.cancelled.append(raw_output)
            raise
        finally:
            self.running -= 1


def _units(contract, names):
    return [RegenerationUnit(raw_output=name, contract=contract, original_prompt=PROMPT, unit_id=name)
            for name in names]


class TestRunUnits:

    @pytest.mark.asyncio
    async def test_input_order_preserved(self, exercise_contract):
        names = ["a", "b", "c", "d", "e"]
        stub = StubOrchestrator(delays={"a": 0.05, "b": 0.01, "c": 0.03, "d": 0.0, "e": 0.02})

        outcomes = await run_units(_units(exercise_contract, names), stub, max_concurrency=2)

        assert [o.unit_id for o in outcomes] == names
        assert [o.index for o in outcomes] == list(range(5))
        assert [o.result.data["raw"] for o in outcomes] == names
        assert all(o.ok for o in outcomes)

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, exercise_contract):
        stub = StubOrchestrator(failures={"b"})

        outcomes = await run_units(_units(exercise_contract, ["a", "b", "c"]), stub, max_concurrency=3)

        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, RegenerationExhausted)
        assert outcomes[1].to_dict()["error"]["error"] == "RegenerationExhausted"

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, exercise_contract):
        stub = StubOrchestrator(delays={name: 0.02 for name in "abcdefgh"})

        await run_units(_units(exercise_contract, list("abcdefgh")), stub, max_concurrency=3)

        assert stub.peak == 3
        assert len(stub.calls) == 8

    @pytest.mark.asyncio
    async def test_unit_timeout(self, exercise_contract):
        stub = StubOrchestrator(delays={"slow": 1.0})

        outcomes = await run_units(
            _units(exercise_contract, ["fast", "slow"]), stub, max_concurrency=2, unit_timeout=0.1
        )

        assert outcomes[0].ok
        assert isinstance(outcomes[1].error, asyncio.TimeoutError)
        assert stub.cancelled == ["slow"]

    @pytest.mark.asyncio
    async def test_retry_recovers(self, exercise_contract):
        stub = StubOrchestrator(fail_times={"flaky": 1})
        retry = RetryConfig(max_attempts=3, min_wait=0.001, jitter=False)

        outcomes = await run_units(_units(exercise_contract, ["flaky"]), stub, retry_config=retry)

        assert outcomes[0].ok
        assert outcomes[0].invocations == 2

    @pytest.mark.asyncio
    async def test_retry_exhausted_reports_last_error(self, exercise_contract):
        stub = StubOrchestrator(failures={"broken"})
        retry = RetryConfig(max_attempts=2, min_wait=0.001, jitter=False)

        outcomes = await run_units(_units(exercise_contract, ["broken"]), stub, retry_config=retry)

        assert not outcomes[0].ok
        assert isinstance(outcomes[0].error, RegenerationExhausted)
        assert outcomes[0].invocations == 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, exercise_contract):
        stub = StubOrchestrator(delays={"a": 10.0, "b": 10.0, "c": 10.0})
        task = asyncio.create_task(run_units(_units(exercise_contract, ["a", "b", "c"]), stub, max_concurrency=2))

        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert sorted(stub.cancelled) == ["a", "b"]
        assert stub.running == 0

    @pytest.mark.asyncio
    async def test_empty(self, exercise_contract):
        assert await run_units([], StubOrchestrator()) == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self, exercise_contract):
        with pytest.raises(ValueError):
            await run_units(_units(exercise_contract, ["a"]), StubOrchestrator(), max_concurrency=-1)


class TestWithOrchestrator:
    """Real pipeline behind the pool"""

    @pytest.mark.asyncio
    async def test_mixed_units(self, make_orchestrator, exercise_contract):
        orchestrator = make_orchestrator(FakeLLMService(default_reply='{"exercise_type": "banana"}'))
        config = RegenerationConfig.strict(max_attempts_per_layer=1, escalation_model=None)
        units = [
            RegenerationUnit('{"exercise_type": "quiz",}', exercise_contract, PROMPT, config),
            RegenerationUnit('{"exercise_type": "banana"}', exercise_contract, PROMPT, config),
            RegenerationUnit('{"exercise_type": "Case Study"}', exercise_contract, PROMPT, config),
        ]

        outcomes = await run_units(units, orchestrator, max_concurrency=2)

        assert [o.unit_id for o in outcomes] == ["unit-0", "unit-1", "unit-2"]
        assert outcomes[0].result.layer_used == RepairLayer.SYNTAX_REPAIR
        assert isinstance(outcomes[1].error, RegenerationExhausted)
        assert outcomes[2].result.data == {"exercise_type": "case_study"}

    @pytest.mark.asyncio
    async def test_quality_validator_per_unit(self, make_orchestrator, exercise_contract):
        orchestrator = make_orchestrator(FakeLLMService(default_reply='{"exercise_type": "quiz"}'))
        config = RegenerationConfig.strict(max_attempts_per_layer=1, escalation_model=None)
        units = [
            RegenerationUnit('{"exercise_type": "quiz"}', exercise_contract, PROMPT, config,
                             quality_validator=lambda data: False),
            RegenerationUnit('{"exercise_type": "quiz"}', exercise_contract, PROMPT, config),
        ]

        outcomes = await run_units(units, orchestrator)

        assert isinstance(outcomes[0].error, RegenerationExhausted)
        assert outcomes[1].result.layer_used == RepairLayer.PREPROCESS_NORMALIZE
