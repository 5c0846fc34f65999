"""
Bounded worker pool for independent regeneration units.

A fixed number of asyncio workers pull units from an asyncio.Queue. Each unit
runs the full pipeline on its own; one unit failing in strict mode never
stops the others. Outcomes come back in input order.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from ..errors import RegenerationError
from ..models.contract import SchemaContract
from ..models.results import RegenerationResult
from ..models.schemas import RegenerationConfig
from ..utils.config import config as settings
from ..utils.retry_handler import RetryConfig, RetryExhaustedError, retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class RegenerationUnit:
    """One raw LLM response to recover."""
    raw_output: str
    contract: SchemaContract
    original_prompt: str
    config: Optional[RegenerationConfig] = None
    unit_id: str = ""
    structure_normalizer: Optional[Callable[[Any], Any]] = None
    quality_validator: Optional[Callable[[Any], Any]] = None


@dataclass
class UnitOutcome:
    """Result or error for one unit."""
    unit_id: str
    index: int
    result: Optional[RegenerationResult] = None
    error: Optional[BaseException] = None
    duration_ms: int = 0
    invocations: int = 1

    @property
    def ok(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "index": self.index,
            "ok": self.ok,
            "result": self.result.to_dict() if self.result else None,
            "error": (
                self.error.to_dict() if isinstance(self.error, RegenerationError)
                else (f"{type(self.error).__name__}: {self.error}" if self.error else None)
            ),
            "duration_ms": self.duration_ms,
            "invocations": self.invocations,
        }


async def _run_unit(
    index: int,
    unit: RegenerationUnit,
    orchestrator,
    unit_timeout: Optional[float],
    retry_config: Optional[RetryConfig],
) -> UnitOutcome:
    unit_id = unit.unit_id or f"unit-{index}"
    outcome = UnitOutcome(unit_id=unit_id, index=index, invocations=0)
    start_time = time.time()

    async def _invoke() -> RegenerationResult:
        outcome.invocations += 1
        pipeline = orchestrator.regenerate(
            unit.raw_output,
            unit.contract,
            unit.original_prompt,
            unit.config,
            structure_normalizer=unit.structure_normalizer,
            quality_validator=unit.quality_validator,
        )
        if unit_timeout:
            # cancels the pipeline, and any in-flight call, at the deadline
            return await asyncio.wait_for(pipeline, unit_timeout)
        return await pipeline

    try:
        if retry_config is not None:
            outcome.result = await retry_with_backoff(_invoke, config=retry_config)
        else:
            outcome.result = await _invoke()
    except RetryExhaustedError as e:
        outcome.error = e.last_exception or e
        logger.error(f"[POOL] {unit_id} failed after {outcome.invocations} invocation(s): {outcome.error}")
    except asyncio.TimeoutError as e:
        outcome.error = e
        logger.error(f"[POOL] {unit_id} timed out after {unit_timeout}s")
    except RegenerationError as e:
        outcome.error = e
        logger.error(f"[POOL] {unit_id} failed: {type(e).__name__}: {e}")
    except Exception as e:
        outcome.error = e
        logger.exception(f"[POOL] {unit_id} raised unexpectedly: {e}")

    outcome.duration_ms = int((time.time() - start_time) * 1000)
    return outcome


async def run_units(
    units: Iterable[RegenerationUnit],
    orchestrator,
    max_concurrency: Optional[int] = None,
    unit_timeout: Optional[float] = None,
    retry_config: Optional[RetryConfig] = None,
) -> list[UnitOutcome]:
    """
    Run units through a fixed pool of workers.

    Args:
        units: Units to recover
        orchestrator: Anything with an async regenerate(...) (RegenerationOrchestrator)
        max_concurrency: Number of workers (default MAX_CONCURRENT_UNITS)
        unit_timeout: Optional per-unit deadline in seconds
        retry_config: Optional caller-level retry of whole unit invocations

    Returns:
        One UnitOutcome per unit, in input order
    """
    units = list(units)
    if not units:
        return []

    max_concurrency = max_concurrency or settings.MAX_CONCURRENT_UNITS
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

    queue: asyncio.Queue = asyncio.Queue()
    for index, unit in enumerate(units):
        queue.put_nowait((index, unit))

    outcomes: list[Optional[UnitOutcome]] = [None] * len(units)

    async def worker(worker_id: int) -> None:
        while True:
            try:
                index, unit = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                outcomes[index] = await _run_unit(index, unit, orchestrator, unit_timeout, retry_config)
            finally:
                queue.task_done()

    worker_count = min(max_concurrency, len(units))
    logger.info(f"[POOL] Running {len(units)} unit(s) on {worker_count} worker(s)")
    workers = [asyncio.create_task(worker(n)) for n in range(worker_count)]

    try:
        await asyncio.gather(*workers)
    except BaseException:
        # cancellation (or a bug) stops every worker before propagating
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    succeeded = sum(1 for o in outcomes if o is not None and o.ok)
    logger.info(f"[POOL] Complete: {succeeded}/{len(units)} unit(s) recovered")
    return outcomes
