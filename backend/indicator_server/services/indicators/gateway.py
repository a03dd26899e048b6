"""
Computation Gateway

Runs a single indicator computation with a hard deadline.

The engine call is submitted to a sized worker pool and raced against
``asyncio.wait_for``. On timeout the gateway stops awaiting the call; the
worker thread is NOT stopped and may run to completion, its result is simply
discarded. Callers must not assume abandoned work has ceased consuming CPU.

An abandoned call keeps its worker busy, so a caller that fans out many
calls passes a ``limiter``: its slot is held until the worker thread
actually finishes, not merely until the gateway stops waiting.
"""

import asyncio
import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

import numpy as np

from indicator_server.core.config import settings
from indicator_server.services.indicators.calculations import compute

logger = logging.getLogger(__name__)

Engine = Callable[[str, Sequence[Sequence[float]], Sequence[float]], list]

_shared_executor: Optional[ThreadPoolExecutor] = None


def create_engine_executor(max_workers: Optional[int] = None) -> ThreadPoolExecutor:
    """Worker pool for engine calls, sized from settings by default."""
    return ThreadPoolExecutor(
        max_workers=max_workers or settings.engine_max_workers,
        thread_name_prefix="indicator-engine",
    )


def _default_executor() -> ThreadPoolExecutor:
    global _shared_executor
    if _shared_executor is None:
        _shared_executor = create_engine_executor()
    return _shared_executor


@dataclass(frozen=True)
class ComputationSuccess:
    """Engine outputs, copied to plain lists when the call settled."""

    outputs: list[list[float]]
    ok: bool = True


@dataclass(frozen=True)
class ComputationFailure:
    """Engine error or missed deadline."""

    message: str
    timed_out: bool = False
    ok: bool = False


ComputationResult = Union[ComputationSuccess, ComputationFailure]


def _copy_outputs(outputs: Sequence) -> list[list[float]]:
    return [np.asarray(output, dtype=float).tolist() for output in outputs]


async def _submit(
    executor: Executor,
    limiter: Optional[asyncio.Semaphore],
    engine: Engine,
    indicator: str,
    inputs: Sequence[Sequence[float]],
    params: Sequence[float],
) -> list:
    if limiter is None:
        return await asyncio.wrap_future(executor.submit(engine, indicator, inputs, params))

    await limiter.acquire()
    loop = asyncio.get_running_loop()

    def release(_: Future) -> None:
        try:
            loop.call_soon_threadsafe(limiter.release)
        except RuntimeError:
            # Loop already closed; the limiter went with it.
            pass

    try:
        future = executor.submit(engine, indicator, inputs, params)
    except BaseException:
        limiter.release()
        raise
    future.add_done_callback(release)
    return await asyncio.wrap_future(future)


async def run_indicator(
    indicator: str,
    inputs: Sequence[Sequence[float]],
    params: Sequence[float],
    timeout: Optional[float] = None,
    engine: Engine = compute,
    executor: Optional[Executor] = None,
    limiter: Optional[asyncio.Semaphore] = None,
) -> ComputationResult:
    """
    Execute one indicator computation against the engine.

    Args:
        indicator: Engine indicator name
        inputs: Input series
        params: Engine parameters
        timeout: Deadline in seconds, including time spent waiting for a
            worker (default: atomic operation timeout)
        engine: Engine callable, ``compute`` unless overridden
        executor: Worker pool (default: a shared pool sized from settings)
        limiter: Optional cap on in-flight worker threads for one caller

    Returns:
        ComputationSuccess or ComputationFailure, never raises for engine
        errors or timeouts.
    """
    if timeout is None:
        timeout = settings.atomic_operation_timeout

    # Let pending I/O run before handing the CPU-bound call to a worker
    await asyncio.sleep(0)

    try:
        outputs = await asyncio.wait_for(
            _submit(executor or _default_executor(), limiter, engine, indicator, inputs, params),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"{indicator} computation abandoned after {timeout:.3f}s")
        return ComputationFailure(
            message=f"Operation timed out after {int(timeout * 1000)}ms",
            timed_out=True,
        )
    except Exception as e:
        logger.debug(f"{indicator} computation failed: {e}")
        return ComputationFailure(message=str(e))

    return ComputationSuccess(outputs=_copy_outputs(outputs))
