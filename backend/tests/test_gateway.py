"""
Tests for the Computation Gateway: success, isolated engine errors and the
per-call deadline.
"""

import asyncio

import numpy as np

from conftest import slow_engine

from indicator_server.services.indicators.gateway import (
    ComputationFailure,
    ComputationSuccess,
    create_engine_executor,
    run_indicator,
)


class TestRunIndicator:
    def test_success_returns_plain_lists(self, prices):
        result = asyncio.run(run_indicator("sma", [prices], [10], timeout=1.0))

        assert isinstance(result, ComputationSuccess)
        assert result.ok
        assert isinstance(result.outputs[0], list)
        assert all(isinstance(v, float) for v in result.outputs[0])
        assert len(result.outputs[0]) == len(prices) - 9

    def test_engine_error_is_captured(self, prices):
        result = asyncio.run(run_indicator("sma", [prices[:3]], [10], timeout=1.0))

        assert isinstance(result, ComputationFailure)
        assert not result.ok
        assert not result.timed_out
        assert "Insufficient data" in result.message

    def test_timeout(self, prices):
        engine = slow_engine({"rsi": 0.3})
        result = asyncio.run(run_indicator("rsi", [prices], [14], timeout=0.05, engine=engine))

        assert isinstance(result, ComputationFailure)
        assert result.timed_out
        assert result.message == "Operation timed out after 50ms"

    def test_outputs_detached_from_engine_arrays(self, prices):
        held = {}

        def engine(indicator, inputs, params):
            held["array"] = np.array(inputs[0][:5], dtype=float)
            return [held["array"]]

        result = asyncio.run(run_indicator("sma", [prices], [1], timeout=1.0, engine=engine))
        held["array"][0] = -1.0

        assert result.outputs[0][0] == prices[0]

    def test_concurrent_calls_are_independent(self, prices):
        engine = slow_engine({"ema": 0.3})

        async def run_both():
            return await asyncio.gather(
                run_indicator("ema", [prices], [10], timeout=0.05, engine=engine),
                run_indicator("sma", [prices], [10], timeout=1.0, engine=engine),
            )

        slow, fast = asyncio.run(run_both())
        assert slow.timed_out
        assert fast.ok


class TestWorkerLimit:
    def test_limiter_slot_held_until_abandoned_call_finishes(self, prices):
        engine = slow_engine({"rsi": 0.3})
        executor = create_engine_executor(2)

        async def scenario():
            limiter = asyncio.Semaphore(1)
            result = await run_indicator(
                "rsi", [prices], [14], timeout=0.05, engine=engine, executor=executor, limiter=limiter
            )
            held_after_timeout = limiter.locked()
            await asyncio.sleep(0.4)
            return result, held_after_timeout, limiter.locked()

        result, held_after_timeout, held_later = asyncio.run(scenario())
        executor.shutdown(wait=True)

        assert result.timed_out
        assert held_after_timeout
        assert not held_later

    def test_waiting_for_a_slot_counts_against_the_deadline(self, prices):
        engine = slow_engine({"rsi": 0.3})
        executor = create_engine_executor(2)

        async def scenario():
            limiter = asyncio.Semaphore(1)
            return await asyncio.gather(
                run_indicator("rsi", [prices], [14], timeout=1.0, engine=engine, executor=executor, limiter=limiter),
                run_indicator("sma", [prices], [10], timeout=0.1, engine=engine, executor=executor, limiter=limiter),
            )

        slow, queued = asyncio.run(scenario())
        executor.shutdown(wait=True)

        assert slow.ok
        assert queued.timed_out

    def test_dedicated_pool_runs_calls(self, prices):
        executor = create_engine_executor(1)
        result = asyncio.run(run_indicator("sma", [prices], [10], timeout=1.0, executor=executor))
        executor.shutdown(wait=True)

        assert result.ok
