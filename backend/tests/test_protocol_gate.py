"""
Tests for the Protocol Gate and Session Transport.

Tests cover:
  - the initialize handshake and follow-up calls on the same session
  - fixed admission errors (missing, unknown, duplicate initialize)
  - notifications, batches, unknown methods and unknown tools
  - explicit close, auto-recreate and internal fault isolation
  - per-session serialization without cross-session blocking
"""

import asyncio
import time

from conftest import (
    FakeClock,
    initialize_message,
    make_gate,
    random_walk,
    slow_engine,
    tool_call,
)

from indicator_server.services.indicators.calculations import compute
from indicator_server.services.mcp.results import parse_result


def initialize(gate):
    response = asyncio.run(gate.handle_post(None, initialize_message()))
    assert response.status_code == 200
    return response.session_id


# ═══════════════════════════════════════════════════════════════════════════
# Handshake and dispatch
# ═══════════════════════════════════════════════════════════════════════════


class TestHandshake:
    def test_initialize_creates_session(self, settings):
        gate, registry = make_gate(settings)
        response = asyncio.run(gate.handle_post(None, initialize_message(), {"clientIp": "10.0.0.1"}))

        assert response.status_code == 200
        assert response.session_id
        assert registry.has_session(response.session_id)
        assert registry.get_session(response.session_id).metadata == {"clientIp": "10.0.0.1"}

        result = response.payload["result"]
        assert response.payload["id"] == 1
        assert result["protocolVersion"] == "2025-06-18"
        assert result["serverInfo"]["name"] == settings.app_name
        assert "tools" in result["capabilities"]

    def test_tool_call_after_initialize(self, settings, prices):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(
            gate.handle_post(session_id, tool_call("calculate_rsi", {"prices": prices, "period": 14}))
        )

        assert response.status_code == 200
        assert response.session_id == session_id
        result = response.payload["result"]
        assert "isError" not in result
        assert parse_result(result)["indicator"] == "RSI"

    def test_tools_list(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(gate.handle_post(session_id, {"jsonrpc": "2.0", "id": 5, "method": "tools/list"}))

        names = [tool["name"] for tool in response.payload["result"]["tools"]]
        assert "calculate_all_indicators" in names
        assert len(names) == 9

    def test_each_initialize_gets_new_session(self, settings):
        gate, registry = make_gate(settings)
        first = initialize(gate)
        second = initialize(gate)
        assert first != second
        assert len(registry) == 2

    def test_unsupported_protocol_version_falls_back(self, settings):
        gate, _ = make_gate(settings)
        message = initialize_message()
        message["params"]["protocolVersion"] = "1999-01-01"
        response = asyncio.run(gate.handle_post(None, message))
        assert response.payload["result"]["protocolVersion"] == "2025-06-18"


# ═══════════════════════════════════════════════════════════════════════════
# Admission errors
# ═══════════════════════════════════════════════════════════════════════════


class TestAdmission:
    def test_unknown_session(self, settings):
        gate, _ = make_gate(settings)
        response = asyncio.run(gate.handle_post("not-a-real-session", tool_call("get_server_info")))

        assert response.status_code == 404
        assert response.payload["error"]["code"] == -32004
        assert response.payload["id"] == 2
        assert response.session_id is None

    def test_missing_session(self, settings):
        gate, _ = make_gate(settings)
        response = asyncio.run(gate.handle_post(None, tool_call("get_server_info")))

        assert response.status_code == 400
        assert response.payload["error"]["code"] == -32602
        assert response.payload["error"]["message"] == "Session ID required (call initialize first)"

    def test_initialize_with_live_session(self, settings):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(gate.handle_post(session_id, initialize_message()))

        assert response.status_code == 400
        assert response.payload["error"]["code"] == -32602
        assert len(registry) == 1

    def test_initialize_with_stale_id_creates_session(self, settings):
        gate, registry = make_gate(settings)
        response = asyncio.run(gate.handle_post("stale-id", initialize_message()))

        assert response.status_code == 200
        assert response.session_id != "stale-id"
        assert registry.has_session(response.session_id)

    def test_invalid_body(self, settings):
        gate, _ = make_gate(settings)
        for body in ("hello", 42, [], None):
            response = asyncio.run(gate.handle_post(None, body))
            assert response.status_code == 400
            assert response.payload["error"]["code"] == -32600

    def test_evicted_session_is_not_found(self, settings):
        clock = FakeClock()
        gate, registry = make_gate(settings, clock=clock)
        session_id = initialize(gate)

        clock.advance(settings.session_timeout + 1)
        registry.sweep()

        response = asyncio.run(gate.handle_post(session_id, tool_call("get_server_info")))
        assert response.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Message handling
# ═══════════════════════════════════════════════════════════════════════════


class TestMessages:
    def test_notification_accepted(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(
            gate.handle_post(session_id, {"jsonrpc": "2.0", "method": "notifications/initialized"})
        )

        assert response.status_code == 202
        assert response.payload is None
        assert response.session_id == session_id

    def test_unknown_method(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(gate.handle_post(session_id, {"jsonrpc": "2.0", "id": 9, "method": "resources/list"}))

        assert response.status_code == 200
        assert response.payload["error"]["code"] == -32601
        assert response.payload["id"] == 9

    def test_ping(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)
        response = asyncio.run(gate.handle_post(session_id, {"jsonrpc": "2.0", "id": 3, "method": "ping"}))
        assert response.payload == {"jsonrpc": "2.0", "result": {}, "id": 3}

    def test_batch_of_messages(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        body = [
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 10, "method": "ping"},
            tool_call("get_server_info", request_id=11),
        ]
        response = asyncio.run(gate.handle_post(session_id, body))

        assert response.status_code == 200
        assert [message["id"] for message in response.payload] == [10, 11]

    def test_unknown_tool_keeps_session_usable(self, settings):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(gate.handle_post(session_id, tool_call("calculate_vwap")))
        result = response.payload["result"]
        assert result["isError"] is True
        assert parse_result(result)["error"] == "Unknown tool: calculate_vwap"

        follow_up = asyncio.run(gate.handle_post(session_id, tool_call("get_server_info")))
        assert "isError" not in follow_up.payload["result"]
        assert registry.has_session(session_id)

    def test_batch_validation_error(self, settings):
        gate, _ = make_gate(settings)
        session_id = initialize(gate)

        arguments = {
            "ohlcv": {"high": [1.0, 2.0, 3.0], "low": [1.0, 2.0], "close": [1.0, 2.0, 3.0]},
            "indicators": {"rsi": {"enabled": True}},
        }
        response = asyncio.run(gate.handle_post(session_id, tool_call("calculate_all_indicators", arguments)))

        result = response.payload["result"]
        assert result["isError"] is True
        payload = parse_result(result)
        assert payload["category"] == "validation"
        assert "indicators" not in payload

    def test_second_initialize_on_transport_rejected(self, settings):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)

        response = asyncio.run(gate.handle_post(session_id, [initialize_message(7)]))

        assert response.status_code == 200
        assert response.payload[0]["error"]["code"] == -32600
        assert len(registry) == 1

    def test_malformed_client_info_leaves_no_session(self, settings):
        gate, registry = make_gate(settings)
        message = initialize_message()
        message["params"]["clientInfo"] = "not-an-object"

        response = asyncio.run(gate.handle_post(None, message))

        assert response.status_code == 200
        assert response.payload["error"]["code"] == -32602
        assert response.session_id is None
        assert len(registry) == 0


# ═══════════════════════════════════════════════════════════════════════════
# Close, auto-recreate, faults
# ═══════════════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_delete_closes_session(self, settings):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)
        transport = registry.get_transport(session_id)

        response = asyncio.run(gate.handle_delete(session_id))

        assert response.status_code == 200
        assert response.payload["status"] == "closed"
        assert not registry.has_session(session_id)
        assert transport.closed

        after = asyncio.run(gate.handle_post(session_id, tool_call("get_server_info")))
        assert after.status_code == 404

    def test_delete_errors(self, settings):
        gate, _ = make_gate(settings)
        assert asyncio.run(gate.handle_delete(None)).status_code == 400
        assert asyncio.run(gate.handle_delete("not-a-real-session")).status_code == 404

    def test_transport_close_removes_session(self, settings):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)

        registry.get_transport(session_id).close()

        assert not registry.has_session(session_id)

    def test_auto_recreate(self, settings):
        gate, registry = make_gate(settings, allow_auto_recreate=True)

        response = asyncio.run(gate.handle_post("stale-session", tool_call("get_server_info")))

        assert response.status_code == 200
        assert response.session_id != "stale-session"
        assert registry.has_session(response.session_id)
        assert "isError" not in response.payload["result"]

    def test_internal_fault(self, settings, monkeypatch):
        gate, registry = make_gate(settings)
        session_id = initialize(gate)

        def explode(*args, **kwargs):
            raise RuntimeError("registry corrupted")

        monkeypatch.setattr(registry, "validate", explode)
        response = asyncio.run(gate.handle_post(session_id, tool_call("get_server_info", request_id=4)))

        assert response.status_code == 500
        assert response.payload["error"]["code"] == -32603
        assert response.payload["id"] == 4


# ═══════════════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════════════


class TestConcurrency:
    def test_slow_batch_does_not_block_other_session(self, settings):
        gate, _ = make_gate(settings, engine=slow_engine({"stoch": 0.5}))
        data = random_walk(n=80, seed=3)
        finished = []

        async def scenario():
            slow_id = (await gate.handle_post(None, initialize_message())).session_id
            fast_id = (await gate.handle_post(None, initialize_message())).session_id

            async def slow():
                arguments = {"ohlcv": data, "indicators": {"stochastic": {"enabled": True}}}
                response = await gate.handle_post(slow_id, tool_call("calculate_all_indicators", arguments))
                finished.append("slow")
                return response

            async def fast():
                await asyncio.sleep(0.05)
                response = await gate.handle_post(fast_id, tool_call("calculate_sma", {"prices": data["close"]}))
                finished.append("fast")
                return response

            return await asyncio.gather(slow(), fast())

        slow_response, fast_response = asyncio.run(scenario())

        assert finished == ["fast", "slow"]
        assert "isError" not in slow_response.payload["result"]
        assert "isError" not in fast_response.payload["result"]

    def test_requests_within_session_are_serialized(self, settings):
        gate, _ = make_gate(settings, engine=slow_engine({"ema": 0.2}))
        prices = random_walk(n=40, seed=5)["close"]
        order = []

        async def scenario():
            session_id = (await gate.handle_post(None, initialize_message())).session_id

            async def request(name, request_id):
                await gate.handle_post(session_id, tool_call(name, {"prices": prices}, request_id))
                order.append((request_id, time.monotonic()))

            await asyncio.gather(request("calculate_ema", 1), request("calculate_sma", 2))

        asyncio.run(scenario())

        assert [request_id for request_id, _ in order] == [1, 2]

    def test_wide_batch_leaves_workers_for_other_sessions(self, settings):
        # More batch items than engine workers, each holding its worker for 1s
        settings = settings.model_copy(
            update={
                "engine_max_workers": 4,
                "batch_max_concurrency": 2,
                "atomic_operation_timeout_ms": 200,
                "operation_timeout_ms": 1_000,
                "batch_timeout_ms": 1_500,
                "tool_execution_timeout_ms": 5_000,
            }
        )

        def engine(indicator, inputs, params):
            if len(inputs[0]) >= 200:
                time.sleep(1.0)
            return compute(indicator, inputs, params)

        gate, _ = make_gate(settings, engine=engine)
        wide = random_walk(n=200, seed=11)
        short = random_walk(n=40, seed=12)["close"]
        finished = []

        async def scenario():
            slow_id = (await gate.handle_post(None, initialize_message())).session_id
            fast_id = (await gate.handle_post(None, initialize_message())).session_id

            async def slow():
                configs = [{"enabled": True, "period": period} for period in range(5, 17)]
                arguments = {"ohlcv": wide, "indicators": {"sma": configs}}
                await gate.handle_post(slow_id, tool_call("calculate_all_indicators", arguments))
                finished.append("slow")

            async def fast():
                await asyncio.sleep(0.05)
                started = time.monotonic()
                response = await gate.handle_post(fast_id, tool_call("calculate_sma", {"prices": short}))
                finished.append("fast")
                return response, time.monotonic() - started

            _, (fast_response, elapsed) = await asyncio.gather(slow(), fast())
            return fast_response, elapsed

        fast_response, elapsed = asyncio.run(scenario())

        assert "isError" not in fast_response.payload["result"]
        assert parse_result(fast_response.payload["result"])["indicator"] == "SMA"
        assert finished[0] == "fast"
        assert elapsed < 0.5
