from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ml_server.app import create_app
from ml_server.executors import build_default_executors
from ml_server.executors.trajectory import TrajectoryPredictor
from ml_server.registry import ExecutorRegistry
from ml_server.routes.stream import StreamSession
from ml_server.state import SessionState

ANOMALY_DATA = {"sensor_readings": [{"sensor_type": "temp", "values": [1.0, 2.0, 9.0], "timestamp": 4}]}


class _InverseDelayTrajectory(TrajectoryPredictor):
    """Smaller horizons take longer, so completion order is the reverse of arrival."""

    total = 6

    def compute(self, data):
        time.sleep((self.total - data.prediction_horizon) * 0.02)
        return super().compute(data)


class _SlowTrajectory(TrajectoryPredictor):
    def compute(self, data):
        time.sleep(0.3)
        return super().compute(data)


def _registry_with_trajectory(settings, trajectory: TrajectoryPredictor) -> ExecutorRegistry:
    executors = [e for e in build_default_executors(settings) if not isinstance(e, TrajectoryPredictor)]
    return ExecutorRegistry(executors + [trajectory])


def _frame(message_type: str, payload: Any = None) -> str:
    return json.dumps({"message_type": message_type, "payload": payload})


def _inference(model: str, data: Any) -> str:
    return _frame("inference_request", {"model_type": model, "data": data})


def _trajectory_data(horizon: int) -> dict:
    return {"history": [{"x": 0, "y": 0, "t": 0}, {"x": 1, "y": 1, "t": 1}], "prediction_horizon": horizon}


def test_heartbeat_is_echoed(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_frame("heartbeat", {"timestamp": "2024-01-01T00:00:00Z"}))
        msg = ws.receive_json()

    assert msg["message_type"] == "heartbeat"
    assert "timestamp" in msg["payload"]


def test_inference_request_gets_response(client, trajectory_example) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_inference("trajectory", trajectory_example))
        msg = ws.receive_json()

    assert msg["message_type"] == "inference_response"
    payload = msg["payload"]
    assert payload["model_type"] == "trajectory_prediction"
    assert [p["x"] for p in payload["prediction"]["predictions"]] == [2.0, 3.0]
    assert payload["latency_ms"] >= 0.0


def test_responses_follow_request_order_despite_compute_variance(settings) -> None:
    n = _InverseDelayTrajectory.total
    registry = _registry_with_trajectory(settings, _InverseDelayTrajectory())

    with TestClient(create_app(settings, registry)) as c:
        with c.websocket_connect("/ws") as ws:
            for horizon in range(1, n + 1):
                ws.send_text(_inference("trajectory", _trajectory_data(horizon)))
            replies = [ws.receive_json() for _ in range(n)]

    assert [m["message_type"] for m in replies] == ["inference_response"] * n
    assert [len(m["payload"]["prediction"]["predictions"]) for m in replies] == list(range(1, n + 1))


def test_errors_hold_their_place_in_the_sequence(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_inference("trajectory", _trajectory_data(1)))
        ws.send_text(_inference("weather", {}))
        ws.send_text(_inference("anomaly", ANOMALY_DATA))
        replies = [ws.receive_json() for _ in range(3)]

    assert [m["message_type"] for m in replies] == ["inference_response", "error", "inference_response"]
    assert replies[1]["payload"]["error"] == "unknown_model"
    assert replies[1]["payload"]["request_type"] == "inference_request"
    assert replies[2]["payload"]["model_type"] == "anomaly_detection"


def test_invalid_frames_keep_connection_open(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("this is not json")
        first = ws.receive_json()
        ws.send_text(_frame("not_a_message_type"))
        second = ws.receive_json()
        ws.send_text(_frame("inference_request", {"data": {}}))
        third = ws.receive_json()
        ws.send_text(_frame("heartbeat"))
        fourth = ws.receive_json()

    assert first["message_type"] == "error"
    assert first["payload"]["error"] == "invalid_message"
    assert first["payload"]["request_type"] is None
    assert second["payload"]["error"] == "invalid_message"
    assert third["payload"]["error"] == "invalid_input"
    assert "model_type" in third["payload"]["detail"]
    assert fourth["message_type"] == "heartbeat"


def test_schema_mismatch_reports_invalid_input(client, trajectory_example) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_inference("fusion", trajectory_example))
        msg = ws.receive_json()

    assert msg["message_type"] == "error"
    assert msg["payload"]["error"] == "invalid_input"
    assert msg["payload"]["model_type"] == "sensor_fusion"


def test_binary_frames_carry_json(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(_inference("objects", {"frame_id": "cam-0", "simulate_complex": True}).encode("utf-8"))
        msg = ws.receive_json()

    assert msg["message_type"] == "inference_response"
    assert msg["payload"]["prediction"]["frame_id"] == "cam-0"
    assert 5 <= len(msg["payload"]["prediction"]["objects"]) <= 14


def test_model_update_is_acknowledged_and_applied(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_frame("model_update", {"model_type": "anomaly", "parameters": {"threshold": 0.01}}))
        ack = ws.receive_json()
        ws.send_text(_inference("anomaly", ANOMALY_DATA))
        reply = ws.receive_json()

    assert ack["message_type"] == "model_update"
    assert ack["payload"] == {
        "model_type": "anomaly_detection",
        "revision": 1,
        "parameters": {"threshold": 0.01, "score_jitter": 0.0},
    }
    assert reply["payload"]["prediction"]["threshold"] == 0.01
    assert reply["payload"]["prediction"]["is_anomaly"] is True


def test_model_update_errors(make_settings) -> None:
    with TestClient(create_app(make_settings(admin_updates_enabled=False))) as c:
        with c.websocket_connect("/ws") as ws:
            ws.send_text(_frame("model_update", {"model_type": "anomaly", "parameters": {"threshold": 0.01}}))
            forbidden = ws.receive_json()
            ws.send_text(_frame("model_update", {"parameters": {}}))
            malformed = ws.receive_json()

    assert forbidden["message_type"] == "error"
    assert forbidden["payload"]["error"] == "forbidden"
    assert forbidden["payload"]["request_type"] == "model_update"
    assert malformed["payload"]["error"] == "invalid_input"


def test_unsolicited_response_types_get_no_reply(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_frame("inference_response", {"model_type": "trajectory_prediction"}))
        ws.send_text(_frame("error", {"error": "x", "detail": "y"}))
        ws.send_text(_frame("heartbeat"))
        msg = ws.receive_json()

    assert msg["message_type"] == "heartbeat"


def test_over_the_in_flight_bound_is_answered_overloaded_in_place(make_settings) -> None:
    settings = make_settings(stream_max_in_flight=1)
    with TestClient(create_app(settings, _registry_with_trajectory(settings, _SlowTrajectory()))) as c:
        with c.websocket_connect("/ws") as ws:
            for horizon in (1, 2, 3):
                ws.send_text(_inference("trajectory", _trajectory_data(horizon)))
            ws.send_text(_frame("heartbeat"))
            replies = [ws.receive_json() for _ in range(4)]

            ws.send_text(_inference("trajectory", _trajectory_data(4)))
            after = ws.receive_json()

    assert [m["message_type"] for m in replies] == ["heartbeat", "inference_response", "error", "error"]
    assert len(replies[1]["payload"]["prediction"]["predictions"]) == 1
    for reply in replies[2:]:
        assert reply["payload"]["error"] == "overloaded"
        assert reply["payload"]["request_type"] == "inference_request"
    assert after["message_type"] == "inference_response"
    assert len(after["payload"]["prediction"]["predictions"]) == 4


def test_model_update_error_is_tagged_and_not_queued_behind_inference(settings) -> None:
    with TestClient(create_app(settings, _registry_with_trajectory(settings, _SlowTrajectory()))) as c:
        with c.websocket_connect("/ws") as ws:
            ws.send_text(_inference("trajectory", _trajectory_data(2)))
            ws.send_text(_frame("model_update", {"model_type": "anomaly", "parameters": {"threshold": -1}}))
            first = ws.receive_json()
            second = ws.receive_json()

    assert first["message_type"] == "error"
    assert first["payload"]["error"] == "invalid_input"
    assert first["payload"]["request_type"] == "model_update"
    assert second["message_type"] == "inference_response"
    assert second["payload"]["model_type"] == "trajectory_prediction"


class _ScriptedSocket:
    """Minimal WebSocket stand-in: replays frames, then disconnects."""

    def __init__(self, frames) -> None:
        self._frames = list(frames)
        self.sent: list = []

    async def accept(self) -> None:
        return None

    async def receive(self) -> dict:
        await asyncio.sleep(0)
        if self._frames:
            return {"type": "websocket.receive", "text": self._frames.pop(0)}
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_disconnect_waits_for_cancelled_tasks(settings) -> None:
    socket = _ScriptedSocket(
        [
            _inference("anomaly", ANOMALY_DATA),
            _frame("model_update", {"model_type": "anomaly", "parameters": {"threshold": 0.5}}),
            _frame("heartbeat"),
        ]
    )
    state = SessionState(settings)
    session = StreamSession(socket, state)

    await session.run()

    assert session._writer is not None and session._writer.done()
    assert all(task.done() for task in session._side_tasks)
    assert session._pending.empty()
    assert state.active_connections() == 0
    assert any(m["message_type"] == "heartbeat" for m in socket.sent)



def test_open_streams_are_counted(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(_frame("heartbeat"))
        ws.receive_json()
        assert client.get("/ops/status").json()["active_connections"] == 1
