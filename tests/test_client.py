from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ml_server.client import InferenceClient, InferenceClientError, StreamClient, encode_frame


def _transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, text="ML Server is running")
        if request.url.path == "/api/models":
            return httpx.Response(200, json=["trajectory_prediction"])
        if request.url.path == "/api/inference/trajectory":
            data = json.loads(request.content)
            return httpx.Response(
                200,
                json={"model_type": "trajectory_prediction", "prediction": data, "latency_ms": 0.1, "timestamp": "t"},
            )
        if request.url.path == "/api/models/anomaly/config" and request.method == "PUT":
            return httpx.Response(403, json={"error": "forbidden", "detail": "model updates are disabled"})
        if request.url.path == "/api/inference/weather":
            return httpx.Response(400, json={"error": "unknown_model", "detail": "Unknown model: weather"})
        return httpx.Response(502, text="bad gateway")

    return httpx.MockTransport(handler)


def test_inference_client_happy_path() -> None:
    with InferenceClient("http://ml.test", transport=_transport()) as c:
        assert c.health() == "ML Server is running"
        assert c.list_models() == ["trajectory_prediction"]
        out = c.infer("trajectory", {"history": [], "prediction_horizon": 1})
    assert out["model_type"] == "trajectory_prediction"
    assert out["prediction"] == {"history": [], "prediction_horizon": 1}


@pytest.mark.parametrize(
    "call,status,error",
    [
        (lambda c: c.infer("weather", {}), 400, "unknown_model"),
        (lambda c: c.update_config("anomaly", {"threshold": 0.1}), 403, "forbidden"),
        (lambda c: c.get_config("anomaly"), 502, None),
    ],
)
def test_inference_client_maps_errors(call, status, error) -> None:
    with InferenceClient("http://ml.test", transport=_transport()) as c:
        with pytest.raises(InferenceClientError) as ei:
            call(c)
    assert ei.value.status_code == status
    assert ei.value.error == error


def test_encode_frame() -> None:
    assert json.loads(encode_frame("heartbeat", {})) == {"message_type": "heartbeat", "payload": {}}


@pytest.mark.asyncio
async def test_stream_client_routes_replies_in_order() -> None:
    client = StreamClient()
    loop = asyncio.get_running_loop()
    first, second, beat, update = (loop.create_future() for _ in range(4))
    client._inferences.extend([first, second])
    client._heartbeats.append(beat)
    client._updates.append(update)

    client._route(json.dumps({"message_type": "heartbeat", "payload": {"timestamp": "t"}}))
    client._route(json.dumps({"message_type": "inference_response", "payload": {"n": 1}}))
    client._route(json.dumps({"message_type": "error", "payload": {"error": "invalid_input", "detail": "bad"}}))
    client._route(json.dumps({"message_type": "model_update", "payload": {"revision": 1}}))

    assert beat.result() == {"timestamp": "t"}
    assert first.result() == {"n": 1}
    with pytest.raises(InferenceClientError) as ei:
        second.result()
    assert ei.value.error == "invalid_input"
    assert update.result() == {"revision": 1}


@pytest.mark.asyncio
async def test_stream_client_timed_out_request_keeps_its_slot() -> None:
    client = StreamClient()
    loop = asyncio.get_running_loop()
    abandoned, live = loop.create_future(), loop.create_future()
    abandoned.cancel()
    client._inferences.extend([abandoned, live])

    client._route(json.dumps({"message_type": "inference_response", "payload": {"n": 1}}))
    assert not live.done()
    client._route(json.dumps({"message_type": "inference_response", "payload": {"n": 2}}))
    assert live.result() == {"n": 2}


@pytest.mark.asyncio
async def test_stream_client_fails_pending_on_close() -> None:
    client = StreamClient()
    fut = asyncio.get_running_loop().create_future()
    client._updates.append(fut)

    await client.close()

    with pytest.raises(InferenceClientError):
        fut.result()
    with pytest.raises(InferenceClientError):
        await client.heartbeat()


class _RecordingSocket:
    def __init__(self) -> None:
        self.sent: list = []

    async def send(self, text: str) -> None:
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_stream_client_routes_update_error_to_the_update() -> None:
    client = StreamClient(timeout_s=1.0)
    client._ws = _RecordingSocket()

    inference = asyncio.ensure_future(client.infer("trajectory", {"history": [], "prediction_horizon": 1}))
    update = asyncio.ensure_future(client.update_model("anomaly", {"threshold": -1}))
    while len(client._ws.sent) < 2:
        await asyncio.sleep(0)

    client._route(
        json.dumps(
            {
                "message_type": "error",
                "payload": {"error": "invalid_input", "detail": "threshold", "request_type": "model_update"},
            }
        )
    )
    client._route(json.dumps({"message_type": "inference_response", "payload": {"n": 1}}))

    assert await inference == {"n": 1}
    with pytest.raises(InferenceClientError) as ei:
        await update
    assert ei.value.error == "invalid_input"
    client._ws = None
