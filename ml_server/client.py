"""
Python clients for the inference server.

- InferenceClient: request/response over HTTP (httpx).
- StreamClient: one persistent WebSocket (websockets) with FIFO matching of
  inference responses to requests.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import httpx
import websockets

logger = logging.getLogger(__name__)


class InferenceClientError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    try:
        body = resp.json()
    except ValueError:
        body = {"error": None, "detail": resp.text}
    raise InferenceClientError(
        f"{resp.request.method} {resp.request.url.path} failed (status={resp.status_code}): {body.get('detail')}",
        status_code=resp.status_code,
        error=body.get("error"),
    )


class InferenceClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8080",
        *,
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(base_url=base_url, timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "InferenceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def health(self) -> str:
        resp = self._http.get("/health")
        _raise_for_error(resp)
        return resp.text

    def list_models(self) -> List[str]:
        resp = self._http.get("/api/models")
        _raise_for_error(resp)
        return resp.json()

    def infer(self, model: str, data: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._http.post(f"/api/inference/{model}", json=data)
        _raise_for_error(resp)
        return resp.json()

    def get_config(self, model: str) -> Dict[str, Any]:
        resp = self._http.get(f"/api/models/{model}/config")
        _raise_for_error(resp)
        return resp.json()

    def update_config(self, model: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._http.put(f"/api/models/{model}/config", json={"parameters": parameters})
        _raise_for_error(resp)
        return resp.json()


class StreamClient:
    """
    Async WebSocket client.

    The server answers inference requests in the order they were sent, so each
    `inference_response` resolves the oldest pending `infer()`. An `error`
    resolves the oldest pending `update_model()` when its `request_type` is
    `model_update`, and the oldest pending `infer()` otherwise.
    """

    def __init__(self, url: str = "ws://127.0.0.1:8080/ws", *, timeout_s: float = 10.0) -> None:
        self.url = url
        self.timeout_s = float(timeout_s)
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._inferences: Deque[asyncio.Future] = deque()
        self._heartbeats: Deque[asyncio.Future] = deque()
        self._updates: Deque[asyncio.Future] = deque()

    async def __aenter__(self) -> "StreamClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def connect(self) -> None:
        self._ws = await websockets.connect(self.url, open_timeout=self.timeout_s)
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_pending(InferenceClientError("stream closed"))

    async def infer(self, model: str, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"model_type": model, "data": data}
        return await self._request("inference_request", payload, self._inferences)

    async def heartbeat(self) -> Dict[str, Any]:
        return await self._request("heartbeat", {}, self._heartbeats)

    async def update_model(self, model: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"model_type": model, "parameters": parameters}
        return await self._request("model_update", payload, self._updates)

    async def _request(self, message_type: str, payload: Dict[str, Any], waiters: Deque[asyncio.Future]) -> Dict[str, Any]:
        if self._ws is None:
            raise InferenceClientError("stream is not connected")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        waiters.append(fut)
        await self._ws.send(encode_frame(message_type, payload))
        return await asyncio.wait_for(fut, timeout=self.timeout_s)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._route(raw)
        except websockets.ConnectionClosed:
            pass
        self._fail_pending(InferenceClientError("stream closed by server"))

    def _route(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping non-JSON frame: {raw!r}")
            return

        message_type = message.get("message_type")
        payload = message.get("payload")
        if message_type == "inference_response":
            _resolve(self._inferences, payload)
        elif message_type == "heartbeat":
            _resolve(self._heartbeats, payload)
        elif message_type == "model_update":
            _resolve(self._updates, payload)
        elif message_type == "error":
            payload = payload or {}
            err = InferenceClientError(str(payload.get("detail")), error=payload.get("error"))
            if payload.get("request_type") == "model_update":
                _resolve(self._updates, None, error=err)
            else:
                _resolve(self._inferences, None, error=err)
        else:
            logger.debug(f"Ignoring message type: {message_type}")

    def _fail_pending(self, err: Exception) -> None:
        for waiters in (self._inferences, self._heartbeats, self._updates):
            while waiters:
                fut = waiters.popleft()
                if not fut.done():
                    fut.set_exception(err)


def encode_frame(message_type: str, payload: Any) -> str:
    return json.dumps({"message_type": message_type, "payload": payload}, separators=(",", ":"))


def _resolve(waiters: Deque[asyncio.Future], payload: Any, *, error: Optional[Exception] = None) -> None:
    if not waiters:
        logger.warning("Received a reply with no pending request")
        return
    # A future abandoned by a caller timeout still owns its slot in the order.
    fut = waiters.popleft()
    if fut.done():
        return
    if error is not None:
        fut.set_exception(error)
    else:
        fut.set_result(payload)
