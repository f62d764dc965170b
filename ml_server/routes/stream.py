"""
Streaming inference over a WebSocket.

One connection multiplexes inference requests, heartbeats and model updates:

- inference_request: dispatched concurrently in the threadpool, answered in
  read order through a per-connection FIFO drained by a single writer task.
  At most STREAM_MAX_IN_FLIGHT requests compute at once; a request over the
  bound is answered, in its place in the FIFO, with an `overloaded` error.
  The reader never waits on inference traffic.
- heartbeat: answered immediately, outside the FIFO lane.
- model_update: applied in its own task and acknowledged when done.
- anything else: accepted, no reply.

Every `error` names the `request_type` it answers (`inference_request` or
`model_update`; unset for frames that could not be decoded).

Ping/pong and close frames never reach this module; the ASGI server and
Starlette handle them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Set

from fastapi import APIRouter, WebSocket
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketDisconnect

from ml_server.common.logging import log_event
from ml_server.common.metrics import stream_messages_received_total
from ml_server.errors import DispatchError, InvalidInputError
from ml_server.routes import get_session
from ml_server.schemas import (
    ErrorPayload,
    Heartbeat,
    InferenceRequest,
    MessageType,
    ModelUpdate,
    StreamMessage,
    decode_stream_message,
    encode_message,
    format_validation_error,
    make_message,
)
from ml_server.state import SessionState

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_message(
    error: str,
    detail: str,
    model_type: Optional[str] = None,
    *,
    request_type: Optional[MessageType] = None,
) -> StreamMessage:
    payload = ErrorPayload(error=error, detail=detail, model_type=model_type, request_type=request_type)
    return make_message(MessageType.ERROR, payload)


def _dispatch_error_message(err: DispatchError, request_type: MessageType) -> StreamMessage:
    return _error_message(err.code, err.detail, err.model_type, request_type=request_type)


class StreamSession:
    def __init__(self, websocket: WebSocket, session: SessionState) -> None:
        self.websocket = websocket
        self.session = session
        self.conn_id = ""
        self._send_lock = asyncio.Lock()
        self._pending: "asyncio.Queue[asyncio.Future[StreamMessage]]" = asyncio.Queue()
        self._max_in_flight = max(1, session.settings.stream_max_in_flight)
        self._in_flight = 0
        self._side_tasks: Set[asyncio.Task] = set()
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    async def run(self) -> None:
        await self.websocket.accept()
        self.conn_id = self.session.open_connection()
        log_event(logger, "stream.connected", connection_id=self.conn_id)

        self._writer = asyncio.create_task(self._drain_responses())
        try:
            while not self._closed:
                frame = await self.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    raw = frame.get("bytes")
                if raw is None:
                    continue
                await self._handle_frame(raw)
        except WebSocketDisconnect:
            pass
        finally:
            self._closed = True
            await self._cancel_outstanding()
            self.session.close_connection(self.conn_id)
            log_event(logger, "stream.disconnected", connection_id=self.conn_id)

    async def _cancel_outstanding(self) -> None:
        # Threadpool compute already started runs to completion; its result is dropped.
        outstanding: List[asyncio.Future] = []
        if self._writer is not None:
            outstanding.append(self._writer)
        while not self._pending.empty():
            outstanding.append(self._pending.get_nowait())
        outstanding.extend(self._side_tasks)
        for fut in outstanding:
            fut.cancel()

        results = await asyncio.gather(*outstanding, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log_event(
                    logger,
                    "stream.task_failed",
                    severity="WARNING",
                    connection_id=self.conn_id,
                    detail=f"{type(result).__name__}: {result}",
                )

    async def _handle_frame(self, raw: Any) -> None:
        try:
            message = decode_stream_message(raw)
        except ValidationError as e:
            stream_messages_received_total.inc(labels={"message_type": "invalid"})
            log_event(
                logger,
                "stream.invalid_message",
                severity="WARNING",
                connection_id=self.conn_id,
                detail=format_validation_error(e),
            )
            self._enqueue_ready(_error_message("invalid_message", format_validation_error(e)))
            return

        stream_messages_received_total.inc(labels={"message_type": message.message_type.value})

        if message.message_type is MessageType.INFERENCE_REQUEST:
            if self._in_flight >= self._max_in_flight:
                log_event(
                    logger,
                    "stream.overloaded",
                    severity="WARNING",
                    connection_id=self.conn_id,
                    in_flight=self._in_flight,
                )
                self._enqueue_ready(
                    _error_message(
                        "overloaded",
                        f"more than {self._max_in_flight} inference requests in flight",
                        request_type=MessageType.INFERENCE_REQUEST,
                    )
                )
                return
            self._in_flight += 1
            self._pending.put_nowait(asyncio.ensure_future(self._infer(message.payload)))
        elif message.message_type is MessageType.HEARTBEAT:
            await self._send(make_message(MessageType.HEARTBEAT, Heartbeat()))
        elif message.message_type is MessageType.MODEL_UPDATE:
            task = asyncio.create_task(self._apply_update(message.payload))
            self._side_tasks.add(task)
            task.add_done_callback(self._side_tasks.discard)
        else:
            logger.debug(f"Received unhandled message type: {message.message_type.value}")

    def _enqueue_ready(self, message: StreamMessage) -> None:
        fut: asyncio.Future[StreamMessage] = asyncio.get_running_loop().create_future()
        fut.set_result(message)
        self._pending.put_nowait(fut)

    async def _infer(self, payload: Any) -> StreamMessage:
        try:
            try:
                request = InferenceRequest.model_validate(payload)
            except ValidationError as e:
                err = InvalidInputError(format_validation_error(e))
                return _dispatch_error_message(err, MessageType.INFERENCE_REQUEST)

            try:
                result = await run_in_threadpool(
                    self.session.dispatcher.dispatch, request.model_type, request.data, transport="websocket"
                )
            except DispatchError as e:
                return _dispatch_error_message(e, MessageType.INFERENCE_REQUEST)
            return make_message(MessageType.INFERENCE_RESPONSE, result)
        finally:
            self._in_flight -= 1

    async def _apply_update(self, payload: Any) -> None:
        try:
            update = ModelUpdate.model_validate(payload)
        except ValidationError as e:
            err = InvalidInputError(format_validation_error(e))
            await self._send(_dispatch_error_message(err, MessageType.MODEL_UPDATE))
            return

        try:
            config = await run_in_threadpool(
                self.session.dispatcher.reconfigure, update.model_type, update.parameters
            )
        except DispatchError as e:
            await self._send(_dispatch_error_message(e, MessageType.MODEL_UPDATE))
            return
        await self._send(make_message(MessageType.MODEL_UPDATE, config))

    async def _drain_responses(self) -> None:
        while True:
            fut = await self._pending.get()
            try:
                message = await fut
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_event(
                    logger,
                    "stream.internal_error",
                    severity="ERROR",
                    exc_info=True,
                    connection_id=self.conn_id,
                )
                message = _error_message(
                    "internal", f"{type(e).__name__}: {e}", request_type=MessageType.INFERENCE_REQUEST
                )
            await self._send(message)

    async def _send(self, message: StreamMessage) -> None:
        if self._closed:
            return
        async with self._send_lock:
            try:
                await self.websocket.send_text(encode_message(message))
            except (WebSocketDisconnect, RuntimeError):
                self._closed = True


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await StreamSession(websocket, get_session(websocket)).run()
