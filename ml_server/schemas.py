from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ml_server.errors import UnknownModelError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelKind(str, Enum):
    """
    Closed set of compute backends.

    Serialized as the snake_case tag (never the ordinal) since it crosses the wire.
    """

    TRAJECTORY_PREDICTION = "trajectory_prediction"
    ANOMALY_DETECTION = "anomaly_detection"
    OBJECT_DETECTION = "object_detection"
    SENSOR_FUSION = "sensor_fusion"

    @classmethod
    def from_tag(cls, tag: Union[str, "ModelKind"]) -> "ModelKind":
        """
        Resolve a canonical tag or a short route alias (case-sensitive).
        """
        if isinstance(tag, ModelKind):
            return tag
        if isinstance(tag, str):
            kind = _ALIASES.get(tag)
            if kind is not None:
                return kind
            try:
                return cls(tag)
            except ValueError:
                pass
        raise UnknownModelError(f"Unknown model: {tag}", model_type=str(tag))

    @property
    def alias(self) -> str:
        return _SHORT_NAMES[self]


_ALIASES: Dict[str, ModelKind] = {
    "trajectory": ModelKind.TRAJECTORY_PREDICTION,
    "anomaly": ModelKind.ANOMALY_DETECTION,
    "objects": ModelKind.OBJECT_DETECTION,
    "fusion": ModelKind.SENSOR_FUSION,
}
_SHORT_NAMES: Dict[ModelKind, str] = {v: k for k, v in _ALIASES.items()}


class MessageType(str, Enum):
    INFERENCE_REQUEST = "inference_request"
    INFERENCE_RESPONSE = "inference_response"
    MODEL_UPDATE = "model_update"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class InferenceRequest(BaseModel):
    """Streaming request payload; `model_type` is resolved by the dispatcher, not here."""

    model_type: str
    data: Any

    model_config = ConfigDict(extra="ignore", protected_namespaces=())


class InferenceResult(BaseModel):
    model_type: ModelKind
    prediction: Any
    latency_ms: float
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(protected_namespaces=())


class StreamMessage(BaseModel):
    message_type: MessageType
    payload: Any = None


class ErrorPayload(BaseModel):
    """
    Body of an `error` stream message.

    `request_type` names the kind of request being answered so a client can
    match out-of-band update failures apart from in-order inference errors.
    """

    error: str
    detail: str
    model_type: Optional[str] = None
    request_type: Optional[MessageType] = None

    model_config = ConfigDict(protected_namespaces=())


class ModelUpdate(BaseModel):
    model_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(protected_namespaces=())


class ConfigUpdateBody(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ExecutorConfig(BaseModel):
    model_type: ModelKind
    revision: int
    parameters: Dict[str, Any]

    model_config = ConfigDict(protected_namespaces=())


class Heartbeat(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)


def format_validation_error(exc: ValidationError) -> str:
    """Condense pydantic errors into `loc: msg` pairs."""
    parts: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts) or str(exc)


def encode_message(msg: BaseModel) -> str:
    """
    Encode a pydantic model as JSON text for the stream.
    """
    return msg.model_dump_json()


def decode_stream_message(raw: bytes | str) -> StreamMessage:
    """
    Decode and validate one stream frame into a StreamMessage envelope.
    """
    return StreamMessage.model_validate_json(raw)


def make_message(message_type: MessageType, payload: Any) -> StreamMessage:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return StreamMessage(message_type=message_type, payload=payload)
