"""
Dispatcher: the single business-logic path shared by both transports.

    tag -> ModelKind -> typed decode -> guarded compute -> encode -> InferenceResult

The payload stays opaque until the kind is resolved; the kind decides the
schema. Only the compute step is timed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, List, Mapping, Union

from pydantic import BaseModel, ValidationError

from ml_server.common.logging import log_event
from ml_server.common.metrics import inference_latency_ms_sum, inference_requests_total
from ml_server.errors import (
    AdminUpdatesDisabledError,
    DispatchError,
    InternalDispatchError,
    InvalidInputError,
)
from ml_server.registry import ExecutorRegistry
from ml_server.schemas import ExecutorConfig, InferenceResult, ModelKind, format_validation_error

logger = logging.getLogger(__name__)

ModelTag = Union[str, ModelKind]


class Dispatcher:
    def __init__(self, registry: ExecutorRegistry, *, admin_updates_enabled: bool = True) -> None:
        self._registry = registry
        self._admin_updates_enabled = bool(admin_updates_enabled)

    @property
    def registry(self) -> ExecutorRegistry:
        return self._registry

    def list_models(self) -> List[str]:
        return [kind.value for kind in ModelKind]

    def dispatch(self, model: ModelTag, payload: Any, *, transport: str = "internal") -> InferenceResult:
        """
        Run one inference.

        `payload` is either raw JSON bytes or an already-parsed JSON
        value. Raises UnknownModelError, InvalidInputError or InternalDispatchError.
        """
        label = str(getattr(model, "value", model))
        try:
            kind = ModelKind.from_tag(model)
            label = kind.value
            result = self._run(kind, payload)
        except DispatchError as e:
            inference_requests_total.inc(labels={"model_type": label, "transport": transport, "outcome": e.code})
            raise

        inference_requests_total.inc(labels={"model_type": label, "transport": transport, "outcome": "ok"})
        inference_latency_ms_sum.inc(result.latency_ms, labels={"model_type": label})
        return result

    def _run(self, kind: ModelKind, payload: Any) -> InferenceResult:
        data = _decode(self._registry.input_model(kind), payload, kind)

        with self._registry.read(kind) as executor:
            start = time.perf_counter()
            try:
                output = executor.compute(data)
            except DispatchError:
                raise
            except Exception as e:
                log_event(
                    logger,
                    "dispatch.internal_error",
                    severity="ERROR",
                    exc_info=True,
                    model_type=kind.value,
                    stage="compute",
                )
                raise InternalDispatchError(f"{type(e).__name__}: {e}", model_type=kind.value) from e
            latency_ms = (time.perf_counter() - start) * 1000.0

        return InferenceResult(model_type=kind, prediction=_encode(output, kind), latency_ms=latency_ms)

    def describe(self, model: ModelTag) -> ExecutorConfig:
        return self._registry.describe(ModelKind.from_tag(model))

    def reconfigure(self, model: ModelTag, changes: Mapping[str, Any]) -> ExecutorConfig:
        """
        Administrative update of one executor's tunables (shared by both transports).
        """
        kind = ModelKind.from_tag(model)
        if not self._admin_updates_enabled:
            raise AdminUpdatesDisabledError("model updates are disabled", model_type=kind.value)
        if not isinstance(changes, Mapping):
            raise InvalidInputError("parameters must be an object", model_type=kind.value)
        try:
            return self._registry.reconfigure(kind, changes)
        except ValidationError as e:
            raise InvalidInputError(format_validation_error(e), model_type=kind.value) from e


def _decode(model: type[BaseModel], payload: Any, kind: ModelKind) -> BaseModel:
    try:
        if isinstance(payload, (bytes, bytearray)):
            return model.model_validate_json(payload)
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidInputError(format_validation_error(e), model_type=kind.value) from e


def _encode(output: Any, kind: ModelKind) -> Any:
    try:
        return output.model_dump(mode="json")
    except Exception as e:
        log_event(
            logger,
            "dispatch.internal_error",
            severity="ERROR",
            exc_info=True,
            model_type=kind.value,
            stage="encode",
        )
        raise InternalDispatchError(f"failed to encode {kind.value} output: {e}", model_type=kind.value) from e
