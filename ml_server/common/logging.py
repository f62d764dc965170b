"""
JSON-lines logging for the inference server.

Every record becomes one JSON object on stdout carrying the service identity
(service, env, version, sha), the bound request id, a stable `event_type` and
any `extra` fields. HTTP requests get an X-Request-ID and one `http.request`
line each; stream sessions tag their lines with `connection_id` instead.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

REQUEST_ID_HEADER = "X-Request-ID"

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else on a record came in via `extra`.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}
_CORE_KEYS = frozenset(
    {"timestamp", "severity", "service", "env", "version", "sha", "request_id", "correlation_id", "event_type", "logger"}
)

_SEVERITIES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _one_line(value: Any, limit: int = 2000) -> str:
    text = "" if value is None else str(value)
    text = " ".join(text.replace("\r", "\n").split("\n")).strip()
    return text if len(text) <= limit else text[: limit - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return _one_line(value, 256)
    return default


def _severity(level: Any) -> str:
    name = logging.getLevelName(level) if isinstance(level, int) else str(level or "INFO").upper()
    name = _SEVERITIES.get(name, name)
    return name if name in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"


def default_service_name() -> str:
    return _first_env("SERVICE_NAME", "K_SERVICE", default="ml-server")


def default_version() -> str:
    from ml_server import __version__  # noqa: WPS433

    return _first_env("APP_VERSION", "VERSION", "IMAGE_TAG", default=__version__)


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def bind_request_id(*, request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request id (generated when absent) for the enclosed block."""
    rid = _one_line(request_id, 128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self,
        *,
        service: Optional[str] = None,
        env: Optional[str] = None,
        version: Optional[str] = None,
        sha: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._identity = {
            "service": service or default_service_name(),
            "env": env or _first_env("ENVIRONMENT", "ENV", "APP_ENV", default="unknown"),
            "version": version or default_version(),
            "sha": sha or _first_env("GIT_SHA", "GITHUB_SHA", "COMMIT_SHA", default="unknown"),
        }

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        rid = getattr(record, "request_id", None) or get_request_id()
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": _severity(getattr(record, "severity", None) or record.levelno),
            **self._identity,
            "request_id": rid,
            "correlation_id": getattr(record, "correlation_id", None) or rid,
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), 4000),
            "logger": record.name,
        }
        if getattr(record, "service", None):
            payload["service"] = record.service

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in _CORE_KEYS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(*, service: Optional[str] = None, level: Any = None) -> None:
    """
    Route the root logger (and uvicorn's loggers) to one JSON handler on stdout.

    Calling it again replaces the handler.
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: Optional[str] = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """Log a semantic event; `fields` become top-level JSON keys."""
    logger.log(
        getattr(logging, severity.upper(), logging.INFO),
        message or event_type,
        exc_info=exc_info,
        extra={"event_type": event_type, **fields},
    )


def install_fastapi_request_id_middleware(app: Any, *, service: Optional[str] = None) -> None:
    """
    Propagate X-Request-ID (falling back to X-Correlation-Id, else a fresh id),
    bind it while the request runs, and log one `http.request` line.
    """
    from starlette.requests import Request  # noqa: WPS433

    http_logger = logging.getLogger("http")
    svc = service or default_service_name()

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):
        incoming = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
        start = time.perf_counter()
        with bind_request_id(request_id=incoming) as rid:
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                log_event(
                    http_logger,
                    "http.request",
                    service=svc,
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000.0, 3),
                )
        response.headers[REQUEST_ID_HEADER] = rid
        return response
