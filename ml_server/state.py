from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from ml_server.common.metrics import stream_connections_active
from ml_server.config import Settings
from ml_server.dispatch import Dispatcher
from ml_server.executors import build_default_executors
from ml_server.registry import ExecutorRegistry


class SessionState:
    """
    Process-wide state shared by every request.

    Built once by the app factory; the registry inside is the only shared
    mutable resource on the inference path.
    """

    def __init__(self, settings: Settings, registry: Optional[ExecutorRegistry] = None) -> None:
        self.settings = settings
        self.registry = registry or ExecutorRegistry(build_default_executors(settings))
        self.dispatcher = Dispatcher(self.registry, admin_updates_enabled=settings.admin_updates_enabled)
        self.started_at_utc = datetime.now(timezone.utc)
        self._started_mono = time.monotonic()
        self._conn_lock = threading.Lock()
        self._connections: Dict[str, datetime] = {}

    def uptime_seconds(self) -> float:
        return max(0.0, time.monotonic() - self._started_mono)

    def open_connection(self) -> str:
        conn_id = uuid.uuid4().hex
        with self._conn_lock:
            self._connections[conn_id] = datetime.now(timezone.utc)
            n = len(self._connections)
        stream_connections_active.set(float(n))
        return conn_id

    def close_connection(self, conn_id: str) -> None:
        with self._conn_lock:
            self._connections.pop(conn_id, None)
            n = len(self._connections)
        stream_connections_active.set(float(n))

    def active_connections(self) -> int:
        with self._conn_lock:
            return len(self._connections)
