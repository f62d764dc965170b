"""
Executor registry.

Owns exactly one executor per ModelKind, each behind its own reader/writer
lock. There is no registry-wide lock: a reconfiguration of one kind never
waits on, or holds up, work on another kind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Type

from pydantic import BaseModel

from ml_server.common.logging import log_event
from ml_server.common.metrics import model_updates_total
from ml_server.common.rwlock import ReadWriteLock
from ml_server.errors import RegistryLookupError
from ml_server.executors import Executor
from ml_server.schemas import ExecutorConfig, ModelKind

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    executor: Executor
    lock: ReadWriteLock = field(default_factory=ReadWriteLock)
    revision: int = 0


class ExecutorRegistry:
    def __init__(self, executors: Iterable[Executor], *, lock_timeout_s: Optional[float] = None) -> None:
        entries: Dict[ModelKind, _Entry] = {}
        for executor in executors:
            if executor.kind in entries:
                raise ValueError(f"duplicate executor for {executor.kind.value}")
            entries[executor.kind] = _Entry(executor=executor)

        missing = [k.value for k in ModelKind if k not in entries]
        if missing:
            raise ValueError(f"registry missing executors for: {', '.join(missing)}")

        self._entries = entries
        self._lock_timeout_s = lock_timeout_s

    def _entry(self, kind: ModelKind) -> _Entry:
        try:
            return self._entries[kind]
        except (KeyError, TypeError):
            raise RegistryLookupError(f"no executor registered for {kind!r}") from None

    def input_model(self, kind: ModelKind) -> Type[BaseModel]:
        """Input schema for `kind`; a class attribute, so no guard is needed."""
        return type(self._entry(kind).executor).input_model

    def kinds(self) -> List[ModelKind]:
        return list(self._entries.keys())

    @contextmanager
    def read(self, kind: ModelKind) -> Iterator[Executor]:
        """Shared guard for compute; any number of readers per kind."""
        entry = self._entry(kind)
        with entry.lock.read_locked(timeout=self._lock_timeout_s):
            yield entry.executor

    @contextmanager
    def write(self, kind: ModelKind) -> Iterator[Executor]:
        """Exclusive guard for reconfiguration of one kind."""
        entry = self._entry(kind)
        with entry.lock.write_locked(timeout=self._lock_timeout_s):
            yield entry.executor

    def reconfigure(self, kind: ModelKind, changes: Mapping[str, Any]) -> ExecutorConfig:
        """
        Apply a partial parameter update atomically.

        Subsequent reads see either the old set or the complete new set.
        Raises pydantic.ValidationError (nothing applied) on invalid changes.
        """
        entry = self._entry(kind)
        with self.write(kind) as executor:
            params = executor.reconfigure(changes)
            entry.revision += 1
            config = ExecutorConfig(model_type=kind, revision=entry.revision, parameters=params.model_dump())

        model_updates_total.inc(labels={"model_type": kind.value})
        log_event(
            logger,
            "model.reconfigured",
            model_type=kind.value,
            revision=config.revision,
            changed=sorted(changes.keys()),
        )
        return config

    def describe(self, kind: ModelKind) -> ExecutorConfig:
        entry = self._entry(kind)
        with self.read(kind) as executor:
            return ExecutorConfig(
                model_type=kind,
                revision=entry.revision,
                parameters=executor.parameters().model_dump(),
            )

    def revisions(self) -> Dict[str, int]:
        return {kind.value: entry.revision for kind, entry in self._entries.items()}
