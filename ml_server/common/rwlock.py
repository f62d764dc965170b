from __future__ import annotations

"""
Reader/writer lock (stdlib only).

- Any number of concurrent readers.
- One writer at a time, excluding all readers.
- Writer preference: once a writer is waiting, new readers queue behind it so a
  rare reconfiguration is never starved by a steady stream of reads.
"""

import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional


class ReadWriteLock:
    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        return None if timeout is None else time.monotonic() + max(0.0, float(timeout))

    def _wait(self, deadline: Optional[float], *, what: str) -> None:
        if deadline is None:
            self._cond.wait()
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0 or not self._cond.wait(timeout=remaining):
            raise TimeoutError(f"timed out acquiring {what} lock")

    def acquire_read(self, timeout: Optional[float] = None) -> None:
        deadline = self._deadline(timeout)
        with self._cond:
            while self._writer_active or self._writers_waiting > 0:
                self._wait(deadline, what="read")
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read without matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> None:
        deadline = self._deadline(timeout)
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers > 0:
                    self._wait(deadline, what="write")
            except TimeoutError:
                self._writers_waiting -= 1
                # Readers parked behind this writer may proceed now.
                self._cond.notify_all()
                raise
            self._writers_waiting -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer_active:
                raise RuntimeError("release_write without matching acquire_write")
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        self.acquire_read(timeout)
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        self.acquire_write(timeout)
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        with self._cond:
            return self._readers

    @property
    def write_locked_now(self) -> bool:
        with self._cond:
            return self._writer_active
