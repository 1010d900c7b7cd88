"""Shared/exclusive locking and deadlines for index structures."""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .errors import InvalidArgument, RetrievalTimeout


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writers take preference: once a writer is waiting, new readers block until
    it has finished, so a stream of queries cannot starve an index update.
    The lock is not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()

    @property
    def readers(self) -> int:
        with self._cond:
            return self._readers


class Deadline:
    """Point in time after which a retrieval must stop scanning."""

    def __init__(self, timeout_s: float, *, clock: Callable[[], float] | None = None) -> None:
        if timeout_s <= 0:
            raise InvalidArgument("timeout must be positive")
        self._clock = clock or time.monotonic
        self.timeout_s = timeout_s
        self._expires_at = self._clock() + timeout_s

    @classmethod
    def from_timeout(
        cls, timeout_s: Optional[float], *, clock: Callable[[], float] | None = None
    ) -> Optional["Deadline"]:
        if timeout_s is None:
            return None
        return cls(timeout_s, clock=clock)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, stage: str = "retrieval") -> None:
        if self.expired:
            raise RetrievalTimeout(f"{stage} exceeded its deadline of {self.timeout_s:.3f}s")


def check_deadline(deadline: Optional[Deadline], stage: str) -> None:
    if deadline is not None:
        deadline.check(stage)


# Scans poll the deadline every this many candidates.
DEADLINE_CHECK_INTERVAL = 64


__all__ = ["DEADLINE_CHECK_INTERVAL", "Deadline", "ReadWriteLock", "check_deadline"]
