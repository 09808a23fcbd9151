from __future__ import annotations

import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Broadcast(Generic[T]):
    """
    Read-only shared value handed to every partition of a bulk operation.

    The handle is reference counted: each `acquire()` must be paired with a `release()`.
    Once the count drops to zero the value is dropped and `.value` raises, so a stale
    handle can't silently keep a model or config alive past the scope that owned it.

    Usage:
        with Broadcast(model) as shared:
            scores = [shared.value.compute_score(x) for x in rows]
    """

    def __init__(self, value: T) -> None:
        self._value: Optional[T] = value
        self._refs = 0
        self._released = False
        self._lock = threading.Lock()

    @property
    def value(self) -> T:
        if self._released:
            raise RuntimeError("Broadcast value accessed after release")
        return self._value  # type: ignore[return-value]

    @property
    def ref_count(self) -> int:
        return self._refs

    @property
    def is_released(self) -> bool:
        return self._released

    def acquire(self) -> "Broadcast[T]":
        with self._lock:
            if self._released:
                raise RuntimeError("Cannot acquire a released broadcast")
            self._refs += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._refs <= 0:
                raise RuntimeError("Broadcast released more times than acquired")
            self._refs -= 1
            if self._refs == 0:
                self._value = None
                self._released = True

    def __enter__(self) -> "Broadcast[T]":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
