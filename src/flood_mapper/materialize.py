"""
Asynchronous materialization keyed by parameter version.

Building the graph is cheap and synchronous; computing it is not. Work is
submitted to a thread pool and tagged with the version of the parameter
snapshot it was built from. A result is only published if no newer version
has been submitted since, so a slow, superseded computation can never
overwrite a newer one. There is no hard cancel: stale work runs to completion
and is dropped on arrival.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Versioned(Generic[T]):
    version: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ResultSlot(Generic[T]):
    """Holds the newest accepted result for one kind of output."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._requested = -1
        self._current: Optional[Versioned[T]] = None

    @property
    def latest_requested(self) -> int:
        with self._lock:
            return self._requested

    def request(self, version: int) -> None:
        with self._lock:
            self._requested = max(self._requested, version)

    def offer(self, item: Versioned[T]) -> bool:
        with self._lock:
            if item.version < self._requested:
                return False
            if self._current is not None and item.version < self._current.version:
                return False
            self._current = item
            return True

    def get(self) -> Optional[Versioned[T]]:
        with self._lock:
            return self._current


class VersionedFuture(Generic[T]):
    def __init__(self, version: int, future: Future, slot: ResultSlot[T]) -> None:
        self.version = version
        self.future = future
        self._slot = slot

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> T:
        return self.future.result(timeout=timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self.future.exception(timeout=timeout)

    @property
    def stale(self) -> bool:
        return self._slot.latest_requested > self.version


class Materializer:
    def __init__(self, max_workers: int = 2, name: str = "materialize") -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def submit(self, slot: ResultSlot[T], version: int, fn: Callable[[], T]) -> VersionedFuture[T]:
        slot.request(version)

        def _run() -> T:
            try:
                value = fn()
            except Exception as exc:
                self._publish(slot, Versioned(version, error=exc))
                raise
            self._publish(slot, Versioned(version, value=value))
            return value

        return VersionedFuture(version, self._executor.submit(_run), slot)

    @staticmethod
    def _publish(slot: ResultSlot, item: Versioned) -> None:
        if slot.offer(item):
            LOGGER.debug("%s v%d published.", slot.name, item.version)
        else:
            LOGGER.info(
                "Discarded stale %s result v%d (latest v%d).",
                slot.name,
                item.version,
                slot.latest_requested,
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class Debouncer:
    """Coalesce bursts of triggers into one call after ``delay`` seconds of quiet."""

    def __init__(self, delay: float, callback: Callable[[], Any]) -> None:
        self.delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        if self.delay <= 0:
            self._callback()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()

    def flush(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self._callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
