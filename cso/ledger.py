from __future__ import annotations

from threading import Lock
from typing import Callable

Listener = Callable[[int], None]


class OperationLedger:
    """Cluster-wide count of in-flight background operations.

    Listeners are called with the new count every time it changes, outside
    the internal lock so they may read the ledger again.
    """

    def __init__(self, count: int = 0) -> None:
        if count < 0:
            raise ValueError("in-flight operation count cannot be negative")
        self._lock = Lock()
        self._count = count
        self._listeners: list[Listener] = []

    def in_flight_operation_count(self) -> int:
        with self._lock:
            return self._count

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_count(self, count: int) -> None:
        if count < 0:
            raise ValueError("in-flight operation count cannot be negative")
        with self._lock:
            if count == self._count:
                return
            self._count = count
            listeners = list(self._listeners)
        for listener in listeners:
            listener(count)
