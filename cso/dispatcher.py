from __future__ import annotations

from threading import Event, Lock, Thread
from typing import Any, Callable, Protocol

import httpx

from . import db
from .backend import BackendError, ClusterApiClient
from .planner import BATCH, REQUEST, SERVICES_UPDATE, CommandDescriptor

SUCCESS = "success"
ERROR = "error"


class DispatchHandle:
    """Outcome of a dispatched command; resolved exactly once."""

    def __init__(self, descriptor: CommandDescriptor) -> None:
        self.descriptor = descriptor
        self.outcome: str | None = None
        self.response: Any = None
        self._lock = Lock()
        self._done = Event()
        self._callbacks: list[Callable[[DispatchHandle], None]] = []

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def add_done_callback(self, fn: Callable[[DispatchHandle], None]) -> None:
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(fn)
                return
        fn(self)

    def resolve(self, outcome: str, response: Any = None) -> None:
        if outcome not in {SUCCESS, ERROR}:
            raise ValueError(f"unknown outcome {outcome!r}")
        with self._lock:
            if self._done.is_set():
                return
            self.outcome = outcome
            self.response = response
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn(self)

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)


class CommandDispatcher(Protocol):
    def send(self, descriptor: CommandDescriptor) -> DispatchHandle: ...


class HttpCommandDispatcher:
    """Sends descriptors to the backend on a worker thread per command."""

    def __init__(self, client: ClusterApiClient):
        self.client = client

    def send(self, descriptor: CommandDescriptor) -> DispatchHandle:
        handle = DispatchHandle(descriptor)
        Thread(target=self._run, args=(handle,), daemon=True).start()
        return handle

    def _run(self, handle: DispatchHandle) -> None:
        d = handle.descriptor
        try:
            if d.kind == SERVICES_UPDATE:
                resp = self.client.update_services(d.context, d.body)
            elif d.kind == REQUEST:
                resp = self.client.post_request(d.body)
            elif d.kind == BATCH:
                resp = self.client.post_request_schedule(d.steps, d.interval_s or 0, d.tolerate_size or 0)
            else:
                raise BackendError(f"unknown command kind {d.kind!r}")
        except (httpx.HTTPError, BackendError) as e:
            db.log_event("ERROR", f"Dispatch failed: {type(e).__name__}: {e}", context=d.context)
            handle.resolve(ERROR, str(e))
            return
        except Exception as e:
            # The handle must still resolve or its query stays PENDING.
            db.log_event("ERROR", f"Dispatch crashed: {type(e).__name__}: {e}", context=d.context)
            handle.resolve(ERROR, f"{type(e).__name__}: {e}")
            return
        handle.resolve(SUCCESS, resp)
