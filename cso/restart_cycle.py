from __future__ import annotations

from threading import Lock, Timer
from typing import Any, Callable, Iterable

from . import db
from .ledger import OperationLedger
from .planner import CommandContext, services_update
from .registry import INSTALLED, STARTED, STOPPING, Service, ServiceRegistry

IDLE = "IDLE"
STOPPING_ALL = "STOPPING_ALL"
AWAITING_START_ELIGIBILITY = "AWAITING_START_ELIGIBILITY"
STARTING_ALL = "STARTING_ALL"

# STOPPING counts as stopped, matching the backend UI's own check.
STOP_COMPLETE_STATUSES = frozenset({INSTALLED, STOPPING})


def call_later(delay_s: float, fn: Callable[[], None]) -> Timer:
    t = Timer(delay_s, fn)
    t.daemon = True
    t.start()
    return t


def is_stop_all_services_failed(services: Iterable[Service]) -> bool:
    return any(s.work_status not in STOP_COMPLETE_STATUSES for s in services)


class RestartCycle:
    """Silent stop-all then start-all.

    IDLE -> STOPPING_ALL -> AWAITING_START_ELIGIBILITY -> STARTING_ALL -> IDLE

    The start phase is attempted whenever the eligibility timer fires or the
    in-flight operation count changes, and only proceeds once no operation is
    running, the dwell time has passed and every service reports stopped.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        ledger: OperationLedger,
        dispatch: Callable[..., Any],
        dwell_s: float,
        later: Callable[[float, Callable[[], None]], Any] = call_later,
        on_stopped: Callable[[], None] | None = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.dispatch = dispatch
        self.dwell_s = dwell_s
        self.later = later
        self.on_stopped = on_stopped

        self._lock = Lock()
        self._state = IDLE
        self._start_eligible = False
        self._abstained = False
        self._unsubscribe = ledger.subscribe(self._on_ledger_change)

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def start_eligible(self) -> bool:
        with self._lock:
            return self._start_eligible

    def close(self) -> None:
        self._unsubscribe()

    def restart_all_services(self):
        """Begin a cycle; None while one is stopping or waiting to start.

        A cycle that is holding because a service never stopped can be
        restarted, which sends stop-all again.
        """
        with self._lock:
            if self._state == STOPPING_ALL:
                return None
            if self._state == AWAITING_START_ELIGIBILITY and not self._abstained:
                return None
            self._state = STOPPING_ALL
            self._start_eligible = False
            self._abstained = False
        db.log_event("INFO", "Restart cycle started, stopping all services", context=CommandContext.STOP_ALL_SERVICES)
        return self.dispatch(services_update(INSTALLED), self._on_stop_success, self._on_stop_failure)

    def _on_stop_success(self, handle=None) -> None:
        with self._lock:
            if self._state != STOPPING_ALL:
                return
            self._state = AWAITING_START_ELIGIBILITY
        if self.on_stopped:
            self.on_stopped()
        self.later(self.dwell_s, self._on_eligibility_timer)

    def _on_stop_failure(self, handle=None) -> None:
        with self._lock:
            if self._state != STOPPING_ALL:
                return
            self._state = IDLE
        db.log_event("ERROR", "Restart cycle aborted, stop-all was rejected", context=CommandContext.STOP_ALL_SERVICES)

    def _on_eligibility_timer(self) -> None:
        with self._lock:
            if self._state != AWAITING_START_ELIGIBILITY:
                return
            self._start_eligible = True
        self._attempt_start()

    def _on_ledger_change(self, count: int) -> None:
        self._attempt_start()

    def _attempt_start(self):
        """Dispatch start-all if every condition holds; otherwise a no-op."""
        with self._lock:
            if self._state != AWAITING_START_ELIGIBILITY or not self._start_eligible:
                return None
            if self.ledger.in_flight_operation_count() != 0:
                return None
            services = self.registry.all_services()
            if is_stop_all_services_failed(services):
                first_time, self._abstained = not self._abstained, True
                running = sorted(s.name for s in services if s.work_status not in STOP_COMPLETE_STATUSES)
            else:
                self._start_eligible = False
                self._state = STARTING_ALL
                running = None

        if running is not None:
            if first_time:
                db.log_event(
                    "WARN",
                    f"Restart cycle holding before start-all, not stopped: {', '.join(running)}",
                    context=CommandContext.START_ALL_SERVICES,
                )
            return None

        db.log_event("INFO", "Restart cycle starting all services", context=CommandContext.START_ALL_SERVICES)
        return self.dispatch(services_update(STARTED), self._on_start_done, self._on_start_done)

    def _on_start_done(self, handle=None) -> None:
        with self._lock:
            if self._state == STARTING_ALL:
                self._state = IDLE
