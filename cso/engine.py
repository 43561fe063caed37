from __future__ import annotations

from threading import Lock
from typing import Any, Callable

from . import db
from .alerts import notify_dispatch_failure
from .dispatcher import SUCCESS as DISPATCH_SUCCESS
from .dispatcher import CommandDispatcher, DispatchHandle
from .ledger import OperationLedger
from .planner import (
    INTERACTIVE_QUERY_COMPONENT,
    CommandDescriptor,
    OrderedPlan,
    plan_restart_required,
    queue_refresh_required,
    services_update,
)
from .preconditions import PreconditionChecker
from .queries import FAIL, SUCCESS, Query, QueryBook
from .registry import INSTALLED, STARTED, STOPPED_STATUSES, ServiceRegistry
from .restart_cycle import RestartCycle, call_later
from .settings import Settings, settings

HandleCallback = Callable[[DispatchHandle], None]


class OrchestrationEngine:
    """Bulk service transitions for a whole cluster.

    Every public request returns a `Query` whose status moves from PENDING to
    SUCCESS or FAIL when the backend answers, or None when the operation is
    currently disabled. Nothing raises past this class once a request has
    been accepted.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        ledger: OperationLedger,
        dispatcher: CommandDispatcher,
        checker: PreconditionChecker,
        cfg: Settings = settings,
        later: Callable[[float, Callable[[], None]], Any] = call_later,
        show_background_operations: Callable[[], None] | None = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.checker = checker
        self.cfg = cfg
        self.later = later
        self.show_background_operations = show_background_operations
        self.queries = QueryBook()
        self._lock = Lock()
        self._released: set[str] = set()
        self.cycle = RestartCycle(
            registry,
            ledger,
            dispatch=self._dispatch_new,
            dwell_s=cfg.bg_operations_update_interval_s,
            later=later,
            on_stopped=self._surface_background_operations,
        )

    # --- availability ---

    def is_start_stop_all_clicked(self) -> bool:
        return self.ledger.in_flight_operation_count() != 0

    def is_start_all_disabled(self) -> bool:
        if self.is_start_stop_all_clicked():
            return True
        return not any(s.work_status in STOPPED_STATUSES and not s.client_only for s in self.registry.all_services())

    def is_stop_all_disabled(self) -> bool:
        if self.is_start_stop_all_clicked():
            return True
        return not any(s.work_status == STARTED for s in self.registry.all_services())

    def is_restart_all_required_disabled(self) -> bool:
        return not any(s.stale_configs and not s.client_only for s in self.registry.all_services())

    def stale_service_names(self) -> list[str]:
        """Display names of services owning host components with stale configs."""
        labels = {s.name: s.label for s in self.registry.all_services()}
        out: list[str] = []
        for hc in self.registry.stale_host_components():
            name = labels.get(hc.service, hc.service)
            if name not in out:
                out.append(name)
        return out

    # --- start-all / stop-all ---

    def request_transition(self, desired_state: str, confirmation_granted: bool) -> Query | None:
        descriptor = services_update(desired_state)
        if not confirmation_granted:
            return None
        disabled = self.is_stop_all_disabled() if desired_state == INSTALLED else self.is_start_all_disabled()
        if disabled:
            db.log_event("INFO", f"{descriptor.context} ignored, nothing to do or operations in flight")
            return None

        if desired_state == INSTALLED and self._checkpoint_sensitive_running():
            q = self.queries.open(descriptor.context, desired_state, message="Waiting for NameNode checkpoint check")
            self._defer_until_safe(descriptor, q)
            return q

        q = self.queries.open(descriptor.context, desired_state)
        self._send(descriptor, q, on_success=self._surface_background_operations)
        return q

    def _checkpoint_sensitive_running(self) -> bool:
        return any(
            s.name in self.cfg.checkpoint_services and s.work_status == STARTED for s in self.registry.all_services()
        )

    def _release(self, q: Query) -> bool:
        """True only the first time the stop for `q` is settled."""
        with self._lock:
            if q.id in self._released:
                return False
            self._released.add(q.id)
            return True

    def _is_released(self, q: Query) -> bool:
        with self._lock:
            return q.id in self._released

    def _defer_until_safe(self, descriptor: CommandDescriptor, q: Query) -> None:
        """Dispatch the stop once the checkpoint check passes, re-checking until it does."""

        def on_safe() -> None:
            if not self._release(q):
                return
            self.queries.note(q, "")
            self._send(descriptor, q, on_success=self._surface_background_operations)

        def on_unsafe(reason: str) -> None:
            if self._is_released(q):
                return
            delay = self.cfg.poll_interval_s
            self.queries.note(q, f"Stop deferred, {reason}; checking again in {delay}s")
            self.later(delay, check)

        def check() -> None:
            if self._is_released(q):
                return
            try:
                self.checker.check_safe_to_stop(on_safe, on_unsafe)
            except Exception as e:
                if self._release(q):
                    self._fail(q, f"Checkpoint check could not run: {type(e).__name__}: {e}")

        check()

    # --- restart required ---

    def request_restart_required(self) -> Query | None:
        if self.is_restart_all_required_disabled():
            return None
        plan = plan_restart_required(self.registry, self.cfg)
        if isinstance(plan, OrderedPlan):
            db.log_event("INFO", "Capacity scheduler queues will be refreshed before restart", service_name="YARN")
        elif queue_refresh_required(self.registry):
            db.log_event(
                "WARN",
                f"{INTERACTIVE_QUERY_COMPONENT} has stale configs but no ResourceManager is known, restarting without queue refresh",
                service_name="YARN",
            )
        return self._dispatch_new(plan.descriptor(), self._surface_background_operations)

    # --- full restart ---

    def restart_all_services(self) -> Query | None:
        return self.cycle.restart_all_services()

    @property
    def restart_cycle_state(self) -> str:
        return self.cycle.state

    # --- dispatch plumbing ---

    def _dispatch_new(
        self,
        descriptor: CommandDescriptor,
        on_success: HandleCallback | None = None,
        on_failure: HandleCallback | None = None,
    ) -> Query:
        q = self.queries.open(descriptor.context, descriptor.desired_state)
        self._send(descriptor, q, on_success, on_failure)
        return q

    def _send(
        self,
        descriptor: CommandDescriptor,
        q: Query,
        on_success: HandleCallback | None = None,
        on_failure: HandleCallback | None = None,
    ) -> None:
        try:
            handle = self.dispatcher.send(descriptor)
        except Exception as e:
            self._fail(q, f"{type(e).__name__}: {e}")
            if on_failure:
                self._run_callback(q, on_failure, None)
            return
        handle.add_done_callback(lambda h: self._on_dispatch_done(h, q, on_success, on_failure))

    def _on_dispatch_done(
        self,
        handle: DispatchHandle,
        q: Query,
        on_success: HandleCallback | None,
        on_failure: HandleCallback | None,
    ) -> None:
        if handle.outcome == DISPATCH_SUCCESS:
            self.queries.update(q, SUCCESS, "Accepted", handle.response)
            db.log_event("INFO", f"{q.context}: accepted", context=q.context)
            callback = on_success
        else:
            self._fail(q, str(handle.response or "dispatch failed"), handle.response)
            callback = on_failure
        if callback:
            self._run_callback(q, callback, handle)

    def _fail(self, q: Query, detail: str, response: Any = None) -> None:
        self.queries.update(q, FAIL, detail, response)
        db.log_event("ERROR", f"{q.context}: {detail}", context=q.context)
        notify_dispatch_failure(q.context, q.id, detail, cfg=self.cfg)

    def _run_callback(self, q: Query, callback: Callable[..., None], handle: DispatchHandle | None) -> None:
        try:
            callback(handle)
        except Exception as e:
            db.log_event("ERROR", f"{q.context}: completion handler failed: {type(e).__name__}: {e}", context=q.context)

    def _surface_background_operations(self, handle: DispatchHandle | None = None) -> None:
        if self.cfg.show_bg_operations and self.show_background_operations:
            self.show_background_operations()
