from __future__ import annotations

import time
from threading import Thread
from typing import Callable, Protocol

import httpx

from . import db
from .backend import BackendError, ClusterApiClient, NameNodeCheckpoint
from .settings import Settings, settings

UnsafeCallback = Callable[[str], None]


class PreconditionChecker(Protocol):
    def check_safe_to_stop(self, on_safe: Callable[[], None], on_unsafe: UnsafeCallback | None = None) -> None: ...


def checkpoint_problems(
    checkpoints: list[NameNodeCheckpoint], now_ms: int, max_age_s: int, max_txns: int
) -> list[str]:
    """Describe every NameNode whose last checkpoint makes a stop risky.

    An empty list means stopping is safe.
    """
    if not checkpoints:
        return ["no NameNode reported checkpoint metrics"]
    problems: list[str] = []
    for cp in checkpoints:
        if cp.last_checkpoint_ms is None:
            problems.append(f"{cp.host_name}: last checkpoint time unknown")
            continue
        age_s = (now_ms - int(cp.last_checkpoint_ms)) / 1000.0
        if age_s > max_age_s:
            problems.append(f"{cp.host_name}: last checkpoint {age_s / 3600:.1f}h ago")
        if cp.txns_since_checkpoint is not None and int(cp.txns_since_checkpoint) > max_txns:
            problems.append(f"{cp.host_name}: {cp.txns_since_checkpoint} transactions since last checkpoint")
    return problems


def _in_thread(fn: Callable[[], None]) -> None:
    Thread(target=fn, daemon=True).start()


class NameNodeCheckpointChecker:
    """Calls `on_safe` once every NameNode has a recent metadata checkpoint.

    The check runs on its own thread. When the checkpoint is stale or the
    metrics cannot be read, `on_safe` is not called; `on_unsafe` gets the
    reason and a WARN/ERROR event is recorded.
    """

    def __init__(
        self,
        client: ClusterApiClient,
        cfg: Settings = settings,
        clock: Callable[[], float] = time.time,
        spawn: Callable[[Callable[[], None]], None] = _in_thread,
    ):
        self.client = client
        self.cfg = cfg
        self.clock = clock
        self.spawn = spawn

    def check_safe_to_stop(self, on_safe: Callable[[], None], on_unsafe: UnsafeCallback | None = None) -> None:
        self.spawn(lambda: self.run_check(on_safe, on_unsafe))

    def run_check(self, on_safe: Callable[[], None], on_unsafe: UnsafeCallback | None = None) -> bool:
        try:
            checkpoints = self.client.namenode_checkpoints()
        except (httpx.HTTPError, BackendError) as e:
            reason = f"NameNode checkpoint check failed: {type(e).__name__}: {e}"
            db.log_event("ERROR", reason, service_name="HDFS")
            if on_unsafe:
                on_unsafe(reason)
            return False

        problems = checkpoint_problems(
            checkpoints,
            now_ms=int(self.clock() * 1000),
            max_age_s=self.cfg.checkpoint_max_age_s,
            max_txns=self.cfg.checkpoint_max_txns,
        )
        if problems:
            reason = "NameNode checkpoint is stale: " + "; ".join(problems)
            db.log_event("WARN", "Stop deferred, " + reason, service_name="HDFS")
            if on_unsafe:
                on_unsafe(reason)
            return False

        on_safe()
        return True
