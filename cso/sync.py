from __future__ import annotations

import dataclasses
import time
from threading import Thread

from . import db
from .backend import ClusterApiClient
from .ledger import OperationLedger
from .registry import ServiceRegistry
from .settings import Settings, settings


class ClusterSync:
    """Keeps the service registry and operation ledger in step with the backend."""

    def __init__(self, client: ClusterApiClient, registry: ServiceRegistry, ledger: OperationLedger, cfg: Settings = settings):
        self.client = client
        self.registry = registry
        self.ledger = ledger
        self.cfg = cfg
        self._stop = False
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop = False
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop = True

    def _loop(self) -> None:
        db.log_event("INFO", "Cluster sync started")
        while not self._stop:
            try:
                self._tick()
            except Exception as e:
                db.log_event("ERROR", f"Cluster sync tick failed: {type(e).__name__}: {e}")
            time.sleep(max(1, self.cfg.poll_interval_s))

    def _tick(self) -> None:
        host_components = self.client.list_host_components()
        stale = {hc.service for hc in host_components if hc.stale_configs}
        services = [dataclasses.replace(s, stale_configs=s.name in stale) for s in self.client.list_services()]
        self.registry.replace(services, host_components)
        # Ledger last: its listeners read the registry.
        self.ledger.set_count(self.client.count_in_flight_requests())
