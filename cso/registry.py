from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Iterable

# Work statuses reported by the backend. The engine only compares them.
STARTED = "STARTED"
STARTING = "STARTING"
STOPPING = "STOPPING"
INSTALLED = "INSTALLED"
STOPPED = "STOPPED"
UNKNOWN = "UNKNOWN"

STOPPED_STATUSES = frozenset({INSTALLED, STOPPED})


@dataclass(frozen=True)
class Service:
    name: str
    work_status: str
    stale_configs: bool = False
    display_name: str = ""
    client_only: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class HostComponent:
    component_name: str
    host_name: str
    service: str
    stale_configs: bool = False


class ServiceRegistry:
    """Last known snapshot of cluster services and host components.

    Written only by the cluster sync (or tests); the engine reads it.
    """

    def __init__(self, services: Iterable[Service] = (), host_components: Iterable[HostComponent] = ()) -> None:
        self._lock = Lock()
        self._services: list[Service] = list(services)
        self._host_components: list[HostComponent] = list(host_components)

    def replace(self, services: Iterable[Service], host_components: Iterable[HostComponent]) -> None:
        with self._lock:
            self._services = list(services)
            self._host_components = list(host_components)

    def all_services(self) -> list[Service]:
        with self._lock:
            return list(self._services)

    def host_components(self) -> list[HostComponent]:
        with self._lock:
            return list(self._host_components)

    def find_host_component(self, component_name: str) -> HostComponent | None:
        for hc in self.host_components():
            if hc.component_name == component_name:
                return hc
        return None

    def stale_host_components(self) -> list[HostComponent]:
        return [hc for hc in self.host_components() if hc.stale_configs]
