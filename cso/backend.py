from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from .planner import BatchStep
from .registry import HostComponent, Service
from .settings import Settings, settings

IN_FLIGHT_REQUEST_STATUSES = frozenset({"PENDING", "QUEUED", "IN_PROGRESS"})


class BackendError(Exception):
    pass


@dataclass(frozen=True)
class NameNodeCheckpoint:
    host_name: str
    last_checkpoint_ms: int | None
    txns_since_checkpoint: int | None


class ClusterApiClient:
    """Thin httpx client for the cluster management REST API."""

    def __init__(self, cfg: Settings = settings, transport: httpx.BaseTransport | None = None):
        self.cfg = cfg
        self._client = httpx.Client(
            base_url=cfg.api_base,
            auth=(cfg.api_user, cfg.api_password),
            timeout=cfg.http_timeout_s,
            headers={"X-Requested-By": cfg.requested_by},
            follow_redirects=False,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def cluster_path(self, suffix: str) -> str:
        return f"{self.cfg.api_prefix}/clusters/{self.cfg.cluster_name}{suffix}"

    def _call(self, method: str, suffix: str, **kwargs: Any) -> dict[str, Any]:
        resp = self._client.request(method, self.cluster_path(suffix), **kwargs)
        if resp.status_code >= 300:
            raise BackendError(f"{method} {suffix}: HTTP {resp.status_code}: {resp.text[:200]}")
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError(f"{method} {suffix}: invalid JSON") from e
        return data if isinstance(data, dict) else {"items": data}

    # --- reads ---

    def list_services(self) -> list[Service]:
        data = self._call(
            "GET",
            "/services",
            params={
                "fields": "ServiceInfo/state,ServiceInfo/service_name,ServiceInfo/display_name,"
                "components/ServiceComponentInfo/category"
            },
        )
        out: list[Service] = []
        for item in data.get("items", []):
            info = item.get("ServiceInfo", {})
            categories = [c.get("ServiceComponentInfo", {}).get("category") for c in item.get("components", [])]
            out.append(
                Service(
                    name=info.get("service_name", ""),
                    work_status=info.get("state", "UNKNOWN"),
                    display_name=info.get("display_name") or info.get("service_name", ""),
                    client_only=bool(categories) and all(c == "CLIENT" for c in categories),
                )
            )
        return out

    def list_host_components(self) -> list[HostComponent]:
        data = self._call(
            "GET",
            "/host_components",
            params={"fields": "HostRoles/component_name,HostRoles/host_name,HostRoles/service_name,HostRoles/stale_configs"},
        )
        out: list[HostComponent] = []
        for item in data.get("items", []):
            roles = item.get("HostRoles", {})
            out.append(
                HostComponent(
                    component_name=roles.get("component_name", ""),
                    host_name=roles.get("host_name", ""),
                    service=roles.get("service_name", ""),
                    stale_configs=bool(roles.get("stale_configs", False)),
                )
            )
        return out

    def count_in_flight_requests(self) -> int:
        data = self._call("GET", "/requests", params={"fields": "Requests/request_status", "to": "end", "page_size": 100})
        return sum(
            1 for item in data.get("items", []) if item.get("Requests", {}).get("request_status") in IN_FLIGHT_REQUEST_STATUSES
        )

    def namenode_checkpoints(self) -> list[NameNodeCheckpoint]:
        data = self._call(
            "GET",
            "/host_components",
            params={
                "HostRoles/component_name": "NAMENODE",
                "fields": "HostRoles/host_name,metrics/dfs/FSNamesystem/LastCheckpointTime,"
                "metrics/dfs/FSNamesystem/TxnsSinceLastCheckpoint",
            },
        )
        out: list[NameNodeCheckpoint] = []
        for item in data.get("items", []):
            fs = item.get("metrics", {}).get("dfs", {}).get("FSNamesystem", {})
            out.append(
                NameNodeCheckpoint(
                    host_name=item.get("HostRoles", {}).get("host_name", ""),
                    last_checkpoint_ms=fs.get("LastCheckpointTime"),
                    txns_since_checkpoint=fs.get("TxnsSinceLastCheckpoint"),
                )
            )
        return out

    # --- commands ---

    def update_services(self, context: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call("PUT", "/services", json={"RequestInfo": {"context": context}, "Body": body})

    def post_request(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._call("POST", "/requests", json=body)

    def post_request_schedule(self, steps: tuple[BatchStep, ...], interval_s: int, tolerate_size: int) -> dict[str, Any]:
        requests = [{"order_id": s.order_id, "type": s.type, "uri": s.uri, "RequestBodyInfo": s.body} for s in steps]
        payload = {
            "RequestSchedule": {
                "batch": [
                    {"requests": requests},
                    {
                        "batch_settings": {
                            "batch_separation_in_seconds": interval_s,
                            "task_failure_tolerance": tolerate_size,
                        }
                    },
                ]
            }
        }
        return self._call("POST", "/request_schedules", json=payload)
