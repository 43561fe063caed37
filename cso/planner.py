from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .api_models import CommandRequestBody, RequestInfo, ResourceFilter, ServiceInfo, ServicesUpdateBody
from .registry import INSTALLED, STARTED, ServiceRegistry
from .settings import Settings

# Descriptor kinds understood by a CommandDispatcher.
SERVICES_UPDATE = "services_update"
REQUEST = "request"
BATCH = "batch"

INTERACTIVE_QUERY_COMPONENT = "HIVE_SERVER_INTERACTIVE"
RESOURCE_MANAGER_COMPONENT = "RESOURCEMANAGER"

TRANSITION_STATES = frozenset({STARTED, INSTALLED})


class CommandContext:
    """Request context labels shown by the backend's operation list."""

    STOP_ALL_SERVICES = "Stop all services"
    START_ALL_SERVICES = "Start all services"
    RESTART_ALL_REQUIRED = "Restart all required services"
    REFRESH_YARN_QUEUES = "Refresh YARN Capacity Scheduler"


@dataclass(frozen=True)
class BatchStep:
    order_id: int
    uri: str
    body: dict[str, Any]
    type: str = "POST"


@dataclass(frozen=True)
class CommandDescriptor:
    kind: str
    context: str
    body: dict[str, Any] = field(default_factory=dict)
    desired_state: str | None = None
    steps: tuple[BatchStep, ...] = ()
    interval_s: int | None = None
    tolerate_size: int | None = None


@dataclass(frozen=True)
class SinglePlan:
    command: CommandDescriptor

    def descriptor(self) -> CommandDescriptor:
        return self.command


@dataclass(frozen=True)
class OrderedPlan:
    context: str
    steps: tuple[BatchStep, ...]
    interval_s: int
    tolerate_size: int

    def __post_init__(self) -> None:
        for expected, step in enumerate(self.steps, start=1):
            if step.order_id != expected:
                raise ValueError(f"batch step order ids must run 1..n, got {step.order_id} at position {expected}")
        if self.tolerate_size < 0:
            raise ValueError("tolerate_size cannot be negative")

    def descriptor(self) -> CommandDescriptor:
        return CommandDescriptor(
            kind=BATCH,
            context=self.context,
            steps=self.steps,
            interval_s=self.interval_s,
            tolerate_size=self.tolerate_size,
        )


Plan = Union[SinglePlan, OrderedPlan]


def services_update(desired_state: str) -> CommandDescriptor:
    """Command that sets every service's desired state at once."""
    if desired_state not in TRANSITION_STATES:
        raise ValueError(f"desired state must be one of {sorted(TRANSITION_STATES)}, got {desired_state!r}")
    context = CommandContext.STOP_ALL_SERVICES if desired_state == INSTALLED else CommandContext.START_ALL_SERVICES
    body = ServicesUpdateBody(service_info=ServiceInfo(state=desired_state)).wire()
    return CommandDescriptor(kind=SERVICES_UPDATE, context=context, body=body, desired_state=desired_state)


def restart_required_body() -> dict[str, Any]:
    return CommandRequestBody(
        request_info=RequestInfo(
            command="RESTART",
            context=CommandContext.RESTART_ALL_REQUIRED,
            operation_level="host_component",
        ),
        resource_filters=[ResourceFilter(hosts_predicate="HostRoles/stale_configs=true")],
    ).wire()


def refresh_queues_body(resource_manager_host: str) -> dict[str, Any]:
    return CommandRequestBody(
        request_info=RequestInfo(
            command="REFRESHQUEUES",
            context=CommandContext.REFRESH_YARN_QUEUES,
            force_refresh_config_tags="capacity-scheduler",
        ),
        resource_filters=[
            ResourceFilter(service_name="YARN", component_name=RESOURCE_MANAGER_COMPONENT, hosts=resource_manager_host)
        ],
    ).wire()


def queue_refresh_required(registry: ServiceRegistry) -> bool:
    hc = registry.find_host_component(INTERACTIVE_QUERY_COMPONENT)
    return bool(hc and hc.stale_configs)


def plan_restart_required(registry: ServiceRegistry, cfg: Settings) -> Plan:
    """Pick between a plain restart and queue-refresh-then-restart.

    Stale interactive query servers need the capacity scheduler queues
    refreshed on the ResourceManager before they restart.
    """
    restart = CommandDescriptor(kind=REQUEST, context=CommandContext.RESTART_ALL_REQUIRED, body=restart_required_body())
    if not queue_refresh_required(registry):
        return SinglePlan(restart)

    rm = registry.find_host_component(RESOURCE_MANAGER_COMPONENT)
    if rm is None:
        # No ResourceManager known: plain restart.
        return SinglePlan(restart)

    uri = f"{cfg.api_prefix}/clusters/{cfg.cluster_name}/requests"
    return OrderedPlan(
        context=CommandContext.RESTART_ALL_REQUIRED,
        steps=(
            BatchStep(order_id=1, uri=uri, body=refresh_queues_body(rm.host_name)),
            BatchStep(order_id=2, uri=uri, body=restart.body),
        ),
        interval_s=cfg.batch_interval_s,
        tolerate_size=cfg.batch_tolerate_size,
    )
