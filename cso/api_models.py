from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# --- Backend request bodies -------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ServiceInfo(_WireModel):
    state: str = Field(..., description="STARTED|INSTALLED")


class ServicesUpdateBody(_WireModel):
    service_info: ServiceInfo = Field(..., alias="ServiceInfo")


class RequestInfo(_WireModel):
    command: str
    context: str
    operation_level: str | None = None
    force_refresh_config_tags: str | None = Field(None, alias="parameters/forceRefreshConfigTags")


class ResourceFilter(_WireModel):
    hosts_predicate: str | None = None
    service_name: str | None = None
    component_name: str | None = None
    hosts: str | None = None


class CommandRequestBody(_WireModel):
    request_info: RequestInfo = Field(..., alias="RequestInfo")
    resource_filters: list[ResourceFilter] = Field(default_factory=list, alias="Requests/resource_filters")


# --- Control API --------------------------------------------------------------


class ConfirmRequest(BaseModel):
    confirm: bool = Field(False, description="Operator confirmed the operation")
