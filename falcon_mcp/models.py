from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolName(str, Enum):
    SEARCH_HOSTS = "crowdstrike_search_hosts"
    GET_HOST_DETAILS = "crowdstrike_get_host_details"
    CONTAIN_HOST = "crowdstrike_contain_host"
    LIFT_CONTAINMENT = "crowdstrike_lift_containment"
    HIDE_HOST = "crowdstrike_hide_host"
    UNHIDE_HOST = "crowdstrike_unhide_host"
    SEARCH_DETECTIONS = "crowdstrike_search_detections"
    GET_DETECTION_DETAILS = "crowdstrike_get_detection_details"
    UPDATE_DETECTION = "crowdstrike_update_detection"
    SEARCH_INCIDENTS = "crowdstrike_search_incidents"
    GET_INCIDENT_DETAILS = "crowdstrike_get_incident_details"
    UPDATE_INCIDENT = "crowdstrike_update_incident"
    GET_BEHAVIORS = "crowdstrike_get_behaviors"
    GET_CROWDSCORE = "crowdstrike_get_crowdscore"
    SEARCH_IOCS = "crowdstrike_search_iocs"
    GET_IOC_DETAILS = "crowdstrike_get_ioc_details"
    CREATE_IOC = "crowdstrike_create_ioc"
    DELETE_IOC = "crowdstrike_delete_ioc"
    SEARCH_VULNERABILITIES = "crowdstrike_search_vulnerabilities"
    SEARCH_HOST_GROUPS = "crowdstrike_search_host_groups"
    GET_SENSOR_INSTALLERS = "crowdstrike_get_sensor_installers"
    SEARCH_ALERTS = "crowdstrike_search_alerts"
    GET_ALERT_DETAILS = "crowdstrike_get_alert_details"
    UPDATE_ALERTS = "crowdstrike_update_alerts"


DetectionStatus = Literal["new", "in_progress", "true_positive", "false_positive", "closed", "reopened"]
IncidentStatus = Literal[20, 25, 30, 40]  # New, Reopened, In Progress, Closed
IocType = Literal["sha256", "md5", "domain", "ipv4", "ipv6"]
IocAction = Literal["detect", "prevent", "no_action"]
IocPlatform = Literal["windows", "mac", "linux"]
IocSeverity = Literal["informational", "low", "medium", "high", "critical"]
AlertAction = Literal["update_status", "assign_to_uuid", "add_tag", "remove_tag", "show_in_ui", "unassign"]


# ---- Search ----
class FilterArgs(BaseModel):
    filter: str | None = None
    limit: int = Field(default=100, ge=1)

    @field_validator("limit", mode="before")
    @classmethod
    def _default_when_unset(cls, v: Any) -> Any:
        # 0 and null mean "use the default", like an omitted limit
        return 100 if v is None or v == 0 else v


class PagedSearchArgs(FilterArgs):
    offset: int | None = Field(default=None, ge=0)


class SortedSearchArgs(PagedSearchArgs):
    sort: str | None = None


class VulnerabilitySearchArgs(FilterArgs):
    facet: List[str] | None = None


class NoArgs(BaseModel):
    pass


# ---- Hosts ----
class HostIdsArgs(BaseModel):
    host_ids: List[str]


# ---- Detections ----
class DetectionIdsArgs(BaseModel):
    detection_ids: List[str]


class UpdateDetectionArgs(DetectionIdsArgs):
    status: DetectionStatus
    assigned_to_uuid: str | None = None
    comment: str | None = None


# ---- Incidents ----
class IncidentIdsArgs(BaseModel):
    incident_ids: List[str]


class UpdateIncidentArgs(IncidentIdsArgs):
    status: IncidentStatus | None = None
    assigned_to_uuid: str | None = None
    tags: List[str] | None = None


class BehaviorIdsArgs(BaseModel):
    behavior_ids: List[str]


# ---- IOCs ----
class IocIdsArgs(BaseModel):
    ioc_ids: List[str]


class CreateIocArgs(BaseModel):
    type: IocType
    value: str
    action: IocAction
    platforms: List[IocPlatform]
    description: str | None = None
    severity: IocSeverity | None = None
    expiration: str | None = None
    tags: List[str] | None = None


# ---- Alerts ----
class AlertIdsArgs(BaseModel):
    alert_ids: List[str]


class UpdateAlertsArgs(AlertIdsArgs):
    action: AlertAction
    value: str | None = None


TOOL_ARGUMENTS: Dict[ToolName, Type[BaseModel]] = {
    ToolName.SEARCH_HOSTS: SortedSearchArgs,
    ToolName.GET_HOST_DETAILS: HostIdsArgs,
    ToolName.CONTAIN_HOST: HostIdsArgs,
    ToolName.LIFT_CONTAINMENT: HostIdsArgs,
    ToolName.HIDE_HOST: HostIdsArgs,
    ToolName.UNHIDE_HOST: HostIdsArgs,
    ToolName.SEARCH_DETECTIONS: SortedSearchArgs,
    ToolName.GET_DETECTION_DETAILS: DetectionIdsArgs,
    ToolName.UPDATE_DETECTION: UpdateDetectionArgs,
    ToolName.SEARCH_INCIDENTS: SortedSearchArgs,
    ToolName.GET_INCIDENT_DETAILS: IncidentIdsArgs,
    ToolName.UPDATE_INCIDENT: UpdateIncidentArgs,
    ToolName.GET_BEHAVIORS: BehaviorIdsArgs,
    ToolName.GET_CROWDSCORE: NoArgs,
    ToolName.SEARCH_IOCS: SortedSearchArgs,
    ToolName.GET_IOC_DETAILS: IocIdsArgs,
    ToolName.CREATE_IOC: CreateIocArgs,
    ToolName.DELETE_IOC: IocIdsArgs,
    ToolName.SEARCH_VULNERABILITIES: VulnerabilitySearchArgs,
    ToolName.SEARCH_HOST_GROUPS: PagedSearchArgs,
    ToolName.GET_SENSOR_INSTALLERS: FilterArgs,
    ToolName.SEARCH_ALERTS: SortedSearchArgs,
    ToolName.GET_ALERT_DETAILS: AlertIdsArgs,
    ToolName.UPDATE_ALERTS: UpdateAlertsArgs,
}


# ---- Response envelope ----
class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    content: List[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")
    model_config = ConfigDict(populate_by_name=True)

    @property
    def text(self) -> str:
        return "\n".join(c.text for c in self.content)
