# falcon_mcp/server.py
from __future__ import annotations

import asyncio
from typing import Annotated, Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from .dispatcher import Dispatcher
from .falcon_client import FalconClient
from .models import (
    AlertAction,
    DetectionStatus,
    IncidentStatus,
    IocAction,
    IocPlatform,
    IocSeverity,
    IocType,
    ToolName,
)

# -------------------- FastMCP server config --------------------
mcp = FastMCP("CrowdStrike Falcon MCP")


# -------------------- Lazy, shared Falcon client --------------------
_dispatcher: Dispatcher | None = None
_dispatcher_lock = asyncio.Lock()


async def _get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is not None:
        return _dispatcher
    async with _dispatcher_lock:
        if _dispatcher is None:
            c = FalconClient()  # uses settings.crowdstrike_* values
            await c.start()
            _dispatcher = Dispatcher(c)
    return _dispatcher


async def _call(tool: ToolName, arguments: Dict[str, Any]) -> str:
    """
    Hand the invocation to the dispatcher and translate its envelope back into
    FastMCP terms: text on success, ToolError (isError=true) on failure.
    """
    dispatcher = await _get_dispatcher()
    given = {k: v for k, v in arguments.items() if v is not None}
    response = await dispatcher.dispatch(tool.value, given)
    if response.is_error:
        raise ToolError(response.text)
    return response.text


HostIds = Annotated[List[str], "Array of host/device IDs"]
Limit = Annotated[int, "Maximum number of records to return (default: 100)"]
Offset = Annotated[Optional[int], "Offset for pagination"]


# -------------------- Hosts --------------------
@mcp.tool(
    name=ToolName.SEARCH_HOSTS.value,
    description="Search for hosts/devices in CrowdStrike Falcon. Use FQL (Falcon Query Language) filters to narrow results. Returns host details including hostname, OS, last seen, sensor version, and containment status."
)
async def search_hosts(
    filter: Annotated[Optional[str], "FQL filter for hosts. Examples: 'hostname:*web*', 'platform_name:Windows', \"last_seen:>='2024-01-01'\""] = None,
    limit: Annotated[int, "Maximum number of hosts to return (default: 100, max: 500)"] = 100,
    offset: Offset = None,
    sort: Annotated[Optional[str], "Sort field and direction. Example: 'last_seen|desc'"] = None,
) -> str:
    """
    Two calls under the hood:
      GET  /devices/queries/devices/v1   -> matching device IDs
      POST /devices/entities/devices/v2  -> full device records (skipped when no IDs match)
    """
    return await _call(ToolName.SEARCH_HOSTS, locals())


@mcp.tool(
    name=ToolName.GET_HOST_DETAILS.value,
    description="Get detailed information about specific hosts by their device IDs."
)
async def get_host_details(host_ids: HostIds) -> str:
    return await _call(ToolName.GET_HOST_DETAILS, locals())


@mcp.tool(
    name=ToolName.CONTAIN_HOST.value,
    description="Network contain one or more hosts. This isolates the host from the network while maintaining connection to CrowdStrike cloud."
)
async def contain_host(host_ids: Annotated[List[str], "Array of host/device IDs to contain"]) -> str:
    return await _call(ToolName.CONTAIN_HOST, locals())


@mcp.tool(
    name=ToolName.LIFT_CONTAINMENT.value,
    description="Lift network containment from one or more hosts, restoring normal network access."
)
async def lift_containment(host_ids: Annotated[List[str], "Array of host/device IDs to uncontain"]) -> str:
    return await _call(ToolName.LIFT_CONTAINMENT, locals())


@mcp.tool(
    name=ToolName.HIDE_HOST.value,
    description="Hide hosts from the Falcon console. Useful for decommissioned systems."
)
async def hide_host(host_ids: Annotated[List[str], "Array of host/device IDs to hide"]) -> str:
    return await _call(ToolName.HIDE_HOST, locals())


@mcp.tool(
    name=ToolName.UNHIDE_HOST.value,
    description="Unhide previously hidden hosts in the Falcon console."
)
async def unhide_host(host_ids: Annotated[List[str], "Array of host/device IDs to unhide"]) -> str:
    return await _call(ToolName.UNHIDE_HOST, locals())


# -------------------- Detections --------------------
@mcp.tool(
    name=ToolName.SEARCH_DETECTIONS.value,
    description="Search for detections in CrowdStrike Falcon. Use FQL filters to find specific detections by severity, status, technique, or other criteria."
)
async def search_detections(
    filter: Annotated[Optional[str], "FQL filter for detections. Examples: 'status:new', 'max_severity_displayname:Critical', 'behaviors.technique:T1059'"] = None,
    limit: Limit = 100,
    offset: Offset = None,
    sort: Annotated[Optional[str], "Sort field and direction. Example: 'last_behavior|desc'"] = None,
) -> str:
    return await _call(ToolName.SEARCH_DETECTIONS, locals())


@mcp.tool(
    name=ToolName.GET_DETECTION_DETAILS.value,
    description="Get detailed information about specific detections by their IDs."
)
async def get_detection_details(detection_ids: Annotated[List[str], "Array of detection IDs to retrieve"]) -> str:
    return await _call(ToolName.GET_DETECTION_DETAILS, locals())


@mcp.tool(
    name=ToolName.UPDATE_DETECTION.value,
    description="Update detection status, assignment, or add comments. Valid statuses: new, in_progress, true_positive, false_positive, closed, reopened."
)
async def update_detection(
    detection_ids: Annotated[List[str], "Array of detection IDs to update"],
    status: Annotated[DetectionStatus, "New status for the detection"],
    assigned_to_uuid: Annotated[Optional[str], "UUID of user to assign the detection to"] = None,
    comment: Annotated[Optional[str], "Comment to add to the detection"] = None,
) -> str:
    return await _call(ToolName.UPDATE_DETECTION, locals())


# -------------------- Incidents --------------------
@mcp.tool(
    name=ToolName.SEARCH_INCIDENTS.value,
    description="Search for incidents in CrowdStrike Falcon. Incidents group related detections and behaviors."
)
async def search_incidents(
    filter: Annotated[Optional[str], "FQL filter for incidents. Examples: 'status:20' (in_progress), 'fine_score:>=75'"] = None,
    limit: Limit = 100,
    offset: Offset = None,
    sort: Annotated[Optional[str], "Sort field and direction. Example: 'start|desc'"] = None,
) -> str:
    return await _call(ToolName.SEARCH_INCIDENTS, locals())


@mcp.tool(
    name=ToolName.GET_INCIDENT_DETAILS.value,
    description="Get detailed information about specific incidents by their IDs."
)
async def get_incident_details(incident_ids: Annotated[List[str], "Array of incident IDs to retrieve"]) -> str:
    return await _call(ToolName.GET_INCIDENT_DETAILS, locals())


@mcp.tool(
    name=ToolName.UPDATE_INCIDENT.value,
    description="Update incident status, assignment, or add tags. Status values: 20=New, 25=Reopened, 30=In Progress, 40=Closed."
)
async def update_incident(
    incident_ids: Annotated[List[str], "Array of incident IDs to update"],
    status: Annotated[Optional[IncidentStatus], "New status: 20=New, 25=Reopened, 30=In Progress, 40=Closed"] = None,
    assigned_to_uuid: Annotated[Optional[str], "UUID of user to assign the incident to"] = None,
    tags: Annotated[Optional[List[str]], "Tags to add to the incident"] = None,
) -> str:
    return await _call(ToolName.UPDATE_INCIDENT, locals())


@mcp.tool(
    name=ToolName.GET_BEHAVIORS.value,
    description="Get detailed behavior information by behavior IDs. Behaviors represent individual malicious activities."
)
async def get_behaviors(behavior_ids: Annotated[List[str], "Array of behavior IDs to retrieve"]) -> str:
    return await _call(ToolName.GET_BEHAVIORS, locals())


@mcp.tool(
    name=ToolName.GET_CROWDSCORE.value,
    description="Get the CrowdScore - an overall security posture score for your environment based on active incidents and their severity."
)
async def get_crowdscore() -> str:
    return await _call(ToolName.GET_CROWDSCORE, {})


# -------------------- Custom IOCs --------------------
@mcp.tool(
    name=ToolName.SEARCH_IOCS.value,
    description="Search for custom IOCs (Indicators of Compromise) configured in CrowdStrike. These are user-defined indicators for detection."
)
async def search_iocs(
    filter: Annotated[Optional[str], "FQL filter for IOCs. Examples: 'type:sha256', 'action:detect'"] = None,
    limit: Limit = 100,
    offset: Offset = None,
    sort: Annotated[Optional[str], "Sort field and direction"] = None,
) -> str:
    return await _call(ToolName.SEARCH_IOCS, locals())


@mcp.tool(
    name=ToolName.GET_IOC_DETAILS.value,
    description="Get detailed information about specific IOCs by their IDs."
)
async def get_ioc_details(ioc_ids: Annotated[List[str], "Array of IOC IDs to retrieve"]) -> str:
    return await _call(ToolName.GET_IOC_DETAILS, locals())


@mcp.tool(
    name=ToolName.CREATE_IOC.value,
    description="Create a new custom IOC for detection or prevention. Supported types: sha256, md5, domain, ipv4, ipv6."
)
async def create_ioc(
    type: Annotated[IocType, "Type of indicator"],
    value: Annotated[str, "The indicator value (hash, domain, or IP)"],
    action: Annotated[IocAction, "Action to take when IOC is matched: detect (alert), prevent (block), or no_action"],
    platforms: Annotated[List[IocPlatform], "Platforms where this IOC applies"],
    description: Annotated[Optional[str], "Description of the IOC"] = None,
    severity: Annotated[Optional[IocSeverity], "Severity level of the IOC"] = None,
    expiration: Annotated[Optional[str], "Expiration date in ISO 8601 format (e.g., 2024-12-31T23:59:59Z)"] = None,
    tags: Annotated[Optional[List[str]], "Tags to associate with the IOC"] = None,
) -> str:
    """
    POST /iocs/entities/indicators/v1

    Request body:
      {"indicators": [{"type": "sha256", "value": "...", "action": "detect",
                       "platforms": ["windows"], "applied_globally": true}]}

    Optional fields are only sent when given.
    """
    return await _call(ToolName.CREATE_IOC, locals())


@mcp.tool(
    name=ToolName.DELETE_IOC.value,
    description="Delete custom IOCs by their IDs."
)
async def delete_ioc(ioc_ids: Annotated[List[str], "Array of IOC IDs to delete"]) -> str:
    return await _call(ToolName.DELETE_IOC, locals())


# -------------------- Spotlight --------------------
@mcp.tool(
    name=ToolName.SEARCH_VULNERABILITIES.value,
    description="Search for vulnerabilities discovered by CrowdStrike Spotlight. Returns vulnerability information including CVE, severity, and affected hosts."
)
async def search_vulnerabilities(
    filter: Annotated[Optional[str], "FQL filter for vulnerabilities. Examples: 'cve.severity:CRITICAL', 'status:open'"] = None,
    limit: Limit = 100,
    facet: Annotated[Optional[List[str]], "Facets to include in response for aggregations"] = None,
) -> str:
    return await _call(ToolName.SEARCH_VULNERABILITIES, locals())


# -------------------- Host groups --------------------
@mcp.tool(
    name=ToolName.SEARCH_HOST_GROUPS.value,
    description="Search for host groups in CrowdStrike. Host groups are used to organize and manage collections of hosts."
)
async def search_host_groups(
    filter: Annotated[Optional[str], "FQL filter for host groups. Example: 'name:*Production*'"] = None,
    limit: Limit = 100,
    offset: Offset = None,
) -> str:
    return await _call(ToolName.SEARCH_HOST_GROUPS, locals())


# -------------------- Sensors --------------------
@mcp.tool(
    name=ToolName.GET_SENSOR_INSTALLERS.value,
    description="Get information about available Falcon sensor installers for deployment. Includes version info and download details."
)
async def get_sensor_installers(
    filter: Annotated[Optional[str], "FQL filter for installers. Example: 'platform:windows'"] = None,
    limit: Limit = 100,
) -> str:
    return await _call(ToolName.GET_SENSOR_INSTALLERS, locals())


# -------------------- Alerts --------------------
@mcp.tool(
    name=ToolName.SEARCH_ALERTS.value,
    description="Search for alerts (v2 API) in CrowdStrike Falcon. Alerts provide a unified view of security events. Returns alert composite IDs; use crowdstrike_get_alert_details for full records."
)
async def search_alerts(
    filter: Annotated[Optional[str], "FQL filter for alerts. Examples: 'severity:>=3', 'status:open'"] = None,
    limit: Limit = 100,
    offset: Offset = None,
    sort: Annotated[Optional[str], "Sort field and direction. Example: 'created_timestamp|desc'"] = None,
) -> str:
    return await _call(ToolName.SEARCH_ALERTS, locals())


@mcp.tool(
    name=ToolName.GET_ALERT_DETAILS.value,
    description="Get detailed information about specific alerts by their composite IDs."
)
async def get_alert_details(alert_ids: Annotated[List[str], "Array of alert composite IDs to retrieve"]) -> str:
    return await _call(ToolName.GET_ALERT_DETAILS, locals())


@mcp.tool(
    name=ToolName.UPDATE_ALERTS.value,
    description="Update alert status. Actions include: update_status, assign_to_uuid, add_tag, remove_tag, show_in_ui, unassign."
)
async def update_alerts(
    alert_ids: Annotated[List[str], "Array of alert composite IDs to update"],
    action: Annotated[AlertAction, "Action to perform on the alerts"],
    value: Annotated[Optional[str], "Value for the action (e.g., status value, UUID, tag name)"] = None,
) -> str:
    return await _call(ToolName.UPDATE_ALERTS, locals())


@mcp.resource("health://ready")
def health_ready() -> str:
    return "ok"


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> PlainTextResponse:
    return PlainTextResponse("OK")
