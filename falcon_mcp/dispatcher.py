from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping

from pydantic import ValidationError

from .errors import FalconError, UnknownToolError
from .falcon_client import FalconClient
from .models import TOOL_ARGUMENTS, TextContent, ToolName, ToolResponse

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


def success(result: Any) -> ToolResponse:
    text = json.dumps(result, indent=2, ensure_ascii=False)
    return ToolResponse(content=[TextContent(text=text)])


def failure(message: str) -> ToolResponse:
    return ToolResponse(content=[TextContent(text=f"Error: {message}")], is_error=True)


def _describe(name: str, e: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in e.errors()
    )
    return f"Invalid arguments for {name}: {problems}"


class Dispatcher:
    """Routes one tool invocation to one FalconClient call."""

    def __init__(self, client: FalconClient):
        self.client = client
        c = client
        self._handlers: Dict[ToolName, Handler] = {
            ToolName.SEARCH_HOSTS: lambda a: c.search_hosts(a.filter, a.limit, a.offset, a.sort),
            ToolName.GET_HOST_DETAILS: lambda a: c.get_host_details(a.host_ids),
            ToolName.CONTAIN_HOST: lambda a: c.contain_host(a.host_ids),
            ToolName.LIFT_CONTAINMENT: lambda a: c.lift_containment(a.host_ids),
            ToolName.HIDE_HOST: lambda a: c.hide_host(a.host_ids),
            ToolName.UNHIDE_HOST: lambda a: c.unhide_host(a.host_ids),
            ToolName.SEARCH_DETECTIONS: lambda a: c.search_detections(a.filter, a.limit, a.offset, a.sort),
            ToolName.GET_DETECTION_DETAILS: lambda a: c.get_detection_details(a.detection_ids),
            ToolName.UPDATE_DETECTION: lambda a: c.update_detection_status(
                a.detection_ids, a.status, a.assigned_to_uuid, a.comment),
            ToolName.SEARCH_INCIDENTS: lambda a: c.search_incidents(a.filter, a.limit, a.offset, a.sort),
            ToolName.GET_INCIDENT_DETAILS: lambda a: c.get_incident_details(a.incident_ids),
            ToolName.UPDATE_INCIDENT: lambda a: c.update_incident(
                a.incident_ids, a.status, a.assigned_to_uuid, a.tags),
            ToolName.GET_BEHAVIORS: lambda a: c.get_behaviors(a.behavior_ids),
            ToolName.GET_CROWDSCORE: lambda a: c.get_crowdscore(),
            ToolName.SEARCH_IOCS: lambda a: c.search_iocs(a.filter, a.limit, a.offset, a.sort),
            ToolName.GET_IOC_DETAILS: lambda a: c.get_ioc_details(a.ioc_ids),
            ToolName.CREATE_IOC: lambda a: c.create_ioc(
                a.type, a.value, a.action, a.platforms,
                a.description, a.severity, a.expiration, a.tags),
            ToolName.DELETE_IOC: lambda a: c.delete_ioc(a.ioc_ids),
            ToolName.SEARCH_VULNERABILITIES: lambda a: c.search_vulnerabilities(a.filter, a.limit, a.facet),
            ToolName.SEARCH_HOST_GROUPS: lambda a: c.search_host_groups(a.filter, a.limit, a.offset),
            ToolName.GET_SENSOR_INSTALLERS: lambda a: c.get_sensor_installer_details(a.filter, a.limit),
            ToolName.SEARCH_ALERTS: lambda a: c.search_alerts(a.filter, a.limit, a.offset, a.sort),
            ToolName.GET_ALERT_DETAILS: lambda a: c.get_alert_details(a.alert_ids),
            ToolName.UPDATE_ALERTS: lambda a: c.update_alerts(a.alert_ids, a.action, a.value),
        }

    async def invoke(self, name: str, arguments: Mapping[str, Any] | None = None) -> Any:
        """Run the tool and return the raw API result; errors propagate."""
        try:
            tool = ToolName(name)
        except ValueError:
            raise UnknownToolError(name) from None
        args = TOOL_ARGUMENTS[tool].model_validate(dict(arguments or {}))
        return await self._handlers[tool](args)

    async def dispatch(self, name: str, arguments: Mapping[str, Any] | None = None) -> ToolResponse:
        """Run the tool and wrap the outcome; never raises."""
        logger.debug("Dispatching %s", name)
        try:
            result = await self.invoke(name, arguments)
        except ValidationError as e:
            message = _describe(name, e)
            logger.warning(message)
            return failure(message)
        except FalconError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return failure(str(e))
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return failure(str(e) or type(e).__name__)
        return success(result)
