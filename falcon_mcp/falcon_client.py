from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from .errors import ApiRequestError, AuthenticationError, error_message
from .settings import settings

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "falcon-mcp/1.0", "Accept": "application/json"}
TOKEN_ENDPOINT = "/oauth2/token"
# Refresh this many seconds before the platform-reported expiry.
TOKEN_REFRESH_MARGIN = 60
DEFAULT_LIMIT = 100


class AccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return self.expires_at - now > TOKEN_REFRESH_MARGIN


class TokenManager:
    """
    Holds the single OAuth2 bearer token shared by every request.

    Callers that find the token missing or about to expire all await the same
    in-flight exchange task, so they share its token or its AuthenticationError.
    The slot is cleared once the exchange finishes.
    """

    def __init__(self, client_id: str, client_secret: str,
                 clock: Callable[[], float] = time.monotonic):
        self.client_id = client_id
        self.client_secret = client_secret
        self._clock = clock
        self._token: AccessToken | None = None
        self._refresh: asyncio.Task[AccessToken] | None = None

    async def ensure(self, http: httpx.AsyncClient) -> str:
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value
        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._refresh_token(http))
        # shield: one cancelled caller must not cancel the exchange for the others
        token = await asyncio.shield(self._refresh)
        return token.value

    async def _refresh_token(self, http: httpx.AsyncClient) -> AccessToken:
        try:
            token = await self._exchange(http)
            self._token = token
            return token
        finally:
            self._refresh = None

    async def _exchange(self, http: httpx.AsyncClient) -> AccessToken:
        form = {"client_id": self.client_id, "client_secret": self.client_secret}
        try:
            r = await http.post(TOKEN_ENDPOINT, data=form)
        except httpx.HTTPError as e:
            raise AuthenticationError(str(e) or type(e).__name__) from e
        payload = _decode(r)
        if not r.is_success:
            raise AuthenticationError(
                error_message(payload) or f"HTTP {r.status_code} {r.reason_phrase}".strip()
            )
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthenticationError("token response did not include an access_token")
        try:
            expires_in = float(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            raise AuthenticationError(f"invalid expires_in: {payload.get('expires_in')!r}") from None
        logger.info("OAuth2 token acquired, expires_in=%s", payload.get("expires_in"))
        return AccessToken(value=payload["access_token"], expires_at=self._clock() + expires_in)


class SearchSpec(BaseModel):
    """Endpoints for a resource whose query API only returns IDs."""
    model_config = ConfigDict(frozen=True)

    query_endpoint: str
    detail_endpoint: str
    detail_method: str = "POST"
    id_param: str = "ids"

    @property
    def ids_in_query(self) -> bool:
        return self.detail_method == "GET"


HOSTS = SearchSpec(query_endpoint="/devices/queries/devices/v1",
                   detail_endpoint="/devices/entities/devices/v2")
DETECTIONS = SearchSpec(query_endpoint="/detects/queries/detects/v1",
                        detail_endpoint="/detects/entities/summaries/GET/v1")
INCIDENTS = SearchSpec(query_endpoint="/incidents/queries/incidents/v1",
                       detail_endpoint="/incidents/entities/incidents/GET/v1")
INDICATORS = SearchSpec(query_endpoint="/iocs/queries/indicators/v1",
                        detail_endpoint="/iocs/entities/indicators/v1", detail_method="GET")
HOST_GROUPS = SearchSpec(query_endpoint="/devices/queries/host-groups/v1",
                         detail_endpoint="/devices/entities/host-groups/v1", detail_method="GET")

HOST_ACTIONS_ENDPOINT = "/devices/entities/devices-actions/v2"
INDICATORS_ENDPOINT = "/iocs/entities/indicators/v1"


def _decode(r: httpx.Response) -> Any:
    if not r.content:
        return {}
    try:
        return r.json()
    except ValueError:
        return r.text


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop absent optional fields; ``0`` and ``False`` are kept."""
    return {k: v for k, v in values.items() if v is not None and v != "" and v != []}


class FalconClient:
    def __init__(self, client_id: str | None = None, client_secret: str | None = None,
                 base_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.base_url = (base_url or settings.crowdstrike_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.crowdstrike_timeout
        self.tokens = TokenManager(client_id or settings.crowdstrike_client_id,
                                   client_secret or settings.crowdstrike_client_secret,
                                   clock=clock)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(base_url=self.base_url,
                                         headers=DEFAULT_HEADERS.copy(),
                                         timeout=self.timeout,
                                         transport=self._transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FalconClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("client not started")
        return self._client

    async def ensure_authenticated(self) -> str:
        return await self.tokens.ensure(self._http)

    async def request(self, method: str, endpoint: str,
                      body: Dict[str, Any] | None = None,
                      params: Dict[str, Any] | None = None) -> Any:
        token = await self.ensure_authenticated()
        logger.debug("%s %s params=%s", method, endpoint, params)
        try:
            r = await self._http.request(method, endpoint, json=body, params=params,
                                         headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, endpoint, e)
            raise ApiRequestError(str(e) or type(e).__name__) from e
        payload = _decode(r)
        if not r.is_success:
            message = error_message(payload) or f"HTTP {r.status_code} {r.reason_phrase}".strip()
            logger.warning("%s %s returned %s: %s", method, endpoint, r.status_code, message)
            raise ApiRequestError(message, status=r.status_code, payload=payload)
        return payload

    # ---- shared shapes ----
    async def _fetch(self, spec: SearchSpec, ids: List[str]) -> Any:
        if spec.ids_in_query:
            return await self.request(spec.detail_method, spec.detail_endpoint,
                                      params={spec.id_param: list(ids)})
        return await self.request(spec.detail_method, spec.detail_endpoint,
                                  body={spec.id_param: list(ids)})

    async def _search_then_fetch(self, spec: SearchSpec, filter: Optional[str] = None,
                                 limit: int = DEFAULT_LIMIT, offset: Optional[int] = None,
                                 sort: Optional[str] = None) -> Any:
        params = _present({"limit": limit, "filter": filter, "offset": offset, "sort": sort})
        found = await self.request("GET", spec.query_endpoint, params=params)
        ids = found.get("resources") if isinstance(found, dict) else None
        if not ids:
            return {"resources": []}
        return await self._fetch(spec, ids)

    async def _host_action(self, action_name: str, host_ids: List[str]) -> Any:
        return await self.request("POST", HOST_ACTIONS_ENDPOINT, body={"ids": host_ids},
                                  params={"action_name": action_name})

    # ---- hosts ----
    async def search_hosts(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                           offset: Optional[int] = None, sort: Optional[str] = None) -> Any:
        return await self._search_then_fetch(HOSTS, filter, limit, offset, sort)

    async def get_host_details(self, host_ids: List[str]) -> Any:
        return await self._fetch(HOSTS, host_ids)

    async def contain_host(self, host_ids: List[str]) -> Any:
        return await self._host_action("contain", host_ids)

    async def lift_containment(self, host_ids: List[str]) -> Any:
        return await self._host_action("lift_containment", host_ids)

    async def hide_host(self, host_ids: List[str]) -> Any:
        return await self._host_action("hide_host", host_ids)

    async def unhide_host(self, host_ids: List[str]) -> Any:
        return await self._host_action("unhide_host", host_ids)

    # ---- detections ----
    async def search_detections(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                                offset: Optional[int] = None, sort: Optional[str] = None) -> Any:
        return await self._search_then_fetch(DETECTIONS, filter, limit, offset, sort)

    async def get_detection_details(self, detection_ids: List[str]) -> Any:
        return await self._fetch(DETECTIONS, detection_ids)

    async def update_detection_status(self, detection_ids: List[str], status: str,
                                      assigned_to_uuid: Optional[str] = None,
                                      comment: Optional[str] = None) -> Any:
        body = {"ids": detection_ids, "status": status}
        body.update(_present({"assigned_to_uuid": assigned_to_uuid, "comment": comment}))
        return await self.request("PATCH", "/detects/entities/detects/v2", body=body)

    # ---- incidents ----
    async def search_incidents(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                               offset: Optional[int] = None, sort: Optional[str] = None) -> Any:
        return await self._search_then_fetch(INCIDENTS, filter, limit, offset, sort)

    async def get_incident_details(self, incident_ids: List[str]) -> Any:
        return await self._fetch(INCIDENTS, incident_ids)

    async def update_incident(self, incident_ids: List[str], status: Optional[int] = None,
                              assigned_to_uuid: Optional[str] = None,
                              tags: Optional[List[str]] = None) -> Any:
        # Order matters: status, then assignment, then one entry per tag.
        actions: List[Dict[str, str]] = []
        if status is not None:
            actions.append({"name": "update_status", "value": str(status)})
        if assigned_to_uuid:
            actions.append({"name": "update_assigned_to_v2", "value": assigned_to_uuid})
        for tag in tags or []:
            actions.append({"name": "add_tag", "value": tag})
        return await self.request("POST", "/incidents/entities/incident-actions/v1",
                                  body={"ids": incident_ids, "action_parameters": actions})

    async def get_behaviors(self, behavior_ids: List[str]) -> Any:
        return await self.request("POST", "/incidents/entities/behaviors/GET/v1",
                                  body={"ids": behavior_ids})

    async def get_crowdscore(self) -> Any:
        return await self.request("GET", "/incidents/combined/crowdscores/v1")

    # ---- custom IOCs ----
    async def search_iocs(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                          offset: Optional[int] = None, sort: Optional[str] = None) -> Any:
        return await self._search_then_fetch(INDICATORS, filter, limit, offset, sort)

    async def get_ioc_details(self, ioc_ids: List[str]) -> Any:
        return await self._fetch(INDICATORS, ioc_ids)

    async def create_ioc(self, type: str, value: str, action: str, platforms: List[str],
                         description: Optional[str] = None, severity: Optional[str] = None,
                         expiration: Optional[str] = None,
                         tags: Optional[List[str]] = None) -> Any:
        indicator: Dict[str, Any] = {
            "type": type,
            "value": value,
            "action": action,
            "platforms": platforms,
            "applied_globally": True,
        }
        indicator.update(_present({"description": description, "severity": severity,
                                   "expiration": expiration, "tags": tags}))
        return await self.request("POST", INDICATORS_ENDPOINT, body={"indicators": [indicator]})

    async def delete_ioc(self, ioc_ids: List[str]) -> Any:
        return await self.request("DELETE", INDICATORS_ENDPOINT, params={"ids": ioc_ids})

    # ---- spotlight ----
    async def search_vulnerabilities(self, filter: Optional[str] = None,
                                     limit: int = DEFAULT_LIMIT,
                                     facet: Optional[List[str]] = None) -> Any:
        params = _present({"limit": limit, "filter": filter, "facet": facet})
        return await self.request("GET", "/spotlight/combined/vulnerabilities/v1", params=params)

    # ---- host groups ----
    async def search_host_groups(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                                 offset: Optional[int] = None) -> Any:
        return await self._search_then_fetch(HOST_GROUPS, filter, limit, offset)

    # ---- sensors ----
    async def get_sensor_installer_details(self, filter: Optional[str] = None,
                                           limit: int = DEFAULT_LIMIT) -> Any:
        params = _present({"limit": limit, "filter": filter})
        return await self.request("GET", "/sensors/combined/installers/v2", params=params)

    # ---- alerts ----
    async def search_alerts(self, filter: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                            offset: Optional[int] = None, sort: Optional[str] = None) -> Any:
        params = _present({"limit": limit, "filter": filter, "offset": offset, "sort": sort})
        return await self.request("GET", "/alerts/queries/alerts/v2", params=params)

    async def get_alert_details(self, alert_ids: List[str]) -> Any:
        return await self.request("POST", "/alerts/entities/alerts/v2",
                                  body={"composite_ids": alert_ids})

    async def update_alerts(self, alert_ids: List[str], action: str,
                            value: Optional[str] = None) -> Any:
        body = {
            "composite_ids": alert_ids,
            "action_parameters": [{"name": action, "value": value or ""}],
        }
        return await self.request("PATCH", "/alerts/entities/alerts/v3", body=body)
