"""
Web API Registry Client - Implements RegistryClient over the Dataverse Web API.

Plugin types, processing steps and step images are read and written through
the plugintypes, sdkmessageprocessingsteps and sdkmessageprocessingstepimages
entity sets. Message and message-filter lookups are resolved by name and
cached for the lifetime of the client.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from registry.base import RegistryClient, RegistryError, TransientRegistryError

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
ENTITY_ID_PATTERN = re.compile(r"\(([0-9a-fA-F-]{36})\)\s*$")

TRANSIENT_STATUSES = (429, 502, 503, 504)

# Primary entity used by steps registered without a message filter
NO_ENTITY = "none"


class WebApiRegistryClient(RegistryClient):
    """
    Registry client for the Dataverse Web API.

    The scope is a plugin assembly, given either by its id or by its name.
    Records returned by the list operations use the same platform field
    names the reconciler writes back (see remote_state).
    """

    def __init__(self):
        self.base_url: str = ""
        self.token: Optional[str] = None
        self.api_version: str = "9.2"
        self.timeout: float = 30.0
        self._assembly_ids: Dict[str, str] = {}
        self._message_ids: Dict[str, str] = {}
        self._filter_ids: Dict[Tuple[str, str], str] = {}

    @property
    def name(self) -> str:
        return "webapi"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load Web API client configuration from environment variables."""
        return {
            "url": os.getenv("DATAVERSE_URL", ""),
            "token": os.getenv("DATAVERSE_TOKEN", ""),
            "api_version": os.getenv("DATAVERSE_API_VERSION", "9.2"),
            "timeout": float(os.getenv("REGISTRY_TIMEOUT", "30")),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the client with configuration."""
        self.base_url = config.get("url", self.base_url).rstrip("/")
        self.token = config.get("token") or None
        self.api_version = config.get("api_version", self.api_version)
        self.timeout = config.get("timeout", self.timeout)

        if not self.base_url:
            raise ValueError("Web API url not configured. Set DATAVERSE_URL.")
        if not self.token:
            logger.warning(
                "Web API token not configured. Set DATAVERSE_TOKEN environment variable."
            )

        logger.debug(
            f"Web API registry client initialized: url={self.base_url}, "
            f"api_version={self.api_version}, timeout={self.timeout}s"
        )

    # List operations

    async def list_plugin_types(self, scope: str) -> List[Dict[str, Any]]:
        assembly_id = await self._resolve_assembly(scope)
        rows = await self._get_all(
            "plugintypes",
            {
                "$select": "plugintypeid,typename,name",
                "$filter": f"_pluginassemblyid_value eq {assembly_id}",
            },
        )
        return [
            {
                "plugintypeid": row["plugintypeid"],
                "typename": row["typename"],
                "name": row.get("name"),
                "pluginassemblyid": scope,
            }
            for row in rows
        ]

    async def list_steps(self, scope: str) -> List[Dict[str, Any]]:
        assembly_id = await self._resolve_assembly(scope)
        rows = await self._get_all(
            "sdkmessageprocessingsteps",
            {
                "$select": (
                    "sdkmessageprocessingstepid,name,stage,mode,rank,"
                    "filteringattributes,configuration,_plugintypeid_value"
                ),
                "$expand": (
                    "sdkmessageid($select=name),"
                    "sdkmessagefilterid($select=primaryobjecttypecode)"
                ),
                "$filter": f"plugintypeid/_pluginassemblyid_value eq {assembly_id}",
            },
        )
        steps = []
        for row in rows:
            message = (row.get("sdkmessageid") or {}).get("name")
            message_filter = row.get("sdkmessagefilterid") or {}
            steps.append(
                {
                    "sdkmessageprocessingstepid": row["sdkmessageprocessingstepid"],
                    "plugintypeid": row["_plugintypeid_value"],
                    "name": row.get("name"),
                    "message": message,
                    "primaryentity": message_filter.get("primaryobjecttypecode")
                    or NO_ENTITY,
                    "stage": row["stage"],
                    "mode": row["mode"],
                    "rank": row["rank"],
                    "filteringattributes": row.get("filteringattributes"),
                    "configuration": row.get("configuration"),
                }
            )
        return steps

    async def list_images(self, scope: str) -> List[Dict[str, Any]]:
        assembly_id = await self._resolve_assembly(scope)
        rows = await self._get_all(
            "sdkmessageprocessingstepimages",
            {
                "$select": (
                    "sdkmessageprocessingstepimageid,imagetype,name,entityalias,"
                    "attributes,messagepropertyname,_sdkmessageprocessingstepid_value"
                ),
                "$filter": (
                    "sdkmessageprocessingstepid/plugintypeid/"
                    f"_pluginassemblyid_value eq {assembly_id}"
                ),
            },
        )
        return [
            {
                "sdkmessageprocessingstepimageid": row["sdkmessageprocessingstepimageid"],
                "sdkmessageprocessingstepid": row["_sdkmessageprocessingstepid_value"],
                "imagetype": row["imagetype"],
                "name": row.get("name"),
                "entityalias": row.get("entityalias"),
                "attributes": row.get("attributes"),
                "messagepropertyname": row.get("messagepropertyname"),
            }
            for row in rows
        ]

    # Mutations

    async def create_plugin_type(self, record: Dict[str, Any]) -> str:
        assembly_id = await self._resolve_assembly(record["pluginassemblyid"])
        body = {
            "typename": record["typename"],
            "name": record.get("name", record["typename"]),
            "friendlyname": record.get("friendlyname", record["typename"]),
            "pluginassemblyid@odata.bind": f"/pluginassemblies({assembly_id})",
        }
        return await self._create("plugintypes", body)

    async def create_step(self, record: Dict[str, Any]) -> str:
        message_id = await self._resolve_message(record["message"])
        body = {
            k: v
            for k, v in record.items()
            if k not in ("plugintypeid", "message", "primaryentity")
        }
        body["plugintypeid@odata.bind"] = f"/plugintypes({record['plugintypeid']})"
        body["sdkmessageid@odata.bind"] = f"/sdkmessages({message_id})"
        entity = record.get("primaryentity") or NO_ENTITY
        if entity not in (NO_ENTITY, "*"):
            filter_id = await self._resolve_filter(message_id, entity)
            body["sdkmessagefilterid@odata.bind"] = f"/sdkmessagefilters({filter_id})"
        return await self._create("sdkmessageprocessingsteps", body)

    async def update_step(self, step_id: str, changes: Dict[str, Any]) -> None:
        await self._request(
            "PATCH", f"sdkmessageprocessingsteps({step_id})", json=changes
        )

    async def create_image(self, record: Dict[str, Any]) -> str:
        body = {k: v for k, v in record.items() if k != "sdkmessageprocessingstepid"}
        body["sdkmessageprocessingstepid@odata.bind"] = (
            f"/sdkmessageprocessingsteps({record['sdkmessageprocessingstepid']})"
        )
        return await self._create("sdkmessageprocessingstepimages", body)

    async def update_image(self, image_id: str, changes: Dict[str, Any]) -> None:
        await self._request(
            "PATCH", f"sdkmessageprocessingstepimages({image_id})", json=changes
        )

    async def delete_plugin_type(self, plugin_type_id: str) -> None:
        await self._request("DELETE", f"plugintypes({plugin_type_id})")

    async def delete_step(self, step_id: str) -> None:
        await self._request("DELETE", f"sdkmessageprocessingsteps({step_id})")

    async def delete_image(self, image_id: str) -> None:
        await self._request("DELETE", f"sdkmessageprocessingstepimages({image_id})")

    # Private helper methods

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Web API requests."""
        headers = {
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}/api/data/v{self.api_version}/{path}"

    async def _request(
        self, method: str, path: str, **kwargs
    ) -> Tuple[Optional[Dict[str, Any]], Dict[str, str]]:
        """
        Issue a Web API request.

        Returns:
            Tuple of (JSON body or None, response headers).

        Raises:
            TransientRegistryError: On throttling or connection failures.
            RegistryError: On any other non-2xx response.
        """
        url = self._url(path)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=self._get_headers(), **kwargs
                ) as response:
                    if response.status in TRANSIENT_STATUSES:
                        raise TransientRegistryError(
                            f"{method} {path} throttled: HTTP {response.status}",
                            status=response.status,
                        )
                    if response.status >= 400:
                        detail = await response.text()
                        raise RegistryError(
                            f"{method} {path} failed: HTTP {response.status} - {detail}",
                            status=response.status,
                        )
                    body = None
                    if response.status != 204:
                        body = await response.json()
                    return body, dict(response.headers)
        except aiohttp.ClientConnectionError as e:
            raise TransientRegistryError(f"{method} {path} connection error: {e}")
        except aiohttp.ClientError as e:
            raise RegistryError(f"{method} {path} failed: {e}")

    async def _get_all(
        self, path: str, params: Dict[str, str]
    ) -> List[Dict[str, Any]]:
        """GET a collection, following @odata.nextLink paging."""
        rows: List[Dict[str, Any]] = []
        body, _ = await self._request("GET", path, params=params)
        while body is not None:
            rows.extend(body.get("value", []))
            next_link = body.get("@odata.nextLink")
            if not next_link:
                break
            body, _ = await self._request("GET", next_link)
        return rows

    async def _create(self, path: str, body: Dict[str, Any]) -> str:
        """POST a record and return the id from the OData-EntityId header."""
        _, headers = await self._request("POST", path, json=body)
        entity_id = headers.get("OData-EntityId", "")
        match = ENTITY_ID_PATTERN.search(entity_id)
        if not match:
            raise RegistryError(f"POST {path} returned no OData-EntityId header")
        return match.group(1)

    async def _resolve_assembly(self, scope: str) -> str:
        if GUID_PATTERN.match(scope):
            return scope
        if scope not in self._assembly_ids:
            rows = await self._get_all(
                "pluginassemblies",
                {"$select": "pluginassemblyid", "$filter": f"name eq '{scope}'"},
            )
            if not rows:
                raise RegistryError(f"Plugin assembly '{scope}' not found", status=404)
            self._assembly_ids[scope] = rows[0]["pluginassemblyid"]
        return self._assembly_ids[scope]

    async def _resolve_message(self, message: str) -> str:
        if message not in self._message_ids:
            rows = await self._get_all(
                "sdkmessages",
                {"$select": "sdkmessageid", "$filter": f"name eq '{message}'"},
            )
            if not rows:
                raise RegistryError(f"SDK message '{message}' not found", status=404)
            self._message_ids[message] = rows[0]["sdkmessageid"]
        return self._message_ids[message]

    async def _resolve_filter(self, message_id: str, entity: str) -> str:
        key = (message_id, entity)
        if key not in self._filter_ids:
            rows = await self._get_all(
                "sdkmessagefilters",
                {
                    "$select": "sdkmessagefilterid",
                    "$filter": (
                        f"_sdkmessageid_value eq {message_id} and "
                        f"primaryobjecttypecode eq '{entity}'"
                    ),
                },
            )
            if not rows:
                raise RegistryError(
                    f"No message filter for entity '{entity}'", status=404
                )
            self._filter_ids[key] = rows[0]["sdkmessagefilterid"]
        return self._filter_ids[key]
