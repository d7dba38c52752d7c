"""
In-Memory Registry - A RegistryClient that keeps records in dicts.

Behaves like the remote registry for the operations the reconciler uses:
steps require an existing plugin type, images require an existing step,
deleting a step removes its images, and a plugin type with steps cannot be
deleted. Failures and delays can be injected per operation for testing and
rehearsal runs.
"""

import asyncio
import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from registry.base import RegistryClient, RegistryError

logger = logging.getLogger(__name__)


class InMemoryRegistry(RegistryClient):
    """Registry backend holding plugin types, steps and images in memory."""

    def __init__(self, assemblies: Optional[List[str]] = None):
        self.assemblies = set(assemblies or [])
        self.plugin_types: Dict[str, Dict[str, Any]] = {}
        self.steps: Dict[str, Dict[str, Any]] = {}
        self.images: Dict[str, Dict[str, Any]] = {}
        # (operation, record id or None) -> [error, remaining count or None]
        self._failures: Dict[Tuple[str, Optional[str]], List[Any]] = {}
        self._delays: Dict[str, float] = {}
        self.calls: List[Tuple[str, Any]] = []

    @property
    def name(self) -> str:
        return "memory"

    async def initialize(self, config: Dict[str, Any]) -> None:
        for assembly in config.get("assemblies", []):
            self.assemblies.add(assembly)

    # Test and rehearsal helpers

    def add_plugin_type(
        self, type_name: str, assembly_id: str, plugin_type_id: Optional[str] = None
    ) -> str:
        """Seed a plugin type record and return its id."""
        plugin_type_id = plugin_type_id or str(uuid.uuid4())
        self.assemblies.add(assembly_id)
        self.plugin_types[plugin_type_id] = {
            "plugintypeid": plugin_type_id,
            "typename": type_name,
            "name": type_name,
            "pluginassemblyid": assembly_id,
        }
        return plugin_type_id

    def add_step(
        self, plugin_type_id: str, step_id: Optional[str] = None, **fields
    ) -> str:
        """Seed a step record for an existing plugin type and return its id."""
        step_id = step_id or str(uuid.uuid4())
        record = {
            "sdkmessageprocessingstepid": step_id,
            "plugintypeid": plugin_type_id,
            "mode": 0,
            "rank": 1,
            "filteringattributes": None,
            "configuration": None,
        }
        record.update(fields)
        self.steps[step_id] = record
        return step_id

    def add_image(self, step_id: str, image_id: Optional[str] = None, **fields) -> str:
        """Seed an image record for an existing step and return its id."""
        image_id = image_id or str(uuid.uuid4())
        record = {
            "sdkmessageprocessingstepimageid": image_id,
            "sdkmessageprocessingstepid": step_id,
            "attributes": None,
            "messagepropertyname": "Target",
        }
        record.update(fields)
        self.images[image_id] = record
        return image_id

    def fail(
        self,
        operation: str,
        error: Exception,
        record_id: Optional[str] = None,
        times: Optional[int] = None,
    ) -> None:
        """
        Make an operation raise an error.

        Args:
            operation: Client method name, e.g. 'update_step'.
            error: Exception to raise.
            record_id: Only fail calls targeting this id (None = any call).
            times: Fail this many times, then succeed (None = always).
        """
        self._failures[(operation, record_id)] = [error, times]

    def delay(self, operation: str, seconds: float) -> None:
        """Make an operation sleep before it completes."""
        self._delays[operation] = seconds

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def _enter(self, operation: str, arg: Any = None) -> None:
        self.calls.append((operation, arg))
        if operation in self._delays:
            await asyncio.sleep(self._delays[operation])

        record_id = arg if isinstance(arg, str) else None
        for key in ((operation, record_id), (operation, None)):
            entry = self._failures.get(key)
            if entry is None:
                continue
            error, remaining = entry
            if remaining is not None:
                if remaining <= 0:
                    continue
                entry[1] = remaining - 1
            raise error

    def _require_assembly(self, scope: str) -> None:
        if scope not in self.assemblies:
            raise RegistryError(f"Plugin assembly '{scope}' not found", status=404)

    # RegistryClient implementation

    async def list_plugin_types(self, scope: str) -> List[Dict[str, Any]]:
        await self._enter("list_plugin_types", scope)
        self._require_assembly(scope)
        return [
            copy.deepcopy(pt)
            for pt in self.plugin_types.values()
            if pt["pluginassemblyid"] == scope
        ]

    async def list_steps(self, scope: str) -> List[Dict[str, Any]]:
        await self._enter("list_steps", scope)
        self._require_assembly(scope)
        return [copy.deepcopy(step) for step in self._scoped_steps(scope)]

    async def list_images(self, scope: str) -> List[Dict[str, Any]]:
        await self._enter("list_images", scope)
        self._require_assembly(scope)
        step_ids = {s["sdkmessageprocessingstepid"] for s in self._scoped_steps(scope)}
        return [
            copy.deepcopy(image)
            for image in self.images.values()
            if image["sdkmessageprocessingstepid"] in step_ids
        ]

    def _scoped_steps(self, scope: str) -> List[Dict[str, Any]]:
        return [
            step
            for step in self.steps.values()
            if self.plugin_types.get(step["plugintypeid"], {}).get("pluginassemblyid")
            == scope
        ]

    async def create_plugin_type(self, record: Dict[str, Any]) -> str:
        await self._enter("create_plugin_type", record)
        self._require_assembly(record["pluginassemblyid"])
        return self.add_plugin_type(record["typename"], record["pluginassemblyid"])

    async def create_step(self, record: Dict[str, Any]) -> str:
        await self._enter("create_step", record)
        if record["plugintypeid"] not in self.plugin_types:
            raise RegistryError(
                f"Plugin type {record['plugintypeid']} does not exist", status=404
            )
        fields = {k: v for k, v in record.items() if k != "plugintypeid"}
        return self.add_step(record["plugintypeid"], **fields)

    async def update_step(self, step_id: str, changes: Dict[str, Any]) -> None:
        await self._enter("update_step", step_id)
        if step_id not in self.steps:
            raise RegistryError(f"Step {step_id} does not exist", status=404)
        self.steps[step_id].update(changes)

    async def create_image(self, record: Dict[str, Any]) -> str:
        await self._enter("create_image", record)
        step_id = record["sdkmessageprocessingstepid"]
        if step_id not in self.steps:
            raise RegistryError(f"Step {step_id} does not exist", status=404)
        fields = {k: v for k, v in record.items() if k != "sdkmessageprocessingstepid"}
        return self.add_image(step_id, **fields)

    async def update_image(self, image_id: str, changes: Dict[str, Any]) -> None:
        await self._enter("update_image", image_id)
        if image_id not in self.images:
            raise RegistryError(f"Image {image_id} does not exist", status=404)
        self.images[image_id].update(changes)

    async def delete_plugin_type(self, plugin_type_id: str) -> None:
        await self._enter("delete_plugin_type", plugin_type_id)
        if plugin_type_id not in self.plugin_types:
            raise RegistryError(
                f"Plugin type {plugin_type_id} does not exist", status=404
            )
        if any(s["plugintypeid"] == plugin_type_id for s in self.steps.values()):
            raise RegistryError(
                f"Plugin type {plugin_type_id} still has registered steps", status=409
            )
        del self.plugin_types[plugin_type_id]

    async def delete_step(self, step_id: str) -> None:
        await self._enter("delete_step", step_id)
        if step_id not in self.steps:
            raise RegistryError(f"Step {step_id} does not exist", status=404)
        del self.steps[step_id]
        for image_id in [
            i
            for i, image in self.images.items()
            if image["sdkmessageprocessingstepid"] == step_id
        ]:
            del self.images[image_id]

    async def delete_image(self, image_id: str) -> None:
        await self._enter("delete_image", image_id)
        if image_id not in self.images:
            raise RegistryError(f"Image {image_id} does not exist", status=404)
        del self.images[image_id]
