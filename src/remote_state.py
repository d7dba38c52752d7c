"""
Remote State Loader - Snapshot of the registry for one scope.

Reads plugin type, step and image records concurrently, then normalizes
platform records into the declaration model so the differ compares like
with like. Also holds the reverse mapping used when writing declarations
back to the registry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from declaration import (
    ImageDecl,
    ImageKey,
    ImageType,
    Mode,
    PluginTypeDecl,
    Stage,
    StepDecl,
    StepKey,
    normalize_entity,
    parse_enum,
    parse_name_set,
)
from errors import MalformedDeclaration, RemoteStateUnavailable
from registry.base import RegistryClient

logger = logging.getLogger(__name__)

# Declaration field name -> platform field name
STEP_FIELDS = {
    "mode": "mode",
    "rank": "rank",
    "filtering_attributes": "filteringattributes",
    "configuration": "configuration",
}
IMAGE_FIELDS = {
    "attributes": "attributes",
}


@dataclass(frozen=True)
class RemotePluginType:
    id: str
    decl: PluginTypeDecl

    @property
    def key(self) -> str:
        return self.decl.key


@dataclass(frozen=True)
class RemoteStep:
    id: str
    plugin_type_id: str
    decl: StepDecl

    @property
    def key(self) -> StepKey:
        return self.decl.key


@dataclass(frozen=True)
class RemoteImage:
    id: str
    step_id: str
    decl: ImageDecl

    @property
    def key(self) -> ImageKey:
        return self.decl.key


@dataclass
class RemoteState:
    """Normalized remote records for one scope, in fetch order."""

    scope: str
    plugin_types: List[RemotePluginType] = field(default_factory=list)
    steps: List[RemoteStep] = field(default_factory=list)
    images: List[RemoteImage] = field(default_factory=list)

    def primary_plugin_types(self) -> Dict[str, RemotePluginType]:
        """First remote plugin type per key."""
        result: Dict[str, RemotePluginType] = {}
        for pt in self.plugin_types:
            result.setdefault(pt.key, pt)
        return result

    def primary_steps(self) -> Dict[StepKey, RemoteStep]:
        """
        First remote step per key.

        The platform does not enforce key uniqueness; later duplicates are
        treated as orphans.
        """
        result: Dict[StepKey, RemoteStep] = {}
        for step in self.steps:
            result.setdefault(step.key, step)
        return result

    def steps_of_plugin_type(self, plugin_type_id: str) -> List[RemoteStep]:
        return [s for s in self.steps if s.plugin_type_id == plugin_type_id]

    def images_of_step(self, step_id: str) -> List[RemoteImage]:
        return [i for i in self.images if i.step_id == step_id]


def _text(value: Optional[str]) -> str:
    return value or ""


def normalize_plugin_type(record: Dict[str, Any]) -> RemotePluginType:
    return RemotePluginType(
        id=record["plugintypeid"],
        decl=PluginTypeDecl(
            type_name=record["typename"],
            assembly_id=record.get("pluginassemblyid", ""),
        ),
    )


def normalize_step(record: Dict[str, Any], type_name: str) -> RemoteStep:
    return RemoteStep(
        id=record["sdkmessageprocessingstepid"],
        plugin_type_id=record["plugintypeid"],
        decl=StepDecl(
            type_name=type_name,
            message=record["message"],
            primary_entity=normalize_entity(record.get("primaryentity")),
            stage=parse_enum(Stage, record["stage"], "stage"),
            mode=parse_enum(Mode, record.get("mode", 0), "mode"),
            rank=record.get("rank", 1),
            filtering_attributes=parse_name_set(record.get("filteringattributes")),
            configuration=_text(record.get("configuration")),
            name=record.get("name"),
        ),
    )


def normalize_image(record: Dict[str, Any], step_key: StepKey) -> RemoteImage:
    return RemoteImage(
        id=record["sdkmessageprocessingstepimageid"],
        step_id=record["sdkmessageprocessingstepid"],
        decl=ImageDecl(
            step_key=step_key,
            image_type=parse_enum(ImageType, record["imagetype"], "imagetype"),
            name=record.get("entityalias") or record["name"],
            attributes=parse_name_set(record.get("attributes")),
            message_property_name=record.get("messagepropertyname") or "Target",
        ),
    )


def normalize_state(
    scope: str,
    plugin_type_records: List[Dict[str, Any]],
    step_records: List[Dict[str, Any]],
    image_records: List[Dict[str, Any]],
) -> RemoteState:
    """
    Build a RemoteState from raw platform records.

    Steps whose plugin type is outside the scope, and images whose step is
    outside the scope, are dropped so they are never touched. Records with
    values outside the model (e.g. an unknown stage) are skipped with a
    warning.
    """
    state = RemoteState(scope=scope)

    for record in plugin_type_records:
        if record.get("pluginassemblyid") not in (None, scope):
            continue
        state.plugin_types.append(normalize_plugin_type(record))
    type_names = {pt.id: pt.key for pt in state.plugin_types}

    for record in step_records:
        type_name = type_names.get(record.get("plugintypeid"))
        if type_name is None:
            logger.debug(
                f"Ignoring step {record.get('sdkmessageprocessingstepid')}: "
                f"plugin type outside scope {scope}"
            )
            continue
        try:
            state.steps.append(normalize_step(record, type_name))
        except MalformedDeclaration as e:
            logger.warning(
                f"Ignoring step {record.get('sdkmessageprocessingstepid')}: {e}"
            )
    step_keys = {s.id: s.key for s in state.steps}

    for record in image_records:
        step_key = step_keys.get(record.get("sdkmessageprocessingstepid"))
        if step_key is None:
            continue
        try:
            state.images.append(normalize_image(record, step_key))
        except MalformedDeclaration as e:
            logger.warning(
                f"Ignoring image {record.get('sdkmessageprocessingstepimageid')}: {e}"
            )

    return state


async def _cancel_reads(tasks: List[asyncio.Future]) -> None:
    """Cancel the reads still running and wait for every read to finish."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def load_remote_state(
    client: RegistryClient, scope: str, timeout: Optional[float] = None
) -> RemoteState:
    """
    Fetch and normalize the remote state for a scope.

    The three list calls run concurrently; all must succeed before the
    snapshot is returned.

    Raises:
        RemoteStateUnavailable: If any read fails or times out.
    """
    tasks = [
        asyncio.ensure_future(asyncio.wait_for(call(scope), timeout))
        for call in (client.list_plugin_types, client.list_steps, client.list_images)
    ]
    try:
        plugin_types, steps, images = await asyncio.gather(*tasks)
    except asyncio.TimeoutError:
        await _cancel_reads(tasks)
        raise RemoteStateUnavailable(
            f"Timed out after {timeout}s reading remote state for scope '{scope}'"
        )
    except Exception as e:
        await _cancel_reads(tasks)
        raise RemoteStateUnavailable(
            f"Cannot read remote state for scope '{scope}': {e}"
        ) from e

    try:
        state = normalize_state(scope, plugin_types, steps, images)
    except (KeyError, TypeError) as e:
        raise RemoteStateUnavailable(
            f"Unexpected remote record shape for scope '{scope}': missing {e}"
        ) from e

    logger.info(
        f"Loaded remote state for {scope}: {len(state.plugin_types)} plugin types, "
        f"{len(state.steps)} steps, {len(state.images)} images"
    )
    return state


def _join(names: FrozenSet[str]) -> Optional[str]:
    return ",".join(sorted(names)) if names else None


def to_platform_value(field_name: str, value: Any) -> Any:
    """Convert a declaration field value into its platform representation."""
    if isinstance(value, (Stage, Mode, ImageType)):
        return value.value
    if isinstance(value, frozenset):
        return _join(value)
    if field_name == "configuration":
        return value or None
    return value


def plugin_type_record(decl: PluginTypeDecl) -> Dict[str, Any]:
    return {
        "typename": decl.type_name,
        "name": decl.type_name,
        "friendlyname": decl.type_name,
        "pluginassemblyid": decl.assembly_id,
    }


def step_record(decl: StepDecl, plugin_type_id: str) -> Dict[str, Any]:
    return {
        "plugintypeid": plugin_type_id,
        "name": decl.display_name,
        "message": decl.message,
        "primaryentity": decl.primary_entity,
        "stage": decl.stage.value,
        "mode": decl.mode.value,
        "rank": decl.rank,
        "filteringattributes": _join(decl.filtering_attributes),
        "configuration": decl.configuration or None,
        "supporteddeployment": 0,
    }


def image_record(decl: ImageDecl, step_id: str) -> Dict[str, Any]:
    return {
        "sdkmessageprocessingstepid": step_id,
        "imagetype": decl.image_type.value,
        "name": decl.name,
        "entityalias": decl.name,
        "attributes": _join(decl.attributes),
        "messagepropertyname": decl.message_property_name,
    }


def platform_changes(
    field_map: Dict[str, str], changes: Tuple[Any, ...]
) -> Dict[str, Any]:
    """Map FieldChange tuples onto a platform update payload."""
    return {
        field_map[change.field]: to_platform_value(change.field, change.new)
        for change in changes
    }
