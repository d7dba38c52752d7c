"""
Declaration Model - Desired plugin type, step and image state.

A declaration document is produced by the metadata extractor for one plugin
assembly. It is parsed into immutable records, each with a deterministic
identity key, and validated for structural integrity before any remote call
is made.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)

import yaml

from errors import DuplicateDeclaration, MalformedDeclaration
from validation import validate_declaration_document

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Pipeline stage a step is registered in (platform integer values)."""

    PRE_VALIDATION = 10
    PRE_OPERATION = 20
    POST_OPERATION = 40

    @property
    def label(self) -> str:
        return _LABELS[self]


class Mode(Enum):
    """Execution mode of a step."""

    SYNCHRONOUS = 0
    ASYNCHRONOUS = 1

    @property
    def label(self) -> str:
        return _LABELS[self]


class ImageType(Enum):
    """Which snapshot an image requests."""

    PRE_IMAGE = 0
    POST_IMAGE = 1
    BOTH = 2

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Stage.PRE_VALIDATION: "PreValidation",
    Stage.PRE_OPERATION: "PreOperation",
    Stage.POST_OPERATION: "PostOperation",
    Mode.SYNCHRONOUS: "Synchronous",
    Mode.ASYNCHRONOUS: "Asynchronous",
    ImageType.PRE_IMAGE: "PreImage",
    ImageType.POST_IMAGE: "PostImage",
    ImageType.BOTH: "Both",
}


# Primary entity of a step registered for every entity
NO_ENTITY = "none"
WILDCARD_ENTITIES = ("none", "*", "")


def normalize_entity(value: Optional[str]) -> str:
    """Map the wildcard spellings of a primary entity onto NO_ENTITY."""
    if value is None or value.strip().lower() in WILDCARD_ENTITIES:
        return NO_ENTITY
    return value


def parse_enum(enum_cls, value: Union[str, int, Enum], field_name: str):
    """
    Parse an enum from its platform integer or its name.

    Names are matched case-insensitively, ignoring separators, so
    "PostOperation", "post_operation" and "Post-operation" are equivalent.

    Raises:
        MalformedDeclaration: If the value is not a member of enum_cls.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return enum_cls(value)
        except ValueError:
            pass
    elif isinstance(value, str):
        wanted = re.sub(r"[^a-z0-9]", "", value.lower())
        if wanted.isdigit():
            return parse_enum(enum_cls, int(wanted), field_name)
        for member in enum_cls:
            if wanted == member.label.lower():
                return member
    allowed = ", ".join(m.label for m in enum_cls)
    raise MalformedDeclaration(
        f"Invalid {field_name} '{value}'. Expected one of: {allowed}"
    )


def parse_name_set(value: Union[None, str, Iterable[str]]) -> FrozenSet[str]:
    """Parse a list or comma-separated string of field names into a set."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(name.strip() for name in value if name and name.strip())


class StepKey(NamedTuple):
    """Identity of a step: (plugin type, message, primary entity, stage)."""

    type_name: str
    message: str
    primary_entity: str
    stage: Stage

    def __str__(self) -> str:
        return (
            f"{self.type_name}: {self.message} of {self.primary_entity} "
            f"({self.stage.label})"
        )


class ImageKey(NamedTuple):
    """Identity of an image: (step key, image type, name)."""

    step_key: StepKey
    image_type: ImageType
    name: str

    def __str__(self) -> str:
        return f"{self.step_key} / {self.image_type.label} '{self.name}'"


@dataclass(frozen=True)
class PluginTypeDecl:
    """A plugin type that should be registered in the assembly."""

    type_name: str
    assembly_id: str

    @property
    def key(self) -> str:
        return self.type_name


@dataclass(frozen=True)
class StepDecl:
    """A processing step binding a plugin type to a platform event."""

    type_name: str
    message: str
    primary_entity: str
    stage: Stage
    mode: Mode = Mode.SYNCHRONOUS
    rank: int = 1
    filtering_attributes: FrozenSet[str] = field(default_factory=frozenset)
    configuration: str = ""
    name: Optional[str] = None

    @property
    def key(self) -> StepKey:
        return StepKey(self.type_name, self.message, self.primary_entity, self.stage)

    @property
    def display_name(self) -> str:
        return self.name or f"{self.type_name}: {self.message} of {self.primary_entity}"


@dataclass(frozen=True)
class ImageDecl:
    """A pre/post entity snapshot attached to a step."""

    step_key: StepKey
    image_type: ImageType
    name: str
    attributes: FrozenSet[str] = field(default_factory=frozenset)
    message_property_name: str = "Target"

    @property
    def key(self) -> ImageKey:
        return ImageKey(self.step_key, self.image_type, self.name)


@dataclass(frozen=True)
class DeclarationSet:
    """The complete desired state for one scope, in document order."""

    plugin_types: Tuple[PluginTypeDecl, ...] = ()
    steps: Tuple[StepDecl, ...] = ()
    images: Tuple[ImageDecl, ...] = ()

    def plugin_type_keys(self) -> List[str]:
        return [pt.key for pt in self.plugin_types]

    def step_keys(self) -> List[StepKey]:
        return [s.key for s in self.steps]

    def image_keys(self) -> List[ImageKey]:
        return [i.key for i in self.images]


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _camelize(value: Any) -> Any:
    """Convert snake_case mapping keys into the extractor's camelCase."""
    if isinstance(value, dict):
        return {_camel(str(k)): _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    return value


def _parse_step_key(raw: Dict[str, Any]) -> StepKey:
    return StepKey(
        type_name=raw["typeName"],
        message=raw["message"],
        primary_entity=normalize_entity(raw["primaryEntity"]),
        stage=parse_enum(Stage, raw["stage"], "stage"),
    )


def parse_declaration(document: Dict[str, Any]) -> DeclarationSet:
    """
    Build a DeclarationSet from an extractor document.

    Args:
        document: Mapping with pluginTypes, steps and images collections.

    Returns:
        The validated DeclarationSet.

    Raises:
        MalformedDeclaration: On a schema violation, an invalid enum value,
            or a dangling plugin type / step reference.
        DuplicateDeclaration: If two entities share an identity key.
    """
    if not isinstance(document, dict):
        raise MalformedDeclaration(
            f"Declaration document must be a mapping, got {type(document).__name__}"
        )

    document = _camelize(document)
    is_valid, error = validate_declaration_document(document)
    if not is_valid:
        raise MalformedDeclaration(f"Invalid declaration document: {error}")

    plugin_types: Dict[str, PluginTypeDecl] = {}
    for raw in document["pluginTypes"]:
        decl = PluginTypeDecl(type_name=raw["typeName"], assembly_id=raw["assemblyId"])
        if decl.key in plugin_types:
            raise DuplicateDeclaration("PluginType", decl.key)
        plugin_types[decl.key] = decl

    steps: Dict[StepKey, StepDecl] = {}
    for raw in document["steps"]:
        decl = StepDecl(
            type_name=raw["typeName"],
            message=raw["message"],
            primary_entity=normalize_entity(raw["primaryEntity"]),
            stage=parse_enum(Stage, raw["stage"], "stage"),
            mode=parse_enum(Mode, raw.get("mode", Mode.SYNCHRONOUS), "mode"),
            rank=raw.get("rank", 1),
            filtering_attributes=parse_name_set(raw.get("filteringAttributes")),
            configuration=raw.get("configuration") or "",
            name=raw.get("name"),
        )
        if decl.type_name not in plugin_types:
            raise MalformedDeclaration(
                f"Step '{decl.key}' references undeclared plugin type "
                f"'{decl.type_name}'"
            )
        if decl.mode == Mode.ASYNCHRONOUS and decl.stage != Stage.POST_OPERATION:
            raise MalformedDeclaration(
                f"Step '{decl.key}' is Asynchronous but only PostOperation "
                f"steps can run asynchronously"
            )
        if decl.key in steps:
            raise DuplicateDeclaration("Step", decl.key)
        steps[decl.key] = decl

    images: Dict[ImageKey, ImageDecl] = {}
    for raw in document["images"]:
        decl = ImageDecl(
            step_key=_parse_step_key(raw["stepKey"]),
            image_type=parse_enum(ImageType, raw["imageType"], "imageType"),
            name=raw["name"],
            attributes=parse_name_set(raw.get("attributes")),
            message_property_name=raw.get("messagePropertyName") or "Target",
        )
        if decl.step_key not in steps:
            raise MalformedDeclaration(
                f"Image '{decl.name}' references undeclared step '{decl.step_key}'"
            )
        if decl.key in images:
            raise DuplicateDeclaration("Image", decl.key)
        images[decl.key] = decl

    logger.debug(
        f"Parsed declaration: {len(plugin_types)} plugin types, "
        f"{len(steps)} steps, {len(images)} images"
    )
    return DeclarationSet(
        plugin_types=tuple(plugin_types.values()),
        steps=tuple(steps.values()),
        images=tuple(images.values()),
    )


def load_declaration_file(path: Union[str, Path]) -> DeclarationSet:
    """Read a YAML or JSON declaration document from disk and parse it."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            if path.suffix in (".yaml", ".yml"):
                document = yaml.safe_load(f)
            else:
                document = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise MalformedDeclaration(f"Cannot read declaration file {path}: {e}")

    return parse_declaration(document)
