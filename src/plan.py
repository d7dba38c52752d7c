"""
Plan - Ordered, immutable set of operations converging remote to declared state.

Operations are grouped by entity kind in dependency order: plugin type,
step and image creates/updates first, then orphans in reverse order
(images, steps, plugin types) so children are removed before parents.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Iterator, List, NamedTuple, Optional, Tuple


class EntityKind(Enum):
    """Kinds of registry entities, parents first."""

    PLUGIN_TYPE = "PluginType"
    STEP = "Step"
    IMAGE = "Image"


class Action(Enum):
    """What an operation does to its entity."""

    CREATE = "create"
    UPDATE = "update"
    ORPHAN = "orphan"


class FieldChange(NamedTuple):
    """A single differing field: remote value -> declared value."""

    field: str
    old: Any
    new: Any


# (kind, key) for declared entities, (kind, remote id) for orphans
Ref = Tuple[EntityKind, Hashable]


@dataclass(frozen=True)
class Operation:
    """A single planned change to one registry entity."""

    action: Action
    kind: EntityKind
    key: Hashable
    declaration: Any = None
    remote_id: Optional[str] = None
    changes: Tuple[FieldChange, ...] = ()
    depends_on: Tuple[Ref, ...] = ()

    @property
    def ref(self) -> Ref:
        """Reference dependents use to find this operation."""
        if self.action == Action.ORPHAN:
            return (self.kind, self.remote_id)
        return (self.kind, self.key)

    def describe(self) -> str:
        if self.action == Action.UPDATE:
            fields = ", ".join(c.field for c in self.changes)
            return f"{self.action.value} {self.kind.value} {self.key} [{fields}]"
        return f"{self.action.value} {self.kind.value} {self.key}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "action": self.action.value,
            "kind": self.kind.value,
            "key": str(self.key),
        }
        if self.remote_id:
            data["remote_id"] = self.remote_id
        if self.changes:
            data["changes"] = [
                {"field": c.field, "old": _plain(c.old), "new": _plain(c.new)}
                for c in self.changes
            ]
        return data


def _plain(value: Any) -> Any:
    if isinstance(value, frozenset):
        return sorted(value)
    if isinstance(value, Enum):
        return value.name
    return value


_CHANGE_ORDER = (EntityKind.PLUGIN_TYPE, EntityKind.STEP, EntityKind.IMAGE)
_ORPHAN_ORDER = (EntityKind.IMAGE, EntityKind.STEP, EntityKind.PLUGIN_TYPE)


@dataclass(frozen=True)
class Plan:
    """The ordered operations of one run, plus the keys found unchanged."""

    scope: str
    operations: Tuple[Operation, ...] = ()
    unchanged: Tuple[Tuple[EntityKind, Hashable], ...] = field(default=())

    @classmethod
    def build(
        cls,
        scope: str,
        changes: Dict[EntityKind, List[Operation]],
        orphans: Dict[EntityKind, List[Operation]],
        unchanged: List[Tuple[EntityKind, Hashable]],
    ) -> "Plan":
        """
        Assemble a plan from per-kind operation lists.

        Each list keeps its own order; only the grouping is imposed here.
        """
        operations: List[Operation] = []
        for kind in _CHANGE_ORDER:
            operations.extend(changes.get(kind, []))
        for kind in _ORPHAN_ORDER:
            operations.extend(orphans.get(kind, []))
        return cls(
            scope=scope, operations=tuple(operations), unchanged=tuple(unchanged)
        )

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def has_changes(self) -> bool:
        """True if any create, update or orphan operation is planned."""
        return bool(self.operations)

    def operations_for(
        self, kind: EntityKind, action: Optional[Action] = None
    ) -> List[Operation]:
        return [
            op
            for op in self.operations
            if op.kind == kind and (action is None or op.action == action)
        ]

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Counts per entity kind: create, update, unchanged, orphan."""
        result = {
            kind.value: {"create": 0, "update": 0, "unchanged": 0, "orphan": 0}
            for kind in EntityKind
        }
        for op in self.operations:
            result[op.kind.value][op.action.value] += 1
        for kind, _ in self.unchanged:
            result[kind.value]["unchanged"] += 1
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "summary": self.summary(),
            "operations": [op.to_dict() for op in self.operations],
        }
