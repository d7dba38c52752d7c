"""
Orphan Policy - Decides what happens to remote entities nobody declares.

Without force, orphans are only reported. With force, they are deleted,
children first; a plugin type is only deleted once every one of its remote
steps has been deleted in the same run.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Set

from plan import EntityKind, Operation, Ref
from remote_state import RemoteState

logger = logging.getLogger(__name__)


class OrphanAction(Enum):
    WARN = "warn"
    DELETE = "delete"
    CONFLICT = "conflict"


@dataclass
class OrphanDecision:
    action: OrphanAction
    reason: str = ""


class OrphanPolicy:
    """Warn-only by default; deletes orphans when force is set."""

    def __init__(self, force: bool = False):
        self.force = force

    def decide(
        self, op: Operation, remote: RemoteState, deleted: Set[Ref]
    ) -> OrphanDecision:
        """
        Decide the fate of one orphaned remote entity.

        Args:
            op: The orphan operation.
            remote: The remote snapshot the plan was computed from.
            deleted: Refs of entities deleted (or planned for deletion in a
                dry run) earlier in this run.
        """
        if not self.force:
            logger.warning(
                f"Orphaned {op.kind.value} {op.key} ({op.remote_id}) is not "
                f"declared; use --force to delete it"
            )
            return OrphanDecision(OrphanAction.WARN, "not declared")

        if op.kind == EntityKind.PLUGIN_TYPE:
            remaining = [
                step
                for step in remote.steps_of_plugin_type(op.remote_id)
                if (EntityKind.STEP, step.id) not in deleted
            ]
            if remaining:
                reason = (
                    f"{len(remaining)} step(s) still registered, "
                    f"e.g. {remaining[0].key}"
                )
                logger.warning(
                    f"Not deleting orphaned PluginType {op.key}: {reason}"
                )
                return OrphanDecision(OrphanAction.CONFLICT, reason)

        return OrphanDecision(OrphanAction.DELETE)
