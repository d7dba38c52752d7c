"""
Differ - Classifies declared vs. remote entities into plan operations.

Entities of each kind are matched on identity key. A key only declared is
a Create, a key on both sides with differing fields is an Update, a key on
both sides with equal fields is Unchanged, and a key only remote is an
Orphan. The differ performs no remote calls.
"""

import logging
from typing import Dict, Hashable, List, Set, Tuple

from declaration import DeclarationSet, ImageDecl, ImageKey, StepDecl, StepKey
from plan import Action, EntityKind, FieldChange, Operation, Plan
from remote_state import IMAGE_FIELDS, STEP_FIELDS, RemoteImage, RemoteState

logger = logging.getLogger(__name__)


def _compare(declared, remote, fields) -> Tuple[FieldChange, ...]:
    """
    Compare the named fields of two records.

    Set-valued fields are frozensets, so comparison ignores order; strings
    compare case-sensitively; everything else by value equality.
    """
    return tuple(
        FieldChange(name, getattr(remote, name), getattr(declared, name))
        for name in fields
        if getattr(declared, name) != getattr(remote, name)
    )


def compare_steps(declared: StepDecl, remote: StepDecl) -> Tuple[FieldChange, ...]:
    return _compare(declared, remote, STEP_FIELDS)


def compare_images(
    declared: ImageDecl, remote: ImageDecl
) -> Tuple[FieldChange, ...]:
    return _compare(declared, remote, IMAGE_FIELDS)


def diff(declared: DeclarationSet, remote: RemoteState) -> Plan:
    """
    Compute the plan converging remote state to the declared state.

    Args:
        declared: The complete desired state for the scope.
        remote: A fresh snapshot of the same scope.

    Returns:
        A Plan with create/update operations in declaration order and orphan
        operations in remote fetch order.
    """
    changes: Dict[EntityKind, List[Operation]] = {kind: [] for kind in EntityKind}
    orphans: Dict[EntityKind, List[Operation]] = {kind: [] for kind in EntityKind}
    unchanged: List[Tuple[EntityKind, Hashable]] = []

    # Plugin types
    remote_types = remote.primary_plugin_types()
    for decl in declared.plugin_types:
        if decl.key in remote_types:
            unchanged.append((EntityKind.PLUGIN_TYPE, decl.key))
        else:
            changes[EntityKind.PLUGIN_TYPE].append(
                Operation(
                    action=Action.CREATE,
                    kind=EntityKind.PLUGIN_TYPE,
                    key=decl.key,
                    declaration=decl,
                )
            )

    # Steps
    remote_steps = remote.primary_steps()
    matched_steps: Dict[StepKey, str] = {}
    for decl in declared.steps:
        parent = ((EntityKind.PLUGIN_TYPE, decl.type_name),)
        existing = remote_steps.get(decl.key)
        if existing is None:
            changes[EntityKind.STEP].append(
                Operation(
                    action=Action.CREATE,
                    kind=EntityKind.STEP,
                    key=decl.key,
                    declaration=decl,
                    depends_on=parent,
                )
            )
            continue

        matched_steps[decl.key] = existing.id
        field_changes = compare_steps(decl, existing.decl)
        if field_changes:
            changes[EntityKind.STEP].append(
                Operation(
                    action=Action.UPDATE,
                    kind=EntityKind.STEP,
                    key=decl.key,
                    declaration=decl,
                    remote_id=existing.id,
                    changes=field_changes,
                    depends_on=parent,
                )
            )
        else:
            unchanged.append((EntityKind.STEP, decl.key))

    # Images, matched only under the remote step their step key resolved to
    remote_images: Dict[ImageKey, RemoteImage] = {}
    for image in remote.images:
        if matched_steps.get(image.key.step_key) == image.step_id:
            remote_images.setdefault(image.key, image)

    matched_images: Set[str] = set()
    for decl in declared.images:
        parent = ((EntityKind.STEP, decl.step_key),)
        existing = remote_images.get(decl.key)
        if existing is None:
            changes[EntityKind.IMAGE].append(
                Operation(
                    action=Action.CREATE,
                    kind=EntityKind.IMAGE,
                    key=decl.key,
                    declaration=decl,
                    depends_on=parent,
                )
            )
            continue

        matched_images.add(existing.id)
        field_changes = compare_images(decl, existing.decl)
        if field_changes:
            changes[EntityKind.IMAGE].append(
                Operation(
                    action=Action.UPDATE,
                    kind=EntityKind.IMAGE,
                    key=decl.key,
                    declaration=decl,
                    remote_id=existing.id,
                    changes=field_changes,
                    depends_on=parent,
                )
            )
        else:
            unchanged.append((EntityKind.IMAGE, decl.key))

    # Orphans
    for image in remote.images:
        if image.id not in matched_images:
            orphans[EntityKind.IMAGE].append(
                Operation(
                    action=Action.ORPHAN,
                    kind=EntityKind.IMAGE,
                    key=image.key,
                    remote_id=image.id,
                )
            )

    matched_step_ids = set(matched_steps.values())
    for step in remote.steps:
        if step.id in matched_step_ids:
            continue
        orphans[EntityKind.STEP].append(
            Operation(
                action=Action.ORPHAN,
                kind=EntityKind.STEP,
                key=step.key,
                remote_id=step.id,
                depends_on=tuple(
                    (EntityKind.IMAGE, image.id)
                    for image in remote.images_of_step(step.id)
                ),
            )
        )

    declared_types = set(declared.plugin_type_keys())
    for pt in remote.plugin_types:
        if pt.key in declared_types and remote_types[pt.key].id == pt.id:
            continue
        orphans[EntityKind.PLUGIN_TYPE].append(
            Operation(
                action=Action.ORPHAN,
                kind=EntityKind.PLUGIN_TYPE,
                key=pt.key,
                remote_id=pt.id,
                depends_on=tuple(
                    (EntityKind.STEP, step.id)
                    for step in remote.steps_of_plugin_type(pt.id)
                ),
            )
        )

    plan = Plan.build(remote.scope, changes, orphans, unchanged)
    logger.debug(f"Computed plan for {remote.scope}: {plan.summary()}")
    return plan
