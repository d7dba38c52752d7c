"""Unit tests for plan.py - Plan operations and ordering."""

from declaration import Mode, Stage, StepKey
from plan import Action, EntityKind, FieldChange, Operation, Plan

STEP_KEY = StepKey("Foo.Bar", "Create", "account", Stage.POST_OPERATION)


def op(action, kind, key, remote_id=None, **kwargs):
    return Operation(action=action, kind=kind, key=key, remote_id=remote_id, **kwargs)


class TestOperation:
    """Tests for Operation."""

    def test_ref_of_declared_entity_is_key(self):
        create = op(Action.CREATE, EntityKind.STEP, STEP_KEY)
        assert create.ref == (EntityKind.STEP, STEP_KEY)

    def test_ref_of_orphan_is_remote_id(self):
        orphan = op(Action.ORPHAN, EntityKind.STEP, STEP_KEY, remote_id="step-1")
        assert orphan.ref == (EntityKind.STEP, "step-1")

    def test_describe_update_lists_fields(self):
        update = op(
            Action.UPDATE,
            EntityKind.STEP,
            STEP_KEY,
            remote_id="step-1",
            changes=(FieldChange("rank", 1, 2), FieldChange("mode", 0, 1)),
        )
        assert update.describe() == (
            "update Step Foo.Bar: Create of account (PostOperation) [rank, mode]"
        )

    def test_to_dict(self):
        update = op(
            Action.UPDATE,
            EntityKind.STEP,
            STEP_KEY,
            remote_id="step-1",
            changes=(
                FieldChange("mode", Mode.SYNCHRONOUS, Mode.ASYNCHRONOUS),
                FieldChange("filtering_attributes", frozenset({"b", "a"}), frozenset()),
            ),
        )
        assert update.to_dict() == {
            "action": "update",
            "kind": "Step",
            "key": "Foo.Bar: Create of account (PostOperation)",
            "remote_id": "step-1",
            "changes": [
                {"field": "mode", "old": "SYNCHRONOUS", "new": "ASYNCHRONOUS"},
                {"field": "filtering_attributes", "old": ["a", "b"], "new": []},
            ],
        }

    def test_to_dict_omits_empty_fields(self):
        create = op(Action.CREATE, EntityKind.PLUGIN_TYPE, "Foo.Bar")
        assert create.to_dict() == {
            "action": "create",
            "kind": "PluginType",
            "key": "Foo.Bar",
        }


class TestPlanBuild:
    """Tests for Plan.build ordering."""

    def test_changes_parents_first_orphans_children_first(self):
        changes = {
            EntityKind.IMAGE: [op(Action.CREATE, EntityKind.IMAGE, "i")],
            EntityKind.STEP: [op(Action.UPDATE, EntityKind.STEP, "s", "s-1")],
            EntityKind.PLUGIN_TYPE: [op(Action.CREATE, EntityKind.PLUGIN_TYPE, "p")],
        }
        orphans = {
            EntityKind.PLUGIN_TYPE: [op(Action.ORPHAN, EntityKind.PLUGIN_TYPE, "op", "1")],
            EntityKind.STEP: [op(Action.ORPHAN, EntityKind.STEP, "os", "2")],
            EntityKind.IMAGE: [op(Action.ORPHAN, EntityKind.IMAGE, "oi", "3")],
        }

        plan = Plan.build("asm", changes, orphans, [])

        assert [o.key for o in plan] == ["p", "s", "i", "oi", "os", "op"]

    def test_order_within_kind_preserved(self):
        changes = {
            EntityKind.STEP: [
                op(Action.CREATE, EntityKind.STEP, "b"),
                op(Action.UPDATE, EntityKind.STEP, "a", "a-1"),
                op(Action.CREATE, EntityKind.STEP, "c"),
            ]
        }
        plan = Plan.build("asm", changes, {}, [])
        assert [o.key for o in plan] == ["b", "a", "c"]

    def test_empty_plan(self):
        plan = Plan.build("asm", {}, {}, [(EntityKind.PLUGIN_TYPE, "p")])
        assert not plan.has_changes
        assert len(plan) == 0
        assert plan.unchanged == ((EntityKind.PLUGIN_TYPE, "p"),)


class TestPlanQueries:
    """Tests for Plan summaries and filters."""

    def setup_method(self):
        self.plan = Plan.build(
            "asm",
            {
                EntityKind.PLUGIN_TYPE: [op(Action.CREATE, EntityKind.PLUGIN_TYPE, "p")],
                EntityKind.STEP: [
                    op(Action.CREATE, EntityKind.STEP, "s1"),
                    op(Action.UPDATE, EntityKind.STEP, "s2", "id-2"),
                ],
            },
            {EntityKind.IMAGE: [op(Action.ORPHAN, EntityKind.IMAGE, "i", "id-3")]},
            [(EntityKind.IMAGE, "i2"), (EntityKind.STEP, "s3")],
        )

    def test_operations_for(self):
        assert [o.key for o in self.plan.operations_for(EntityKind.STEP)] == [
            "s1",
            "s2",
        ]
        updates = self.plan.operations_for(EntityKind.STEP, Action.UPDATE)
        assert [o.key for o in updates] == ["s2"]

    def test_summary(self):
        assert self.plan.summary() == {
            "PluginType": {"create": 1, "update": 0, "unchanged": 0, "orphan": 0},
            "Step": {"create": 1, "update": 1, "unchanged": 1, "orphan": 0},
            "Image": {"create": 0, "update": 0, "unchanged": 1, "orphan": 1},
        }

    def test_to_dict(self):
        data = self.plan.to_dict()
        assert data["scope"] == "asm"
        assert len(data["operations"]) == 4
        assert data["operations"][-1] == {
            "action": "orphan",
            "kind": "Image",
            "key": "i",
            "remote_id": "id-3",
        }
