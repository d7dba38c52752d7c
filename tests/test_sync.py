"""Integration tests for sync.py - Full reconciliation passes."""

import json

import pytest

from applier import OperationStatus
from config import ApplyConfig
from declaration import parse_declaration
from errors import MalformedDeclaration, RemoteStateUnavailable
from plan import Action, EntityKind
from registry.base import TransientRegistryError
from sync import Synchronizer, check_scope

SCOPE = "PPDSDemo.Plugins"


class TestCheckScope:
    """Tests for check_scope."""

    def test_matching_scope(self, sample_document):
        check_scope(parse_declaration(sample_document), SCOPE)

    def test_foreign_assembly_rejected(self, sample_document):
        with pytest.raises(MalformedDeclaration, match="not to scope 'Other'"):
            check_scope(parse_declaration(sample_document), "Other")


@pytest.mark.asyncio
class TestSynchronizer:
    """Tests for Synchronizer.run."""

    async def test_converges_then_noop(self, memory_registry, sample_document):
        synchronizer = Synchronizer(memory_registry)

        first = await synchronizer.run(sample_document, SCOPE)
        second = await synchronizer.run(sample_document, SCOPE)

        assert [(op.action, op.kind) for op in first.plan] == [
            (Action.CREATE, EntityKind.PLUGIN_TYPE),
            (Action.CREATE, EntityKind.STEP),
            (Action.CREATE, EntityKind.IMAGE),
        ]
        assert first.report.success
        assert len(second.plan) == 0
        assert second.report.exit_code == 0

    async def test_document_order_does_not_matter(
        self, memory_registry, contact_document
    ):
        synchronizer = Synchronizer(memory_registry)
        await synchronizer.run(contact_document, SCOPE)

        contact_document["pluginTypes"].reverse()
        contact_document["steps"].reverse()
        contact_document["steps"][1]["filteringAttributes"].reverse()
        result = await synchronizer.run(contact_document, SCOPE)

        assert not result.plan.has_changes

    async def test_accepts_file_path(self, tmp_path, memory_registry, sample_document):
        path = tmp_path / "registrations.json"
        path.write_text(json.dumps(sample_document))

        result = await Synchronizer(memory_registry).run(str(path), SCOPE)

        assert result.declared.plugin_type_keys() == ["Foo.Bar"]
        assert result.report.success

    async def test_accepts_declaration_set(self, memory_registry, sample_document):
        declared = parse_declaration(sample_document)
        result = await Synchronizer(memory_registry).run(declared, SCOPE)
        assert result.declared is declared

    async def test_malformed_declaration_before_remote_calls(self, memory_registry):
        with pytest.raises(MalformedDeclaration):
            await Synchronizer(memory_registry).run({"steps": []}, SCOPE)
        assert memory_registry.calls == []

    async def test_scope_mismatch_before_remote_calls(
        self, memory_registry, sample_document
    ):
        sample_document["pluginTypes"][0]["assemblyId"] = "Other.Assembly"
        with pytest.raises(MalformedDeclaration, match="Other.Assembly"):
            await Synchronizer(memory_registry).run(sample_document, SCOPE)
        assert memory_registry.calls == []

    async def test_remote_unavailable_aborts(self, memory_registry, sample_document):
        memory_registry.fail("list_steps", TransientRegistryError("HTTP 503"))

        with pytest.raises(RemoteStateUnavailable):
            await Synchronizer(memory_registry).run(sample_document, SCOPE)
        assert "create_plugin_type" not in memory_registry.call_names()

    async def test_dry_run(self, memory_registry, sample_document):
        result = await Synchronizer(memory_registry).run(
            sample_document, SCOPE, dry_run=True
        )

        assert result.report.dry_run
        assert len(result.plan) == 3
        assert memory_registry.plugin_types == {}

    async def test_orphan_step_warned_then_deleted_with_force(
        self, memory_registry, sample_document
    ):
        synchronizer = Synchronizer(memory_registry)
        await synchronizer.run(sample_document, SCOPE)
        sample_document["steps"] = []
        sample_document["images"] = []

        warned = await synchronizer.run(sample_document, SCOPE)
        forced = await synchronizer.run(sample_document, SCOPE, force=True)

        assert [r.status for r in warned.report.results] == [
            OperationStatus.WARNED,
            OperationStatus.WARNED,
        ]
        assert len(memory_registry.steps) == 0
        assert [
            (r.operation.kind, r.status) for r in forced.report.results
        ] == [
            (EntityKind.IMAGE, OperationStatus.SUCCEEDED),
            (EntityKind.STEP, OperationStatus.SUCCEEDED),
        ]

    async def test_apply_config_used(self, memory_registry, sample_document):
        memory_registry.fail("create_step", TransientRegistryError("throttled"))
        synchronizer = Synchronizer(
            memory_registry,
            apply_config=ApplyConfig(max_retries=1, backoff_base_delay=0.0),
        )

        result = await synchronizer.run(sample_document, SCOPE)

        assert memory_registry.call_names().count("create_step") == 2
        assert result.report.exit_code == 1
