"""
Synchronizer - One reconciliation pass for a plugin assembly.

Phases: Declare -> Load remote state -> Diff -> Apply (or dry run).
Nothing is kept between runs; every pass reads a fresh snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from applier import Applier, RunReport
from config import ApplyConfig
from declaration import DeclarationSet, load_declaration_file, parse_declaration
from differ import diff
from errors import MalformedDeclaration
from orphans import OrphanPolicy
from plan import Plan
from registry.base import RegistryClient
from remote_state import RemoteState, load_remote_state

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Everything one pass produced."""

    declared: DeclarationSet
    remote: RemoteState
    plan: Plan
    report: RunReport


def check_scope(declared: DeclarationSet, scope: str) -> None:
    """
    Ensure every declared plugin type belongs to the scope being reconciled.

    Raises:
        MalformedDeclaration: If a plugin type names another assembly.
    """
    for pt in declared.plugin_types:
        if pt.assembly_id != scope:
            raise MalformedDeclaration(
                f"PluginType '{pt.type_name}' belongs to assembly "
                f"'{pt.assembly_id}', not to scope '{scope}'"
            )


class Synchronizer:
    """Runs declaration -> remote state -> plan -> apply for one scope."""

    def __init__(
        self,
        client: RegistryClient,
        apply_config: Optional[ApplyConfig] = None,
        timeout: Optional[float] = 30.0,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.apply_config = apply_config or ApplyConfig()
        self.timeout = timeout
        self.cancel_event = cancel_event or asyncio.Event()

    async def run(
        self,
        declaration: Union[DeclarationSet, Dict[str, Any], str, Path],
        scope: str,
        dry_run: bool = False,
        force: bool = False,
    ) -> SyncResult:
        """
        Reconcile the registry for a scope against a declaration.

        Args:
            declaration: A parsed DeclarationSet, a raw document, or a path
                to a YAML/JSON document.
            scope: The plugin assembly being reconciled.
            dry_run: Compute and walk the plan without mutating anything.
            force: Delete orphans instead of only reporting them.

        Raises:
            MalformedDeclaration, DuplicateDeclaration: Before any remote call.
            RemoteStateUnavailable: Before diffing.
            UnresolvedDependency: During apply.
        """
        logger.info(f"Phase 1: Loading declarations for {scope}")
        declared = self._declare(declaration)
        check_scope(declared, scope)

        logger.info(f"Phase 2: Loading remote state for {scope}")
        remote = await load_remote_state(self.client, scope, timeout=self.timeout)

        logger.info(f"Phase 3: Diffing {scope}")
        plan = diff(declared, remote)
        if not plan.has_changes:
            logger.info(f"No changes needed for {scope}")

        phase = "Dry run" if dry_run else "Applying"
        logger.info(f"Phase 4: {phase} for {scope}")
        applier = Applier(
            self.client,
            policy=OrphanPolicy(force=force),
            dry_run=dry_run,
            timeout=self.timeout,
            max_retries=self.apply_config.max_retries,
            backoff_base_delay=self.apply_config.backoff_base_delay,
            backoff_max_delay=self.apply_config.backoff_max_delay,
            backoff_jitter_factor=self.apply_config.backoff_jitter_factor,
            cancel_event=self.cancel_event,
        )
        report = await applier.apply(plan, remote)

        return SyncResult(declared=declared, remote=remote, plan=plan, report=report)

    def _declare(
        self, declaration: Union[DeclarationSet, Dict[str, Any], str, Path]
    ) -> DeclarationSet:
        if isinstance(declaration, DeclarationSet):
            return declaration
        if isinstance(declaration, (str, Path)):
            return load_declaration_file(declaration)
        return parse_declaration(declaration)
