"""
Applier - Executes a plan against the remote registry.

Operations run strictly one at a time in plan order. Remote ids returned by
creates are recorded so children created later in the same run can bind to
their parents. A failed call does not stop the run: operations depending on
it are skipped, independent ones proceed, and the run is reported failed.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from errors import OperationFailed, UnresolvedDependency
from orphans import OrphanAction, OrphanPolicy
from plan import Action, EntityKind, Operation, Plan, Ref
from registry.base import RegistryClient, RegistryError, TransientRegistryError
from remote_state import (
    IMAGE_FIELDS,
    STEP_FIELDS,
    RemoteState,
    image_record,
    platform_changes,
    plugin_type_record,
    step_record,
)

logger = logging.getLogger(__name__)

# Id handed to dependents of creates that a dry run did not perform
PLANNED_ID = "(planned)"


class OperationStatus(Enum):
    """Outcome of a single plan operation."""

    SUCCEEDED = "succeeded"
    PLANNED = "planned"
    WARNED = "warned"
    FAILED = "failed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"


FAILURE_STATUSES = (
    OperationStatus.FAILED,
    OperationStatus.SKIPPED,
    OperationStatus.CONFLICT,
    OperationStatus.CANCELLED,
)


@dataclass
class OperationResult:
    """What happened to one operation."""

    operation: Operation
    status: OperationStatus
    remote_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def failed(self) -> bool:
        return self.status in FAILURE_STATUSES


@dataclass
class RunReport:
    """Outcome of applying (or dry-running) a plan."""

    scope: str
    dry_run: bool = False
    results: List[OperationResult] = field(default_factory=list)
    unchanged: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.cancelled and not any(r.failed for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def failures(self) -> List[OperationResult]:
        return [r for r in self.results if r.failed]

    def counts(self) -> Dict[str, Dict[str, int]]:
        """
        Per entity kind: created, updated, unchanged, orphaned (warned),
        deleted and failed counts. In a dry run, planned operations are
        counted under the action they would perform.
        """
        counts = {
            kind.value: {
                "created": 0,
                "updated": 0,
                "unchanged": self.unchanged.get(kind.value, 0),
                "orphaned": 0,
                "deleted": 0,
                "failed": 0,
            }
            for kind in EntityKind
        }
        done = (OperationStatus.SUCCEEDED, OperationStatus.PLANNED)
        for result in self.results:
            row = counts[result.operation.kind.value]
            action = result.operation.action
            if result.failed:
                row["failed"] += 1
            elif result.status == OperationStatus.WARNED:
                row["orphaned"] += 1
            elif result.status in done and action == Action.CREATE:
                row["created"] += 1
            elif result.status in done and action == Action.UPDATE:
                row["updated"] += 1
            elif result.status in done and action == Action.ORPHAN:
                row["deleted"] += 1
        return counts


def compute_backoff(
    attempt: int, base_delay: float, max_delay: float, jitter_factor: float
) -> float:
    """Exponential backoff capped at max_delay, with ±jitter_factor jitter."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return max(0.0, delay * (1 + random.uniform(-jitter_factor, jitter_factor)))


class Applier:
    """
    Serial plan executor.

    Args:
        client: The remote registry client.
        policy: Orphan policy deciding warn vs. delete.
        dry_run: Walk the plan without issuing mutation calls.
        timeout: Seconds allowed per remote call; a timeout fails the call.
        max_retries: Retries for transient (throttling) failures.
        cancel_event: When set, the run stops before the next operation.
    """

    def __init__(
        self,
        client: RegistryClient,
        policy: Optional[OrphanPolicy] = None,
        dry_run: bool = False,
        timeout: Optional[float] = 30.0,
        max_retries: int = 3,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 30.0,
        backoff_jitter_factor: float = 0.1,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.policy = policy or OrphanPolicy()
        self.dry_run = dry_run
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.backoff_jitter_factor = backoff_jitter_factor
        self.cancel_event = cancel_event or asyncio.Event()

    async def apply(self, plan: Plan, remote: RemoteState) -> RunReport:
        """
        Execute every operation of the plan in order.

        Args:
            plan: The plan computed from `remote`.
            remote: The snapshot used to seed ids of pre-existing parents.

        Returns:
            RunReport with one result per operation.

        Raises:
            UnresolvedDependency: If a step or image has no parent id; the
                remaining operations are not executed.
        """
        report = RunReport(scope=plan.scope, dry_run=self.dry_run)
        for kind, _ in plan.unchanged:
            report.unchanged[kind.value] = report.unchanged.get(kind.value, 0) + 1

        ids: Dict[Ref, str] = {}
        for key, pt in remote.primary_plugin_types().items():
            ids[(EntityKind.PLUGIN_TYPE, key)] = pt.id
        for key, step in remote.primary_steps().items():
            ids[(EntityKind.STEP, key)] = step.id

        failed: Set[Ref] = set()
        deleted: Set[Ref] = set()
        label = "Planning" if self.dry_run else "Applying"
        logger.info(f"{label} {len(plan)} operations for {plan.scope}")

        for index, op in enumerate(plan.operations):
            if self.cancel_event.is_set():
                logger.warning(
                    f"Run cancelled; {len(plan) - index} operations not executed"
                )
                report.cancelled = True
                for pending in plan.operations[index:]:
                    report.results.append(
                        OperationResult(pending, OperationStatus.CANCELLED)
                    )
                break

            blocked = [dep for dep in op.depends_on if dep in failed]
            if blocked:
                kind, key = blocked[0]
                result = OperationResult(
                    op,
                    OperationStatus.SKIPPED,
                    error=f"dependency {kind.value} {key} failed",
                )
                logger.warning(f"Skipping {op.describe()}: {result.error}")
            elif op.action == Action.ORPHAN:
                result = await self._handle_orphan(op, remote, deleted)
            else:
                result = await self._apply_change(op, ids)

            if result.failed:
                failed.add(op.ref)
            elif op.action == Action.ORPHAN and result.status in (
                OperationStatus.SUCCEEDED,
                OperationStatus.PLANNED,
            ):
                deleted.add(op.ref)
            report.results.append(result)

        logger.info(
            f"{label} finished for {plan.scope}: "
            f"{'success' if report.success else 'failed'}"
        )
        return report

    async def _apply_change(
        self, op: Operation, ids: Dict[Ref, str]
    ) -> OperationResult:
        decl = op.declaration
        try:
            if op.kind == EntityKind.PLUGIN_TYPE:
                new_id, attempts = await self._mutate(
                    op, self.client.create_plugin_type, plugin_type_record(decl)
                )
            elif op.kind == EntityKind.STEP:
                parent_id = self._resolve(
                    op, ids, (EntityKind.PLUGIN_TYPE, decl.type_name)
                )
                if op.action == Action.CREATE:
                    new_id, attempts = await self._mutate(
                        op, self.client.create_step, step_record(decl, parent_id)
                    )
                else:
                    _, attempts = await self._mutate(
                        op,
                        self.client.update_step,
                        op.remote_id,
                        platform_changes(STEP_FIELDS, op.changes),
                    )
                    new_id = op.remote_id
            else:
                parent_id = self._resolve(op, ids, (EntityKind.STEP, decl.step_key))
                if op.action == Action.CREATE:
                    new_id, attempts = await self._mutate(
                        op, self.client.create_image, image_record(decl, parent_id)
                    )
                else:
                    _, attempts = await self._mutate(
                        op,
                        self.client.update_image,
                        op.remote_id,
                        platform_changes(IMAGE_FIELDS, op.changes),
                    )
                    new_id = op.remote_id
            if op.action == Action.CREATE and not new_id and not self.dry_run:
                raise OperationFailed("registry returned no id for the created record")
        except OperationFailed as e:
            logger.error(
                f"Failed to {op.action.value} {op.kind.value} {op.key}: {e.message}"
            )
            return OperationResult(op, OperationStatus.FAILED, error=e.message)

        if op.action == Action.CREATE:
            ids[op.ref] = PLANNED_ID if self.dry_run else new_id
        status = OperationStatus.PLANNED if self.dry_run else OperationStatus.SUCCEEDED
        if not self.dry_run:
            logger.info(f"{op.describe()} -> {new_id}")
        return OperationResult(op, status, remote_id=new_id, attempts=attempts)

    async def _handle_orphan(
        self, op: Operation, remote: RemoteState, deleted: Set[Ref]
    ) -> OperationResult:
        decision = self.policy.decide(op, remote, deleted)
        if decision.action == OrphanAction.WARN:
            return OperationResult(op, OperationStatus.WARNED, remote_id=op.remote_id)
        if decision.action == OrphanAction.CONFLICT:
            return OperationResult(
                op,
                OperationStatus.CONFLICT,
                remote_id=op.remote_id,
                error=decision.reason,
            )

        delete = {
            EntityKind.PLUGIN_TYPE: self.client.delete_plugin_type,
            EntityKind.STEP: self.client.delete_step,
            EntityKind.IMAGE: self.client.delete_image,
        }[op.kind]
        try:
            _, attempts = await self._mutate(op, delete, op.remote_id)
        except OperationFailed as e:
            logger.error(
                f"Failed to delete orphaned {op.kind.value} {op.key}: {e.message}"
            )
            return OperationResult(
                op, OperationStatus.FAILED, remote_id=op.remote_id, error=e.message
            )

        if not self.dry_run:
            logger.info(f"Deleted orphaned {op.kind.value} {op.key}")
        status = OperationStatus.PLANNED if self.dry_run else OperationStatus.SUCCEEDED
        return OperationResult(op, status, remote_id=op.remote_id, attempts=attempts)

    def _resolve(self, op: Operation, ids: Dict[Ref, str], parent: Ref) -> str:
        parent_id = ids.get(parent)
        if parent_id is None:
            kind, key = parent
            raise UnresolvedDependency(
                f"{op.describe()}: parent {kind.value} {key} has no remote id"
            )
        return parent_id

    async def _mutate(
        self, op: Operation, call: Callable[..., Awaitable[Any]], *args
    ) -> Any:
        """
        Issue a mutation call unless this is a dry run.

        Returns:
            Tuple of (call result, attempts made).

        Raises:
            OperationFailed: If the call fails, times out, or keeps being
                throttled after max_retries retries.
        """
        if self.dry_run:
            return None, 0

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await asyncio.wait_for(call(*args), self.timeout)
                return result, attempt
            except TransientRegistryError as e:
                if attempt > self.max_retries:
                    raise OperationFailed(
                        f"{e.message} (gave up after {attempt} attempts)"
                    )
                delay = compute_backoff(
                    attempt,
                    self.backoff_base_delay,
                    self.backoff_max_delay,
                    self.backoff_jitter_factor,
                )
                logger.warning(
                    f"Transient failure on {op.describe()}: {e.message}; "
                    f"retrying in {delay:.1f}s ({attempt}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
            except asyncio.TimeoutError:
                raise OperationFailed(f"timed out after {self.timeout}s")
            except RegistryError as e:
                raise OperationFailed(e.message)
