"""
Report rendering - Human-readable and JSON views of plans and run reports.
"""

import json
from typing import Any, Dict, List

from tabulate import tabulate

from applier import OperationStatus, RunReport
from plan import EntityKind, Plan
from remote_state import RemoteState

COUNT_COLUMNS = ["created", "updated", "unchanged", "orphaned", "deleted", "failed"]

STATUS_MARKS = {
    OperationStatus.SUCCEEDED: "✓",
    OperationStatus.PLANNED: "~",
    OperationStatus.WARNED: "!",
    OperationStatus.FAILED: "✗",
    OperationStatus.SKIPPED: "-",
    OperationStatus.CONFLICT: "✗",
    OperationStatus.CANCELLED: "-",
}


def render_plan(plan: Plan) -> str:
    """Table of planned operations followed by per-kind counts."""
    lines = [f"Plan for {plan.scope}"]
    if plan.has_changes:
        rows = []
        for op in plan:
            fields = ", ".join(c.field for c in op.changes)
            rows.append([op.action.value, op.kind.value, str(op.key), fields])
        lines.append(
            tabulate(rows, headers=["Action", "Kind", "Key", "Fields"], tablefmt="grid")
        )
    else:
        lines.append("No changes. Remote state matches the declarations.")

    summary = plan.summary()
    columns = ("create", "update", "unchanged", "orphan")
    rows = [
        [kind.value] + [summary[kind.value][c] for c in columns] for kind in EntityKind
    ]
    lines.append(
        tabulate(
            rows,
            headers=["Kind", "Create", "Update", "Unchanged", "Orphan"],
            tablefmt="grid",
        )
    )
    return "\n".join(lines)


def render_report(report: RunReport) -> str:
    """Per-operation outcomes, per-kind counts and the list of failures."""
    title = "Plan" if report.dry_run else "Apply report"
    lines = [f"{title} for {report.scope}"]

    if report.results:
        rows = [
            [
                STATUS_MARKS[r.status],
                r.status.value,
                r.operation.action.value,
                r.operation.kind.value,
                str(r.operation.key),
                r.remote_id or "",
            ]
            for r in report.results
        ]
        lines.append(
            tabulate(
                rows,
                headers=["", "Status", "Action", "Kind", "Key", "Remote Id"],
                tablefmt="grid",
            )
        )

    counts = report.counts()
    rows = [[kind] + [counts[kind][c] for c in COUNT_COLUMNS] for kind in counts]
    lines.append(
        tabulate(
            rows,
            headers=["Kind"] + [c.capitalize() for c in COUNT_COLUMNS],
            tablefmt="grid",
        )
    )

    failures = report.failures()
    if failures:
        lines.append(f"\nFailures ({len(failures)}):")
        for r in failures:
            cause = r.error or r.status.value
            lines.append(
                f"  - {r.operation.kind.value} {r.operation.key}: "
                f"{r.status.value}: {cause}"
            )
    if report.cancelled:
        lines.append("\nRun cancelled before all operations were executed.")
    if report.dry_run:
        lines.append("\nDry run: no changes were made.")

    return "\n".join(lines)


def report_to_dict(report: RunReport) -> Dict[str, Any]:
    return {
        "scope": report.scope,
        "dry_run": report.dry_run,
        "success": report.success,
        "cancelled": report.cancelled,
        "counts": report.counts(),
        "results": [
            dict(
                r.operation.to_dict(),
                status=r.status.value,
                remote_id=r.remote_id,
                error=r.error,
            )
            for r in report.results
        ],
    }


def report_to_json(report: RunReport) -> str:
    return json.dumps(report_to_dict(report), indent=2)


def render_remote_state(state: RemoteState) -> str:
    """Tables of the remote plugin types, steps and images of a scope."""
    type_rows = [[pt.key, pt.id] for pt in state.plugin_types]
    step_rows: List[List[Any]] = [
        [
            s.decl.type_name,
            s.decl.message,
            s.decl.primary_entity,
            s.decl.stage.label,
            s.decl.mode.label,
            s.decl.rank,
            ",".join(sorted(s.decl.filtering_attributes)),
            s.id,
        ]
        for s in state.steps
    ]
    image_rows = [
        [
            str(i.decl.step_key),
            i.decl.image_type.label,
            i.decl.name,
            ",".join(sorted(i.decl.attributes)),
            i.id,
        ]
        for i in state.images
    ]
    return "\n".join(
        [
            f"Plugin types ({len(type_rows)}):",
            tabulate(type_rows, headers=["Type Name", "Id"], tablefmt="grid"),
            f"\nSteps ({len(step_rows)}):",
            tabulate(
                step_rows,
                headers=[
                    "Type Name",
                    "Message",
                    "Entity",
                    "Stage",
                    "Mode",
                    "Rank",
                    "Filtering Attributes",
                    "Id",
                ],
                tablefmt="grid",
            ),
            f"\nImages ({len(image_rows)}):",
            tabulate(
                image_rows,
                headers=["Step", "Type", "Name", "Attributes", "Id"],
                tablefmt="grid",
            ),
        ]
    )
