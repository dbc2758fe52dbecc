"""
actionscope/action_discovery/reporter.py

Export and output formatters for action analysis results.

Supports:
- Export: JSON analysis document (summary counts, per-action summaries,
  unused actions, notes) with a timestamped file name
- Summary: Human-readable console output
- Table: Compact tabular list of invocations
- Locations: Chunks where a function name or pattern occurs
"""

import json
import re
from pathlib import Path
from typing import Any, TextIO

from actionscope.action_discovery.models import (
    ActionInvocation,
    DiscoveryResult,
    ExportArtifact,
    ExportOptions,
)
from actionscope.action_discovery.store import CorrelationStore, now_iso
from actionscope.infra.traffic_source import ContentMatch, PatternSearchResult

EXPORT_DESCRIPTION = "Next.js Server Actions Security Analysis"

_FILENAME_UNSAFE_RE = re.compile(r"[:.]")


def export_filename(export_time: str) -> str:
    """File name embedding the export time with ':' and '.' replaced by '-'."""
    return f"nextjs_actions_{_FILENAME_UNSAFE_RE.sub('-', export_time)}.json"


def build_export(
    store: CorrelationStore,
    options: ExportOptions,
    export_time: str | None = None,
) -> ExportArtifact:
    """
    Render the analysis export document.

    Args:
        store: Store to export from.
        options: Sections to include.
        export_time: ISO timestamp to stamp the export with; now when omitted.
    """
    export_time = export_time or now_iso()

    with store.batch():
        counts = store.counts()
        action_summary: dict[str, Any] = {}
        if options.include_executed:
            action_summary = store.get_action_summaries(
                include_security=options.include_security,
                include_full_details=options.include_full_details,
            )
        unused_actions: dict[str, Any] = store.get_unused_actions() if options.include_unused else {}
        notes = store.get_notes()

    payload = {
        "exportTime": export_time,
        "exportInfo": {
            "description": EXPORT_DESCRIPTION,
            "totalRequests": counts["totalRequests"],
            "uniqueActions": counts["uniqueActions"],
            "totalDiscovered": counts["totalDiscovered"],
            "options": {
                "includeExecuted": options.include_executed,
                "includeUnused": options.include_unused,
                "includeSecurity": options.include_security,
                "includeFullDetails": options.include_full_details,
            },
        },
        "actionSummary": action_summary,
        "unusedActions": unused_actions,
        "notesByActionId": notes,
    }

    return ExportArtifact(
        json_text=json.dumps(payload, indent=2, ensure_ascii=False),
        filename=export_filename(export_time),
    )


def write_export(artifact: ExportArtifact, directory: str | Path) -> Path:
    """Write an export into directory under its own file name and return the path."""
    path = Path(directory) / artifact.filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(artifact.json_text + "\n", encoding="utf-8")
    return path


def write_summary(invocations: list[ActionInvocation], discovery: DiscoveryResult, output: TextIO) -> None:
    """
    Write a human-readable summary of invocations and the discovery view.
    """
    lines: list[str] = []
    lines.append("=" * 70)
    lines.append("SERVER ACTION ANALYSIS")
    lines.append("=" * 70)
    lines.append("")
    lines.append(f"Invocations:        {len(invocations)}")
    lines.append(f"Executed actions:   {len({i.action_id for i in invocations})}")
    lines.append(f"Declared actions:   {len(discovery.all)}")
    lines.append(f"Never executed:     {len(discovery.unused)}")
    lines.append(f"No source found:    {len(discovery.unknown)}")
    lines.append("")

    flagged = [i for i in invocations if i.security_notes]
    if flagged:
        lines.append("-" * 70)
        lines.append("SECURITY NOTES")
        lines.append("-" * 70)
        lines.append("")
        for entry in flagged:
            lines.append(f"  #{entry.id:<4} {entry.method:<6} {entry.url}")
            lines.append(f"        Action: {entry.action_id}")
            lines.append(f"        Notes:  {entry.security_notes}")
            lines.append("")

    # Group rows by status
    rows_by_status: dict[str, list] = {}
    for row in discovery.all + discovery.unknown:
        rows_by_status.setdefault(row.status.value, []).append(row)

    if rows_by_status:
        lines.append("-" * 70)
        lines.append("DISCOVERED ACTIONS")
        lines.append("-" * 70)
        lines.append("")

    for status, rows in sorted(rows_by_status.items()):
        lines.append(f"[{status.upper()}] ({len(rows)} actions)")
        lines.append("")
        for row in rows:
            lines.append(f"  {row.function_name:<30} {row.action_id}")
            lines.append(f"           Chunk: {row.chunk_file} | Executed: {row.executed_count}")
            if row.notes:
                for note_line in row.notes.splitlines():
                    lines.append(f"           Note: {note_line}")
            lines.append("")

    output.write("\n".join(lines))
    output.write("\n")


def write_table(invocations: list[ActionInvocation], output: TextIO) -> None:
    """
    Write a compact table of invocations.
    """
    lines: list[str] = []

    lines.append(f"{'#':<5} {'METHOD':<7} {'STATUS':<7} {'ACTION':<14} {'URL'}")
    lines.append("-" * 100)

    for entry in invocations:
        action = entry.action_id[:12]
        lines.append(f"{entry.id:<5} {entry.method:<7} {entry.status_code:<7} {action:<14} {entry.url[:120]}")

    lines.append("-" * 100)
    lines.append(f"Total: {len(invocations)} invocations of {len({i.action_id for i in invocations})} actions")

    output.write("\n".join(lines))
    output.write("\n")


def write_source_matches(function_name: str, matches: list[ContentMatch], output: TextIO) -> None:
    """
    Write the chunks whose text mentions function_name.
    """
    lines = [f"Source of {function_name}: {len(matches)} chunk(s)"]
    for match in matches:
        lines.append(f"  [{match.request_id}] {match.url} ({match.count}x)")
        lines.append(f"      {match.sample}")
    output.write("\n".join(lines))
    output.write("\n")


def write_pattern_hits(result: PatternSearchResult, output: TextIO) -> None:
    """
    Write the chunks matching a pattern, one line per match.
    """
    lines = [f"Pattern {result.pattern}: {len(result.hits)} chunk(s)"]
    if result.timed_out:
        lines.append("  (search timed out, results are partial)")
    for hit in result.hits:
        lines.append(f"  [{hit.request_id}] {hit.url} ({hit.count} matches)")
        for match in hit.matches:
            lines.append(f"      @{match.position}: {match.text}")
    output.write("\n".join(lines))
    output.write("\n")
