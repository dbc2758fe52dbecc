"""
Analyze Next.js server actions in a captured traffic file.

Scans every request/response pair for Next-Action invocations, optionally
extracts function names and the declared action inventory from JS chunks,
and reports the classification with security notes.

Usage:
    actionscope --input capture.jsonl
    actionscope --input capture.jsonl --discover --format summary
    actionscope --input capture.jsonl --extract-names --format table
    actionscope --input capture.jsonl --discover --format json --output discovery.json
    actionscope --input capture.jsonl --discover --export exports/
    actionscope --input capture.jsonl --locate deleteUser --locate-pattern "delete[A-Z][a-zA-Z]*"
"""

import argparse
import json
import logging
import sys
from typing import TextIO

from rich.console import Console

from actionscope.action_discovery.analyzer import ActionAnalyzer
from actionscope.action_discovery.models import DiscoveryResult, ExportOptions
from actionscope.action_discovery.reporter import (
    write_export,
    write_pattern_hits,
    write_source_matches,
    write_summary,
    write_table,
)
from actionscope.infra.traffic_data_store import TrafficDataStore
from actionscope.utils.logger import get_logger, set_log_level

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for server action analysis."""
    parser = argparse.ArgumentParser(
        prog="actionscope",
        description="Discover Next.js server actions in captured traffic and flag risky invocations.",
    )
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Path to a JSONL traffic capture",
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Output file path (default: stdout)",
    )
    parser.add_argument(
        "--format", "-f",
        choices=["json", "summary", "table"],
        default="summary",
        help="Output format (default: summary)",
    )
    parser.add_argument(
        "--extract-names",
        action="store_true",
        help="Attach function names from JS chunks to executed actions",
    )
    parser.add_argument(
        "--discover",
        action="store_true",
        help="Build the full declared action inventory from JS chunks",
    )
    parser.add_argument(
        "--export",
        default=None,
        metavar="DIR",
        help="Write a timestamped JSON analysis export into DIR",
    )
    parser.add_argument(
        "--no-full-details",
        action="store_true",
        help="Leave sample requests out of the export",
    )
    parser.add_argument(
        "--locate",
        default=None,
        metavar="NAME",
        help="List the chunks whose text mentions function NAME",
    )
    parser.add_argument(
        "--locate-pattern",
        default=None,
        metavar="REGEX",
        help="List the chunks matching REGEX (case-sensitive)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    console = Console(stderr=True)

    if args.verbose:
        set_log_level(logging.DEBUG)

    try:
        source = TrafficDataStore(args.input)
    except FileNotFoundError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        return 1

    analyzer = ActionAnalyzer(source)
    analyzer.events.subscribe_status(lambda status: console.print(f"[dim]{status}[/dim]"))

    scan = analyzer.scan_history()
    if not scan.ok:
        console.print(f"[bold red]Scan failed: {scan.error}[/bold red]")
        return 1

    if args.extract_names:
        extraction = analyzer.extract_action_names()
        if not extraction.ok:
            console.print(f"[bold red]Name extraction failed: {extraction.error}[/bold red]")
            return 1

    discovery: DiscoveryResult = analyzer.get_discovery()
    if args.discover:
        found = analyzer.find_all_actions()
        if not found.ok:
            console.print(f"[bold red]Discovery failed: {found.error}[/bold red]")
            return 1
        discovery = found.unwrap()

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            _write_output(analyzer, discovery, f, args.format)
        console.print(f"Results written to {args.output}")
    else:
        _write_output(analyzer, discovery, sys.stdout, args.format)

    if args.export:
        exported = analyzer.export_analysis(ExportOptions(include_full_details=not args.no_full_details))
        if not exported.ok:
            console.print(f"[bold red]Export failed: {exported.error}[/bold red]")
            return 1
        path = write_export(exported.unwrap(), args.export)
        console.print(f"[green]Export written to {path}[/green]")

    if args.locate:
        write_source_matches(args.locate, analyzer.locate_function_source(args.locate), sys.stdout)

    if args.locate_pattern:
        located = analyzer.locate_function_pattern(args.locate_pattern)
        if not located.ok:
            console.print(f"[bold red]Pattern search failed: {located.error}[/bold red]")
            return 1
        write_pattern_hits(located.unwrap(), sys.stdout)

    return 0


def _write_output(analyzer: ActionAnalyzer, discovery: DiscoveryResult, output: TextIO, fmt: str) -> None:
    """Dispatch to the appropriate writer."""
    invocations = analyzer.get_actions()
    if fmt == "json":
        data = {
            "invocations": [entry.model_dump(mode="json") for entry in invocations],
            "discovery": discovery.model_dump(mode="json"),
        }
        json.dump(data, output, indent=2, ensure_ascii=False)
        output.write("\n")
    elif fmt == "table":
        write_table(invocations, output)
    else:
        write_summary(invocations, discovery, output)


if __name__ == "__main__":
    sys.exit(main())
