from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional, Sequence

from sql_drift_tool.core.diff_generator import DEFAULT_CONTEXT
from sql_drift_tool.core.errors import DriftToolError
from sql_drift_tool.core.orchestrator import CompareOptions, CompareOrchestrator
from sql_drift_tool.utils.config import OUTPUT_FORMATS, CliOverrides
from sql_drift_tool.utils.logger import get_logger, level_for_verbosity, setup_logger
from sql_drift_tool.utils.report_generator import error_document

EXIT_FAILURE = 1

logger = get_logger(__name__)


def _split_schemas(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return value.split(",")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sql-drift",
        description="Compare the schema of two SQL Server databases and report or reconcile drift.",
    )

    # profiles and connections
    ap.add_argument("--config", default=None, help="Path to config file (.yaml/.yml/.json)")
    ap.add_argument("--source", "--profile", dest="source", default=None, help="Source profile name")
    ap.add_argument("--target", default=None, help="Target profile name")
    ap.add_argument("--source-connection", default=None, help="Ad-hoc source connection string (URL or ADO form)")
    ap.add_argument("--target-connection", default=None, help="Ad-hoc target connection string (URL or ADO form)")
    ap.add_argument("--server", default=None, help="Override source server")
    ap.add_argument("--port", type=int, default=None, help="Override source port")
    ap.add_argument("--database", default=None, help="Override source database")
    ap.add_argument("--user", default=None, help="Override source user")
    ap.add_argument("--password", default=None, help="Override source password")
    ap.add_argument("--timeout", type=int, default=None, help="Override source connect timeout (ms)")
    ap.add_argument("--schemas", default=None, help="Comma-separated schema list, e.g. dbo,web")

    # snapshots
    ap.add_argument("--source-snapshot", default=None, help="Read the source snapshot from a JSON file")
    ap.add_argument("--target-snapshot", default=None, help="Read the target snapshot from a JSON file")
    ap.add_argument("--save-snapshots", default=None, metavar="DIR", help="Write both snapshots to DIR")

    # normalization
    ap.add_argument("--ignore-whitespace", action="store_true", help="Collapse whitespace runs before comparing")
    ap.add_argument("--strip-comments", action="store_true", help="Remove SQL comments before comparing")

    # modes
    ap.add_argument("--summary", action="store_true", help="Print a drift summary (exit 3 on drift)")
    ap.add_argument("--compact", action="store_true", help="Plain-text summary instead of tables")
    ap.add_argument("--pretty", action="store_true", help="Human-readable text output (default)")
    ap.add_argument(
        "--apply-script",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Generate an apply script; '-' for stdout, no value for db-apply-diff-<timestamp>.sql",
    )
    ap.add_argument("--include-drops", action="store_true", help="Add DROP statements for objects only in target")
    ap.add_argument("--object", default=None, help="Diff a single module, schema.name or name")
    ap.add_argument("--context", type=int, default=DEFAULT_CONTEXT, help="Context lines for --object diffs")

    # output
    ap.add_argument("--json", action="store_true", help="JSON output")
    ap.add_argument("--markdown", action="store_true", help="Markdown output")
    ap.add_argument("--format", choices=OUTPUT_FORMATS, default=None, help="Output format")
    ap.add_argument("-q", "--quiet", action="store_true", help="Suppress stdout; exit codes still apply")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging")
    ap.add_argument("--log-dir", default=None, help="Also write a dated log file to this directory")
    return ap


def _output_format(args: argparse.Namespace) -> Optional[str]:
    if args.json:
        return "json"
    if args.markdown:
        return "markdown"
    if args.format:
        return args.format
    if args.pretty:
        return "pretty"
    return None


def options_from_args(args: argparse.Namespace) -> CompareOptions:
    overrides = CliOverrides(
        config_path=args.config,
        server=args.server,
        port=args.port,
        database=args.database,
        user=args.user,
        password=args.password,
        timeout_ms=args.timeout,
    )
    return CompareOptions(
        source_profile=args.source,
        target_profile=args.target,
        source_connection=args.source_connection,
        target_connection=args.target_connection,
        source_snapshot=args.source_snapshot,
        target_snapshot=args.target_snapshot,
        save_snapshots=args.save_snapshots,
        schemas=_split_schemas(args.schemas),
        ignore_whitespace=args.ignore_whitespace,
        strip_comments=args.strip_comments,
        summary=args.summary,
        compact=args.compact,
        output_format=_output_format(args),
        apply_script=args.apply_script is not None,
        apply_path=args.apply_script or None,
        include_drops=args.include_drops,
        object_name=args.object,
        context=max(0, args.context),
        quiet=args.quiet,
        overrides=overrides,
    )


def _report_error(exc: BaseException, as_json: bool) -> None:
    if as_json:
        print(json.dumps(error_document(exc)), file=sys.stderr)
    else:
        message = getattr(exc, "message", None) or str(exc)
        print(f"Error: {message}", file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None, orchestrator_factory=CompareOrchestrator) -> int:
    """Parse arguments, run the comparison, and return the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logger("sql_drift_tool", log_dir=args.log_dir, level=level_for_verbosity(args.verbose))
    as_json = _output_format(args) == "json"

    try:
        options = options_from_args(args)
        return orchestrator_factory(options).run()
    except DriftToolError as exc:
        logger.debug("Comparison failed", exc_info=True)
        _report_error(exc, as_json)
        return EXIT_FAILURE
    except Exception as exc:
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        _report_error(exc, as_json)
        return EXIT_FAILURE
