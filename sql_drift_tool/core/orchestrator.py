"""Drives one comparison run: resolve profiles, fetch, compare, present."""
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, TextIO, Tuple

from sql_drift_tool.core.comparator import has_drift, summarize
from sql_drift_tool.core.diff_generator import DEFAULT_CONTEXT, diff_object
from sql_drift_tool.core.errors import ConfigError
from sql_drift_tool.core.metadata_extractor import fetch_snapshot
from sql_drift_tool.core.script_generator import render_apply_script
from sql_drift_tool.core.snapshot import Snapshot, load_snapshot, save_snapshot, snapshot_to_dict
from sql_drift_tool.utils.config import (
    CliOverrides,
    Config,
    ConnectionSettings,
    ResolvedConfig,
    apply_connection_override,
    load_config,
    load_environment,
    resolve_config_path,
)
from sql_drift_tool.utils.logger import get_logger
from sql_drift_tool.utils.report_generator import emit_json, render_summary
from sql_drift_tool.utils.script_writer import ApplyScriptWriter

logger = get_logger(__name__)

DEFAULT_SCHEMAS = ("dbo", "web", "rbac", "notification")

EXIT_OK = 0
EXIT_DRIFT = 3
EXIT_NOT_FOUND = 4

SnapshotFetcher = Callable[[str, ConnectionSettings, Sequence[str]], Awaitable[Snapshot]]


@dataclass
class CompareOptions:
    source_profile: Optional[str] = None
    target_profile: Optional[str] = None
    source_connection: Optional[str] = None
    target_connection: Optional[str] = None
    source_snapshot: Optional[str] = None
    target_snapshot: Optional[str] = None
    save_snapshots: Optional[str] = None
    schemas: Optional[List[str]] = None
    ignore_whitespace: bool = False
    strip_comments: bool = False
    summary: bool = False
    compact: bool = False
    output_format: Optional[str] = None
    apply_script: bool = False
    apply_path: Optional[str] = None
    include_drops: bool = False
    object_name: Optional[str] = None
    context: int = DEFAULT_CONTEXT
    quiet: bool = False
    overrides: CliOverrides = field(default_factory=CliOverrides)


def resolve_schemas(
    explicit: Optional[Sequence[str]],
    source: ConnectionSettings,
    target: ConnectionSettings,
) -> List[str]:
    """Explicit list > source defaults > target defaults > built-in fallback."""
    if explicit is not None:
        schemas = [s.strip() for s in explicit if s and s.strip()]
        if not schemas:
            raise ConfigError("Schema list is empty")
        return schemas
    if source.default_schemas:
        return list(source.default_schemas)
    if target.default_schemas:
        return list(target.default_schemas)
    return list(DEFAULT_SCHEMAS)


async def fetch_pair(
    fetch_source: Callable[[], Awaitable[Snapshot]],
    fetch_target: Callable[[], Awaitable[Snapshot]],
) -> Tuple[Snapshot, Snapshot]:
    """Run both fetches concurrently; the first failure cancels the other."""
    try:
        async with asyncio.TaskGroup() as tg:
            source_task = tg.create_task(fetch_source())
            target_task = tg.create_task(fetch_target())
    except ExceptionGroup as eg:
        # Re-raise the first failure unwrapped.
        raise eg.exceptions[0] from None
    return source_task.result(), target_task.result()


class CompareOrchestrator:
    """Resolves both sides of a comparison and dispatches to one presentation mode."""

    def __init__(
        self,
        options: CompareOptions,
        fetcher: SnapshotFetcher = fetch_snapshot,
        writer: Optional[ApplyScriptWriter] = None,
        stdout: Optional[TextIO] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        home: Optional[Path] = None,
    ) -> None:
        self.options = options
        self.fetcher = fetcher
        self.stdout = stdout
        self.writer = writer or ApplyScriptWriter(stdout=stdout, quiet=options.quiet)
        self.env = env
        self.cwd = cwd
        self.home = home

    def _echo(self, text: str) -> None:
        if not self.options.quiet:
            print(text, file=self.stdout if self.stdout is not None else sys.stdout)

    def resolve(self) -> Tuple[ResolvedConfig, ResolvedConfig]:
        opts = self.options
        if not (opts.target_profile or opts.target_connection or opts.target_snapshot):
            raise ConfigError("A target is required (--target, --target-connection or --target-snapshot)")

        env = load_environment() if self.env is None else self.env
        config = Config(resolve_config_path(opts.overrides.config_path, env, self.cwd, self.home))

        source_cli = CliOverrides(**{**vars(opts.overrides), "profile": opts.source_profile})
        source = load_config(source_cli, env=env, config=config)
        target = load_config(CliOverrides(profile=opts.target_profile), env=env, config=config, apply_env=False)

        if opts.source_connection:
            source.connection = apply_connection_override(source.connection, opts.source_connection)
        if opts.target_connection:
            target.connection = apply_connection_override(target.connection, opts.target_connection)
        return source, target

    async def fetch(
        self, source: ResolvedConfig, target: ResolvedConfig, schemas: Sequence[str]
    ) -> Tuple[Snapshot, Snapshot]:
        opts = self.options

        def side(name: str, settings: ConnectionSettings, path: Optional[str]) -> Callable[[], Awaitable[Snapshot]]:
            async def run() -> Snapshot:
                if path:
                    logger.info(f"Loading {name} snapshot from {path}")
                    return load_snapshot(path)
                return await self.fetcher(name, settings, schemas)

            return run

        return await fetch_pair(
            side(source.profile_name, source.connection, opts.source_snapshot),
            side(target.profile_name, target.connection, opts.target_snapshot),
        )

    def _save_snapshots(self, source: Snapshot, target: Snapshot) -> None:
        # both sides may resolve to the same profile name
        directory = Path(self.options.save_snapshots)
        for side, snap in (("source", source), ("target", target)):
            path = save_snapshot(directory / f"{side}.{snap.name}.snapshot.json", snap)
            logger.info(f"Saved snapshot '{snap.name}' to {path}")

    async def run_async(self) -> int:
        opts = self.options
        source_cfg, target_cfg = self.resolve()
        schemas = resolve_schemas(opts.schemas, source_cfg.connection, target_cfg.connection)
        logger.info(f"Comparing {source_cfg.profile_name} -> {target_cfg.profile_name} over schemas {schemas}")

        source_snap, target_snap = await self.fetch(source_cfg, target_cfg, schemas)
        if opts.save_snapshots:
            self._save_snapshots(source_snap, target_snap)

        output_format = opts.output_format or source_cfg.output.default_format
        return self.present(source_snap, target_snap, output_format, source_cfg.output.json_pretty)

    def run(self) -> int:
        return asyncio.run(self.run_async())

    def present(self, source: Snapshot, target: Snapshot, output_format: str, json_pretty: bool = True) -> int:
        """Run exactly one output mode and return the process exit code."""
        opts = self.options

        if opts.object_name:
            result = diff_object(
                source,
                target,
                opts.object_name,
                opts.ignore_whitespace,
                opts.strip_comments,
                opts.context,
            )
            self._echo(result.text)
            return result.exit_code

        summary = summarize(source, target, opts.ignore_whitespace, opts.strip_comments)

        if opts.apply_script:
            script = render_apply_script(summary, source, target, opts.include_drops)
            self.writer.write(script, opts.apply_path)
            return EXIT_OK

        if opts.summary:
            self._echo(render_summary(summary, source.name, target.name, output_format, opts.compact, json_pretty))
            return EXIT_DRIFT if has_drift(summary) else EXIT_OK

        if output_format == "json":
            payload = {"source": snapshot_to_dict(source), "target": snapshot_to_dict(target)}
            self._echo(emit_json(payload, json_pretty))
        else:
            self._echo("Use --json or --summary for readable output.")
        return EXIT_OK
