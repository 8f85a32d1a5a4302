"""Writes generated apply scripts to stdout or disk."""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TextIO

from sql_drift_tool.core.errors import ScriptWriteError
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)

STDOUT_PATH = "-"


def default_script_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"db-apply-diff-{now.strftime('%Y%m%d-%H%M%S')}.sql"


class ApplyScriptWriter:
    """Destination for a rendered apply script.

    ``-`` writes the script itself to stdout. Any other path (or the default
    timestamped name) is written to disk, creating parent directories, and a
    confirmation line naming the file goes to stdout.
    """

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        clock: Callable[[], datetime] = datetime.now,
        quiet: bool = False,
    ) -> None:
        self.stdout = stdout
        self.clock = clock
        self.quiet = quiet

    def _out(self) -> TextIO:
        return self.stdout if self.stdout is not None else sys.stdout

    def resolve_path(self, path: Optional[str]) -> Path:
        return Path(path) if path else Path(default_script_name(self.clock()))

    def write(self, script: str, path: Optional[str] = None) -> Optional[Path]:
        """Write the script; returns the file path, or None for stdout."""
        if path == STDOUT_PATH:
            if not self.quiet:
                print(script, file=self._out())
            return None

        target = self.resolve_path(path)
        try:
            if target.parent != Path(""):
                target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(script, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write apply script {target}: {e}", exc_info=True)
            raise ScriptWriteError(f"Failed to write apply script {target}: {e}") from e

        logger.info(f"Apply script written to {target}")
        if not self.quiet:
            print(f"Wrote apply script to {target}", file=self._out())
        return target
