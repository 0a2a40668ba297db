"""Filesystem and shell access confined to one workspace directory."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 250_000
MAX_SEARCH_READ_BYTES = 400_000
MAX_SEARCH_RESULTS = 50
MAX_SEARCH_FILES = 400
MAX_LINE_CHARS = 400
TIMEOUT_EXIT_CODE = 124

IGNORED_DIRS = frozenset({"node_modules", "dist", "dist-ssr", ".git", "__pycache__", ".venv"})
BINARY_FILE_PATTERN = re.compile(
    r"\.(png|jpg|jpeg|gif|webp|ico|zip|gz|pdf|mp4|mov|lock|pyc)$", re.IGNORECASE
)

CheckScript = Literal["lint", "build"]


@dataclass
class SearchHit:
    path: str
    line: int
    text: str


@dataclass
class CommandResult:
    exit_code: int
    output: str


class Workspace:
    """Root directory the agent tools may read, write and run commands in."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def resolve(self, relative_path: str) -> Path:
        """Resolve ``relative_path`` under the root, refusing escapes."""
        target = (self.root / relative_path.lstrip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError("Path escapes workspace root")
        return target

    def read_text(self, relative_path: str, max_bytes: int = MAX_READ_BYTES) -> str:
        target = self.resolve(relative_path)
        if not target.is_file():
            raise ValueError("Not a file")
        size = target.stat().st_size
        if size > max_bytes:
            raise ValueError(f"File too large ({size} bytes). Limit is {max_bytes}.")
        return target.read_text(encoding="utf-8")

    def list_dir(self, relative_path: str = ".") -> list[str]:
        target = self.resolve(relative_path or ".")
        return [
            f"{entry.name}/" if entry.is_dir() else entry.name
            for entry in sorted(target.iterdir(), key=lambda p: p.name)
            if entry.name != ".git"
        ]

    def _walk_files(self, max_files: int) -> list[str]:
        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
            for name in sorted(filenames):
                if len(files) >= max_files:
                    return files
                rel = Path(dirpath, name).relative_to(self.root)
                files.append(rel.as_posix())
        return files

    def search(
        self,
        query: str,
        max_results: int = MAX_SEARCH_RESULTS,
        max_files: int = MAX_SEARCH_FILES,
    ) -> list[SearchHit]:
        """Find lines matching ``query``.

        ``/pattern/flags`` is a regular expression (``i`` when no flags are
        given); anything else is a case-insensitive substring.
        """
        matcher = _build_matcher(query)
        results: list[SearchHit] = []

        for rel_path in self._walk_files(max_files):
            if len(results) >= max_results:
                break
            if BINARY_FILE_PATTERN.search(rel_path):
                continue
            try:
                content = self.read_text(rel_path, MAX_SEARCH_READ_BYTES)
            except (OSError, UnicodeDecodeError, ValueError):
                continue

            for number, line in enumerate(content.splitlines(), start=1):
                if matcher(line):
                    results.append(SearchHit(rel_path, number, line[:MAX_LINE_CHARS]))
                    if len(results) >= max_results:
                        break

        return results

    def write_file(self, relative_path: str, content: str) -> str:
        target = self.resolve(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info("Wrote %d chars to %s", len(content), relative_path)
        return f"Successfully wrote {len(content)} characters to {relative_path}"

    def replace_in_file(self, relative_path: str, old_text: str, new_text: str) -> str:
        """Replace the first occurrence of ``old_text``."""
        target = self.resolve(relative_path)
        content = target.read_text(encoding="utf-8")
        occurrences = content.count(old_text)
        if occurrences == 0:
            raise ValueError(f"Old text not found in {relative_path}")

        target.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
        return f"Replaced 1 of {occurrences} occurrence(s) in {relative_path}"

    def run_command(
        self,
        command: str,
        timeout: float = 60,
        max_output_chars: int = 20_000,
    ) -> CommandResult:
        """Run ``command`` through the shell with stderr merged into stdout."""
        logger.info("Running command in workspace: %s", command)
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=self.root,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            output = _decode(exc.output)[:max_output_chars]
            logger.warning("Command timed out after %ss: %s", timeout, command)
            return CommandResult(TIMEOUT_EXIT_CODE, output + "\n[Timed out]")

        return CommandResult(
            completed.returncode, _decode(completed.stdout)[:max_output_chars]
        )

    def run_checks(self, script: CheckScript) -> CommandResult:
        return self.run_command(f"npm run {script}", timeout=120, max_output_chars=30_000)


def _decode(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _build_matcher(query: str) -> Callable[[str], bool]:
    last_slash = query.rfind("/")
    if query.startswith("/") and last_slash > 0:
        pattern = query[1:last_slash]
        flags = 0
        for flag in query[last_slash + 1 :] or "i":
            flags |= {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}.get(flag, 0)
        regex = re.compile(pattern, flags)
        return lambda line: regex.search(line) is not None

    needle = query.lower()
    return lambda line: needle in line.lower()
