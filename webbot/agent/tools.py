"""Agent tools for reading, editing and running commands in the workspace.

Each tool declares a pydantic argument schema; LangChain validates the
model's decoded arguments against it before the function runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from webbot.agent.workspace import CheckScript

if TYPE_CHECKING:
    from webbot.agent.workspace import Workspace

logger = logging.getLogger(__name__)

_workspace: Workspace | None = None


class PathArgs(BaseModel):
    path: str = Field(min_length=1, description="Path relative to the workspace root.")


class SearchArgs(BaseModel):
    query: str = Field(min_length=1, description="Plain text, or a regex like /pattern/i.")


class RunChecksArgs(BaseModel):
    script: CheckScript = Field(description="Which check to run: lint or build.")


class WriteFileArgs(BaseModel):
    path: str = Field(min_length=1, description="Path relative to the workspace root.")
    content: str = Field(description="Full new content of the file.")


class ReplaceInFileArgs(BaseModel):
    path: str = Field(min_length=1, description="Path relative to the workspace root.")
    old_text: str = Field(min_length=1, description="Exact text to replace.")
    new_text: str = Field(description="Replacement text.")


class RunCommandArgs(BaseModel):
    command: str = Field(min_length=1, description="Shell command to run.")


def build_tools(workspace: Workspace) -> list[BaseTool]:
    global _workspace  # noqa: PLW0603
    _workspace = workspace
    return [
        read_file,
        list_dir,
        search,
        run_checks,
        write_file,
        replace_in_file,
        run_command,
    ]


def _get_workspace() -> Workspace:
    if _workspace is None:
        raise RuntimeError("Tools not initialised – call build_tools() first")
    return _workspace


@tool("read_file", args_schema=PathArgs)
def read_file(path: str) -> str:
    """Read a UTF-8 text file from the repo. Provide a relative path."""
    return _get_workspace().read_text(path)


@tool("list_dir", args_schema=PathArgs)
def list_dir(path: str) -> str:
    """List files/folders in a directory. Provide a relative path (use '.' for root)."""
    return json.dumps(_get_workspace().list_dir(path))


@tool("search", args_schema=SearchArgs)
def search(query: str) -> str:
    """Search for text in the repo. query can be a plain string or a regex like /pattern/i."""
    hits = _get_workspace().search(query)
    return json.dumps([asdict(hit) for hit in hits], indent=2)


@tool("run_checks", args_schema=RunChecksArgs)
def run_checks(script: CheckScript) -> str:
    """Run repo checks. script must be one of: lint, build."""
    return json.dumps(asdict(_get_workspace().run_checks(script)), indent=2)


@tool("write_file", args_schema=WriteFileArgs)
def write_file(path: str, content: str) -> str:
    """Write content to a file, creating it or overwriting it.

    Use for new files or complete rewrites.
    """
    return _get_workspace().write_file(path, content)


@tool("replace_in_file", args_schema=ReplaceInFileArgs)
def replace_in_file(path: str, old_text: str, new_text: str) -> str:
    """Replace text in a file. old_text must match exactly, whitespace included.

    Read the file first to get the exact text.
    """
    return _get_workspace().replace_in_file(path, old_text, new_text)


@tool("run_command", args_schema=RunCommandArgs)
def run_command(command: str) -> str:
    """Run a shell command in the repo directory. Returns exit code and output."""
    return json.dumps(asdict(_get_workspace().run_command(command)), indent=2)

