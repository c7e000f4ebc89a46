"""Git history tools: list, show and diff past versions of a note."""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from chronicle.agent.tools.base import Tool
from chronicle.agent.tools.guard import ResolvedPath
from chronicle.utils.exceptions import ToolError, sanitize_error_message, tool_error_handler

_GIT_TIMEOUT = 30
_MAX_OUTPUT_LENGTH = 100_000
_DEFAULT_HISTORY_LIMIT = 10
_MAX_HISTORY_LIMIT = 100

GitRunner = Callable[[list[str], Path], Awaitable[str]]


async def run_git(args: list[str], cwd: Path, timeout: float = _GIT_TIMEOUT) -> str:
    """
    Run git with discrete arguments (never through a shell) and return stdout.

    Raises:
        ToolError: git is missing or exited non-zero.
        asyncio.TimeoutError: git did not finish within ``timeout`` seconds.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
        )
    except FileNotFoundError as e:
        raise ToolError("git", "git executable not found on PATH") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip() or f"exit code {process.returncode}"
        logger.debug(f"git {args[0]} failed in {cwd}: {detail}")
        raise ToolError("git", f"git {args[0]} failed: {sanitize_error_message(detail)}")

    output = stdout.decode("utf-8", errors="replace")
    if len(output) > _MAX_OUTPUT_LENGTH:
        output = output[:_MAX_OUTPUT_LENGTH] + f"\n... (truncated, {len(output) - _MAX_OUTPUT_LENGTH} more chars)"
    return output


def clamp_history_limit(limit: Any) -> int:
    """Coerce ``limit`` into 1..100; missing, zero or unparsable values mean 10."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = 0
    return min(max(value or _DEFAULT_HISTORY_LIMIT, 1), _MAX_HISTORY_LIMIT)


def _format_commit_line(index: int, line: str) -> str:
    # %h|%s|%ar; the subject itself may contain '|'
    short_hash, _, rest = line.partition("|")
    subject, _, when = rest.rpartition("|")
    if not subject:
        subject, when = rest, ""
    suffix = f" - {when}" if when else ""
    return f"{index}. {subject} ({short_hash}){suffix}"


class _GitTool(Tool):
    path_params = ("path",)

    def __init__(self, runner: GitRunner | None = None):
        self._run = runner or run_git


class GetHistoryTool(_GitTool):
    """List the commits that touched a note."""

    @property
    def name(self) -> str:
        return "get_history"

    @property
    def description(self) -> str:
        return "Get the git commit history of a note. Use 'current' for the note open in Chronicle."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to note file relative to workspace, or 'current' for the active file",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of commits to return (1-100, default 10)",
                },
            },
            "required": ["path"],
        }

    @tool_error_handler("Failed to get git history")
    async def execute(self, path: ResolvedPath, limit: int | None = None, **kwargs: Any) -> str:
        count = clamp_history_limit(limit)
        output = await self._run(
            ["log", "--pretty=format:%h|%s|%ar", "-n", str(count), "--", path.relative],
            path.workspace,
        )
        lines = [line for line in output.strip().split("\n") if line.strip()]
        if not lines:
            return f"No git history found for {path.relative}. The file may not have been committed yet."
        commits = "\n".join(_format_commit_line(i, line) for i, line in enumerate(lines, start=1))
        return f"History for {path.relative}:\n\n{commits}\n\nUse get_version to view a specific version."


class GetVersionTool(_GitTool):
    """Show a note as it was at one commit."""

    ref_params = ("commit",)

    @property
    def name(self) -> str:
        return "get_version"

    @property
    def description(self) -> str:
        return "Get the content of a note at a specific commit."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to note file relative to workspace"},
                "commit": {
                    "type": "string",
                    "description": "Commit hash (short or full) or relative ref (HEAD~1, HEAD~2)",
                },
            },
            "required": ["path", "commit"],
        }

    @tool_error_handler("Failed to get version")
    async def execute(self, path: ResolvedPath, commit: str, **kwargs: Any) -> str:
        subject = (await self._run(["log", "-1", "--pretty=format:%s", commit], path.workspace)).strip()
        content = await self._run(["show", f"{commit}:{path.relative}"], path.workspace)
        return f"Version from commit {commit} ({subject}):\n\n{content}"


class CompareVersionsTool(_GitTool):
    """Diff a note between two commits."""

    ref_params = ("from_commit", "to_commit")

    @property
    def name(self) -> str:
        return "compare_versions"

    @property
    def description(self) -> str:
        return "Show the diff of a note between two commits (defaults to HEAD~1..HEAD)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to note file relative to workspace"},
                "from_commit": {"type": "string", "description": "Starting commit (older), default HEAD~1"},
                "to_commit": {"type": "string", "description": "Ending commit (newer), default HEAD"},
            },
            "required": ["path"],
        }

    @tool_error_handler("Failed to compare versions")
    async def execute(
        self,
        path: ResolvedPath,
        from_commit: str | None = None,
        to_commit: str | None = None,
        **kwargs: Any,
    ) -> str:
        start = from_commit or "HEAD~1"
        end = to_commit or "HEAD"
        diff = await self._run(["diff", f"{start}..{end}", "--", path.relative], path.workspace)
        if not diff.strip():
            return f"No differences between {start} and {end} for {path.relative}"
        return f"Diff for {path.relative} ({start}..{end}):\n\n```diff\n{diff}```"
