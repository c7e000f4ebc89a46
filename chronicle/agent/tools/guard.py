"""Security boundary for tool arguments.

Every filesystem path and git reference reachable from a tool call passes
through ``WorkspaceGuard.check`` before the tool runs. The two pure checks,
``ensure_within_workspace`` and ``ensure_safe_ref``, fail closed with
``SecurityError``.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Any

from loguru import logger

from chronicle.bridge.protocol import Method
from chronicle.utils.exceptions import NotConnectedError, SecurityError, ToolError

if TYPE_CHECKING:
    from chronicle.agent.tools.base import Tool
    from chronicle.bridge.connection import BridgeConnection

CURRENT_NOTE = "current"
MAX_REF_LENGTH = 256

_SAFE_REF_RE = re.compile(r"[A-Za-z0-9._\-/~^]+")


def _is_contained(root: str, target: str) -> bool:
    return target == root or target.startswith(root.rstrip(os.sep) + os.sep)


def _as_path_text(value: Any, label: str) -> str:
    if isinstance(value, PurePath):
        value = str(value)
    if not isinstance(value, str):
        raise SecurityError(f"{label} must be a string")
    if "\x00" in value:
        raise SecurityError(f"{label} contains a NUL byte")
    return value


def ensure_within_workspace(
    workspace_root: str | os.PathLike[str],
    candidate: str | os.PathLike[str],
    *,
    resolve_symlinks: bool = False,
) -> Path:
    """
    Join ``candidate`` onto the workspace root and require the result to stay inside it.

    The check is lexical: ``..`` segments are collapsed before comparison and an
    absolute candidate replaces the root entirely, so both are caught. The
    comparison is against ``root + os.sep`` so a sibling such as ``/a/b-evil``
    never passes for root ``/a/b``. With ``resolve_symlinks`` the real paths of
    both sides must satisfy the same rule.

    Returns:
        The normalized absolute path.

    Raises:
        SecurityError: the path escapes the workspace or is not a usable string.
    """
    root = os.path.normpath(os.path.abspath(_as_path_text(workspace_root, "Workspace path")))
    raw = _as_path_text(candidate, "Path")
    target = os.path.normpath(os.path.join(root, raw))
    if not _is_contained(root, target):
        raise SecurityError("Path must be within workspace", value=raw)
    if resolve_symlinks:
        real_root = os.path.realpath(root)
        if not _is_contained(real_root, os.path.realpath(target)):
            raise SecurityError("Path resolves outside workspace through a symlink", value=raw)
    return Path(target)


def ensure_safe_ref(ref: Any) -> str:
    """
    Accept a git commit reference only if it is made of plain ref characters.

    Allowed: letters, digits, ``. _ - / ~ ^``; at most 256 characters; no
    leading ``-`` so the value can never be read as a git option.

    Raises:
        SecurityError: the reference is not safe to pass to git.
    """
    if not isinstance(ref, str) or not ref:
        raise SecurityError("Invalid commit reference")
    if len(ref) > MAX_REF_LENGTH:
        raise SecurityError("Commit reference too long", value=ref)
    if not _SAFE_REF_RE.fullmatch(ref) or ref.startswith("-"):
        raise SecurityError("Invalid commit reference", value=ref)
    return ref


@dataclass(frozen=True)
class ResolvedPath:
    """A workspace-contained note path, the only form tools receive paths in."""
    workspace: Path
    relative: str
    absolute: Path
    # Host-supplied content, set when the path came from the open note.
    content: str | None = None

    @property
    def is_current(self) -> bool:
        return self.content is not None

    def __str__(self) -> str:
        return self.relative


class WorkspaceGuard:
    """
    Single validation chokepoint between MCP arguments and tool code.

    Resolves the workspace root and the ``"current"`` alias through the Host,
    then applies ``ensure_within_workspace`` and ``ensure_safe_ref`` to the
    arguments each tool declares.
    """

    def __init__(self, connection: BridgeConnection, *, resolve_symlinks: bool = False):
        self.connection = connection
        self.resolve_symlinks = resolve_symlinks

    async def workspace_root(self) -> Path:
        result = await self._host_request(Method.GET_WORKSPACE_PATH.value)
        path = result.get("path") if isinstance(result, dict) else None
        if not path or not isinstance(path, str):
            raise ToolError("workspace", "No workspace open in Chronicle")
        return Path(path)

    async def resolve_path(self, value: Any) -> ResolvedPath:
        root = await self.workspace_root()
        if value == CURRENT_NOTE:
            return await self._resolve_current(root)
        absolute = ensure_within_workspace(root, value, resolve_symlinks=self.resolve_symlinks)
        return ResolvedPath(workspace=root, relative=self._relative(root, absolute), absolute=absolute)

    async def _resolve_current(self, root: Path) -> ResolvedPath:
        current = await self._host_request(Method.GET_CURRENT_FILE.value)
        if not isinstance(current, dict) or not current.get("path") or current.get("content") is None:
            raise ToolError("current", "No note currently open in Chronicle. Open a note first.")
        host_path = current["path"]
        relative = current.get("relativePath") or os.path.basename(str(host_path))
        # The Host's own answer gets the same containment check as user input.
        absolute = ensure_within_workspace(root, relative, resolve_symlinks=self.resolve_symlinks)
        return ResolvedPath(
            workspace=root,
            relative=self._relative(root, absolute),
            absolute=absolute,
            content=str(current["content"]),
        )

    async def check(self, tool: Tool, params: dict[str, Any]) -> dict[str, Any]:
        """
        Validate and resolve a tool's security-relevant arguments.

        Returns a copy of ``params`` where declared path arguments are
        ``ResolvedPath`` objects and declared refs are verified strings.
        """
        checked = dict(params)
        for name in tool.ref_params:
            if checked.get(name) is not None:
                checked[name] = ensure_safe_ref(checked[name])
        for name in tool.path_params:
            if name in checked:
                checked[name] = await self.resolve_path(checked[name])
        if tool.path_params or tool.ref_params:
            logger.debug(f"Guard passed for {tool.name}")
        return checked

    async def _host_request(self, method: str) -> Any:
        if not self.connection.is_connected():
            raise NotConnectedError("Not connected to Chronicle app. Is Chronicle running?")
        return await self.connection.request(method)

    @staticmethod
    def _relative(root: Path, absolute: Path) -> str:
        rel = os.path.relpath(absolute, os.path.normpath(os.path.abspath(root)))
        return PurePath(rel).as_posix()
