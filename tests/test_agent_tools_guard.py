"""Tests for the workspace security boundary."""

import os
from pathlib import Path

import pytest

from chronicle.agent.tools.base import Tool
from chronicle.agent.tools.guard import (
    ResolvedPath,
    WorkspaceGuard,
    ensure_safe_ref,
    ensure_within_workspace,
)
from chronicle.utils.exceptions import NotConnectedError, SecurityError, ToolError


class _FakeConnection:
    def __init__(self, workspace: str | None, current: dict | None = None, connected: bool = True):
        self.workspace = workspace
        self.current = current
        self.connected = connected
        self.calls: list[str] = []

    def is_connected(self) -> bool:
        return self.connected

    async def request(self, method, params=None, *, timeout=None):
        self.calls.append(method)
        if method == "getWorkspacePath":
            return {"path": self.workspace} if self.workspace else {"path": None, "error": "No workspace open"}
        if method == "getCurrentFile":
            return self.current or {"path": None, "relativePath": None, "content": None, "error": "No file currently open"}
        raise AssertionError(method)


class _RefTool(Tool):
    path_params = ("path",)
    ref_params = ("commit",)

    @property
    def name(self):
        return "ref_tool"

    @property
    def description(self):
        return "test"

    @property
    def parameters(self):
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs):
        return "ok"


@pytest.mark.parametrize("candidate", ["../../etc/passwd", "/etc/passwd", "/a/b-evil/x", "notes/../../b-evil/x", ".."])
def test_paths_outside_workspace_are_rejected(candidate):
    with pytest.raises(SecurityError):
        ensure_within_workspace("/a/b", candidate)


@pytest.mark.parametrize(
    "candidate, expected",
    [
        ("notes/x.md", "/a/b/notes/x.md"),
        ("notes/../x.md", "/a/b/x.md"),
        ("./x.md", "/a/b/x.md"),
        ("/a/b/inside.md", "/a/b/inside.md"),
        (".", "/a/b"),
    ],
)
def test_paths_inside_workspace_are_accepted(candidate, expected):
    assert ensure_within_workspace("/a/b", candidate) == Path(expected)


@pytest.mark.parametrize("candidate", ["bad\x00name.md", 42, None, ["x"]])
def test_non_string_and_nul_paths_are_rejected(candidate):
    with pytest.raises(SecurityError):
        ensure_within_workspace("/a/b", candidate)


def test_symlink_escape_detected_only_when_resolving(tmp_path):
    workspace = tmp_path / "ws"
    outside = tmp_path / "outside"
    workspace.mkdir()
    outside.mkdir()
    (outside / "secret.md").write_text("s", encoding="utf-8")
    os.symlink(outside, workspace / "link")

    assert ensure_within_workspace(workspace, "link/secret.md") == workspace / "link" / "secret.md"
    with pytest.raises(SecurityError):
        ensure_within_workspace(workspace, "link/secret.md", resolve_symlinks=True)


@pytest.mark.parametrize("ref", ["HEAD", "HEAD~3", "HEAD^", "v0.6.0", "feature/x", "a1b2c3d", "origin/main~2"])
def test_safe_refs_are_accepted(ref):
    assert ensure_safe_ref(ref) == ref


@pytest.mark.parametrize(
    "ref",
    ["abc; rm -rf /", "`whoami`", "$(id)", "a" * 257, "-p", "--output=/tmp/x", "", "a b", "HEAD|cat", "x\ny", None, 7],
)
def test_unsafe_refs_are_rejected(ref):
    with pytest.raises(SecurityError):
        ensure_safe_ref(ref)


def test_ref_of_exactly_max_length_is_accepted():
    assert ensure_safe_ref("a" * 256) == "a" * 256


@pytest.mark.asyncio
async def test_guard_resolves_relative_path(tmp_path):
    guard = WorkspaceGuard(_FakeConnection(str(tmp_path)))
    resolved = await guard.resolve_path("notes/../meeting.md")
    assert resolved == ResolvedPath(workspace=tmp_path, relative="meeting.md", absolute=tmp_path / "meeting.md")
    assert not resolved.is_current


@pytest.mark.asyncio
async def test_guard_resolves_current_note(tmp_path):
    conn = _FakeConnection(
        str(tmp_path),
        current={"path": str(tmp_path / "n" / "a.md"), "relativePath": "n/a.md", "content": "# A", "session": None},
    )
    resolved = await WorkspaceGuard(conn).resolve_path("current")
    assert resolved.relative == "n/a.md"
    assert resolved.absolute == tmp_path / "n" / "a.md"
    assert resolved.content == "# A"
    assert resolved.is_current
    assert conn.calls == ["getWorkspacePath", "getCurrentFile"]


@pytest.mark.asyncio
async def test_guard_checks_host_supplied_current_path(tmp_path):
    conn = _FakeConnection(
        str(tmp_path),
        current={"path": "/etc/passwd", "relativePath": "../../etc/passwd", "content": "root"},
    )
    with pytest.raises(SecurityError):
        await WorkspaceGuard(conn).resolve_path("current")


@pytest.mark.asyncio
async def test_guard_errors_without_workspace_or_note(tmp_path):
    with pytest.raises(ToolError, match="No workspace open"):
        await WorkspaceGuard(_FakeConnection(None)).resolve_path("a.md")
    with pytest.raises(ToolError, match="No note currently open"):
        await WorkspaceGuard(_FakeConnection(str(tmp_path))).resolve_path("current")


@pytest.mark.asyncio
async def test_guard_requires_connection(tmp_path):
    with pytest.raises(NotConnectedError):
        await WorkspaceGuard(_FakeConnection(str(tmp_path), connected=False)).resolve_path("a.md")


@pytest.mark.asyncio
async def test_check_validates_refs_before_touching_host(tmp_path):
    conn = _FakeConnection(str(tmp_path))
    guard = WorkspaceGuard(conn)
    with pytest.raises(SecurityError):
        await guard.check(_RefTool(), {"path": "a.md", "commit": "$(id)"})
    assert conn.calls == []

    checked = await guard.check(_RefTool(), {"path": "a.md", "commit": "HEAD~1", "other": 1})
    assert isinstance(checked["path"], ResolvedPath)
    assert checked["commit"] == "HEAD~1"
    assert checked["other"] == 1
