import logging
import os
import stat
from pathlib import Path

import pytest

from polyrun import WorkspaceManager
from polyrun import workspace as workspace_module
from polyrun.errors import InvalidRequestError
from polyrun.workspace import validate_entry_point


def test_acquire_creates_unique_private_directories(workspace_root: Path) -> None:
    manager = WorkspaceManager(root=workspace_root, prefix="run-")

    first = manager.acquire()
    second = manager.acquire()

    assert first.token != second.token
    assert first.path.is_dir() and second.path.is_dir()
    assert first.path.name == f"run-{first.token}"
    if os.name == "posix":
        assert stat.S_IMODE(first.path.stat().st_mode) & 0o077 == 0


def test_release_removes_tree(workspace_root: Path) -> None:
    manager = WorkspaceManager(root=workspace_root)
    ws = manager.acquire()
    (ws.path / "nested").mkdir()
    (ws.path / "nested" / "out.txt").write_text("x", encoding="utf-8")

    manager.release(ws)

    assert not ws.path.exists()


def test_release_of_missing_workspace_is_noop(workspace_root: Path) -> None:
    manager = WorkspaceManager(root=workspace_root)
    ws = manager.acquire()
    manager.release(ws)

    manager.release(ws)

    assert list(workspace_root.iterdir()) == []


def test_release_failure_is_logged_not_raised(
    workspace_root: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    manager = WorkspaceManager(root=workspace_root)
    ws = manager.acquire()

    def _refuse(path) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(workspace_module.shutil, "rmtree", _refuse)
    with caplog.at_level(logging.WARNING, logger="polyrun.workspace"):
        manager.release(ws)

    assert "CleanupFailure" in caplog.text
    assert ws.path.exists()


def test_scoped_releases_on_exception(workspace_root: Path) -> None:
    manager = WorkspaceManager(root=workspace_root)

    with pytest.raises(RuntimeError):
        with manager.scoped() as ws:
            (ws.path / "main.py").write_text("print(1)", encoding="utf-8")
            raise RuntimeError("executor failed")

    assert list(workspace_root.iterdir()) == []


@pytest.mark.parametrize(
    "entry_point",
    ["", "   ", "../x.js", "a/../b.js", "./main.js", "/abs/main.js", "C:\\main.js", "a//b.js", "a\x00b"],
)
def test_validate_entry_point_rejects_unsafe_names(entry_point: str) -> None:
    with pytest.raises(InvalidRequestError):
        validate_entry_point(entry_point)


def test_validate_entry_point_normalizes_backslashes() -> None:
    assert validate_entry_point("src\\main.js") == "src/main.js"
    assert validate_entry_point("Program.cs") == "Program.cs"


def test_resolve_creates_parents_inside_workspace(workspace_root: Path) -> None:
    ws = WorkspaceManager(root=workspace_root).acquire()

    target = ws.resolve("src/app/main.js")

    assert target.parent.is_dir()
    assert target.is_relative_to(ws.path.resolve())


@pytest.mark.skipif(os.name != "posix", reason="symlink semantics")
def test_resolve_rejects_symlink_escape(workspace_root: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    ws = WorkspaceManager(root=workspace_root).acquire()
    (ws.path / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(InvalidRequestError):
        ws.resolve("link/main.js")
