from __future__ import annotations

import contextlib
import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Iterator

from .errors import ErrorCode, InvalidRequestError

logger = logging.getLogger(__name__)


def validate_entry_point(entry_point: str) -> str:
    """Check that an entry point is a relative path that stays inside a workspace.

    Example:
        ```python
        name = validate_entry_point("src/main.js")
        ```
    """
    if not isinstance(entry_point, str) or not entry_point.strip():
        raise InvalidRequestError("Entry point must be a non-empty relative filename")
    if "\x00" in entry_point:
        raise InvalidRequestError("Entry point contains a NUL byte")
    posix = PurePosixPath(entry_point)
    windows = PureWindowsPath(entry_point)
    if posix.is_absolute() or windows.is_absolute() or windows.drive:
        raise InvalidRequestError(f"Entry point '{entry_point}' must be relative to the workspace")
    parts = entry_point.replace("\\", "/").split("/")
    if any(part in {"", ".", ".."} for part in parts):
        raise InvalidRequestError(f"Entry point '{entry_point}' escapes or does not name a file")
    return "/".join(parts)


@dataclass(frozen=True, slots=True)
class Workspace:
    """Exclusively-owned scratch directory for one execution.

    Example:
        ```python
        ws = Workspace(token="3f2a...", path=Path("/tmp/polyrun-3f2a..."))
        ```
    """

    token: str
    path: Path

    def resolve(self, relative: str) -> Path:
        """Return a path inside the workspace, creating its parent directories.

        Example:
            ```python
            target = ws.resolve("src/main.js")
            ```
        """
        name = validate_entry_point(relative)
        root = self.path.resolve()
        target = (root / name).resolve()
        if not target.is_relative_to(root) or target == root:
            raise InvalidRequestError(f"Entry point '{relative}' resolves outside the workspace")
        target.parent.mkdir(parents=True, exist_ok=True)
        return target


class WorkspaceManager:
    """Allocate and tear down per-run scratch directories.

    Example:
        ```python
        manager = WorkspaceManager(root=Path("/tmp"), prefix="polyrun-")
        ```
    """

    def __init__(self, *, root: Path, prefix: str = "polyrun-") -> None:
        """Remember where workspaces go and how they are named.

        Example:
            ```python
            manager = WorkspaceManager(root=Path(tempfile.gettempdir()))
            ```
        """
        self._root = Path(root)
        self._prefix = prefix

    @property
    def root(self) -> Path:
        """Return the directory that holds all workspaces.

        Example:
            ```python
            parent = manager.root
            ```
        """
        return self._root

    def acquire(self) -> Workspace:
        """Create a fresh, uniquely named workspace directory.

        Example:
            ```python
            ws = manager.acquire()
            ```
        """
        token = uuid.uuid4().hex
        path = self._root / f"{self._prefix}{token}"
        # No exist_ok: a name collision must fail rather than share a directory.
        path.mkdir(mode=0o700)
        logger.debug("Acquired workspace %s at %s", token, path)
        return Workspace(token=token, path=path)

    def release(self, workspace: Workspace) -> None:
        """Remove a workspace tree, logging instead of raising on failure.

        Example:
            ```python
            manager.release(ws)
            ```
        """
        try:
            shutil.rmtree(workspace.path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning(
                "%s: could not remove workspace %s (%s)",
                ErrorCode.CLEANUP_FAILURE.value,
                workspace.path,
                exc,
            )
            return
        logger.debug("Released workspace %s", workspace.token)

    @contextlib.contextmanager
    def scoped(self) -> Iterator[Workspace]:
        """Yield a workspace that is released on every exit path.

        Example:
            ```python
            with manager.scoped() as ws:
                (ws.path / "main.js").write_text("console.log(1)")
            ```
        """
        workspace = self.acquire()
        try:
            yield workspace
        finally:
            self.release(workspace)
