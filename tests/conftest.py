from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a small Python script that stands in for an external tool."""
    tools = tmp_path / "tools"
    tools.mkdir()

    def _make(name: str, body: str) -> Path:
        path = tools / f"{name}.py"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return _make
