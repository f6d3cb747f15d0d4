from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass

from ..settings import EngineSettings
from .types import RuntimeKind


@dataclass(frozen=True, slots=True)
class ToolStatus:
    """Availability of the external tool a runtime kind depends on.

    Example:
        ```python
        status = ToolStatus(RuntimeKind.COMPILED, "csc", None, False)
        ```
    """

    kind: RuntimeKind
    tool: str
    path: str | None
    required: bool

    @property
    def available(self) -> bool:
        """Return True when the tool was found on PATH.

        Example:
            ```python
            ok = status.available
            ```
        """
        return self.path is not None


def find_tool(command: list[str]) -> str | None:
    """Resolve the executable of a command line on PATH.

    Example:
        ```python
        path = find_tool(["npx", "electron", "."])
        ```
    """
    if not command:
        return None
    return shutil.which(command[0])


def probe_tool(kind: RuntimeKind, settings: EngineSettings) -> ToolStatus:
    """Report the external tool for one runtime kind.

    The embedded interpreter runs on the host Python, and a missing compiler is
    only required when the literal-print fallback is disabled.

    Example:
        ```python
        status = probe_tool(RuntimeKind.PACKAGED, EngineSettings())
        ```
    """
    if kind is RuntimeKind.EMBEDDED:
        return ToolStatus(kind, "python", sys.executable or None, True)
    if kind is RuntimeKind.PACKAGED:
        command = settings.packaged.launcher
        return ToolStatus(kind, command[0], find_tool(command), True)
    command = settings.compiled.compiler
    return ToolStatus(
        kind,
        command[0],
        find_tool(command),
        not settings.compiled.fallback_on_compile_failure,
    )


def probe_toolchain(settings: EngineSettings) -> dict[RuntimeKind, ToolStatus]:
    """Report external tool availability for every runtime kind.

    Example:
        ```python
        statuses = probe_toolchain(EngineSettings())
        ```
    """
    return {kind: probe_tool(kind, settings) for kind in RuntimeKind}
