from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import EngineError, ErrorCode, ExecutionTimeoutError
from ..settings import EngineSettings
from ..workspace import Workspace


class RuntimeKind(str, Enum):
    """Declared execution strategy for a submitted program.

    Example:
        ```python
        kind = RuntimeKind("compiled")
        ```
    """

    EMBEDDED = "embedded"
    PACKAGED = "packaged"
    COMPILED = "compiled"


_ALIASES = {
    "node": RuntimeKind.EMBEDDED,
    "electron": RuntimeKind.PACKAGED,
    "cs": RuntimeKind.COMPILED,
}


def parse_runtime_kind(value: str | None) -> RuntimeKind | None:
    """Map a caller-supplied runtime name to a known kind, or None.

    Example:
        ```python
        assert parse_runtime_kind(" Electron ") is RuntimeKind.PACKAGED
        ```
    """
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    try:
        return RuntimeKind(normalized)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Immutable program submission handed to the coordinator.

    Example:
        ```python
        req = ExecutionRequest(code="print('hi')", runtime_kind="embedded")
        ```
    """

    code: str
    runtime_kind: str
    entry_point: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one run, as surfaced to the caller.

    Example:
        ```python
        out = ExecutionResult(output="A\\nB", succeeded=True)
        ```
    """

    output: str = ""
    succeeded: bool = True
    diagnostic: ErrorCode | None = None
    detail: str | None = None
    used_fallback: bool = False
    workspace_token: str | None = None

    @classmethod
    def failure(cls, error: EngineError, *, workspace_token: str | None = None) -> "ExecutionResult":
        """Build a failed result from an engine error, keeping partial output.

        Example:
            ```python
            result = ExecutionResult.failure(ExecutionTimeoutError("too slow"))
            ```
        """
        return cls(
            output=error.output,
            succeeded=False,
            diagnostic=error.code,
            detail=error.detail,
            workspace_token=workspace_token,
        )

    @property
    def status_code(self) -> int:
        """Return the HTTP-equivalent status class for this result.

        Example:
            ```python
            assert ExecutionResult(output="ok").status_code == 200
            ```
        """
        if self.succeeded:
            return 200
        if self.diagnostic is not None and self.diagnostic.is_client_error:
            return 400
        return 500

    def to_response(self) -> dict[str, Any]:
        """Render the caller-facing response body.

        Example:
            ```python
            body = ExecutionResult(output="hi").to_response()
            ```
        """
        body: dict[str, Any] = {"succeeded": self.succeeded}
        if self.succeeded:
            body["output"] = self.output
        if self.diagnostic is not None:
            body["diagnostic"] = self.diagnostic.value
            body["detail"] = self.detail or ""
        if not self.succeeded and self.status_code == 500 and self.output:
            body["output"] = self.output
        if self.used_fallback:
            body["fallback"] = True
        return body


@dataclass(frozen=True, slots=True)
class Deadline:
    """Wall-clock budget shared by every wait inside one request.

    Example:
        ```python
        deadline = Deadline.after(10)
        ```
    """

    expires_at: float
    budget_seconds: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        """Start a deadline that expires `seconds` from now.

        Example:
            ```python
            deadline = Deadline.after(5)
            ```
        """
        return cls(expires_at=time.monotonic() + seconds, budget_seconds=seconds)

    def remaining(self) -> float:
        """Return seconds left, never negative.

        Example:
            ```python
            left = deadline.remaining()
            ```
        """
        return max(0.0, self.expires_at - time.monotonic())

    def clamp(self, step_seconds: float) -> float:
        """Bound a step timeout by the time left, failing if none is left.

        Example:
            ```python
            timeout = deadline.clamp(5)
            ```
        """
        left = self.remaining()
        if left <= 0:
            raise ExecutionTimeoutError(f"Execution deadline of {self.budget_seconds:g}s exceeded")
        return min(float(step_seconds), left)


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Everything an executor needs for one run.

    Example:
        ```python
        ctx = ExecutionContext(request, workspace, "main.py", Deadline.after(5), EngineSettings())
        ```
    """

    request: ExecutionRequest
    workspace: Workspace
    entry_point: str
    deadline: Deadline
    settings: EngineSettings

    @property
    def workdir(self) -> Path:
        """Return the workspace directory used as the working directory.

        Example:
            ```python
            cwd = ctx.workdir
            ```
        """
        return self.workspace.path

    def entry_path(self) -> Path:
        """Return the absolute path of the entry-point file in the workspace.

        Example:
            ```python
            path = ctx.entry_path()
            ```
        """
        return self.workspace.resolve(self.entry_point)

    def max_output_chars(self) -> int:
        """Return the output truncation limit in characters.

        Example:
            ```python
            limit = ctx.max_output_chars()
            ```
        """
        return int(self.settings.max_output_kb) * 1024
