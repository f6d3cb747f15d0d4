from __future__ import annotations

import json
import logging
import os
from typing import ClassVar

from ..errors import (
    ErrorCode,
    ExecutionTimeoutError,
    ExternalProcessFailureError,
    InvalidRequestError,
    LauncherUnavailableError,
)
from .capabilities import find_tool
from .process import run_bounded
from .types import ExecutionContext, ExecutionResult, RuntimeKind

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"


class PackagedApplicationExecutor:
    """Run a program as a full application package through an external launcher.

    Example:
        ```python
        result = PackagedApplicationExecutor().run(context)
        ```
    """

    kind: ClassVar[RuntimeKind] = RuntimeKind.PACKAGED
    default_entry_point: ClassVar[str] = "main.js"

    def run(self, context: ExecutionContext) -> ExecutionResult:
        """Materialize the package, launch it, and return its combined output.

        Example:
            ```python
            result = executor.run(context)
            ```
        """
        if context.entry_point.lower() == MANIFEST_NAME:
            raise InvalidRequestError(
                f"Entry point '{context.entry_point}' would overwrite the package descriptor"
            )
        settings = context.settings.packaged
        launcher = find_tool(settings.launcher)
        if launcher is None:
            raise LauncherUnavailableError(
                f"Application launcher '{settings.launcher[0]}' was not found on PATH"
            )

        self._write_manifest(context)
        context.entry_path().write_text(context.request.code, encoding="utf-8")

        timeout = context.deadline.clamp(settings.timeout_seconds)
        try:
            outcome = run_bounded(
                [launcher, *settings.launcher[1:]],
                cwd=context.workdir,
                timeout_seconds=timeout,
                env={**os.environ, **settings.env},
                merge_stderr=True,
                max_output_chars=context.max_output_chars(),
            )
        except FileNotFoundError as exc:
            raise LauncherUnavailableError(f"Application launcher could not start: {exc}") from exc
        except OSError as exc:
            raise ExternalProcessFailureError(f"Application launcher failed: {exc}") from exc

        output = outcome.stdout
        if outcome.timed_out:
            raise ExecutionTimeoutError(f"Application exceeded {timeout:.2f}s", output=output)
        if outcome.returncode == 0:
            return ExecutionResult(output=output, succeeded=True)
        detail = f"Launcher exited with status {outcome.returncode}"
        if not output.strip():
            raise ExternalProcessFailureError(detail)
        logger.info("%s; returning captured output", detail)
        return ExecutionResult(
            output=output,
            succeeded=True,
            diagnostic=ErrorCode.EXTERNAL_PROCESS_FAILURE,
            detail=detail,
        )

    def _write_manifest(self, context: ExecutionContext) -> None:
        """Write the minimal package descriptor into the workspace.

        Example:
            ```python
            executor._write_manifest(context)
            ```
        """
        settings = context.settings.packaged
        manifest = {
            "name": settings.app_name,
            "version": settings.app_version,
            "main": context.entry_point,
            "scripts": {"start": "electron ."},
        }
        (context.workdir / MANIFEST_NAME).write_text(
            json.dumps(manifest, indent=2) + "\n", encoding="utf-8"
        )
