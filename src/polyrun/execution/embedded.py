from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, ClassVar

from ..errors import ExecutionTimeoutError, InterpreterFaultError
from .process import run_bounded
from .types import ExecutionContext, ExecutionResult, RuntimeKind

logger = logging.getLogger(__name__)

_REPLY_CHARS_PER_OUTPUT_CHAR = 40
_REPLY_OVERHEAD_CHARS = 64 * 1024


def _worker_path() -> Path:
    """Return the absolute path to the worker module file.

    Example:
        ```python
        path = _worker_path()
        ```
    """
    return Path(__file__).resolve().parents[1] / "worker.py"


def _build_payload(context: ExecutionContext, timeout_seconds: float) -> dict[str, Any]:
    """Build the worker payload from the request and interpreter policy.

    Example:
        ```python
        payload = _build_payload(context, timeout_seconds=4.5)
        ```
    """
    policy = context.settings.embedded
    return {
        "code": context.request.code,
        "filename": f"/sandbox/{context.entry_point}",
        "environ": {key: os.environ[key] for key in policy.environ_keys if key in os.environ},
        "policy": {
            "mode": policy.mode,
            "memory_limit_mb": policy.memory_limit_mb,
            "cpu_seconds": timeout_seconds,
            "max_output_kb": context.settings.max_output_kb,
            "allowed_imports": policy.allowed_imports,
            "blocked_imports": policy.blocked_imports,
            "allowed_builtins": policy.allowed_builtins,
            "blocked_builtins": policy.blocked_builtins,
        },
    }


def _reply_limit(context: ExecutionContext) -> int:
    """Return the cap on raw worker reply text.

    In the worst case every output character travels in its own JSON line,
    plus room for the result record.

    Example:
        ```python
        limit = _reply_limit(context)
        ```
    """
    return context.max_output_chars() * _REPLY_CHARS_PER_OUTPUT_CHAR + _REPLY_OVERHEAD_CHARS


def _parse_reply(stdout: str) -> tuple[str, dict[str, Any] | None]:
    """Split worker reply lines into captured output and the final result record.

    Example:
        ```python
        output, record = _parse_reply('{"type": "output", "text": "hi\\n"}\\n')
        ```
    """
    chunks: list[str] = []
    record: dict[str, Any] | None = None
    for line in stdout.splitlines():
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(message, dict):
            continue
        if message.get("type") == "output":
            chunks.append(str(message.get("text", "")))
        elif message.get("type") == "result":
            record = message
    return "".join(chunks), record


class EmbeddedInterpreterExecutor:
    """Run Python source in a restricted interpreter child process.

    Example:
        ```python
        result = EmbeddedInterpreterExecutor().run(context)
        ```
    """

    kind: ClassVar[RuntimeKind] = RuntimeKind.EMBEDDED
    default_entry_point: ClassVar[str] = "main.py"

    def __init__(self, *, python_executable: str | None = None) -> None:
        """Choose the interpreter that hosts the worker.

        Example:
            ```python
            executor = EmbeddedInterpreterExecutor(python_executable="/usr/bin/python3")
            ```
        """
        self._python = python_executable or sys.executable

    def run(self, context: ExecutionContext) -> ExecutionResult:
        """Execute the request in the worker and return its merged output.

        Example:
            ```python
            result = executor.run(context)
            ```
        """
        timeout = context.deadline.clamp(context.settings.embedded.interpreter_timeout_seconds)
        outcome = run_bounded(
            [self._python, "-I", str(_worker_path())],
            cwd=context.workdir,
            timeout_seconds=timeout,
            input_text=json.dumps(_build_payload(context, timeout)),
            env=self._worker_env(),
            max_output_chars=_reply_limit(context),
        )
        output, record = _parse_reply(outcome.stdout)
        if outcome.timed_out:
            raise ExecutionTimeoutError(
                f"Embedded interpreter stopped after {timeout:.2f}s", output=output
            )
        if record is None:
            detail = outcome.stderr.strip() or f"worker exited with status {outcome.returncode}"
            raise InterpreterFaultError(detail, output=output)
        if not record.get("ok"):
            raise InterpreterFaultError(str(record.get("error") or "Interpreter fault"), output=output)
        if record.get("truncated"):
            logger.info("Embedded output truncated at %s KiB", context.settings.max_output_kb)
        return ExecutionResult(output=output, succeeded=True)

    def _worker_env(self) -> dict[str, str]:
        """Return the minimal environment for the worker process.

        Example:
            ```python
            env = executor._worker_env()
            ```
        """
        env: dict[str, str] = {}
        for key in ("PATH", "SYSTEMROOT", "LANG", "LC_ALL", "TZ"):
            if key in os.environ:
                env[key] = os.environ[key]
        return env
