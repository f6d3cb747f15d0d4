from __future__ import annotations

import logging
from pathlib import Path
from typing import ClassVar

from ..errors import (
    CompilerUnavailableError,
    EngineError,
    ErrorCode,
    ExecutionTimeoutError,
    ExternalProcessFailureError,
)
from ..fallback import extract_literal_prints
from .capabilities import find_tool
from .process import run_bounded
from .types import ExecutionContext, ExecutionResult, RuntimeKind

logger = logging.getLogger(__name__)


class CompileAndRunExecutor:
    """Compile the entry file with an external compiler, then run the binary.

    When compilation fails the literal-print fallback supplies the output.

    Example:
        ```python
        result = CompileAndRunExecutor().run(context)
        ```
    """

    kind: ClassVar[RuntimeKind] = RuntimeKind.COMPILED
    default_entry_point: ClassVar[str] = "Program.cs"

    def run(self, context: ExecutionContext) -> ExecutionResult:
        """Compile and run the program, falling back on compile failure.

        Example:
            ```python
            result = executor.run(context)
            ```
        """
        source = context.entry_path()
        source.write_text(context.request.code, encoding="utf-8")
        try:
            binary = self._compile(context, source)
        except EngineError as exc:
            if not context.settings.compiled.fallback_on_compile_failure:
                raise
            logger.warning(
                "Compilation failed (%s: %s); using literal-print fallback",
                exc.code.value,
                exc.detail,
            )
            return ExecutionResult(
                output=extract_literal_prints(context.request.code),
                succeeded=True,
                used_fallback=True,
            )
        return self._run_binary(context, binary)

    def _compile(self, context: ExecutionContext, source: Path) -> Path:
        """Invoke the compiler and return the produced binary path.

        Example:
            ```python
            binary = executor._compile(context, Path("/tmp/ws/Program.cs"))
            ```
        """
        settings = context.settings.compiled
        compiler = find_tool(settings.compiler)
        if compiler is None:
            raise CompilerUnavailableError(
                f"Compiler '{settings.compiler[0]}' was not found on PATH"
            )
        timeout = context.deadline.clamp(settings.compile_timeout_seconds)
        try:
            outcome = run_bounded(
                [compiler, *settings.compiler[1:], str(source)],
                cwd=context.workdir,
                timeout_seconds=timeout,
                merge_stderr=True,
                max_output_chars=context.max_output_chars(),
            )
        except FileNotFoundError as exc:
            raise CompilerUnavailableError(f"Compiler could not start: {exc}") from exc
        except OSError as exc:
            raise ExternalProcessFailureError(f"Compiler failed to start: {exc}") from exc

        output = outcome.stdout
        if outcome.timed_out:
            raise ExecutionTimeoutError(f"Compilation exceeded {timeout:.2f}s", output=output)
        if outcome.returncode != 0:
            raise ExternalProcessFailureError(
                f"Compiler exited with status {outcome.returncode}", output=output
            )
        name = f"{source.stem}.exe"
        # csc writes into the working directory; other compilers write beside the source.
        for binary in (context.workdir / name, source.with_name(name)):
            if binary.is_file():
                return binary
        raise ExternalProcessFailureError(f"Compiler did not produce {name}", output=output)

    def _run_binary(self, context: ExecutionContext, binary: Path) -> ExecutionResult:
        """Run the compiled binary and return its combined output.

        Example:
            ```python
            result = executor._run_binary(context, Path("/tmp/ws/Program.exe"))
            ```
        """
        settings = context.settings.compiled
        timeout = context.deadline.clamp(settings.run_timeout_seconds)
        try:
            outcome = run_bounded(
                [*settings.binary_launcher, str(binary)],
                cwd=context.workdir,
                timeout_seconds=timeout,
                merge_stderr=True,
                max_output_chars=context.max_output_chars(),
            )
        except OSError as exc:
            raise ExternalProcessFailureError(f"Compiled program could not start: {exc}") from exc

        output = outcome.stdout
        if outcome.timed_out:
            raise ExecutionTimeoutError(f"Compiled program exceeded {timeout:.2f}s", output=output)
        if outcome.returncode == 0:
            return ExecutionResult(output=output, succeeded=True)
        detail = f"Compiled program exited with status {outcome.returncode}"
        if not output.strip():
            raise ExternalProcessFailureError(detail)
        return ExecutionResult(
            output=output,
            succeeded=True,
            diagnostic=ErrorCode.EXTERNAL_PROCESS_FAILURE,
            detail=detail,
        )
