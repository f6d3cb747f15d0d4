from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Diagnostic codes surfaced in an execution result.

    Example:
        ```python
        code = ErrorCode("ExecutionTimeout")
        ```
    """

    INVALID_REQUEST = "InvalidRequest"
    UNSUPPORTED_RUNTIME = "UnsupportedRuntime"
    LAUNCHER_UNAVAILABLE = "LauncherUnavailable"
    COMPILER_UNAVAILABLE = "CompilerUnavailable"
    EXECUTION_TIMEOUT = "ExecutionTimeout"
    INTERPRETER_FAULT = "InterpreterFault"
    EXTERNAL_PROCESS_FAILURE = "ExternalProcessFailure"
    CLEANUP_FAILURE = "CleanupFailure"
    INTERNAL_ERROR = "InternalError"

    @property
    def is_client_error(self) -> bool:
        """Return True for codes caused by the request itself.

        Example:
            ```python
            assert ErrorCode.INVALID_REQUEST.is_client_error
            ```
        """
        return self in {ErrorCode.INVALID_REQUEST, ErrorCode.UNSUPPORTED_RUNTIME}


class EngineError(Exception):
    """Base failure raised inside the engine and converted to a result.

    Example:
        ```python
        raise EngineError("launcher crashed", output="partial")
        ```
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, detail: str, *, output: str = "") -> None:
        """Store the diagnostic detail and any partial output.

        Example:
            ```python
            err = EngineError("boom", output="line 1\\n")
            ```
        """
        super().__init__(detail)
        self.detail = detail
        self.output = output


class InvalidRequestError(EngineError):
    code = ErrorCode.INVALID_REQUEST


class UnsupportedRuntimeError(EngineError):
    code = ErrorCode.UNSUPPORTED_RUNTIME


class LauncherUnavailableError(EngineError):
    code = ErrorCode.LAUNCHER_UNAVAILABLE


class CompilerUnavailableError(EngineError):
    code = ErrorCode.COMPILER_UNAVAILABLE


class ExecutionTimeoutError(EngineError):
    code = ErrorCode.EXECUTION_TIMEOUT


class InterpreterFaultError(EngineError):
    code = ErrorCode.INTERPRETER_FAULT


class ExternalProcessFailureError(EngineError):
    code = ErrorCode.EXTERNAL_PROCESS_FAILURE
