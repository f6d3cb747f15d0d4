import time

import pytest

from polyrun import ErrorCode, ExecutionResult, RuntimeKind
from polyrun.errors import (
    EngineError,
    ExecutionTimeoutError,
    InvalidRequestError,
    UnsupportedRuntimeError,
)
from polyrun.execution.types import Deadline, parse_runtime_kind


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("embedded", RuntimeKind.EMBEDDED),
        ("node", RuntimeKind.EMBEDDED),
        ("Electron", RuntimeKind.PACKAGED),
        (" packaged ", RuntimeKind.PACKAGED),
        ("cs", RuntimeKind.COMPILED),
        ("compiled", RuntimeKind.COMPILED),
        ("ruby", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_runtime_kind(value, expected) -> None:
    assert parse_runtime_kind(value) is expected


def test_success_response_always_has_output() -> None:
    assert ExecutionResult().to_response() == {"succeeded": True, "output": ""}
    assert ExecutionResult().status_code == 200


def test_client_errors_map_to_400_without_output() -> None:
    invalid = ExecutionResult.failure(InvalidRequestError("no code", output="ignored"))
    unsupported = ExecutionResult.failure(UnsupportedRuntimeError("ruby"))

    assert invalid.status_code == 400
    assert unsupported.status_code == 400
    assert invalid.to_response() == {
        "succeeded": False,
        "diagnostic": "InvalidRequest",
        "detail": "no code",
    }


def test_server_errors_map_to_500_with_partial_output() -> None:
    result = ExecutionResult.failure(
        ExecutionTimeoutError("too slow", output="tick\n"), workspace_token="abc"
    )

    assert result.status_code == 500
    assert result.workspace_token == "abc"
    assert result.to_response()["output"] == "tick\n"
    assert "output" not in ExecutionResult.failure(EngineError("boom")).to_response()


def test_success_with_diagnostic_note() -> None:
    result = ExecutionResult(
        output="partial",
        diagnostic=ErrorCode.EXTERNAL_PROCESS_FAILURE,
        detail="Launcher exited with status 2",
    )

    assert result.status_code == 200
    assert result.to_response() == {
        "succeeded": True,
        "output": "partial",
        "diagnostic": "ExternalProcessFailure",
        "detail": "Launcher exited with status 2",
    }


def test_engine_error_defaults_to_internal_error() -> None:
    error = EngineError("boom")

    assert error.code is ErrorCode.INTERNAL_ERROR
    assert error.output == ""
    assert str(error) == "boom"
    assert not ErrorCode.INTERNAL_ERROR.is_client_error


def test_deadline_clamps_step_timeouts() -> None:
    deadline = Deadline.after(2)

    assert deadline.clamp(10) <= 2
    assert deadline.clamp(0.5) == 0.5


def test_expired_deadline_raises_timeout() -> None:
    deadline = Deadline(expires_at=time.monotonic() - 1, budget_seconds=3)

    assert deadline.remaining() == 0.0
    with pytest.raises(ExecutionTimeoutError, match="3s"):
        deadline.clamp(1)
