import logging
import sys
from pathlib import Path
from typing import ClassVar

import pytest

from polyrun import (
    EngineSettings,
    ErrorCode,
    ExecutionCoordinator,
    ExecutionRequest,
    ExecutionResult,
    RuntimeKind,
    execute,
)
from polyrun.errors import InterpreterFaultError
from polyrun.execution.registry import ExecutorRegistry
from polyrun.execution.types import ExecutionContext
from polyrun.settings import PackagedSettings

LISTING_LAUNCHER = """
import json
import runpy

with open("package.json", encoding="utf-8") as handle:
    runpy.run_path(json.load(handle)["main"], run_name="__main__")
"""


class _RecordingExecutor:
    kind: ClassVar[RuntimeKind] = RuntimeKind.EMBEDDED
    default_entry_point: ClassVar[str] = "main.py"

    def __init__(self) -> None:
        self.contexts: list[ExecutionContext] = []

    def run(self, context: ExecutionContext) -> ExecutionResult:
        self.contexts.append(context)
        assert context.workdir.is_dir()
        context.entry_path().write_text(context.request.code, encoding="utf-8")
        return ExecutionResult(output="recorded")


class _CrashingExecutor:
    kind: ClassVar[RuntimeKind] = RuntimeKind.COMPILED
    default_entry_point: ClassVar[str] = "Program.cs"

    def run(self, context: ExecutionContext) -> ExecutionResult:
        raise RuntimeError("executor bug")


class _FaultingExecutor:
    kind: ClassVar[RuntimeKind] = RuntimeKind.PACKAGED
    default_entry_point: ClassVar[str] = "main.js"

    def run(self, context: ExecutionContext) -> ExecutionResult:
        raise InterpreterFaultError("boom", output="partial\n")


def _coordinator(workspace_root: Path, *executors) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        EngineSettings(workspace_root=str(workspace_root)),
        registry=ExecutorRegistry(executors),
    )


def test_unsupported_runtime_creates_no_workspace(workspace_root: Path) -> None:
    recorder = _RecordingExecutor()
    coordinator = _coordinator(workspace_root, recorder)

    result = coordinator.execute(ExecutionRequest(code="puts 1", runtime_kind="ruby"))

    assert result.succeeded is False
    assert result.diagnostic is ErrorCode.UNSUPPORTED_RUNTIME
    assert result.status_code == 400
    assert "ruby" in (result.detail or "")
    assert recorder.contexts == []
    assert list(workspace_root.iterdir()) == []


@pytest.mark.parametrize("code", ["", "   \n"])
def test_empty_code_is_invalid(workspace_root: Path, code: str) -> None:
    coordinator = _coordinator(workspace_root, _RecordingExecutor())

    result = coordinator.execute(ExecutionRequest(code=code, runtime_kind="embedded"))

    assert result.diagnostic is ErrorCode.INVALID_REQUEST
    assert result.status_code == 400
    assert list(workspace_root.iterdir()) == []


@pytest.mark.parametrize("runtime_kind", ["", "  "])
def test_missing_runtime_kind_is_invalid(workspace_root: Path, runtime_kind: str) -> None:
    coordinator = _coordinator(workspace_root, _RecordingExecutor())

    result = coordinator.execute(ExecutionRequest(code="print(1)", runtime_kind=runtime_kind))

    assert result.diagnostic is ErrorCode.INVALID_REQUEST


@pytest.mark.parametrize("entry_point", ["../escape.py", "/etc/passwd", "a/../../b.py", "C:\\x.py"])
def test_escaping_entry_point_is_invalid(workspace_root: Path, entry_point: str) -> None:
    recorder = _RecordingExecutor()
    coordinator = _coordinator(workspace_root, recorder)

    result = coordinator.execute(
        ExecutionRequest(code="print(1)", runtime_kind="embedded", entry_point=entry_point)
    )

    assert result.diagnostic is ErrorCode.INVALID_REQUEST
    assert recorder.contexts == []


def test_aliases_and_default_entry_point(workspace_root: Path) -> None:
    recorder = _RecordingExecutor()
    coordinator = _coordinator(workspace_root, recorder)

    result = coordinator.execute(ExecutionRequest(code="print(1)", runtime_kind=" Node "))

    assert result.succeeded is True
    assert recorder.contexts[0].entry_point == "main.py"
    assert recorder.contexts[0].deadline.budget_seconds == 5


def test_workspace_is_removed_after_success(workspace_root: Path) -> None:
    recorder = _RecordingExecutor()
    coordinator = _coordinator(workspace_root, recorder)

    result = coordinator.execute(
        ExecutionRequest(code="print(1)", runtime_kind="embedded", entry_point="pkg/app.py")
    )

    context = recorder.contexts[0]
    assert result.output == "recorded"
    assert result.workspace_token == context.workspace.token
    assert context.workspace.path.parent == workspace_root
    assert not context.workspace.path.exists()
    assert list(workspace_root.iterdir()) == []


def test_executor_failure_keeps_partial_output_and_cleans_up(workspace_root: Path) -> None:
    coordinator = _coordinator(workspace_root, _FaultingExecutor())

    result = coordinator.execute(ExecutionRequest(code="x", runtime_kind="packaged"))

    assert result.succeeded is False
    assert result.diagnostic is ErrorCode.INTERPRETER_FAULT
    assert result.to_response() == {
        "succeeded": False,
        "diagnostic": "InterpreterFault",
        "detail": "boom",
        "output": "partial\n",
    }
    assert list(workspace_root.iterdir()) == []


def test_unexpected_exception_becomes_internal_error(
    workspace_root: Path, caplog: pytest.LogCaptureFixture
) -> None:
    coordinator = _coordinator(workspace_root, _CrashingExecutor())

    with caplog.at_level(logging.ERROR, logger="polyrun.coordinator"):
        result = coordinator.execute(ExecutionRequest(code="x", runtime_kind="compiled"))

    assert result.succeeded is False
    assert result.diagnostic is ErrorCode.INTERNAL_ERROR
    assert result.detail == "RuntimeError: executor bug"
    assert result.status_code == 500
    assert "executor crashed" in caplog.text
    assert list(workspace_root.iterdir()) == []


def test_missing_workspace_root_is_internal_error(tmp_path: Path) -> None:
    coordinator = _coordinator(tmp_path / "does-not-exist", _RecordingExecutor())

    result = coordinator.execute(ExecutionRequest(code="print(1)", runtime_kind="embedded"))

    assert result.succeeded is False
    assert result.diagnostic is ErrorCode.INTERNAL_ERROR
    assert "Workspace allocation failed" in (result.detail or "")


def test_resubmission_gets_a_fresh_workspace(workspace_root: Path) -> None:
    recorder = _RecordingExecutor()
    coordinator = _coordinator(workspace_root, recorder)
    request = ExecutionRequest(code="print(1)", runtime_kind="embedded")

    first = coordinator.execute(request)
    second = coordinator.execute(request)

    assert first.workspace_token != second.workspace_token
    assert recorder.contexts[0].workspace.path != recorder.contexts[1].workspace.path


def test_concurrent_runs_do_not_see_each_other(workspace_root: Path, make_tool) -> None:
    settings = EngineSettings(
        workspace_root=str(workspace_root),
        packaged=PackagedSettings(
            launcher=[sys.executable, str(make_tool("launcher", LISTING_LAUNCHER))],
            timeout_seconds=5,
        ),
    )
    coordinator = ExecutionCoordinator(settings)
    requests = [
        ExecutionRequest(
            code=(
                "import os, time\n"
                f"open('marker-{index}.txt', 'w').close()\n"
                "time.sleep(0.2)\n"
                "print(sorted(n for n in os.listdir('.') if n.startswith('marker')))\n"
            ),
            runtime_kind="packaged",
        )
        for index in range(4)
    ]

    results = coordinator.execute_many(requests, max_workers=4)

    assert [r.output for r in results] == [f"['marker-{i}.txt']\n" for i in range(4)]
    assert len({r.workspace_token for r in results}) == 4
    assert list(workspace_root.iterdir()) == []


def test_module_execute_runs_embedded_program(workspace_root: Path) -> None:
    settings = EngineSettings(workspace_root=str(workspace_root))

    result = execute(ExecutionRequest(code="print('hi')", runtime_kind="embedded"), settings=settings)

    assert result.succeeded is True
    assert result.output == "hi\n"


def test_module_execute_rejects_settings_and_settings_file(tmp_path: Path) -> None:
    settings_file = tmp_path / "polyrun.toml"
    settings_file.write_text("[engine]\nmax_output_kb = 4\n", encoding="utf-8")

    with pytest.raises(ValueError, match="not both"):
        execute(
            ExecutionRequest(code="print(1)", runtime_kind="embedded"),
            settings=EngineSettings(),
            settings_file=str(settings_file),
        )


def test_module_execute_reads_settings_file(tmp_path: Path, workspace_root: Path) -> None:
    settings_file = tmp_path / "polyrun.toml"
    settings_file.write_text(
        f'[engine]\nworkspace_root = "{workspace_root.as_posix()}"\n'
        '[compiled]\ncompiler = ["polyrun-no-such-compiler"]\n',
        encoding="utf-8",
    )

    result = execute(
        ExecutionRequest(code='Console.WriteLine("only");', runtime_kind="compiled"),
        settings_file=str(settings_file),
    )

    assert result.output == "only"
    assert result.used_fallback is True
    assert list(workspace_root.iterdir()) == []
