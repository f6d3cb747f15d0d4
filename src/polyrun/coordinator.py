from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from .errors import EngineError, InvalidRequestError
from .execution.engine import RuntimeExecutor
from .execution.registry import ExecutorRegistry, default_executors
from .execution.types import Deadline, ExecutionContext, ExecutionRequest, ExecutionResult
from .settings import EngineSettings
from .workspace import Workspace, WorkspaceManager, validate_entry_point

logger = logging.getLogger(__name__)


def _resolve_settings(settings: EngineSettings | None, settings_file: str | None) -> EngineSettings:
    """Resolve the effective settings object for a run.

    Example:
        ```python
        settings = _resolve_settings(None, "/tmp/polyrun.toml")
        ```
    """
    if settings is not None and settings_file is not None:
        raise ValueError("Provide either 'settings' or 'settings_file', not both")
    if settings_file is not None:
        return EngineSettings.from_file(settings_file)
    if settings is None:
        return EngineSettings()
    return settings


def _validate_request(request: ExecutionRequest, executor: RuntimeExecutor) -> str:
    """Check code and entry point, returning the effective entry point.

    Example:
        ```python
        entry = _validate_request(ExecutionRequest("print(1)", "embedded"), executor)
        ```
    """
    if not isinstance(request.code, str) or not request.code.strip():
        raise InvalidRequestError("Program code must be a non-empty string")
    entry_point = request.entry_point
    if entry_point is None or (isinstance(entry_point, str) and not entry_point.strip()):
        entry_point = executor.default_entry_point
    return validate_entry_point(entry_point)


class ExecutionCoordinator:
    """Validate, dispatch, time-box and clean up one program run.

    Example:
        ```python
        coordinator = ExecutionCoordinator(EngineSettings())
        result = coordinator.execute(ExecutionRequest(code="print('hi')", runtime_kind="embedded"))
        ```
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        registry: ExecutorRegistry | None = None,
        workspaces: WorkspaceManager | None = None,
    ) -> None:
        """Wire settings, executors and the workspace manager together.

        Example:
            ```python
            coordinator = ExecutionCoordinator(registry=ExecutorRegistry(default_executors()))
            ```
        """
        self._settings = settings or EngineSettings()
        self._registry = registry or ExecutorRegistry(default_executors())
        self._workspaces = workspaces or WorkspaceManager(
            root=self._settings.resolved_workspace_root(),
            prefix=self._settings.workspace_prefix,
        )

    @property
    def settings(self) -> EngineSettings:
        """Return the settings this coordinator runs with.

        Example:
            ```python
            timeout = coordinator.settings.process_deadline_seconds
            ```
        """
        return self._settings

    @property
    def registry(self) -> ExecutorRegistry:
        """Return the runtime kind to executor mapping.

        Example:
            ```python
            kinds = coordinator.registry.kinds()
            ```
        """
        return self._registry

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one request and return its result; never raises for run failures.

        Example:
            ```python
            result = coordinator.execute(ExecutionRequest(code="x", runtime_kind="ruby"))
            ```
        """
        try:
            if not isinstance(request.runtime_kind, str) or not request.runtime_kind.strip():
                raise InvalidRequestError("A runtime kind is required")
            executor = self._registry.resolve(request.runtime_kind)
            entry_point = _validate_request(request, executor)
        except EngineError as exc:
            logger.info("Rejected request (%s): %s", exc.code.value, exc.detail)
            return ExecutionResult.failure(exc)

        deadline = Deadline.after(self._settings.deadline_for(executor.kind.value))
        try:
            with self._workspaces.scoped() as workspace:
                return self._run_in(workspace, executor, request, entry_point, deadline)
        except OSError as exc:
            logger.error("Could not allocate a workspace under %s: %s", self._workspaces.root, exc)
            return ExecutionResult.failure(EngineError(f"Workspace allocation failed: {exc}"))

    def execute_many(
        self,
        requests: Iterable[ExecutionRequest],
        max_workers: int | None = None,
    ) -> list[ExecutionResult]:
        """Run requests concurrently, returning results in request order.

        Example:
            ```python
            results = coordinator.execute_many([req_a, req_b], max_workers=2)
            ```
        """
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="polyrun") as pool:
            return list(pool.map(self.execute, requests))

    def _run_in(
        self,
        workspace: Workspace,
        executor: RuntimeExecutor,
        request: ExecutionRequest,
        entry_point: str,
        deadline: Deadline,
    ) -> ExecutionResult:
        """Invoke the executor and convert every failure into a result.

        Example:
            ```python
            result = coordinator._run_in(workspace, executor, request, "main.py", Deadline.after(5))
            ```
        """
        context = ExecutionContext(
            request=request,
            workspace=workspace,
            entry_point=entry_point,
            deadline=deadline,
            settings=self._settings,
        )
        try:
            result = executor.run(context)
        except EngineError as exc:
            logger.warning(
                "%s run failed in workspace %s (%s): %s",
                executor.kind.value,
                workspace.token,
                exc.code.value,
                exc.detail,
            )
            return ExecutionResult.failure(exc, workspace_token=workspace.token)
        except Exception as exc:
            logger.exception("%s executor crashed in workspace %s", executor.kind.value, workspace.token)
            error = EngineError(f"{type(exc).__name__}: {exc}")
            return ExecutionResult.failure(error, workspace_token=workspace.token)
        return dataclasses.replace(result, workspace_token=workspace.token)


def execute(
    request: ExecutionRequest,
    settings: EngineSettings | None = None,
    settings_file: str | None = None,
) -> ExecutionResult:
    """Execute one request with a coordinator built from the given settings.

    Example:
        ```python
        from polyrun import ExecutionRequest, execute
        result = execute(ExecutionRequest(code='Console.WriteLine("A");', runtime_kind="compiled"))
        ```
    """
    return ExecutionCoordinator(_resolve_settings(settings, settings_file)).execute(request)
