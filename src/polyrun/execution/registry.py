from __future__ import annotations

from typing import Iterable

from ..errors import UnsupportedRuntimeError
from .compiled import CompileAndRunExecutor
from .embedded import EmbeddedInterpreterExecutor
from .engine import RuntimeExecutor
from .packaged import PackagedApplicationExecutor
from .types import RuntimeKind, parse_runtime_kind


class ExecutorRegistry:
    """Map each runtime kind to the single executor that implements it.

    Example:
        ```python
        registry = ExecutorRegistry([EmbeddedInterpreterExecutor()])
        ```
    """

    def __init__(self, executors: Iterable[RuntimeExecutor] = ()) -> None:
        """Register the given executors, one per runtime kind.

        Example:
            ```python
            registry = ExecutorRegistry(default_executors())
            ```
        """
        self._by_kind: dict[RuntimeKind, RuntimeExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: RuntimeExecutor) -> None:
        """Add an executor for a kind that has none yet.

        Example:
            ```python
            registry.register(CompileAndRunExecutor())
            ```
        """
        if executor.kind in self._by_kind:
            raise ValueError(f"An executor is already registered for '{executor.kind.value}'")
        self._by_kind[executor.kind] = executor

    def resolve(self, runtime_kind: str) -> RuntimeExecutor:
        """Return the executor for a caller-supplied runtime name.

        Example:
            ```python
            executor = registry.resolve("compiled")
            ```
        """
        kind = parse_runtime_kind(runtime_kind)
        if kind is None or kind not in self._by_kind:
            supported = ", ".join(k.value for k in self._by_kind)
            raise UnsupportedRuntimeError(
                f"Unsupported runtime kind '{runtime_kind}'. Supported: {supported}"
            )
        return self._by_kind[kind]

    def kinds(self) -> list[RuntimeKind]:
        """Return registered kinds in registration order.

        Example:
            ```python
            kinds = registry.kinds()
            ```
        """
        return list(self._by_kind)


def default_executors() -> list[RuntimeExecutor]:
    """Return one executor instance per built-in runtime kind.

    Example:
        ```python
        executors = default_executors()
        ```
    """
    return [
        EmbeddedInterpreterExecutor(),
        PackagedApplicationExecutor(),
        CompileAndRunExecutor(),
    ]
