from __future__ import annotations

from typing import ClassVar, Protocol

from .types import ExecutionContext, ExecutionResult, RuntimeKind


class RuntimeExecutor(Protocol):
    kind: ClassVar[RuntimeKind]
    default_entry_point: ClassVar[str]

    def run(self, context: ExecutionContext) -> ExecutionResult:
        """Execute one program inside its workspace and return its result.

        Failures are raised as `EngineError` subclasses carrying partial output.

        Example:
            ```python
            result = executor.run(context)
            ```
        """
        ...
