from .compiled import CompileAndRunExecutor
from .embedded import EmbeddedInterpreterExecutor
from .engine import RuntimeExecutor
from .packaged import PackagedApplicationExecutor
from .registry import ExecutorRegistry, default_executors
from .types import ExecutionRequest, ExecutionResult, RuntimeKind

__all__ = [
    "CompileAndRunExecutor",
    "EmbeddedInterpreterExecutor",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorRegistry",
    "PackagedApplicationExecutor",
    "RuntimeExecutor",
    "RuntimeKind",
    "default_executors",
]
