from .coordinator import ExecutionCoordinator, execute
from .errors import EngineError, ErrorCode
from .execution.types import ExecutionRequest, ExecutionResult, RuntimeKind
from .settings import EngineSettings
from .workspace import Workspace, WorkspaceManager

__all__ = [
    "EngineError",
    "EngineSettings",
    "ErrorCode",
    "ExecutionCoordinator",
    "ExecutionRequest",
    "ExecutionResult",
    "RuntimeKind",
    "Workspace",
    "WorkspaceManager",
    "execute",
]
