# Core modules
from .errors import (
    AgentError,
    ConflictError,
    LimitExceeded,
    NotFoundError,
    ParseError,
    TransportError,
    ValidationError,
)
from .file_ops import FileOps, SecurityPolicy
from .response_parser import ResponseParser, ParsedResponse, FileActionDetail, ToolCall
from .approval import ApprovalMode, ApprovalHandle, ApprovalRequest
from .orchestrator import (
    WorkflowOrchestrator,
    WorkflowCallback,
    WorkflowState,
    OrchestratorConfig,
)

__all__ = [
    "AgentError",
    "ConflictError",
    "LimitExceeded",
    "NotFoundError",
    "ParseError",
    "TransportError",
    "ValidationError",
    "FileOps",
    "SecurityPolicy",
    "ResponseParser",
    "ParsedResponse",
    "FileActionDetail",
    "ToolCall",
    "ApprovalMode",
    "ApprovalHandle",
    "ApprovalRequest",
    "WorkflowOrchestrator",
    "WorkflowCallback",
    "WorkflowState",
    "OrchestratorConfig",
]
