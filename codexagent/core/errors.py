"""
Error taxonomy shared by the file layer, the tool executor, the parsers
and the transports.

Tool-level errors are caught by the executor and turned into failed
ToolResults; only transport errors abort a workflow run.
"""


class AgentError(RuntimeError):
    """Base class for every error raised by codexagent."""


class ValidationError(AgentError):
    """Bad or missing arguments, or a path escaping the project root."""


class NotFoundError(AgentError):
    """A file or directory required by an operation does not exist."""


class ConflictError(AgentError):
    """Destination already exists, or SEARCH text is absent or ambiguous."""


class TransportError(AgentError):
    """Network or authentication failure talking to the remote model."""

    def __init__(self, message: str, cause: Exception = None, status: int = None):
        super().__init__(message)
        self.cause = cause
        self.status = status


class ParseError(AgentError):
    """A model response did not match any recognized schema."""


class LimitExceeded(AgentError):
    """Iteration ceiling or file-size ceiling reached."""
