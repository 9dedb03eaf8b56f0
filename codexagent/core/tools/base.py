"""
Tool Interface

Static catalog entries and the uniform result contract every tool
returns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class ToolCategory(Enum):
    """What a tool touches; used for grouping in prompts and the CLI."""
    FILE_READ = "file_read"
    FILE_WRITE = "file_write"
    SEARCH = "search"
    INTERACTION = "interaction"


@dataclass
class ToolResult:
    """
    Outcome of one tool execution. ``data`` is set on success and
    ``error`` on failure, never both.
    """
    ok: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, message: str, **data: Any) -> "ToolResult":
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(ok=False, message=error, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"ok": self.ok, "message": self.message}
        if self.ok:
            result["data"] = self.data or {}
        else:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool = True


# handler(file_ops, arguments) -> ToolResult
ToolHandler = Callable[[Any, Dict[str, Any]], ToolResult]


@dataclass(frozen=True)
class ToolSpec:
    """
    One registered tool. ``requires_approval`` has no default: every tool
    must be classified as mutating or not when it is declared.
    """
    name: str
    description: str
    parameters: Tuple[ToolParameter, ...]
    requires_approval: bool
    category: ToolCategory
    handler: ToolHandler = field(compare=False, repr=False)

    def required_parameters(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def parameter_schema(self) -> Dict[str, Dict[str, Any]]:
        return {
            p.name: {"type": p.type, "description": p.description, "required": p.required}
            for p in self.parameters
        }

    def to_openai_tool(self) -> Dict[str, Any]:
        """JSON-schema function declaration for OpenAI-style tool calling."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        p.name: {"type": p.type, "description": p.description}
                        for p in self.parameters
                    },
                    "required": self.required_parameters(),
                },
            },
        }
