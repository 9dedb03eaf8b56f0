from .base import ToolCategory, ToolParameter, ToolResult, ToolSpec
from .registry import ToolRegistry, default_registry
from .executor import ToolExecutor

__all__ = [
    "ToolCategory",
    "ToolParameter",
    "ToolResult",
    "ToolSpec",
    "ToolRegistry",
    "default_registry",
    "ToolExecutor",
]
