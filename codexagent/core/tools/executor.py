"""
Tool Executor

Validates arguments against the registry and runs tool handlers. Never
raises: every failure comes back as ``ToolResult(ok=False)``.
"""

import logging
from typing import Any, Dict, Optional

from codexagent.core.errors import AgentError
from codexagent.core.file_ops import FileOps
from codexagent.core.response_parser import ToolCall
from codexagent.core.tools.base import ToolResult
from codexagent.core.tools.registry import ToolRegistry, default_registry

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(self, file_ops: FileOps, registry: Optional[ToolRegistry] = None):
        self.file_ops = file_ops
        self.registry = registry or default_registry()

    def requires_approval(self, name: str) -> bool:
        return self.registry.requires_approval(name)

    def execute_call(self, call: ToolCall) -> ToolResult:
        return self.execute(call.name, call.arguments)

    def execute(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        spec = self.registry.get(name)
        if spec is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.failure(f"Unknown tool: {name}")

        args = dict(arguments or {})
        for key in spec.required_parameters():
            if args.get(key) is None:
                return ToolResult.failure(f"Missing required parameter: {key}")

        logger.debug(f"Executing tool {name} with args {sorted(args)}")
        try:
            result = spec.handler(self.file_ops, args)
        except AgentError as e:
            logger.info(f"Tool {name} failed: {e}")
            return ToolResult.failure(str(e))
        except Exception as e:
            logger.exception(f"Tool {name} raised unexpectedly")
            return ToolResult.failure(f"Tool execution failed: {e}")
        return result
