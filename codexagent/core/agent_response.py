"""
Agent action envelope.

Agent-mode prompts ask the model for exactly one action per turn:

    {"action": "tool_use", "tool": "read_file", "path": "a.txt", "reasoning": "..."}
    {"action": "message", "content": "..."}
    {"action": "ask_followup_question", "question": "..."}
    {"action": "attempt_completion", "summary": "..."}

Tool arguments are every key other than action, tool and reasoning.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from codexagent.core.editing_engine import EditingEngine
from codexagent.core.response_parser import (
    FileActionDetail,
    ToolCall,
    extract_json_candidate,
)

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ("action", "tool", "reasoning")


class AgentAction(Enum):
    TOOL_USE = "tool_use"
    MESSAGE = "message"
    ASK_FOLLOWUP_QUESTION = "ask_followup_question"
    ATTEMPT_COMPLETION = "attempt_completion"


@dataclass
class AgentResponse:
    action: AgentAction
    tool: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    reasoning: Optional[str] = None
    content: Optional[str] = None
    question: Optional[str] = None
    summary: Optional[str] = None
    raw: str = ""

    @property
    def tool_call(self) -> Optional[ToolCall]:
        if self.action != AgentAction.TOOL_USE or not self.tool:
            return None
        return ToolCall(name=self.tool, arguments=dict(self.arguments))


class AgentResponseParser:
    """Parser for the single-action agent envelope."""

    def parse(self, raw_text: str) -> Optional[AgentResponse]:
        """Returns None when the text is not a well-formed agent action."""
        candidate = extract_json_candidate(raw_text or "")
        if candidate is None:
            return None
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        response = self.parse_object(obj)
        if response is not None:
            response.raw = raw_text
        return response

    def parse_object(self, obj: Any) -> Optional[AgentResponse]:
        if not isinstance(obj, dict):
            return None
        try:
            action = AgentAction(obj.get("action"))
        except ValueError:
            return None
        reasoning = obj.get("reasoning")

        if action == AgentAction.TOOL_USE:
            tool = obj.get("tool")
            if not isinstance(tool, str) or not tool:
                return None
            args = {k: v for k, v in obj.items() if k not in ENVELOPE_KEYS}
            return AgentResponse(action=action, tool=tool, arguments=args, reasoning=reasoning)

        if action == AgentAction.MESSAGE:
            content = obj.get("content")
            if content is None:
                return None
            return AgentResponse(action=action, content=str(content), reasoning=reasoning)

        if action == AgentAction.ASK_FOLLOWUP_QUESTION:
            question = obj.get("question")
            if question is None:
                return None
            return AgentResponse(action=action, question=str(question), reasoning=reasoning)

        summary = obj.get("summary", obj.get("result"))
        if summary is None:
            return None
        return AgentResponse(action=action, summary=str(summary), reasoning=reasoning)

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------
    @staticmethod
    def describe_tool(response: Optional[AgentResponse]) -> str:
        if response is None:
            return "Unknown action"
        if response.action == AgentAction.MESSAGE:
            return "Responding"
        if response.action == AgentAction.ASK_FOLLOWUP_QUESTION:
            return "Asking a question"
        if response.action == AgentAction.ATTEMPT_COMPLETION:
            return "Task complete"
        return describe_tool_call(response.tool or "", response.arguments)

    @staticmethod
    def to_file_action_detail(response: Optional[AgentResponse]) -> Optional[FileActionDetail]:
        """Map a file tool call onto the equivalent file-action directive."""
        if response is None or response.action != AgentAction.TOOL_USE:
            return None
        args = response.arguments
        tool = response.tool
        path = str(args.get("path") or "")

        if tool == "write_to_file":
            return FileActionDetail(type="createFile", path=path, new_content=args.get("content"), arguments=dict(args))
        if tool == "replace_in_file":
            blocks = EditingEngine.parse_search_replace_blocks(args.get("diff") or "")
            search, replace = blocks[0] if blocks else (None, None)
            return FileActionDetail(
                type="searchAndReplace",
                path=path,
                search=search,
                replace=replace,
                diff_patch=args.get("diff"),
                arguments=dict(args),
            )
        if tool == "read_file":
            return FileActionDetail(type="readFile", path=path, arguments=dict(args))
        if tool == "list_files":
            return FileActionDetail(type="listFiles", path=path or ".", arguments=dict(args))
        if tool in ("rename_file", "rename_path"):
            return FileActionDetail(
                type="renameFile",
                path=str(args.get("old_path") or ""),
                old_path=args.get("old_path"),
                new_path=args.get("new_path"),
                arguments=dict(args),
            )
        if tool in ("delete_file", "delete_path"):
            return FileActionDetail(type="deleteFile", path=path, arguments=dict(args))
        if tool == "copy_file":
            return FileActionDetail(
                type="createFile",
                path=str(args.get("destination_path") or ""),
                old_path=args.get("source_path"),
                arguments=dict(args),
            )
        if tool == "move_file":
            return FileActionDetail(
                type="renameFile",
                path=str(args.get("source_path") or ""),
                old_path=args.get("source_path"),
                new_path=args.get("destination_path"),
                arguments=dict(args),
            )
        return None


def describe_tool_call(tool: str, args: Dict[str, Any]) -> str:
    """Short human description of a tool invocation."""
    path = args.get("path")
    if tool == "write_to_file":
        return f"Writing to {path}"
    if tool == "replace_in_file":
        return f"Modifying {path}"
    if tool == "read_file":
        return f"Reading {path}"
    if tool == "list_files":
        suffix = " (recursive)" if args.get("recursive") else ""
        return f"Listing files in {path or '.'}{suffix}"
    if tool in ("rename_file", "rename_path"):
        return f"Renaming {args.get('old_path')} to {args.get('new_path')}"
    if tool in ("delete_file", "delete_path"):
        return f"Deleting {path}"
    if tool == "copy_file":
        return f"Copying {args.get('source_path')} to {args.get('destination_path')}"
    if tool == "move_file":
        return f"Moving {args.get('source_path')} to {args.get('destination_path')}"
    if tool == "search_files":
        return f"Searching in {path or '.'} for pattern: {args.get('regex')}"
    if tool == "list_code_definition_names":
        return f"Extracting code definitions from {path or '.'}"
    if tool == "ask_followup_question":
        return "Asking a question"
    if tool == "attempt_completion":
        return "Task complete"
    return f"Using tool: {tool}"
