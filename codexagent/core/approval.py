"""
Approval Gate

Human-in-the-loop control. In approval mode every tool classified as
mutating is surfaced to the UI with a preview and the workflow waits on
an ApprovalHandle until the UI approves or rejects it. In agent mode
nothing is ever surfaced.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from codexagent.core.action_processor import READ_ONLY_TYPES, build_change_summary
from codexagent.core.agent_response import describe_tool_call
from codexagent.core.diff_engine import generate_unified_diff
from codexagent.core.errors import AgentError
from codexagent.core.file_ops import FileOps
from codexagent.core.response_parser import FileActionDetail, PlanStep, ToolCall
from codexagent.core.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

PREVIEW_MAX_LINES = 40


class ApprovalMode(Enum):
    AGENT = "agent"
    APPROVAL = "approval"


class ApprovalDecision(Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ApprovalRequest:
    tool_name: str
    arguments: Dict[str, Any]
    description: str
    preview: Optional[str] = None
    details: List[FileActionDetail] = field(default_factory=list)


class ApprovalHandle:
    """
    One pending decision. ``approve``/``reject`` may be called from any
    thread; only the first call counts.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._future: "asyncio.Future[Tuple[ApprovalDecision, Optional[str]]]" = self._loop.create_future()

    @property
    def decided(self) -> bool:
        return self._future.done()

    def approve(self) -> None:
        self._resolve(ApprovalDecision.APPROVED, None)

    def reject(self, reason: Optional[str] = None) -> None:
        self._resolve(ApprovalDecision.REJECTED, reason)

    def _resolve(self, decision: ApprovalDecision, reason: Optional[str]) -> None:
        def _set() -> None:
            if not self._future.done():
                self._future.set_result((decision, reason))

        self._loop.call_soon_threadsafe(_set)

    async def wait(self) -> Tuple[ApprovalDecision, Optional[str]]:
        return await self._future


class ApprovalGate:
    def __init__(
        self,
        mode: ApprovalMode,
        registry: ToolRegistry,
        file_ops: FileOps,
        context_lines: int = 3,
    ):
        self.mode = mode
        self.registry = registry
        self.file_ops = file_ops
        self.context_lines = context_lines

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------
    def needs_approval(self, tool_name: str) -> bool:
        if self.mode == ApprovalMode.AGENT:
            return False
        return self.registry.requires_approval(tool_name)

    def batch_needs_approval(self, details: List[FileActionDetail]) -> bool:
        if self.mode == ApprovalMode.AGENT:
            return False
        return any(d.type not in READ_ONLY_TYPES for d in details)

    def plan_needs_approval(self) -> bool:
        return self.mode == ApprovalMode.APPROVAL

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def build_request(self, call: ToolCall) -> ApprovalRequest:
        return ApprovalRequest(
            tool_name=call.name,
            arguments=dict(call.arguments),
            description=describe_tool_call(call.name, call.arguments),
            preview=self.build_preview(call),
        )

    def build_batch_request(self, details: List[FileActionDetail]) -> ApprovalRequest:
        lines = [f"{d.type}: {' -> '.join(d.target_paths()) or '(no path)'}" for d in details]
        return ApprovalRequest(
            tool_name="file_actions",
            arguments={"operations": [d.to_dict() for d in details]},
            description=build_change_summary(details),
            preview="\n".join(lines),
            details=list(details),
        )

    def build_plan_request(self, steps: List[PlanStep], explanation: str) -> ApprovalRequest:
        lines = [f"{i}. {s.title}" for i, s in enumerate(steps, start=1)]
        return ApprovalRequest(
            tool_name="plan",
            arguments={"steps": [s.to_dict() for s in steps]},
            description=explanation or "Plan",
            preview="\n".join(lines),
        )

    def build_preview(self, call: ToolCall) -> Optional[str]:
        """Diff for replace_in_file, content excerpt for write_to_file, paths for moves."""
        args = call.arguments
        try:
            if call.name == "replace_in_file":
                path = args.get("path") or ""
                original = self.file_ops.read_text(path)
                updated = self.file_ops.editor.apply_search_replace_blocks(
                    original, args.get("diff") or ""
                ).content
                return generate_unified_diff(original, updated, self.context_lines, path, path)
            if call.name == "write_to_file":
                return self._content_excerpt(args.get("path"), args.get("content"))
            if call.name in ("rename_file", "rename_path"):
                return f"{args.get('old_path')} -> {args.get('new_path')}"
            if call.name in ("copy_file", "move_file"):
                return f"{args.get('source_path')} -> {args.get('destination_path')}"
            if call.name in ("delete_file", "delete_path"):
                path = args.get("path") or ""
                if self.file_ops.resolve(path).is_dir():
                    return f"Delete directory (recursive): {path}"
                return f"Delete file: {path}"
        except AgentError as e:
            return f"Preview unavailable: {e}"
        return None

    def _content_excerpt(self, path: Any, content: Any) -> str:
        text = content if isinstance(content, str) else str(content or "")
        lines = text.split("\n")
        header = f"{path} ({len(lines)} lines)"
        body = lines[:PREVIEW_MAX_LINES]
        if len(lines) > PREVIEW_MAX_LINES:
            body.append(f"... ({len(lines) - PREVIEW_MAX_LINES} more lines)")
        return "\n".join([header] + body)
