"""
File Action Processor

Applies parsed FileActionDetail directives (the operations[] / single
action shapes) against the project. Each directive yields an
ActionResult; a batch keeps going past failures and reports a mixed
summary instead of rolling back.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Tuple

from codexagent.core.diff_engine import (
    apply_unified_diff,
    count_add_remove,
    count_add_remove_from_contents,
)
from codexagent.core.editing_engine import SEARCH_MARKER, EditingEngine
from codexagent.core.errors import AgentError, ConflictError, NotFoundError, ValidationError
from codexagent.core.file_ops import FileOps
from codexagent.core.response_parser import FileActionDetail
from codexagent.core.tools.base import ToolResult
from codexagent.core.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

UPDATE_TYPES = ("full", "replace", "append", "prepend", "patch", "smart")
READ_ONLY_TYPES = (
    "readFile",
    "listFiles",
    "read_file",
    "list_files",
    "search_files",
    "list_code_definition_names",
)
RENAME_TYPES = ("renameFile", "rename_path", "rename_file", "move_file")


class ActionStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"
    SKIPPED = "skipped"


@dataclass
class ActionResult:
    status: ActionStatus
    message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    sub_results: Optional[List["ActionResult"]] = None
    modified_files: Optional[List[str]] = None

    @property
    def ok(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        if self.sub_results is not None:
            result["sub_results"] = [r.to_dict() for r in self.sub_results]
        if self.modified_files is not None:
            result["modified_files"] = self.modified_files
        return result


def _line_count(text: Optional[str]) -> int:
    return len(text.split("\n")) if text else 0


def tool_arguments(detail: FileActionDetail) -> Dict[str, Any]:
    """Canonical tool arguments for a detail whose type is a tool name."""
    args = dict(detail.arguments)
    canonical = {
        "path": detail.path or None,
        "content": detail.new_content,
        "diff": detail.diff_patch,
        "old_path": detail.old_path,
        "new_path": detail.new_path,
        "source_path": detail.old_path,
        "destination_path": detail.new_path,
    }
    for key, value in canonical.items():
        if value is not None and key not in args:
            args[key] = value
    return args


class FileActionProcessor:
    def __init__(self, file_ops: FileOps, executor: Optional[ToolExecutor] = None):
        self.file_ops = file_ops
        self.executor = executor or ToolExecutor(file_ops)
        self.editor = file_ops.editor
        self.handlers: Dict[str, Callable[[FileActionDetail], ActionResult]] = {
            "write_to_file": self._handle_write,
            "append_to_file": self._handle_append,
            "prepend_to_file": self._handle_prepend,
            "replace_in_file": self._handle_replace_in_file,
            "createFile": self._handle_create,
            "updateFile": self._handle_update,
            "smartUpdate": self._handle_update,
            "modifyLines": self._handle_modify_lines,
            "deleteFile": self._handle_delete,
            "delete_path": self._handle_delete,
            "renameFile": self._handle_rename,
            "rename_path": self._handle_rename,
            "searchAndReplace": self._handle_search_and_replace,
            "patchFile": self._handle_patch,
            "readFile": self._handle_read,
            "listFiles": self._handle_list,
            "autoFix": self._handle_auto_fix,
        }

    def supports(self, action_type: str) -> bool:
        return action_type in self.handlers or action_type in self.executor.registry

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def apply_file_action(self, detail: FileActionDetail) -> ActionResult:
        handler = self.handlers.get(detail.type)
        if handler is None and detail.type in self.executor.registry:
            return self._run_tool(detail)
        if handler is None:
            return ActionResult(
                status=ActionStatus.FAILURE,
                message=f"Unknown action type: {detail.type}",
                error="Unknown action type",
            )
        logger.info(f"Applying file action: {detail.type} {detail.path or detail.old_path or ''}")
        try:
            return handler(detail)
        except AgentError as e:
            logger.warning(f"File action {detail.type} failed: {e}")
            return ActionResult(status=ActionStatus.FAILURE, message=str(e), error=str(e))
        except OSError as e:
            logger.exception(f"File action {detail.type} failed")
            return ActionResult(
                status=ActionStatus.FAILURE,
                message=f"Action failed: {e}",
                error=str(e),
            )

    def _run_tool(self, detail: FileActionDetail) -> ActionResult:
        """Run a directive named after a registered tool through the executor."""
        logger.info(f"Applying tool action: {detail.type} {detail.path or detail.old_path or ''}")
        result: ToolResult = self.executor.execute(detail.type, tool_arguments(detail))
        if not result.ok:
            return ActionResult(status=ActionStatus.FAILURE, message=result.message, error=result.error)
        modified = None
        if self.executor.requires_approval(detail.type):
            data = result.data or {}
            paths = [data.get("path"), data.get("new_path"), data.get("destination_path")]
            modified = [p for p in paths if p] or None
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=result.message,
            data=result.data,
            modified_files=modified,
        )

    def apply_actions(self, details: List[FileActionDetail]) -> ActionResult:
        """Apply every directive in order; failures do not stop the batch."""
        results = [self.apply_file_action(d) for d in details]
        failures = sum(1 for r in results if r.status == ActionStatus.FAILURE)
        if not results:
            status = ActionStatus.SKIPPED
        elif failures == 0:
            status = ActionStatus.SUCCESS
        elif failures == len(results):
            status = ActionStatus.FAILURE
        else:
            status = ActionStatus.PARTIAL

        lines = [f"Applied {len(results) - failures}/{len(results)} file actions"]
        for r in results:
            lines.append(f"[{r.status.value}] {r.message}")

        modified: List[str] = []
        for r in results:
            for path in r.modified_files or []:
                if path not in modified:
                    modified.append(path)
        applied = [d for d, r in zip(details, results) if r.status == ActionStatus.SUCCESS]
        return ActionResult(
            status=status,
            message="\n".join(lines),
            data={"summary": build_change_summary(applied)},
            error=f"{failures} action(s) failed" if failures else None,
            sub_results=results,
            modified_files=modified,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _require_path(detail: FileActionDetail) -> str:
        if not detail.path:
            raise ValidationError(f"{detail.type} requires a path")
        return detail.path

    def _read_existing(self, path: str, purpose: str) -> str:
        if not self.file_ops.resolve(path).is_file():
            raise NotFoundError(f"File not found for {purpose}: {path}")
        return self.file_ops.read_text(path)

    def _written(self, message: str, path: str, old: str, new: str) -> ActionResult:
        self.file_ops.write_text(path, new)
        added, removed = count_add_remove_from_contents(old, new)
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=message,
            data={"path": path, "lines_added": added, "lines_removed": removed},
            modified_files=[path],
        )

    def _existing_or_empty(self, path: str) -> str:
        return self.file_ops.read_text(path) if self.file_ops.resolve(path).is_file() else ""

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _handle_write(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._existing_or_empty(path)
        return self._written(f"Wrote file: {path}", path, old, detail.new_content or "")

    def _handle_append(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._existing_or_empty(path)
        new = self.editor.join_append(old, detail.new_content or "")
        return self._written(f"Appended to {path}", path, old, new)

    def _handle_prepend(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._existing_or_empty(path)
        new = self.editor.join_prepend(old, detail.new_content or "")
        return self._written(f"Prepended to {path}", path, old, new)

    def _handle_replace_in_file(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._read_existing(path, "patch")
        diff = detail.diff_patch or detail.new_content
        if not diff or not diff.strip():
            raise ValidationError(f"Diff content is empty for {path}")
        new = self.editor.apply_structured_diff(old, diff).content
        return self._written(f"Patched file: {path}", path, old, new)

    def _handle_create(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        content = detail.new_content or ""
        if detail.validate_content:
            kind = detail.content_type or PurePosixPath(path).suffix
            valid, reason = self.editor.validate_content(content, kind)
            if not valid:
                raise ValidationError(f"Content validation failed for {path}: {reason}")
        old = self._existing_or_empty(path)
        return self._written(f"Created file: {path}", path, old, content)

    def _handle_update(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._read_existing(path, "update")
        update_type = (detail.update_type or "full").lower()
        lenient = (detail.error_handling or "strict").lower() == "lenient"
        try:
            new = self._updated_content(old, detail, update_type)
        except AgentError as e:
            if not lenient:
                raise
            logger.warning(f"Lenient update of {path} skipped: {e}")
            return ActionResult(
                status=ActionStatus.SKIPPED,
                message=f"Skipped update of {path}: {e}",
                error=str(e),
            )
        return self._written(f"Updated file: {path}", path, old, new)

    def _updated_content(self, old: str, detail: FileActionDetail, update_type: str) -> str:
        content = detail.new_content or ""
        if update_type not in UPDATE_TYPES:
            raise ValidationError(f"Unknown update type: {update_type}")
        if update_type in ("full", "replace"):
            return content
        if update_type == "append":
            return self.editor.join_append(old, content)
        if update_type == "prepend":
            return self.editor.join_prepend(old, content)
        diff = detail.diff_patch or content
        if update_type == "patch":
            return apply_unified_diff(old, diff)
        if SEARCH_MARKER in diff or diff.lstrip().startswith(("@@", "---")):
            return self.editor.apply_structured_diff(old, diff).content
        return content

    def _handle_modify_lines(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._read_existing(path, "line edit")
        edit = self.editor.modify_lines(
            old,
            detail.start_line if detail.start_line is not None else 1,
            detail.delete_count or 0,
            detail.insert_lines,
        )
        start = edit.details["start_line"]
        return self._written(f"Modified lines in file: {path} at line {start}", path, old, edit.content)

    def _handle_delete(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        if not self.file_ops.resolve(path).exists():
            raise NotFoundError(f"File not found for deletion: {path}")
        removed = 0
        target = self.file_ops.resolve(path)
        if target.is_file():
            removed = _line_count(self.file_ops.read_text(path))
        was_dir = self.file_ops.delete(path)
        kind = "directory" if was_dir else "file"
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=f"Deleted {kind}: {path}",
            data={"path": path, "lines_added": 0, "lines_removed": removed},
            modified_files=[path],
        )

    def _handle_rename(self, detail: FileActionDetail) -> ActionResult:
        old_path = detail.old_path or detail.path
        new_path = detail.new_path
        if not old_path or not new_path:
            raise ValidationError("Rename requires both oldPath and newPath")
        if not self.file_ops.resolve(old_path).exists():
            raise NotFoundError(f"Source file/directory not found for rename: {old_path}")
        if self.file_ops.resolve(new_path).exists():
            raise ConflictError(f"Target file/directory already exists for rename: {new_path}")
        self.file_ops.rename(old_path, new_path)
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=f"Renamed {old_path} to {new_path}",
            data={"old_path": old_path, "new_path": new_path},
            modified_files=[old_path, new_path],
        )

    def _handle_search_and_replace(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        if not detail.search:
            raise ValidationError(f"searchAndReplace requires a search pattern for {path}")
        old = self._read_existing(path, "search and replace")
        edit = self.editor.search_replace(old, detail.search, detail.replace or "")
        result = self._written(f"Performed search and replace on file: {path}", path, old, edit.content)
        result.data["replacements"] = edit.details["replacements"]
        return result

    def _handle_patch(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        patch = detail.diff_patch or detail.new_content
        if not patch or not patch.strip():
            raise ValidationError("Patch content is empty")
        old = self._read_existing(path, "patch")
        new = self.editor.apply_structured_diff(old, patch).content
        return self._written(f"Applied patch to file: {path}", path, old, new)

    def _handle_read(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        content = self.file_ops.read_text(path)
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=f"Read file: {path}",
            data={"path": path, "content": content, "lines": _line_count(content)},
        )

    def _handle_list(self, detail: FileActionDetail) -> ActionResult:
        path = detail.path or "."
        entries = self.file_ops.list_entries(path, recursive=bool(detail.arguments.get("recursive")))
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message=f"Listed {len(entries)} items in {path}",
            data={"path": path, "files": entries},
        )

    def _handle_auto_fix(self, detail: FileActionDetail) -> ActionResult:
        path = self._require_path(detail)
        old = self._read_existing(path, "auto-fix")
        kind = detail.content_type or PurePosixPath(path).suffix
        fix = self.editor.auto_fix(old, kind)
        if fix.content == old:
            return ActionResult(status=ActionStatus.SKIPPED, message=f"No fixes needed for {path}")
        return self._written(f"Auto-fixed {path}: {fix.summary}", path, old, fix.content)

# ----------------------------------------------------------------------
# Change summary
# ----------------------------------------------------------------------

def _estimate_counts(detail: FileActionDetail) -> Tuple[int, int]:
    t = detail.type
    if t in ("modifyLines",):
        return len(detail.insert_lines or []), detail.delete_count or 0
    if t == "searchAndReplace":
        return _line_count(detail.replace), _line_count(detail.search)
    if detail.diff_patch:
        blocks = EditingEngine.parse_search_replace_blocks(detail.diff_patch)
        if blocks:
            return (
                sum(_line_count(r) for _, r in blocks),
                sum(_line_count(s) for s, _ in blocks),
            )
        return count_add_remove(detail.diff_patch)
    if t in ("createFile", "write_to_file", "append_to_file", "prepend_to_file", "updateFile", "smartUpdate"):
        return _line_count(detail.new_content), 0
    return 0, 0


def build_change_summary(details: List[FileActionDetail]) -> str:
    """
    ``Changes:`` followed by one ``- path (+A -R)`` line per touched path.
    Renamed paths are reported under their new name.
    """
    aliases: Dict[str, str] = {}
    totals: "OrderedDict[str, List[int]]" = OrderedDict()

    for detail in details:
        if detail.type in READ_ONLY_TYPES:
            continue
        if detail.type in RENAME_TYPES:
            old_path = detail.old_path or detail.path
            new_path = detail.new_path or old_path
            aliases[old_path] = new_path
            if old_path in totals:
                totals[new_path] = totals.pop(old_path)
            else:
                totals.setdefault(new_path, [0, 0])
            continue
        target = detail.new_path if detail.type == "copy_file" else detail.path
        path = aliases.get(target, target)
        if not path:
            continue
        added, removed = _estimate_counts(detail)
        counts = totals.setdefault(path, [0, 0])
        counts[0] += added
        counts[1] += removed

    if not totals:
        return "No changes"
    lines = ["Changes:"]
    for path, (added, removed) in totals.items():
        lines.append(f"- {path} (+{added} -{removed})")
    return "\n".join(lines)
