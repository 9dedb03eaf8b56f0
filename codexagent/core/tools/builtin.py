"""
Built-in tools.

Each handler takes ``(file_ops, args)`` and returns a ToolResult.
Handlers may raise codexagent errors; the executor turns those into
failed results.
"""

import json
import logging
from typing import Any, Dict, List

from codexagent.core.diff_engine import generate_diff
from codexagent.core.file_ops import FileOps
from codexagent.core.tools.base import ToolCategory, ToolParameter, ToolResult, ToolSpec

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _as_content(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)

# ----------------------------------------------------------------------
# File tools
# ----------------------------------------------------------------------

def write_to_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    path = args["path"]
    content = _as_content(args["content"])
    ops.write_text(path, content)
    return ToolResult.success(
        f"Successfully wrote {len(content)} characters to {path}",
        path=path,
        bytes_written=len(content.encode("utf-8")),
        lines_written=len(content.split("\n")) if content else 0,
    )


def replace_in_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    path = args["path"]
    original = ops.read_text(path)
    edit = ops.editor.apply_search_replace_blocks(original, _as_content(args["diff"]))
    ops.write_text(path, edit.content)
    return ToolResult.success(
        f"Successfully modified {path}",
        path=path,
        lines_added=edit.details["lines_added"],
        lines_removed=edit.details["lines_removed"],
        diff=generate_diff(original, edit.content),
    )


def read_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    path = args["path"]
    content = ops.read_text(path)
    return ToolResult.success(
        f"Successfully read {path}",
        content=content,
        path=path,
        size_bytes=len(content.encode("utf-8")),
        lines=len(content.split("\n")) if content else 0,
    )


def list_files(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    path = args.get("path") or "."
    recursive = _as_bool(args.get("recursive", False))
    entries = ops.list_entries(path, recursive=recursive)
    return ToolResult.success(
        f"Listed {len(entries)} items in {path}",
        files=entries,
        path=path,
        recursive=recursive,
    )


def rename_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    old_path, new_path = args["old_path"], args["new_path"]
    ops.rename(old_path, new_path)
    return ToolResult.success(
        f"Successfully renamed {old_path} to {new_path}",
        old_path=old_path,
        new_path=new_path,
    )


def delete_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    path = args["path"]
    was_directory = ops.delete(path)
    return ToolResult.success(f"Successfully deleted {path}", path=path, was_directory=was_directory)


def copy_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    source, destination = args["source_path"], args["destination_path"]
    copied = ops.copy(source, destination)
    return ToolResult.success(
        f"Successfully copied {source} to {destination}",
        source_path=source,
        destination_path=destination,
        bytes_copied=copied,
    )


def move_file(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    source, destination = args["source_path"], args["destination_path"]
    ops.move(source, destination)
    return ToolResult.success(
        f"Successfully moved {source} to {destination}",
        source_path=source,
        destination_path=destination,
    )

# ----------------------------------------------------------------------
# Search tools
# ----------------------------------------------------------------------

def search_files(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    directory = args.get("path") or "."
    pattern = args["regex"]
    if _as_bool(args.get("offsets", False)):
        matches = ops.search_offsets(pattern, directory, regex=True, file_pattern=args.get("file_pattern"))
        truncated = len(matches) >= ops.max_search_results
    else:
        matches, truncated = ops.search_lines(directory, pattern, args.get("file_pattern"))
    return ToolResult.success(
        f"Found {len(matches)} matches for pattern: {pattern}",
        matches=matches,
        directory=directory,
        pattern=pattern,
        truncated=truncated,
    )


def list_code_definition_names(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    directory = args.get("path") or "."
    definitions = ops.list_code_definitions(directory)
    return ToolResult.success(f"Extracted definitions from {directory}", directory=directory, **definitions)

# ----------------------------------------------------------------------
# Interaction tools
# ----------------------------------------------------------------------

def ask_followup_question(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    return ToolResult.success(
        "Asking user for clarification",
        question=str(args["question"]),
        awaiting_user_response=True,
    )


def attempt_completion(ops: FileOps, args: Dict[str, Any]) -> ToolResult:
    summary = args.get("result") or args.get("summary") or ""
    return ToolResult.success(
        "Task completion proposed",
        summary=str(summary),
        completion_attempted=True,
    )

# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

_PATH = ToolParameter("path", "string", "Path relative to the project root")
_SOURCE = ToolParameter("source_path", "string", "Existing file, relative to the project root")
_DESTINATION = ToolParameter("destination_path", "string", "Target path; must not exist yet")
_OLD_PATH = ToolParameter("old_path", "string", "Current path of the file or directory")
_NEW_PATH = ToolParameter("new_path", "string", "New path; must not exist yet")

BUILTIN_TOOLS: List[ToolSpec] = [
    ToolSpec(
        name="write_to_file",
        description="Create or fully overwrite a file. Parent directories are created as needed.",
        parameters=(_PATH, ToolParameter("content", "string", "Complete file content")),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=write_to_file,
    ),
    ToolSpec(
        name="replace_in_file",
        description=(
            "Edit a file with SEARCH/REPLACE blocks. Each SEARCH text must occur "
            "exactly once in the file."
        ),
        parameters=(
            _PATH,
            ToolParameter(
                "diff",
                "string",
                "One or more blocks: <<<<<<< SEARCH / ======= / >>>>>>> REPLACE",
            ),
        ),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=replace_in_file,
    ),
    ToolSpec(
        name="read_file",
        description="Read the full text of a file.",
        parameters=(_PATH,),
        requires_approval=False,
        category=ToolCategory.FILE_READ,
        handler=read_file,
    ),
    ToolSpec(
        name="list_files",
        description="List the entries of a directory, optionally recursively.",
        parameters=(
            ToolParameter("path", "string", "Directory relative to the project root", required=False),
            ToolParameter("recursive", "boolean", "Descend into subdirectories", required=False),
        ),
        requires_approval=False,
        category=ToolCategory.FILE_READ,
        handler=list_files,
    ),
    ToolSpec(
        name="rename_file",
        description="Rename a file or directory.",
        parameters=(_OLD_PATH, _NEW_PATH),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=rename_file,
    ),
    ToolSpec(
        name="rename_path",
        description="Rename a file or directory (alias of rename_file).",
        parameters=(_OLD_PATH, _NEW_PATH),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=rename_file,
    ),
    ToolSpec(
        name="delete_file",
        description="Delete a file, or a directory recursively.",
        parameters=(_PATH,),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=delete_file,
    ),
    ToolSpec(
        name="delete_path",
        description="Delete a file or directory (alias of delete_file).",
        parameters=(_PATH,),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=delete_file,
    ),
    ToolSpec(
        name="copy_file",
        description="Copy a single file to a new path.",
        parameters=(_SOURCE, _DESTINATION),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=copy_file,
    ),
    ToolSpec(
        name="move_file",
        description="Move a file or directory to a new path.",
        parameters=(_SOURCE, _DESTINATION),
        requires_approval=True,
        category=ToolCategory.FILE_WRITE,
        handler=move_file,
    ),
    ToolSpec(
        name="search_files",
        description=(
            "Regex search across a directory tree. Hidden directories, node_modules, "
            "build and dist are skipped."
        ),
        parameters=(
            ToolParameter("path", "string", "Directory to search"),
            ToolParameter("regex", "string", "Regular expression matched per line"),
            ToolParameter("file_pattern", "string", "Optional glob such as *.js", required=False),
            ToolParameter(
                "offsets",
                "boolean",
                "Report character offsets with a context snippet instead of line numbers",
                required=False,
            ),
        ),
        requires_approval=False,
        category=ToolCategory.SEARCH,
        handler=search_files,
    ),
    ToolSpec(
        name="list_code_definition_names",
        description="List HTML ids, CSS classes and JS functions/classes defined under a directory.",
        parameters=(ToolParameter("path", "string", "Directory to scan"),),
        requires_approval=False,
        category=ToolCategory.SEARCH,
        handler=list_code_definition_names,
    ),
    ToolSpec(
        name="ask_followup_question",
        description="Ask the user a clarifying question and wait for the answer.",
        parameters=(ToolParameter("question", "string", "The question to ask"),),
        requires_approval=False,
        category=ToolCategory.INTERACTION,
        handler=ask_followup_question,
    ),
    ToolSpec(
        name="attempt_completion",
        description="Declare the task finished and summarize what was done.",
        parameters=(ToolParameter("result", "string", "Summary of the completed work", required=False),),
        requires_approval=False,
        category=ToolCategory.INTERACTION,
        handler=attempt_completion,
    ),
]
