"""
Editing engine for codexagent.

Content-in / content-out text edits shared by the tool executor and the
file-action processor:
  - 1-based line splicing (modifyLines).
  - SEARCH/REPLACE blocks with a strict exactly-once match rule.
  - Regex search-and-replace with a literal fallback.
  - Append/prepend joins, light auto-fixes and content validation.

Filesystem I/O and sandboxing live in FileOps.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from codexagent.core.diff_engine import apply_unified_diff
from codexagent.core.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

SEARCH_MARKER = "<<<<<<< SEARCH"
DIVIDER_MARKER = "======="
REPLACE_MARKER = ">>>>>>> REPLACE"

INVALID_DIFF_MESSAGE = (
    "Invalid diff format. Expected:\n"
    f"{SEARCH_MARKER}\n...\n{DIVIDER_MARKER}\n...\n{REPLACE_MARKER}"
)
SEARCH_NOT_FOUND_MESSAGE = "SEARCH block not found in file. Ensure the search text is exact and unique."
SEARCH_AMBIGUOUS_MESSAGE = "SEARCH block appears multiple times in file. Make the search text more specific."

_BLOCK_RE = re.compile(
    r"<<<<<<< SEARCH[ \t]*\n(.*?)\n=======[ \t]*\n(.*?)\n?>>>>>>> REPLACE",
    re.DOTALL,
)
_DOCTYPE_RE = re.compile(r"<!doctype", re.IGNORECASE)
_IMG_WITHOUT_ALT_RE = re.compile(r"<img\s(?![^>]*\balt\s*=)", re.IGNORECASE)


class EditingError(ValidationError):
    """Invalid edit request (bad ranges, malformed diff blocks, etc.)."""


@dataclass
class EditOperationResult:
    """Structured result for a single in-memory edit operation."""

    content: str
    summary: str
    details: Dict[str, Any] = field(default_factory=dict)


class EditingEngine:
    """
    Pure in-memory editing engine.

    All methods take a ``content`` string and return a new content string,
    never touching the filesystem.
    """

    # ------------------------------------------------------------------
    # Core helpers
    # ------------------------------------------------------------------
    @staticmethod
    def normalize_newlines(text: str) -> str:
        return text.replace("\r\n", "\n").replace("\r", "\n")

    @staticmethod
    def _to_lines(value: Union[None, str, Sequence[str]]) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split("\n") if value != "" else []
        return [str(v) for v in value]

    # ------------------------------------------------------------------
    # Line operations
    # ------------------------------------------------------------------
    def modify_lines(
        self,
        content: str,
        start_line: Any,
        delete_count: Any = 0,
        insert_lines: Union[None, str, Sequence[str]] = None,
    ) -> EditOperationResult:
        """
        Delete ``delete_count`` lines starting at 1-based ``start_line`` and
        insert ``insert_lines`` there. Out-of-range values are clamped.
        """
        try:
            start = max(1, int(start_line))
            count = max(0, int(delete_count or 0))
        except (TypeError, ValueError):
            raise EditingError(f"Invalid line range: start={start_line!r} delete={delete_count!r}")

        lines = content.split("\n")
        idx = min(start - 1, len(lines))
        removed = lines[idx:idx + count]
        inserted = self._to_lines(insert_lines)
        lines[idx:idx + count] = inserted

        return EditOperationResult(
            content="\n".join(lines),
            summary=f"Modified lines at line {start}",
            details={
                "start_line": start,
                "lines_removed": len(removed),
                "lines_added": len(inserted),
            },
        )

    # ------------------------------------------------------------------
    # Search / replace
    # ------------------------------------------------------------------
    def search_replace(self, content: str, search: str, replace: str) -> EditOperationResult:
        """
        Replace every match of ``search`` treated as a regular expression.
        Invalid patterns (or patterns with no match that do occur literally)
        fall back to plain string replacement.
        """
        if not search:
            raise EditingError("Search pattern is empty")
        replace = replace or ""
        mode = "regex"
        try:
            new_content, count = re.subn(search, replace, content)
        except re.error as e:
            logger.debug(f"Regex replace failed ({e}); using literal replace")
            new_content, count = None, 0
        if not count and search in content:
            mode = "literal"
            count = content.count(search)
            new_content = content.replace(search, replace)
        if new_content is None:
            new_content = content
        return EditOperationResult(
            content=new_content,
            summary=f"Replaced {count} occurrence(s)",
            details={"replacements": count, "mode": mode},
        )

    @staticmethod
    def parse_search_replace_blocks(diff: str) -> List[Tuple[str, str]]:
        text = EditingEngine.normalize_newlines(diff or "")
        return [(m.group(1), m.group(2)) for m in _BLOCK_RE.finditer(text)]

    @staticmethod
    def replace_unique(content: str, search: str, replace: str) -> str:
        """
        Replace the single occurrence of ``search``.

        Raises:
            ConflictError: ``search`` occurs zero times or more than once.
        """
        idx = content.find(search) if search else -1
        if idx < 0:
            raise ConflictError(SEARCH_NOT_FOUND_MESSAGE)
        if content.find(search, idx + 1) >= 0:
            raise ConflictError(SEARCH_AMBIGUOUS_MESSAGE)
        return content[:idx] + replace + content[idx + len(search):]

    def apply_search_replace_blocks(self, content: str, diff: str) -> EditOperationResult:
        """
        Apply every SEARCH/REPLACE block in order. The first failing
        block aborts the whole edit; ``content`` is never partially
        modified from the caller's point of view.
        """
        blocks = self.parse_search_replace_blocks(diff)
        if not blocks:
            raise EditingError(INVALID_DIFF_MESSAGE)
        updated = content
        for search, replace in blocks:
            updated = self.replace_unique(updated, search, replace)

        old_count = len(content.split("\n"))
        new_count = len(updated.split("\n"))
        return EditOperationResult(
            content=updated,
            summary=f"Applied {len(blocks)} SEARCH/REPLACE block(s)",
            details={
                "blocks": len(blocks),
                "lines_added": max(0, new_count - old_count),
                "lines_removed": max(0, old_count - new_count),
            },
        )

    def apply_structured_diff(self, content: str, diff: str) -> EditOperationResult:
        """SEARCH/REPLACE blocks when present, otherwise a unified diff."""
        if not diff or not diff.strip():
            raise EditingError("Diff content is empty")
        if SEARCH_MARKER in diff:
            return self.apply_search_replace_blocks(content, diff)
        if "@@" in diff:
            updated = apply_unified_diff(content, self.normalize_newlines(diff))
            return EditOperationResult(content=updated, summary="Applied unified diff")
        raise EditingError(INVALID_DIFF_MESSAGE)

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------
    @staticmethod
    def join_append(existing: str, addition: str) -> str:
        if existing and addition and not existing.endswith("\n"):
            return existing + "\n" + addition
        return existing + addition

    @staticmethod
    def join_prepend(existing: str, addition: str) -> str:
        if existing and addition and not addition.endswith("\n"):
            return addition + "\n" + existing
        return addition + existing

    # ------------------------------------------------------------------
    # Auto-fix / validation
    # ------------------------------------------------------------------
    def auto_fix(self, content: str, file_type: str) -> EditOperationResult:
        """
        Best-effort repairs for common model slips: missing doctype and
        img alt attributes in HTML, unbalanced braces in CSS and JS.
        """
        kind = (file_type or "").lower().lstrip(".")
        fixes: List[str] = []
        fixed = content

        if kind in ("html", "htm"):
            if not _DOCTYPE_RE.search(fixed):
                fixed = "<!DOCTYPE html>\n" + fixed
                fixes.append("doctype")
            fixed, n = _IMG_WITHOUT_ALT_RE.subn('<img alt="" ', fixed)
            if n:
                fixes.append(f"img_alt:{n}")
        elif kind == "css":
            missing = fixed.count("{") - fixed.count("}")
            if missing > 0:
                if not fixed.endswith("\n"):
                    fixed += "\n"
                fixed += "}\n" * missing
                fixes.append(f"braces:{missing}")
        elif kind in ("js", "mjs", "javascript"):
            for opener, closer in (("(", ")"), ("{", "}"), ("[", "]")):
                missing = fixed.count(opener) - fixed.count(closer)
                if missing > 0:
                    fixed += closer * missing
                    fixes.append(f"{closer}:{missing}")

        summary = "Applied fixes: " + ", ".join(fixes) if fixes else "No fixes needed"
        return EditOperationResult(content=fixed, summary=summary, details={"fixes": fixes})

    @staticmethod
    def validate_content(content: str, content_type: Optional[str]) -> Tuple[bool, Optional[str]]:
        kind = (content_type or "").lower().lstrip(".")
        if kind == "json":
            try:
                json.loads(content)
            except json.JSONDecodeError as e:
                return False, f"Invalid JSON: {e}"
            return True, None
        if kind in ("css", "js", "javascript"):
            for opener, closer in (("{", "}"), ("(", ")"), ("[", "]")):
                if content.count(opener) != content.count(closer):
                    return False, f"Unbalanced '{opener}{closer}'"
            return True, None
        if kind in ("html", "htm"):
            if "<" not in content:
                return False, "HTML content contains no markup"
            return True, None
        return True, None
