"""
File operations layer.

Primitive file mutations and queries scoped to a project root. Every
path argument is project-relative; anything resolving outside the root
is rejected with ValidationError before touching the disk.
"""

import logging
import os
import re
import shutil
import tempfile
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from codexagent.core.editing_engine import EditingEngine
from codexagent.core.errors import ConflictError, LimitExceeded, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SKIPPED_DIRECTORIES = ("node_modules", "build", "dist", "__pycache__")

_HTML_ID_RE = re.compile(r"""id=["']([^"']+)["']""")
_CSS_CLASS_RE = re.compile(r"\.([a-zA-Z_][a-zA-Z0-9_-]*)")
_CSS_BLOCK_RE = re.compile(r"\{[^{}]*\}")
_JS_FUNCTION_RE = re.compile(r"function\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*\(")
_JS_ARROW_RE = re.compile(r"const\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*(?:async\s*)?\(")
_JS_CLASS_RE = re.compile(r"class\s+([a-zA-Z_][a-zA-Z0-9_]*)")


@dataclass
class SecurityPolicy:
    base_dir: Path
    max_file_size_mb: float = 20
    skipped_directories: Tuple[str, ...] = field(default_factory=lambda: SKIPPED_DIRECTORIES)

    def validate_path(self, path: Path) -> Tuple[bool, Optional[str]]:
        """
        Ensure the path (after resolving symlinks and '..') stays inside
        the project root.
        """
        try:
            abs_path = path.resolve()
            base_abs = self.base_dir.resolve()
            abs_path.relative_to(base_abs)
            return True, None
        except ValueError:
            return False, f"Path outside project root: {path} (Project Root: {self.base_dir})"
        except OSError as e:
            return False, f"Path validation error: {e}"

    def validate_file_size(self, path: Path) -> Tuple[bool, Optional[str]]:
        if path.is_file():
            size_mb = path.stat().st_size / (1024 * 1024)
            if size_mb > self.max_file_size_mb:
                return False, f"{size_mb:.2f}MB > {self.max_file_size_mb}MB"
        return True, None

    def is_skipped_dir(self, name: str) -> bool:
        return name.startswith(".") or name in self.skipped_directories


class FileOps:
    """
    Project-scoped filesystem primitives. Methods raise the codexagent
    error taxonomy; callers decide how failures are reported.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        max_file_size_mb: float = 20,
        max_search_results: int = 500,
        list_max_depth: int = 5,
        list_max_entries: int = 1000,
    ):
        self.root = Path(project_root).resolve()
        self.policy = SecurityPolicy(base_dir=self.root, max_file_size_mb=max_file_size_mb)
        self.max_search_results = max_search_results
        self.list_max_depth = list_max_depth
        self.list_max_entries = list_max_entries
        self.editor = EditingEngine()
        logger.info(f"FileOps initialized (root: {self.root})")

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def resolve(self, rel_path: Optional[str]) -> Path:
        if rel_path is None or not str(rel_path).strip():
            raise ValidationError("Path must not be empty")
        p = Path(str(rel_path).strip())
        candidate = p if p.is_absolute() else self.root / p
        ok, reason = self.policy.validate_path(candidate)
        if not ok:
            raise ValidationError(f"Sandbox Violation: {reason}")
        return candidate.resolve()

    def relative(self, path: Path) -> str:
        rel = path.resolve().relative_to(self.root).as_posix()
        return rel or "."

    def exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).exists()

    # ------------------------------------------------------------------
    # Reading / writing
    # ------------------------------------------------------------------
    def read_text(self, rel_path: str) -> str:
        p = self.resolve(rel_path)
        if not p.exists():
            raise NotFoundError(f"File not found: {rel_path}")
        if p.is_dir():
            raise ValidationError(f"Cannot read a directory. Use list_files instead: {rel_path}")
        ok, reason = self.policy.validate_file_size(p)
        if not ok:
            raise LimitExceeded(f"File too large to read: {rel_path} ({reason})")
        return p.read_text(encoding="utf-8", errors="replace")

    def write_text(self, rel_path: str, content: str) -> Path:
        """
        Atomic write: temp file in the same directory, then rename.
        Parent directories are created as needed.
        """
        p = self.resolve(rel_path)
        if p.is_dir():
            raise ConflictError(f"Cannot write file over a directory: {rel_path}")
        p.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=p.parent,
            prefix=f".{p.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            temp_path = Path(handle.name)
            try:
                handle.write(content)
            except OSError:
                handle.close()
                temp_path.unlink()
                raise
        try:
            if p.exists():
                shutil.copymode(p, temp_path)
            else:
                temp_path.chmod(0o644)
            temp_path.replace(p)
        except OSError as e:
            logger.error(f"Write failed for {p}: {e}")
            if temp_path.exists():
                temp_path.unlink()
            raise
        logger.debug(f"Wrote {len(content)} chars to {rel_path}")
        return p

    def append_text(self, rel_path: str, addition: str) -> str:
        p = self.resolve(rel_path)
        existing = self.read_text(rel_path) if p.exists() else ""
        updated = self.editor.join_append(existing, addition)
        self.write_text(rel_path, updated)
        return updated

    def prepend_text(self, rel_path: str, addition: str) -> str:
        p = self.resolve(rel_path)
        existing = self.read_text(rel_path) if p.exists() else ""
        updated = self.editor.join_prepend(existing, addition)
        self.write_text(rel_path, updated)
        return updated

    # ------------------------------------------------------------------
    # Structural mutations
    # ------------------------------------------------------------------
    def delete(self, rel_path: str) -> bool:
        """Delete a file or (recursively) a directory. Returns True for directories."""
        p = self.resolve(rel_path)
        if p == self.root:
            raise ValidationError("Refusing to delete the project root")
        if not p.exists():
            raise NotFoundError(f"File not found: {rel_path}")
        if p.is_dir():
            shutil.rmtree(p)
            return True
        p.unlink()
        return False

    def _check_transfer(self, source: str, destination: str) -> Tuple[Path, Path]:
        src = self.resolve(source)
        dst = self.resolve(destination)
        if not src.exists():
            raise NotFoundError(f"Source file not found: {source}")
        if dst.exists():
            raise ConflictError(f"Destination already exists: {destination}")
        return src, dst

    def rename(self, old_path: str, new_path: str) -> Path:
        src, dst = self._check_transfer(old_path, new_path)
        dst.parent.mkdir(parents=True, exist_ok=True)
        src.rename(dst)
        return dst

    def move(self, source: str, destination: str) -> Path:
        src, dst = self._check_transfer(source, destination)
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dst))
        return dst

    def copy(self, source: str, destination: str) -> int:
        """Copy a single file. Returns the number of bytes copied."""
        src, dst = self._check_transfer(source, destination)
        if src.is_dir():
            raise ValidationError(f"Cannot copy directories (only files): {source}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
        return dst.stat().st_size

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def _require_dir(self, rel_path: str) -> Path:
        p = self.resolve(rel_path or ".")
        if not p.exists():
            raise NotFoundError(f"Directory not found: {rel_path}")
        if not p.is_dir():
            raise ValidationError(f"Not a directory: {rel_path}")
        return p

    @staticmethod
    def _sorted_children(directory: Path) -> List[Path]:
        return sorted(directory.iterdir(), key=lambda c: (c.name.lower(), c.name))

    def _entry(self, path: Path) -> Dict[str, Any]:
        stat = path.stat()
        is_dir = path.is_dir()
        return {
            "name": path.name,
            "path": self.relative(path),
            "type": "directory" if is_dir else "file",
            "size": 0 if is_dir else stat.st_size,
            "modified": int(stat.st_mtime * 1000),
        }

    def list_entries(self, rel_path: str = ".", recursive: bool = False) -> List[Dict[str, Any]]:
        """
        Entries of a directory sorted by name. Recursive listings are
        depth-first and bounded by the depth and entry limits.
        """
        directory = self._require_dir(rel_path)
        entries: List[Dict[str, Any]] = []
        max_depth = self.list_max_depth if recursive else 1

        def walk(current: Path, depth: int) -> None:
            for child in self._sorted_children(current):
                if len(entries) >= self.list_max_entries:
                    return
                entries.append(self._entry(child))
                if child.is_dir() and depth + 1 < max_depth:
                    walk(child, depth + 1)

        walk(directory, 0)
        return entries

    def build_file_tree(self, rel_path: str = ".") -> str:
        """
        Indented text tree: "[d] name" / "[f] name", two spaces per level.
        """
        directory = self._require_dir(rel_path)
        lines: List[str] = []

        def walk(current: Path, depth: int) -> None:
            for child in self._sorted_children(current):
                if len(lines) >= self.list_max_entries:
                    return
                marker = "[d] " if child.is_dir() else "[f] "
                lines.append("  " * depth + marker + child.name)
                if child.is_dir() and depth + 1 < self.list_max_depth:
                    walk(child, depth + 1)

        walk(directory, 0)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Searching
    # ------------------------------------------------------------------
    def iter_files(self, directory: Path) -> Iterator[Path]:
        """Files under ``directory`` in sorted order, skipping hidden and build dirs."""
        for current, dirs, files in os.walk(directory):
            dirs[:] = sorted(d for d in dirs if not self.policy.is_skipped_dir(d))
            for name in sorted(files):
                yield Path(current) / name

    def _read_searchable(self, path: Path) -> Optional[str]:
        ok, _ = self.policy.validate_file_size(path)
        if not ok:
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            return None

    def search_lines(
        self, rel_dir: str, pattern: str, file_pattern: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Regex search, one result per matching line.

        Returns:
            (matches, truncated) where matches are {file, line, content}
        """
        directory = self._require_dir(rel_dir)
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ValidationError(f"Invalid regex pattern: {e}")

        matches: List[Dict[str, Any]] = []
        for path in self.iter_files(directory):
            if file_pattern and not path.match(file_pattern):
                continue
            text = self._read_searchable(path)
            if text is None:
                continue
            for number, line in enumerate(text.split("\n"), start=1):
                if regex.search(line):
                    matches.append(
                        {"file": self.relative(path), "line": number, "content": line.strip()}
                    )
                    if len(matches) >= self.max_search_results:
                        return matches, True
        return matches, False

    def search_offsets(
        self,
        query: str,
        rel_dir: str = ".",
        regex: bool = False,
        max_hits_per_file: int = 10,
        snippet_margin: int = 80,
        file_pattern: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Breadth-first search returning character offsets and a snippet of
        ``snippet_margin`` characters either side of each hit. A file stops
        being scanned once it has produced more than ``max_hits_per_file``.
        """
        if not query:
            raise ValidationError("Search query is empty")
        directory = self._require_dir(rel_dir)
        try:
            compiled = re.compile(query if regex else re.escape(query))
        except re.error as e:
            raise ValidationError(f"Invalid regex pattern: {e}")

        results: List[Dict[str, Any]] = []
        queue = deque([directory])
        while queue:
            current = queue.popleft()
            for child in self._sorted_children(current):
                if child.is_dir():
                    if not self.policy.is_skipped_dir(child.name):
                        queue.append(child)
                    continue
                if file_pattern and not child.match(file_pattern):
                    continue
                text = self._read_searchable(child)
                if text is None:
                    continue
                hits = 0
                for m in compiled.finditer(text):
                    if m.start() == m.end():
                        continue
                    lo = max(0, m.start() - snippet_margin)
                    hi = min(len(text), m.end() + snippet_margin)
                    results.append(
                        {
                            "path": self.relative(child),
                            "start": m.start(),
                            "end": m.end(),
                            "snippet": text[lo:hi],
                        }
                    )
                    if len(results) >= self.max_search_results:
                        return results
                    hits += 1
                    if hits > max_hits_per_file:
                        break
        return results

    def list_code_definitions(self, rel_dir: str = ".") -> Dict[str, List[str]]:
        """
        Regex-based identifier extraction: HTML ids, CSS class selectors,
        JS functions (declared or const arrow) and classes.
        """
        directory = self._require_dir(rel_dir)
        found: Dict[str, set] = {
            "html_ids": set(),
            "css_classes": set(),
            "js_functions": set(),
            "js_classes": set(),
        }
        for path in self.iter_files(directory):
            suffix = path.suffix.lower()
            if suffix not in (".html", ".htm", ".css", ".js", ".mjs"):
                continue
            text = self._read_searchable(path)
            if text is None:
                continue
            if suffix in (".html", ".htm"):
                found["html_ids"].update(_HTML_ID_RE.findall(text))
            elif suffix == ".css":
                selectors = _CSS_BLOCK_RE.sub("{}", text)
                found["css_classes"].update(_CSS_CLASS_RE.findall(selectors))
            else:
                found["js_functions"].update(_JS_FUNCTION_RE.findall(text))
                found["js_functions"].update(_JS_ARROW_RE.findall(text))
                found["js_classes"].update(_JS_CLASS_RE.findall(text))
        return {key: sorted(values) for key, values in found.items()}
