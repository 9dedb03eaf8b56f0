"""
Line diff engine.

Myers O(ND) shortest edit script over lines, rendered as unified-diff
hunks. Used for change previews shown before approval and for applying
model-authored patches.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from codexagent.core.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = 3

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass(frozen=True)
class Edit:
    """
    One change span: old lines [a_start, a_end) become new lines
    [b_start, b_end). Pure deletions have an empty b span, pure
    insertions an empty a span.
    """
    a_start: int
    a_end: int
    b_start: int
    b_end: int

    @property
    def is_insertion(self) -> bool:
        return self.a_start == self.a_end

    @property
    def is_deletion(self) -> bool:
        return self.b_start == self.b_end


@dataclass
class Hunk:
    old_start: int  # 0-based
    old_len: int
    new_start: int  # 0-based
    new_len: int
    lines: List[str] = field(default_factory=list)

    def header(self) -> str:
        return f"@@ -{self.old_start + 1},{self.old_len} +{self.new_start + 1},{self.new_len} @@"

    def render(self) -> str:
        return "\n".join([self.header()] + self.lines)

# ----------------------------------------------------------------------
# Edit script
# ----------------------------------------------------------------------

def compute_diff(old_lines: Sequence[str], new_lines: Sequence[str]) -> List[Edit]:
    """
    Minimal edit script turning ``old_lines`` into ``new_lines``.

    Falls back to a positional line-by-line comparison if the Myers
    search fails for any reason.
    """
    try:
        return _coalesce(_myers(old_lines, new_lines))
    except Exception as e:
        logger.warning(f"Myers diff failed ({e}); using positional diff")
        return _coalesce(_positional_edits(old_lines, new_lines))


def _choose_down(v: List[int], idx: int, k: int, d: int) -> bool:
    # Moving down (insertion) comes from diagonal k+1.
    return k == -d or (k != d and v[idx - 1] < v[idx + 1])


def _myers(a: Sequence[str], b: Sequence[str]) -> List[Edit]:
    n, m = len(a), len(b)
    max_d = n + m
    if max_d == 0:
        return []

    offset = max_d
    v = [0] * (2 * max_d + 1)
    trace: List[List[int]] = []

    for d in range(max_d + 1):
        trace.append(list(v))
        for k in range(-d, d + 1, 2):
            idx = k + offset
            if _choose_down(v, idx, k, d):
                x = v[idx + 1]
            else:
                x = v[idx - 1] + 1
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[idx] = x
            if x >= n and y >= m:
                return _backtrack(trace, n, m, offset)

    raise RuntimeError("Myers search did not reach the end point")


def _backtrack(trace: List[List[int]], n: int, m: int, offset: int) -> List[Edit]:
    x, y = n, m
    edits: List[Edit] = []
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        idx = k + offset
        prev_k = k + 1 if _choose_down(v, idx, k, d) else k - 1
        prev_x = v[prev_k + offset]
        prev_y = prev_x - prev_k

        while x > prev_x and y > prev_y:
            x -= 1
            y -= 1

        if d > 0:
            if x == prev_x:
                edits.append(Edit(prev_x, prev_x, prev_y, y))
            else:
                edits.append(Edit(prev_x, x, prev_y, prev_y))
        x, y = prev_x, prev_y

    edits.reverse()
    return edits


def _positional_edits(a: Sequence[str], b: Sequence[str]) -> List[Edit]:
    n, m = len(a), len(b)
    edits: List[Edit] = []
    for i in range(max(n, m)):
        if i < n and i < m:
            if a[i] != b[i]:
                edits.append(Edit(i, i + 1, i, i + 1))
        elif i < n:
            edits.append(Edit(i, i + 1, m, m))
        else:
            edits.append(Edit(n, n, i, i + 1))
    return edits


def _coalesce(edits: List[Edit]) -> List[Edit]:
    """Join edits that touch (no matched line between them) into spans."""
    merged: List[Edit] = []
    for e in edits:
        if merged:
            last = merged[-1]
            if last.a_end == e.a_start and last.b_end == e.b_start:
                merged[-1] = Edit(last.a_start, e.a_end, last.b_start, e.b_end)
                continue
        merged.append(e)
    return merged

# ----------------------------------------------------------------------
# Hunks
# ----------------------------------------------------------------------

def build_hunks(
    old_lines: Sequence[str],
    new_lines: Sequence[str],
    edits: List[Edit],
    context: int = DEFAULT_CONTEXT,
) -> List[Hunk]:
    """
    One hunk per edit span, padded with up to ``context`` unchanged lines
    on each side. Context windows of nearby edits are not merged, so two
    close edits yield two hunks whose context may overlap.
    """
    if not edits:
        return [Hunk(0, 0, 0, 0)]

    n, m = len(old_lines), len(new_lines)
    context = max(0, context)
    hunks: List[Hunk] = []
    for i, e in enumerate(edits):
        prev_end = edits[i - 1].a_end if i > 0 else 0
        next_start = edits[i + 1].a_start if i + 1 < len(edits) else n
        before = min(context, e.a_start - prev_end, e.b_start)
        after = min(context, next_start - e.a_end, m - e.b_end)

        lines = [" " + line for line in old_lines[e.a_start - before:e.a_start]]
        lines += ["-" + line for line in old_lines[e.a_start:e.a_end]]
        lines += ["+" + line for line in new_lines[e.b_start:e.b_end]]
        lines += [" " + line for line in old_lines[e.a_end:e.a_end + after]]

        hunks.append(
            Hunk(
                old_start=e.a_start - before,
                old_len=before + (e.a_end - e.a_start) + after,
                new_start=e.b_start - before,
                new_len=before + (e.b_end - e.b_start) + after,
                lines=lines,
            )
        )
    return hunks


def apply_hunks(old_lines: Sequence[str], hunks: List[Hunk]) -> List[str]:
    """
    Apply hunks produced by :func:`build_hunks` to the lines they were
    computed from. Each hunk's change span is located from its header
    and leading context, so overlapping context is harmless.
    """
    out: List[str] = []
    cursor = 0
    for hunk in hunks:
        if not hunk.lines:
            continue
        lead = 0
        while lead < len(hunk.lines) and hunk.lines[lead].startswith(" "):
            lead += 1
        deleted = [l[1:] for l in hunk.lines if l.startswith("-")]
        inserted = [l[1:] for l in hunk.lines if l.startswith("+")]
        start = hunk.old_start + lead
        if start < cursor:
            raise ConflictError(f"Hunk {hunk.header()} overlaps a previous change")
        if list(old_lines[start:start + len(deleted)]) != deleted:
            raise ConflictError(f"Hunk {hunk.header()} does not match the original text")
        out.extend(old_lines[cursor:start])
        out.extend(inserted)
        cursor = start + len(deleted)
    out.extend(old_lines[cursor:])
    return out

# ----------------------------------------------------------------------
# Text rendering
# ----------------------------------------------------------------------

def generate_unified_diff(
    old_text: str,
    new_text: str,
    context: int = DEFAULT_CONTEXT,
    old_name: str = "old",
    new_name: str = "new",
) -> str:
    """Render a unified diff between two text blobs."""
    try:
        a = old_text.split("\n")
        b = new_text.split("\n")
        hunks = build_hunks(a, b, compute_diff(a, b), context)
        out = [f"--- {old_name}", f"+++ {new_name}"]
        for hunk in hunks:
            if hunk.lines:
                out.append(hunk.render())
        return "\n".join(out) + "\n"
    except Exception as e:
        logger.warning(f"Unified diff rendering failed ({e}); using simple diff")
        return simple_diff(old_text, new_text)


def simple_diff(old_text: str, new_text: str) -> str:
    a = old_text.split("\n")
    b = new_text.split("\n")
    out = ["--- original", "+++ modified"]
    for i in range(max(len(a), len(b))):
        old = a[i] if i < len(a) else None
        new = b[i] if i < len(b) else None
        if old == new:
            continue
        out.append(f"@@ Line {i + 1} @@")
        if old is not None:
            out.append("-" + old)
        if new is not None:
            out.append("+" + new)
    return "\n".join(out) + "\n"


def generate_diff(old_text: str, new_text: str, context: int = DEFAULT_CONTEXT) -> str:
    return generate_unified_diff(old_text, new_text, context, "original", "modified")


def generate_diff_from_replacement(
    original: str, search: str, replace: str, context: int = DEFAULT_CONTEXT
) -> str:
    """Preview of replacing every occurrence of ``search`` with ``replace``."""
    modified = original.replace(search, replace) if search else original
    return generate_diff(original, modified, context)

# ----------------------------------------------------------------------
# Counting / applying text diffs
# ----------------------------------------------------------------------

def count_add_remove(diff_text: str) -> Tuple[int, int]:
    added = removed = 0
    for line in (diff_text or "").split("\n"):
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    return added, removed


def count_add_remove_from_contents(old_text: str, new_text: str) -> Tuple[int, int]:
    a = old_text.split("\n") if old_text else []
    b = new_text.split("\n") if new_text else []
    added = removed = 0
    for e in compute_diff(a, b):
        added += e.b_end - e.b_start
        removed += e.a_end - e.a_start
    return added, removed


def _parse_unified(diff_text: str) -> List[Tuple[int, List[str]]]:
    hunks: List[Tuple[int, List[str]]] = []
    current: Optional[List[str]] = None
    for line in diff_text.replace("\r\n", "\n").split("\n"):
        header = _HUNK_HEADER_RE.match(line)
        if header:
            current = []
            hunks.append((int(header.group(1)), current))
            continue
        if current is None or line.startswith("\\"):
            continue
        if line[:1] in (" ", "-", "+"):
            current.append(line)
        elif line == "":
            current.append(" ")
    # A trailing blank produced by the final newline is not context.
    for _, lines in hunks:
        while lines and lines[-1] == " ":
            lines.pop()
    return hunks


def apply_unified_diff(content: str, diff_text: str) -> str:
    """
    Apply a unified diff to ``content``.

    Hunks are tried at their stated position first, then searched for
    forward from the previous hunk.

    Raises:
        ValidationError: the text contains no hunks.
        ConflictError: a hunk does not match the content.
    """
    hunks = _parse_unified(diff_text or "")
    if not hunks:
        raise ValidationError("No hunks found in diff")

    lines = content.split("\n")
    offset = 0
    cursor = 0
    for number, (old_start, body) in enumerate(hunks, start=1):
        old_block = [l[1:] for l in body if l[0] in (" ", "-")]
        new_block = [l[1:] for l in body if l[0] in (" ", "+")]
        pos = max(0, old_start - 1 + offset)

        if lines[pos:pos + len(old_block)] != old_block:
            pos = _find_block(lines, old_block, cursor)
            if pos < 0:
                raise ConflictError(f"Hunk {number} does not apply to the current content")

        lines[pos:pos + len(old_block)] = new_block
        offset += len(new_block) - len(old_block)
        cursor = pos + len(new_block)
    return "\n".join(lines)


def _find_block(lines: List[str], block: List[str], start: int) -> int:
    if not block:
        return min(start, len(lines))
    for i in range(start, len(lines) - len(block) + 1):
        if lines[i:i + len(block)] == block:
            return i
    return -1
