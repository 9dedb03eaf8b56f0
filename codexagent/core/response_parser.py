"""
Response Parser

Turns raw model output into a normalized ParsedResponse. Models emit
several overlapping JSON conventions, so parsing runs an ordered chain of
shape detectors where the first match wins:

    steps[]        -> plan
    operations[]   -> operation batch
    tool_code      -> operation batch of one
    action / type  -> single file action
    anything else  -> plain message

Parsing never raises; every failure degrades to a plain message.
"""

import json
import logging
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

RECOGNIZED_ACTIONS = (
    "createFile",
    "updateFile",
    "deleteFile",
    "renameFile",
    "readFile",
    "listFiles",
    "searchAndReplace",
    "patchFile",
    "smartUpdate",
    "write_to_file",
    "replace_in_file",
    "append_to_file",
    "prepend_to_file",
    "delete_path",
    "rename_path",
)

CONTROL_TOOLS = ("ask_followup_question", "attempt_completion")

# Ordered alias keys per logical field.
TYPE_KEYS = ("type", "action", "tool_code", "operation")
PATH_KEYS = ("path", "relative_path", "target_path", "file_path", "filePath", "file")
CONTENT_KEYS = ("content", "newContent", "new_content", "text")
OLD_PATH_KEYS = ("oldPath", "old_path", "source_path", "source")
NEW_PATH_KEYS = ("newPath", "new_path", "destination_path", "destination")
SEARCH_KEYS = ("search", "searchPattern", "search_text")
REPLACE_KEYS = ("replace", "replaceWith", "replacement")
DIFF_KEYS = ("diffPatch", "diff", "patch")
START_LINE_KEYS = ("startLine", "start_line")
DELETE_COUNT_KEYS = ("deleteCount", "delete_count")
INSERT_LINES_KEYS = ("insertLines", "insert_lines")

_FENCE_LABEL_RE = re.compile(r"```[ \t]*json[c5]?\b", re.IGNORECASE)
_JSON_FENCE_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_ANY_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*\s*(.*?)\s*```", re.DOTALL)


class ResponseKind(Enum):
    PLAN = "plan"
    OPERATION_BATCH = "operation_batch"
    SINGLE_ACTION = "single_action"
    PLAIN_MESSAGE = "plain_message"


class PlanStepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FileActionDetail:
    """A normalized file-mutation directive."""

    type: str
    path: str = ""
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    new_content: Optional[str] = None
    search: Optional[str] = None
    replace: Optional[str] = None
    diff_patch: Optional[str] = None
    start_line: Optional[int] = None
    delete_count: Optional[int] = None
    insert_lines: Optional[List[str]] = None
    validate_content: bool = False
    content_type: Optional[str] = None
    error_handling: Optional[str] = None
    update_type: Optional[str] = None
    create_backup: bool = False
    generate_diff: bool = False
    diff_format: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)

    def target_paths(self) -> List[str]:
        return [p for p in (self.path, self.old_path, self.new_path) if p]

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: v for k, v in asdict(self).items()
            if v is not None and v is not False and v != "" and v != {}
        }


@dataclass
class PlanStep:
    id: str
    title: str
    kind: str = "file"
    status: PlanStepStatus = PlanStepStatus.PENDING
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind,
            "status": self.status.value,
            "description": self.description,
        }


@dataclass
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallBatch:
    """Calls from a tool_calls envelope, cut at the first control tool."""

    calls: List[ToolCall] = field(default_factory=list)
    control: Optional[ToolCall] = None
    dropped: int = 0


@dataclass
class ParsedResponse:
    kind: ResponseKind
    explanation: str = ""
    operations: List[FileActionDetail] = field(default_factory=list)
    plan_steps: List[PlanStep] = field(default_factory=list)
    is_valid: bool = True
    raw_response: str = ""

    @property
    def is_plan(self) -> bool:
        return self.kind == ResponseKind.PLAN

    @property
    def has_operations(self) -> bool:
        return bool(self.operations)

# ----------------------------------------------------------------------
# JSON extraction
# ----------------------------------------------------------------------

def normalize_fences(text: str) -> str:
    """```JSON / ```jsonc / ```json5 -> ```json"""
    return _FENCE_LABEL_RE.sub("```json", text or "")


def looks_like_json(text: Optional[str]) -> bool:
    if not text:
        return False
    t = text.strip()
    return (t.startswith("{") and t.endswith("}")) or (t.startswith("[") and t.endswith("]"))


def extract_json_candidate(text: str) -> Optional[str]:
    """
    The JSON payload inside model output: a ```json fence, an unlabeled
    fence whose body looks like JSON, or the whole trimmed text.
    """
    normalized = normalize_fences(text)
    m = _JSON_FENCE_RE.search(normalized)
    if m:
        return m.group(1).strip()
    for m in _ANY_FENCE_RE.finditer(normalized):
        if looks_like_json(m.group(1)):
            return m.group(1).strip()
    stripped = normalized.strip()
    if looks_like_json(stripped):
        return stripped
    return None


def answer_text_from_sse(raw_envelope: str) -> str:
    """Reassemble answer-phase delta text from a raw SSE transcript."""
    parts: List[str] = []
    for line in (raw_envelope or "").splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            continue
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError:
            continue
        choices = chunk.get("choices") if isinstance(chunk, dict) else None
        if not choices or not isinstance(choices[0], dict):
            continue
        delta = choices[0].get("delta") or {}
        if delta.get("phase", "answer") == "answer" and isinstance(delta.get("content"), str):
            parts.append(delta["content"])
    return "".join(parts)


def _first(entry: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is not None:
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    return json.dumps(value, indent=2)


def _as_lines(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.split("\n")
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]

# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------

class ResponseParser:
    """
    Ordered shape-detector chain over the JSON payload of a response.
    """

    def __init__(self) -> None:
        self._detectors: List[Tuple[str, Callable[[Dict[str, Any], str], Optional[ParsedResponse]]]] = [
            ("plan", self._detect_plan),
            ("operations", self._detect_operations),
            ("tool_code", self._detect_root_tool_code),
            ("action", self._detect_action),
            ("type", self._detect_type),
            ("plain", self._detect_plain_json),
        ]

    def parse(self, raw_text: str, raw_envelope: Optional[str] = None) -> ParsedResponse:
        raw_text = raw_text or ""
        try:
            return self._parse(raw_text, raw_envelope)
        except Exception as e:
            logger.warning(f"Response parsing failed, treating as plain text: {e}")
            return self._plain_text(raw_text)

    def _parse(self, raw_text: str, raw_envelope: Optional[str]) -> ParsedResponse:
        candidate = extract_json_candidate(raw_text)
        if candidate is None and raw_envelope:
            candidate = extract_json_candidate(answer_text_from_sse(raw_envelope))
            if candidate is not None:
                logger.debug("Recovered JSON payload from raw stream envelope")
        if candidate is None:
            return self._plain_text(raw_text)

        try:
            root = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"JSON payload did not parse: {e}")
            return self._plain_text(raw_text)

        if isinstance(root, list):
            root = {"operations": root}
        if not isinstance(root, dict):
            return self._plain_text(raw_text)

        explanation = _as_text(root.get("explanation")) or ""
        for name, detector in self._detectors:
            parsed = detector(root, explanation)
            if parsed is not None:
                parsed.raw_response = raw_text
                logger.debug(f"Response matched '{name}' shape")
                return parsed
        return self._plain_text(raw_text)

    @staticmethod
    def _plain_text(raw_text: str) -> ParsedResponse:
        return ParsedResponse(
            kind=ResponseKind.PLAIN_MESSAGE,
            explanation=raw_text,
            is_valid=False,
            raw_response=raw_text,
        )

    # ---- detectors ----------------------------------------------------
    def _detect_plan(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        steps = root.get("steps")
        if not isinstance(steps, list):
            return None
        plan_steps = []
        for i, raw in enumerate(steps):
            step = raw if isinstance(raw, dict) else {"title": str(raw)}
            plan_steps.append(
                PlanStep(
                    id=str(step.get("id") or f"s{i + 1}"),
                    title=str(step.get("title") or f"Step {i + 1}"),
                    kind=str(step.get("kind") or "file"),
                    description=_as_text(step.get("description")),
                )
            )
        goal = root.get("goal")
        if not explanation:
            explanation = f"Plan for: {goal}" if goal else "Plan"
        return ParsedResponse(kind=ResponseKind.PLAN, explanation=explanation, plan_steps=plan_steps)

    def _detect_operations(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        operations = root.get("operations")
        if not isinstance(operations, list):
            return None
        details: List[FileActionDetail] = []
        for entry in operations:
            if isinstance(entry, dict):
                details.extend(self.details_from_entry(entry))
        return ParsedResponse(
            kind=ResponseKind.OPERATION_BATCH, explanation=explanation, operations=details
        )

    def _detect_root_tool_code(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        if "tool_code" not in root:
            return None
        return self._detect_operations({"operations": [root]}, explanation)

    def _detect_action(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        return self._single(root, root.get("action"), explanation)

    def _detect_type(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        return self._single(root, root.get("type"), explanation)

    def _single(self, root: Dict[str, Any], name: Any, explanation: str) -> Optional[ParsedResponse]:
        if not isinstance(name, str) or name not in RECOGNIZED_ACTIONS:
            return None
        detail = self.build_detail(name, root)
        return ParsedResponse(
            kind=ResponseKind.SINGLE_ACTION, explanation=explanation, operations=[detail]
        )

    def _detect_plain_json(self, root: Dict[str, Any], explanation: str) -> Optional[ParsedResponse]:
        return ParsedResponse(
            kind=ResponseKind.PLAIN_MESSAGE,
            explanation=json.dumps(root, ensure_ascii=False),
        )

    # ---- entry normalization ------------------------------------------
    def details_from_entry(self, entry: Dict[str, Any]) -> List[FileActionDetail]:
        """
        One operations[] entry, flat or tool_code + parameters, to one or
        more FileActionDetails. modifyLines[] hunks expand into one
        searchAndReplace each.
        """
        fields = dict(entry)
        parameters = entry.get("parameters")
        if isinstance(parameters, dict):
            fields.update(parameters)
        action_type = _first(entry, TYPE_KEYS)
        if not isinstance(action_type, str) or not action_type:
            logger.warning(f"Skipping operation without a type: {sorted(entry)}")
            return []

        hunks = fields.get("modifyLines")
        if isinstance(hunks, list):
            path = _as_text(_first(fields, PATH_KEYS)) or ""
            expanded = []
            for hunk in hunks:
                if not isinstance(hunk, dict):
                    continue
                search = _first(hunk, SEARCH_KEYS)
                replace = _first(hunk, REPLACE_KEYS)
                if search is None or replace is None:
                    continue
                expanded.append(
                    FileActionDetail(
                        type="searchAndReplace",
                        path=path,
                        search=_as_text(search),
                        replace=_as_text(replace),
                        arguments=dict(hunk),
                    )
                )
            return expanded

        return [self.build_detail(action_type, fields)]

    @staticmethod
    def build_detail(action_type: str, fields: Dict[str, Any]) -> FileActionDetail:
        args = {k: v for k, v in fields.items() if k not in TYPE_KEYS and k != "parameters"}
        return FileActionDetail(
            type=action_type,
            path=_as_text(_first(fields, PATH_KEYS)) or "",
            old_path=_as_text(_first(fields, OLD_PATH_KEYS)),
            new_path=_as_text(_first(fields, NEW_PATH_KEYS)),
            new_content=_as_text(_first(fields, CONTENT_KEYS)),
            search=_as_text(_first(fields, SEARCH_KEYS)),
            replace=_as_text(_first(fields, REPLACE_KEYS)),
            diff_patch=_as_text(_first(fields, DIFF_KEYS)),
            start_line=_as_int(_first(fields, START_LINE_KEYS)),
            delete_count=_as_int(_first(fields, DELETE_COUNT_KEYS)),
            insert_lines=_as_lines(_first(fields, INSERT_LINES_KEYS)),
            validate_content=bool(fields.get("validateContent", False)),
            content_type=fields.get("contentType"),
            error_handling=fields.get("errorHandling"),
            update_type=fields.get("updateType"),
            create_backup=bool(fields.get("createBackup", False)),
            generate_diff=bool(fields.get("generateDiff", False)),
            diff_format=fields.get("diffFormat"),
            arguments=args,
        )

    # ---- tool_calls envelope ------------------------------------------
    def parse_tool_calls(self, raw_text: str) -> Optional[ToolCallBatch]:
        """
        ``{"action": "tool_call", "tool_calls": [{"name", "args"}]}``.
        Returns None when the text is not such an envelope.
        """
        candidate = extract_json_candidate(raw_text or "")
        if candidate is None:
            return None
        try:
            root = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        if not isinstance(root, dict) or not isinstance(root.get("tool_calls"), list):
            return None
        if root.get("action") not in (None, "tool_call", "tool_calls"):
            return None

        batch = ToolCallBatch()
        entries = root["tool_calls"]
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            call = self._tool_call_from_entry(entry)
            if call is None:
                continue
            if call.name in CONTROL_TOOLS:
                batch.control = call
                batch.dropped = len(entries) - i - 1
                if batch.dropped:
                    logger.warning(f"Ignoring {batch.dropped} tool call(s) after {call.name}")
                break
            batch.calls.append(call)
        return batch

    @staticmethod
    def _tool_call_from_entry(entry: Dict[str, Any]) -> Optional[ToolCall]:
        function = entry.get("function") if isinstance(entry.get("function"), dict) else {}
        name = entry.get("name") or entry.get("tool") or function.get("name")
        if not isinstance(name, str) or not name:
            return None
        args = _first(entry, ("args", "arguments", "parameters"))
        if args is None:
            args = function.get("arguments")
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                logger.warning(f"Tool call '{name}' has non-JSON arguments")
                args = {}
        return ToolCall(name=name, arguments=args if isinstance(args, dict) else {})
