"""
Tests for ResponseParser:
- Fence handling and JSON extraction
- Shape detectors in precedence order
- Alias normalization and modifyLines expansion
- tool_calls envelopes and the control-tool cut-off
- Never raising on malformed input
"""

import json

import pytest

from codexagent.core.response_parser import (
    FileActionDetail,
    PlanStepStatus,
    ResponseKind,
    ResponseParser,
    answer_text_from_sse,
    extract_json_candidate,
    normalize_fences,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def parser():
    return ResponseParser()


def fenced(obj, label="json") -> str:
    return f"Sure, here you go:\n```{label}\n{json.dumps(obj)}\n```\nDone."


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def test_normalize_fences_variants():
    assert normalize_fences("```JSON\n{}\n```") == "```json\n{}\n```"
    assert normalize_fences("```jsonc\n{}\n```") == "```json\n{}\n```"
    assert normalize_fences("```json5\n{}\n```") == "```json\n{}\n```"


def test_extract_json_candidate_prefers_json_fence():
    text = "```python\nprint(1)\n```\n```json\n{\"a\": 1}\n```"
    assert extract_json_candidate(text) == '{"a": 1}'


def test_extract_json_candidate_from_unlabeled_fence_and_bare_text():
    assert extract_json_candidate("```\n[1, 2]\n```") == "[1, 2]"
    assert extract_json_candidate('  {"a": 1}  ') == '{"a": 1}'
    assert extract_json_candidate("no json here") is None


def test_answer_text_from_sse_skips_thinking():
    raw = "\n".join(
        [
            'data: {"choices": [{"delta": {"phase": "think", "content": "hmm"}}]}',
            'data: {"choices": [{"delta": {"phase": "answer", "content": "{\\"a\\""}}]}',
            'data: {"choices": [{"delta": {"content": ": 1}"}}]}',
            "data: [DONE]",
        ]
    )
    assert answer_text_from_sse(raw) == '{"a": 1}'


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------

def test_plain_text_is_invalid_plain_message(parser):
    parsed = parser.parse("Just chatting.")
    assert parsed.kind == ResponseKind.PLAIN_MESSAGE
    assert parsed.explanation == "Just chatting."
    assert parsed.is_valid is False


def test_malformed_json_degrades_to_plain(parser):
    parsed = parser.parse('```json\n{"operations": [\n```')
    assert parsed.kind == ResponseKind.PLAIN_MESSAGE
    assert parsed.is_valid is False


def test_plan_detected_first(parser):
    parsed = parser.parse(
        fenced({"goal": "site", "steps": [{"id": "a", "title": "Create"}, "Style it"], "operations": []})
    )
    assert parsed.kind == ResponseKind.PLAN
    assert parsed.explanation == "Plan for: site"
    assert [s.id for s in parsed.plan_steps] == ["a", "s2"]
    assert parsed.plan_steps[1].title == "Style it"
    assert all(s.status == PlanStepStatus.PENDING for s in parsed.plan_steps)


def test_operation_batch_with_aliases(parser):
    parsed = parser.parse(
        fenced(
            {
                "explanation": "two edits",
                "operations": [
                    {"type": "createFile", "filePath": "a.txt", "newContent": "A"},
                    {"action": "renameFile", "source": "a.txt", "destination": "b.txt"},
                    {"content": "no type"},
                ],
            }
        )
    )
    assert parsed.kind == ResponseKind.OPERATION_BATCH
    assert parsed.explanation == "two edits"
    assert len(parsed.operations) == 2
    create, rename = parsed.operations
    assert (create.type, create.path, create.new_content) == ("createFile", "a.txt", "A")
    assert (rename.old_path, rename.new_path) == ("a.txt", "b.txt")


def test_top_level_array_is_an_operation_batch(parser):
    parsed = parser.parse('[{"type": "deleteFile", "path": "x"}]')
    assert parsed.kind == ResponseKind.OPERATION_BATCH
    assert parsed.operations[0].type == "deleteFile"


def test_tool_code_with_parameters(parser):
    parsed = parser.parse(
        json.dumps({"tool_code": "write_to_file", "parameters": {"path": "f.py", "content": ["a", "b"]}})
    )
    assert parsed.kind == ResponseKind.OPERATION_BATCH
    op = parsed.operations[0]
    assert op.type == "write_to_file"
    assert op.new_content == "a\nb"


def test_modify_lines_hunks_expand_to_search_and_replace(parser):
    parsed = parser.parse(
        json.dumps(
            {
                "operations": [
                    {
                        "type": "updateFile",
                        "path": "app.js",
                        "modifyLines": [
                            {"search": "a", "replace": "b"},
                            {"search": "c"},
                            {"searchPattern": "d", "replaceWith": "e"},
                        ],
                    }
                ]
            }
        )
    )
    ops = parsed.operations
    assert [(o.type, o.path, o.search, o.replace) for o in ops] == [
        ("searchAndReplace", "app.js", "a", "b"),
        ("searchAndReplace", "app.js", "d", "e"),
    ]


def test_single_action_and_type_shapes(parser):
    by_action = parser.parse(json.dumps({"action": "modifyLines", "path": "x"}))
    assert by_action.kind == ResponseKind.PLAIN_MESSAGE  # modifyLines is not a top-level action

    single = parser.parse(
        json.dumps({"type": "patchFile", "path": "x.py", "diff": "@@ -1 +1 @@\n-a\n+b", "explanation": "fix"})
    )
    assert single.kind == ResponseKind.SINGLE_ACTION
    assert single.explanation == "fix"
    assert single.operations[0].diff_patch.startswith("@@")


def test_integers_parsed_from_strings(parser):
    entry = {"type": "modifyLines", "path": "f", "startLine": "3", "deleteCount": 2, "insertLines": "x\ny"}
    (detail,) = parser.details_from_entry(entry)
    assert detail.start_line == 3
    assert detail.delete_count == 2
    assert detail.insert_lines == ["x", "y"]


def test_unrecognized_json_is_plain_message(parser):
    parsed = parser.parse('{"hello": "world"}')
    assert parsed.kind == ResponseKind.PLAIN_MESSAGE
    assert json.loads(parsed.explanation) == {"hello": "world"}
    assert parsed.is_valid


def test_raw_envelope_recovery(parser):
    raw = 'data: {"choices": [{"delta": {"content": "{\\"type\\": \\"deleteFile\\", \\"path\\": \\"a\\"}"}}]}'
    parsed = parser.parse("", raw_envelope=raw)
    assert parsed.kind == ResponseKind.SINGLE_ACTION
    assert parsed.operations[0].path == "a"


def test_file_action_detail_to_dict_keeps_zero():
    d = FileActionDetail(type="modifyLines", path="f", start_line=1, delete_count=0)
    assert d.to_dict() == {"type": "modifyLines", "path": "f", "start_line": 1, "delete_count": 0}
    assert FileActionDetail(type="renameFile", old_path="a", new_path="b").target_paths() == ["a", "b"]


# ---------------------------------------------------------------------------
# tool_calls envelope
# ---------------------------------------------------------------------------

def test_tool_calls_envelope(parser):
    text = json.dumps(
        {
            "action": "tool_call",
            "tool_calls": [
                {"name": "read_file", "args": {"path": "a"}},
                {"function": {"name": "list_files", "arguments": "{\"path\": \".\"}"}},
            ],
        }
    )
    batch = parser.parse_tool_calls(text)
    assert [c.name for c in batch.calls] == ["read_file", "list_files"]
    assert batch.calls[1].arguments == {"path": "."}
    assert batch.control is None


def test_tool_calls_cut_at_control_tool(parser):
    text = json.dumps(
        {
            "tool_calls": [
                {"name": "write_to_file", "args": {"path": "a", "content": "x"}},
                {"name": "attempt_completion", "args": {"result": "done"}},
                {"name": "delete_file", "args": {"path": "a"}},
            ]
        }
    )
    batch = parser.parse_tool_calls(text)
    assert [c.name for c in batch.calls] == ["write_to_file"]
    assert batch.control.name == "attempt_completion"
    assert batch.dropped == 1


def test_not_a_tool_calls_envelope(parser):
    assert parser.parse_tool_calls("hello") is None
    assert parser.parse_tool_calls('{"operations": []}') is None
    assert parser.parse_tool_calls('{"action": "other", "tool_calls": []}') is None


@pytest.mark.parametrize("text", ["", "```json\n```", "{{{{", "[1, 2, 3]", "null", '"str"'])
def test_parse_never_raises(parser, text):
    parsed = parser.parse(text)
    assert parsed.kind in (ResponseKind.PLAIN_MESSAGE, ResponseKind.OPERATION_BATCH)


@pytest.mark.parametrize(
    "text",
    [
        fenced({"steps": [{"title": "Scaffold"}, {"id": "b", "title": "Wire", "kind": "tool"}]}),
        fenced({"operations": [{"type": "createFile", "path": "a.txt", "content": "A"}]}),
        '{"action": "updateFile", "path": "a.py", "content": "x"}',
        "not json at all {",
    ],
)
def test_parsing_is_repeatable(parser, text):
    first = parser.parse(text)
    second = ResponseParser().parse(text)
    assert first == second
