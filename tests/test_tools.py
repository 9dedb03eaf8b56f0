"""
Tests for the tool catalog, registry and executor:
- Approval classification of every built-in tool
- Argument validation and failure reporting
- Handler behavior against a temporary project
"""

import pytest

from codexagent.core.file_ops import FileOps
from codexagent.core.response_parser import ToolCall
from codexagent.core.tools import (
    ToolCategory,
    ToolExecutor,
    ToolParameter,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    default_registry,
)
from codexagent.core.tools.builtin import BUILTIN_TOOLS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def executor(tmp_path):
    return ToolExecutor(FileOps(tmp_path))


def noop_spec(name="noop", requires_approval=False, handler=None):
    return ToolSpec(
        name=name,
        description="does nothing",
        parameters=(ToolParameter("value", "string", "anything"),),
        requires_approval=requires_approval,
        category=ToolCategory.INTERACTION,
        handler=handler or (lambda ops, args: ToolResult.success("ok", value=args["value"])),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_default_registry_is_frozen_and_shared():
    registry = default_registry()
    assert registry is default_registry()
    assert registry.frozen
    assert len(registry) == len(BUILTIN_TOOLS) == 14
    with pytest.raises(RuntimeError):
        registry.register(noop_spec())


def test_approval_classification():
    registry = default_registry()
    mutating = {
        "write_to_file", "replace_in_file", "rename_file", "rename_path",
        "delete_file", "delete_path", "copy_file", "move_file",
    }
    for name in registry.names():
        assert registry.requires_approval(name) == (name in mutating), name
    assert registry.requires_approval("not_a_tool") is False


def test_register_rejects_duplicates_and_unclassified_tools():
    registry = ToolRegistry([noop_spec()])
    with pytest.raises(ValueError):
        registry.register(noop_spec())
    with pytest.raises(ValueError):
        registry.register(noop_spec(name="other", requires_approval=None))
    assert "noop" in registry


def test_openai_tool_declaration():
    spec = default_registry().get("search_files")
    decl = spec.to_openai_tool()
    assert decl["function"]["name"] == "search_files"
    assert decl["function"]["parameters"]["required"] == ["path", "regex"]
    assert set(decl["function"]["parameters"]["properties"]) == {"path", "regex", "file_pattern", "offsets"}
    assert decl["function"]["parameters"]["properties"]["offsets"]["type"] == "boolean"


# ---------------------------------------------------------------------------
# Executor contract
# ---------------------------------------------------------------------------

def test_unknown_tool(executor):
    result = executor.execute("teleport", {})
    assert not result.ok
    assert result.error == "Unknown tool: teleport"
    assert result.to_dict() == {"ok": False, "message": "Unknown tool: teleport", "error": "Unknown tool: teleport"}


def test_missing_required_parameter(executor):
    result = executor.execute("write_to_file", {"path": "a.txt"})
    assert result.error == "Missing required parameter: content"


def test_handler_errors_become_failures(executor):
    result = executor.execute("read_file", {"path": "missing.txt"})
    assert not result.ok
    assert result.error == "File not found: missing.txt"


def test_unexpected_exception_is_wrapped(tmp_path):
    def boom(ops, args):
        raise KeyError("x")

    executor = ToolExecutor(FileOps(tmp_path), ToolRegistry([noop_spec(handler=boom)]))
    result = executor.execute_call(ToolCall("noop", {"value": 1}))
    assert result.error.startswith("Tool execution failed:")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def test_write_then_read(executor, tmp_path):
    result = executor.execute("write_to_file", {"path": "src/a.txt", "content": "hello\nworld"})
    assert result.ok
    assert result.message == "Successfully wrote 11 characters to src/a.txt"
    assert result.data["lines_written"] == 2

    result = executor.execute("read_file", {"path": "src/a.txt"})
    assert result.data["content"] == "hello\nworld"
    assert result.data["lines"] == 2


def test_write_serializes_structured_content(executor, tmp_path):
    executor.execute("write_to_file", {"path": "data.json", "content": {"a": 1}})
    assert (tmp_path / "data.json").read_text() == '{\n  "a": 1\n}'


def test_replace_in_file(executor, tmp_path):
    (tmp_path / "f.py").write_text("x = 1\n")
    diff = "<<<<<<< SEARCH\nx = 1\n=======\nx = 2\ny = 3\n>>>>>>> REPLACE"
    result = executor.execute("replace_in_file", {"path": "f.py", "diff": diff})
    assert result.ok
    assert result.data["lines_added"] == 1
    assert "+x = 2" in result.data["diff"]
    assert (tmp_path / "f.py").read_text() == "x = 2\ny = 3\n"


def test_replace_in_file_failure_leaves_file_untouched(executor, tmp_path):
    (tmp_path / "f.py").write_text("x = 1\n")
    diff = "<<<<<<< SEARCH\nmissing\n=======\nx\n>>>>>>> REPLACE"
    result = executor.execute("replace_in_file", {"path": "f.py", "diff": diff})
    assert not result.ok
    assert "SEARCH block not found" in result.error
    assert (tmp_path / "f.py").read_text() == "x = 1\n"


def test_list_files_accepts_string_booleans(executor, tmp_path):
    (tmp_path / "d").mkdir()
    (tmp_path / "d" / "f.txt").write_text("x")
    result = executor.execute("list_files", {"path": ".", "recursive": "true"})
    assert [f["path"] for f in result.data["files"]] == ["d", "d/f.txt"]
    assert executor.execute("list_files", {}).message == "Listed 1 items in ."


def test_rename_copy_move_delete(executor, tmp_path):
    (tmp_path / "a.txt").write_text("abc")
    assert executor.execute("rename_path", {"old_path": "a.txt", "new_path": "b.txt"}).ok
    copied = executor.execute("copy_file", {"source_path": "b.txt", "destination_path": "c.txt"})
    assert copied.data["bytes_copied"] == 3
    assert executor.execute("move_file", {"source_path": "c.txt", "destination_path": "d/c.txt"}).ok
    deleted = executor.execute("delete_path", {"path": "d"})
    assert deleted.data["was_directory"] is True
    assert sorted(p.name for p in tmp_path.iterdir()) == ["b.txt"]


def test_search_and_definitions(executor, tmp_path):
    (tmp_path / "app.js").write_text("function main() {}\n// TODO\n")
    result = executor.execute("search_files", {"path": ".", "regex": "TODO", "file_pattern": "*.js"})
    assert result.message == "Found 1 matches for pattern: TODO"
    assert result.data["matches"][0]["line"] == 2
    defs = executor.execute("list_code_definition_names", {"path": "."})
    assert defs.data["js_functions"] == ["main"]


def test_control_tools(executor):
    question = executor.execute("ask_followup_question", {"question": "Which file?"})
    assert question.data == {"question": "Which file?", "awaiting_user_response": True}
    done = executor.execute("attempt_completion", {"result": "Done"})
    assert done.data["summary"] == "Done"
    assert done.data["completion_attempted"] is True


def test_list_files_non_recursive_reports_entry_types(executor, tmp_path):
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "inner.txt").write_text("i")
    result = executor.execute("list_files", {"path": ".", "recursive": False})
    assert [(e["name"], e["type"]) for e in result.data["files"]] == [("a.txt", "file"), ("b", "directory")]


def test_search_is_repeatable_on_unchanged_tree(executor, tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "b.py").write_text("x = 1\nx = 2\n")
    (tmp_path / "a.py").write_text("y = x\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("x")
    args = {"path": ".", "regex": r"\bx\b"}
    first = executor.execute("search_files", args)
    second = executor.execute("search_files", args)
    assert first.data["matches"] == second.data["matches"]
    assert [(m["file"], m["line"]) for m in first.data["matches"]] == [
        ("a.py", 1),
        ("src/b.py", 1),
        ("src/b.py", 2),
    ]


def test_search_with_offsets(executor, tmp_path):
    (tmp_path / "page.html").write_text("<div id='main'></div>")
    (tmp_path / "notes.txt").write_text("main")
    result = executor.execute(
        "search_files", {"path": ".", "regex": "ma.n", "file_pattern": "*.html", "offsets": "true"}
    )
    assert result.ok
    assert result.data["matches"] == [
        {"path": "page.html", "start": 9, "end": 13, "snippet": "<div id='main'></div>"}
    ]
    assert result.data["truncated"] is False
