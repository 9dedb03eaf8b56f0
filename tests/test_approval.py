"""
Tests for the approval gate: mode handling, request previews and the
first-decision-wins handle.
"""

import asyncio

from codexagent.core.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalHandle,
    ApprovalMode,
)
from codexagent.core.file_ops import FileOps
from codexagent.core.response_parser import FileActionDetail, PlanStep, ToolCall
from codexagent.core.tools import default_registry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def run_async(coro):
    return asyncio.run(coro)


def make_gate(tmp_path, mode=ApprovalMode.APPROVAL):
    return ApprovalGate(mode, default_registry(), FileOps(tmp_path))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def test_approval_mode_gates_mutating_tools_only(tmp_path):
    gate = make_gate(tmp_path)
    assert gate.needs_approval("write_to_file")
    assert gate.needs_approval("delete_path")
    assert not gate.needs_approval("read_file")
    assert not gate.needs_approval("attempt_completion")
    assert gate.plan_needs_approval()


def test_agent_mode_never_gates(tmp_path):
    gate = make_gate(tmp_path, ApprovalMode.AGENT)
    assert not gate.needs_approval("write_to_file")
    assert not gate.batch_needs_approval([FileActionDetail(type="deleteFile", path="a")])
    assert not gate.plan_needs_approval()


def test_batch_with_only_reads_is_not_gated(tmp_path):
    gate = make_gate(tmp_path)
    reads = [FileActionDetail(type="readFile", path="a"), FileActionDetail(type="listFiles")]


def test_batch_of_read_only_tool_names_is_not_gated(tmp_path):
    gate = make_gate(tmp_path)
    reads = [
        FileActionDetail(type="read_file", path="a"),
        FileActionDetail(type="list_files", path="."),
        FileActionDetail(type="search_files", path="."),
        FileActionDetail(type="list_code_definition_names", path="."),
    ]
    assert not gate.batch_needs_approval(reads)
    assert gate.batch_needs_approval(reads + [FileActionDetail(type="delete_file", path="a")])
    assert not gate.batch_needs_approval(reads)
    assert gate.batch_needs_approval(reads + [FileActionDetail(type="createFile", path="b")])


# ---------------------------------------------------------------------------
# Requests and previews
# ---------------------------------------------------------------------------

def test_replace_preview_is_unified_diff(tmp_path):
    (tmp_path / "a.py").write_text("one\ntwo\nthree\n")
    gate = make_gate(tmp_path)
    diff = "<<<<<<< SEARCH\ntwo\n=======\nTWO\n>>>>>>> REPLACE"
    request = gate.build_request(ToolCall("replace_in_file", {"path": "a.py", "diff": diff}))
    assert request.tool_name == "replace_in_file"
    assert request.description == "Modifying a.py"
    assert "--- a.py" in request.preview
    assert "-two" in request.preview
    assert "+TWO" in request.preview


def test_replace_preview_reports_failures(tmp_path):
    gate = make_gate(tmp_path)
    request = gate.build_request(ToolCall("replace_in_file", {"path": "missing.py", "diff": "x"}))
    assert request.preview == "Preview unavailable: File not found: missing.py"


def test_write_preview_is_truncated(tmp_path):
    gate = make_gate(tmp_path)
    content = "\n".join(f"line {i}" for i in range(50))
    request = gate.build_request(ToolCall("write_to_file", {"path": "big.txt", "content": content}))
    lines = request.preview.split("\n")
    assert lines[0] == "big.txt (50 lines)"
    assert lines[-1] == "... (10 more lines)"
    assert len(lines) == 42


def test_delete_preview_distinguishes_directories(tmp_path):
    (tmp_path / "pkg").mkdir()
    gate = make_gate(tmp_path)
    request = gate.build_request(ToolCall("delete_path", {"path": "pkg"}))
    assert request.preview == "Delete directory (recursive): pkg"
    request = gate.build_request(ToolCall("move_file", {"source_path": "a", "destination_path": "b"}))
    assert request.preview == "a -> b"


def test_batch_and_plan_requests(tmp_path):
    gate = make_gate(tmp_path)
    details = [
        FileActionDetail(type="createFile", path="a.txt", new_content="x\ny"),
        FileActionDetail(type="renameFile", old_path="b.txt", new_path="c.txt"),
    ]
    request = gate.build_batch_request(details)
    assert request.tool_name == "file_actions"
    assert request.preview == "createFile: a.txt\nrenameFile: b.txt -> c.txt"
    assert request.details == details

    steps = [PlanStep("s1", "Create app"), PlanStep("s2", "Add tests")]
    request = gate.build_plan_request(steps, "Two steps")
    assert request.tool_name == "plan"
    assert request.description == "Two steps"
    assert request.preview == "1. Create app\n2. Add tests"


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------

def test_first_decision_wins():
    async def scenario():
        handle = ApprovalHandle()
        handle.approve()
        handle.reject("too late")
        return await handle.wait(), handle.decided

    (decision, reason), decided = run_async(scenario())
    assert decision == ApprovalDecision.APPROVED
    assert reason is None
    assert decided


def test_reject_from_another_thread():
    async def scenario():
        handle = ApprovalHandle()
        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, handle.reject, "no thanks")
        return await asyncio.wait_for(handle.wait(), timeout=5)

    decision, reason = run_async(scenario())
    assert decision == ApprovalDecision.REJECTED
    assert reason == "no thanks"
