"""
End-to-end tests for the workflow orchestrator.

A scripted transport plays back model replies so that each scenario
exercises the real interpreter, approval gate, tool executor and file
layer against a temporary project directory.
"""

import asyncio
import json

import pytest

from codexagent.core.approval import ApprovalMode
from codexagent.core.file_ops import FileOps
from codexagent.core.orchestrator import (
    CONTINUE_PROMPT,
    OrchestratorConfig,
    TurnInterpreter,
    TurnKind,
    WorkflowCallback,
    WorkflowOrchestrator,
    WorkflowState,
    format_tool_result,
)
from codexagent.core.response_parser import PlanStepStatus, ToolCall
from codexagent.core.tools import ToolResult
from codexagent.core.transport import (
    ChatTransport,
    StreamCompletion,
    StreamDelta,
    StreamError,
    StreamPhase,
    TransportConfig,
)
from codexagent.services.config_service import ConfigService


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def run_async(coro):
    return asyncio.run(coro)


def tool_use(tool, **args):
    return json.dumps({"action": "tool_use", "tool": tool, **args})


def message(content):
    return json.dumps({"action": "message", "content": content})


def completion(summary):
    return json.dumps({"action": "attempt_completion", "summary": summary})


class ScriptedTransport(ChatTransport):
    """Plays back one reply per request; records the history it was sent."""

    def __init__(self, replies):
        super().__init__(TransportConfig(model="scripted"))
        self.replies = list(replies)
        self.requests = []

    async def send_message(self, history, model, state, options=None):
        self.requests.append([dict(m) for m in history])
        reply = self.replies.pop(0) if self.replies else message("out of replies")
        if isinstance(reply, StreamError):
            yield reply
            return
        yield StreamDelta(StreamPhase.ANSWER, reply)
        yield StreamCompletion(reply, state.with_parent(f"r{len(self.requests)}"))

    def last_user_message(self, request_index):
        return self.requests[request_index][-1]["content"]


class RecordingCallback(WorkflowCallback):
    def __init__(self, decision=None, reason=None):
        self.decision = decision
        self.reason = reason
        self.events = []
        self.approvals = []
        self.deltas = []

    def on_stream_delta(self, delta):
        self.deltas.append(delta.text)

    def on_tool_completed(self, call, result):
        self.events.append(("tool_ok", call.name))

    def on_tool_failed(self, call, result):
        self.events.append(("tool_failed", call.name))

    def on_question_asked(self, question):
        self.events.append(("question", question))

    def on_task_completed(self, summary):
        self.events.append(("completed", summary))

    def on_message(self, text):
        self.events.append(("message", text))

    def on_plan_ready(self, steps, explanation):
        self.events.append(("plan", len(steps)))

    def on_error(self, message):
        self.events.append(("error", message))

    def on_workflow_ended(self, state, message):
        self.events.append(("ended", state))

    def on_approval_needed(self, request, handle):
        self.approvals.append(request)
        if self.decision == "approve":
            handle.approve()
        elif self.decision == "reject":
            handle.reject(self.reason)
        else:
            super().on_approval_needed(request, handle)


def make_orchestrator(tmp_path, replies, callback=None, **config):
    config.setdefault("approval_mode", ApprovalMode.AGENT)
    transport = ScriptedTransport(replies)
    orchestrator = WorkflowOrchestrator(
        transport,
        FileOps(tmp_path),
        callback=callback or RecordingCallback(),
        config=OrchestratorConfig(**config),
    )
    return orchestrator, transport


# ---------------------------------------------------------------------------
# Agent mode
# ---------------------------------------------------------------------------

def test_tool_then_completion(tmp_path):
    callback = RecordingCallback()
    orch, transport = make_orchestrator(
        tmp_path,
        [tool_use("write_to_file", path="a.txt", content="hi"), completion("Wrote a.txt")],
        callback,
    )
    state = run_async(orch.start_workflow("create a.txt"))

    assert state == WorkflowState.COMPLETED
    assert (tmp_path / "a.txt").read_text() == "hi"
    assert len(transport.requests) == 2
    assert transport.requests[0][0]["role"] == "system"
    assert transport.requests[0][-1] == {"role": "user", "content": "create a.txt"}
    feedback = transport.last_user_message(1)
    assert feedback.startswith("Tool execution result:\nTool: write_to_file\nStatus: SUCCESS\n")
    assert feedback.endswith(CONTINUE_PROMPT)
    assert callback.events == [
        ("tool_ok", "write_to_file"),
        ("completed", "Wrote a.txt"),
        ("ended", WorkflowState.COMPLETED),
    ]
    assert len(callback.deltas) == 2
    assert orch.context.state.last_parent_id == "r2"
    assert [step.tool_call.name for step in orch.history] == ["write_to_file", "attempt_completion"]


def test_tool_code_write_creates_file_in_empty_project(tmp_path):
    reply = '{"tool_code":"write_to_file","parameters":{"path":"index.html","content":"<h1>Hi</h1>"}}'
    callback = RecordingCallback()
    orch, transport = make_orchestrator(tmp_path, [reply, completion("Page written")], callback)

    assert run_async(orch.start_workflow("make a page")) == WorkflowState.COMPLETED
    assert (tmp_path / "index.html").read_text(encoding="utf-8") == "<h1>Hi</h1>"
    assert callback.events[0] == ("tool_ok", "write_to_file")
    assert orch.history[0].tool_result.ok
    assert transport.last_user_message(1).startswith("Tool execution result:\nTool: write_to_file\nStatus: SUCCESS\n")


def test_tool_failure_is_fed_back(tmp_path):
    orch, transport = make_orchestrator(
        tmp_path, [tool_use("read_file", path="missing.txt"), message("It does not exist.")]
    )
    state = run_async(orch.start_workflow("read it"))

    assert state == WorkflowState.IDLE
    assert transport.last_user_message(1) == (
        "Tool execution failed:\n"
        "Tool: read_file\n"
        "Error: File not found: missing.txt\n\n"
        "Please analyze the error and try a different approach or ask for clarification."
    )


def test_tool_calls_envelope_runs_calls_before_control(tmp_path):
    reply = json.dumps({
        "action": "tool_call",
        "tool_calls": [
            {"name": "write_to_file", "args": {"path": "a.txt", "content": "A"}},
            {"name": "read_file", "args": {"path": "a.txt"}},
            {"name": "attempt_completion", "args": {"result": "done"}},
            {"name": "delete_file", "args": {"path": "a.txt"}},
        ],
    })
    orch, transport = make_orchestrator(tmp_path, [reply])
    state = run_async(orch.start_workflow("go"))

    assert state == WorkflowState.COMPLETED
    assert len(transport.requests) == 1
    assert (tmp_path / "a.txt").exists()
    feedback = orch.context.messages[-1].content
    assert feedback.count("Tool execution result:") == 2
    assert "\nContent:\nA\n" in feedback


def test_parallel_tools_in_agent_mode(tmp_path):
    reply = json.dumps({
        "tool_calls": [
            {"name": "write_to_file", "args": {"path": "a.txt", "content": "A"}},
            {"name": "write_to_file", "args": {"path": "b.txt", "content": "B"}},
        ],
    })
    orch, _ = make_orchestrator(tmp_path, [reply, completion("ok")], parallel_tools=True)
    assert run_async(orch.start_workflow("two files")) == WorkflowState.COMPLETED
    assert (tmp_path / "a.txt").read_text() == "A"
    assert (tmp_path / "b.txt").read_text() == "B"


# ---------------------------------------------------------------------------
# Approval mode
# ---------------------------------------------------------------------------

def test_approved_write_runs(tmp_path):
    callback = RecordingCallback(decision="approve")
    orch, _ = make_orchestrator(
        tmp_path,
        [tool_use("write_to_file", path="a.txt", content="hi"), completion("ok")],
        callback,
        approval_mode=ApprovalMode.APPROVAL,
    )
    assert run_async(orch.start_workflow("write")) == WorkflowState.COMPLETED
    assert [r.tool_name for r in callback.approvals] == ["write_to_file"]
    assert callback.approvals[0].preview == "a.txt (1 lines)\nhi"
    assert (tmp_path / "a.txt").read_text() == "hi"


def test_rejected_write_is_reported_and_loop_continues(tmp_path):
    callback = RecordingCallback(decision="reject", reason="not now")
    orch, transport = make_orchestrator(
        tmp_path,
        [tool_use("write_to_file", path="a.txt", content="hi"), message("Understood.")],
        callback,
        approval_mode=ApprovalMode.APPROVAL,
    )
    state = run_async(orch.start_workflow("write"))

    assert state == WorkflowState.IDLE
    assert not (tmp_path / "a.txt").exists()
    assert transport.last_user_message(1) == (
        "I've rejected the proposed action: Writing to a.txt\n"
        "Reason: not now\n\n"
        "Please propose an alternative approach or ask for clarification."
    )


def test_missing_approval_handler_rejects(tmp_path):
    orch, transport = make_orchestrator(
        tmp_path,
        [tool_use("delete_file", path="x"), message("ok")],
        WorkflowCallback(),
        approval_mode=ApprovalMode.APPROVAL,
    )
    run_async(orch.start_workflow("delete"))
    assert "Reason: No approval handler is attached" in transport.last_user_message(1)


def test_read_only_tools_skip_approval(tmp_path):
    (tmp_path / "a.txt").write_text("x")
    callback = RecordingCallback()
    orch, _ = make_orchestrator(
        tmp_path,
        [tool_use("read_file", path="a.txt"), tool_use("list_files", path="."), completion("ok")],
        callback,
        approval_mode=ApprovalMode.APPROVAL,
    )
    assert run_async(orch.start_workflow("look")) == WorkflowState.COMPLETED
    assert callback.approvals == []


def test_file_action_batch_needs_one_approval(tmp_path):
    reply = json.dumps({
        "explanation": "make files",
        "operations": [
            {"type": "createFile", "filePath": "a.txt", "newContent": "A"},
            {"type": "createFile", "filePath": "b.txt", "newContent": "B"},
        ],
    })
    callback = RecordingCallback(decision="approve")
    orch, transport = make_orchestrator(
        tmp_path, [reply, message("Both created.")], callback, approval_mode=ApprovalMode.APPROVAL
    )
    assert run_async(orch.start_workflow("files")) == WorkflowState.IDLE
    assert [r.tool_name for r in callback.approvals] == ["file_actions"]
    assert (tmp_path / "a.txt").read_text() == "A"
    assert (tmp_path / "b.txt").read_text() == "B"
    assert transport.last_user_message(1).startswith("File actions result:\nStatus: SUCCESS\n")


def test_cancel_while_awaiting_approval(tmp_path):
    class CancellingCallback(RecordingCallback):
        def on_approval_needed(self, request, handle):
            self.approvals.append(request)
            orch.cancel()

    callback = CancellingCallback()
    orch, transport = make_orchestrator(
        tmp_path,
        [tool_use("write_to_file", path="a.txt", content="hi")],
        callback,
        approval_mode=ApprovalMode.APPROVAL,
    )
    assert run_async(orch.start_workflow("write")) == WorkflowState.CANCELLED
    assert not (tmp_path / "a.txt").exists()
    assert len(transport.requests) == 1
    assert callback.events[-1] == ("ended", WorkflowState.CANCELLED)
    assert orch.cancel() is False


def test_cancel_while_streaming(tmp_path):
    class CancellingCallback(RecordingCallback):
        def on_stream_delta(self, delta):
            super().on_stream_delta(delta)
            orch.cancel()

    callback = CancellingCallback()
    orch, transport = make_orchestrator(
        tmp_path,
        [tool_use("write_to_file", path="a.txt", content="hi"), completion("never sent")],
        callback,
    )
    assert run_async(orch.start_workflow("write")) == WorkflowState.CANCELLED
    assert not (tmp_path / "a.txt").exists()
    assert len(transport.requests) == 1
    assert callback.events == [("ended", WorkflowState.CANCELLED)]
    assert [m.role for m in orch.context.messages] == ["user"]


def test_mixed_operations_batch_runs_tool_entries(tmp_path):
    (tmp_path / "old.txt").write_text("gone")
    (tmp_path / "src.txt").write_text("S")
    reply = json.dumps({
        "explanation": "shuffle files",
        "operations": [
            {"type": "createFile", "filePath": "a.txt", "newContent": "A"},
            {"tool_code": "delete_file", "parameters": {"path": "old.txt"}},
            {"tool_code": "copy_file", "parameters": {"source_path": "src.txt", "destination_path": "dst.txt"}},
            {"tool_code": "read_file", "parameters": {"path": "src.txt"}},
        ],
    })
    callback = RecordingCallback()
    orch, transport = make_orchestrator(tmp_path, [reply, message("Done.")], callback)

    assert run_async(orch.start_workflow("shuffle")) == WorkflowState.IDLE
    assert (tmp_path / "a.txt").read_text() == "A"
    assert not (tmp_path / "old.txt").exists()
    assert (tmp_path / "dst.txt").read_text() == "S"
    result = orch.history[0].action_result
    assert [r.status.value for r in result.sub_results] == ["success"] * 4
    assert result.modified_files == ["a.txt", "old.txt", "dst.txt"]
    sent = transport.last_user_message(1)
    assert sent.startswith("File actions result:\nStatus: SUCCESS\n")
    assert "Content of src.txt:\nS\n" in sent


def test_read_only_tool_entries_do_not_need_batch_approval(tmp_path):
    (tmp_path / "a.txt").write_text("x")
    reply = json.dumps({
        "operations": [
            {"type": "readFile", "path": "a.txt"},
            {"tool_code": "list_files", "parameters": {"path": "."}},
            {"tool_code": "search_files", "parameters": {"path": ".", "regex": "x"}},
        ],
    })
    callback = RecordingCallback()
    orch, _ = make_orchestrator(
        tmp_path, [reply, message("Seen.")], callback, approval_mode=ApprovalMode.APPROVAL
    )
    assert run_async(orch.start_workflow("look")) == WorkflowState.IDLE
    assert callback.approvals == []


# ---------------------------------------------------------------------------
# Questions, plans and plain messages
# ---------------------------------------------------------------------------

def test_question_pauses_until_answer(tmp_path):
    callback = RecordingCallback()
    ask = json.dumps({"action": "ask_followup_question", "question": "Which name?"})
    orch, transport = make_orchestrator(tmp_path, [ask, completion("Named it foo")], callback)

    assert run_async(orch.start_workflow("name it")) == WorkflowState.AWAITING_USER_ANSWER
    assert ("question", "Which name?") in callback.events
    assert not orch.is_running

    assert run_async(orch.resume_with_answer("foo")) == WorkflowState.COMPLETED
    assert transport.last_user_message(1) == "foo"


def test_resume_without_question_is_an_error(tmp_path):
    orch, _ = make_orchestrator(tmp_path, [])
    with pytest.raises(RuntimeError):
        run_async(orch.resume_with_answer("hello"))


def test_plain_text_ends_run_idle(tmp_path):
    callback = RecordingCallback()
    orch, _ = make_orchestrator(tmp_path, ["Hello there"], callback)
    assert run_async(orch.start_workflow("hi")) == WorkflowState.IDLE
    assert callback.events == [("message", "Hello there"), ("ended", WorkflowState.IDLE)]


def test_plan_steps_are_driven_in_order(tmp_path):
    plan = json.dumps({
        "goal": "site",
        "steps": [{"id": "a", "title": "Create page"}, {"title": "Style it", "description": "Use CSS"}],
    })
    callback = RecordingCallback()
    orch, transport = make_orchestrator(
        tmp_path, [plan, message("page done"), message("styled")], callback
    )
    state = run_async(orch.start_workflow("build a site"))

    assert state == WorkflowState.COMPLETED
    assert transport.last_user_message(1).startswith("Execute plan step 1/2 (a): Create page")
    assert transport.last_user_message(2).startswith("Execute plan step 2/2 (s2): Style it\nUse CSS")
    assert [s.status for s in orch.plan] == [PlanStepStatus.COMPLETED] * 2
    assert ("plan", 2) in callback.events
    assert ("completed", "Plan completed: 2 step(s)") in callback.events


def test_rejected_plan_is_reported(tmp_path):
    plan = json.dumps({"steps": ["one", "two"]})
    callback = RecordingCallback(decision="reject", reason="too big")
    orch, transport = make_orchestrator(
        tmp_path, [plan, message("ok")], callback, approval_mode=ApprovalMode.APPROVAL
    )
    assert run_async(orch.start_workflow("plan")) == WorkflowState.IDLE
    assert [r.tool_name for r in callback.approvals] == ["plan"]
    assert "Reason: too big" in transport.last_user_message(1)
    assert orch.plan == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def test_iteration_ceiling_fails_the_run(tmp_path):
    callback = RecordingCallback()
    replies = [tool_use("list_files", path=".")] * 10
    orch, transport = make_orchestrator(tmp_path, replies, callback, max_iterations=3)
    state = run_async(orch.start_workflow("loop"))

    assert state == WorkflowState.FAILED
    assert len(transport.requests) == 3
    assert ("error", "Maximum iterations reached (3). Possible infinite loop.") in callback.events


def test_transport_error_fails_the_run(tmp_path):
    callback = RecordingCallback()
    orch, _ = make_orchestrator(tmp_path, [StreamError("HTTP 500: down", status=500)], callback)
    assert run_async(orch.start_workflow("hi")) == WorkflowState.FAILED
    assert ("error", "AI request failed: HTTP 500: down") in callback.events


def test_start_while_running_is_refused(tmp_path):
    orch, _ = make_orchestrator(tmp_path, [])
    orch.state = WorkflowState.RUNNING
    with pytest.raises(RuntimeError):
        run_async(orch.start_workflow("again"))


def test_config_from_service(tmp_path):
    service = ConfigService(tmp_path / "config.json")
    service.set("agent.agent_mode", True)
    service.set("agent.max_iterations", 7)
    service.set("transport.model", "m-1")
    config = OrchestratorConfig.from_service(service)
    assert config.approval_mode == ApprovalMode.AGENT
    assert config.max_iterations == 7
    assert config.model == "m-1"
    assert config.read_chars_cap == 20000


# ---------------------------------------------------------------------------
# Interpretation and result formatting
# ---------------------------------------------------------------------------

def test_interpreter_maps_operations_naming_tools_to_tool_calls():
    text = json.dumps({"operations": [
        {"type": "read_file", "path": "a.txt"},
        {"type": "attempt_completion", "result": "done"},
    ]})
    turn = TurnInterpreter().interpret(text)
    assert turn.kind == TurnKind.TOOL_CALLS
    assert [c.name for c in turn.calls] == ["read_file"]
    assert turn.calls[0].arguments["path"] == "a.txt"
    assert turn.control.name == "attempt_completion"


def test_list_files_result_is_capped():
    files = [{"path": f"f{i}.txt", "type": "file"} for i in range(3)]
    files[0]["type"] = "directory"
    result = ToolResult.success("Listed 3 items in .", files=files)
    text = format_tool_result(ToolCall("list_files", {}), result, list_cap=2)
    assert "\nFiles:\n  [DIR]  f0.txt\n  [FILE] f1.txt\n  ... and 1 more\n" in text


def test_read_file_result_is_truncated():
    result = ToolResult.success("Successfully read a.txt", content="x" * 30, path="a.txt")
    text = format_tool_result(ToolCall("read_file", {"path": "a.txt"}), result, read_cap=10)
    assert "\nContent:\n" + "x" * 10 + "\n... (truncated, 20 more characters)\n" in text


def test_search_result_lists_matches():
    matches = [{"file": "a.py", "line": 3, "content": "TODO"}]
    result = ToolResult.success("Found 1 matches for pattern: TODO", matches=matches)
    text = format_tool_result(ToolCall("search_files", {}), result)
    assert "\nMatches:\n  a.py:3 - TODO\n" in text


def test_offset_search_result_lists_snippets():
    matches = [{"path": "a.py", "start": 7, "end": 11, "snippet": "x = 1\n# TODO\n"}]
    result = ToolResult.success("Found 1 matches for pattern: TODO", matches=matches)
    text = format_tool_result(ToolCall("search_files", {"offsets": True}), result)
    assert "\nMatches:\n  a.py@7 - x = 1 # TODO\n" in text
