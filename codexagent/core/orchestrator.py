"""
Workflow Orchestrator

Drives the agent loop one model turn at a time:

    send history -> await completion -> interpret -> dispatch -> repeat

Dispatch branches on the dominant action of the turn. Tool calls go
through the approval gate and their results are fed back as the next
user turn; a question pauses the run; a completion or a plain message
ends it. A hard iteration ceiling turns runaway loops into a failure.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from codexagent.core.action_processor import (
    ActionResult,
    ActionStatus,
    FileActionProcessor,
    tool_arguments,
)
from codexagent.core.agent_response import (
    AgentAction,
    AgentResponse,
    AgentResponseParser,
    describe_tool_call,
)
from codexagent.core.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalHandle,
    ApprovalMode,
    ApprovalRequest,
)
from codexagent.core.context_manager import ContextManager, Message
from codexagent.core.errors import AgentError, TransportError
from codexagent.core.file_ops import FileOps
from codexagent.core.parallel_executor import ParallelToolExecutor
from codexagent.core.prompts import build_system_prompt
from codexagent.core.response_parser import (
    CONTROL_TOOLS,
    FileActionDetail,
    ParsedResponse,
    PlanStep,
    PlanStepStatus,
    ResponseKind,
    ResponseParser,
    ToolCall,
    ToolCallBatch,
)
from codexagent.core.tools.base import ToolResult
from codexagent.core.tools.executor import ToolExecutor
from codexagent.core.tools.registry import ToolRegistry, default_registry
from codexagent.core.transport.base import ChatTransport, StreamCompletion, StreamDelta, collect_completion

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 50
CONTINUE_PROMPT = "Please continue with the next step to complete the task."


class WorkflowState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_USER_ANSWER = "awaiting_user_answer"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TurnKind(Enum):
    TOOL_CALLS = "tool_calls"
    FILE_ACTIONS = "file_actions"
    QUESTION = "question"
    COMPLETION = "completion"
    PLAN = "plan"
    MESSAGE = "message"


@dataclass
class AgentTurn:
    """What one model response asks the orchestrator to do."""
    kind: TurnKind
    text: str = ""
    calls: List[ToolCall] = field(default_factory=list)
    control: Optional[ToolCall] = None
    details: List[FileActionDetail] = field(default_factory=list)
    plan_steps: List[PlanStep] = field(default_factory=list)
    is_valid: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "text": self.text, "is_valid": self.is_valid}
        if self.calls:
            data["calls"] = [{"name": c.name, "arguments": c.arguments} for c in self.calls]
        if self.control is not None:
            data["control"] = {"name": self.control.name, "arguments": self.control.arguments}
        if self.details:
            data["details"] = [d.to_dict() for d in self.details]
        if self.plan_steps:
            data["plan_steps"] = [s.to_dict() for s in self.plan_steps]
        return data


@dataclass
class ExecutionStep:
    """Audit record: one model response and what came of it."""
    response: str
    turn: Optional[AgentTurn] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None
    action_result: Optional[ActionResult] = None


@dataclass
class OrchestratorConfig:
    max_iterations: int = MAX_ITERATIONS
    approval_mode: ApprovalMode = ApprovalMode.APPROVAL
    model: Optional[str] = None
    list_files_cap: int = 50
    search_cap: int = 20
    read_chars_cap: int = 20000
    diff_context: int = 3
    parallel_tools: bool = False
    include_project_tree: bool = True
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_service(cls, service: Any) -> "OrchestratorConfig":
        """Build from a ConfigService (``agent.*`` and ``limits.*`` keys)."""
        agent_mode = bool(service.get("agent.agent_mode", False))
        return cls(
            max_iterations=int(service.get("agent.max_iterations", MAX_ITERATIONS)),
            approval_mode=ApprovalMode.AGENT if agent_mode else ApprovalMode.APPROVAL,
            model=service.get("agent.model") or service.get("transport.model"),
            list_files_cap=int(service.get("limits.summary_list_files_cap", 50)),
            search_cap=int(service.get("limits.summary_search_cap", 20)),
            read_chars_cap=int(service.get("limits.summary_read_chars_cap", 20000)),
            diff_context=int(service.get("limits.diff_context", 3)),
            parallel_tools=bool(service.get("agent.parallel_tools", False)),
        )


class WorkflowCallback:
    """
    UI collaborator interface. Every method is optional; the defaults do
    nothing. Methods are called on the event loop thread.
    """

    def on_workflow_started(self, request: str) -> None:
        pass

    def on_workflow_ended(self, state: WorkflowState, message: Optional[str]) -> None:
        pass

    def on_message_appended(self, message: Message) -> None:
        pass

    def on_stream_delta(self, delta: StreamDelta) -> None:
        pass

    def on_tool_started(self, call: ToolCall, description: str) -> None:
        pass

    def on_tool_completed(self, call: ToolCall, result: ToolResult) -> None:
        pass

    def on_tool_failed(self, call: ToolCall, result: ToolResult) -> None:
        pass

    def on_file_actions_applied(self, result: ActionResult) -> None:
        pass

    def on_plan_ready(self, steps: List[PlanStep], explanation: str) -> None:
        pass

    def on_question_asked(self, question: str) -> None:
        pass

    def on_task_completed(self, summary: str) -> None:
        pass

    def on_message(self, text: str) -> None:
        pass

    def on_approval_needed(self, request: ApprovalRequest, handle: ApprovalHandle) -> None:
        # Without a UI there is nobody to ask.
        handle.reject("No approval handler is attached")

    def on_error(self, message: str) -> None:
        pass

# ----------------------------------------------------------------------
# Messages fed back to the model
# ----------------------------------------------------------------------

def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + f"\n... (truncated, {len(text) - limit} more characters)"


def format_tool_result(
    call: ToolCall,
    result: ToolResult,
    list_cap: int = 50,
    search_cap: int = 20,
    read_cap: int = 20000,
) -> str:
    if not result.ok:
        return (
            "Tool execution failed:\n"
            f"Tool: {call.name}\n"
            f"Error: {result.error}\n\n"
            "Please analyze the error and try a different approach or ask for clarification."
        )

    text = (
        "Tool execution result:\n"
        f"Tool: {call.name}\n"
        "Status: SUCCESS\n"
        f"Message: {result.message}\n"
    )
    data = result.data or {}
    if call.name == "list_files":
        files = data.get("files") or []
        text += "\nFiles:\n"
        for entry in files[:list_cap]:
            marker = "[DIR] " if entry.get("type") == "directory" else "[FILE]"
            text += f"  {marker} {entry.get('path')}\n"
        if len(files) > list_cap:
            text += f"  ... and {len(files) - list_cap} more\n"
    elif call.name == "read_file":
        text += "\nContent:\n" + _truncate(data.get("content") or "", read_cap) + "\n"
    elif call.name == "search_files":
        matches = data.get("matches") or []
        text += "\nMatches:\n"
        for m in matches[:search_cap]:
            if "line" in m:
                text += f"  {m.get('file')}:{m.get('line')} - {m.get('content')}\n"
            else:
                snippet = " ".join(str(m.get("snippet") or "").split())
                text += f"  {m.get('path')}@{m.get('start')} - {snippet}\n"
        if len(matches) > search_cap:
            text += f"  ... and {len(matches) - search_cap} more\n"
    return text + "\n" + CONTINUE_PROMPT


def format_action_result(result: ActionResult, read_cap: int = 20000) -> str:
    text = (
        "File actions result:\n"
        f"Status: {result.status.value.upper()}\n"
        f"{result.message}\n"
    )
    if result.data and result.data.get("summary"):
        text += f"\n{result.data['summary']}\n"
    for sub in result.sub_results or []:
        if sub.status == ActionStatus.SUCCESS and sub.data and "content" in sub.data:
            text += f"\nContent of {sub.data.get('path')}:\n{_truncate(sub.data['content'], read_cap)}\n"
    return text + "\n" + CONTINUE_PROMPT


def rejection_message(description: str, reason: Optional[str]) -> str:
    return (
        f"I've rejected the proposed action: {description}\n"
        f"Reason: {reason or 'No reason given'}\n\n"
        "Please propose an alternative approach or ask for clarification."
    )


# ----------------------------------------------------------------------
# Interpretation
# ----------------------------------------------------------------------

class TurnInterpreter:
    """
    Maps raw model text to an AgentTurn. The agent envelope is tried
    first, then a tool_calls envelope, then the general response parser.
    """

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry or default_registry()
        self.parser = ResponseParser()
        self.agent_parser = AgentResponseParser()

    def interpret(self, text: str, raw_envelope: Optional[str] = None) -> AgentTurn:
        """Classify one model response."""
        agent = self.agent_parser.parse(text)
        if agent is not None:
            return self._turn_from_agent(agent)
        batch = self.parser.parse_tool_calls(text)
        if batch is not None:
            return self._turn_from_batch(batch, text)
        return self._turn_from_parsed(self.parser.parse(text, raw_envelope))

    def _turn_from_agent(self, agent: AgentResponse) -> AgentTurn:
        if agent.action == AgentAction.TOOL_USE:
            call = agent.tool_call
            if call.name in CONTROL_TOOLS:
                return self._control_turn(call)
            return AgentTurn(kind=TurnKind.TOOL_CALLS, text=agent.reasoning or "", calls=[call])
        if agent.action == AgentAction.MESSAGE:
            return AgentTurn(kind=TurnKind.MESSAGE, text=agent.content or "")
        if agent.action == AgentAction.ASK_FOLLOWUP_QUESTION:
            return self._control_turn(ToolCall("ask_followup_question", {"question": agent.question}))
        return self._control_turn(ToolCall("attempt_completion", {"result": agent.summary}))

    @staticmethod
    def _control_turn(call: ToolCall) -> AgentTurn:
        if call.name == "ask_followup_question":
            return AgentTurn(
                kind=TurnKind.QUESTION,
                text=str(call.arguments.get("question") or ""),
                control=call,
            )
        summary = call.arguments.get("result") or call.arguments.get("summary") or ""
        return AgentTurn(kind=TurnKind.COMPLETION, text=str(summary), control=call)

    def _turn_from_batch(self, batch: ToolCallBatch, text: str) -> AgentTurn:
        if batch.calls:
            return AgentTurn(kind=TurnKind.TOOL_CALLS, calls=batch.calls, control=batch.control)
        if batch.control is not None:
            return self._control_turn(batch.control)
        return AgentTurn(kind=TurnKind.MESSAGE, text=text, is_valid=False)

    def _turn_from_parsed(self, parsed: ParsedResponse) -> AgentTurn:
        if parsed.kind == ResponseKind.PLAN:
            return AgentTurn(kind=TurnKind.PLAN, text=parsed.explanation, plan_steps=parsed.plan_steps)
        if parsed.kind == ResponseKind.PLAIN_MESSAGE or not parsed.operations:
            return AgentTurn(
                kind=TurnKind.MESSAGE,
                text=parsed.explanation or parsed.raw_response,
                is_valid=parsed.is_valid,
            )
        if all(d.type in self.registry for d in parsed.operations):
            batch = ToolCallBatch()
            for detail in parsed.operations:
                call = ToolCall(detail.type, tool_arguments(detail))
                if call.name in CONTROL_TOOLS:
                    batch.control = call
                    break
                batch.calls.append(call)
            return self._turn_from_batch(batch, parsed.explanation)
        return AgentTurn(kind=TurnKind.FILE_ACTIONS, text=parsed.explanation, details=parsed.operations)


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------

class WorkflowOrchestrator:
    def __init__(
        self,
        transport: ChatTransport,
        file_ops: FileOps,
        callback: Optional[WorkflowCallback] = None,
        config: Optional[OrchestratorConfig] = None,
        registry: Optional[ToolRegistry] = None,
        context: Optional[ContextManager] = None,
    ):
        self.transport = transport
        self.file_ops = file_ops
        self.callback = callback or WorkflowCallback()
        self.config = config or OrchestratorConfig()
        self.registry = registry or default_registry()
        self.context = context or ContextManager()

        self.executor = ToolExecutor(file_ops, self.registry)
        self.parallel = ParallelToolExecutor(self.executor, parallel=self.config.parallel_tools)
        self.processor = FileActionProcessor(file_ops, self.executor)
        self.gate = ApprovalGate(self.config.approval_mode, self.registry, file_ops, self.config.diff_context)
        self.interpreter = TurnInterpreter(self.registry)

        self.state = WorkflowState.IDLE
        self.history: List[ExecutionStep] = []
        self.plan: List[PlanStep] = []
        self.iterations = 0
        self._cancelled = False
        self._ended = False
        self._pending_approval: Optional[ApprovalHandle] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self.state in (WorkflowState.RUNNING, WorkflowState.AWAITING_APPROVAL)

    def set_approval_mode(self, mode: ApprovalMode) -> None:
        self.config.approval_mode = mode
        self.gate.mode = mode

    def reset_conversation(self) -> None:
        if self.is_running:
            raise RuntimeError("Workflow already running")
        self.context.clear_messages()
        self.context.system_prompt = None
        self.history.clear()
        self.plan = []
        self.state = WorkflowState.IDLE

    async def start_workflow(self, request: str) -> WorkflowState:
        """
        Start a new run for ``request`` and drive it until it completes,
        fails, pauses for a question or ends on a plain message.
        """
        if self.is_running:
            raise RuntimeError("Workflow already running")
        self.history.clear()
        self.plan = []
        self.iterations = 0
        self._cancelled = False
        self._ended = False
        if self.context.system_prompt is None:
            self.context.system_prompt = self._system_prompt()

        self.state = WorkflowState.RUNNING
        logger.info(f"Workflow started ({self.config.approval_mode.value} mode)")
        self.callback.on_workflow_started(request)
        self._append("user", request)
        await self._run_loop()
        return self.state

    async def resume_with_answer(self, answer: str) -> WorkflowState:
        if self.is_running:
            raise RuntimeError("Workflow already running")
        if self.state != WorkflowState.AWAITING_USER_ANSWER:
            raise RuntimeError("No question is awaiting an answer")
        self._cancelled = False
        self._ended = False
        self.state = WorkflowState.RUNNING
        self._append("user", answer)
        await self._run_loop()
        return self.state

    def cancel(self) -> bool:
        """
        Stop the current run. File changes already applied stay applied.
        Returns False when there is nothing to cancel.
        """
        if self.state not in (
            WorkflowState.RUNNING,
            WorkflowState.AWAITING_APPROVAL,
            WorkflowState.AWAITING_USER_ANSWER,
        ):
            return False
        self._cancelled = True
        if self._pending_approval is not None:
            self._pending_approval.reject("Workflow cancelled")
        logger.info("Workflow cancelled")
        self._end(WorkflowState.CANCELLED, "Workflow cancelled")
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def _run_loop(self) -> None:
        try:
            while not self._cancelled:
                if self.iterations >= self.config.max_iterations:
                    self._fail(
                        f"Maximum iterations reached ({self.config.max_iterations}). "
                        "Possible infinite loop."
                    )
                    return
                self.iterations += 1
                try:
                    completion = await self._request_completion()
                except TransportError as e:
                    self._fail(f"AI request failed: {e}")
                    return
                if completion is None or self._cancelled:
                    return

                self._append("assistant", completion.text)
                turn = self.interpreter.interpret(completion.text, completion.raw or None)
                logger.debug(f"Turn {self.iterations}: {turn.kind.value}")
                if not await self._dispatch(turn, completion.text):
                    return
        except Exception as e:
            logger.exception("Workflow loop failed")
            self._fail(f"Unexpected error: {e}")

    async def _request_completion(self) -> Optional[StreamCompletion]:
        events = self.transport.send_message(
            self.context.get_openai_messages(),
            self.config.model,
            self.context.state,
            dict(self.config.options),
        )
        completion = await collect_completion(
            events,
            on_delta=self.callback.on_stream_delta,
            is_cancelled=lambda: self._cancelled,
        )
        if completion is not None:
            self.context.update_state(completion.state)
        return completion

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def _dispatch(self, turn: AgentTurn, response: str) -> bool:
        """Returns True when the loop should send another request."""
        if turn.kind == TurnKind.TOOL_CALLS:
            return await self._dispatch_tool_calls(turn, response)
        if turn.kind == TurnKind.FILE_ACTIONS:
            return await self._dispatch_file_actions(turn, response)
        if turn.kind == TurnKind.PLAN:
            return await self._dispatch_plan(turn, response)
        if turn.kind in (TurnKind.QUESTION, TurnKind.COMPLETION):
            return self._dispatch_control(turn.control, response, turn)
        self.history.append(ExecutionStep(response=response, turn=turn))
        return self._dispatch_message(turn.text)

    async def _dispatch_tool_calls(self, turn: AgentTurn, response: str) -> bool:
        parts: List[str] = []
        gated = any(self.gate.needs_approval(c.name) for c in turn.calls)

        if self.parallel.parallel and not gated:
            for call in turn.calls:
                self.callback.on_tool_started(call, describe_tool_call(call.name, call.arguments))
            results = await self.parallel.execute_all(turn.calls)
            for call, result in zip(turn.calls, results):
                self._record_tool(response, turn, call, result)
                parts.append(self._format(call, result))
        else:
            for call in turn.calls:
                if self.gate.needs_approval(call.name):
                    request = self.gate.build_request(call)
                    approved, reason = await self._await_approval(request)
                    if self._cancelled:
                        return False
                    if not approved:
                        logger.info(f"Tool call rejected: {call.name}")
                        self.history.append(ExecutionStep(response=response, turn=turn, tool_call=call))
                        parts.append(rejection_message(request.description, reason))
                        self._append("user", "\n\n".join(parts))
                        return True
                self.callback.on_tool_started(call, describe_tool_call(call.name, call.arguments))
                result = self.executor.execute_call(call)
                self._record_tool(response, turn, call, result)
                parts.append(self._format(call, result))
                if self._cancelled:
                    return False

        if self._cancelled:
            return False
        if parts:
            self._append("user", "\n\n".join(parts))
        if turn.control is not None:
            return self._dispatch_control(turn.control, response, turn)
        return True

    def _record_tool(self, response: str, turn: AgentTurn, call: ToolCall, result: ToolResult) -> None:
        self.history.append(ExecutionStep(response=response, turn=turn, tool_call=call, tool_result=result))
        if result.ok:
            self.callback.on_tool_completed(call, result)
        else:
            self.callback.on_tool_failed(call, result)

    def _format(self, call: ToolCall, result: ToolResult) -> str:
        return format_tool_result(
            call,
            result,
            list_cap=self.config.list_files_cap,
            search_cap=self.config.search_cap,
            read_cap=self.config.read_chars_cap,
        )

    async def _dispatch_file_actions(self, turn: AgentTurn, response: str) -> bool:
        if self.gate.batch_needs_approval(turn.details):
            request = self.gate.build_batch_request(turn.details)
            approved, reason = await self._await_approval(request)
            if self._cancelled:
                return False
            if not approved:
                self.history.append(ExecutionStep(response=response, turn=turn))
                self._append("user", rejection_message(request.description, reason))
                return True

        result = self.processor.apply_actions(turn.details)
        self.history.append(ExecutionStep(response=response, turn=turn, action_result=result))
        self.callback.on_file_actions_applied(result)
        if result.status == ActionStatus.FAILURE:
            self.callback.on_error(result.message)
        self._append("user", format_action_result(result, self.config.read_chars_cap))
        return True

    async def _dispatch_plan(self, turn: AgentTurn, response: str) -> bool:
        self.history.append(ExecutionStep(response=response, turn=turn))
        if self._running_step() is not None or not turn.plan_steps:
            logger.warning("Ignoring plan received while a plan step is running")
            return self._dispatch_message(turn.text)

        self.plan = turn.plan_steps
        self.callback.on_plan_ready(self.plan, turn.text)
        if self.gate.plan_needs_approval():
            request = self.gate.build_plan_request(self.plan, turn.text)
            approved, reason = await self._await_approval(request)
            if self._cancelled:
                return False
            if not approved:
                self.plan = []
                self._append("user", rejection_message(request.description, reason))
                return True
        return self._start_next_step()

    def _dispatch_control(self, call: ToolCall, response: str, turn: AgentTurn) -> bool:
        result = self.executor.execute_call(call)
        self.history.append(ExecutionStep(response=response, turn=turn, tool_call=call, tool_result=result))

        if call.name == "ask_followup_question":
            question = str(call.arguments.get("question") or "")
            self.state = WorkflowState.AWAITING_USER_ANSWER
            logger.info("Workflow paused for a user answer")
            self.callback.on_question_asked(question)
            return False

        summary = str(call.arguments.get("result") or call.arguments.get("summary") or "")
        step = self._running_step()
        if step is not None:
            step.status = PlanStepStatus.COMPLETED
        self.callback.on_task_completed(summary)
        self._end(WorkflowState.COMPLETED, summary)
        return False

    def _dispatch_message(self, text: str) -> bool:
        self.callback.on_message(text)
        step = self._running_step()
        if step is not None:
            step.status = PlanStepStatus.COMPLETED
            return self._start_next_step()
        self._end(WorkflowState.IDLE, text)
        return False

    # ------------------------------------------------------------------
    # Plan steps
    # ------------------------------------------------------------------
    def _running_step(self) -> Optional[PlanStep]:
        for step in self.plan:
            if step.status == PlanStepStatus.RUNNING:
                return step
        return None

    def _start_next_step(self) -> bool:
        total = len(self.plan)
        for index, step in enumerate(self.plan, start=1):
            if step.status == PlanStepStatus.PENDING:
                step.status = PlanStepStatus.RUNNING
                prompt = f"Execute plan step {index}/{total} ({step.id}): {step.title}"
                if step.description:
                    prompt += f"\n{step.description}"
                prompt += "\nWhen this step is done, reply with a message summarizing it."
                self._append("user", prompt)
                return True
        summary = f"Plan completed: {total} step(s)"
        self.callback.on_task_completed(summary)
        self._end(WorkflowState.COMPLETED, summary)
        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _await_approval(self, request: ApprovalRequest) -> Tuple[bool, Optional[str]]:
        handle = ApprovalHandle()
        self._pending_approval = handle
        self.state = WorkflowState.AWAITING_APPROVAL
        self.callback.on_approval_needed(request, handle)
        try:
            decision, reason = await handle.wait()
        finally:
            self._pending_approval = None
        if self._cancelled:
            return False, reason
        self.state = WorkflowState.RUNNING
        return decision == ApprovalDecision.APPROVED, reason

    def _append(self, role: str, content: str) -> None:
        message = self.context.add_message(role, content)
        self.callback.on_message_appended(message)

    def _system_prompt(self) -> str:
        tree = None
        if self.config.include_project_tree:
            try:
                tree = self.file_ops.build_file_tree()
            except AgentError as e:
                logger.warning(f"Could not build project tree: {e}")
        return build_system_prompt(
            self.registry,
            project_tree=tree,
            approval_required=self.config.approval_mode == ApprovalMode.APPROVAL,
        )

    def _fail(self, message: str) -> None:
        step = self._running_step()
        if step is not None:
            step.status = PlanStepStatus.FAILED
        logger.error(message)
        self.callback.on_error(message)
        self._end(WorkflowState.FAILED, message)

    def _end(self, state: WorkflowState, message: Optional[str]) -> None:
        if self._ended:
            return
        self._ended = True
        self.state = state
        logger.info(f"Workflow ended: {state.value}")
        self.callback.on_workflow_ended(state, message)
