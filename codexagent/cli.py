"""
CodexAgent — command line entry point.

Sub-commands:
    run     drive one agent workflow against a project directory
    diff    unified diff of two files
    tools   list the registered tool catalog
    parse   classify a saved model response
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from codexagent.config.settings import get_config_service
from codexagent.core.action_processor import ActionResult
from codexagent.core.approval import ApprovalHandle, ApprovalMode, ApprovalRequest
from codexagent.core.diff_engine import generate_unified_diff
from codexagent.core.errors import AgentError
from codexagent.core.file_ops import FileOps
from codexagent.core.orchestrator import (
    OrchestratorConfig,
    TurnInterpreter,
    WorkflowCallback,
    WorkflowOrchestrator,
    WorkflowState,
)
from codexagent.core.response_parser import ToolCall
from codexagent.core.tools.base import ToolResult
from codexagent.core.tools.registry import default_registry
from codexagent.core.transport.base import StreamDelta, StreamPhase
from codexagent.core.transport.factory import TransportFactory
from codexagent.ui.colors import (
    ACCENT_FG,
    BOLD,
    ERROR_FG,
    MODEL_FG,
    MUTED_FG,
    RESET,
    SUCCESS_FG,
    WARNING_FG,
    diff_line_color,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# =====================================================================
#  CONSOLE CALLBACK
# =====================================================================

class ConsoleCallback(WorkflowCallback):
    """Prints workflow progress and asks for approval on stdin."""

    def __init__(self, auto_approve: bool = False, show_thinking: bool = False):
        self.auto_approve = auto_approve
        self.show_thinking = show_thinking
        self._streaming = False

    def _end_stream(self) -> None:
        if self._streaming:
            print()
            self._streaming = False

    def on_workflow_started(self, request: str) -> None:
        print(f"{ACCENT_FG}▶ {request}{RESET}")

    def on_stream_delta(self, delta: StreamDelta) -> None:
        if delta.phase == StreamPhase.THINKING and not self.show_thinking:
            return
        color = MUTED_FG if delta.phase == StreamPhase.THINKING else MODEL_FG
        print(f"{color}{delta.text}{RESET}", end="", flush=True)
        self._streaming = True

    def on_tool_started(self, call: ToolCall, description: str) -> None:
        self._end_stream()
        print(f"{MUTED_FG}⚙ {description}{RESET}")

    def on_tool_completed(self, call: ToolCall, result: ToolResult) -> None:
        print(f"{SUCCESS_FG}✓{RESET} {result.message}")

    def on_tool_failed(self, call: ToolCall, result: ToolResult) -> None:
        print(f"{ERROR_FG}✗{RESET} {result.error}")

    def on_file_actions_applied(self, result: ActionResult) -> None:
        self._end_stream()
        print(result.message)

    def on_plan_ready(self, steps: list, explanation: str) -> None:
        self._end_stream()
        if explanation:
            print(explanation)
        for i, step in enumerate(steps, start=1):
            print(f"  {ACCENT_FG}{i}.{RESET} {step.title}")

    def on_question_asked(self, question: str) -> None:
        self._end_stream()
        print(f"{WARNING_FG}? {question}{RESET}")

    def on_task_completed(self, summary: str) -> None:
        self._end_stream()
        print(f"{SUCCESS_FG}✅ {summary}{RESET}")

    def on_message(self, text: str) -> None:
        self._end_stream()

    def on_approval_needed(self, request: ApprovalRequest, handle: ApprovalHandle) -> None:
        self._end_stream()
        print(f"\n{BOLD}{WARNING_FG}Approval required:{RESET} {request.description}")
        if request.preview:
            for line in request.preview.splitlines():
                print(f"{diff_line_color(line)}{line}{RESET}")
        if self.auto_approve:
            handle.approve()
            return
        try:
            answer = input(f"{WARNING_FG}Approve? [y/N] {RESET}").strip().lower()
        except EOFError:
            answer = ""
        if answer in ("y", "yes"):
            handle.approve()
        else:
            handle.reject("Rejected from the console")

    def on_error(self, message: str) -> None:
        self._end_stream()
        print(f"{ERROR_FG}❌ {message}{RESET}")

    def on_workflow_ended(self, state: WorkflowState, message: Optional[str]) -> None:
        self._end_stream()
        logger.info(f"Workflow ended in state {state.value}")


# =====================================================================
#  COMMANDS
# =====================================================================

def _build_file_ops(root: Path, service) -> FileOps:
    return FileOps(
        root,
        max_file_size_mb=service.get("limits.max_file_size_mb", 20),
        max_search_results=service.get("limits.max_search_results", 500),
        list_max_depth=service.get("limits.list_max_depth", 5),
        list_max_entries=service.get("limits.list_max_entries", 1000),
    )


async def _run_workflow(orchestrator: WorkflowOrchestrator, request: str, interactive: bool) -> WorkflowState:
    try:
        state = await orchestrator.start_workflow(request)
        while state == WorkflowState.AWAITING_USER_ANSWER and interactive:
            try:
                answer = input(f"{ACCENT_FG}> {RESET}").strip()
            except EOFError:
                answer = ""
            if not answer:
                orchestrator.cancel()
                break
            state = await orchestrator.resume_with_answer(answer)
        return orchestrator.state
    finally:
        await orchestrator.transport.aclose()


def cmd_run(args) -> int:
    """Run one agent workflow."""
    service = get_config_service(Path(args.config) if args.config else None)
    if args.model:
        service.set("transport.model", args.model)
    if args.provider:
        service.set("transport.provider", args.provider)

    root = Path(args.dir or ".").resolve()
    if not root.is_dir():
        print(f"{ERROR_FG}❌ Directory not found: {root}{RESET}")
        return 1

    try:
        transport = TransportFactory.create_from_config(service.get("transport", {}))
    except (ValueError, AgentError) as e:
        print(f"{ERROR_FG}❌ Could not create transport: {e}{RESET}")
        return 1

    config = OrchestratorConfig.from_service(service)
    if args.agent:
        config.approval_mode = ApprovalMode.AGENT
    if args.max_iterations:
        config.max_iterations = args.max_iterations

    orchestrator = WorkflowOrchestrator(
        transport,
        _build_file_ops(root, service),
        callback=ConsoleCallback(auto_approve=args.yes, show_thinking=args.thinking),
        config=config,
    )
    request = " ".join(args.request)
    try:
        state = asyncio.run(_run_workflow(orchestrator, request, interactive=sys.stdin.isatty()))
    except KeyboardInterrupt:
        orchestrator.cancel()
        print(f"\n{MUTED_FG}Cancelled.{RESET}")
        return 130
    return 0 if state in (WorkflowState.COMPLETED, WorkflowState.IDLE) else 1


def cmd_diff(args) -> int:
    """Print a unified diff of two files."""
    try:
        old_text = Path(args.old).read_text(encoding="utf-8")
        new_text = Path(args.new).read_text(encoding="utf-8")
    except OSError as e:
        print(f"{ERROR_FG}✗ {e}{RESET}")
        return 1
    if old_text == new_text:
        return 0
    diff = generate_unified_diff(old_text, new_text, args.context, args.old, args.new)
    color = sys.stdout.isatty()
    for line in diff.rstrip("\n").split("\n"):
        print(f"{diff_line_color(line)}{line}{RESET}" if color else line)
    return 1


def cmd_tools(args) -> int:
    """List registered tools."""
    registry = default_registry()
    if args.json:
        print(json.dumps([spec.to_openai_tool() for spec in registry.specs()], indent=2))
        return 0
    for spec in registry.specs():
        flag = f"{WARNING_FG}[approval]{RESET}" if spec.requires_approval else f"{MUTED_FG}[auto]{RESET}"
        params = ", ".join(
            p.name if p.required else f"{p.name}?" for p in spec.parameters
        )
        print(f"{ACCENT_FG}{spec.name}{RESET}({params}) {flag}")
        print(f"    {spec.description}")
    return 0


def cmd_parse(args) -> int:
    """Classify a model response read from a file or stdin."""
    if args.file and args.file != "-":
        try:
            text = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"{ERROR_FG}✗ {e}{RESET}")
            return 1
    else:
        text = sys.stdin.read()
    turn = TurnInterpreter().interpret(text)
    print(json.dumps(turn.to_dict(), indent=2))
    return 0


# =====================================================================
#  CLI ENTRY WITH SUBCOMMANDS
# =====================================================================

def _create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="codexagent",
        description="CodexAgent — agentic tool-use loop for coding tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  codexagent run "add a README"          # Approval mode
  codexagent run --agent "fix the tests" # No approval prompts
  codexagent diff old.py new.py          # Unified diff
  codexagent tools --json                # Tool catalog as JSON schema
  codexagent parse reply.txt             # Classify a model response
        """,
    )
    parser.add_argument("--version", action="version", version=f"codexagent {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run
    parser_run = subparsers.add_parser("run", help="Run an agent workflow")
    parser_run.add_argument("request", nargs="+", help="Task for the agent")
    parser_run.add_argument("--dir", type=str, help="Project directory (default: current directory)")
    parser_run.add_argument("--config", type=str, help="Path to config.json")
    parser_run.add_argument("--model", type=str, help="Override the model from config")
    parser_run.add_argument("--provider", type=str, help="Transport name (openai, sse)")
    parser_run.add_argument("--agent", action="store_true", help="Agent mode: never ask for approval")
    parser_run.add_argument("--yes", action="store_true", help="Approve every request automatically")
    parser_run.add_argument("--thinking", action="store_true", help="Show reasoning deltas")
    parser_run.add_argument("--max-iterations", type=int, help="Override the iteration ceiling")

    # diff
    parser_diff = subparsers.add_parser("diff", help="Unified diff of two files")
    parser_diff.add_argument("old")
    parser_diff.add_argument("new")
    parser_diff.add_argument("-U", "--context", type=int, default=3, help="Context lines (default: 3)")

    # tools
    parser_tools = subparsers.add_parser("tools", help="List registered tools")
    parser_tools.add_argument("--json", action="store_true", help="Print OpenAI tool declarations")

    # parse
    parser_parse = subparsers.add_parser("parse", help="Classify a model response")
    parser_parse.add_argument("file", nargs="?", default="-", help="Response file (default: stdin)")

    return parser


def main(argv=None):
    """Main entry point with subcommand routing."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "diff":
        return cmd_diff(args)
    elif args.command == "tools":
        return cmd_tools(args)
    elif args.command == "parse":
        return cmd_parse(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
