"""
System prompt construction.

The prompt lists every registered tool with its parameters so the
catalog and the instructions cannot drift apart.
"""

from typing import Optional

from codexagent.core.tools.registry import ToolRegistry

BASE_PROMPT = """You are a coding agent working inside a user's project.
Respond with exactly one JSON object per turn, inside a ```json fence.

To use a tool:
{"action": "tool_use", "tool": "<tool name>", "reasoning": "<why>", <tool parameters>}

To reply without using a tool:
{"action": "message", "content": "<text>"}

To ask the user a question and wait for the answer:
{"action": "ask_followup_question", "question": "<question>"}

When the task is done:
{"action": "attempt_completion", "summary": "<what was done>"}

For multi-step work you may first propose a plan:
{"steps": [{"title": "<step>", "kind": "file"}], "explanation": "<goal>"}

replace_in_file expects one or more blocks in its "diff" parameter:
<<<<<<< SEARCH
[exact existing text]
=======
[replacement text]
>>>>>>> REPLACE
Each SEARCH text must occur exactly once in the file.

All paths are relative to the project root."""


def build_system_prompt(
    registry: ToolRegistry,
    project_tree: Optional[str] = None,
    approval_required: bool = False,
) -> str:
    lines = [BASE_PROMPT, "", "Available tools:"]
    for spec in registry.specs():
        lines.append(f"- {spec.name}: {spec.description}")
        for p in spec.parameters:
            flag = "required" if p.required else "optional"
            lines.append(f"    {p.name} ({p.type}, {flag}): {p.description}")
    if approval_required:
        lines += ["", "Mutating tools need user approval; a rejected action will be reported back to you."]
    if project_tree:
        lines += ["", "Project files:", project_tree]
    return "\n".join(lines)
