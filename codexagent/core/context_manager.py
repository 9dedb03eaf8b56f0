# codexagent/core/context_manager.py
"""
Conversation state: the ordered message history of one workflow run and
the identifiers needed to continue a remote chat thread.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant", "tool", "system")

# ----------------------------------------------------------------------
# Message model
# ----------------------------------------------------------------------

@dataclass
class Message:
    """
    One chat message. Mirrors the OpenAI API message format.
    """
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ConversationState:
    """
    Remote thread identifiers. A None conversation_id means the
    conversation has not been created with the provider yet.
    """
    conversation_id: Optional[str] = None
    last_parent_id: Optional[str] = None

    def with_parent(self, parent_id: Optional[str]) -> "ConversationState":
        return replace(self, last_parent_id=parent_id)

    def with_conversation(self, conversation_id: Optional[str]) -> "ConversationState":
        return replace(self, conversation_id=conversation_id)

# ----------------------------------------------------------------------
# Context Manager
# ----------------------------------------------------------------------

@dataclass
class ContextManager:
    """
    Tracks the conversation history and the system prompt.
    History is append-only while a workflow runs.
    """
    messages: List[Message] = field(default_factory=list)
    system_prompt: Optional[str] = None
    state: ConversationState = field(default_factory=ConversationState)

    def add_message(self, role: str, content: str, **kwargs) -> Message:
        """
        Append a new message to the conversation.
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid message role: {role}")
        message = Message(role=role, content=content or "", **kwargs)
        self.messages.append(message)
        logger.debug(f"Added message: role={role}, content_len={len(message.content)}")
        return message

    def update_state(self, state: ConversationState) -> None:
        """Replace the conversation identifiers wholesale."""
        self.state = state

    def get_openai_messages(self) -> List[Dict[str, Any]]:
        """
        Build the message list sent to the transport: the system prompt
        first, then the history in chronological order.
        """
        out: List[Dict[str, Any]] = []
        if self.system_prompt:
            out.append({"role": "system", "content": self.system_prompt})
        out.extend(m.to_dict() for m in self.messages)
        return out

    def clear_messages(self) -> None:
        self.messages.clear()
        logger.debug("Conversation history cleared")

    def get_message_count(self) -> int:
        return len(self.messages)

    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None
