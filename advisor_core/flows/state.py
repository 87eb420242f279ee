"""State definition for the send_message turn graph."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict

from advisor_core.domain.context import RequestContext
from advisor_core.domain.conversation import Conversation, Message
from advisor_core.domain.health import ContextBlock
from advisor_core.domain.models import ChatMessage
from advisor_core.providers.gateway import LLMReply


class TurnState(TypedDict, total=False):
    """State shared across LangGraph nodes."""

    ctx: RequestContext
    log_ctx: Dict[str, Any]
    user_id: str
    text: str
    conversation_id: Optional[str]
    force_new: bool
    title: Optional[str]

    conversation: Optional[Conversation]
    created: bool
    context_block: ContextBlock
    prompt: List[ChatMessage]
    reply: Optional[LLMReply]
    llm_error: Optional[str]
    final_text: str
    assistant_metadata: Dict[str, Any]
    user_message: Message
    assistant_message: Message
