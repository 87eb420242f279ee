"""PromptBuilder：把系统指令、健康上下文、历史消息和新消息组装成 LLM 消息列表。

顺序固定为：
1. 一条 system 消息（指令 + 嵌入的上下文块）。
2. 最近 history_depth 条历史消息，按时间正序。
3. 本轮 user 消息。

超长的用户输入在进入这里之前就已经被拒绝，这里不做截断。
"""

from typing import List, Optional, Sequence

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Message
from advisor_core.domain.health import ContextBlock
from advisor_core.domain.models import ChatMessage

CONTEXT_HEADER = "Health context for this user (most recent first):"


class PromptBuilder:
    def __init__(self, history_depth: Optional[int] = None):
        self._history_depth = settings.history_depth_for_prompt if history_depth is None else history_depth

    def assemble(
        self,
        system_instructions: str,
        context_block: Optional[ContextBlock],
        history: Sequence[Message],
        new_user_text: str,
    ) -> List[ChatMessage]:
        system_text = system_instructions.strip()
        if context_block is not None and not context_block.is_empty:
            system_text = f"{system_text}\n\n{CONTEXT_HEADER}\n{context_block.text}"

        messages: List[ChatMessage] = [ChatMessage(role="system", content=system_text)]
        recent = list(history)[-self._history_depth :] if self._history_depth > 0 else []
        for m in recent:
            messages.append(ChatMessage(role=m.role, content=m.content, meta={"message_id": m.id}))
        messages.append(ChatMessage(role="user", content=new_user_text))
        return messages
