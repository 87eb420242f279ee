"""ChatOrchestrator：一轮对话的编排入口。

send_message 的流程由 flows.graph 中的 LangGraph 图驱动；本类负责：
- 入参校验（在任何写入之前）。
- 组装各协作组件并持有按会话划分的锁。
- 查询类操作（会话列表、历史、详情、改名），全部按 owner 隔离。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from advisor_core.agents.context_assembler import ContextAssembler
from advisor_core.agents.post_processor import ResponsePostProcessor
from advisor_core.agents.validation import (
    clamp_page_limit,
    validate_conversation_id,
    validate_message_text,
    validate_page,
    validate_title,
)
from advisor_core.config.settings import settings
from advisor_core.domain.context import RequestContext
from advisor_core.domain.conversation import Conversation, ConversationStore, Message, MessageStore
from advisor_core.domain.exceptions import BusinessError, ValidationError
from advisor_core.domain.health import HealthContextProvider, NullHealthContextProvider
from advisor_core.flows.graph import TurnDependencies, build_turn_graph, initial_state
from advisor_core.infrastructure.locks import KeyedLock
from advisor_core.infrastructure.logging.logger import log_event
from advisor_core.prompts.builder import PromptBuilder
from advisor_core.providers.base import ProviderClient
from advisor_core.providers.gateway import LLMGateway

T = TypeVar("T")


@dataclass
class TurnResult:
    """send_message 的结果。"""

    conversation: Conversation
    user_message: Message
    assistant_message: Message
    created: bool

    @property
    def fallback(self) -> bool:
        return bool(self.assistant_message.metadata.get("fallback"))


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int


class ChatOrchestrator:
    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        provider_client: ProviderClient,
        health_provider: Optional[HealthContextProvider] = None,
        cfg=settings,
        gateway: Optional[LLMGateway] = None,
        assembler: Optional[ContextAssembler] = None,
    ):
        self._conversations = conversations
        self._messages = messages
        self._settings = cfg
        self._locks = KeyedLock()
        self._deps = TurnDependencies(
            conversations=conversations,
            messages=messages,
            assembler=assembler
            or ContextAssembler(health_provider or NullHealthContextProvider(), cfg.context_cap_per_category),
            builder=PromptBuilder(cfg.history_depth_for_prompt),
            gateway=gateway or LLMGateway(provider_client, cfg),
            post_processor=ResponsePostProcessor(cfg.max_response_length, cfg.safety_filters_enabled),
            locks=self._locks,
            fallback_message=cfg.fallback_message,
            history_depth=cfg.history_depth_for_prompt,
            prompt_locale=cfg.prompt_locale,
        )
        self._graph = build_turn_graph(self._deps)

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    # ---- 写操作 ----

    def send_message(
        self,
        user_id: str,
        text: str,
        conversation_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> TurnResult:
        """处理一条用户消息，返回持久化后的用户消息与助手回复。

        Raises:
            ValidationError: 消息为空/过长，或会话 ID 格式错误。
            ConversationNotFound: 会话不存在或不属于该用户。
            RequestCancelled: 调用 LLM 之前请求已被取消。
            PersistenceError: 存储读写失败。
        """
        self._validate_user(user_id)
        validate_message_text(text, self._settings.max_message_length)
        validate_conversation_id(conversation_id)
        return self._run_turn(ctx, user_id, text, conversation_id, force_new=False, title=None)

    def create_conversation(
        self,
        user_id: str,
        title: Optional[str],
        initial_message: str,
        ctx: Optional[RequestContext] = None,
    ) -> TurnResult:
        """新建会话并发送第一条消息。

        title 为 None 或空白时从 initial_message 推导，否则显式标题优先。
        """
        self._validate_user(user_id)
        validate_message_text(initial_message, self._settings.max_message_length)
        explicit = validate_title(title) if title is not None and title.strip() else None
        return self._run_turn(ctx, user_id, initial_message, None, force_new=True, title=explicit)

    def rename_conversation(self, conversation_id: str, user_id: str, title: str) -> Conversation:
        self._validate_user(user_id)
        validate_conversation_id(conversation_id)
        cleaned = validate_title(title)
        return self._conversations.rename_title(conversation_id, user_id, cleaned)

    # ---- 读操作 ----

    def get_conversations(self, user_id: str, page: int = 1, limit: Optional[int] = None) -> Page[Conversation]:
        self._validate_user(user_id)
        validate_page(page)
        limit = clamp_page_limit(
            limit, self._settings.conversations_page_default, self._settings.conversations_page_max
        )
        items, total = self._conversations.list_by_owner(user_id, page, limit)
        return Page(items=items, total=total, page=page, limit=limit)

    def get_history(
        self,
        conversation_id: str,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[Message]:
        self._validate_user(user_id)
        if conversation_id is None:
            raise ValidationError(code="INVALID_CONVERSATION_ID", message="Conversation ID is required")
        validate_conversation_id(conversation_id)
        validate_page(page)
        limit = clamp_page_limit(limit, self._settings.history_page_default, self._settings.history_page_max)
        self._conversations.get(conversation_id, user_id)
        items, total = self._messages.list_by_conversation(conversation_id, page, limit)
        return Page(items=items, total=total, page=page, limit=limit)

    def get_conversation(self, conversation_id: str, user_id: str) -> Tuple[Conversation, List[Message]]:
        """会话详情：会话元数据 + 全部消息（时间正序）。"""
        self._validate_user(user_id)
        if conversation_id is None:
            raise ValidationError(code="INVALID_CONVERSATION_ID", message="Conversation ID is required")
        validate_conversation_id(conversation_id)
        conv = self._conversations.get(conversation_id, user_id)
        page_size = self._settings.history_page_max
        messages: List[Message] = []
        page = 1
        while True:
            items, total = self._messages.list_by_conversation(conversation_id, page, page_size)
            messages.extend(items)
            if not items or len(messages) >= total:
                break
            page += 1
        return conv, messages

    # ---- 内部 ----

    def _run_turn(
        self,
        ctx: Optional[RequestContext],
        user_id: str,
        text: str,
        conversation_id: Optional[str],
        force_new: bool,
        title: Optional[str],
    ) -> TurnResult:
        ctx = ctx or RequestContext.background()
        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": ctx.trace_id, "user_id": user_id}
        if conversation_id:
            log_ctx["conversation_id"] = conversation_id
        self._log(
            logging.INFO, "turn.start", log_ctx, new_conversation=force_new or not conversation_id, text=text
        )
        try:
            final = self._graph.invoke(initial_state(ctx, user_id, text, conversation_id, force_new, title))
        except BusinessError as e:
            self._log(
                logging.WARNING,
                "turn.failed",
                log_ctx,
                code=e.code,
                error=type(e).__name__,
                elapsed_seconds=round(time.time() - start_time, 3),
            )
            raise
        result = TurnResult(
            conversation=final["conversation"],
            user_message=final["user_message"],
            assistant_message=final["assistant_message"],
            created=bool(final.get("created")),
        )
        self._log(
            logging.INFO,
            "turn.done",
            log_ctx,
            conversation_id=result.conversation.id,
            fallback=result.fallback,
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        return result

    @staticmethod
    def _validate_user(user_id: str) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError(code="INVALID_USER", message="User ID is required")

    def _log(self, level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        log_event(level, message, log_ctx, **fields)
