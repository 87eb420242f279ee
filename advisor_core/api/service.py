"""对外 API 服务模块。

提供简化的函数接口供上层应用（HTTP 层、CLI 等）调用，返回值都是普通 dict。
user_id 由上层完成认证后传入，这里不做身份校验。
"""

from typing import Any, Dict, List, Optional

from advisor_core.agents.orchestrator import ChatOrchestrator, Page
from advisor_core.config.settings import settings
from advisor_core.domain.context import RequestContext
from advisor_core.domain.conversation import Conversation, Message
from advisor_core.domain.health import HealthContextProvider
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.infrastructure.storage.json_store import JsonConversationStore, JsonMessageStore
from advisor_core.providers import create_provider


_orchestrator: Optional[ChatOrchestrator] = None


def get_default_orchestrator(health_provider: Optional[HealthContextProvider] = None) -> ChatOrchestrator:
    """获取默认的 ChatOrchestrator 实例（单例）。"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(
            conversations=JsonConversationStore(root=settings.storage_root),
            messages=JsonMessageStore(root=settings.storage_root),
            provider_client=create_provider(),
            health_provider=health_provider,
        )
    return _orchestrator


def set_default_orchestrator(orchestrator: Optional[ChatOrchestrator]) -> None:
    """替换默认实例（接入真实健康数据源或测试时使用）。"""
    global _orchestrator
    _orchestrator = orchestrator


def _iso(value) -> str:
    return value.isoformat().replace("+00:00", "Z")


def conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "started_at": _iso(conv.started_at),
        "last_message_at": _iso(conv.last_message_at),
    }


def message_to_dict(msg: Message) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "conversation_id": msg.conversation_id,
        "role": msg.role,
        "content": msg.content,
        "timestamp": _iso(msg.timestamp),
        "metadata": msg.metadata,
    }


def _page_to_dict(page: Page, convert) -> Dict[str, Any]:
    return {
        "items": [convert(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
    }


def send_message(
    user_id: str,
    text: str,
    conversation_id: Optional[str] = None,
    ctx: Optional[RequestContext] = None,
) -> Dict[str, Any]:
    """发送一条消息。

    Args:
        user_id: 已认证的用户ID
        text: 用户消息
        conversation_id: 会话ID（可选，不提供则创建新会话）
        ctx: 请求上下文（可选，携带截止时间与取消信号）

    Returns:
        包含会话、用户消息、助手消息与 fallback 标记的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        result = get_default_orchestrator().send_message(user_id, text, conversation_id, ctx=ctx)
    except Exception as e:
        logger.error(f"send_message failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
        }})
        raise
    return {
        "conversation": conversation_to_dict(result.conversation),
        "user_message": message_to_dict(result.user_message),
        "assistant_message": message_to_dict(result.assistant_message),
        "fallback": result.fallback,
    }


def create_conversation(
    user_id: str,
    title: Optional[str],
    initial_message: str,
    ctx: Optional[RequestContext] = None,
) -> Dict[str, Any]:
    result = get_default_orchestrator().create_conversation(user_id, title, initial_message, ctx=ctx)
    return {
        "conversation": conversation_to_dict(result.conversation),
        "user_message": message_to_dict(result.user_message),
        "assistant_message": message_to_dict(result.assistant_message),
        "fallback": result.fallback,
    }


def get_conversations(user_id: str, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
    """分页列出用户的会话，按最近消息时间倒序。"""
    return _page_to_dict(get_default_orchestrator().get_conversations(user_id, page, limit), conversation_to_dict)


def get_history(
    conversation_id: str,
    user_id: str,
    page: int = 1,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """分页获取会话消息，按时间正序。"""
    return _page_to_dict(
        get_default_orchestrator().get_history(conversation_id, user_id, page, limit), message_to_dict
    )


def get_conversation(conversation_id: str, user_id: str) -> Dict[str, Any]:
    conv, messages = get_default_orchestrator().get_conversation(conversation_id, user_id)
    payload = conversation_to_dict(conv)
    payload["messages"] = [message_to_dict(m) for m in messages]
    return payload


def rename_conversation(conversation_id: str, user_id: str, title: str) -> Dict[str, Any]:
    return conversation_to_dict(get_default_orchestrator().rename_conversation(conversation_id, user_id, title))


__all__: List[str] = [
    "get_default_orchestrator",
    "set_default_orchestrator",
    "send_message",
    "create_conversation",
    "get_conversations",
    "get_history",
    "get_conversation",
    "rename_conversation",
]
