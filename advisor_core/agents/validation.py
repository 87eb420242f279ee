"""入参校验与标题生成。

校验全部发生在任何存储写入之前，失败统一抛 ValidationError。
"""

import re
from typing import Optional

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import ValidationError

CONVERSATION_ID_RE = re.compile(r"^c-[0-9a-f]{32}$")
TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New conversation"


def validate_message_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    limit = settings.max_message_length if max_length is None else max_length
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(code="EMPTY_MESSAGE", message="Message cannot be empty")
    if len(text) > limit:
        raise ValidationError(
            code="MESSAGE_TOO_LONG",
            message=f"Message cannot exceed {limit} characters",
            max_length=limit,
        )
    return text


def validate_conversation_id(conversation_id: Optional[str]) -> Optional[str]:
    if conversation_id is None:
        return None
    if not isinstance(conversation_id, str) or not CONVERSATION_ID_RE.match(conversation_id):
        raise ValidationError(code="INVALID_CONVERSATION_ID", message="Conversation ID must be a valid identifier")
    return conversation_id


def validate_page(page: int) -> int:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError(code="INVALID_PAGE", message="Page must be a positive integer")
    return page


def clamp_page_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(code="INVALID_LIMIT", message="Limit must be an integer")
    return max(1, min(limit, maximum))


def validate_title(title: Optional[str]) -> str:
    cleaned = " ".join((title or "").split())
    if not cleaned:
        raise ValidationError(code="EMPTY_TITLE", message="Title cannot be empty")
    return cleaned[:200]


def derive_title(text: str) -> str:
    """取消息前 50 个字符作为标题，被截断时加省略号。"""
    cleaned = " ".join(text.split())
    if not cleaned:
        return DEFAULT_TITLE
    if len(cleaned) <= TITLE_MAX_CHARS:
        return cleaned
    return cleaned[:TITLE_MAX_CHARS].rstrip() + "..."
