from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Protocol, Tuple
from datetime import datetime
from .models import Role


@dataclass
class Conversation:
    id: str
    owner_id: str
    title: str
    started_at: datetime
    last_message_at: datetime


@dataclass
class Message:
    id: str
    conversation_id: str
    user_id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnEntry:
    """append_turn 的一条待写入消息。"""

    role: Role
    content: str
    metadata: Optional[Dict[str, Any]] = None


class ConversationStore(Protocol):
    def create(self, owner_id: str, title: str) -> Conversation:
        ...

    def get(self, conversation_id: str, owner_id: str) -> Conversation:
        ...

    def list_by_owner(self, owner_id: str, page: int, limit: int) -> Tuple[List[Conversation], int]:
        ...

    def touch_last_message(self, conversation_id: str) -> Conversation:
        ...

    def rename_title(self, conversation_id: str, owner_id: str, title: str) -> Conversation:
        ...


class MessageStore(Protocol):
    def append(
        self,
        conversation_id: str,
        user_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        ...

    def append_turn(self, conversation_id: str, user_id: str, entries: List[TurnEntry]) -> List[Message]:
        ...

    def list_by_conversation(self, conversation_id: str, page: int, limit: int) -> Tuple[List[Message], int]:
        ...

    def recent_for_context(self, conversation_id: str, limit: int) -> List[Message]:
        ...
