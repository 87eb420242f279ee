import json
import os
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Conversation, Message, TurnEntry
from advisor_core.domain.exceptions import ConversationNotFound, PersistenceError, ValidationError
from advisor_core.domain.models import ROLES, Role
from advisor_core.infrastructure.locks import KeyedLock
from advisor_core.infrastructure.logging.logger import logger

PAGE_LIMIT_MAX = 50
_TICK = timedelta(microseconds=1)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def clamp_limit(limit: int, maximum: int = PAGE_LIMIT_MAX) -> int:
    return max(1, min(int(limit), maximum))


def _page_slice(items: list, page: int, limit: int) -> list:
    page = max(1, int(page))
    start = (page - 1) * limit
    return items[start : start + limit]


class _JsonStoreBase:
    def __init__(self, root: str | Path | None = None, clock: Optional[Clock] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utc_now
        self._locks = KeyedLock()

    def _now(self) -> datetime:
        return self._clock()

    def _conv_dir(self, conversation_id: str) -> Path:
        # ID 直接作为目录名，必须拒绝路径穿越
        if not conversation_id or "/" in conversation_id or "\\" in conversation_id or conversation_id.startswith("."):
            raise ValidationError(code="INVALID_CONVERSATION_ID", message="Conversation ID must be a valid identifier")
        return self._conv_root / conversation_id


class JsonConversationStore(_JsonStoreBase):
    """会话元数据存储：每个会话一个目录，meta.json 原子替换写入。"""

    def create(self, owner_id: str, title: str) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        now = self._now()
        conv = Conversation(id=cid, owner_id=owner_id, title=title, started_at=now, last_message_at=now)
        try:
            cdir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)
        self._write_meta(cdir, conv)
        return conv

    def get(self, conversation_id: str, owner_id: str) -> Conversation:
        conv = self._read_meta(conversation_id)
        if conv is None or conv.owner_id != owner_id:
            raise ConversationNotFound(conversation_id)
        return conv

    def list_by_owner(self, owner_id: str, page: int, limit: int) -> Tuple[List[Conversation], int]:
        limit = clamp_limit(limit)
        items: List[Conversation] = []
        for cdir in self._conv_root.iterdir():
            if not cdir.is_dir():
                continue
            conv = self._read_meta(cdir.name)
            if conv is not None and conv.owner_id == owner_id:
                items.append(conv)
        # 先按 id 升序，再按 last_message_at 降序稳定排序：同一时间按 id 决胜
        items.sort(key=lambda c: c.id)
        items.sort(key=lambda c: c.last_message_at, reverse=True)
        return _page_slice(items, page, limit), len(items)

    def touch_last_message(self, conversation_id: str) -> Conversation:
        with self._locks.hold(conversation_id):
            conv = self._read_meta(conversation_id)
            if conv is None:
                raise ConversationNotFound(conversation_id)
            conv.last_message_at = max(self._now(), conv.last_message_at, conv.started_at)
            self._write_meta(self._conv_dir(conversation_id), conv)
            return conv

    def rename_title(self, conversation_id: str, owner_id: str, title: str) -> Conversation:
        """更新会话标题（只允许所有者修改）。"""
        with self._locks.hold(conversation_id):
            conv = self.get(conversation_id, owner_id)
            conv.title = title
            self._write_meta(self._conv_dir(conversation_id), conv)
            return conv

    def _read_meta(self, conversation_id: str) -> Optional[Conversation]:
        meta_path = self._conv_dir(conversation_id) / "meta.json"
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            return Conversation(
                id=data["id"],
                owner_id=data["owner_id"],
                title=data.get("title") or "",
                started_at=_from_iso(data["started_at"]),
                last_message_at=_from_iso(data["last_message_at"]),
            )
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), http_status=500)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "owner_id": conv.owner_id,
            "title": conv.title,
            "started_at": _to_iso(conv.started_at),
            "last_message_at": _to_iso(conv.last_message_at),
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)


class JsonMessageStore(_JsonStoreBase):
    """消息存储：每个会话一个 messages.jsonl，只追加不修改。

    时间戳由存储分配，同一会话内严格递增（时钟未前进时补 1 微秒）。
    """

    def __init__(self, root: str | Path | None = None, clock: Optional[Clock] = None):
        super().__init__(root=root, clock=clock)
        self._last_ts: Dict[str, datetime] = {}

    def append(
        self,
        conversation_id: str,
        user_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        return self.append_turn(conversation_id, user_id, [TurnEntry(role=role, content=content, metadata=metadata)])[0]

    def append_turn(self, conversation_id: str, user_id: str, entries: List[TurnEntry]) -> List[Message]:
        """按顺序写入一批消息，整批一次写盘。"""
        for entry in entries:
            if entry.role not in ROLES:
                raise ValidationError(code="INVALID_ROLE", message=f"Unknown message role: {entry.role!r}")
        cdir = self._conv_dir(conversation_id)
        if not (cdir / "meta.json").exists():
            raise ConversationNotFound(conversation_id)
        msgs_path = cdir / "messages.jsonl"
        with self._locks.hold(conversation_id):
            last = self._last_timestamp(conversation_id, msgs_path)
            records: List[Message] = []
            for entry in entries:
                ts = self._now()
                if last is not None and ts <= last:
                    ts = last + _TICK
                last = ts
                records.append(
                    Message(
                        id=f"m-{uuid4().hex}",
                        conversation_id=conversation_id,
                        user_id=user_id,
                        role=entry.role,
                        content=entry.content,
                        timestamp=ts,
                        metadata=dict(entry.metadata or {}),
                    )
                )
            lines = "".join(json.dumps(self._to_payload(m), ensure_ascii=False) + "\n" for m in records)
            try:
                with msgs_path.open("a", encoding="utf-8") as f:
                    f.write(lines)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)
            if records:
                self._last_ts[conversation_id] = records[-1].timestamp
            return records

    def list_by_conversation(self, conversation_id: str, page: int, limit: int) -> Tuple[List[Message], int]:
        limit = clamp_limit(limit)
        items = self._load(conversation_id)
        return _page_slice(items, page, limit), len(items)

    def recent_for_context(self, conversation_id: str, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        items = self._load(conversation_id)
        items.reverse()
        return items[:limit]

    def _last_timestamp(self, conversation_id: str, msgs_path: Path) -> Optional[datetime]:
        cached = self._last_ts.get(conversation_id)
        if cached is not None:
            return cached
        items = self._read_lines(msgs_path)
        return items[-1].timestamp if items else None

    def _load(self, conversation_id: str) -> List[Message]:
        return self._read_lines(self._conv_dir(conversation_id) / "messages.jsonl")

    def _read_lines(self, msgs_path: Path) -> List[Message]:
        items: List[Message] = []
        if not msgs_path.exists():
            return items
        try:
            text = msgs_path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), http_status=500)
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError) as e:
                # 崩溃时可能留下半行，跳过但记录
                logger.warning("Skipped unreadable message line", extra={"extra": {"path": str(msgs_path), "error": str(e)}})
        items.sort(key=lambda m: m.timestamp)
        return items

    @staticmethod
    def _to_payload(message: Message) -> Dict[str, Any]:
        payload = asdict(message)
        payload["timestamp"] = _to_iso(message.timestamp)
        return payload

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            conversation_id=data["conversation_id"],
            user_id=data["user_id"],
            role=data["role"],
            content=data.get("content") or "",
            timestamp=_from_iso(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


__all__ = ["JsonConversationStore", "JsonMessageStore", "clamp_limit"]
