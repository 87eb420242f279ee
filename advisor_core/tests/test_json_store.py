from datetime import datetime, timedelta, timezone

import pytest

from advisor_core.domain.conversation import TurnEntry
from advisor_core.domain.exceptions import ConversationNotFound, ValidationError
from advisor_core.infrastructure.storage.json_store import JsonConversationStore, JsonMessageStore


def test_conversation_create_and_get(storage_root, clock_factory):
    store = JsonConversationStore(root=storage_root, clock=clock_factory())
    conv = store.create("u1", "Headaches")
    assert conv.id.startswith("c-") and len(conv.id) == 34
    assert conv.started_at == conv.last_message_at
    loaded = store.get(conv.id, "u1")
    assert loaded.title == "Headaches"
    assert loaded.started_at == conv.started_at
    assert (storage_root / "conversations" / conv.id / "meta.json").exists()


def test_conversation_other_owner_is_not_found(storage_root):
    store = JsonConversationStore(root=storage_root)
    conv = store.create("u1", "mine")
    with pytest.raises(ConversationNotFound) as exc:
        store.get(conv.id, "u2")
    assert exc.value.http_status == 404
    with pytest.raises(ConversationNotFound):
        store.get("c-" + "0" * 32, "u1")
    with pytest.raises(ConversationNotFound):
        store.rename_title(conv.id, "u2", "stolen")


def test_list_by_owner_orders_by_last_message_and_paginates(storage_root, clock_factory):
    store = JsonConversationStore(root=storage_root, clock=clock_factory())
    ids = [store.create("u1", f"t{i}").id for i in range(5)]
    store.create("u2", "someone else")
    # 最后创建的最新
    items, total = store.list_by_owner("u1", page=1, limit=2)
    assert total == 5
    assert [c.id for c in items] == [ids[4], ids[3]]
    items, total = store.list_by_owner("u1", page=3, limit=2)
    assert [c.id for c in items] == [ids[0]]
    items, _ = store.list_by_owner("u1", page=4, limit=2)
    assert items == []


def test_list_by_owner_ties_break_by_id(storage_root, clock_factory):
    store = JsonConversationStore(root=storage_root, clock=clock_factory(step=timedelta(0)))
    ids = sorted(store.create("u1", "same time").id for _ in range(3))
    items, _ = store.list_by_owner("u1", page=1, limit=10)
    assert [c.id for c in items] == ids


def test_list_by_owner_clamps_limit(storage_root):
    store = JsonConversationStore(root=storage_root)
    for i in range(3):
        store.create("u1", f"t{i}")
    items, total = store.list_by_owner("u1", page=1, limit=0)
    assert len(items) == 1 and total == 3
    items, _ = store.list_by_owner("u1", page=1, limit=500)
    assert len(items) == 3


def test_touch_never_moves_backwards(storage_root, clock_factory):
    clock = clock_factory()
    store = JsonConversationStore(root=storage_root, clock=clock)
    conv = store.create("u1", "t")
    clock.now = conv.started_at - timedelta(hours=1)
    touched = store.touch_last_message(conv.id)
    assert touched.last_message_at == conv.started_at
    clock.now = conv.started_at + timedelta(minutes=5)
    touched = store.touch_last_message(conv.id)
    assert touched.last_message_at == conv.started_at + timedelta(minutes=5)
    with pytest.raises(ConversationNotFound):
        store.touch_last_message("c-" + "f" * 32)


def test_rename_title(storage_root):
    store = JsonConversationStore(root=storage_root)
    conv = store.create("u1", "old")
    store.rename_title(conv.id, "u1", "new")
    assert store.get(conv.id, "u1").title == "new"


def test_path_like_ids_are_rejected(storage_root):
    store = JsonConversationStore(root=storage_root)
    with pytest.raises(ValidationError):
        store.get("../etc", "u1")


def test_append_turn_keeps_order_with_frozen_clock(storage_root, clock_factory):
    frozen = clock_factory(step=timedelta(0))
    convs = JsonConversationStore(root=storage_root, clock=frozen)
    msgs = JsonMessageStore(root=storage_root, clock=frozen)
    conv = convs.create("u1", "t")
    first = msgs.append_turn(
        conv.id,
        "u1",
        [TurnEntry(role="user", content="hi"), TurnEntry(role="assistant", content="hello", metadata={"fallback": False})],
    )
    second = msgs.append_turn(conv.id, "u1", [TurnEntry(role="user", content="again"), TurnEntry(role="assistant", content="ok")])
    stamps = [m.timestamp for m in first + second]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 4
    assert all(m.id.startswith("m-") for m in first + second)
    assert all(m.user_id == "u1" for m in first + second)

    items, total = msgs.list_by_conversation(conv.id, page=1, limit=20)
    assert total == 4
    assert [m.content for m in items] == ["hi", "hello", "again", "ok"]
    assert items[1].metadata == {"fallback": False}


def test_timestamps_increase_across_store_instances(storage_root, clock_factory):
    frozen = clock_factory(step=timedelta(0))
    convs = JsonConversationStore(root=storage_root, clock=frozen)
    conv = convs.create("u1", "t")
    a = JsonMessageStore(root=storage_root, clock=frozen).append(conv.id, "u1", "user", "one")
    b = JsonMessageStore(root=storage_root, clock=frozen).append(conv.id, "u1", "assistant", "two")
    assert b.timestamp > a.timestamp


def test_recent_for_context_is_newest_first(storage_root):
    convs = JsonConversationStore(root=storage_root)
    msgs = JsonMessageStore(root=storage_root)
    conv = convs.create("u1", "t")
    for i in range(6):
        msgs.append(conv.id, "u1", "user" if i % 2 == 0 else "assistant", f"m{i}")
    recent = msgs.recent_for_context(conv.id, 4)
    assert [m.content for m in recent] == ["m5", "m4", "m3", "m2"]
    assert msgs.recent_for_context(conv.id, 0) == []


def test_history_pagination_and_clamp(storage_root):
    convs = JsonConversationStore(root=storage_root)
    msgs = JsonMessageStore(root=storage_root)
    conv = convs.create("u1", "t")
    for i in range(55):
        msgs.append(conv.id, "u1", "user", f"m{i}")
    items, total = msgs.list_by_conversation(conv.id, page=1, limit=100)
    assert total == 55 and len(items) == 50
    items, _ = msgs.list_by_conversation(conv.id, page=2, limit=50)
    assert [m.content for m in items] == [f"m{i}" for i in range(50, 55)]


def test_append_to_missing_conversation(storage_root):
    msgs = JsonMessageStore(root=storage_root)
    with pytest.raises(ConversationNotFound):
        msgs.append("c-" + "a" * 32, "u1", "user", "hi")


def test_append_rejects_unknown_role(storage_root):
    convs = JsonConversationStore(root=storage_root)
    msgs = JsonMessageStore(root=storage_root)
    conv = convs.create("u1", "t")
    with pytest.raises(ValidationError):
        msgs.append(conv.id, "u1", "tool", "x")
    assert msgs.list_by_conversation(conv.id, 1, 20) == ([], 0)


def test_unreadable_line_is_skipped(storage_root):
    convs = JsonConversationStore(root=storage_root)
    msgs = JsonMessageStore(root=storage_root)
    conv = convs.create("u1", "t")
    msgs.append(conv.id, "u1", "user", "kept")
    path = storage_root / "conversations" / conv.id / "messages.jsonl"
    with path.open("a", encoding="utf-8") as f:
        f.write('{"id": "m-broken", "conv')
    items, total = JsonMessageStore(root=storage_root).list_by_conversation(conv.id, 1, 20)
    assert total == 1 and items[0].content == "kept"


def test_timestamps_are_timezone_aware(storage_root):
    convs = JsonConversationStore(root=storage_root)
    msgs = JsonMessageStore(root=storage_root)
    conv = convs.create("u1", "t")
    msgs.append(conv.id, "u1", "user", "hi")
    items, _ = JsonMessageStore(root=storage_root).list_by_conversation(conv.id, 1, 20)
    assert items[0].timestamp.tzinfo is not None
    assert items[0].timestamp <= datetime.now(timezone.utc)
