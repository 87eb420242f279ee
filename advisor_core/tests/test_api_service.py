import pytest

from advisor_core.agents.orchestrator import ChatOrchestrator
from advisor_core.api import service
from advisor_core.domain.exceptions import ConversationNotFound
from advisor_core.infrastructure.storage.json_store import JsonConversationStore, JsonMessageStore


@pytest.fixture
def api(make_settings, scripted_provider):
    cfg = make_settings()
    orch = ChatOrchestrator(
        JsonConversationStore(root=cfg.storage_root),
        JsonMessageStore(root=cfg.storage_root),
        provider_client=scripted_provider(["Walk after meals."]),
        cfg=cfg,
    )
    service.set_default_orchestrator(orch)
    yield service
    service.set_default_orchestrator(None)


def test_send_message_returns_plain_dict(api):
    out = api.send_message("u1", "Tips for digestion?")
    assert set(out) == {"conversation", "user_message", "assistant_message", "fallback"}
    assert out["conversation"]["title"] == "Tips for digestion?"
    assert out["user_message"]["role"] == "user"
    assert out["assistant_message"]["content"].startswith("Walk after meals.")
    assert out["assistant_message"]["timestamp"].endswith("Z")
    assert out["fallback"] is False


def test_listing_history_and_detail(api):
    first = api.create_conversation("u1", "Greeting", "Hello there")
    conv_id = first["conversation"]["id"]
    api.send_message("u1", "Second", conv_id)

    listing = api.get_conversations("u1")
    assert listing["total"] == 1 and listing["page"] == 1
    assert listing["items"][0]["title"] == "Greeting"

    history = api.get_history(conv_id, "u1", page=1, limit=2)
    assert history["total"] == 4
    assert [m["content"] for m in history["items"]][0] == "Hello there"

    detail = api.get_conversation(conv_id, "u1")
    assert len(detail["messages"]) == 4

    renamed = api.rename_conversation(conv_id, "u1", "Digestion")
    assert renamed["title"] == "Digestion"


def test_errors_propagate(api):
    with pytest.raises(ConversationNotFound):
        api.send_message("u2", "hi", "c-" + "0" * 32)
