import pytest

from advisor_core import providers
from advisor_core.providers import create_provider
from advisor_core.providers.openai_client import OpenAICompatibleClient
from advisor_core.providers.registry import PROVIDER_REGISTRY, get_provider_config


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "openai"
        llm_api_key = "sk-test-1234567890"

    monkeypatch.setattr("advisor_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, OpenAICompatibleClient)
    assert provider.name == "openai"


def test_create_provider_explicit(monkeypatch):
    class DummySettings:
        default_provider = "openai"
        llm_api_key = "sk-test-1234567890"

    monkeypatch.setattr("advisor_core.providers.settings", DummySettings())
    provider = create_provider("OpenRouter")
    assert provider.name == "openrouter"


def test_unknown_provider():
    with pytest.raises(KeyError):
        create_provider("glm")


def test_registry_is_case_insensitive():
    assert get_provider_config("OPENAI").base_url == "https://api.openai.com/v1"
    assert "health-chat" in get_provider_config("openrouter").models


@pytest.mark.parametrize("name", sorted(PROVIDER_REGISTRY))
def test_every_registered_provider_can_be_created(monkeypatch, name):
    class DummySettings:
        default_provider = name
        llm_api_key = "sk-test-1234567890"

    monkeypatch.setattr("advisor_core.providers.settings", DummySettings())
    assert create_provider().name == name
    assert not hasattr(providers, "DefaultProviderName")
