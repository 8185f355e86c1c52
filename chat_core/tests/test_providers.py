import pytest

from chat_core.domain.provider_setting import ProviderKind
from chat_core.providers import create_all_providers, create_provider
from chat_core.providers.google_client import GoogleClient
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.registry import GOOGLE_CONFIG, OPENAI_CONFIG, get_provider_config


def test_create_provider_by_kind():
    assert isinstance(create_provider("openai"), OpenAIClient)
    assert isinstance(create_provider(" Google "), GoogleClient)
    assert isinstance(create_provider(ProviderKind.GOOGLE), GoogleClient)


def test_create_provider_unknown():
    with pytest.raises(ValueError):
        create_provider("kimi")


def test_create_all_providers_covers_every_kind():
    providers = create_all_providers()
    assert set(providers) == set(ProviderKind)
    assert all(p.kind == kind for kind, p in providers.items())


def test_role_and_finish_reason_tables():
    assert OPENAI_CONFIG.wire_role("assistant") == "assistant"
    assert GOOGLE_CONFIG.wire_role("assistant") == "model"
    assert GOOGLE_CONFIG.wire_role("system") is None
    assert GOOGLE_CONFIG.finish_reason("STOP") == "stop"
    assert GOOGLE_CONFIG.finish_reason("MAX_TOKENS") == "length"
    assert GOOGLE_CONFIG.finish_reason("OTHER") == "other"
    assert OPENAI_CONFIG.finish_reason(None) is None
    assert get_provider_config("OpenAI") is OPENAI_CONFIG
    with pytest.raises(KeyError):
        get_provider_config("kimi")
