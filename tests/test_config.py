import pytest

from faq_assistant.core.config import DEFAULT_BACKENDS, Settings
from faq_assistant.models.llm import ModelBackend, ProviderKind


def make_settings(**kwargs):
    defaults = dict(groq_api_key=None, openrouter_api_key=None, anthropic_api_key=None, _env_file=None)
    defaults.update(kwargs)
    return Settings(**defaults)


def test_defaults():
    s = make_settings()
    assert s.retrieval_top_k == 5
    assert s.generation_batch_size == 3
    assert s.cache_fresh_ttl_seconds == 24 * 60 * 60
    assert s.cache_gc_ttl_seconds == 7 * 24 * 60 * 60
    assert s.backend_cooldown_seconds == 60
    assert s.embeddings_path.name == "faq-embeddings.json"


def test_backends_without_keys_are_dropped():
    s = make_settings(groq_api_key="gsk-test")
    names = [b.name for b in s.available_backends()]

    assert names == [b.name for b in DEFAULT_BACKENDS if b.provider == ProviderKind.GROQ]


def test_no_keys_no_backends():
    assert make_settings().available_backends() == []


def test_blank_key_counts_as_missing():
    assert make_settings(anthropic_api_key="   ").available_backends() == []


def test_backends_sorted_and_keyless_kept():
    s = make_settings(backends=[
        ModelBackend(name="late", provider=ProviderKind.GROQ, endpoint="http://x", priority=9, requires_auth=False),
        ModelBackend(name="early", provider=ProviderKind.GROQ, endpoint="http://x", priority=1, requires_auth=False),
    ])
    assert [b.name for b in s.available_backends()] == ["early", "late"]


def test_duplicate_backend_names_rejected():
    s = make_settings(groq_api_key="k", backends=[
        ModelBackend(name="same", provider=ProviderKind.GROQ, endpoint="http://x", priority=0),
        ModelBackend(name="same", provider=ProviderKind.GROQ, endpoint="http://y", priority=1),
    ])
    with pytest.raises(ValueError, match="same"):
        s.available_backends()
