import json

import pytest

from faq_assistant.core.config import Settings
from faq_assistant.core.dependencies import build_context, build_providers
from faq_assistant.core.errors import ConfigurationError
from faq_assistant.models.llm import ModelBackend, ProviderKind
from faq_assistant.services.answer_cache import InMemoryKeyValueStore
from faq_assistant.services.embedding_store import EmbeddingStore
from faq_assistant.services.llm_provider import OpenAICompatibleProvider
from faq_assistant.tasks.generation_job import export_answers, run_generation_job
from tests.conftest import ScriptedProvider, echo_answers

SOURCE = "Оплата штрафов доступна в разделе «Платежи»."
PRIMARY = "llama-3.3-70b-versatile"


def groq_settings(**kwargs):
    return Settings(groq_api_key="gsk-test", openrouter_api_key=None, anthropic_api_key=None,
                    _env_file=None, **kwargs)


@pytest.fixture
def context():
    ctx = build_context(groq_settings(), cache_store=InMemoryKeyValueStore())
    ctx.orchestrator.retriever = None
    ctx.orchestrator.usage_logger = None
    ctx.orchestrator.stage_logger = None
    return ctx


def use_script(ctx, script):
    provider = ScriptedProvider(script)
    ctx.orchestrator.providers = {ProviderKind.GROQ: provider}
    return provider


def test_context_uses_only_keyed_providers(context):
    assert set(context.providers) == {ProviderKind.GROQ}
    assert isinstance(context.providers[ProviderKind.GROQ], OpenAICompatibleProvider)
    assert context.pool.names[0] == PRIMARY
    assert all(b.provider == ProviderKind.GROQ for b in context.pool.backends)


def test_build_providers_one_per_kind():
    settings = Settings(groq_api_key="g", openrouter_api_key="o", anthropic_api_key=None, _env_file=None)
    assert set(build_providers(settings)) == {ProviderKind.GROQ, ProviderKind.OPENROUTER}


def test_no_keys_is_a_configuration_error():
    settings = Settings(groq_api_key=None, openrouter_api_key=None, anthropic_api_key=None, _env_file=None)
    with pytest.raises(ConfigurationError):
        build_context(settings, cache_store=InMemoryKeyValueStore())


def test_duplicate_backends_is_a_configuration_error():
    backend = ModelBackend(name="dup", provider=ProviderKind.GROQ, endpoint="http://x")
    with pytest.raises(ConfigurationError, match="dup"):
        build_context(groq_settings(backends=[backend, backend]), cache_store=InMemoryKeyValueStore())


async def test_job_answers_exports_and_caches(context, tmp_path):
    provider = use_script(context, {PRIMARY: [echo_answers]})
    output = tmp_path / "answers.json"

    answers = await run_generation_job(SOURCE, ["Где оплатить штраф?", "Есть ли комиссия?"],
                                       context=context, output_path=output)

    assert [a.question for a in answers] == ["Где оплатить штраф?", "Есть ли комиссия?"]
    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["count"] == 2
    assert document["backends"][0]["backend"] == PRIMARY

    again = await run_generation_job(SOURCE, ["Где оплатить штраф?", "Есть ли комиссия?"], context=context)
    assert again == answers
    assert len(provider.calls) == 1


async def test_job_generates_questions_when_none_given(context):
    provider = use_script(context, {PRIMARY: ["Где оплатить штраф?\nЕсть ли комиссия?\nКак получить чек?", echo_answers]})

    answers = await run_generation_job(SOURCE, context=context, max_questions=2)

    assert [a.question for a in answers] == ["Где оплатить штраф?", "Есть ли комиссия?"]
    assert len(provider.calls) == 2


async def test_job_with_empty_source_does_nothing(context):
    provider = use_script(context, {PRIMARY: [echo_answers]})
    assert await run_generation_job("   ", ["Q?"], context=context) == []
    assert provider.calls == []


def test_export_answers_without_backends(tmp_path):
    path = export_answers([], tmp_path / "nested" / "empty.json")
    assert json.loads(path.read_text(encoding="utf-8"))["backends"] == []


def test_context_reset(context):
    context.pool.mark_rate_limited(PRIMARY)
    context.reset()
    assert context.pool.next_available().name == PRIMARY
    assert not context.store.is_loaded


@pytest.mark.parametrize("dimension, usable", [(2, True), (384, False)])
def test_check_corpus_compares_dimensions(corpus_file, dimension, usable):
    ctx = build_context(groq_settings(embedding_dimension=dimension), cache_store=InMemoryKeyValueStore())
    ctx.store = EmbeddingStore(corpus_file)
    assert ctx.check_corpus() is usable


def test_check_corpus_without_corpus_file(context, tmp_path):
    context.store = EmbeddingStore(tmp_path / "missing.json")
    assert context.check_corpus() is False
