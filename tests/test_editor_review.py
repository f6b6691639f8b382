import json

import pytest

from faq_assistant.core.errors import GenerationFailed
from faq_assistant.models.llm import ProviderKind
from faq_assistant.services.checklist_compressor import ChecklistCompressor
from faq_assistant.services.editor_review import EditorReviewer
from faq_assistant.services.generation_orchestrator import GenerationOrchestrator
from faq_assistant.services.model_pool import ModelPool, RetryPolicy
from tests.conftest import CHECKLIST, ScriptedProvider


def review_json(question, answer, change, compliance=None, seo=None):
    data = {
        "correctedQuestion": question,
        "correctedAnswer": answer,
        "changes": [{"category": "Стиль", "type": "style", "description": change, "checklistItem": "1.6"}],
    }
    if compliance is not None:
        data["complianceScore"] = compliance
    if seo is not None:
        data["seoScore"] = seo
    return json.dumps(data, ensure_ascii=False)


@pytest.fixture
def make_reviewer(backends, fake_sleep):
    def _make(script):
        provider = ScriptedProvider(script)
        orchestrator = GenerationOrchestrator(
            ModelPool(backends),
            {ProviderKind.GROQ: provider},
            retry_policy=RetryPolicy(max_rounds=1, cooldown_seconds=0, sleep=fake_sleep),
        )
        return EditorReviewer(orchestrator, compressor=ChecklistCompressor(CHECKLIST)), provider

    return _make


async def test_review_sends_relevant_rules_and_comments(make_reviewer):
    reviewer, provider = make_reviewer({
        "model-a": [review_json("Как оплатить в Kaspi.kz?", "Откройте «Платежи».", "бренд", 80, 7)],
    })

    result = await reviewer.review("Как оплатить?", "Откройте платежи.", comments=["Добавь бренд", "  "])

    prompt = provider.messages[0][-1]["content"]
    assert "1.6 Единая терминология" in prompt
    assert "- Добавь бренд" in prompt
    assert result.corrected_question == "Как оплатить в Kaspi.kz?"
    assert result.compliance_score == 80
    assert result.original_text == "Как оплатить?\n\nОткройте платежи."
    assert result.applied_comments == ["Добавь бренд"]


async def test_malformed_review_rotates_backend(make_reviewer):
    reviewer, provider = make_reviewer({
        "model-a": ["not json at all"],
        "model-b": [review_json("Q?", "A.", "x")],
    })

    result = await reviewer.review("Q?", "A.")

    assert provider.calls == ["model-a", "model-b"]
    assert result.corrected_answer == "A."


async def test_review_fails_when_no_backend_parses(make_reviewer):
    reviewer, _ = make_reviewer({"model-a": ["{}"], "model-b": ["{}"]})
    with pytest.raises(GenerationFailed):
        await reviewer.review("Q?", "A.")


async def test_refine_accumulates(make_reviewer):
    reviewer, provider = make_reviewer({
        "model-a": [
            review_json("Q1?", "A1.", "first", 70, 5),
            review_json("Q2?", "A2.", "second"),
        ],
    })
    first = await reviewer.review("Q?", "A.")

    refined = await reviewer.refine(first, "  Сделай короче ")

    assert "КОММЕНТАРИЙ ДЛЯ ДОРАБОТКИ:\nСделай короче" in provider.messages[1][-1]["content"]
    assert "ТЕКУЩИЙ ОТВЕТ:\nA1." in provider.messages[1][-1]["content"]
    assert refined.corrected_question == "Q2?"
    assert [c.description for c in refined.changes] == ["first", "second"]
    assert refined.applied_comments == ["Сделай короче"]
    assert refined.compliance_score == 70
    assert refined.seo_score == 5
    assert refined.original_text == "Q?\n\nA."


async def test_refine_rejects_blank_comment(make_reviewer):
    reviewer, provider = make_reviewer({"model-a": [review_json("Q?", "A.", "x")]})
    first = await reviewer.review("Q?", "A.")

    with pytest.raises(ValueError):
        await reviewer.refine(first, "   ")
    assert len(provider.calls) == 1
