import json

import pytest

from faq_assistant.models.review import ChangeType
from faq_assistant.services.response_parser import (
    ParseFailure,
    ParseOk,
    extract_json_block,
    parse_answers,
    parse_questions,
    parse_review,
    sanitize_json,
)

QUESTIONS = ["Как оплатить?", "Где чек?"]


def answers_json(*answers):
    return json.dumps({"answers": [{"question": f"q{i}", "answer": a} for i, a in enumerate(answers)]},
                      ensure_ascii=False)


def test_sanitize_strips_fence_and_trailing_commas():
    raw = '```json\n{"a": [1, 2,], "b": 3,}\n```'
    assert sanitize_json(raw) == '{"a": [1, 2], "b": 3}'


def test_extract_block_ignores_surrounding_prose():
    assert extract_json_block('Вот ответ: {"x": 1} Надеюсь, помог!') == '{"x": 1}'
    assert extract_json_block("no json here") == ""
    assert extract_json_block('[{"x": 1}] trailing') == '[{"x": 1}]'


def test_answers_ok_keep_asked_questions():
    result = parse_answers(answers_json("Через Платежи.", "В истории."), QUESTIONS)

    assert isinstance(result, ParseOk)
    assert [a.question for a in result.value] == QUESTIONS
    assert [a.answer for a in result.value] == ["Через Платежи.", "В истории."]


def test_answers_with_raw_newlines_in_strings():
    text = '{"answers": [{"question": "a", "answer": "1. Откройте\n2. Нажмите"}, {"question": "b", "answer": "Да"}]}'
    result = parse_answers(text, QUESTIONS)
    assert result.ok
    assert result.value[0].answer == "1. Откройте\n2. Нажмите"


def test_answers_bare_list_accepted():
    text = json.dumps([{"question": "a", "answer": "x"}, {"question": "b", "answer": "y"}])
    assert parse_answers(text, QUESTIONS).ok


@pytest.mark.parametrize("text, reason", [
    ("I cannot help with that", "no JSON"),
    ('{"answers": [', "no JSON"),
    ('{"answers": [{"question": "a"}]', "invalid JSON"),
    ('{"answers": "nope"}', "schema"),
    ('{"answers": [{"question": "a", "answer": "x"}]}', "expected 2 answers, got 1"),
])
def test_answers_failures(text, reason):
    result = parse_answers(text, QUESTIONS)
    assert isinstance(result, ParseFailure)
    assert not result.ok
    assert reason in result.reason


def test_blank_answer_is_a_failure():
    result = parse_answers(answers_json("Ответ", "   "), QUESTIONS)
    assert not result.ok
    assert "empty answer" in result.reason


def test_review_ok():
    text = json.dumps({
        "correctedQuestion": "Как оплатить услуги в Kaspi.kz?",
        "correctedAnswer": "Откройте «Платежи».",
        "changes": [{"category": "SEO", "type": "seo", "description": "бренд", "checklistItem": "1.5"}],
        "complianceScore": 90,
        "seoScore": 8,
    }, ensure_ascii=False)

    result = parse_review(f"```json\n{text}\n```")

    assert result.ok
    review = result.value
    assert review.corrected_question.endswith("Kaspi.kz?")
    assert review.changes[0].type == ChangeType.SEO
    assert review.changes[0].checklist_item == "1.5"
    assert review.seo_score == 8


@pytest.mark.parametrize("text", [
    '["not", "an", "object"]',
    '{"correctedQuestion": "q"}',
    '{"correctedQuestion": "q", "correctedAnswer": "a", "complianceScore": 150}',
])
def test_review_failures(text):
    assert not parse_review(text).ok


def test_questions_strip_markers_and_dedupe():
    text = "\n".join([
        "Вот вопросы:",
        "1. Как оплатить?",
        "2) Где чек?",
        "- Как оплатить?",
        "• \"Можно ли отменить?\"",
        "Это не вопрос",
        "",
    ])
    result = parse_questions(text)

    assert result.ok
    assert [q.question for q in result.value] == ["Как оплатить?", "Где чек?", "Можно ли отменить?"]
    assert [q.id for q in result.value] == ["q-0", "q-1", "q-2"]


def test_questions_none_found():
    assert not parse_questions("Извините, не могу.").ok
