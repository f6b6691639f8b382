import pytest

from faq_assistant.services.style_analyzer import (
    StyleAnalyzer,
    analyze_style,
    extract_key_phrases,
    format_style_guide,
)
from tests.conftest import make_entry

STEPS_ANSWER = "Чтобы оплатить:\n- Перейдите в раздел «Платежи»\n- Нажмите «Оплатить»"
LONG_ANSWER = "Подробно о тарифах. " * 40


@pytest.fixture
def entries():
    return [
        make_entry("1", [1.0], question="Как оплатить услуги?", answer=STEPS_ANSWER, usefulness=95),
        make_entry("2", [1.0], question="Как оплатить штраф?", answer="Да, можно в приложении Kaspi.kz.", usefulness=90),
        make_entry("3", [1.0], question="Где найти чек?", answer=LONG_ANSWER, usefulness=99),
        make_entry("4", [1.0], question="Можно ли отменить?", answer="Нет, нельзя.", usefulness=10),
    ]


def test_empty_corpus_rejected():
    with pytest.raises(ValueError):
        analyze_style([])


def test_percentages_and_averages(entries):
    analysis = analyze_style(entries)

    assert analysis.total_items == 4
    assert analysis.percent_with_lists == 25
    assert analysis.percent_with_steps == 25
    assert analysis.percent_short_answers == 75
    assert analysis.avg_answer_length == round(sum(len(e.answer) for e in entries) / 4)


def test_common_starts_most_frequent_first(entries):
    analysis = analyze_style(entries)
    assert analysis.common_question_starts[0] == "Как оплатить услуги"
    assert "Да" not in analysis.common_question_starts


def test_examples_respect_usefulness(entries):
    examples = analyze_style(entries).examples_by_type

    assert [e.id for e in examples["short"]] == ["1", "2"]
    assert [e.id for e in examples["step_by_step"]] == ["1"]
    assert [e.id for e in examples["detailed"]] == ["3"]


def test_key_phrases(entries):
    phrases = extract_key_phrases(entries)
    assert "приложении Kaspi.kz" in phrases


def test_style_guide_renders_sections(entries):
    guide = format_style_guide(analyze_style(entries))

    assert guide.startswith("АНАЛИЗ СТИЛЯ СУЩЕСТВУЮЩИХ FAQ (на основе 4 примеров):")
    assert "25% используют списки" in guide
    assert "Краткий ответ:\nВопрос: Как оплатить услуги?" in guide
    assert "Пошаговая инструкция:" in guide


def test_analyzer_caches_until_cleared(entries):
    analyzer = StyleAnalyzer()
    guide = analyzer.style_guide(entries)

    assert analyzer.style_guide(entries[:1]) is guide
    analyzer.clear()
    assert "на основе 1 примеров" in analyzer.style_guide(entries[:1])
