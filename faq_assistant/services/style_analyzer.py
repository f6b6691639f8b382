"""
Corpus style analysis.

Retrieval gives the LLM a handful of FAQ items close to the source text.
This module gives it the corpus-wide picture instead: how long questions and
answers usually are, how often answers use lists or step-by-step wording, the
usual ways questions and answers open, recurring interface phrases, and one
good example of each answer shape.

The analysis is computed once per corpus and kept on the analyzer instance;
format_style_guide() renders it as a compact block for the answers prompt.
"""

import logging
import re
from collections import Counter
from typing import Dict, List, Optional

from jinja2 import Environment, StrictUndefined

from faq_assistant.models.faq import CorpusEntry
from faq_assistant.models.review import StyleAnalysis

logger = logging.getLogger(__name__)

SHORT_ANSWER_CHARS = 200
DETAILED_ANSWER_CHARS = 500
EXAMPLES_PER_TYPE = 5
KEY_PHRASE_SAMPLE = 1000

_LIST_START = re.compile(r"^\s*[-•\d]")
_STEPS = re.compile(r"[Шш]аг\s*\d|[Пп]ерейдите|[Нн]ажмите|[Вв]ыберите|[Уу]кажите")
_QUESTION_START = re.compile(r"^([А-Яа-яЁё]+\s+[А-Яа-яЁё]+(?:\s+[А-Яа-яЁё]+)?)")
_ANSWER_START = re.compile(r"^([А-Яа-яЁё]+(?:\s+[А-Яа-яЁё]+){0,2})")

KEY_PHRASE_PATTERNS = [
    re.compile(r"приложени[ие]\s+Kaspi\.kz", re.IGNORECASE),
    re.compile(r"сервис[е]?\s+[«\"]?[А-Яа-я\s]+[»\"]?", re.IGNORECASE),
    re.compile(r"в\s+раздел[е]\s+[«\"]?[А-Яа-я\s]+[»\"]?", re.IGNORECASE),
    re.compile(r"перейдите\s+в\s+[А-Яа-я\s]+", re.IGNORECASE),
    re.compile(r"нажмите\s+[«\"]?[А-Яа-я\s]+[»\"]?", re.IGNORECASE),
]

_env = Environment(undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)

STYLE_GUIDE_TEMPLATE = _env.from_string("""\
АНАЛИЗ СТИЛЯ СУЩЕСТВУЮЩИХ FAQ (на основе {{ a.total_items }} примеров):

1. СТРУКТУРА ОТВЕТОВ:
   - Средняя длина вопроса: {{ a.avg_question_length }} символов
   - Средняя длина ответа: {{ a.avg_answer_length }} символов
   - {{ a.percent_short_answers }}% ответов краткие (< {{ short_chars }} символов)
   - {{ a.percent_with_steps }}% содержат пошаговые инструкции
   - {{ a.percent_with_lists }}% используют списки
{% if a.common_question_starts %}

2. ТИПИЧНЫЕ НАЧАЛА ВОПРОСОВ:
{% for start in a.common_question_starts[:8] %}
   • "{{ start }}..."
{% endfor %}
{% endif %}
{% if a.common_answer_starts %}

3. ТИПИЧНЫЕ НАЧАЛА ОТВЕТОВ:
{% for start in a.common_answer_starts[:8] %}
   • "{{ start }}..."
{% endfor %}
{% endif %}
{% if a.key_phrases %}

4. КЛЮЧЕВЫЕ ФРАЗЫ И ТЕРМИНЫ:
{% for phrase in a.key_phrases[:10] %}
   • {{ phrase }}
{% endfor %}
{% endif %}
{% for label, entry in examples %}

{{ label }}:
Вопрос: {{ entry.question }}
Ответ: {{ entry.answer[:400] }}{% if entry.answer|length > 400 %}...{% endif %}

{% endfor %}
""")

EXAMPLE_LABELS = [
    ("short", "Краткий ответ"),
    ("step_by_step", "Пошаговая инструкция"),
    ("with_lists", "Ответ со списком"),
]


def _top(counter: Counter, n: int) -> List[str]:
    # most_common keeps first-seen order among equal counts
    return [item for item, _ in counter.most_common(n)]


def extract_key_phrases(entries: List[CorpusEntry], limit: int = 20) -> List[str]:
    phrases: Counter = Counter()
    for entry in entries[:KEY_PHRASE_SAMPLE]:
        for pattern in KEY_PHRASE_PATTERNS:
            for match in pattern.finditer(entry.answer):
                phrase = match.group(0).strip()
                if 10 < len(phrase) < 60:
                    phrases[phrase] += 1
    return _top(phrases, limit)


def analyze_style(entries: List[CorpusEntry]) -> StyleAnalysis:
    """
    Raises:
        ValueError: empty corpus
    """
    if not entries:
        raise ValueError("No FAQ entries provided for style analysis")

    total = len(entries)
    with_lists = with_steps = short = 0
    examples: Dict[str, List[CorpusEntry]] = {
        "short": [], "step_by_step": [], "with_lists": [], "detailed": [],
    }
    question_starts: Counter = Counter()
    answer_starts: Counter = Counter()

    def _keep(kind: str, entry: CorpusEntry, min_usefulness: float):
        if len(examples[kind]) < EXAMPLES_PER_TYPE and entry.usefulness > min_usefulness:
            examples[kind].append(entry)

    for entry in entries:
        answer = entry.answer

        if _LIST_START.match(answer) or "\n-" in answer or "\n•" in answer:
            with_lists += 1
            _keep("with_lists", entry, 80)
        if _STEPS.search(answer):
            with_steps += 1
            _keep("step_by_step", entry, 80)
        if len(answer) < SHORT_ANSWER_CHARS:
            short += 1
            _keep("short", entry, 80)
        if len(answer) > DETAILED_ANSWER_CHARS:
            _keep("detailed", entry, 85)

        match = _QUESTION_START.match(entry.question)
        if match:
            question_starts[match.group(1)] += 1
        match = _ANSWER_START.match(answer)
        if match:
            answer_starts[match.group(1)] += 1

    analysis = StyleAnalysis(
        total_items=total,
        avg_question_length=round(sum(len(e.question) for e in entries) / total),
        avg_answer_length=round(sum(len(e.answer) for e in entries) / total),
        percent_with_lists=round(with_lists / total * 100),
        percent_with_steps=round(with_steps / total * 100),
        percent_short_answers=round(short / total * 100),
        common_question_starts=_top(question_starts, 10),
        common_answer_starts=_top(answer_starts, 10),
        key_phrases=extract_key_phrases(entries),
        examples_by_type=examples,
    )

    logger.info(
        f"Style analysis of {total} FAQs: avg question {analysis.avg_question_length} chars, "
        f"avg answer {analysis.avg_answer_length} chars, lists {analysis.percent_with_lists}%, "
        f"steps {analysis.percent_with_steps}%, short {analysis.percent_short_answers}%"
    )
    return analysis


def format_style_guide(analysis: StyleAnalysis) -> str:
    examples = [
        (label, analysis.examples_by_type[kind][0])
        for kind, label in EXAMPLE_LABELS
        if analysis.examples_by_type.get(kind)
    ]
    return STYLE_GUIDE_TEMPLATE.render(
        a=analysis, examples=examples, short_chars=SHORT_ANSWER_CHARS
    ).strip()


class StyleAnalyzer:
    """Caches one analysis (and its rendered guide) per corpus."""

    def __init__(self):
        self._analysis: Optional[StyleAnalysis] = None
        self._guide: Optional[str] = None

    def analyze(self, entries: List[CorpusEntry]) -> StyleAnalysis:
        if self._analysis is None:
            self._analysis = analyze_style(entries)
        else:
            logger.debug("Using cached style analysis")
        return self._analysis

    def style_guide(self, entries: List[CorpusEntry]) -> str:
        if self._guide is None:
            self._guide = format_style_guide(self.analyze(entries))
        return self._guide

    def clear(self):
        self._analysis = None
        self._guide = None
