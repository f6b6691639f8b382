"""
Prompt assembly with a token budget.

Every answers prompt has the same fixed overhead: style examples from the
retriever, the compressed checklist and (optionally) the corpus style guide.
Batching several questions per prompt amortizes that overhead; the budget below
keeps one prompt from growing past what the smallest backend accepts.

When a prompt is over budget we shed, in order:
  1. retrieved examples, lowest-ranked first
  2. the style guide
  3. the tail of the source text (marked with "[...]")
The checklist rules and the questions themselves are never cut.

Token counts are estimates (~4 chars per token, also a fair average for
Russian), which is accurate enough for budgeting, not for billing.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from jinja2 import Environment, StrictUndefined

from faq_assistant.models.faq import RankedResult

logger = logging.getLogger(__name__)

TRUNCATION_MARK = "\n[...]"

_env = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)

QUESTIONS_TEMPLATE = _env.from_string("""\
Ты - эксперт по созданию FAQ для финансового сервиса {{ brand }}.

{% if examples %}
Примеры существующих FAQ для анализа стиля:

{{ examples }}

{% endif %}
На основе стиля существующих FAQ сгенерируй список из 10-15 вопросов, которые пользователи могут задать по следующему тексту:

ИСХОДНЫЙ ТЕКСТ:
{{ source_text }}

ТРЕБОВАНИЯ:
1. Вопросы должны быть конкретными и практичными
2. Используй стиль существующих вопросов из примеров
3. Вопросы должны начинаться с "Как...", "Что...", "Где...", "Нужна ли..." и т.д.
4. Вопросы должны быть на русском языке

ФОРМАТ ОТВЕТА:
Верни только список вопросов, каждый вопрос на новой строке, без нумерации.
""")

ANSWERS_TEMPLATE = _env.from_string("""\
Ты - эксперт по созданию FAQ для финансового сервиса {{ brand }}.

{% if style_guide %}
{{ style_guide }}

{% endif %}
{% if examples %}
Похожие FAQ из базы знаний (образцы стиля, НЕ источник фактов):

{{ examples }}

{% endif %}
{% if rules %}
{{ rules }}

{% endif %}
ИСХОДНЫЙ ТЕКСТ (единственный источник информации):
{{ source_text }}

ВОПРОСЫ:
{% for question in questions %}
{{ loop.index }}. {{ question }}
{% endfor %}

ТРЕБОВАНИЯ К ОТВЕТАМ:
1. Каждый ответ краткий и конкретный (2-5 абзацев)
2. Используй стиль ответов из примеров и правила чек-листа
3. Пошаговые инструкции оформляй нумерованным списком
4. Не используй markdown (**, ## и т.д.)
5. Не добавляй фактов, которых нет в исходном тексте

ФОРМАТ ОТВЕТА (строго JSON, ровно {{ questions|length }} элемент(а) в том же порядке):
{"answers": [{"question": "текст вопроса", "answer": "текст ответа"}]}

Верни ТОЛЬКО JSON, без дополнительного текста.
""")

REVIEW_TEMPLATE = _env.from_string("""\
Ты - редактор контента для {{ brand }}. Проанализируй и улучши следующий вопрос и ответ.

{% if rules %}
{{ rules }}

{% endif %}
ВОПРОС:
{{ question }}

ОТВЕТ:
{{ answer }}

{% if comments %}
КОММЕНТАРИИ ОТ ПОЛЬЗОВАТЕЛЯ:
{% for comment in comments %}
- {{ comment }}
{% endfor %}

{% endif %}
ТРЕБОВАНИЯ:
1. Исправь терминологию (используй официальные названия продуктов)
2. Улучши SEO (добавь ключевые слова)
3. Структурируй ответ (нумерованные списки для инструкций)
4. Упрости формулировки
5. Каждое изменение привяжи к пункту чек-листа

ФОРМАТ ОТВЕТА (строго JSON):
{
  "correctedQuestion": "исправленный вопрос",
  "correctedAnswer": "исправленный ответ",
  "changes": [
    {
      "category": "SEO|Терминология|Структура|Стиль",
      "type": "critical|style|seo",
      "description": "описание изменения",
      "before": "текст до",
      "after": "текст после",
      "checklistItem": "пункт чек-листа"
    }
  ],
  "complianceScore": 0-100,
  "seoScore": 0-10
}

Верни ТОЛЬКО JSON, без дополнительного текста.
""")

REFINE_TEMPLATE = _env.from_string("""\
Ты - редактор контента для {{ brand }}. Доработай текст с учётом комментария пользователя.

ТЕКУЩИЙ ВОПРОС:
{{ question }}

ТЕКУЩИЙ ОТВЕТ:
{{ answer }}

КОММЕНТАРИЙ ДЛЯ ДОРАБОТКИ:
{{ comment }}

ТРЕБОВАНИЯ:
1. Внеси изменения согласно комментарию
2. Сохрани качество и стиль текста
3. Не ухудшай SEO
4. Верни доработанный текст

ФОРМАТ ОТВЕТА (строго JSON):
{
  "correctedQuestion": "доработанный вопрос",
  "correctedAnswer": "доработанный ответ",
  "changes": [
    {
      "category": "категория",
      "type": "critical|style|seo",
      "description": "что изменилось",
      "before": "до",
      "after": "после",
      "checklistItem": "пункт"
    }
  ]
}

Верни ТОЛЬКО JSON, без дополнительного текста.
""")


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def format_examples(results: List[RankedResult]) -> str:
    """
    Output format:
        Пример 1 (сходство: 0.82):
        Вопрос: ...
        Ответ: ...

    Returns empty string if there are no results; the templates drop the
    examples block entirely in that case.
    """
    if not results:
        return ""

    parts = []
    for i, result in enumerate(results, 1):
        entry = result.entry
        parts.append(
            f"Пример {i} (сходство: {result.score:.2f}):\n"
            f"Вопрос: {entry.question}\n"
            f"Ответ: {entry.answer}"
        )
    return "\n\n".join(parts)


@dataclass
class AssembledPrompt:
    text: str
    estimated_tokens: int
    examples_used: int
    style_guide_used: bool
    source_truncated: bool = False
    questions: List[str] = field(default_factory=list)

    @property
    def messages(self) -> List[dict]:
        return [{"role": "user", "content": self.text}]


class PromptBuilder:

    def __init__(self, brand: str = "Kaspi.kz", max_prompt_tokens: int = 6000):
        self.brand = brand
        self.max_prompt_tokens = max_prompt_tokens

    def build_questions_prompt(self, source_text: str, examples: List[RankedResult]) -> str:
        return QUESTIONS_TEMPLATE.render(
            brand=self.brand,
            examples=format_examples(examples),
            source_text=source_text,
        )

    def build_review_prompt(
        self,
        question: str,
        answer: str,
        rules: str = "",
        comments: Optional[List[str]] = None,
    ) -> str:
        return REVIEW_TEMPLATE.render(
            brand=self.brand,
            rules=rules,
            question=question,
            answer=answer,
            comments=comments or [],
        )

    def build_refine_prompt(self, question: str, answer: str, comment: str) -> str:
        return REFINE_TEMPLATE.render(
            brand=self.brand, question=question, answer=answer, comment=comment
        )

    def _render_answers(self, source_text, questions, examples, rules, style_guide) -> str:
        return ANSWERS_TEMPLATE.render(
            brand=self.brand,
            style_guide=style_guide,
            examples=format_examples(examples),
            rules=rules,
            source_text=source_text,
            questions=questions,
        )

    def build_answers_prompt(
        self,
        source_text: str,
        questions: List[str],
        examples: Optional[List[RankedResult]] = None,
        rules: str = "",
        style_guide: str = "",
    ) -> AssembledPrompt:
        """
        Render the answers prompt for one batch of questions, within budget.

        Returns:
            AssembledPrompt; estimated_tokens may still exceed the budget when
            rules + questions alone are too large (logged as a warning)
        """
        examples = list(examples or [])
        text = self._render_answers(source_text, questions, examples, rules, style_guide)

        # 1. Drop the weakest examples first
        while estimate_tokens(text) > self.max_prompt_tokens and examples:
            examples.pop()
            text = self._render_answers(source_text, questions, examples, rules, style_guide)

        # 2. Then the style guide
        if estimate_tokens(text) > self.max_prompt_tokens and style_guide:
            style_guide = ""
            text = self._render_answers(source_text, questions, examples, rules, style_guide)

        # 3. Then the tail of the source text
        truncated = False
        overflow_tokens = estimate_tokens(text) - self.max_prompt_tokens
        if overflow_tokens > 0 and source_text:
            keep_chars = max(0, len(source_text) - overflow_tokens * 4 - len(TRUNCATION_MARK))
            source_text = source_text[:keep_chars] + TRUNCATION_MARK
            truncated = True
            text = self._render_answers(source_text, questions, examples, rules, style_guide)

        tokens = estimate_tokens(text)
        if tokens > self.max_prompt_tokens:
            logger.warning(
                f"Prompt still over budget after shedding: {tokens} > {self.max_prompt_tokens} tokens"
            )
        else:
            logger.debug(
                f"Assembled prompt: {tokens} tokens, {len(examples)} examples, "
                f"style_guide={'yes' if style_guide else 'no'}, truncated={truncated}"
            )

        return AssembledPrompt(
            text=text,
            estimated_tokens=tokens,
            examples_used=len(examples),
            style_guide_used=bool(style_guide),
            source_truncated=truncated,
            questions=list(questions),
        )
