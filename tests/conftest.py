import json
import re
from datetime import datetime
from typing import Callable, Dict, List, Union

import numpy as np
import pytest

from faq_assistant.models.faq import CorpusEntry
from faq_assistant.models.llm import LLMResponse, ModelBackend, ProviderKind
from faq_assistant.services.llm_provider import LLMProvider

CHECKLIST = """\
Редакторский чек-лист FAQ
Используйте при подготовке ответов.
1.1 Обращения клиентов
Отвечайте на суть обращения.
1.4 Базовые вопросы
Объясняйте простыми словами.
1.5 SEO
Упоминайте название сервиса.
1.6 Единая терминология
Используйте официальные названия продуктов.
1.7 Интерфейс
Названия кнопок пишите как в приложении.
1.8 Закрытые вопросы
Начинайте ответ с «Да» или «Нет».
1.9 Логическая последовательность
Шаги нумеруйте по порядку.
1.10 Полный ответ
Если действие недоступно, предложите альтернативу.
"""


class FakeSentenceModel:
    """Deterministic stand-in for SentenceTransformer: character counts hashed into D dims."""

    def __init__(self, name: str = "fake", dimension: int = 8):
        self.name = name
        self.dimension = dimension
        self.encode_calls = 0

    def encode(self, texts, convert_to_numpy=True, show_progress_bar=False):
        self.encode_calls += 1
        out = np.zeros((len(texts), self.dimension), dtype=np.float32)
        for i, text in enumerate(texts):
            for ch in text:
                out[i, ord(ch) % self.dimension] += 1.0
        return out


class CountingFactory:
    def __init__(self, dimension: int = 8):
        self.dimension = dimension
        self.calls = 0
        self.model = None

    def __call__(self, name: str):
        self.calls += 1
        self.model = FakeSentenceModel(name, self.dimension)
        return self.model


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


Outcome = Union[str, Exception, Callable[[List[Dict[str, str]]], str]]


class ScriptedProvider(LLMProvider):
    """
    Completion provider driven by a per-model script.

    Each model name maps to a list of outcomes consumed in order; the last
    outcome repeats forever. An outcome is response text, an exception to
    raise, or a callable(messages) -> text.
    """

    def __init__(self, script: Dict[str, List[Outcome]], kind: ProviderKind = ProviderKind.GROQ):
        self.kind = kind
        self.script = {name: list(outcomes) for name, outcomes in script.items()}
        self.calls: List[str] = []
        self.messages: List[List[Dict[str, str]]] = []

    async def complete(self, messages, model):
        self.calls.append(model)
        self.messages.append(messages)
        outcomes = self.script.get(model) or [""]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        text = outcome(messages) if callable(outcome) else outcome
        return LLMResponse(
            text=text,
            model=model,
            provider=self.kind.value,
            input_tokens=10,
            output_tokens=20,
            latency_ms=1.0,
            timestamp=datetime.utcnow(),
        )


def questions_in_prompt(prompt: str) -> List[str]:
    """The numbered questions of a rendered answers prompt."""
    block = prompt.split("ВОПРОСЫ:\n", 1)[1].split("\n\n", 1)[0]
    return [re.sub(r"^\d+\.\s*", "", line) for line in block.splitlines() if line.strip()]


def echo_answers(messages: List[Dict[str, str]]) -> str:
    """A well-behaved model: answers every question of the prompt, in order."""
    questions = questions_in_prompt(messages[-1]["content"])
    return json.dumps(
        {"answers": [{"question": q, "answer": f"Ответ на: {q}"} for q in questions]},
        ensure_ascii=False,
    )


def make_entry(entry_id: str, vector, question: str = "", answer: str = "", **kwargs) -> CorpusEntry:
    return CorpusEntry(
        id=entry_id,
        vector=list(vector),
        question=question or f"Вопрос {entry_id}?",
        answer=answer or f"Ответ {entry_id}.",
        **kwargs,
    )


def write_corpus(path, entries: List[dict]):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(entries, f, ensure_ascii=False)
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def checklist_text():
    return CHECKLIST


@pytest.fixture
def backends():
    return [
        ModelBackend(name="model-a", provider=ProviderKind.GROQ, endpoint="http://a", priority=0),
        ModelBackend(name="model-b", provider=ProviderKind.GROQ, endpoint="http://b", priority=1),
    ]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float):
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def corpus_file(tmp_path):
    entries = [
        {"faq_id": "1", "embedding": [1.0, 0.0], "question": "Как оплатить?", "answer": "Перейдите в раздел Платежи.",
         "category": "payments", "usefulness": 90},
        {"faq_id": "2", "embedding": [0.0, 1.0], "question": "Где выписка?", "answer": "В разделе Мой Банк.",
         "category": "bank", "usefulness": 70},
        {"faq_id": "3", "embedding": [0.9, 0.1], "question": "Можно ли оплатить картой?", "answer": "Да, можно.",
         "category": "payments", "usefulness": 85},
    ]
    return write_corpus(tmp_path / "faq-embeddings.json", entries)
