"""
Turn raw LLM text into validated models.

Models are asked for "ONLY JSON", and mostly comply, but the usual deviations
are handled here instead of failing the batch:

- a ```json fenced block, or prose before/after the object
- trailing commas before } or ]
- raw newlines inside string values (allowed via json.loads(strict=False))

Parsers return a tagged result instead of raising: ParseOk carries the value,
ParseFailure carries the reason. The orchestrator turns a ParseFailure into a
MalformedResponse for the backend that produced it and rotates, so one
sloppy model does not fail the whole request.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, List, TypeVar, Union

from pydantic import BaseModel, ValidationError

from faq_assistant.models.faq import GeneratedAnswer, GeneratedQuestion
from faq_assistant.models.review import ReviewResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_LIST_MARKER = re.compile(r"^(?:\d+[.)]|[-*•])\s*")


@dataclass(frozen=True)
class ParseOk(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class ParseFailure:
    reason: str
    raw: str = ""
    ok: bool = False


ParseResult = Union[ParseOk, ParseFailure]


class _AnswersEnvelope(BaseModel):
    answers: List[GeneratedAnswer]


def sanitize_json(text: str) -> str:
    """Strip code fences, BOM and trailing commas."""
    cleaned = text.strip().lstrip("\ufeff")
    cleaned = _FENCE.sub("", cleaned).strip()
    return _TRAILING_COMMA.sub(r"\1", cleaned)


def extract_json_block(text: str) -> str:
    """
    The outermost {...} (or [...] when the text starts with a list).

    Returns "" when there is no JSON-looking block at all.
    """
    cleaned = sanitize_json(text)
    if cleaned.startswith("["):
        end = cleaned.rfind("]")
        return cleaned[: end + 1] if end != -1 else ""

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return ""
    return cleaned[start : end + 1]


def _load(text: str) -> Union[Any, ParseFailure]:
    block = extract_json_block(text)
    if not block:
        return ParseFailure("no JSON object in response", raw=text[:200])
    try:
        return json.loads(block, strict=False)
    except json.JSONDecodeError as e:
        logger.debug(f"JSON decode failed at pos {e.pos}: {block[max(0, e.pos - 40):e.pos + 40]!r}")
        return ParseFailure(f"invalid JSON: {e}", raw=text[:200])


def parse_answers(text: str, questions: List[str]) -> ParseResult:
    """
    Parse {"answers": [{"question", "answer"}, ...]} for one batch.

    The model must return exactly one non-empty answer per question, in order.
    The returned answers carry the questions exactly as they were asked.
    """
    data = _load(text)
    if isinstance(data, ParseFailure):
        return data
    if isinstance(data, list):
        data = {"answers": data}

    try:
        envelope = _AnswersEnvelope.model_validate(data)
    except ValidationError as e:
        return ParseFailure(f"answers schema mismatch: {e.error_count()} errors", raw=text[:200])

    if len(envelope.answers) != len(questions):
        return ParseFailure(
            f"expected {len(questions)} answers, got {len(envelope.answers)}", raw=text[:200]
        )

    answers = []
    for question, item in zip(questions, envelope.answers):
        answer = item.answer.strip()
        if not answer:
            return ParseFailure(f"empty answer for question: {question[:60]}", raw=text[:200])
        answers.append(GeneratedAnswer(question=question, answer=answer))
    return ParseOk(answers)


def parse_review(text: str) -> ParseResult:
    data = _load(text)
    if isinstance(data, ParseFailure):
        return data
    if not isinstance(data, dict):
        return ParseFailure("review response is not an object", raw=text[:200])
    try:
        return ParseOk(ReviewResult.model_validate(data))
    except ValidationError as e:
        return ParseFailure(f"review schema mismatch: {e.error_count()} errors", raw=text[:200])


def parse_questions(text: str) -> ParseResult:
    """
    One question per line; numbering and bullets are stripped, lines that do
    not end with "?" are dropped, duplicates are kept once.
    """
    seen = set()
    questions: List[GeneratedQuestion] = []
    for line in text.splitlines():
        candidate = _LIST_MARKER.sub("", line.strip()).strip().strip('"')
        if not candidate.endswith("?") or candidate in seen:
            continue
        seen.add(candidate)
        questions.append(GeneratedQuestion(id=f"q-{len(questions)}", question=candidate))

    if not questions:
        return ParseFailure("no questions in response", raw=text[:200])
    return ParseOk(questions)
