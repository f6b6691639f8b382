"""
FAQ corpus and generation models.

In the retrieval core, the unit of search is a whole FAQ item (question +
answer), not a chunk of a longer document: every item was embedded offline as
"Вопрос: ...\\nОтвет: ..." and the vectors are shipped alongside the text in a
single JSON file.

Why these fields?
- id: stable across rebuilds, so cached answers and logs can point at an item
- vector: the precomputed embedding, fixed dimension for the whole corpus
- answer: capped (700 chars by default) at build time to bound memory
- category / usefulness: metadata for display and style analysis; NOT used
  in the similarity math
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List


class CorpusEntry(BaseModel):
    """
    One FAQ item with its precomputed embedding.

    Field aliases match the offline file format (faq_id, embedding) so the
    file can be validated directly with CorpusEntry.model_validate(...).
    Immutable after load.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="faq_id")
    vector: List[float] = Field(alias="embedding", min_length=1)
    question: str
    answer: str
    category: str = ""
    usefulness: float = Field(default=0.0, ge=0, le=100)


class RankedResult(BaseModel):
    """A CorpusEntry paired with its cosine similarity to the query."""
    entry: CorpusEntry
    score: float  # in [-1, 1], higher = more similar
    rank: int     # 0-based position in the ranked output


class GeneratedQuestion(BaseModel):
    id: str
    question: str
    selected: bool = False


class GeneratedAnswer(BaseModel):
    question: str
    answer: str


class ChecklistSection(BaseModel):
    """
    A numbered rule block of the editorial checklist.

    id matches "<major>.<minor>" (e.g. "1.6"), or "header" for the preamble.
    body starts with the boundary line itself and runs up to, not including,
    the next boundary line.
    """
    id: str
    title: str
    body: str


class FAQItem(BaseModel):
    """A published FAQ item as exported to faq.json (input of the corpus builder)."""
    id: str
    question: str
    answer: str
    category: str = ""
    subcategory: str = ""
    usefulness: float = Field(default=0.0, ge=0, le=100)
    path: str = ""
