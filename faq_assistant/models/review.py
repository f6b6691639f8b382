"""
Models for the editor-review layer and the corpus style analysis.

ReviewResult is the schema the reviewer prompt asks the LLM to fill in. The
LLM answers in camelCase JSON (correctedQuestion, complianceScore, ...), so
the fields carry camelCase aliases; Python code uses the snake_case names.
"""

from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from typing import Dict, List, Optional

from faq_assistant.models.faq import CorpusEntry


class ChangeType(Enum):
    CRITICAL = "critical"
    STYLE = "style"
    SEO = "seo"


class ReviewChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str
    type: ChangeType
    description: str
    before: str = ""
    after: str = ""
    checklist_item: str = Field(default="", alias="checklistItem")


class ReviewResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    corrected_question: str = Field(alias="correctedQuestion")
    corrected_answer: str = Field(alias="correctedAnswer")
    changes: List[ReviewChange] = []
    compliance_score: Optional[int] = Field(default=None, ge=0, le=100, alias="complianceScore")
    seo_score: Optional[int] = Field(default=None, ge=0, le=10, alias="seoScore")
    original_text: str = ""
    applied_comments: List[str] = []


class StyleAnalysis(BaseModel):
    """
    Compressed description of how the existing FAQ corpus is written.

    Computed once over the whole corpus; the formatted version goes into the
    generation prompt so the LLM copies the house style without needing
    dozens of full examples.
    """
    total_items: int
    avg_question_length: int
    avg_answer_length: int
    percent_with_lists: int
    percent_with_steps: int
    percent_short_answers: int
    common_question_starts: List[str]
    common_answer_starts: List[str]
    key_phrases: List[str]
    examples_by_type: Dict[str, List[CorpusEntry]]
