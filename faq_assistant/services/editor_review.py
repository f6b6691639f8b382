"""
Editor review: check a question/answer pair against the editorial checklist.

review() asks a model to correct terminology, SEO and structure and to tie
each change to a checklist item; only the checklist sections relevant to the
text are sent (ChecklistCompressor). refine() applies one follow-up comment
from the editor on top of a previous result; changes and comments accumulate
across iterations.

Both go through GenerationOrchestrator.complete(), so review calls share the
backend pool, rotation and cooldowns with answer generation.
"""

import logging
from typing import List, Optional

from faq_assistant.models.review import ReviewResult
from faq_assistant.services.checklist_compressor import ChecklistCompressor
from faq_assistant.services.generation_orchestrator import GenerationOrchestrator
from faq_assistant.services.prompt_builder import PromptBuilder
from faq_assistant.services.response_parser import parse_review

logger = logging.getLogger(__name__)


class EditorReviewer:

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        prompt_builder: Optional[PromptBuilder] = None,
        compressor: Optional[ChecklistCompressor] = None,
    ):
        self.orchestrator = orchestrator
        self.prompt_builder = prompt_builder or orchestrator.prompt_builder
        self.compressor = compressor

    async def review(
        self, question: str, answer: str, comments: Optional[List[str]] = None
    ) -> ReviewResult:
        comments = [c.strip() for c in (comments or []) if c.strip()]
        rules = ""
        if self.compressor is not None:
            rules = self.compressor.compressed_prompt(f"{question}\n{answer}")

        prompt = self.prompt_builder.build_review_prompt(question, answer, rules=rules, comments=comments)
        backend, result = await self.orchestrator.complete(
            [{"role": "user", "content": prompt}], "review", parse_review
        )

        logger.info(
            f"Review by {backend.name}: {len(result.changes)} changes, "
            f"compliance={result.compliance_score}, seo={result.seo_score}"
        )
        return result.model_copy(update={
            "original_text": f"{question}\n\n{answer}",
            "applied_comments": comments,
        })

    async def refine(self, previous: ReviewResult, comment: str) -> ReviewResult:
        """
        Raises:
            ValueError: blank comment
        """
        comment = comment.strip()
        if not comment:
            raise ValueError("Refinement comment must not be empty")

        prompt = self.prompt_builder.build_refine_prompt(
            previous.corrected_question, previous.corrected_answer, comment
        )
        backend, result = await self.orchestrator.complete(
            [{"role": "user", "content": prompt}], "refine", parse_review
        )

        logger.info(f"Refinement #{len(previous.applied_comments) + 1} by {backend.name}: "
                    f"{len(result.changes)} new changes")
        return previous.model_copy(update={
            "corrected_question": result.corrected_question,
            "corrected_answer": result.corrected_answer,
            "changes": previous.changes + result.changes,
            "compliance_score": result.compliance_score if result.compliance_score is not None
            else previous.compliance_score,
            "seo_score": result.seo_score if result.seo_score is not None else previous.seo_score,
            "applied_comments": previous.applied_comments + [comment],
        })
