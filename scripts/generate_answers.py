#!/usr/bin/env python3
"""
Generate FAQ answers for a source text.

=== HOW TO RUN ===

    # Generate candidate questions, answer the first 5:
    python scripts/generate_answers.py --source product.txt --max-questions 5

    # Answer your own questions (one per line):
    python scripts/generate_answers.py --source product.txt --questions questions.txt \\
        --output out/answers.json

    # Only list candidate questions:
    python scripts/generate_answers.py --source product.txt --questions-only

    # Review an existing question/answer pair against the checklist:
    python scripts/generate_answers.py --review-question "..." --review-answer "..." \\
        --refine "Сделай короче"

Answers for the same source text and questions are served from the answer
cache for 24 hours (see scripts/cache_admin.py).
"""

import sys
import os
import asyncio
import argparse
import logging
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faq_assistant.core.dependencies import get_context
from faq_assistant.core.errors import FAQAssistantError, GenerationCancelled
from faq_assistant.tasks.generation_job import run_generation_job

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def read_lines(path: Path) -> list:
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


async def run(args) -> int:
    context = get_context()

    if args.review_question:
        result = await context.reviewer.review(args.review_question, args.review_answer or "")
        for comment in args.refine or []:
            result = await context.reviewer.refine(result, comment)
        print(result.model_dump_json(indent=2, by_alias=True))
        return 0

    source_text = args.source.read_text(encoding="utf-8")

    if args.questions_only:
        await context.startup()
        questions = await context.orchestrator.generate_questions(source_text)
        for q in questions:
            print(q.question)
        return 0

    questions = read_lines(args.questions) if args.questions else None
    answers = await run_generation_job(
        source_text,
        questions=questions,
        context=context,
        output_path=args.output,
        max_questions=args.max_questions,
    )

    for i, answer in enumerate(answers, 1):
        print(f"\n{i}. {answer.question}\n{answer.answer}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate FAQ questions and answers from a source text")
    parser.add_argument("--source", type=Path, help="Source text file (UTF-8)")
    parser.add_argument("--questions", type=Path, help="File with one question per line")
    parser.add_argument("--max-questions", type=int, default=None,
                        help="Answer at most N generated questions")
    parser.add_argument("--questions-only", action="store_true", help="Only generate candidate questions")
    parser.add_argument("--output", type=Path, default=None, help="Write answers as JSON")
    parser.add_argument("--review-question", default=None, help="Question to review")
    parser.add_argument("--review-answer", default=None, help="Answer to review")
    parser.add_argument("--refine", action="append", metavar="COMMENT",
                        help="Follow-up comment applied after the review (repeatable)")
    args = parser.parse_args()

    if not args.review_question and not args.source:
        parser.error("--source is required unless --review-question is given")

    try:
        return asyncio.run(run(args))
    except GenerationCancelled as e:
        logger.warning(f"Cancelled: {e}")
        return 130
    except FAQAssistantError as e:
        logger.error(f"Generation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
