import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

from faq_assistant.core.dependencies import AssistantContext, get_context
from faq_assistant.models.faq import GeneratedAnswer

logger = logging.getLogger(__name__)


async def run_generation_job(
    source_text: str,
    questions: Optional[Sequence[str]] = None,
    context: Optional[AssistantContext] = None,
    output_path: Optional[Union[str, Path]] = None,
    max_questions: Optional[int] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> List[GeneratedAnswer]:
    """
    Source text in, FAQ answers out.

    Without explicit questions, candidate questions are generated first and
    (up to max_questions of) them are answered. Errors propagate to the caller.
    """
    context = context or get_context()
    await context.startup()

    if not source_text.strip():
        logger.warning("Empty source text, nothing to generate")
        return []

    if not questions:
        generated = await context.orchestrator.generate_questions(source_text)
        questions = [q.question for q in generated]
        if max_questions:
            questions = questions[:max_questions]
        logger.info(f"Answering {len(questions)} generated questions")

    answers = await context.orchestrator.generate_answers(
        source_text, list(questions), cancel_event=cancel_event
    )

    usage = context.orchestrator.backend_usage()
    if usage:
        served = ", ".join(f"batch {u['batch'] + 1}: {u['backend']}" for u in usage)
        logger.info(f"Backends used: {served}")
    else:
        logger.info("All answers served from cache")

    if context.orchestrator.usage_logger:
        context.orchestrator.usage_logger.log_summary()

    if output_path:
        export_answers(answers, output_path, backends=usage)

    return answers


def export_answers(
    answers: List[GeneratedAnswer],
    output_path: Union[str, Path],
    backends: Optional[List[dict]] = None,
) -> Path:
    """Write the answers as a JSON document ready for the FAQ editors."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    document = {
        "generated_at": datetime.utcnow().isoformat(),
        "count": len(answers),
        "answers": [a.model_dump() for a in answers],
        "backends": backends or [],
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(document, f, ensure_ascii=False, indent=2)
    logger.info(f"Exported {len(answers)} answers to {output_path}")
    return output_path
