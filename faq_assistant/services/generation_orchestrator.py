"""
Generation orchestrator: source text + questions -> answers.

=== PIPELINE ===

    generate_answers(source_text, questions)
            │
            ▼
      1. cache_lookup   hit -> return it. No embedding, ranking or LLM calls.
            │ miss
            ▼
      2. retrieve       top-K similar FAQ items + corpus style guide
            │           (corpus or embedder unavailable -> no examples, continue)
            ▼
      3. compress       checklist sections relevant to the source text
            │
            ▼
      4. generate       questions split into batches of batch_size,
            │           one prompt per batch, batches strictly in order
            ▼
      5. cache_write    best effort

=== FAILOVER (per batch) ===

    next available backend ──► call (bounded by request_timeout)
        │ ok + parseable            -> record, next batch
        │ RateLimitError            -> mark rate-limited, try the next backend
        │ other error / timeout /   -> backend failed for THIS batch,
        │ unparseable output           try the next backend
        ▼
    no backend left to try:
        every backend failed        -> GenerationFailed (batch abandoned)
        otherwise (rate limits)     -> cooldown, reset pool, retry the batch
                                       (at most max_rounds, then RateLimitExhausted)

Rate limits alone never abandon a batch; they always end in a cooldown.
A backend that failed a batch stays excluded for that batch across cooldown
rounds, so "every backend failed" is reachable even after a cooldown.

=== CANCELLATION ===

cancel_event is checked before each batch. Once it is set no new batch
starts and GenerationCancelled is raised; a call already in flight is left
to finish (its result is discarded, nothing is cached).
"""

import asyncio
import functools
import logging
import time
from contextlib import nullcontext
from contextvars import ContextVar
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from faq_assistant.core.errors import (
    AuthError,
    BackendError,
    DataUnavailable,
    EmbeddingError,
    GenerationCancelled,
    GenerationFailed,
    MalformedResponse,
    ProviderError,
    RateLimitError,
)
from faq_assistant.models.faq import GeneratedAnswer, GeneratedQuestion, RankedResult
from faq_assistant.models.llm import LLMResponse, ModelBackend, ProviderKind
from faq_assistant.services.answer_cache import AnswerCache
from faq_assistant.services.checklist_compressor import ChecklistCompressor
from faq_assistant.services.llm_provider import LLMProvider
from faq_assistant.services.llm_usage_logger import LLMUsageLogger
from faq_assistant.services.model_pool import (
    AllBackendsRateLimited,
    ModelPool,
    RetryPolicy,
    call_with_policy,
)
from faq_assistant.services.pipeline_logger import PipelineStageLogger
from faq_assistant.services.prompt_builder import PromptBuilder
from faq_assistant.services.response_parser import ParseResult, parse_answers, parse_questions
from faq_assistant.services.retriever import Retriever
from faq_assistant.services.style_analyzer import StyleAnalyzer

logger = logging.getLogger(__name__)

Parser = Callable[[str], ParseResult]


class GenerationOrchestrator:

    def __init__(
        self,
        pool: ModelPool,
        providers: Dict[ProviderKind, LLMProvider],
        prompt_builder: Optional[PromptBuilder] = None,
        retriever: Optional[Retriever] = None,
        compressor: Optional[ChecklistCompressor] = None,
        cache: Optional[AnswerCache] = None,
        style_analyzer: Optional[StyleAnalyzer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 3,
        request_timeout: float = 30.0,
        usage_logger: Optional[LLMUsageLogger] = None,
        stage_logger: Optional[PipelineStageLogger] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.pool = pool
        self.providers = providers
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.retriever = retriever
        self.compressor = compressor
        self.cache = cache
        self.style_analyzer = style_analyzer
        self.retry_policy = retry_policy or RetryPolicy(cooldown_seconds=pool.cooldown_seconds)
        self.batch_size = batch_size
        self.request_timeout = request_timeout
        self.usage_logger = usage_logger
        self.stage_logger = stage_logger

        # per asyncio task: concurrent requests never see each other's batches
        self._served: ContextVar[Tuple[dict, ...]] = ContextVar(f"served_{id(self)}", default=())

    # ------------------------------------------------------------------
    # Stage logging
    # ------------------------------------------------------------------

    def _stage(self, name: str, metadata: Optional[dict] = None):
        if self.stage_logger is None:
            return nullcontext()
        return self.stage_logger.log_stage(name, metadata)

    def _update_stage(self, metadata: dict):
        if self.stage_logger is not None:
            self.stage_logger.update_stage(metadata)

    def _start_run(self, operation: str):
        if self.stage_logger is not None:
            self.stage_logger.start_run(operation)

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    def _log_failure(self, backend: ModelBackend, operation: str, error: Exception, start: float):
        if self.usage_logger is not None:
            self.usage_logger.log_failure(
                backend, operation, error, latency_ms=(time.monotonic() - start) * 1000
            )

    async def _call_backend(
        self, backend: ModelBackend, messages: List[Dict[str, str]], operation: str
    ) -> LLMResponse:
        provider = self.providers.get(backend.provider)
        if provider is None:
            raise AuthError(f"No provider configured for {backend.provider.value}", backend=backend.name)

        start = time.monotonic()
        try:
            return await asyncio.wait_for(
                provider.complete(messages, backend.name), timeout=self.request_timeout
            )
        except asyncio.TimeoutError as exc:
            error = ProviderError(
                f"No response within {self.request_timeout:.0f}s", backend=backend.name
            )
            self._log_failure(backend, operation, error, start)
            raise error from exc
        except BackendError as exc:
            self._log_failure(backend, operation, exc, start)
            raise

    async def complete(
        self,
        messages: List[Dict[str, str]],
        operation: str,
        parse: Parser,
    ) -> Tuple[ModelBackend, object]:
        """
        Get one parseable completion, rotating backends as needed.

        Returns:
            (backend that served it, parsed value)

        Raises:
            GenerationFailed: every backend failed with a non-rate-limit error
            RateLimitExhausted: still rate-limited after all cooldown rounds
        """
        failed: Dict[str, str] = {}

        async def attempt_round() -> Tuple[ModelBackend, object]:
            limited: Set[str] = set()
            while True:
                backend = self.pool.next_available(exclude=failed.keys() | limited)
                if backend is None:
                    if len(failed) >= len(self.pool):
                        details = "; ".join(f"{name}: {err}" for name, err in failed.items())
                        raise GenerationFailed(f"All {len(self.pool)} backends failed ({details})")
                    raise AllBackendsRateLimited(
                        f"No backend available ({len(failed)} failed, the rest rate-limited)"
                    )

                try:
                    response = await self._call_backend(backend, messages, operation)
                except RateLimitError:
                    limited.add(backend.name)
                    self.pool.mark_rate_limited(backend.name)
                    continue
                except BackendError as exc:
                    logger.warning(f"Backend {backend.name} failed for {operation}: {exc}")
                    failed[backend.name] = str(exc)
                    self.pool.mark_failed(backend.name)
                    continue

                result = parse(response.text)
                if not result.ok:
                    error = MalformedResponse(result.reason, backend=backend.name)
                    logger.warning(f"Backend {backend.name} returned unusable {operation}: {error}")
                    if self.usage_logger is not None:
                        self.usage_logger.log_call(response, operation, success=False, error=str(error))
                    failed[backend.name] = str(error)
                    self.pool.mark_failed(backend.name)
                    continue

                if self.usage_logger is not None:
                    self.usage_logger.log_call(response, operation)
                self.pool.record_success(backend.name)
                return backend, result.value

        def on_retry(round_number: int):
            self.pool.reset()

        return await call_with_policy(self.retry_policy, attempt_round, on_retry=on_retry)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _retrieve(self, source_text: str) -> Tuple[List[RankedResult], str]:
        if self.retriever is None:
            return [], ""

        with self._stage("retrieve", {"top_k": self.retriever.top_k}):
            try:
                examples = await self.retriever.find_similar(source_text)
                style_guide = ""
                if self.style_analyzer is not None:
                    style_guide = self.style_analyzer.style_guide(self.retriever.store.load())
            except (DataUnavailable, EmbeddingError) as e:
                logger.warning(f"Retrieval unavailable, generating without examples: {e}")
                self._update_stage({"degraded": True, "examples": 0})
                return [], ""
            self._update_stage({"examples": len(examples)})
        return examples, style_guide

    def _compress(self, source_text: str) -> str:
        if self.compressor is None:
            return ""
        with self._stage("compress"):
            rules = self.compressor.compressed_prompt(source_text)
            self._update_stage({"sections": self.compressor.relevant_sections(source_text)})
        return rules

    async def generate_answers(
        self,
        source_text: str,
        questions: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[GeneratedAnswer]:
        """
        One answer per question, in question order.

        Raises:
            GenerationFailed: a batch was abandoned (every backend failed)
            RateLimitExhausted: every backend stayed rate-limited
            GenerationCancelled: cancel_event was set before a batch started
        """
        questions = list(questions)
        if not questions:
            return []
        served: List[dict] = []
        self._served.set(())
        self._start_run("answers")

        key = AnswerCache.key(source_text, questions)
        if self.cache is not None:
            with self._stage("cache_lookup", {"questions": len(questions)}):
                cached = self.cache.get(key)
                self._update_stage({"hit": cached is not None})
            if cached is not None:
                return cached

        examples, style_guide = await self._retrieve(source_text)
        rules = self._compress(source_text)

        batches = [
            questions[i : i + self.batch_size] for i in range(0, len(questions), self.batch_size)
        ]
        results: List[GeneratedAnswer] = []

        with self._stage("generate", {"questions": len(questions), "batches": len(batches)}):
            for index, batch in enumerate(batches):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Generation cancelled before batch {index + 1}/{len(batches)}")
                    raise GenerationCancelled(
                        f"Cancelled after {index} of {len(batches)} batches"
                    )

                prompt = self.prompt_builder.build_answers_prompt(
                    source_text, batch, examples=examples, rules=rules, style_guide=style_guide
                )
                backend, answers = await self.complete(
                    prompt.messages, "answers", functools.partial(parse_answers, questions=batch)
                )
                served.append({
                    "batch": index,
                    "backend": backend.name,
                    "provider": backend.provider.value,
                    "questions": len(batch),
                })
                self._served.set(tuple(served))
                results.extend(answers)
                logger.info(
                    f"Batch {index + 1}/{len(batches)}: {len(batch)} answers from {backend.name}"
                )
            self._update_stage({"backends": [s["backend"] for s in served]})

        if self.cache is not None:
            with self._stage("cache_write"):
                self._update_stage({"stored": self.cache.put(key, results)})

        return results

    async def generate_questions(self, source_text: str) -> List[GeneratedQuestion]:
        """Candidate questions a reader might ask about the source text."""
        self._start_run("questions")
        examples, _ = await self._retrieve(source_text)
        prompt = self.prompt_builder.build_questions_prompt(source_text, examples)
        with self._stage("generate_questions"):
            backend, questions = await self.complete(
                [{"role": "user", "content": prompt}], "questions", parse_questions
            )
            self._update_stage({"backend": backend.name, "questions": len(questions)})
        logger.info(f"Generated {len(questions)} questions with {backend.name}")
        return questions

    def backend_usage(self) -> List[dict]:
        """
        Which backend served which batch of the most recent generate_answers()
        awaited in the current task. Empty after a cache hit.
        """
        return list(self._served.get())
