"""
Component wiring.

AssistantContext owns every long-lived component of the assistant: the
corpus, the embedding model, the parsed checklist, the answer cache, the
backend pool. Everything that used to be implicit module state lives here,
so tests (and tools) can build an isolated context and throw it away, and
reset() returns a context to its freshly-built state without rebuilding it.

Entry points call get_context() for the process-wide instance.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

from faq_assistant.core.config import settings, Settings
from faq_assistant.core.errors import ConfigurationError, DataUnavailable
from faq_assistant.models.llm import ProviderKind
from faq_assistant.services.answer_cache import AnswerCache, FileKeyValueStore, KeyValueStore
from faq_assistant.services.checklist_compressor import ChecklistCompressor
from faq_assistant.services.editor_review import EditorReviewer
from faq_assistant.services.embedder import TextEmbedder
from faq_assistant.services.embedding_store import EmbeddingStore
from faq_assistant.services.generation_orchestrator import GenerationOrchestrator
from faq_assistant.services.llm_provider import LLMProvider, create_provider
from faq_assistant.services.llm_usage_logger import LLMUsageLogger
from faq_assistant.services.model_pool import ModelPool, RetryPolicy
from faq_assistant.services.pipeline_logger import PipelineStageLogger
from faq_assistant.services.prompt_builder import PromptBuilder
from faq_assistant.services.retriever import Retriever
from faq_assistant.services.style_analyzer import StyleAnalyzer

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> Settings:
    return settings


@dataclass
class AssistantContext:
    settings: Settings
    store: EmbeddingStore
    embedder: TextEmbedder
    retriever: Retriever
    compressor: Optional[ChecklistCompressor]
    cache: AnswerCache
    style_analyzer: StyleAnalyzer
    pool: ModelPool
    providers: Dict[ProviderKind, LLMProvider]
    orchestrator: GenerationOrchestrator
    reviewer: EditorReviewer

    async def startup(self, preload_model: bool = False):
        """Collect stale cache entries, check the corpus; optionally warm up the embedding model."""
        self.cache.init()
        self.check_corpus()
        if preload_model:
            await self.embedder.preload()

    def check_corpus(self) -> bool:
        """
        Whether the corpus can be ranked against queries of the configured model.

        Problems are logged, not raised: generation still works, only without examples.
        """
        try:
            dimension = self.store.dimension
        except DataUnavailable as e:
            logger.warning(f"FAQ corpus unavailable, answers will have no examples: {e}")
            return False

        expected = self.settings.embedding_dimension
        if dimension != expected:
            logger.warning(
                f"FAQ corpus has dimension {dimension} but {self.settings.embedding_model} "
                f"produces {expected}; rebuild it with scripts/build_embeddings.py"
            )
            return False
        return True

    def reset(self):
        """Drop every memoized resource; the next request reloads what it needs."""
        self.store.clear()
        self.embedder.reset()
        if self.compressor is not None:
            self.compressor.clear_cache()
        self.style_analyzer.clear()
        self.pool.reset()
        logger.info("Assistant context reset")


def build_providers(settings: Settings) -> Dict[ProviderKind, LLMProvider]:
    """One provider per kind that has an API key configured."""
    providers: Dict[ProviderKind, LLMProvider] = {}
    for backend in settings.available_backends():
        if backend.provider in providers:
            continue
        providers[backend.provider] = create_provider(
            backend.provider,
            api_key=settings.api_keys.get(backend.provider.value) or "",
            endpoint=backend.endpoint,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    return providers


def build_context(
    settings: Optional[Settings] = None,
    cache_store: Optional[KeyValueStore] = None,
) -> AssistantContext:
    """
    Raises:
        ConfigurationError: no usable backend, or duplicate backend names
    """
    settings = settings or get_settings()

    try:
        backends = settings.available_backends()
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    store = EmbeddingStore(settings.embeddings_path, answer_char_cap=settings.answer_char_cap)
    embedder = TextEmbedder(settings.embedding_model, query_prefix=settings.embedding_query_prefix)
    retriever = Retriever(store, embedder, top_k=settings.retrieval_top_k)

    try:
        compressor = ChecklistCompressor.from_file(settings.checklist_path, brand_terms=settings.brand_terms)
    except DataUnavailable as e:
        logger.warning(f"Checklist unavailable, prompts will carry no editorial rules: {e}")
        compressor = None

    cache = AnswerCache(
        cache_store or FileKeyValueStore(settings.cache_dir, max_bytes=settings.cache_max_bytes),
        fresh_ttl_seconds=settings.cache_fresh_ttl_seconds,
        gc_ttl_seconds=settings.cache_gc_ttl_seconds,
    )

    pool = ModelPool(backends, cooldown_seconds=settings.backend_cooldown_seconds)
    providers = build_providers(settings)
    prompt_builder = PromptBuilder(brand=settings.brand_name, max_prompt_tokens=settings.max_prompt_tokens)
    style_analyzer = StyleAnalyzer()

    orchestrator = GenerationOrchestrator(
        pool=pool,
        providers=providers,
        prompt_builder=prompt_builder,
        retriever=retriever,
        compressor=compressor,
        cache=cache,
        style_analyzer=style_analyzer,
        retry_policy=RetryPolicy(
            max_rounds=settings.max_cooldown_rounds,
            cooldown_seconds=settings.backend_cooldown_seconds,
        ),
        batch_size=settings.generation_batch_size,
        request_timeout=settings.backend_request_timeout_seconds,
        usage_logger=LLMUsageLogger(settings.logs_dir),
        stage_logger=PipelineStageLogger(settings.logs_dir),
    )
    reviewer = EditorReviewer(orchestrator, prompt_builder, compressor)

    logger.info(
        f"Assistant ready: {len(backends)} backends ({', '.join(b.name for b in backends)}), "
        f"checklist={'yes' if compressor else 'no'}"
    )

    return AssistantContext(
        settings=settings,
        store=store,
        embedder=embedder,
        retriever=retriever,
        compressor=compressor,
        cache=cache,
        style_analyzer=style_analyzer,
        pool=pool,
        providers=providers,
        orchestrator=orchestrator,
        reviewer=reviewer,
    )


_context: Optional[AssistantContext] = None


def get_context() -> AssistantContext:
    global _context
    if _context is None:
        _context = build_context()
    return _context


def reset_context():
    """Forget the process-wide context; the next get_context() rebuilds it."""
    global _context
    _context = None
