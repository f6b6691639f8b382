"""
RAG retrieval layer.

    Source text pasted by the editor
            │
            ▼
      ┌─────────────┐
      │  Retriever   │  ← THIS MODULE
      │              │
      │  1. Embed    │  (TextEmbedder)
      │  2. Rank     │  (ranker.top_k_async over EmbeddingStore)
      └──────┬───────┘
             │
             ▼
      Ranked style examples
      (PromptBuilder numbers them into the prompt)

The examples are not facts for the answer (the source text is the only source
of truth); they show the LLM how existing FAQ items of the same topic are
phrased and structured.
"""

import logging
import time
from typing import List, Optional

from faq_assistant.core.errors import EmbeddingError
from faq_assistant.models.faq import RankedResult
from faq_assistant.services.embedder import TextEmbedder
from faq_assistant.services.embedding_store import EmbeddingStore
from faq_assistant.services.ranker import top_k_async

logger = logging.getLogger(__name__)


class Retriever:

    def __init__(self, store: EmbeddingStore, embedder: TextEmbedder, top_k: int = 5):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k

    async def find_similar(self, text: str, top_k: Optional[int] = None) -> List[RankedResult]:
        """
        Rank the corpus against the text and return the best matches.

        Raises:
            DataUnavailable: corpus file missing or malformed
            EmbeddingError: the query could not be embedded, or its dimension
                differs from the corpus (built with another model)
        """
        k = self.top_k if top_k is None else top_k
        start = time.monotonic()

        corpus = self.store.load()
        query = await self.embedder.embed(text)
        if len(query) != self.store.dimension:
            raise EmbeddingError(
                f"Query embedding has dimension {len(query)} but the corpus has "
                f"{self.store.dimension}; rebuild the embeddings with {self.embedder.model_name}"
            )
        results = await top_k_async(query, corpus, k, matrix=self.store.matrix())

        elapsed_ms = (time.monotonic() - start) * 1000
        if results:
            top = ", ".join(f"{r.score:.2f}" for r in results[:3])
            logger.info(
                f"Found {len(results)} similar FAQs among {len(corpus)} in {elapsed_ms:.0f}ms "
                f"(top scores: {top})"
            )
        return results
