"""
Text Embedder: arbitrary text -> unit-length vector.

=== LAZY, SHARED, LOADED ONCE ===

Loading a sentence-transformer takes seconds and ~100-500MB of RAM; encoding
one short text afterwards takes milliseconds. So the model is:

- loaded lazily, on the first embed() call (or an explicit preload()),
- loaded at most once per TextEmbedder instance, and one instance is shared
  by every caller through AssistantContext,
- loaded under an asyncio.Lock: if two coroutines call embed() before the
  model is ready, the second one waits for the first load instead of
  starting its own.

Model loading and inference are blocking CPU work, so both run in a worker
thread (asyncio.to_thread) and the event loop keeps serving other tasks.

=== NORMALIZATION ===

Output vectors are L2-normalized with faiss.normalize_L2, so cosine similarity
against a normalized corpus equals the dot product. The ranker still computes
the full cosine (it must also work for corpora built by other tools), so this
is a contract of embed(), not something the ranker relies on.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

import faiss
import numpy as np
from sentence_transformers import SentenceTransformer

from faq_assistant.core.errors import EmbeddingError

logger = logging.getLogger(__name__)

WARMUP_TEXT = "Инициализация модели"


class TextEmbedder:

    def __init__(
        self,
        model_name: str = "intfloat/multilingual-e5-small",
        model_factory: Optional[Callable[[str], Any]] = None,
        query_prefix: str = "",
    ):
        """
        Args:
            model_name: Sentence-transformer model. The corpus must have been
                embedded with the same model or the vectors are not comparable.
            model_factory: Builds the model from its name. Defaults to
                SentenceTransformer; tests inject a lightweight stand-in.
            query_prefix: Prepended to every text (e5 models were trained with
                "query: " / "passage: " prefixes; the shipped corpus uses none).
        """
        self.model_name = model_name
        self.query_prefix = query_prefix
        self._model_factory = model_factory or SentenceTransformer
        self._model = None
        self._load_lock: Optional[asyncio.Lock] = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _lock(self) -> asyncio.Lock:
        # Created on first use so the lock binds to the running loop
        if self._load_lock is None:
            self._load_lock = asyncio.Lock()
        return self._load_lock

    def _load_model_sync(self):
        if self._model is None:
            logger.info(f"Loading embedding model: {self.model_name} (first time only)")
            try:
                self._model = self._model_factory(self.model_name)
            except Exception as exc:
                raise EmbeddingError(f"Could not load embedding model {self.model_name}: {exc}") from exc
            logger.info("Embedding model loaded successfully")
        return self._model

    async def _get_model(self):
        if self._model is not None:
            return self._model
        async with self._lock():
            # Another coroutine may have finished loading while we waited
            if self._model is None:
                await asyncio.to_thread(self._load_model_sync)
        return self._model

    def _encode(self, model, texts: List[str]) -> np.ndarray:
        try:
            embeddings = model.encode(
                [self.query_prefix + t for t in texts],
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise EmbeddingError(f"Embedding inference failed: {exc}") from exc

        # faiss.normalize_L2 works in place on a contiguous float32 matrix
        embeddings = np.ascontiguousarray(np.atleast_2d(embeddings), dtype=np.float32)
        faiss.normalize_L2(embeddings)
        return embeddings.astype(np.float64)

    async def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Returns:
            float64 array of shape (D,), unit length (a zero output stays zero)

        Raises:
            EmbeddingError: model load or inference failed
        """
        model = await self._get_model()
        vectors = await asyncio.to_thread(self._encode, model, [text])
        return vectors[0]

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        """Synchronous batch embedding for offline jobs. Returns (len(texts), D)."""
        if not texts:
            return np.zeros((0, 0), dtype=np.float64)
        model = self._load_model_sync()
        return self._encode(model, texts)

    async def preload(self) -> bool:
        """Warm up the model in the background; failures are logged, never raised."""
        try:
            await self.embed(WARMUP_TEXT)
            logger.info("Embedding model preloaded")
            return True
        except EmbeddingError as e:
            logger.warning(f"Failed to preload embedding model: {e}")
            return False

    def reset(self):
        self._model = None
        self._load_lock = None
