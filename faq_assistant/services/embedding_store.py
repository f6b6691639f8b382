"""
Embedding Store: the precomputed FAQ corpus, loaded once.

=== WHERE THE DATA COMES FROM ===

The offline corpus builder (scripts/build_embeddings.py) embeds every FAQ item
and writes one JSON array:

    [
      {"faq_id": "123", "embedding": [0.01, ...], "question": "...",
       "answer": "...", "category": "...", "usefulness": 87},
      ...
    ]

At runtime we only read it. There is no FAISS index here: a few thousand
384-dimensional vectors fit in a ~10 MB float64 matrix and brute-force cosine
over it takes a few milliseconds (see ranker.py).

=== ALL OR NOTHING ===

Either every entry validates and the whole corpus is memoized, or load()
raises DataUnavailable and nothing is kept. A half-loaded corpus would
silently skew retrieval, which is worse than no retrieval.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
from pydantic import ValidationError

from faq_assistant.core.errors import DataUnavailable
from faq_assistant.models.faq import CorpusEntry

logger = logging.getLogger(__name__)


class EmbeddingStore:

    def __init__(self, path: Union[str, Path], answer_char_cap: Optional[int] = 700):
        self.path = Path(path)
        self.answer_char_cap = answer_char_cap

        self._entries: Optional[List[CorpusEntry]] = None
        self._matrix: Optional[np.ndarray] = None

    @property
    def is_loaded(self) -> bool:
        return self._entries is not None

    @property
    def dimension(self) -> int:
        return len(self.load()[0].vector)

    def load(self) -> List[CorpusEntry]:
        """
        Load and validate the corpus file (memoized after the first success).

        Raises:
            DataUnavailable: file missing, unreadable, not a JSON array, empty,
                an entry fails validation, or vector dimensions differ.
        """
        if self._entries is not None:
            return self._entries

        logger.info(f"Loading FAQ embeddings from {self.path}")

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as exc:
            raise DataUnavailable(
                f"Embedding file not found: {self.path}. "
                f"Run scripts/build_embeddings.py to create it."
            ) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise DataUnavailable(f"Could not read embedding file {self.path}: {exc}") from exc

        if not isinstance(raw, list):
            raise DataUnavailable(
                f"Embedding file {self.path} must contain a JSON array, got {type(raw).__name__}"
            )
        if not raw:
            raise DataUnavailable(f"Embedding file {self.path} contains no entries")

        entries = []
        dimension = None
        for position, item in enumerate(raw):
            try:
                entry = CorpusEntry.model_validate(item)
            except ValidationError as exc:
                raise DataUnavailable(
                    f"Invalid corpus entry at position {position} in {self.path}: {exc}"
                ) from exc

            if dimension is None:
                dimension = len(entry.vector)
            elif len(entry.vector) != dimension:
                raise DataUnavailable(
                    f"Dimension mismatch at position {position} (faq_id={entry.id}): "
                    f"expected {dimension}, got {len(entry.vector)}"
                )

            if self.answer_char_cap and len(entry.answer) > self.answer_char_cap:
                entry = entry.model_copy(update={"answer": entry.answer[: self.answer_char_cap]})

            entries.append(entry)

        self._entries = entries
        logger.info(f"Loaded {len(entries)} FAQ embeddings (dimension={dimension})")
        return self._entries

    def matrix(self) -> np.ndarray:
        """Corpus vectors as an (N, D) float64 array, row i = entry i."""
        if self._matrix is None:
            entries = self.load()
            self._matrix = np.asarray([e.vector for e in entries], dtype=np.float64)
        return self._matrix

    def clear(self):
        """Forget the loaded corpus; the next load() re-reads the file."""
        self._entries = None
        self._matrix = None
        logger.info("Embedding store cache cleared")
