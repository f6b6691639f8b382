"""
Offline corpus builder: faq.json -> faq-embeddings.json.

=== THE BUILD ===

    faq.json (published FAQ items)
         │
         ▼
    1. LOAD: validate every item (FAQItem)
         │
         ▼
    2. TEXT: "Вопрос: <q>\\nОтвет: <a>", capped at 8000 chars
         │
         ▼
    3. EMBED: TextEmbedder.embed_batch, in batches (unit-length vectors)
         │
         ▼
    4. WRITE: JSON array of {faq_id, embedding, question, answer (capped at
              700 chars), category, usefulness}; the previous file is kept as
              a timestamped backup

The item is embedded with its FULL answer (up to the 8000-char cap), but
only the first 700 answer chars are stored: retrieval quality comes from the
vector, the stored answer is only a style example for prompts.

This runs on demand (scripts/build_embeddings.py), never at query time.
"""

import json
import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from faq_assistant.core.errors import DataUnavailable, EmbeddingError
from faq_assistant.models.faq import CorpusEntry, FAQItem
from faq_assistant.services.embedder import TextEmbedder

logger = logging.getLogger(__name__)

EMBED_TEXT_CHAR_CAP = 8000
STORED_ANSWER_CHAR_CAP = 700


def combined_text(item: FAQItem, cap: int = EMBED_TEXT_CHAR_CAP) -> str:
    return f"Вопрос: {item.question}\nОтвет: {item.answer}"[:cap]


def load_faq_items(path: Union[str, Path]) -> List[FAQItem]:
    """
    Raises:
        DataUnavailable: missing file, bad JSON, or an invalid item
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise DataUnavailable(f"Could not read FAQ file {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise DataUnavailable(f"FAQ file {path} must contain a JSON array")

    try:
        items = [FAQItem.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise DataUnavailable(f"Invalid FAQ item in {path}: {exc}") from exc

    logger.info(f"Loaded {len(items)} FAQ items from {path}")
    return items


class CorpusBuilder:

    def __init__(
        self,
        embedder: TextEmbedder,
        batch_size: int = 32,
        text_char_cap: int = EMBED_TEXT_CHAR_CAP,
        answer_char_cap: int = STORED_ANSWER_CHAR_CAP,
    ):
        self.embedder = embedder
        self.batch_size = batch_size
        self.text_char_cap = text_char_cap
        self.answer_char_cap = answer_char_cap

    def build(self, items: List[FAQItem]) -> List[CorpusEntry]:
        """
        Embed every item. A batch whose embedding fails is logged and skipped;
        the run fails only if nothing could be embedded.

        Raises:
            EmbeddingError: no item could be embedded
        """
        entries: List[CorpusEntry] = []
        skipped = 0
        start = time.monotonic()

        for offset in range(0, len(items), self.batch_size):
            batch = items[offset : offset + self.batch_size]
            try:
                vectors = self.embedder.embed_batch(
                    [combined_text(item, self.text_char_cap) for item in batch]
                )
            except EmbeddingError as e:
                logger.error(f"Failed to embed items {offset + 1}-{offset + len(batch)}: {e}")
                skipped += len(batch)
                continue

            for item, vector in zip(batch, vectors):
                entries.append(CorpusEntry(
                    id=item.id,
                    vector=vector.tolist(),
                    question=item.question,
                    answer=item.answer[: self.answer_char_cap],
                    category=item.category,
                    usefulness=item.usefulness,
                ))

            done = offset + len(batch)
            elapsed = time.monotonic() - start
            logger.info(f"Progress: {done}/{len(items)} ({done / len(items) * 100:.1f}%), {elapsed:.1f}s elapsed")

        if items and not entries:
            raise EmbeddingError(f"None of the {len(items)} FAQ items could be embedded")
        if skipped:
            logger.warning(f"Skipped {skipped} FAQ items that failed to embed")
        return entries

    @staticmethod
    def write(entries: List[CorpusEntry], output_path: Union[str, Path], backup: bool = True) -> Optional[Path]:
        """Write the embedding file. Returns the backup path, if one was made."""
        output_path = Path(output_path)
        backup_path = None
        if backup and output_path.exists():
            backup_path = output_path.with_name(f"{output_path.stem}.backup-{int(time.time())}{output_path.suffix}")
            shutil.copyfile(output_path, backup_path)
            logger.info(f"Backed up existing embeddings to {backup_path.name}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(
                [e.model_dump(by_alias=True) for e in entries],
                f,
                ensure_ascii=False,
            )

        size_mb = output_path.stat().st_size / 1024 / 1024
        logger.info(f"Wrote {len(entries)} embeddings to {output_path} ({size_mb:.2f} MB)")
        return backup_path

    def build_file(self, faq_path: Union[str, Path], output_path: Union[str, Path], backup: bool = True) -> int:
        items = load_faq_items(faq_path)
        entries = self.build(items)
        self.write(entries, output_path, backup=backup)
        return len(entries)
