#!/usr/bin/env python3
"""
Build the FAQ embedding file used for retrieval.

=== HOW TO RUN ===

    # From the project root, with the default paths from Settings:
    python scripts/build_embeddings.py

    # Explicit paths / another model (the runtime must use the same model!):
    python scripts/build_embeddings.py --faq data/faq.json --output data/faq-embeddings.json \\
        --model intfloat/multilingual-e5-small

The existing output file is backed up (faq-embeddings.backup-<ts>.json)
unless --no-backup is given.
"""

import sys
import os
import argparse
import logging
from pathlib import Path

# Add project root to Python path so we can import faq_assistant modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faq_assistant.core.config import settings
from faq_assistant.core.errors import DataUnavailable, EmbeddingError
from faq_assistant.services.corpus_builder import CorpusBuilder
from faq_assistant.services.embedder import TextEmbedder

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Embed faq.json into the retrieval corpus file")
    parser.add_argument("--faq", type=Path, default=settings.faq_path,
                        help=f"Input FAQ JSON (default: {settings.faq_path})")
    parser.add_argument("--output", type=Path, default=settings.embeddings_path,
                        help=f"Output embedding file (default: {settings.embeddings_path})")
    parser.add_argument("--model", default=settings.embedding_model,
                        help=f"Sentence-transformer model (default: {settings.embedding_model})")
    parser.add_argument("--batch-size", type=int, default=32)
    parser.add_argument("--no-backup", action="store_true", help="Overwrite without a backup copy")
    args = parser.parse_args()

    embedder = TextEmbedder(args.model, query_prefix=settings.embedding_query_prefix)
    builder = CorpusBuilder(embedder, batch_size=args.batch_size, answer_char_cap=settings.answer_char_cap)

    try:
        count = builder.build_file(args.faq, args.output, backup=not args.no_backup)
    except (DataUnavailable, EmbeddingError) as e:
        logger.error(f"Build failed: {e}")
        return 1

    print(f"\n  Embedded {count} FAQ items -> {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
