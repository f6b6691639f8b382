#!/usr/bin/env python3
"""
Inspect and maintain the answer cache.

    python scripts/cache_admin.py stats     # entries, size, oldest/newest
    python scripts/cache_admin.py gc        # drop entries past the GC TTL (7 days)
    python scripts/cache_admin.py clear     # drop every cached answer
"""

import sys
import os
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faq_assistant.core.config import settings
from faq_assistant.services.answer_cache import AnswerCache, FileKeyValueStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Answer cache maintenance")
    parser.add_argument("command", choices=["stats", "gc", "clear"])
    args = parser.parse_args()

    cache = AnswerCache(
        FileKeyValueStore(settings.cache_dir, max_bytes=settings.cache_max_bytes),
        fresh_ttl_seconds=settings.cache_fresh_ttl_seconds,
        gc_ttl_seconds=settings.cache_gc_ttl_seconds,
    )

    if args.command == "gc":
        print(f"  Removed {cache.gc()} stale entries")
    elif args.command == "clear":
        print(f"  Removed {cache.clear_all()} entries")

    stats = cache.stats()
    print(f"  Cache directory: {settings.cache_dir}")
    print(f"  Entries:         {stats.total_entries}")
    print(f"  Size:            {stats.total_bytes / 1024:.1f} KB")
    print(f"  Oldest:          {stats.oldest or '-'}")
    print(f"  Newest:          {stats.newest or '-'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
