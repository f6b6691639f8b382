"""
LLM usage/cost logger.

Appends one JSON line per backend call to logs/llm_usage.jsonl, failed calls
included, so a rate-limit storm is visible after the fact:

    {"timestamp": "...", "backend": "llama-3.3-70b-versatile", "operation": "answers", "success": true, ...}
    {"timestamp": "...", "backend": "llama-3.1-8b-instant", "operation": "answers", "success": false,
     "error": "RateLimitError: groq API error: 429 - ..."}

Load with pd.read_json("logs/llm_usage.jsonl", lines=True).
"""

import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from faq_assistant.models.llm import LLMResponse, LLMUsageRecord, ModelBackend

logger = logging.getLogger(__name__)


class LLMUsageLogger:

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / "llm_usage.jsonl"
        self.total_cost_usd: float = 0.0
        self.calls: int = 0
        self._by_backend: Dict[str, Dict[str, float]] = defaultdict(
            lambda: {"ok": 0, "failed": 0, "tokens": 0, "cost_usd": 0.0}
        )

    def _append(self, record: LLMUsageRecord):
        self.calls += 1
        self.total_cost_usd += record.cost_usd
        totals = self._by_backend[record.backend]
        totals["ok" if record.success else "failed"] += 1
        totals["tokens"] += record.input_tokens + record.output_tokens
        totals["cost_usd"] += record.cost_usd
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")

    def log_call(
        self,
        response: LLMResponse,
        operation: str,
        success: bool = True,
        error: Optional[str] = None,
    ):
        """
        Record a call that returned text.

        success=False covers responses that came back but could not be parsed.
        """
        self._append(LLMUsageRecord(
            timestamp=response.timestamp,
            backend=response.model,
            provider=response.provider,
            operation=operation,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            cost_usd=response.cost_usd,
            latency_ms=response.latency_ms,
            success=success,
            error=error,
        ))

    def log_failure(self, backend: ModelBackend, operation: str, error: Exception, latency_ms: float = 0.0):
        """Record a call that raised before returning any text."""
        self._append(LLMUsageRecord(
            timestamp=datetime.utcnow(),
            backend=backend.name,
            provider=backend.provider.value,
            operation=operation,
            latency_ms=latency_ms,
            success=False,
            error=f"{type(error).__name__}: {error}",
        ))

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Per-backend totals since this logger was created."""
        return {name: dict(totals) for name, totals in self._by_backend.items()}

    def log_summary(self):
        if not self.calls:
            return
        parts = [
            f"{name}: {int(t['ok'])} ok / {int(t['failed'])} failed, {int(t['tokens'])} tokens"
            for name, t in self._by_backend.items()
        ]
        logger.info(f"LLM usage: {self.calls} calls, ${self.total_cost_usd:.4f} ({'; '.join(parts)})")
