"""
Pipeline stage logger: where the time of one generation request goes.

LLMUsageLogger answers "what did each backend call cost". This one answers
"which step of generate_answers() was slow or failed":

    run 3f2a...  cache_lookup   1ms   hit=false
                 retrieve     180ms   examples=5
                 compress       2ms   sections=[1.6, 1.7, 1.9]
                 generate    4200ms   batches=2 backends=[...]
                 cache_write    3ms   stored=true

Every stage of a request shares one run_id (start_run()), so a request can be
pulled out of logs/pipeline_metrics.jsonl with
    jq 'select(.run_id=="3f2a...")'
Records are written even when the stage raises; status is then "error".
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class PipelineStageLogger:

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / "pipeline_metrics.jsonl"
        self.run_id: Optional[str] = None
        self._stages: List[dict] = []

    def start_run(self, operation: str) -> str:
        self.run_id = uuid.uuid4().hex[:12]
        logger.debug(f"Pipeline run {self.run_id} started: {operation}")
        return self.run_id

    def _write(self, record: dict):
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    @contextmanager
    def log_stage(self, stage_name: str, metadata: Optional[dict] = None):
        """
        Time one stage and append its record.

        Stages may nest; update_stage() always targets the innermost one.
        """
        record = {
            "timestamp": datetime.utcnow().isoformat(),
            "run_id": self.run_id,
            "stage": stage_name,
            "status": "ok",
            **(metadata or {}),
        }
        self._stages.append(record)

        start = time.monotonic()
        try:
            yield record
        except Exception as exc:
            record["status"] = "error"
            record["error"] = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000
            record["latency_ms"] = round(elapsed_ms, 2)
            self._stages.pop()
            self._write(record)

            log = logger.warning if record["status"] == "error" else logger.info
            log(f"Stage '{stage_name}' {record['status']} in {elapsed_ms:.0f}ms")

    def update_stage(self, metadata: dict):
        """Add fields known only once the stage has run (counts, cache hit, ...)."""
        if self._stages:
            self._stages[-1].update(metadata)
