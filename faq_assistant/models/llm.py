"""
Data models for the text-completion layer.

1. ModelBackend: one interchangeable completion backend (provider + model name).
   The pool of these replaces a hard-coded list of model-name strings: each
   descriptor is validated when Settings is built, so a typo in a provider name
   fails at startup instead of in the middle of a generation run.

2. LLMResponse: what comes back from any provider (raw text + metadata).
   Provider-agnostic: Groq, OpenRouter and Claude all produce this same shape.

3. LLMUsageRecord: cost/latency tracking for every backend call.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from typing import Optional


class ProviderKind(Enum):
    GROQ = "groq"
    OPENROUTER = "openrouter"
    ANTHROPIC = "anthropic"


class BackendState(Enum):
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"


class ModelBackend(BaseModel):
    """
    A single completion backend.

    Lower priority value = tried first. The endpoint is informational for the
    Claude provider (the SDK knows its own URL) and the POST target for the
    OpenAI-compatible providers.
    """
    name: str                   # model name sent to the provider, e.g. "llama-3.3-70b-versatile"
    provider: ProviderKind
    endpoint: str
    priority: int = Field(default=0, ge=0)
    requires_auth: bool = True


class LLMResponse(BaseModel):
    """Raw response from any completion backend."""
    text: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: float
    timestamp: datetime


class LLMUsageRecord(BaseModel):
    """
    Per-call record written to logs/llm_usage.jsonl.

    Failed calls are recorded too (success=False) so rate-limit storms show up
    when the file is loaded into pandas.
    """
    timestamp: datetime
    backend: str
    provider: str
    operation: str              # "answers", "questions", "review"
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: float = 0.0
    success: bool
    error: Optional[str] = None
