"""
Error taxonomy for the FAQ assistant.

Every component boundary wraps lower-level failures (OSError, JSON decode
errors, pydantic ValidationError, aiohttp / anthropic client errors, timeouts)
into one of these kinds, so callers never have to catch library exceptions.

    FAQAssistantError
    ├── ConfigurationError
    ├── DataUnavailable        corpus or checklist missing/corrupt (fatal to retrieval)
    ├── EmbeddingError         model load or inference failed (retrieval skipped)
    ├── BackendError           one completion backend failed one call
    │   ├── RateLimitError     drives rotation + cooldown
    │   ├── AuthError
    │   ├── ProviderError      includes timeouts
    │   └── MalformedResponse  output not parseable into the expected schema
    ├── StorageQuotaExceeded   key/value store is full
    ├── CacheWriteFailure      write dropped even after GC (never escapes the cache)
    └── GenerationFailed       batch abandoned: every backend failed
        ├── RateLimitExhausted every backend stayed rate-limited through all cooldowns
        └── GenerationCancelled
"""

from typing import Optional


class FAQAssistantError(Exception):
    """Base exception for all FAQ assistant errors."""

    pass


class ConfigurationError(FAQAssistantError):
    pass


class DataUnavailable(FAQAssistantError):
    """Corpus or checklist document missing or malformed."""

    pass


class EmbeddingError(FAQAssistantError):
    pass


class BackendError(FAQAssistantError):
    """A single call to a single completion backend failed."""

    def __init__(self, message: str, backend: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.backend = backend
        self.status = status


class RateLimitError(BackendError):
    pass


class AuthError(BackendError):
    pass


class ProviderError(BackendError):
    pass


class MalformedResponse(BackendError):
    pass


class StorageQuotaExceeded(FAQAssistantError):
    pass


class CacheWriteFailure(FAQAssistantError):
    pass


class GenerationFailed(FAQAssistantError):
    pass


class RateLimitExhausted(GenerationFailed):
    def __init__(self, message: str = "All model backends are rate-limited. Try again later."):
        super().__init__(message)


class GenerationCancelled(GenerationFailed):
    pass
