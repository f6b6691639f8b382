from pydantic_settings import BaseSettings
from pydantic import Field, computed_field
from typing import List, Optional
import logging
from pathlib import Path
from dotenv import load_dotenv

from faq_assistant.models.llm import ModelBackend, ProviderKind

# .env must be loaded before Settings() reads the environment
load_dotenv()

logger = logging.getLogger(__name__)

GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"

# Priority order mirrors how the content team ranked the models by answer quality
DEFAULT_BACKENDS: List[ModelBackend] = [
    ModelBackend(name="llama-3.3-70b-versatile", provider=ProviderKind.GROQ,
                 endpoint=GROQ_API_URL, priority=0),
    ModelBackend(name="meta-llama/llama-4-scout-17b-16e-instruct", provider=ProviderKind.GROQ,
                 endpoint=GROQ_API_URL, priority=1),
    ModelBackend(name="llama-3.1-8b-instant", provider=ProviderKind.GROQ,
                 endpoint=GROQ_API_URL, priority=2),
    ModelBackend(name="meta-llama/llama-3.3-70b-instruct", provider=ProviderKind.OPENROUTER,
                 endpoint=OPENROUTER_API_URL, priority=3),
    ModelBackend(name="google/gemini-2.0-flash-exp:free", provider=ProviderKind.OPENROUTER,
                 endpoint=OPENROUTER_API_URL, priority=4),
    ModelBackend(name="claude-haiku-4-5-20251001", provider=ProviderKind.ANTHROPIC,
                 endpoint=ANTHROPIC_API_URL, priority=5),
]


class Settings(BaseSettings):
    # API Keys (all optional: a provider without a key is simply left out of the pool)
    groq_api_key: Optional[str] = Field(default=None, env="GROQ_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, env="OPENROUTER_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, env="ANTHROPIC_API_KEY")

    # Brand the FAQ is written for (used in prompts and the SEO trigger)
    brand_name: str = Field(default="Kaspi.kz")
    brand_terms: List[str] = Field(default=["kaspi", "каспи"])

    # Embedding settings
    embedding_model: str = Field(default="intfloat/multilingual-e5-small")
    embedding_dimension: int = Field(default=384)
    embedding_query_prefix: str = Field(default="")
    answer_char_cap: int = Field(default=700)

    # Retrieval / generation
    retrieval_top_k: int = Field(default=5)
    generation_batch_size: int = Field(default=3)
    max_prompt_tokens: int = Field(default=6000)
    llm_temperature: float = Field(default=0.7)
    llm_max_tokens: int = Field(default=2048)

    # Backend rotation
    backends: List[ModelBackend] = Field(default_factory=lambda: list(DEFAULT_BACKENDS))
    backend_cooldown_seconds: float = Field(default=60.0)
    backend_request_timeout_seconds: float = Field(default=30.0)
    max_cooldown_rounds: int = Field(default=5)

    # Answer cache
    cache_fresh_ttl_seconds: int = Field(default=24 * 60 * 60)
    cache_gc_ttl_seconds: int = Field(default=7 * 24 * 60 * 60)
    cache_max_bytes: Optional[int] = Field(default=5 * 1024 * 1024)

    @computed_field
    @property
    def api_keys(self) -> dict:
        return {
            ProviderKind.GROQ.value: self.groq_api_key,
            ProviderKind.OPENROUTER.value: self.openrouter_api_key,
            ProviderKind.ANTHROPIC.value: self.anthropic_api_key,
        }

    def available_backends(self) -> List[ModelBackend]:
        """
        Validated backend list: sorted by priority, duplicates rejected,
        auth-requiring backends without a configured key dropped.
        """
        seen = set()
        result = []
        for backend in sorted(self.backends, key=lambda b: b.priority):
            if backend.name in seen:
                raise ValueError(f"Duplicate backend name in configuration: {backend.name}")
            seen.add(backend.name)

            if backend.requires_auth and not (self.api_keys.get(backend.provider.value) or "").strip():
                logger.info(f"Skipping backend {backend.name}: no API key for {backend.provider.value}")
                continue
            result.append(backend)
        return result

    # File paths
    @property
    def base_dir(self) -> Path:
        return Path(__file__).parent.parent.parent

    @property
    def data_dir(self) -> Path:
        return self.base_dir / "data"

    @property
    def embeddings_path(self) -> Path:
        return self.data_dir / "faq-embeddings.json"

    @property
    def faq_path(self) -> Path:
        return self.data_dir / "faq.json"

    @property
    def checklist_path(self) -> Path:
        return self.data_dir / "checklist.txt"

    @property
    def cache_dir(self) -> Path:
        return self.base_dir / ".cache" / "answers"

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
