"""
Completion providers.

=== ONE NARROW CONTRACT ===

    complete(messages, model) -> LLMResponse
    raises AuthError | RateLimitError | ProviderError | MalformedResponse

The orchestrator never sees aiohttp or anthropic exceptions; every provider
maps its transport's failures onto the kinds above. The only thing the
rotation logic needs is "was this a rate limit or not", decided from the HTTP
status or, when a provider reports it only in text, from the error message.

    LLMProvider (ABC)
        │
        ├── OpenAICompatibleProvider   Groq, OpenRouter (/chat/completions over aiohttp)
        └── ClaudeProvider             Anthropic (async SDK)

One provider instance serves every model of its kind; the model name travels
with each call.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

import aiohttp
import anthropic

from faq_assistant.core.errors import (
    AuthError,
    BackendError,
    MalformedResponse,
    ProviderError,
    RateLimitError,
)
from faq_assistant.models.llm import LLMResponse, ProviderKind

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(
    r"rate.?limit|too many requests|quota|\b429\b|tokens per minute|requests per",
    re.IGNORECASE,
)


def is_rate_limit_message(message: str) -> bool:
    """True when an error text carries a rate-limit signature."""
    return bool(message) and bool(RATE_LIMIT_PATTERN.search(message))


def error_for_status(status: int, message: str, backend: Optional[str] = None) -> BackendError:
    """Classify a failed HTTP response into the backend error taxonomy."""
    if status in (401, 403):
        return AuthError(message, backend=backend, status=status)
    if status == 429 or is_rate_limit_message(message):
        return RateLimitError(message, backend=backend, status=status)
    return ProviderError(message, backend=backend, status=status)


class LLMProvider(ABC):
    """
    Any provider must implement complete() which takes chat messages and a
    model name and returns an LLMResponse.
    """

    kind: ProviderKind

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]], model: str) -> LLMResponse:
        ...

    def get_provider_name(self) -> str:
        return self.kind.value


class OpenAICompatibleProvider(LLMProvider):
    """
    Groq and OpenRouter both speak the OpenAI chat-completions dialect.

    OpenRouter additionally wants HTTP-Referer / X-Title headers to attribute
    traffic; they are harmless elsewhere, so they are sent only for OpenRouter.
    """

    def __init__(
        self,
        kind: ProviderKind,
        api_key: str,
        endpoint: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        app_title: str = "FAQ Assistant",
        referer: str = "http://localhost",
    ):
        self.kind = kind
        self.api_key = api_key
        self.endpoint = endpoint
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.app_title = app_title
        self.referer = referer

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.kind == ProviderKind.OPENROUTER:
            headers["HTTP-Referer"] = self.referer
            headers["X-Title"] = self.app_title
        return headers

    @staticmethod
    async def _error_detail(response: aiohttp.ClientResponse) -> str:
        try:
            data = await response.json(content_type=None)
            message = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
        except (aiohttp.ContentTypeError, ValueError):
            message = None
        return message or response.reason or "unknown error"

    async def complete(self, messages: List[Dict[str, str]], model: str) -> LLMResponse:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        start = time.monotonic()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.endpoint, json=payload, headers=self._headers()) as response:
                    if response.status != 200:
                        detail = await self._error_detail(response)
                        raise error_for_status(
                            response.status,
                            f"{self.kind.value} API error: {response.status} - {detail}",
                            backend=model,
                        )
                    data = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise ProviderError(f"{self.kind.value} request failed: {exc}", backend=model) from exc
        except ValueError as exc:
            raise MalformedResponse(f"{self.kind.value} returned non-JSON body", backend=model) from exc

        elapsed_ms = (time.monotonic() - start) * 1000

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse(f"{self.kind.value} response has no choices", backend=model) from exc

        usage = data.get("usage") or {}
        result = LLMResponse(
            text=text,
            model=model,
            provider=self.kind.value,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            cost_usd=0.0,
            latency_ms=elapsed_ms,
            timestamp=datetime.utcnow(),
        )

        logger.info(
            f"LLM call: provider={self.kind.value}, model={model}, "
            f"tokens={result.input_tokens}+{result.output_tokens}, latency={elapsed_ms:.0f}ms"
        )
        return result


class ClaudeProvider(LLMProvider):
    """
    Anthropic Claude provider.

    The async client is created lazily on the first call. System messages are
    lifted out of the message list into the SDK's separate system parameter.
    """

    kind = ProviderKind.ANTHROPIC

    # Pricing per 1M tokens (update when Anthropic changes pricing)
    PRICING = {
        "claude-haiku-4-5-20251001": {"input": 0.80, "output": 4.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    }

    def __init__(self, api_key: str, temperature: float = 0.7, max_tokens: int = 2048):
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, messages: List[Dict[str, str]], model: str) -> LLMResponse:
        client = self._get_client()

        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        kwargs = {
            "model": model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [m for m in messages if m.get("role") != "system"],
        }
        if system:
            kwargs["system"] = system

        start = time.monotonic()
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.RateLimitError as exc:
            raise RateLimitError(f"anthropic rate limit: {exc}", backend=model, status=429) from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise AuthError(f"anthropic auth failed: {exc}", backend=model, status=exc.status_code) from exc
        except anthropic.APIStatusError as exc:
            raise error_for_status(exc.status_code, f"anthropic API error: {exc}", backend=model) from exc
        except anthropic.APIError as exc:
            raise ProviderError(f"anthropic request failed: {exc}", backend=model) from exc

        elapsed_ms = (time.monotonic() - start) * 1000

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        pricing = self.PRICING.get(model, {"input": 1.0, "output": 5.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000

        logger.info(
            f"LLM call: provider=anthropic, model={model}, "
            f"tokens={input_tokens}+{output_tokens}, cost=${cost:.6f}, latency={elapsed_ms:.0f}ms"
        )

        return LLMResponse(
            text=text,
            model=model,
            provider="anthropic",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            latency_ms=elapsed_ms,
            timestamp=datetime.utcnow(),
        )


def create_provider(
    kind: ProviderKind,
    api_key: str,
    endpoint: str,
    temperature: float = 0.7,
    max_tokens: int = 2048,
) -> LLMProvider:
    if kind == ProviderKind.ANTHROPIC:
        return ClaudeProvider(api_key, temperature=temperature, max_tokens=max_tokens)
    return OpenAICompatibleProvider(
        kind, api_key, endpoint, temperature=temperature, max_tokens=max_tokens
    )
