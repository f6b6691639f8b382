from types import SimpleNamespace

import anthropic
import httpx
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from faq_assistant.core.errors import AuthError, MalformedResponse, ProviderError, RateLimitError
from faq_assistant.models.llm import ProviderKind
from faq_assistant.services.llm_provider import (
    ClaudeProvider,
    OpenAICompatibleProvider,
    create_provider,
    error_for_status,
    is_rate_limit_message,
)

MESSAGES = [{"role": "system", "content": "Будь краток."}, {"role": "user", "content": "Привет"}]


@pytest.mark.parametrize("status, message, kind", [
    (401, "bad key", AuthError),
    (403, "forbidden", AuthError),
    (429, "slow down", RateLimitError),
    (400, "Rate limit reached for model", RateLimitError),
    (500, "tokens per minute exceeded", RateLimitError),
    (500, "internal error", ProviderError),
    (503, "", ProviderError),
])
def test_error_for_status(status, message, kind):
    error = error_for_status(status, message, backend="m")
    assert type(error) is kind
    assert error.status == status
    assert error.backend == "m"


def test_rate_limit_message_detection():
    assert is_rate_limit_message("Error 429: Too Many Requests")
    assert is_rate_limit_message("You exceeded your current quota")
    assert not is_rate_limit_message("")
    assert not is_rate_limit_message("model not found")


@pytest.fixture
def received():
    return []


@pytest.fixture
async def server(received):
    async def completions(request):
        body = await request.json()
        received.append((body, request.headers.copy()))
        mode = request.query.get("mode", "ok")
        if mode == "429":
            return web.json_response({"error": {"message": "Rate limit reached"}}, status=429)
        if mode == "401":
            return web.json_response({"error": {"message": "Invalid API key"}}, status=401)
        if mode == "500":
            return web.Response(status=500, text="<html>oops</html>")
        if mode == "html":
            return web.Response(status=200, text="<html>not json</html>")
        if mode == "empty":
            return web.json_response({"choices": []})
        return web.json_response({
            "choices": [{"message": {"content": f"echo: {body['messages'][-1]['content']}"}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3},
        })

    app = web.Application()
    app.router.add_post("/chat/completions", completions)
    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


def provider_for(server, mode="ok", kind=ProviderKind.GROQ):
    endpoint = str(server.make_url(f"/chat/completions?mode={mode}"))
    return OpenAICompatibleProvider(kind, "secret", endpoint, temperature=0.2, max_tokens=100)


async def test_openai_compatible_success(server, received):
    response = await provider_for(server).complete(MESSAGES, "llama-test")

    assert response.text == "echo: Привет"
    assert response.model == "llama-test"
    assert response.provider == "groq"
    assert (response.input_tokens, response.output_tokens) == (12, 3)

    body, headers = received[0]
    assert body["model"] == "llama-test"
    assert body["temperature"] == 0.2
    assert headers["Authorization"] == "Bearer secret"
    assert "X-Title" not in headers


async def test_openrouter_sends_attribution_headers(server, received):
    await provider_for(server, kind=ProviderKind.OPENROUTER).complete(MESSAGES, "m")
    _, headers = received[0]
    assert headers["X-Title"] == "FAQ Assistant"
    assert "HTTP-Referer" in headers


@pytest.mark.parametrize("mode, kind", [
    ("429", RateLimitError),
    ("401", AuthError),
    ("500", ProviderError),
    ("html", MalformedResponse),
    ("empty", MalformedResponse),
])
async def test_openai_compatible_errors(server, mode, kind):
    with pytest.raises(kind) as excinfo:
        await provider_for(server, mode).complete(MESSAGES, "m")
    assert excinfo.value.backend == "m"


async def test_unreachable_endpoint_is_provider_error():
    provider = OpenAICompatibleProvider(ProviderKind.GROQ, "k", "http://127.0.0.1:9/chat/completions")
    with pytest.raises(ProviderError):
        await provider.complete(MESSAGES, "m")


class FakeMessages:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


async def test_claude_lifts_system_and_prices_call():
    reply = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="Здравствуйте")],
        usage=SimpleNamespace(input_tokens=1_000_000, output_tokens=0),
    )
    provider = ClaudeProvider("key", max_tokens=50)
    messages = FakeMessages(reply)
    provider._client = SimpleNamespace(messages=messages)

    response = await provider.complete(MESSAGES, "claude-haiku-4-5-20251001")

    assert response.text == "Здравствуйте"
    assert response.cost_usd == pytest.approx(0.80)
    assert messages.kwargs["system"] == "Будь краток."
    assert messages.kwargs["messages"] == [{"role": "user", "content": "Привет"}]


async def test_claude_connection_error_is_provider_error():
    provider = ClaudeProvider("key")
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
    provider._client = SimpleNamespace(messages=FakeMessages(error))

    with pytest.raises(ProviderError):
        await provider.complete(MESSAGES, "claude-haiku-4-5-20251001")


def test_create_provider_picks_implementation():
    assert isinstance(create_provider(ProviderKind.ANTHROPIC, "k", "http://x"), ClaudeProvider)
    groq = create_provider(ProviderKind.GROQ, "k", "http://x")
    assert isinstance(groq, OpenAICompatibleProvider)
    assert groq.get_provider_name() == "groq"
