"""Tests for provider adapters."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import anthropic
import httpx
import openai
import pytest

from acquisition_engine.errors import ProviderError, TransportError
from acquisition_engine.providers import (
    AnthropicAdapter,
    OpenAIAdapter,
    ReplicateAdapter,
    build_adapter,
)


class FakeResponse:
    """Minimal aiohttp response usable as an async context manager."""

    def __init__(self, status=200, payload=None, text="", json_error=False):
        self.status = status
        self._payload = payload
        self._text = text
        self._json_error = json_error

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        if self._json_error:
            raise json.JSONDecodeError("Expecting value", self._text, 0)
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class FakeSession:
    """Records posts and replies with a canned response (or raises)."""

    def __init__(self, response=None, error=None):
        self.closed = False
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _config(provider, **overrides):
    config = {
        "provider": provider,
        "model": "meta/meta-llama-3-70b-instruct" if provider == "replicate" else "test-model",
        "api_key": "secret-token-123",
        "temperature": 0.2,
        "max_tokens": 500,
        "timeout": 5,
    }
    config.update(overrides)
    return config


def _anthropic_request():
    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _openai_request():
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class TestProviderAdapterBase:
    """Tests for behavior shared by all adapters."""

    async def test_missing_credential_fails_before_network(self):
        """No key means a non-retryable 401 and no outbound request."""
        adapter = ReplicateAdapter(_config("replicate", api_key=""))
        session = FakeSession(FakeResponse(200, {"status": "succeeded", "output": ["x"]}))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call("prompt", session)

        assert exc_info.value.status == 401
        assert exc_info.value.retryable is False
        assert session.posts == []

    async def test_rate_limiter_is_acquired_per_call(self):
        limiter = MagicMock()
        limiter.acquire = AsyncMock()
        adapter = ReplicateAdapter(_config("replicate"), rate_limiter=limiter)
        session = FakeSession(FakeResponse(200, {"status": "succeeded", "output": ["ok"]}))

        await adapter.call("prompt", session)
        await adapter.call("prompt", session)

        assert limiter.acquire.await_count == 2

    @pytest.mark.parametrize("provider", ["replicate", "anthropic", "openai", "xai"])
    def test_request_body_never_contains_credential(self, provider):
        adapter = build_adapter(_config(provider))
        body = json.dumps(adapter.build_request("Analyze this business"))
        assert "secret-token-123" not in body


class TestReplicateAdapter:
    """Tests for ReplicateAdapter."""

    async def test_successful_prediction_joins_output(self):
        session = FakeSession(FakeResponse(201, {"status": "succeeded", "output": ['{"score"', ": 0.8}"]}))
        adapter = ReplicateAdapter(_config("replicate"))

        text = await adapter.call("Analyze", session)

        assert text == '{"score": 0.8}'
        url, kwargs = session.posts[0]
        assert url == "https://api.replicate.com/v1/models/meta/meta-llama-3-70b-instruct/predictions"
        assert kwargs["headers"]["Authorization"] == "Bearer secret-token-123"
        assert kwargs["headers"]["Prefer"] == "wait"
        assert kwargs["json"]["input"]["prompt"] == "Analyze"
        assert kwargs["json"]["input"]["max_new_tokens"] == 500

    async def test_string_output_returned_as_is(self):
        session = FakeSession(FakeResponse(200, {"status": "succeeded", "output": "plain text"}))
        assert await ReplicateAdapter(_config("replicate")).call("p", session) == "plain text"

    async def test_rate_limited_status_is_retryable(self):
        session = FakeSession(FakeResponse(429, text="Too many requests"))
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateAdapter(_config("replicate")).call("p", session)
        assert exc_info.value.status == 429
        assert exc_info.value.retryable is True

    async def test_auth_failure_is_not_retryable(self):
        session = FakeSession(FakeResponse(401, text="Unauthenticated"))
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateAdapter(_config("replicate")).call("p", session)
        assert exc_info.value.retryable is False

    async def test_connection_error_is_transport_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("connection reset"))
        with pytest.raises(TransportError):
            await ReplicateAdapter(_config("replicate")).call("p", session)

    async def test_non_json_envelope(self):
        session = FakeSession(FakeResponse(200, text="<html>", json_error=True))
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateAdapter(_config("replicate")).call("p", session)
        assert exc_info.value.status == 502

    async def test_failed_prediction(self):
        session = FakeSession(FakeResponse(200, {"status": "failed", "error": "CUDA out of memory"}))
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateAdapter(_config("replicate")).call("p", session)
        assert "CUDA out of memory" in str(exc_info.value)

    async def test_unfinished_prediction_is_retryable(self):
        session = FakeSession(FakeResponse(201, {"status": "processing", "output": None}))
        with pytest.raises(TransportError):
            await ReplicateAdapter(_config("replicate")).call("p", session)

    async def test_custom_base_url(self):
        session = FakeSession(FakeResponse(200, {"status": "succeeded", "output": "x"}))
        adapter = ReplicateAdapter(_config("replicate", base_url="http://localhost:5000/v1"))
        await adapter.call("p", session)
        assert session.posts[0][0].startswith("http://localhost:5000/v1/models/")


class TestAnthropicAdapter:
    """Tests for AnthropicAdapter."""

    async def test_text_blocks_are_joined(self):
        envelope = SimpleNamespace(content=[
            SimpleNamespace(type="text", text='{"overall_risk_score": '),
            SimpleNamespace(type="text", text="0.3}"),
            SimpleNamespace(type="tool_use", text=None),
        ])
        with patch("acquisition_engine.providers.anthropic.Anthropic") as mock_cls:
            mock_cls.return_value.messages.create.return_value = envelope
            text = await AnthropicAdapter(_config("anthropic")).call("Assess risk")

        assert text == '{"overall_risk_score": 0.3}'
        mock_cls.assert_called_once_with(api_key="secret-token-123", timeout=5, max_retries=0)
        kwargs = mock_cls.return_value.messages.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Assess risk"}]
        assert kwargs["model"] == "test-model"

    async def test_status_error_maps_to_provider_error(self):
        error = anthropic.RateLimitError(
            message="rate limited",
            response=httpx.Response(429, request=_anthropic_request()),
            body=None,
        )
        with patch("acquisition_engine.providers.anthropic.Anthropic") as mock_cls:
            mock_cls.return_value.messages.create.side_effect = error
            with pytest.raises(ProviderError) as exc_info:
                await AnthropicAdapter(_config("anthropic")).call("p")

        assert exc_info.value.status == 429
        assert exc_info.value.retryable is True

    async def test_connection_error_maps_to_transport_error(self):
        with patch("acquisition_engine.providers.anthropic.Anthropic") as mock_cls:
            mock_cls.return_value.messages.create.side_effect = anthropic.APIConnectionError(
                request=_anthropic_request()
            )
            with pytest.raises(TransportError):
                await AnthropicAdapter(_config("anthropic")).call("p")


class TestOpenAIAdapter:
    """Tests for OpenAIAdapter."""

    async def test_first_choice_content(self):
        envelope = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"a": 1}'))])
        with patch("acquisition_engine.providers.openai.OpenAI") as mock_cls:
            mock_cls.return_value.chat.completions.create.return_value = envelope
            text = await OpenAIAdapter(_config("openai")).call("p")
        assert text == '{"a": 1}'

    async def test_no_choices_is_provider_error(self):
        with patch("acquisition_engine.providers.openai.OpenAI") as mock_cls:
            mock_cls.return_value.chat.completions.create.return_value = SimpleNamespace(choices=[])
            with pytest.raises(ProviderError):
                await OpenAIAdapter(_config("openai")).call("p")

    async def test_xai_uses_base_url(self):
        envelope = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))])
        with patch("acquisition_engine.providers.openai.OpenAI") as mock_cls:
            mock_cls.return_value.chat.completions.create.return_value = envelope
            adapter = build_adapter(_config("xai", base_url="https://api.x.ai/v1"))
            await adapter.call("p")
        assert mock_cls.call_args.kwargs["base_url"] == "https://api.x.ai/v1"
        assert adapter.name == "xai"

    async def test_bad_request_is_not_retryable(self):
        error = openai.BadRequestError(
            message="invalid model",
            response=httpx.Response(400, request=_openai_request()),
            body=None,
        )
        with patch("acquisition_engine.providers.openai.OpenAI") as mock_cls:
            mock_cls.return_value.chat.completions.create.side_effect = error
            with pytest.raises(ProviderError) as exc_info:
                await OpenAIAdapter(_config("openai")).call("p")
        assert exc_info.value.retryable is False


class TestBuildAdapter:
    """Tests for build_adapter()."""

    @pytest.mark.parametrize("provider,cls", [
        ("replicate", ReplicateAdapter),
        ("anthropic", AnthropicAdapter),
        ("openai", OpenAIAdapter),
        ("xai", OpenAIAdapter),
    ])
    def test_known_providers(self, provider, cls):
        assert isinstance(build_adapter(_config(provider)), cls)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            build_adapter(_config("cohere"))
