"""Inference provider adapters: one outbound request per call, no retries."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
import anthropic
import openai

from .errors import ProviderError, TransportError
from .rate_limiter import ProviderRateLimiter


class ProviderAdapter(ABC):
    """
    Translate a domain prompt into one provider's request shape and pull
    raw text back out of its response envelope.

    Subclasses implement ``build_request``, ``_send`` and ``parse_envelope``.
    Adapters hold only their own configuration; retries belong to the
    caller's RetryController, so every ``call`` is exactly one request.
    """

    name = "provider"

    def __init__(self, provider_config: Dict[str, Any], rate_limiter: Optional[ProviderRateLimiter] = None):
        """
        Initialize adapter.

        Args:
            provider_config: Dict from Config.get_provider_config()
            rate_limiter: Shared limiter for this provider, if any
        """
        self.name = provider_config.get("provider", self.name)
        self.model = provider_config.get("model", "")
        self.api_key = provider_config.get("api_key", "")
        self.temperature = provider_config.get("temperature", 0.2)
        self.max_tokens = provider_config.get("max_tokens", 2000)
        self.timeout = provider_config.get("timeout", 60)
        self.base_url = provider_config.get("base_url")
        self.rate_limiter = rate_limiter
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def build_request(self, prompt: str) -> Dict[str, Any]:
        """Build the provider request payload (credentials excluded)."""
        pass

    @abstractmethod
    async def _send(self, request: Dict[str, Any], session: Optional[aiohttp.ClientSession]) -> Any:
        """Perform the single outbound request and return the raw envelope."""
        pass

    @abstractmethod
    def parse_envelope(self, envelope: Any) -> str:
        """Extract response text from the provider envelope."""
        pass

    async def call(self, prompt: str, session: Optional[aiohttp.ClientSession] = None) -> str:
        """
        Send one prompt and return the provider's raw text.

        Args:
            prompt: Domain prompt
            session: Shared aiohttp session, used by HTTP adapters when open

        Returns:
            Raw response text

        Raises:
            TransportError: Network failure or timeout
            ProviderError: Non-success status, or missing credential (401)
        """
        if not self.api_key:
            raise ProviderError(401, "no credential configured", self.name)

        request = self.build_request(prompt)
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        self.logger.debug(f"Calling {self.name} model {self.model} ({len(prompt)} prompt chars)")
        envelope = await self._send(request, session)
        return self.parse_envelope(envelope)


class ReplicateAdapter(ProviderAdapter):
    """Replicate predictions API over aiohttp, waiting synchronously for output."""

    name = "replicate"
    DEFAULT_BASE_URL = "https://api.replicate.com/v1"

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "input": {
                "prompt": prompt,
                "max_new_tokens": self.max_tokens,
                "temperature": self.temperature,
                "top_p": 0.9,
            }
        }

    async def _send(self, request: Dict[str, Any], session: Optional[aiohttp.ClientSession]) -> Any:
        if session is not None and not session.closed:
            return await self._post(session, request)
        async with aiohttp.ClientSession() as own_session:
            return await self._post(own_session, request)

    async def _post(self, session: aiohttp.ClientSession, request: Dict[str, Any]) -> Any:
        url = f"{self.base_url or self.DEFAULT_BASE_URL}/models/{self.model}/predictions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }
        try:
            async with session.post(
                url,
                json=request,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status not in (200, 201):
                    detail = (await resp.text())[:200]
                    raise ProviderError(resp.status, detail, self.name)
                try:
                    return await resp.json(content_type=None)
                except json.JSONDecodeError as e:
                    raise ProviderError(502, "envelope is not JSON", self.name) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{self.name} request failed: {e!r}") from e

    def parse_envelope(self, envelope: Any) -> str:
        if not isinstance(envelope, dict):
            raise ProviderError(502, "unexpected envelope type", self.name)

        status = envelope.get("status")
        if status in ("failed", "canceled"):
            raise ProviderError(502, f"prediction {status}: {envelope.get('error') or ''}".strip(), self.name)
        if status in ("starting", "processing"):
            raise TransportError(f"{self.name} prediction still {status} after synchronous wait")

        output = envelope.get("output")
        # Language models stream tokens back as a list of fragments
        if isinstance(output, list):
            return "".join(str(part) for part in output if part is not None)
        if isinstance(output, str):
            return output
        raise ProviderError(502, "prediction has no output", self.name)


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API via the official SDK, run in a worker thread."""

    name = "anthropic"

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    async def _send(self, request: Dict[str, Any], session: Optional[aiohttp.ClientSession]) -> Any:
        client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        try:
            return await asyncio.to_thread(client.messages.create, **request)
        except anthropic.APIStatusError as e:
            raise ProviderError(e.status_code, e.message, self.name) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(f"{self.name} request failed: {e}") from e

    def parse_envelope(self, envelope: Any) -> str:
        blocks = getattr(envelope, "content", None) or []
        parts = []
        for block in blocks:
            text = getattr(block, "text", None)
            if isinstance(text, str):
                parts.append(text)
        return "".join(parts)


class OpenAIAdapter(ProviderAdapter):
    """OpenAI-compatible chat completions (OpenAI, xAI/Grok via base URL)."""

    name = "openai"

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    async def _send(self, request: Dict[str, Any], session: Optional[aiohttp.ClientSession]) -> Any:
        client = openai.OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )
        try:
            return await asyncio.to_thread(client.chat.completions.create, **request)
        except openai.APIStatusError as e:
            raise ProviderError(e.status_code, e.message, self.name) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"{self.name} request failed: {e}") from e

    def parse_envelope(self, envelope: Any) -> str:
        choices = getattr(envelope, "choices", None) or []
        if not choices:
            raise ProviderError(502, "completion has no choices", self.name)
        return choices[0].message.content or ""


_ADAPTERS = {
    "replicate": ReplicateAdapter,
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "xai": OpenAIAdapter,
}


def build_adapter(
    provider_config: Dict[str, Any],
    rate_limiter: Optional[ProviderRateLimiter] = None,
) -> ProviderAdapter:
    """
    Create the adapter for a provider config.

    Args:
        provider_config: Dict with provider, model, api_key, ...
        rate_limiter: Limiter shared by all adapters of this provider

    Returns:
        ProviderAdapter instance

    Raises:
        ValueError: If the provider is not supported
    """
    provider = provider_config.get("provider", "")
    adapter_cls = _ADAPTERS.get(provider)
    if adapter_cls is None:
        raise ValueError(f"Unsupported provider: {provider}")
    return adapter_cls(provider_config, rate_limiter)
