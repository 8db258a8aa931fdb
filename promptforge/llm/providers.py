"""
Provider clients: one upstream LLM call each.

Both providers are reached through LiteLLM, which normalises the wire format
into an OpenAI-style completion object. What still differs per provider is
the request shaping (Gemini takes safety settings and top-k; Groq does not)
and which key LiteLLM should present. Response parsing and failure
classification are shared: the first choice's message content is the result,
and any exception or empty content becomes an ``UpstreamError``.

Clients are stateless and immutable; ``build_provider_clients`` creates the
full closed set once at startup.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from litellm import acompletion

from promptforge.config.logging import get_logger
from promptforge.config.settings import ProviderSettings
from promptforge.llm.models import Provider, UpstreamError

logger = get_logger(__name__)

# Gemini blocks borderline prompts by default; prompt rewriting needs these off.
_GEMINI_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


def _shape_gemini(prompt: str, settings: ProviderSettings) -> dict[str, Any]:
    return {
        "model": settings.gemini_model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "top_p": settings.top_p,
        "top_k": 40,
        "safety_settings": _GEMINI_SAFETY_SETTINGS,
    }


def _shape_groq(prompt: str, settings: ProviderSettings) -> dict[str, Any]:
    return {
        "model": settings.groq_model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "top_p": settings.top_p,
    }


_REQUEST_SHAPERS: dict[Provider, Callable[[str, ProviderSettings], dict[str, Any]]] = {
    Provider.GEMINI: _shape_gemini,
    Provider.GROQ: _shape_groq,
}


def _parse_response(provider: Provider, response: Any) -> str:
    """
    Pull the generated text out of a completion response.

    Raises:
        UpstreamError: If the response has no choices or empty content
    """
    choices = getattr(response, "choices", None)
    if not choices:
        raise UpstreamError(provider, None, f"{provider.value} returned no candidates")

    content = choices[0].message.content
    if not content or not content.strip():
        raise UpstreamError(provider, None, f"{provider.value} returned empty content")
    return content.strip()


def _classify_failure(provider: Provider, error: Exception) -> UpstreamError:
    """
    Convert a LiteLLM/transport exception into an UpstreamError.

    LiteLLM exceptions carry the upstream HTTP status in ``status_code`` and
    the provider's error body in ``message``. Timeouts and anything without a
    status are recorded as transport failures.
    """
    if isinstance(error, asyncio.TimeoutError):
        return UpstreamError(provider, None, "request timed out", cause=error)

    status_code = getattr(error, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    raw_body = getattr(error, "message", None) or str(error)
    return UpstreamError(provider, status_code, raw_body, cause=error)


class ProviderClient:
    """
    Performs exactly one call to one upstream provider.

    Args:
        provider: Which provider this client talks to
        settings: Model names, sampling parameters and request timeout

    Example:
        >>> client = ProviderClient(Provider.GROQ, settings.providers)
        >>> text = await client.invoke("Summarise this...", api_key)
    """

    def __init__(self, provider: Provider, settings: ProviderSettings):
        self.provider = provider
        self._settings = settings
        self._shape = _REQUEST_SHAPERS[provider]

    async def invoke(self, prompt: str, credential: str) -> str:
        """
        Send the prompt and return the generated text.

        Args:
            prompt: Non-empty prompt text
            credential: API key to present to the provider (never logged)

        Returns:
            Non-empty, whitespace-stripped generated text

        Raises:
            ValueError: If prompt or credential is empty
            UpstreamError: On any upstream, parsing or transport failure
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")
        if not credential:
            raise ValueError(f"No credential supplied for {self.provider.value}")

        call_kwargs = self._shape(prompt, self._settings)
        call_kwargs["api_key"] = credential
        call_kwargs["timeout"] = self._settings.request_timeout

        try:
            response = await asyncio.wait_for(
                acompletion(**call_kwargs),
                timeout=self._settings.request_timeout,
            )
        except Exception as e:
            raise _classify_failure(self.provider, e) from e

        return _parse_response(self.provider, response)


def build_provider_clients(settings: ProviderSettings) -> dict[Provider, ProviderClient]:
    """Create one client per provider in the closed set."""
    return {provider: ProviderClient(provider, settings) for provider in Provider}
