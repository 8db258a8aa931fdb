"""
Prompt Orchestrator: provider selection, fallback and usage tracking.

This module sits between the HTTP gateway and the provider clients. It
receives a task (refine or generate), the prompt text and an optional
caller-supplied API key, decides which provider to call with which key, and
returns a structured result that records how the answer was produced.

Routing:

    caller key present
        Gemini(caller key) ──fail──▶ Groq(caller key) ──fail──▶ CredentialError

    no caller key
        bump Gemini daily usage
        usage < ceiling:  Gemini(server key) ──fail──▶ Groq(server key)
        usage >= ceiling: Groq(server key)
        Groq failure ──▶ OrchestrationError

Design decisions:
- A caller key is probed against each provider in USER_KEY_PROBE_ORDER
  because we cannot tell from the key alone which provider issued it. This is
  a two-entry heuristic, not a discovery mechanism.
- When both probes fail we report an invalid key. Two simultaneous outages
  are indistinguishable from a bad key here, and "check your key" is the
  message the caller can act on.
- The Gemini daily ceiling sits below Gemini's own free-tier limit, so we
  switch to Groq before Gemini starts refusing requests. The fallback path
  still covers failures that happen below the ceiling.
- Usage counters live in the injected UsageStore with a 24h expiry; there is
  no reset job. Caller-key traffic is not counted.
- The orchestrator keeps no per-request state and may be shared across
  concurrent requests.
"""

from __future__ import annotations

import math
import time
from pathlib import Path

from promptforge.config.logging import get_logger
from promptforge.config.settings import ProviderSettings, QuotaSettings
from promptforge.llm.models import (
    CredentialError,
    GenerationResult,
    OrchestrationError,
    Provider,
    RefinementResult,
    RefinementStage,
    UpstreamError,
)
from promptforge.llm.providers import ProviderClient
from promptforge.store.base import UsageStore, usage_bucket

logger = get_logger(__name__)

DEFAULT_REFINE_TEMPLATE_PATH = Path(__file__).parent.parent / "prompts" / "refine.txt"

USER_KEY_PROBE_ORDER: tuple[Provider, ...] = (Provider.GEMINI, Provider.GROQ)

INVALID_KEY_MESSAGE = "Invalid API key. Please check your Gemini or Groq API key."

_USAGE_TTL_SECONDS = 86400
_GENERATOR_REASONING = "Improved clarity, specificity, and structure"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def load_refine_template(path: Path = DEFAULT_REFINE_TEMPLATE_PATH) -> str:
    """Read the refinement prompt template (must contain ``{user_prompt}``)."""
    template = path.read_text(encoding="utf-8")
    if "{user_prompt}" not in template:
        raise ValueError(f"Refine template {path} has no {{user_prompt}} placeholder")
    return template


class PromptOrchestrator:
    """
    Runs refine/generate requests against the provider set with fallback.

    Args:
        clients: One ProviderClient per Provider (see build_provider_clients)
        provider_settings: Holds the server-held API keys
        quota_settings: Holds the Gemini daily ceiling
        usage_store: Counter store for provider usage; None disables tracking
        refine_template: Refinement prompt template; defaults to prompts/refine.txt
    """

    def __init__(
        self,
        clients: dict[Provider, ProviderClient],
        provider_settings: ProviderSettings,
        quota_settings: QuotaSettings,
        usage_store: UsageStore | None = None,
        refine_template: str | None = None,
    ):
        missing = [p.value for p in Provider if p not in clients]
        if missing:
            raise ValueError(f"Missing provider clients: {', '.join(missing)}")

        self._clients = clients
        self._provider_settings = provider_settings
        self._quota_settings = quota_settings
        self._usage_store = usage_store
        self._refine_template = refine_template or load_refine_template()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def refine(self, prompt: str, user_api_key: str | None = None) -> RefinementResult:
        """
        Rewrite a raw prompt into a clearer, more specific one.

        Args:
            prompt: Sanitized user prompt
            user_api_key: Caller-supplied key; None or blank means server keys

        Returns:
            RefinementResult with a single "generator" stage

        Raises:
            CredentialError: Both providers rejected the caller's key
            OrchestrationError: Both providers failed with server keys
        """
        generator_prompt = self._refine_template.replace("{user_prompt}", prompt)
        text, model, using_user_key = await self._complete(generator_prompt, user_api_key)

        return RefinementResult(
            refined_prompt=text,
            stages=[
                RefinementStage(
                    stage="generator",
                    output=text,
                    reasoning=_GENERATOR_REASONING,
                )
            ],
            model=model,
            using_user_key=using_user_key,
        )

    async def generate(self, prompt: str, user_api_key: str | None = None) -> GenerationResult:
        """
        Produce the final output for an (already refined) prompt.

        The prompt is sent verbatim. Raises the same errors as ``refine``, and
        ValueError for a blank prompt before any provider or counter is touched.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        text, model, using_user_key = await self._complete(prompt, user_api_key)

        return GenerationResult(
            output=text,
            model=model,
            tokens=estimate_tokens(text),
            using_user_key=using_user_key,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _complete(self, prompt: str, user_api_key: str | None) -> tuple[str, str, bool]:
        """Return (text, model label, used caller key)."""
        start = time.perf_counter()
        if user_api_key and user_api_key.strip():
            text, model = await self._complete_with_caller_key(prompt, user_api_key.strip())
            using_user_key = True
        else:
            text, model = await self._complete_with_server_keys(prompt)
            using_user_key = False

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"Completion served by {model} in {elapsed_ms:.0f}ms")
        return text, model, using_user_key

    async def _complete_with_caller_key(self, prompt: str, api_key: str) -> tuple[str, str]:
        last_error: UpstreamError | None = None
        for provider in USER_KEY_PROBE_ORDER:
            try:
                text = await self._clients[provider].invoke(prompt, api_key)
            except UpstreamError as e:
                logger.info(
                    f"Caller key rejected by {provider.value} (status: {e.status_code})"
                )
                last_error = e
                continue
            return text, f"{provider.label} (user key)"

        raise CredentialError(INVALID_KEY_MESSAGE, cause=last_error)

    async def _complete_with_server_keys(self, prompt: str) -> tuple[str, str]:
        gemini_usage = await self._track_usage(Provider.GEMINI)

        if gemini_usage < self._quota_settings.gemini_daily_ceiling:
            try:
                text = await self._invoke_with_server_key(Provider.GEMINI, prompt)
                return text, Provider.GEMINI.label
            except UpstreamError as e:
                logger.warning(f"Gemini failed, falling back to Groq: {e}")
        else:
            logger.info(
                f"Gemini daily ceiling reached ({gemini_usage} >= "
                f"{self._quota_settings.gemini_daily_ceiling}), routing to Groq"
            )

        try:
            text = await self._invoke_with_server_key(Provider.GROQ, prompt)
        except UpstreamError as e:
            logger.error(f"Groq fallback failed, no providers left: {e}")
            raise OrchestrationError(
                "All LLM providers are currently unavailable. Please try again later.",
                cause=e,
            ) from e

        await self._track_usage(Provider.GROQ)
        return text, Provider.GROQ.label

    async def _invoke_with_server_key(self, provider: Provider, prompt: str) -> str:
        api_key = self._server_key(provider)
        if not api_key:
            raise UpstreamError(provider, None, "server API key not configured")
        return await self._clients[provider].invoke(prompt, api_key)

    def _server_key(self, provider: Provider) -> str:
        if provider is Provider.GEMINI:
            return self._provider_settings.gemini_api_key
        return self._provider_settings.groq_api_key

    async def _track_usage(self, provider: Provider) -> int:
        """Increment today's server-key usage for a provider; returns the new count."""
        if self._usage_store is None:
            return 0
        key = f"llm_usage:{provider.value}:{usage_bucket()}"
        return await self._usage_store.increment(key, ttl_seconds=_USAGE_TTL_SECONDS)
