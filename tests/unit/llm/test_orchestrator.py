"""
Unit tests for the Prompt Orchestrator.

Tests cover:
- Initialization and template loading
- Caller-key probing (Gemini first, Groq second, CredentialError when both fail)
- Server-key routing (Gemini below the daily ceiling, Groq above it)
- Server-key fallback and terminal OrchestrationError
- Provider usage tracking in the injected store
- Result structure for refine and generate
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from promptforge.config.settings import ProviderSettings, QuotaSettings
from promptforge.llm.models import (
    CredentialError,
    GenerationResult,
    OrchestrationError,
    Provider,
    RefinementResult,
    UpstreamError,
)
from promptforge.llm.orchestrator import (
    INVALID_KEY_MESSAGE,
    USER_KEY_PROBE_ORDER,
    PromptOrchestrator,
    estimate_tokens,
    load_refine_template,
)
from promptforge.store.base import usage_bucket
from promptforge.store.memory import InMemoryUsageStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TEMPLATE = "Rewrite this prompt:\n{user_prompt}\nRefined:"


def _make_client(provider: Provider, *, returns: str | None = None, fails: bool = False) -> MagicMock:
    """Mock ProviderClient whose invoke() either returns text or raises UpstreamError."""
    client = MagicMock()
    client.provider = provider
    if fails:
        client.invoke = AsyncMock(side_effect=UpstreamError(provider, 503, "unavailable"))
    else:
        client.invoke = AsyncMock(return_value=returns or f"{provider.value} answer")
    return client


def _gemini_usage_key() -> str:
    return f"llm_usage:gemini:{usage_bucket()}"


def _groq_usage_key() -> str:
    return f"llm_usage:groq:{usage_bucket()}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def provider_settings():
    return ProviderSettings(gemini_api_key="server-gemini", groq_api_key="server-groq")


@pytest.fixture
def quota_settings():
    return QuotaSettings(gemini_daily_ceiling=1400)


@pytest.fixture
def store():
    return InMemoryUsageStore()


def _make_orchestrator(provider_settings, quota_settings, store, gemini, groq):
    return PromptOrchestrator(
        clients={Provider.GEMINI: gemini, Provider.GROQ: groq},
        provider_settings=provider_settings,
        quota_settings=quota_settings,
        usage_store=store,
        refine_template=TEMPLATE,
    )


# ---------------------------------------------------------------------------
# Test Classes
# ---------------------------------------------------------------------------

class TestOrchestratorInitialization:

    def test_missing_client_rejected(self, provider_settings, quota_settings):
        with pytest.raises(ValueError, match="groq"):
            PromptOrchestrator(
                clients={Provider.GEMINI: _make_client(Provider.GEMINI)},
                provider_settings=provider_settings,
                quota_settings=quota_settings,
                refine_template=TEMPLATE,
            )

    def test_default_template_is_packaged(self):
        template = load_refine_template()
        assert "{user_prompt}" in template
        assert "prompt engineer" in template

    def test_template_without_placeholder_rejected(self, tmp_path):
        path = tmp_path / "bad.txt"
        path.write_text("no placeholder here")
        with pytest.raises(ValueError, match="placeholder"):
            load_refine_template(path)

    def test_caller_key_order_is_gemini_then_groq(self):
        assert USER_KEY_PROBE_ORDER == (Provider.GEMINI, Provider.GROQ)


class TestCallerKeyProbing:

    @pytest.mark.asyncio
    async def test_gemini_accepts_caller_key(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, returns="Refined by Gemini")
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing", user_api_key="caller-key")

        assert result.refined_prompt == "Refined by Gemini"
        assert result.model == "gemini-2.0-flash (user key)"
        assert result.using_user_key is True
        gemini.invoke.assert_awaited_once()
        assert gemini.invoke.call_args.args[1] == "caller-key"
        groq.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_groq_with_same_caller_key(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, fails=True)
        groq = _make_client(Provider.GROQ, returns="Refined by Groq")
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing", user_api_key="caller-key")

        assert result.model == "llama-3.3-70b-groq (user key)"
        assert result.using_user_key is True
        assert groq.invoke.call_args.args[1] == "caller-key"

    @pytest.mark.asyncio
    async def test_both_reject_raises_credential_error(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, fails=True)
        groq = _make_client(Provider.GROQ, fails=True)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        with pytest.raises(CredentialError) as exc_info:
            await orch.refine("Explain quantum computing", user_api_key="bogus")

        assert str(exc_info.value) == INVALID_KEY_MESSAGE
        assert str(exc_info.value) == "Invalid API key. Please check your Gemini or Groq API key."
        assert isinstance(exc_info.value.cause, UpstreamError)

    @pytest.mark.asyncio
    async def test_caller_key_does_not_touch_usage_counters(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI)
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        await orch.refine("Explain quantum computing", user_api_key="caller-key")

        assert await store.get(_gemini_usage_key()) is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_blank_caller_key_uses_server_keys(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI)
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing", user_api_key="   ")

        assert result.using_user_key is False
        assert gemini.invoke.call_args.args[1] == "server-gemini"


class TestServerKeyRouting:

    @pytest.mark.asyncio
    async def test_gemini_used_below_ceiling(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, returns="Refined")
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing")

        assert result.model == "gemini-2.0-flash"
        assert result.using_user_key is False
        assert gemini.invoke.call_args.args[1] == "server-gemini"
        groq.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gemini_usage_incremented_per_call(self, provider_settings, quota_settings, store):
        orch = _make_orchestrator(
            provider_settings, quota_settings, store,
            _make_client(Provider.GEMINI), _make_client(Provider.GROQ),
        )

        await orch.refine("first prompt here")
        await orch.generate("second prompt")

        assert await store.get_count(_gemini_usage_key()) == 2
        assert await store.get_count(_groq_usage_key()) == 0

    @pytest.mark.asyncio
    async def test_ceiling_routes_straight_to_groq(self, provider_settings, store):
        quota = QuotaSettings(gemini_daily_ceiling=3)
        gemini = _make_client(Provider.GEMINI)
        groq = _make_client(Provider.GROQ, returns="From Groq")
        orch = _make_orchestrator(provider_settings, quota, store, gemini, groq)
        for _ in range(2):
            await store.increment(_gemini_usage_key(), ttl_seconds=86400)

        # Third increment brings Gemini usage to the ceiling
        result = await orch.refine("Explain quantum computing")

        assert result.model == "llama-3.3-70b-groq"
        gemini.invoke.assert_not_awaited()
        assert groq.invoke.call_args.args[1] == "server-groq"
        assert await store.get_count(_gemini_usage_key()) == 3
        assert await store.get_count(_groq_usage_key()) == 1

    @pytest.mark.asyncio
    async def test_gemini_failure_falls_back_to_groq(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, fails=True)
        groq = _make_client(Provider.GROQ, returns="Fallback answer")
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing")

        assert result.refined_prompt == "Fallback answer"
        assert result.model == "llama-3.3-70b-groq"
        assert result.using_user_key is False
        assert await store.get_count(_groq_usage_key()) == 1

    @pytest.mark.asyncio
    async def test_both_fail_raises_orchestration_error(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, fails=True)
        groq = _make_client(Provider.GROQ, fails=True)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        with pytest.raises(OrchestrationError) as exc_info:
            await orch.refine("Explain quantum computing")

        assert "Invalid API key" not in str(exc_info.value)
        assert "unavailable" in str(exc_info.value)
        # Upstream raw body stays on the cause, not in the message
        assert "503" not in str(exc_info.value)
        assert await store.get_count(_groq_usage_key()) == 0

    @pytest.mark.asyncio
    async def test_missing_gemini_server_key_falls_back(self, quota_settings, store):
        settings = ProviderSettings(gemini_api_key="", groq_api_key="server-groq")
        gemini = _make_client(Provider.GEMINI)
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(settings, quota_settings, store, gemini, groq)

        result = await orch.refine("Explain quantum computing")

        assert result.model == "llama-3.3-70b-groq"
        gemini.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_server_keys_raises_orchestration_error(self, quota_settings, store):
        settings = ProviderSettings(gemini_api_key="", groq_api_key="")
        orch = _make_orchestrator(
            settings, quota_settings, store,
            _make_client(Provider.GEMINI), _make_client(Provider.GROQ),
        )

        with pytest.raises(OrchestrationError):
            await orch.generate("hello")

    @pytest.mark.asyncio
    async def test_works_without_usage_store(self, provider_settings, quota_settings):
        gemini = _make_client(Provider.GEMINI, returns="Refined")
        orch = _make_orchestrator(
            provider_settings, quota_settings, None, gemini, _make_client(Provider.GROQ),
        )

        result = await orch.refine("Explain quantum computing")

        assert result.model == "gemini-2.0-flash"


class TestResultStructure:

    @pytest.mark.asyncio
    async def test_refine_wraps_prompt_in_template(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI)
        orch = _make_orchestrator(
            provider_settings, quota_settings, store, gemini, _make_client(Provider.GROQ),
        )

        await orch.refine("Explain quantum computing")

        sent = gemini.invoke.call_args.args[0]
        assert sent == "Rewrite this prompt:\nExplain quantum computing\nRefined:"

    @pytest.mark.asyncio
    async def test_refine_returns_single_generator_stage(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, returns="Better prompt")
        orch = _make_orchestrator(
            provider_settings, quota_settings, store, gemini, _make_client(Provider.GROQ),
        )

        result = await orch.refine("Explain quantum computing")

        assert isinstance(result, RefinementResult)
        assert len(result.stages) == 1
        stage = result.stages[0]
        assert stage.stage == "generator"
        assert stage.output == "Better prompt"
        assert stage.reasoning == "Improved clarity, specificity, and structure"

    @pytest.mark.asyncio
    async def test_generate_sends_prompt_verbatim(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI)
        orch = _make_orchestrator(
            provider_settings, quota_settings, store, gemini, _make_client(Provider.GROQ),
        )

        await orch.generate("List three facts about Mars.")

        assert gemini.invoke.call_args.args[0] == "List three facts about Mars."

    @pytest.mark.asyncio
    async def test_generate_estimates_tokens(self, provider_settings, quota_settings, store):
        gemini = _make_client(Provider.GEMINI, returns="x" * 10)
        orch = _make_orchestrator(
            provider_settings, quota_settings, store, gemini, _make_client(Provider.GROQ),
        )

        result = await orch.generate("Say something")

        assert isinstance(result, GenerationResult)
        assert result.output == "x" * 10
        assert result.tokens == 3

    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    @pytest.mark.asyncio
    async def test_result_is_immutable(self, provider_settings, quota_settings, store):
        orch = _make_orchestrator(
            provider_settings, quota_settings, store,
            _make_client(Provider.GEMINI), _make_client(Provider.GROQ),
        )

        result = await orch.refine("Explain quantum computing")

        with pytest.raises(Exception):
            result.model = "something else"

    @pytest.mark.asyncio
    async def test_generate_blank_prompt_rejected_before_routing(
        self, provider_settings, quota_settings, store,
    ):
        gemini = _make_client(Provider.GEMINI)
        groq = _make_client(Provider.GROQ)
        orch = _make_orchestrator(provider_settings, quota_settings, store, gemini, groq)

        with pytest.raises(ValueError, match="empty"):
            await orch.generate("   \n ")

        gemini.invoke.assert_not_awaited()
        groq.invoke.assert_not_awaited()
        assert await store.get_count(_gemini_usage_key()) == 0
