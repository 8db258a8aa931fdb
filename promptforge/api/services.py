"""
Gateway service container.

Builds the long-lived collaborators of the HTTP app from settings in one
place, so the server, the CLI and the tests all wire things the same way.
The usage store is created once and handed to every component that counts
something; nothing reaches it through a module-level global.

Example::

    services = GatewayServices.from_settings(settings)
    async with services:
        result = await services.orchestrator.refine("Explain quantum computing")
"""

from __future__ import annotations

from contextlib import AsyncExitStack

from promptforge.config.logging import get_logger
from promptforge.config.settings import Settings
from promptforge.gateway.quota import QuotaGate, RateLimiter
from promptforge.llm import PromptOrchestrator, build_provider_clients
from promptforge.store import InMemoryUsageStore, SessionStore, UsageStore

logger = get_logger(__name__)


class GatewayServices:
    """
    Shared application state for request handlers.

    Args:
        settings: Full application settings
        orchestrator: Provider routing and fallback
        quota_gate: Daily quota and refine cache
        rate_limiter: Per-hour request limiter
        sessions: Session history repository
        usage_store: The counter store shared by the components above (or None)
    """

    def __init__(
        self,
        settings: Settings,
        orchestrator: PromptOrchestrator,
        quota_gate: QuotaGate,
        rate_limiter: RateLimiter,
        sessions: SessionStore,
        usage_store: UsageStore | None = None,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.quota_gate = quota_gate
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.usage_store = usage_store
        self._exit_stack = AsyncExitStack()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        usage_store: UsageStore | None = None,
    ) -> "GatewayServices":
        """
        Wire every component from settings.

        Args:
            settings: Full application settings
            usage_store: Override the counter store. When omitted an in-memory
                store is created, or none at all if ``quota.enabled`` is False.
        """
        if usage_store is None and settings.quota.enabled:
            usage_store = InMemoryUsageStore()
        if usage_store is None:
            logger.warning("Usage store disabled: quotas, rate limits and caching are off")

        orchestrator = PromptOrchestrator(
            clients=build_provider_clients(settings.providers),
            provider_settings=settings.providers,
            quota_settings=settings.quota,
            usage_store=usage_store,
        )
        return cls(
            settings=settings,
            orchestrator=orchestrator,
            quota_gate=QuotaGate(usage_store, settings.quota),
            rate_limiter=RateLimiter(usage_store, settings.quota),
            sessions=SessionStore(settings.storage.database_path),
            usage_store=usage_store,
        )

    async def __aenter__(self) -> "GatewayServices":
        await self._exit_stack.enter_async_context(self.sessions)
        if not self.settings.providers.gemini_api_key:
            logger.warning("PROVIDER_GEMINI_API_KEY not set; server-key requests fall back to Groq")
        if not self.settings.providers.groq_api_key:
            logger.warning("PROVIDER_GROQ_API_KEY not set; server-key fallback is unavailable")
        logger.info("Gateway services ready")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.info("Shutting down gateway services...")
        await self._exit_stack.aclose()
        return False
