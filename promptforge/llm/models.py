"""
Data models and exceptions for the LLM orchestration layer.

Results are frozen Pydantic models: once the orchestrator hands one back it is
embedded into the session record and the HTTP response unchanged.

Exception hierarchy::

    LLMError
    ├── UpstreamError        one provider call failed (consumed by fallback)
    ├── CredentialError      every provider rejected the caller's key
    └── OrchestrationError   fallback exhausted with server-held keys
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """
    The closed set of upstream providers.

    Adding a provider means adding a member here, a shaping entry in
    ``promptforge.llm.providers`` and a routing decision in the orchestrator.
    """

    GEMINI = "gemini"
    GROQ = "groq"

    @property
    def label(self) -> str:
        """Model label reported to callers (``model`` field of responses)."""
        return _PROVIDER_LABELS[self]


_PROVIDER_LABELS = {
    Provider.GEMINI: "gemini-2.0-flash",
    Provider.GROQ: "llama-3.3-70b-groq",
}


class RefinementStage(BaseModel):
    """One step of the refinement pipeline and what it produced."""

    stage: Literal["generator", "critic", "final_refinement"]
    output: str
    reasoning: str | None = None

    model_config = ConfigDict(frozen=True)


class RefinementResult(BaseModel):
    """Outcome of ``PromptOrchestrator.refine``."""

    refined_prompt: str = Field(min_length=1)
    stages: list[RefinementStage] = Field(min_length=1)
    model: str = Field(description="Provider label, suffixed with '(user key)' for caller keys")
    using_user_key: bool = False

    model_config = ConfigDict(frozen=True)


class GenerationResult(BaseModel):
    """Outcome of ``PromptOrchestrator.generate``."""

    output: str
    model: str
    tokens: int = Field(ge=0, description="Estimated as ceil(len(output) / 4)")
    using_user_key: bool = False

    model_config = ConfigDict(frozen=True)


class LLMError(Exception):
    """Base class for failures raised by the LLM layer."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class UpstreamError(LLMError):
    """
    A single provider call failed.

    Raised on non-success HTTP status, on a response without usable content
    and on transport failures (timeouts, DNS, resets), where ``status_code``
    is None. The orchestrator treats every UpstreamError as a reason to try
    the next provider.
    """

    def __init__(
        self,
        provider: Provider,
        status_code: int | None,
        raw_body: str,
        cause: Exception | None = None,
    ):
        status = status_code if status_code is not None else "transport"
        super().__init__(f"{provider.value} API error: {status} - {raw_body}", cause=cause)
        self.provider = provider
        self.status_code = status_code
        self.raw_body = raw_body

    @property
    def retryable(self) -> bool:
        """True for outages and throttling, False for rejected requests."""
        if self.status_code is None:
            return True
        return self.status_code in (408, 429) or self.status_code >= 500


class CredentialError(LLMError):
    """Every probed provider rejected the caller-supplied credential."""


class OrchestrationError(LLMError):
    """All providers failed while using server-held credentials."""
