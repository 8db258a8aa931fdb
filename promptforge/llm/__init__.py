"""
LLM Orchestration Layer.

Routes prompt refinement and output generation to upstream providers
(Gemini, Groq via LiteLLM), with caller-key probing, server-key fallback
and daily provider usage tracking.

This layer sits between the HTTP gateway and the providers:

    QuotaGate / RateLimiter (gateway)
                  ↓
    PromptOrchestrator.refine() / .generate()
                  ↓
    ProviderClient.invoke()  ×  {GEMINI, GROQ}
                  ↓
    RefinementResult / GenerationResult  →  gateway shapes the HTTP response
"""

from promptforge.llm.models import (
    CredentialError,
    GenerationResult,
    LLMError,
    OrchestrationError,
    Provider,
    RefinementResult,
    RefinementStage,
    UpstreamError,
)
from promptforge.llm.orchestrator import PromptOrchestrator
from promptforge.llm.providers import ProviderClient, build_provider_clients

__all__ = [
    "PromptOrchestrator",
    "ProviderClient",
    "build_provider_clients",
    "Provider",
    "RefinementResult",
    "RefinementStage",
    "GenerationResult",
    "LLMError",
    "UpstreamError",
    "CredentialError",
    "OrchestrationError",
]
