"""
PromptForge - prompt refinement gateway.

Turns raw natural-language prompts into refined ones via upstream LLM
providers (Gemini, Groq), with per-caller daily quotas, response caching
and automatic provider fallback.
"""

__version__ = "1.0.0"
