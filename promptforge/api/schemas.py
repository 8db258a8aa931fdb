"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from promptforge.llm.models import RefinementStage


class RefineRequest(BaseModel):
    prompt: str = Field(
        min_length=10,
        max_length=5000,
        description="Raw prompt to refine (10-5000 characters)",
    )
    user_api_key: str | None = Field(
        default=None,
        description="Caller's own Gemini or Groq key. Bypasses the daily quota.",
    )


class RefineResponse(BaseModel):
    session_id: str
    original_prompt: str
    refined_prompt: str
    stages: list[RefinementStage]
    model: str
    latency_ms: int
    cached: bool = False
    quota_remaining: int
    using_user_key: bool


class GenerateRequest(BaseModel):
    prompt: str = Field(min_length=1)
    session_id: str | None = None
    user_api_key: str | None = None

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Prompt cannot be blank")
        return value


class GenerateMetadata(BaseModel):
    model: str
    tokens: int
    latency_ms: int


class GenerateResponse(BaseModel):
    output: str
    metadata: GenerateMetadata
    using_user_key: bool


class FeedbackRequest(BaseModel):
    session_id: str
    type: Literal["prompt", "output"]
    rating: float = Field(ge=-1, le=1)
    comment: str | None = None


class SessionSummary(BaseModel):
    id: str
    original_prompt: str
    created_at: str


class HistoryResponse(BaseModel):
    history: list[SessionSummary]


class ErrorResponse(BaseModel):
    error: str
    details: list[dict[str, Any]] | str | None = None
    quota_exceeded: bool | None = None
    reset_time: str | None = None
