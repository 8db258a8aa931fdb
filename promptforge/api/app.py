"""
FastAPI application for the PromptForge gateway.

Routes:
    GET  /                  service info
    GET  /health            liveness probe
    POST /api/refine        rate limit → daily quota → cache → orchestrator
    POST /api/generate      rate limit → orchestrator
    POST /api/feedback      rate limit → session store
    GET  /api/history       rate limit → session store
    GET  /api/session/{id}  rate limit → session store

Handlers only shape HTTP: quota, caching and provider routing live in the
gateway and llm packages. Request bodies are validated before the rate limit
is counted, so a rejected body touches no counter. Session writes on
refine/generate are best-effort; a storage failure is logged and the caller
still gets the result.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from promptforge import __version__
from promptforge.api.schemas import (
    ErrorResponse,
    FeedbackRequest,
    GenerateMetadata,
    GenerateRequest,
    GenerateResponse,
    HistoryResponse,
    RefineRequest,
    RefineResponse,
)
from promptforge.api.services import GatewayServices
from promptforge.config.logging import get_logger
from promptforge.config.settings import Settings, get_settings
from promptforge.gateway.quota import QuotaExceeded, RateLimitExceeded
from promptforge.gateway.utils import caller_identity, elapsed_ms, sanitize_input
from promptforge.llm import CredentialError, LLMError
from promptforge.store import SessionNotFoundError

logger = get_logger(__name__)

_MAX_HISTORY_LIMIT = 100

_ENDPOINTS = ["/api/refine", "/api/generate", "/api/feedback", "/api/history", "/api/session/:id"]


def _services(request: Request) -> GatewayServices:
    return request.app.state.services


def _caller_id(request: Request) -> str:
    host = request.client.host if request.client else None
    trust = _services(request).settings.server.trust_proxy_headers
    return caller_identity(request.headers, host, trust_proxy_headers=trust)


async def enforce_rate_limit(request: Request) -> None:
    """Count a validated request against the caller's hourly window."""
    await _services(request).rate_limiter.check(_caller_id(request))


router = APIRouter(
    prefix="/api",
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)

_LLM_ERRORS = {500: {"model": ErrorResponse}}


# ----------------------------------------------------------------------
# /api routes
# ----------------------------------------------------------------------


@router.post("/refine", response_model=RefineResponse, responses=_LLM_ERRORS)
async def refine(body: RefineRequest, request: Request) -> dict[str, Any]:
    await enforce_rate_limit(request)
    services = _services(request)
    start = time.perf_counter()
    sanitized = sanitize_input(body.prompt)
    user_id = _caller_id(request)
    user_key = body.user_api_key

    quota = await services.quota_gate.consume(user_id, user_key)

    # The cache holds only the refinement; session and quota fields are per caller
    refinement = await services.quota_gate.lookup(sanitized, user_key)
    cached = refinement is not None
    if not cached:
        result = await services.orchestrator.refine(sanitized, user_key)
        refinement = {
            "refined_prompt": result.refined_prompt,
            "stages": [stage.model_dump() for stage in result.stages],
            "model": result.model,
            "using_user_key": result.using_user_key,
        }
        await services.quota_gate.remember(sanitized, refinement, user_key)

    latency = elapsed_ms(start)
    session_id = str(uuid.uuid4())

    try:
        await services.sessions.create_session(
            session_id=session_id,
            user_id=user_id,
            original_prompt=sanitized,
            refined_prompt=refinement["refined_prompt"],
            stages=refinement["stages"],
            model=refinement["model"],
            latency_ms=latency,
        )
    except Exception:
        logger.exception(f"Failed to store session {session_id}; returning result anyway")

    return RefineResponse(
        session_id=session_id,
        original_prompt=sanitized,
        latency_ms=latency,
        cached=cached,
        quota_remaining=quota.remaining,
        **refinement,
    ).model_dump()


@router.post("/generate", response_model=GenerateResponse, responses=_LLM_ERRORS)
async def generate(body: GenerateRequest, request: Request) -> GenerateResponse:
    await enforce_rate_limit(request)
    services = _services(request)
    start = time.perf_counter()

    result = await services.orchestrator.generate(body.prompt, body.user_api_key)
    latency = elapsed_ms(start)

    if body.session_id:
        try:
            updated = await services.sessions.set_output(body.session_id, result.output)
            if not updated:
                logger.info(f"Generate referenced unknown session {body.session_id}")
        except Exception:
            logger.exception(f"Failed to attach output to session {body.session_id}")

    return GenerateResponse(
        output=result.output,
        metadata=GenerateMetadata(model=result.model, tokens=result.tokens, latency_ms=latency),
        using_user_key=result.using_user_key,
    )


@router.post("/feedback")
async def feedback(body: FeedbackRequest, request: Request) -> Any:
    await enforce_rate_limit(request)
    try:
        await _services(request).sessions.set_feedback(
            body.session_id, body.type, body.rating, body.comment
        )
    except Exception:
        logger.exception(f"Failed to store feedback for session {body.session_id}")
        return JSONResponse(status_code=500, content={"error": "Failed to submit feedback"})
    return {"success": True}


@router.get("/history", response_model=HistoryResponse)
async def history(request: Request, limit: int = Query(default=20)) -> Any:
    await enforce_rate_limit(request)
    limit = min(max(limit, 1), _MAX_HISTORY_LIMIT)
    try:
        rows = await _services(request).sessions.list_history(_caller_id(request), limit)
    except Exception:
        logger.exception("Failed to fetch history")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch history"})
    return {"history": rows}


@router.get("/session/{session_id}")
async def session_detail(session_id: str, request: Request) -> Any:
    await enforce_rate_limit(request)
    try:
        return await _services(request).sessions.get_session(session_id)
    except SessionNotFoundError:
        return JSONResponse(status_code=404, content={"error": "Session not found"})
    except Exception:
        logger.exception(f"Failed to fetch session {session_id}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch session"})


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


async def _quota_exceeded(request: Request, exc: QuotaExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": str(exc),
            "quota_exceeded": True,
            "reset_time": exc.reset_time.isoformat(),
        },
    )


async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": str(exc)})


async def _llm_error(request: Request, exc: LLMError) -> JSONResponse:
    if isinstance(exc, CredentialError):
        logger.warning(f"{request.url.path}: caller key rejected by every provider")
    else:
        logger.error(f"{request.url.path}: orchestration failed: {exc.message}", exc_info=exc.cause)
    return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.message})


# ----------------------------------------------------------------------
# App factory
# ----------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    services: GatewayServices | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings())
        services: Pre-built services, mainly for tests. Built from settings
            when omitted. Opened and closed by the app lifespan either way.
    """
    settings = settings or (services.settings if services else get_settings())
    services = services or GatewayServices.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with services:
            yield

    app = FastAPI(title="PromptForge API", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.server.allowed_origin],
        allow_origin_regex=r"http://localhost:\d+",
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {elapsed_ms(start)}ms"
        )
        return response

    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(QuotaExceeded, _quota_exceeded)
    app.add_exception_handler(RateLimitExceeded, _rate_limited)
    app.add_exception_handler(LLMError, _llm_error)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "message": "PromptForge API",
            "version": __version__,
            "endpoints": _ENDPOINTS,
            "status": "running",
        }

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": int(time.time() * 1000),
            "environment": settings.environment,
        }

    app.include_router(router)
    return app
