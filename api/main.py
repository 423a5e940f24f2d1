"""
FallacyScan API — Main Application

POST /analyze-fallacies — Analyze text (blocking JSON or SSE stream)
GET  /cache/stats       — Cache key count and hit rate
GET  /health            — Health check
"""

from __future__ import annotations

import json
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import Request

from fallacyscan import __version__
from fallacyscan.analyzer import AnalysisService
from fallacyscan.cache import CacheService, RedisStore
from fallacyscan.config import settings
from fallacyscan.llm.factory import get_provider
from fallacyscan.logging import bind_request_id, clear_request_id, get_logger, setup_logging
from fallacyscan.models import AnalysisError
from fallacyscan.rate_limit import FixedWindowRateLimiter, RateLimitDecision
from fallacyscan.schemas.analysis import (
    AnalysisResponse,
    AnalyzeRequest,
    CacheStatsResponse,
    HealthResponse,
    RateLimitErrorResponse,
)

logger = get_logger("api")


# ============================================================
# STARTUP / SHUTDOWN
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Construct the process-wide services and hang them on app.state."""
    setup_logging()

    primary = RedisStore.from_url(settings.REDIS_URL) if settings.REDIS_URL else None
    cache = CacheService(primary=primary, prefix=settings.CACHE_PREFIX)
    llm = get_provider(settings.LLM_PROVIDER)

    app.state.cache = cache
    app.state.rate_limiter = FixedWindowRateLimiter(
        limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    app.state.analysis_service = AnalysisService(
        llm,
        cache,
        batch_interval=settings.STREAM_BATCH_INTERVAL,
        ttl_seconds=settings.ANALYSIS_TTL_SECONDS,
    )
    logger.info(
        "FallacyScan API starting",
        extra={"provider": settings.LLM_PROVIDER},
    )
    yield
    await cache.close()
    logger.info("FallacyScan API shutting down")


app = FastAPI(
    title="FallacyScan API",
    description="Logical fallacy detection with cached, streamable results",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    allow_credentials=False,
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "X-Request-ID"],
)


# ============================================================
# DEPENDENCIES
# ============================================================

def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


class RateLimitExceeded(Exception):
    def __init__(self, decision: RateLimitDecision):
        self.decision = decision


def enforce_rate_limit(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> RateLimitDecision:
    """Admission check. Resolved before the request body is validated."""
    identity = client_identity(request)
    decision = limiter.admit(identity)
    if not decision.allowed:
        logger.warning("Rate limit exceeded", extra={"client_ip": identity})
        raise RateLimitExceeded(decision)
    return decision


# ============================================================
# ERROR HANDLERS
# ============================================================

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    decision = exc.decision
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "limit": decision.limit,
            "reset": int(decision.reset_at * 1000),
            "remaining": decision.remaining,
        },
        headers={**decision.headers(), "Cache-Control": "no-store"},
    )


def _error_details(exc: RequestValidationError) -> list[dict]:
    # The rejected value is not echoed back; it may not even encode as UTF-8
    return [
        {k: v for k, v in error.items() if k != "input"}
        for error in jsonable_encoder(exc.errors())
    ]


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": _error_details(exc)},
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError):
    # Upstream detail is already logged by the analyzer
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to analyze text"},
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Unhandled exceptions become a generic 500 with no internal detail."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"error": str(exc), "path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
        headers={"Cache-Control": "no-store"},
    )


# ============================================================
# ROUTES
# ============================================================

def _sse(payload: dict, event: str | None = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(payload)}\n\n"


@app.post(
    "/analyze-fallacies",
    response_model=AnalysisResponse,
    responses={429: {"model": RateLimitErrorResponse}},
)
async def analyze_fallacies(
    body: AnalyzeRequest,
    request: Request,
    decision: RateLimitDecision = Depends(enforce_rate_limit),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Analyze text for logical fallacies."""
    request_id = request.headers.get("x-request-id") or f"req-{uuid.uuid4().hex[:12]}"
    rate_headers = {**decision.headers(), "X-Request-ID": request_id}
    token = bind_request_id(request_id)
    try:
        logger.info(
            "Received analysis request",
            extra={"client_ip": client_identity(request), "remaining": decision.remaining},
        )
        if body.stream:
            return StreamingResponse(
                _event_stream(service, body, request_id),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache, no-transform",
                    "X-Accel-Buffering": "no",
                    **rate_headers,
                },
            )

        start = time.time()
        result = await service.analyze(body.text, skip_cache=body.skip_cache)
        logger.info(
            "Analysis request complete",
            extra={"analysis_id": result.analysis_id,
                   "fallacies_count": len(result.fallacies),
                   "duration_ms": int((time.time() - start) * 1000)},
        )
        return JSONResponse(
            content=result.to_dict(),
            headers={
                **rate_headers,
                "Cache-Control": "no-store" if body.skip_cache else "public, max-age=86400",
                "ETag": f'"{CacheService.analysis_key(body.text)}"',
            },
        )
    finally:
        clear_request_id(token)


async def _event_stream(service: AnalysisService, body: AnalyzeRequest, request_id: str):
    """SSE body. Runs after the route returns, so it binds the request id itself."""
    bind_request_id(request_id)
    try:
        async for snapshot in service.analyze_stream(body.text, skip_cache=body.skip_cache):
            logger.debug(
                "Streaming snapshot",
                extra={"fallacies_count": len(snapshot.fallacies),
                       "is_final": snapshot.is_final_result},
            )
            yield _sse(snapshot.to_dict())
    except AnalysisError:
        # Headers are already sent; report in-band and end the stream
        yield _sse({"error": "Failed to analyze text"}, event="error")
    finally:
        # May be closed from another context, so clear rather than reset
        clear_request_id()


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(cache: CacheService = Depends(get_cache)):
    """Cache key count and lifetime hit rate."""
    stats = await cache.get_cache_stats()
    return JSONResponse(content=stats.to_dict(), headers={"Cache-Control": "no-cache"})


@app.get("/health", response_model=HealthResponse)
async def health(
    cache: CacheService = Depends(get_cache),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Service health and wiring summary."""
    return {
        "status": "operational",
        "version": __version__,
        "llm_provider": service.llm.name,
        "primary_cache_enabled": cache.primary_enabled,
        "rate_limit_enabled": limiter.enabled,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host=settings.HOST, port=settings.PORT)
