"""
API Schemas — Request and Response Models

Pydantic models for the FallacyScan API. Wire field names are camelCase
to match the snapshot JSON the streaming endpoint emits.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fallacyscan.config import settings
from fallacyscan.models import FallacyType


# ============================================================
# ANALYZE
# ============================================================

class AnalyzeRequest(BaseModel):
    """POST /analyze-fallacies request body."""
    model_config = ConfigDict(populate_by_name=True, json_schema_extra={"examples": [
        {"text": "You can't trust his tax plan, he failed algebra.", "stream": False},
    ]})

    text: str = Field(..., min_length=1, max_length=settings.MAX_TEXT_LENGTH,
                      description="The text to analyze (5,000 characters max by default).")
    stream: bool = Field(False, description="Stream snapshots as server-sent events.")
    skip_cache: bool = Field(False, alias="skipCache",
                             description="Bypass the cache read. Results are still cached.")

    @field_validator("text")
    @classmethod
    def text_must_encode(cls, v: str) -> str:
        # JSON allows escaped lone surrogates; they cannot be encoded to UTF-8
        try:
            v.encode("utf-8")
        except UnicodeEncodeError:
            raise ValueError("text contains unpaired surrogate characters")
        return v


class FallacyResponse(BaseModel):
    type: FallacyType
    description: str
    start_index: int = Field(..., alias="startIndex")
    end_index: int = Field(..., alias="endIndex")
    explanation: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class AnalysisResponse(BaseModel):
    """POST /analyze-fallacies response body (blocking mode)."""
    text: str
    fallacies: list[FallacyResponse]
    analysis_id: str = Field(..., alias="analysisId")
    timestamp: str
    is_final_result: bool = Field(True, alias="isFinalResult")


class RateLimitErrorResponse(BaseModel):
    """429 body."""
    error: str
    limit: int
    reset: int
    remaining: int


# ============================================================
# CACHE / HEALTH
# ============================================================

class CacheStatsResponse(BaseModel):
    total_keys: int = Field(..., alias="totalKeys")
    hit_rate: float = Field(..., alias="hitRate")
    primary_enabled: bool = Field(..., alias="primaryEnabled")


class HealthResponse(BaseModel):
    status: str
    version: str
    llm_provider: str
    primary_cache_enabled: bool
    rate_limit_enabled: bool
    error: Optional[str] = None
