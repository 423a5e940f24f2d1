"""
FallacyScan — Logical fallacy detection over a completion service.

Forwards text to an LLM and returns typed, located fallacy spans, either
as one blocking result or as a live stream of snapshots. Results are
cached by exact text content.

Public API:
  - AnalysisService:       cache-first blocking and streaming analysis
  - StreamExtractor:       incremental parser over a model token stream
  - CacheService:          tiered cache (Redis primary, in-process fallback)
  - FixedWindowRateLimiter: per-client admission control
  - Fallacy, FallacyType, AnalysisResult: domain types
  - LLMProvider, get_provider: completion-service boundary

Usage:
    from fallacyscan import AnalysisService, CacheService, get_provider
    service = AnalysisService(get_provider("gemini"), CacheService())
    result = await service.analyze(text)
"""

__version__ = "0.3.0"

from fallacyscan.models import (
    AnalysisError,
    AnalysisResult,
    Fallacy,
    FallacyType,
)
from fallacyscan.cache import CacheConfig, CacheService, CACHE_CONFIGS
from fallacyscan.rate_limit import FixedWindowRateLimiter, RateLimitDecision
from fallacyscan.streaming import StreamExtractor
from fallacyscan.analyzer import AnalysisService
from fallacyscan.llm import LLMProvider
from fallacyscan.llm.factory import get_provider

__all__ = [
    "AnalysisError",
    "AnalysisResult",
    "Fallacy",
    "FallacyType",
    "CacheConfig",
    "CacheService",
    "CACHE_CONFIGS",
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "StreamExtractor",
    "AnalysisService",
    "LLMProvider",
    "get_provider",
]
