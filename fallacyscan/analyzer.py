"""
Analyzer — Fallacy analysis orchestration.

Two delivery modes over one cache:
  - analyze():        one blocking model call, one AnalysisResult
  - analyze_stream(): token stream driven through StreamExtractor,
                      many snapshots, exactly one final

A request is served either wholly from cache or wholly by the model,
never a mix. Classification quality belongs to the model; this module
only parses, validates, sorts, caches.
"""

from __future__ import annotations

import contextlib
import time
import uuid
from typing import AsyncIterator

from fallacyscan.cache import CacheService
from fallacyscan.llm import LLMProvider
from fallacyscan.logging import get_logger
from fallacyscan.models import (
    AnalysisError,
    AnalysisResult,
    Fallacy,
    FallacyType,
    InvalidFallacy,
    sort_by_confidence,
)
from fallacyscan.streaming import BATCH_INTERVAL, StreamExtractor

logger = get_logger("analyzer")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


# ============================================================
# PROMPTS
# ============================================================

FALLACY_DEFINITIONS = {
    FallacyType.AD_HOMINEM: "Attacks the person instead of their argument",
    FallacyType.STRAW_MAN: "Misrepresents an opposing position to refute it",
    FallacyType.FALSE_EQUIVALENCE: "Treats two substantially different things as equal",
    FallacyType.APPEAL_TO_AUTHORITY: "Cites authority as proof without supporting merit",
    FallacyType.SLIPPERY_SLOPE: "Claims one step inevitably leads to extreme consequences",
    FallacyType.FALSE_DICHOTOMY: "Presents two options when more exist",
    FallacyType.CIRCULAR_REASONING: "Uses the conclusion as its own premise",
    FallacyType.HASTY_GENERALIZATION: "Generalizes from insufficient evidence",
    FallacyType.APPEAL_TO_EMOTION: "Substitutes emotional pressure for reasoning",
    FallacyType.RED_HERRING: "Introduces irrelevant material to divert attention",
}

SYSTEM_PROMPT = """You are a precise logical fallacy detector. Identify logical fallacies in the user's text.

## Fallacy Types
{definitions}

## Confidence
- 0.9-1.0: unambiguous, every criterion met
- 0.7-0.8: strong, most criteria met
- 0.5-0.6: plausible, some ambiguity
- 0.3-0.4: weak, significant doubt
- below 0.3: do not report

## Rules
1. Report only demonstrable fallacies.
2. startIndex/endIndex are 0-based character offsets into the text; endIndex is exclusive.
3. Keep descriptions short and explanations specific to the quoted span.
4. Never report the same span twice under the same type.
"""

BLOCKING_PROMPT = """Analyze this text for logical fallacies:
\"\"\"{text}\"\"\"

Return ONLY valid JSON:
{{"fallacies": [{{"type": "AD_HOMINEM", "description": "...", "startIndex": 0, "endIndex": 10, "explanation": "...", "confidence": 0.9}}]}}
Sort fallacies by confidence, highest first. Return {{"fallacies": []}} if there are none."""

STREAMING_PROMPT = """Analyze this text for logical fallacies:
\"\"\"{text}\"\"\"

Emit each fallacy as soon as you identify it, as one complete JSON object per fallacy:
{{"fallacy": {{"type": "AD_HOMINEM", "description": "...", "startIndex": 0, "endIndex": 10, "explanation": "...", "confidence": 0.9}}}}
Emit nothing else between objects."""


def build_system_prompt() -> str:
    definitions = "\n".join(
        f"- {t.value}: {d}" for t, d in FALLACY_DEFINITIONS.items()
    )
    return SYSTEM_PROMPT.format(definitions=definitions)


def parse_fallacies(payload: dict, text: str) -> tuple[Fallacy, ...]:
    """
    Validate a blocking-mode response. Invalid findings are dropped;
    a response without a fallacies list is an upstream error.
    """
    if not isinstance(payload, dict):
        raise ValueError("model response is not a JSON object")
    raw = payload.get("fallacies", [])
    if not isinstance(raw, list):
        raise ValueError("model response 'fallacies' is not a list")

    accepted = []
    seen = set()
    for item in raw:
        try:
            fallacy = Fallacy.from_payload(item, text)
        except InvalidFallacy as e:
            logger.debug("Dropped invalid finding", extra={"error": str(e)})
            continue
        if fallacy.key in seen:
            continue
        seen.add(fallacy.key)
        accepted.append(fallacy)
    return sort_by_confidence(accepted)


# ============================================================
# SERVICE
# ============================================================

class AnalysisService:
    """Cache-first fallacy analysis over an injected provider and cache."""

    def __init__(
        self,
        llm: LLMProvider,
        cache: CacheService,
        batch_interval: float = BATCH_INTERVAL,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.llm = llm
        self.cache = cache
        self.batch_interval = batch_interval
        self.ttl_seconds = ttl_seconds
        self._system_prompt = build_system_prompt()

    async def analyze(self, text: str, skip_cache: bool = False) -> AnalysisResult:
        """
        Blocking analysis.

        Raises:
            AnalysisError if the model call fails or its answer is unusable.
        """
        if not skip_cache:
            cached = await self.cache.get_cached_analysis(text)
            if cached is not None:
                logger.info(
                    "Cache hit",
                    extra={"analysis_id": cached.analysis_id,
                           "fallacies_count": len(cached.fallacies)},
                )
                return cached

        start = time.time()
        try:
            payload = await self.llm.generate_json(
                BLOCKING_PROMPT.format(text=text),
                system_instruction=self._system_prompt,
                temperature=0.2,
            )
            fallacies = parse_fallacies(payload, text)
        except Exception as e:
            logger.error(
                "Fallacy analysis failed",
                extra={"error": str(e), "error_type": type(e).__name__,
                       "provider": self.llm.name},
                exc_info=True,
            )
            raise AnalysisError("Failed to analyze text for logical fallacies") from e

        result = AnalysisResult(
            text=text,
            fallacies=fallacies,
            analysis_id=uuid.uuid4().hex,
            is_final_result=True,
        )
        await self.cache.cache_analysis(text, result, self.ttl_seconds)

        logger.info(
            "Analysis complete",
            extra={"analysis_id": result.analysis_id,
                   "fallacies_count": len(fallacies),
                   "duration_ms": int((time.time() - start) * 1000)},
        )
        return result

    async def analyze_stream(
        self, text: str, skip_cache: bool = False,
    ) -> AsyncIterator[AnalysisResult]:
        """
        Streaming analysis. A cache hit yields exactly one final snapshot
        and makes no model call.

        Raises:
            AnalysisError if the token stream fails; snapshots already
            yielded stand, nothing further is yielded or cached.
        """
        if not skip_cache:
            cached = await self.cache.get_cached_analysis(text)
            if cached is not None:
                logger.info(
                    "Cache hit, serving cached analysis as final snapshot",
                    extra={"analysis_id": cached.analysis_id},
                )
                yield cached.as_final()
                return

        extractor = StreamExtractor(text, batch_interval=self.batch_interval)
        deltas = self.llm.stream(
            STREAMING_PROMPT.format(text=text),
            system_instruction=self._system_prompt,
            temperature=0.2,
        )
        start = time.time()
        snapshots = extractor.run(deltas, cache=self.cache, ttl_seconds=self.ttl_seconds)
        try:
            async with contextlib.aclosing(snapshots):
                async for snapshot in snapshots:
                    yield snapshot
        except AnalysisError as e:
            logger.error(
                "Streaming analysis failed",
                extra={"analysis_id": extractor.analysis_id,
                       "error": str(e.__cause__), "provider": self.llm.name},
                exc_info=True,
            )
            raise

        logger.info(
            "Streaming analysis complete",
            extra={"analysis_id": extractor.analysis_id,
                   "fallacies_count": len(extractor.findings),
                   "duration_ms": int((time.time() - start) * 1000)},
        )
