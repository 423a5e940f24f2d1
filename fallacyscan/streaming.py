"""
Stream Extractor — Incremental fallacy parsing over a model token stream.

The model is prompted to emit one flat JSON object per finding:

    {"fallacy": {"type": ..., "startIndex": ..., "endIndex": ..., ...}}

Deltas arrive with no alignment to object boundaries. The extractor:
  1. appends each delta to a buffer and cuts out every balanced top-level
     {...} object (string-aware, so braces inside values do not count)
  2. parses and validates each object; balanced objects are consumed
     whether or not they parse, so the buffer never holds more than the
     one unfinished object
  3. dedupes findings on (type, startIndex, endIndex)
  4. releases a snapshot of ALL findings, highest confidence first, at
     most once per batch interval and only when something new is pending
  5. on upstream exhaustion releases exactly one final snapshot, caches it,
     and stops

A cancelled run (consumer closes the generator, or the task is cancelled)
stops the upstream pump, emits nothing further and caches nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import uuid
from collections import Counter
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional

from fallacyscan.logging import get_logger
from fallacyscan.models import (
    AnalysisError,
    AnalysisResult,
    Fallacy,
    InvalidFallacy,
    sort_by_confidence,
)

logger = get_logger("streaming")

BATCH_INTERVAL = 1.0  # seconds between non-final snapshots
QUEUE_SIZE = 64
# An unfinished object larger than this is abandoned
MAX_FRAGMENT_CHARS = 64 * 1024


class FragmentStatus(str, Enum):
    """What happened to one balanced object cut from the buffer."""
    ACCEPTED = "accepted"      # new finding
    DUPLICATE = "duplicate"    # finding already seen under the same key
    IGNORED = "ignored"        # valid JSON carrying no finding
    INVALID = "invalid"        # unparsable, or failed span validation


class FragmentScanner:
    """
    Cuts balanced top-level JSON objects out of a growing text buffer.

    Scanning resumes where the previous feed stopped, so each character is
    examined once. Text outside any object (prose, code fences, array
    brackets, commas) is discarded.
    """

    def __init__(self, max_fragment_chars: int = MAX_FRAGMENT_CHARS):
        self.max_fragment_chars = max_fragment_chars
        self._buffer = ""
        self._pos = 0
        self._start = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, delta: str) -> list[str]:
        self._buffer += delta
        buf = self._buffer
        found = []

        for i in range(self._pos, len(buf)):
            ch = buf[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                # Quotes only open a string inside an object
                self._in_string = self._depth > 0
            elif ch == "{":
                if self._depth == 0:
                    self._start = i
                self._depth += 1
            elif ch == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    found.append(buf[self._start:i + 1])

        if self._depth > 0:
            self._buffer = buf[self._start:]
            self._pos = len(self._buffer)
            self._start = 0
            if len(self._buffer) > self.max_fragment_chars:
                logger.debug("Abandoning oversized unfinished fragment")
                self.clear()
        else:
            self._buffer = ""
            self._pos = 0
        return found

    def clear(self) -> None:
        self._buffer = ""
        self._pos = 0
        self._start = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False


def _finding_payloads(obj: Any) -> Optional[list]:
    """Finding mappings carried by one parsed object, or None if it carries none."""
    if not isinstance(obj, dict):
        return None
    if "fallacy" in obj:
        return [obj["fallacy"]]
    if isinstance(obj.get("fallacies"), list):
        return obj["fallacies"]
    if "type" in obj and "startIndex" in obj:
        return [obj]
    return None


class StreamExtractor:
    """Transient state for one streaming analysis. Not shared across requests."""

    def __init__(
        self,
        text: str,
        batch_interval: float = BATCH_INTERVAL,
        analysis_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.text = text
        self.batch_interval = batch_interval
        self.analysis_id = analysis_id or uuid.uuid4().hex
        self.outcomes: Counter = Counter()
        self._clock = clock
        self._scanner = FragmentScanner()
        self._seen: set = set()
        self._findings: list[Fallacy] = []
        self._pending = 0
        self._last_emit = clock()

    @property
    def findings(self) -> tuple[Fallacy, ...]:
        return tuple(self._findings)

    @property
    def has_pending(self) -> bool:
        return self._pending > 0

    def feed(self, delta: str) -> list[Fallacy]:
        """Absorb one delta. Returns the findings it completed, in order."""
        added = []
        for fragment in self._scanner.feed(delta):
            status = self._absorb(fragment, added)
            self.outcomes[status] += 1
            if status is FragmentStatus.INVALID:
                logger.debug("Dropped malformed fragment", extra={"analysis_id": self.analysis_id})
        return added

    def _absorb(self, fragment: str, added: list[Fallacy]) -> FragmentStatus:
        try:
            payloads = _finding_payloads(json.loads(fragment))
        except (json.JSONDecodeError, RecursionError):
            # RecursionError: nesting deeper than the decoder can follow
            return FragmentStatus.INVALID
        if payloads is None:
            return FragmentStatus.IGNORED

        status = FragmentStatus.INVALID
        for payload in payloads:
            try:
                fallacy = Fallacy.from_payload(payload, self.text)
            except InvalidFallacy:
                continue
            if fallacy.key in self._seen:
                if status is FragmentStatus.INVALID:
                    status = FragmentStatus.DUPLICATE
                continue
            self._seen.add(fallacy.key)
            self._findings.append(fallacy)
            self._pending += 1
            added.append(fallacy)
            status = FragmentStatus.ACCEPTED
        return status

    def due(self) -> bool:
        """A batch may be released: something is pending and the window has passed."""
        return self.has_pending and self.seconds_until_due() <= 0

    def seconds_until_due(self) -> float:
        return self._last_emit + self.batch_interval - self._clock()

    def snapshot(self, final: bool = False) -> AnalysisResult:
        """Complete state so far. Resets the pending count and the batch window."""
        self._pending = 0
        self._last_emit = self._clock()
        return AnalysisResult(
            text=self.text,
            fallacies=sort_by_confidence(self._findings),
            analysis_id=self.analysis_id,
            is_final_result=final,
        )

    def release(self) -> None:
        """Drop the buffer and dedup state once the analysis is over."""
        self._scanner.clear()
        self._seen.clear()

    async def run(
        self,
        deltas: AsyncIterable[str],
        cache=None,
        ttl_seconds: int = 86400,
    ) -> AsyncIterator[AnalysisResult]:
        """
        Drive extraction from an upstream delta source.

        Yields non-final snapshots as batches fill, then exactly one final
        snapshot. Raises AnalysisError (chained to the upstream error) if
        the source fails; nothing is cached in that case.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        pump = asyncio.create_task(_pump(deltas, queue))
        try:
            while True:
                timeout = max(self.seconds_until_due(), 0.0) if self.has_pending else None
                try:
                    kind, payload = await asyncio.wait_for(queue.get(), timeout)
                except asyncio.TimeoutError:
                    # The model went quiet with findings pending
                    yield self.snapshot()
                    continue

                if kind == _END:
                    break
                if kind == _ERROR:
                    raise AnalysisError("Failed to stream fallacy analysis") from payload

                self.feed(payload)
                if self.due():
                    logger.debug(
                        "Releasing batch",
                        extra={"analysis_id": self.analysis_id,
                               "fallacies_count": len(self._findings)},
                    )
                    yield self.snapshot()

            final = self.snapshot(final=True)
            if cache is not None:
                try:
                    await cache.cache_analysis(self.text, final, ttl_seconds)
                except Exception as e:
                    logger.error(
                        "Failed to cache final streaming result",
                        extra={"analysis_id": self.analysis_id, "error": str(e)},
                    )
            yield final
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
            self.release()


# Queue message kinds
_DELTA = "delta"
_END = "end"
_ERROR = "error"


async def _pump(deltas: AsyncIterable[str], queue: asyncio.Queue) -> None:
    """Producer: copy upstream deltas into the queue, then an end or error marker."""
    try:
        async for delta in deltas:
            if delta:
                await queue.put((_DELTA, delta))
    except Exception as e:
        await queue.put((_ERROR, e))
    else:
        await queue.put((_END, None))
    finally:
        aclose = getattr(deltas, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.warning("Upstream stream did not close cleanly", extra={"error": str(e)})
