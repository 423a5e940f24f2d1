"""
Domain Types — Fallacy spans and analysis snapshots.

A Fallacy is a typed, located annotation over a region of the analyzed
text. An AnalysisResult is one self-describing snapshot of an analysis:
many per streaming analysis (only the last one final), exactly one per
blocking analysis.

Python attributes are snake_case; the JSON wire/cache shape is camelCase
(startIndex, analysisId, isFinalResult) so clients and cached payloads
keep one format across both delivery modes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping


class FallacyType(str, Enum):
    """The fixed set of fallacy categories the model may report."""
    AD_HOMINEM = "AD_HOMINEM"
    STRAW_MAN = "STRAW_MAN"
    FALSE_EQUIVALENCE = "FALSE_EQUIVALENCE"
    APPEAL_TO_AUTHORITY = "APPEAL_TO_AUTHORITY"
    SLIPPERY_SLOPE = "SLIPPERY_SLOPE"
    FALSE_DICHOTOMY = "FALSE_DICHOTOMY"
    CIRCULAR_REASONING = "CIRCULAR_REASONING"
    HASTY_GENERALIZATION = "HASTY_GENERALIZATION"
    APPEAL_TO_EMOTION = "APPEAL_TO_EMOTION"
    RED_HERRING = "RED_HERRING"


class InvalidFallacy(ValueError):
    """A model-emitted record that is not a usable fallacy span."""


class AnalysisError(Exception):
    """Generic analysis failure. Upstream detail is chained, never shown."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Fallacy:
    """A single detected fallacy span."""
    type: FallacyType
    description: str
    start_index: int
    end_index: int
    explanation: str
    confidence: float  # 0.0 to 1.0

    @property
    def key(self) -> tuple[FallacyType, int, int]:
        """Identity for deduplication. Text fields do not participate."""
        return (self.type, self.start_index, self.end_index)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], text: str) -> "Fallacy":
        """
        Validate a model-emitted mapping against the analyzed text.

        Raises:
            InvalidFallacy if the type is unknown, the span falls outside
            the text, or the confidence is not a number in [0, 1].
        """
        if not isinstance(payload, Mapping):
            raise InvalidFallacy("fallacy payload must be an object")

        try:
            fallacy_type = FallacyType(payload.get("type"))
        except ValueError:
            raise InvalidFallacy(f"unknown fallacy type: {payload.get('type')!r}")

        start = payload.get("startIndex")
        end = payload.get("endIndex")
        if not (isinstance(start, int) and isinstance(end, int)) \
                or isinstance(start, bool) or isinstance(end, bool):
            raise InvalidFallacy("startIndex/endIndex must be integers")
        if not 0 <= start < end <= len(text):
            raise InvalidFallacy(
                f"span [{start}, {end}) outside text of length {len(text)}"
            )

        confidence = payload.get("confidence")
        if not _is_number(confidence) or not 0.0 <= confidence <= 1.0:
            raise InvalidFallacy(f"confidence out of range: {confidence!r}")

        return cls(
            type=fallacy_type,
            description=str(payload.get("description") or ""),
            start_index=start,
            end_index=end,
            explanation=str(payload.get("explanation") or ""),
            confidence=float(confidence),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "description": self.description,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "explanation": self.explanation,
            "confidence": self.confidence,
        }


def sort_by_confidence(fallacies: Iterable[Fallacy]) -> tuple[Fallacy, ...]:
    """Highest confidence first. Ties keep discovery order (stable sort)."""
    return tuple(sorted(fallacies, key=lambda f: -f.confidence))


@dataclass(frozen=True)
class AnalysisResult:
    """One immutable snapshot of an analysis."""
    text: str
    fallacies: tuple[Fallacy, ...]
    analysis_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_final_result: bool = False

    def as_final(self) -> "AnalysisResult":
        """Copy re-marked as the final snapshot."""
        return replace(self, is_final_result=True)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "fallacies": [f.to_dict() for f in self.fallacies],
            "analysisId": self.analysis_id,
            "timestamp": self.timestamp.isoformat(),
            "isFinalResult": self.is_final_result,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisResult":
        """Rebuild a snapshot from its wire/cache shape."""
        text = data["text"]
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif not isinstance(timestamp, datetime):
            timestamp = datetime.now(timezone.utc)
        return cls(
            text=text,
            fallacies=tuple(
                Fallacy.from_payload(f, text) for f in data.get("fallacies", [])
            ),
            analysis_id=str(data.get("analysisId", "")),
            timestamp=timestamp,
            is_final_result=bool(data.get("isFinalResult", False)),
        )
