"""
Domain Type Tests — Fallacy validation, identity, snapshot wire shape.
"""

from __future__ import annotations

import pytest

from fallacyscan.models import (
    AnalysisResult,
    Fallacy,
    FallacyType,
    InvalidFallacy,
    sort_by_confidence,
)

TEXT = "You can't trust his tax plan, he failed algebra in high school."


def payload(**overrides) -> dict:
    base = {
        "type": "AD_HOMINEM",
        "description": "Attacks the speaker",
        "startIndex": 0,
        "endIndex": 28,
        "explanation": "The plan is dismissed because of its author.",
        "confidence": 0.9,
    }
    base.update(overrides)
    return base


# ============================================================
# VALIDATION
# ============================================================

class TestFromPayload:
    """Fallacy.from_payload accepts only spans that fit the text."""

    def test_valid_payload(self):
        f = Fallacy.from_payload(payload(), TEXT)
        assert f.type is FallacyType.AD_HOMINEM
        assert f.start_index == 0
        assert f.end_index == 28
        assert f.confidence == 0.9

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(type="BANDWAGON"), TEXT)

    def test_end_beyond_text_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(endIndex=len(TEXT) + 1), TEXT)

    def test_end_at_text_length_accepted(self):
        f = Fallacy.from_payload(payload(endIndex=len(TEXT)), TEXT)
        assert f.end_index == len(TEXT)

    def test_empty_span_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(startIndex=5, endIndex=5), TEXT)

    def test_negative_start_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(startIndex=-1), TEXT)

    def test_string_indices_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(startIndex="0"), TEXT)

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(confidence=1.5), TEXT)

    def test_boolean_confidence_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(payload(confidence=True), TEXT)

    def test_missing_text_fields_default_empty(self):
        raw = payload()
        del raw["description"]
        del raw["explanation"]
        f = Fallacy.from_payload(raw, TEXT)
        assert f.description == ""
        assert f.explanation == ""

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidFallacy):
            Fallacy.from_payload(["AD_HOMINEM"], TEXT)


# ============================================================
# IDENTITY & ORDERING
# ============================================================

class TestIdentity:

    def test_key_ignores_text_fields(self):
        a = Fallacy.from_payload(payload(description="one"), TEXT)
        b = Fallacy.from_payload(payload(description="two", explanation="other"), TEXT)
        assert a.key == b.key

    def test_key_differs_by_type(self):
        a = Fallacy.from_payload(payload(), TEXT)
        b = Fallacy.from_payload(payload(type="RED_HERRING"), TEXT)
        assert a.key != b.key

    def test_sort_descending_and_stable(self):
        low = Fallacy.from_payload(payload(confidence=0.4), TEXT)
        tie_first = Fallacy.from_payload(payload(type="STRAW_MAN", confidence=0.8), TEXT)
        tie_second = Fallacy.from_payload(payload(type="RED_HERRING", confidence=0.8), TEXT)
        high = Fallacy.from_payload(payload(type="SLIPPERY_SLOPE", confidence=0.95), TEXT)
        ordered = sort_by_confidence([low, tie_first, tie_second, high])
        assert ordered == (high, tie_first, tie_second, low)


# ============================================================
# WIRE SHAPE
# ============================================================

class TestAnalysisResult:

    def test_to_dict_camel_case(self):
        result = AnalysisResult(
            text=TEXT,
            fallacies=(Fallacy.from_payload(payload(), TEXT),),
            analysis_id="abc",
        )
        data = result.to_dict()
        assert data["analysisId"] == "abc"
        assert data["isFinalResult"] is False
        assert data["fallacies"][0]["startIndex"] == 0
        assert data["fallacies"][0]["type"] == "AD_HOMINEM"

    def test_from_dict_restores_result(self):
        result = AnalysisResult(
            text=TEXT,
            fallacies=(Fallacy.from_payload(payload(), TEXT),),
            analysis_id="abc",
            is_final_result=True,
        )
        assert AnalysisResult.from_dict(result.to_dict()) == result

    def test_as_final_copies(self):
        result = AnalysisResult(text=TEXT, fallacies=(), analysis_id="abc")
        final = result.as_final()
        assert final.is_final_result is True
        assert result.is_final_result is False
        assert final.analysis_id == result.analysis_id
