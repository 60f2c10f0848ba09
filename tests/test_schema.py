"""Tests for schema dataclasses."""
from __future__ import annotations

import dataclasses

import pytest

from energy_rag.schema import (
    CONFIDENCE_ORDER,
    Chunk,
    Message,
    Reference,
    RetrievalResult,
    ScopeDecision,
    confidence_rank,
)


class TestChunk:
    def test_defaults(self):
        chunk = Chunk(id="safety__x", section="safety", section_name="MSR", title="X", text="X")
        assert chunk.ref_ids == ()
        assert chunk.refs == ()

    def test_frozen(self):
        chunk = Chunk(id="safety__x", section="safety", section_name="MSR", title="X", text="X")
        with pytest.raises(dataclasses.FrozenInstanceError):
            chunk.text = "changed"  # type: ignore[misc]

    def test_hashable_and_equal_by_value(self):
        a = Chunk(id="a", section="s", section_name="S", title="T", text="t", ref_ids=(1,))
        b = Chunk(id="a", section="s", section_name="S", title="T", text="t", ref_ids=(1,))
        assert a == b
        assert len({a, b}) == 1


class TestReference:
    def test_url_optional(self):
        assert Reference(id=None, text="Betz 1920").url is None


class TestScopeDecision:
    def test_slots_prevent_arbitrary_attributes(self):
        decision = ScopeDecision(in_scope=True, confidence="low", reason="short_query")
        with pytest.raises(AttributeError):
            decision.unexpected_field = "oops"  # type: ignore[attr-defined]

    def test_matched_defaults_to_none(self):
        assert ScopeDecision(in_scope=False, confidence="high", reason="empty_query").matched is None


class TestRetrievalResult:
    def test_instantiation(self):
        result = RetrievalResult(chunks=[], confidence="none")
        assert result.chunks == []
        assert result.confidence == "none"


class TestMessage:
    def test_to_dict(self):
        assert Message(role="user", content="hi").to_dict() == {"role": "user", "content": "hi"}


class TestConfidenceRank:
    def test_order(self):
        assert [confidence_rank(c) for c in CONFIDENCE_ORDER] == [0, 1, 2, 3]
        assert confidence_rank("high") > confidence_rank("medium")

    def test_unknown_bucket_raises(self):
        with pytest.raises(ValueError):
            confidence_rank("certain")
