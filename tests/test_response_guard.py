"""Tests for response_guard.py — drift, refusal detection and citation merging."""
from __future__ import annotations

from conftest import make_chunk
from energy_rag.corpus import chunk_material
from energy_rag.prompts import REFUSAL_MESSAGE
from energy_rag.response_guard import (
    EMPTY_RESPONSE_TEXT,
    MAX_CITATIONS,
    SectionCitation,
    extract_cited_ids,
    extract_section_citations,
    guard,
    merge_citations,
    resolve_reference_id,
)
from energy_rag.schema import Chunk, Reference


class TestExtractCitedIds:
    def test_sources_footer_then_inline(self):
        text = "Rods absorb neutrons [4] and [1].\nSources: [1], [2]"
        assert extract_cited_ids(text) == [1, 2, 4]

    def test_inline_only(self):
        assert extract_cited_ids("As noted in [19], fusion needs plasma.") == [19]

    def test_no_citations(self):
        assert extract_cited_ids("Sources: general knowledge") == []


class TestExtractSectionCitations:
    def test_dedupes_by_section_and_title(self):
        chunks = [make_chunk("a", title="Decay"), make_chunk("b", title="Decay"), make_chunk("c", title="Fission")]
        assert extract_section_citations(chunks) == [
            SectionCitation(section="highlights", section_name="Fission Introduction", title="Decay"),
            SectionCitation(section="highlights", section_name="Fission Introduction", title="Fission"),
        ]

    def test_capped_at_five(self):
        chunks = [make_chunk(f"c{i}", title=f"T{i}") for i in range(8)]
        assert len(extract_section_citations(chunks)) == 5

    def test_chunks_without_section_skipped(self):
        chunk = Chunk(id="x", section="", section_name="", title="T", text="t")
        assert extract_section_citations([chunk]) == []


class TestMergeCitations:
    def test_drops_repeated_ids(self, ref_map):
        merged = merge_citations([ref_map[1], ref_map[2]], [ref_map[2], ref_map[3]])
        assert [r.id for r in merged] == [1, 2, 3]

    def test_id_zero_is_a_real_id(self):
        zero = Reference(id=0, text="Zero")
        other = Reference(id=None, text="Zero")
        assert merge_citations([zero], [other]) == [zero, other]

    def test_unnumbered_refs_keyed_by_text_and_url(self):
        a = Reference(id=None, text="Betz 1920 https://example.org/betz")
        b = Reference(id=None, text="Betz 1920", url="https://example.org/betz")
        c = Reference(id=None, text="Betz 1920 https://example.org/betz")
        assert merge_citations([a, b, c]) == [a, b]

    def test_limit(self):
        refs = [Reference(id=i, text=str(i)) for i in range(20)]
        assert len(merge_citations(refs)) == MAX_CITATIONS


class TestGuard:
    def test_empty_answer_replaced(self, sample_chunks, ref_map):
        result = guard("   ", sample_chunks, ref_map)
        assert result.text == EMPTY_RESPONSE_TEXT
        assert result.modified is True
        assert result.is_refusal is False
        assert len(result.section_citations) == 3

    def test_none_answer_replaced(self):
        result = guard(None, None, None)
        assert result.text == EMPTY_RESPONSE_TEXT
        assert result.citations == []

    def test_clean_answer_keeps_text_and_strips_footer(self, sample_chunks, ref_map):
        result = guard("Each fission releases neutrons [1].\nSources: [1]", sample_chunks, ref_map)
        assert result.text == "Each fission releases neutrons [1]."
        assert result.modified is False
        assert result.is_refusal is False

    def test_cited_ids_come_first_then_evidence_refs(self, sample_chunks, ref_map):
        result = guard("Nuclides decay [3].", sample_chunks, ref_map)
        assert [r.id for r in result.citations] == [3, 1, 2]

    def test_unknown_cited_ids_ignored(self, ref_map):
        result = guard("See [42].", [], ref_map)
        assert result.citations == []

    def test_inline_card_refs_included(self, corpus):
        wind = corpus.get_chunks()[-1]
        result = guard("Turbines are limited by Betz.", [wind], corpus.get_ref_map())
        assert [r.text for r in result.citations] == [
            "IEA, Renewables 2023",
            "Betz, A. (1920) Das Maximum der theoretisch moeglichen Ausnuetzung",
        ]

    def test_refusal_detected(self, ref_map):
        result = guard(REFUSAL_MESSAGE, [], ref_map)
        assert result.is_refusal is True
        assert result.text == REFUSAL_MESSAGE
        assert result.modified is False

    def test_early_drift_becomes_refusal(self, sample_chunks, ref_map):
        result = guard("As an AI language model, I cannot say.", sample_chunks, ref_map)
        assert result.text == REFUSAL_MESSAGE
        assert result.is_refusal is True
        assert result.modified is True
        assert result.citations == []

    def test_late_drift_is_trimmed(self, ref_map):
        answer = (
            "Fusion joins light nuclei such as deuterium and tritium into helium. "
            "As an AI language model I have no lab."
        )
        result = guard(answer, [], ref_map)
        assert result.text == "Fusion joins light nuclei such as deuterium and tritium into helium."
        assert result.modified is True
        assert result.is_refusal is False


class TestResolveReferenceId:
    def test_numbered_reference_keeps_its_id(self, ref_map):
        assert resolve_reference_id(Reference(id=7, text="anything"), ref_map) == 7

    def test_url_match_wins_over_text(self):
        ref_map = {
            1: Reference(id=1, text="IEA Solar report (summary)"),
            2: Reference(id=2, text="IEA", url="https://iea.org/solar"),
        }
        inline = Reference(id=None, text="IEA Solar report", url="https://IEA.org/solar")
        assert resolve_reference_id(inline, ref_map) == 2

    def test_url_inside_footer_text(self):
        ref_map = {3: Reference(id=3, text="IEA Solar report https://iea.org/solar")}
        inline = Reference(id=None, text="Solar outlook", url="https://iea.org/solar")
        assert resolve_reference_id(inline, ref_map) == 3

    def test_text_containment_either_way(self, ref_map):
        assert resolve_reference_id(Reference(id=None, text="ITER Organization"), ref_map) == 2
        longer = Reference(id=None, text="See IEA, Renewables 2023, chapter 2")
        assert resolve_reference_id(longer, ref_map) == 3

    def test_unmatched_reference_stays_unnumbered(self, ref_map):
        assert resolve_reference_id(Reference(id=None, text="Betz 1920"), ref_map) is None


class TestInlineReferenceDedup:
    def test_card_ref_matching_footer_url_cited_once(self):
        material = {
            "index": {
                "footer": {
                    "reference": {
                        "items": [{"id": 3, "text": "IEA Solar report https://iea.org/solar"}]
                    }
                },
                "features": {
                    "cards": [
                        {
                            "title": "Solar",
                            "description": "Panels convert sunlight.",
                            "detail": '<p>Output grows <sup class="ref-cite" data-ref-id="3">[3]</sup>.</p>',
                            "references": [{"text": "IEA Solar report", "url": "https://iea.org/solar"}],
                        }
                    ]
                },
            }
        }
        chunks, ref_map = chunk_material(material)
        result = guard("Solar output keeps growing.", chunks, ref_map)
        assert [r.id for r in result.citations] == [3]
