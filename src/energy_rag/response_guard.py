"""Post-generation checks on a model answer before it is shown.

Detects refusals and off-persona drift, resolves the reference ids the answer
cites, merges them with the evidence chunks' own citations, and strips the
trailing ``Sources:`` footer (citations are returned separately).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .prompts import REFUSAL_MESSAGE
from .schema import Chunk, Reference

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "I was unable to generate a response. Please try again."

REFUSAL_MARKERS: tuple[str, ...] = (
    "i'm only able to answer",
    "i can only answer",
    "outside my scope",
    "not able to help with that",
    "cannot assist with",
    "only answer questions about energy physics",
    "the project materials don't cover this in enough detail",
)

DRIFT_MARKERS: tuple[str, ...] = (
    "as an ai language model",
    "i am chatgpt",
    "as chatgpt",
    "i don't have access to the internet",
    "my training data",
    "i was trained by openai",
)

# Drift this far into the answer is cut off; earlier drift replaces the answer.
MIN_SALVAGE_CHARS = 60
MAX_CITATIONS = 8
MAX_SECTION_CITATIONS = 5

_SOURCES_RE = re.compile(r"sources?:?\s*([\d\s,\[\]]+)", re.I)
_INLINE_CITE_RE = re.compile(r"\[(\d+)\]")
_SOURCES_FOOTER_RE = re.compile(r"\n?sources?:?\s*[\[\d\]\s,]+\.?\s*$", re.I)
_URL_RE = re.compile(r"https?://[^\s)]+", re.I)


@dataclass(slots=True)
class SectionCitation:
    section: str
    section_name: str
    title: str


@dataclass(slots=True)
class GuardedResponse:
    text: str
    citations: list[Reference] = field(default_factory=list)
    section_citations: list[SectionCitation] = field(default_factory=list)
    is_refusal: bool = False
    modified: bool = False


def extract_cited_ids(text: str) -> list[int]:
    """Reference ids from the ``Sources:`` footer plus inline ``[N]`` markers."""
    ids: dict[int, None] = {}
    match = _SOURCES_RE.search(text)
    if match:
        for number in re.findall(r"\d+", match.group(1)):
            ids.setdefault(int(number), None)
    for number in _INLINE_CITE_RE.findall(text):
        ids.setdefault(int(number), None)
    return list(ids)


def extract_section_citations(chunks: list[Chunk] | None) -> list[SectionCitation]:
    seen: set[tuple[str, str]] = set()
    items: list[SectionCitation] = []
    for chunk in chunks or []:
        if not chunk.section:
            continue
        key = (chunk.section, chunk.title)
        if key in seen:
            continue
        seen.add(key)
        items.append(
            SectionCitation(
                section=chunk.section,
                section_name=chunk.section_name or chunk.section,
                title=chunk.title or chunk.section_name or chunk.section,
            )
        )
    return items[:MAX_SECTION_CITATIONS]


def _reference_url(reference: Reference) -> str:
    match = _URL_RE.search(reference.url or reference.text)
    return match.group(0) if match else ""


def _citation_key(reference: Reference) -> str:
    if reference.id is not None:
        return f"id:{reference.id}"
    return f"txt:{reference.text.strip()}|url:{_reference_url(reference)}"


def resolve_reference_id(reference: Reference, ref_map: dict[int, Reference]) -> int | None:
    """Find the footer id an unnumbered reference points at.

    A footer entry whose url or text contains the reference's url wins;
    otherwise the first entry whose text contains the reference text, or
    whose first 80 characters appear in it.
    """
    if reference.id is not None:
        return reference.id
    url = _reference_url(reference).lower()
    if url:
        for candidate in ref_map.values():
            if url in (candidate.url or "").lower() or url in candidate.text.lower():
                return candidate.id
    text = reference.text.strip().lower()
    if text:
        for candidate in ref_map.values():
            footer_text = candidate.text.lower()
            if footer_text and (text in footer_text or footer_text[:80] in text):
                return candidate.id
    return None


def merge_citations(*groups: list[Reference], limit: int = MAX_CITATIONS) -> list[Reference]:
    """Concatenate citation groups, dropping repeats by id (or text and url)."""
    merged: list[Reference] = []
    seen: set[str] = set()
    for group in groups:
        for reference in group:
            key = _citation_key(reference)
            if key in seen:
                continue
            seen.add(key)
            merged.append(reference)
    return merged[:limit]


def evidence_citations(chunks: list[Chunk] | None, ref_map: dict[int, Reference]) -> list[Reference]:
    citations: list[Reference] = []
    for chunk in chunks or []:
        citations.extend(ref_map[ref_id] for ref_id in chunk.ref_ids if ref_id in ref_map)
        # inline refs that point at a footer entry are cited as that entry
        citations.extend(ref_map.get(resolve_reference_id(ref, ref_map), ref) for ref in chunk.refs)
    return citations


def _first_drift_index(lower: str) -> int:
    positions = [lower.find(marker) for marker in DRIFT_MARKERS]
    found = [position for position in positions if position >= 0]
    return min(found) if found else -1


def guard(
    response_text: str | None,
    evidence_chunks: list[Chunk] | None,
    ref_map: dict[int, Reference] | None,
) -> GuardedResponse:
    """Validate a model answer and attach its resolved citations.

    Args:
        response_text: Raw model output.
        evidence_chunks: Chunks that were sent to the model as evidence.
        ref_map: Footer references keyed by id.

    Returns:
        The cleaned answer with citations and refusal/modification flags.
    """
    ref_map = ref_map or {}
    sections = extract_section_citations(evidence_chunks)

    if not response_text or not response_text.strip():
        return GuardedResponse(text=EMPTY_RESPONSE_TEXT, section_citations=sections, modified=True)

    lower = response_text.lower()
    is_refusal = any(marker in lower for marker in REFUSAL_MARKERS)

    text = response_text
    modified = False
    drift_at = _first_drift_index(lower)
    if drift_at >= 0:
        if drift_at <= MIN_SALVAGE_CHARS:
            logger.warning("Model answer drifted off persona; replacing with refusal")
            return GuardedResponse(
                text=REFUSAL_MESSAGE,
                section_citations=sections,
                is_refusal=True,
                modified=True,
            )
        logger.info("Trimming off-persona tail at char %d", drift_at)
        text = response_text[:drift_at].strip()
        modified = True

    cited = [ref_map[ref_id] for ref_id in extract_cited_ids(text) if ref_id in ref_map]
    citations = merge_citations(cited, evidence_citations(evidence_chunks, ref_map))

    return GuardedResponse(
        text=_SOURCES_FOOTER_RE.sub("", text).strip(),
        citations=citations,
        section_citations=sections,
        is_refusal=is_refusal,
        modified=modified,
    )
