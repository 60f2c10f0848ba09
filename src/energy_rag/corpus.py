"""Corpus construction from the nested course material structure.

The material holds five named sections under ``material["index"]``. Each item
(or card) becomes one searchable chunk whose text is the title plus the
stripped description and detail HTML. Citation markers embedded in the HTML
(``<span class="ref-cite" data-ref-id="N">``) are resolved against the footer
reference list.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any

from bs4 import BeautifulSoup

from .schema import Chunk, CorpusSnapshot, Reference

logger = logging.getLogger(__name__)

CITATION_SELECTOR = ".ref-cite[data-ref-id]"
# Leading integer, trailing junk ignored ("12abc" -> 12).
_LEADING_INT_RE = re.compile(r"\s*(-?\d+)")


@dataclass(frozen=True, slots=True)
class SectionSpec:
    key: str
    name: str
    list_field: str = "items"
    inline_refs_field: str | None = None


# Traversal order is part of the corpus contract.
SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec("highlights", "Fission Introduction"),
    SectionSpec("Fusion2", "Nuclear Fusion"),
    SectionSpec("safety", "Molten Salt Reactors (MSR)"),
    SectionSpec("features", "Renewable Energy", list_field="cards", inline_refs_field="references"),
    SectionSpec("sustainability", "Fossil Fuels vs Nuclear"),
)


def _parse(html: Any) -> BeautifulSoup | None:
    if not html or not isinstance(html, str):
        return None
    try:
        return BeautifulSoup(html, "html.parser")
    except Exception:  # noqa: BLE001
        logger.warning("Unparseable HTML fragment dropped (%d chars)", len(html))
        return None


def strip_html(html: Any) -> str:
    """Return the visible text of an HTML fragment with whitespace collapsed.

    Non-string or unparseable input yields an empty string.
    """
    soup = _parse(html)
    if soup is None:
        return ""
    return re.sub(r"\s+", " ", soup.get_text()).strip()


def extract_ref_ids(html: Any) -> list[int]:
    """Collect citation ids from ``.ref-cite[data-ref-id]`` markers, first-seen order."""
    soup = _parse(html)
    if soup is None:
        return []
    seen: dict[int, None] = {}
    for element in soup.select(CITATION_SELECTOR):
        match = _LEADING_INT_RE.match(str(element.get("data-ref-id")))
        if match is None:
            continue
        seen.setdefault(int(match.group(1)), None)
    return list(seen)


def make_chunk_id(section_key: str, title: str) -> str:
    slug = re.sub(r"\s+", "_", title).lower()
    return f"{section_key}__{slug}"


def _as_reference(raw: Any) -> Reference | None:
    if isinstance(raw, Reference):
        return raw
    if not isinstance(raw, dict) or not raw.get("text"):
        return None
    ref_id = raw.get("id")
    try:
        ref_id = int(ref_id) if ref_id is not None else None
    except (TypeError, ValueError):
        ref_id = None
    url = raw.get("url")
    return Reference(id=ref_id, text=str(raw["text"]), url=str(url) if url else None)


def build_ref_map(index: dict) -> dict[int, Reference]:
    """Index the footer reference list by numeric id."""
    footer = index.get("footer")
    block = footer.get("reference") if isinstance(footer, dict) else None
    items = block.get("items") if isinstance(block, dict) else None

    ref_map: dict[int, Reference] = {}
    for raw in items if isinstance(items, list) else []:
        reference = _as_reference(raw)
        if reference is not None and reference.id is not None:
            ref_map[reference.id] = reference
    return ref_map


def make_chunk(
    section: SectionSpec,
    item: dict,
    ref_map: dict[int, Reference],
) -> Chunk:
    """Build one chunk from a section item, resolving its citations."""
    title = item.get("title") if isinstance(item.get("title"), str) else ""
    description = item.get("description")
    detail = item.get("detail")

    text = " ".join(part for part in (title, strip_html(description), strip_html(detail)) if part)

    ref_ids = list(dict.fromkeys(extract_ref_ids(description) + extract_ref_ids(detail)))
    refs = [ref_map[ref_id] for ref_id in ref_ids if ref_id in ref_map]

    if section.inline_refs_field:
        inline = item.get(section.inline_refs_field)
        for raw in inline if isinstance(inline, list) else []:
            reference = _as_reference(raw)
            if reference is not None and all(existing.text != reference.text for existing in refs):
                refs.append(reference)

    return Chunk(
        id=make_chunk_id(section.key, title),
        section=section.key,
        section_name=section.name,
        title=title,
        text=text,
        ref_ids=tuple(ref_ids),
        refs=tuple(refs),
    )


def chunk_material(material: Any, dedupe_ids: bool = False) -> tuple[list[Chunk], dict[int, Reference]]:
    """Flatten the five known sections of a material object into chunks.

    Args:
        material: Loaded material mapping; anything else produces no chunks.
        dedupe_ids: Append ``__2``, ``__3`` ... to chunk ids repeated within
            the build. Off by default so ids stay a pure function of
            section and title.

    Returns:
        Tuple of ``(chunks, ref_map)``.
    """
    index = material.get("index") if isinstance(material, dict) else None
    if not isinstance(index, dict):
        return [], {}

    ref_map = build_ref_map(index)
    chunks: list[Chunk] = []
    seen_ids: dict[str, int] = {}

    for section in SECTIONS:
        block = index.get(section.key)
        entries = block.get(section.list_field) if isinstance(block, dict) else None
        for item in entries if isinstance(entries, list) else []:
            if not isinstance(item, dict):
                continue
            chunk = make_chunk(section, item, ref_map)
            count = seen_ids.get(chunk.id, 0) + 1
            seen_ids[chunk.id] = count
            if count > 1:
                logger.warning("Duplicate chunk id %r (occurrence %d)", chunk.id, count)
                if dedupe_ids:
                    chunk = replace(chunk, id=f"{chunk.id}__{count}")
            chunks.append(chunk)

    return chunks, ref_map


class CorpusBuilder:
    """Holds the latest corpus build and replaces it atomically on rebuild."""

    def __init__(self, dedupe_ids: bool = False) -> None:
        self.dedupe_ids = dedupe_ids
        self._snapshot: CorpusSnapshot | None = None
        self._version = 0

    def build(self, material: Any) -> list[Chunk]:
        """Rebuild the corpus from material and return the new chunk list."""
        chunks, ref_map = chunk_material(material, dedupe_ids=self.dedupe_ids)
        self._version += 1
        self._snapshot = CorpusSnapshot(version=self._version, chunks=tuple(chunks), ref_map=ref_map)
        logger.info(
            "Corpus v%d built: %d chunks, %d references",
            self._version,
            len(chunks),
            len(ref_map),
        )
        return list(chunks)

    def snapshot(self) -> CorpusSnapshot:
        if self._snapshot is None:
            return CorpusSnapshot(version=0, chunks=())
        return self._snapshot

    def get_chunks(self) -> list[Chunk]:
        return list(self.snapshot().chunks)

    def get_ref_map(self) -> dict[int, Reference]:
        return dict(self.snapshot().ref_map)

    def is_built(self) -> bool:
        return self._snapshot is not None

    @property
    def version(self) -> int:
        return self.snapshot().version
