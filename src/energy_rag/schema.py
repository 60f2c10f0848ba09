from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Confidence = Literal["none", "low", "medium", "high"]

CONFIDENCE_ORDER: tuple[str, ...] = ("none", "low", "medium", "high")


def confidence_rank(confidence: str) -> int:
    """Return the ordinal position of a confidence bucket (`none` is 0)."""
    return CONFIDENCE_ORDER.index(confidence)


@dataclass(frozen=True, slots=True)
class Reference:
    """Citation entry from the material footer or a card's inline list."""

    id: int | None
    text: str
    url: str | None = None


@dataclass(frozen=True, slots=True)
class Chunk:
    """Retrievable unit of corpus text with its resolved citations."""

    id: str
    section: str
    section_name: str
    title: str
    text: str
    ref_ids: tuple[int, ...] = ()
    refs: tuple[Reference, ...] = ()


@dataclass(frozen=True, slots=True)
class CorpusSnapshot:
    """One immutable corpus build; rebuilding produces a new version."""

    version: int
    chunks: tuple[Chunk, ...]
    ref_map: dict[int, Reference] = field(default_factory=dict)


@dataclass(slots=True)
class ScopeDecision:
    """In/out-of-domain verdict for a query, with the rule that decided it."""

    in_scope: bool
    confidence: Literal["low", "medium", "high"]
    reason: str
    matched: list[str] | None = None


@dataclass(slots=True)
class ScoredChunk:
    chunk: Chunk
    score: float


@dataclass(slots=True)
class RetrievalResult:
    """Evidence chunks for one query plus the calibrated confidence bucket."""

    chunks: list[Chunk]
    confidence: Confidence


@dataclass(slots=True)
class Message:
    role: Literal["system", "user"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}
