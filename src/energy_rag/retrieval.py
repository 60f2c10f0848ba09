"""Evidence retrieval over the current corpus snapshot.

A `Retriever` owns one index snapshot at a time: the corpus version it
was built from, that version's chunks, and a dedicated embedding service
instance. Concurrent callers share the in-flight build task instead of each
starting their own, and every query scores against the snapshot it obtained,
so a reset or corpus rebuild never tears a running retrieval.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from .corpus import CorpusBuilder
from .embeddings import EmbeddingBackend, embedding_service_factory
from .errors import RetrievalError
from .schema import Chunk, Confidence, RetrievalResult, ScoredChunk
from .settings import RetrievalConfig

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_SCORE = 0.3
MEDIUM_CONFIDENCE_SCORE = 0.12


def bucket_confidence(best_score: float, has_evidence: bool) -> Confidence:
    """Map the best candidate score onto the ordinal confidence buckets.

    ``best_score`` is taken over every scored chunk, not only those that
    survived filtering; only an empty evidence list forces ``none``.
    """
    if not has_evidence:
        return "none"
    if best_score >= HIGH_CONFIDENCE_SCORE:
        return "high"
    if best_score >= MEDIUM_CONFIDENCE_SCORE:
        return "medium"
    return "low"


def select_evidence(scored: list[ScoredChunk], config: RetrievalConfig) -> RetrievalResult:
    """Filter by ``min_score``, cap at ``top_k`` and attach a confidence bucket."""
    kept = [row.chunk for row in scored if row.score >= config.min_score][: max(config.top_k, 0)]
    best = scored[0].score if scored else 0.0
    return RetrievalResult(chunks=kept, confidence=bucket_confidence(best, bool(kept)))


@dataclass(slots=True)
class IndexSnapshot:
    """A corpus version paired with the embedding index built from it."""

    corpus_version: int
    chunks: list[Chunk]
    service: EmbeddingBackend
    build: asyncio.Task | None = field(default=None, repr=False)


class Retriever:
    """Retrieval state for one corpus: lazy index build, caching and reset."""

    def __init__(
        self,
        corpus: CorpusBuilder,
        service_factory: Callable[[], EmbeddingBackend] | None = None,
    ):
        self.corpus = corpus
        # default services share one neural encoder across rebuilds
        self.service_factory = service_factory or embedding_service_factory()
        self._snapshot: IndexSnapshot | None = None

    def _current_snapshot(self) -> IndexSnapshot | None:
        """Return the cached snapshot, replacing it if the corpus moved on."""
        corpus = self.corpus.snapshot()
        if not corpus.chunks:
            return None
        snapshot = self._snapshot
        if snapshot is None or snapshot.corpus_version != corpus.version:
            if snapshot is not None:
                logger.info(
                    "Corpus changed (v%d -> v%d); rebuilding index",
                    snapshot.corpus_version,
                    corpus.version,
                )
            snapshot = IndexSnapshot(
                corpus_version=corpus.version,
                chunks=list(corpus.chunks),
                service=self.service_factory(),
            )
            self._snapshot = snapshot
        return snapshot

    async def ensure_index(self, use_neural: bool = False) -> IndexSnapshot | None:
        """Build the index for the current corpus unless it is already built.

        Concurrent callers await the same build task. A failed build is
        forgotten so the next call retries.

        Returns:
            The snapshot to score against, or ``None`` for an empty corpus.

        Raises:
            RetrievalError: If the embedding service fails to build.
        """
        snapshot = self._current_snapshot()
        if snapshot is None:
            return None
        if snapshot.build is None:
            logger.debug("Building index for corpus v%d", snapshot.corpus_version)
            snapshot.build = asyncio.ensure_future(
                snapshot.service.build_index(snapshot.chunks, use_neural)
            )
        try:
            await asyncio.shield(snapshot.build)
        except Exception as exc:
            if self._snapshot is snapshot:
                self._snapshot = None
            raise RetrievalError(f"index build failed for corpus v{snapshot.corpus_version}") from exc
        return snapshot

    async def retrieve(self, query: str, config: RetrievalConfig | None = None) -> RetrievalResult:
        """Return up to ``top_k`` evidence chunks for a query.

        Args:
            query: Student question, already scope-checked.
            config: Retrieval options; defaults to ``RetrievalConfig()``.

        Returns:
            Evidence chunks in descending score order plus a confidence bucket.

        Raises:
            RetrievalError: If the embedding service fails to build or score.
        """
        config = config or RetrievalConfig()
        snapshot = await self.ensure_index(config.use_neural)
        if snapshot is None:
            return RetrievalResult(chunks=[], confidence="none")

        try:
            scored = await snapshot.service.score_chunks(query, config.use_neural)
        except Exception as exc:
            raise RetrievalError("chunk scoring failed") from exc

        result = select_evidence(scored, config)
        logger.debug(
            "Retrieved %d/%d chunks (confidence=%s) for corpus v%d",
            len(result.chunks),
            len(scored),
            result.confidence,
            snapshot.corpus_version,
        )
        return result

    def reset(self) -> None:
        """Drop the cached index so the next retrieval rebuilds it.

        Retrievals already holding the old snapshot finish against it.
        """
        self._snapshot = None

