"""Chunk relevance scoring: TF-IDF with an optional neural embedding blend.

Any object with async ``build_index(chunks, use_neural)`` and
``score_chunks(query, use_neural)`` satisfies the retriever's contract; the
returned scores must lie in ``[0, 1]`` and be sorted descending.
"""
from __future__ import annotations

import asyncio
import logging
import math
import re
import threading
from collections import Counter
from typing import Callable, Protocol

import numpy as np
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from .schema import Chunk, ScoredChunk
from .settings import EmbeddingSettings

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    """
    a an the is it in on at to of and or but for with from by as be was were
    are has have had this that these those also can could would should may
    might will not no its their they we he she his her our your i me my you
    do does did been into if so up out all more than which what how when
    where who why such any some between about both each very there then them
    well
    """.split()
)

UNSEEN_TERM_IDF = 0.5

Encoder = Callable[[list[str]], np.ndarray]


class EmbeddingBackend(Protocol):
    async def build_index(self, chunks: list[Chunk], use_neural: bool) -> None: ...

    async def score_chunks(self, query: str, use_neural: bool) -> list[ScoredChunk]: ...


def tokenize(text: str) -> list[str]:
    """Lowercase, drop punctuation (hyphens kept), and remove stop words."""
    cleaned = re.sub(r"[^a-z0-9\s\-]", " ", text.lower())
    return [token for token in cleaned.split() if len(token) > 1 and token not in STOP_WORDS]


def embed_texts(texts: list[str], model: str = "text-embedding-3-small") -> np.ndarray:
    """Generate embedding vectors for input texts using OpenAI embeddings API.

    Args:
        texts: Input strings to embed.
        model: Embedding model name.

    Returns:
        A `float32` NumPy matrix shaped `(len(texts), embedding_dim)`.
    """
    client = OpenAI()
    response = client.embeddings.create(model=model, input=texts)
    vectors = [row.embedding for row in response.data]
    return np.array(vectors, dtype=np.float32)


def cosine_similarity(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between one query vector and many vectors.

    Args:
        query_vector: Query embedding vector.
        matrix: Candidate embedding matrix where each row is one vector.

    Returns:
        A 1D array of cosine similarity scores aligned to matrix rows.
    """
    query_norm = np.linalg.norm(query_vector)
    matrix_norm = np.linalg.norm(matrix, axis=1)
    denominator = np.maximum(query_norm * matrix_norm, 1e-12)
    return (matrix @ query_vector) / denominator


class TfidfIndex:
    """Dense TF-IDF matrix over the corpus vocabulary."""

    def __init__(self, texts: list[str]):
        tokenized = [tokenize(text) for text in texts]
        doc_freq: Counter[str] = Counter()
        for tokens in tokenized:
            doc_freq.update(set(tokens))

        self.vocabulary = {term: col for col, term in enumerate(sorted(doc_freq))}
        total = len(texts)
        self.idf = np.array(
            [math.log((total + 1) / (doc_freq[term] + 1)) + 1 for term in self.vocabulary],
            dtype=np.float64,
        )

        self.matrix = np.zeros((total, len(self.vocabulary)), dtype=np.float64)
        for row, tokens in enumerate(tokenized):
            for term, count in Counter(tokens).items():
                col = self.vocabulary[term]
                self.matrix[row, col] = count / len(tokens) * self.idf[col]
        self.row_norms = np.linalg.norm(self.matrix, axis=1)

    def score(self, query: str) -> np.ndarray:
        """Cosine similarity of the query against every row; zero norms score 0."""
        tokens = tokenize(query)
        scores = np.zeros(len(self.row_norms), dtype=np.float64)
        if not tokens:
            return scores

        query_vector = np.zeros(len(self.vocabulary), dtype=np.float64)
        unseen_sq = 0.0
        for term, count in Counter(tokens).items():
            tf = count / len(tokens)
            col = self.vocabulary.get(term)
            if col is None:
                unseen_sq += (tf * UNSEEN_TERM_IDF) ** 2
            else:
                query_vector[col] = tf * self.idf[col]

        query_norm = math.sqrt(float(query_vector @ query_vector) + unseen_sq)
        denominator = query_norm * self.row_norms
        dots = self.matrix @ query_vector
        mask = denominator >= 1e-10
        scores[mask] = dots[mask] / denominator[mask]
        return scores


def sentence_transformer_encoder(model_name: str = "all-MiniLM-L6-v2") -> Encoder:
    """Return an encoder backed by a local sentence-transformers model."""
    model = SentenceTransformer(model_name)

    def encode(texts: list[str]) -> np.ndarray:
        return np.asarray(model.encode(texts, normalize_embeddings=True), dtype=np.float32)

    return encode


def openai_encoder(model: str = "text-embedding-3-small") -> Encoder:
    """Return an encoder backed by the OpenAI embeddings API."""

    def encode(texts: list[str]) -> np.ndarray:
        return embed_texts(texts, model=model)

    return encode


def default_encoder_factory(settings: EmbeddingSettings) -> Callable[[], Encoder]:
    if settings.neural_backend == "openai":
        return lambda: openai_encoder(settings.openai_model)
    return lambda: sentence_transformer_encoder(settings.local_model)


class SharedEncoder:
    """Loads an encoder on first use and returns that same encoder afterwards.

    A failed load is not remembered, so the next caller tries again.
    """

    def __init__(self, factory: Callable[[], Encoder]):
        self._factory = factory
        self._encoder: Encoder | None = None
        self._lock = threading.Lock()

    def __call__(self) -> Encoder:
        with self._lock:
            if self._encoder is None:
                self._encoder = self._factory()
            return self._encoder


def embedding_service_factory(settings: EmbeddingSettings | None = None) -> Callable[[], EmbeddingService]:
    """Return a factory of fresh services that all share one loaded encoder.

    Each index snapshot gets its own service; the neural model is loaded
    once per factory no matter how often the index is rebuilt.
    """
    settings = settings or EmbeddingSettings()
    encoder = SharedEncoder(default_encoder_factory(settings))
    return lambda: EmbeddingService(settings=settings, encoder_factory=encoder)


class EmbeddingService:
    """Scores every indexed chunk against a query.

    TF-IDF is always available. With ``use_neural`` the service also encodes
    chunks with a neural encoder and blends both similarities; any encoder
    failure disables the neural path for this instance and scoring falls back
    to TF-IDF alone.
    """

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        encoder_factory: Callable[[], Encoder] | None = None,
    ):
        self.settings = settings or EmbeddingSettings()
        self._encoder_factory = encoder_factory or default_encoder_factory(self.settings)
        self._encoder: Encoder | None = None
        self._chunks: list[Chunk] = []
        self._tfidf: TfidfIndex | None = None
        self._neural_vectors: np.ndarray | None = None
        self._neural_failed = False

    @property
    def neural_available(self) -> bool:
        return not self._neural_failed and self._neural_vectors is not None

    async def _encode(self, texts: list[str]) -> np.ndarray | None:
        if self._neural_failed:
            return None
        try:
            if self._encoder is None:
                self._encoder = await asyncio.to_thread(self._encoder_factory)
            return await asyncio.to_thread(self._encoder, texts)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Neural encoder unavailable, using TF-IDF only: %s", exc)
            self._neural_failed = True
            return None

    async def build_index(self, chunks: list[Chunk], use_neural: bool = False) -> None:
        """Index chunk texts; with ``use_neural`` also embed them."""
        self._chunks = list(chunks)
        self._tfidf = TfidfIndex([chunk.text for chunk in self._chunks])
        self._neural_vectors = None
        if use_neural and self._chunks:
            limit = self.settings.neural_char_limit
            vectors = await self._encode([chunk.text[:limit] for chunk in self._chunks])
            if vectors is None:
                logger.info("Falling back to TF-IDF index")
            else:
                self._neural_vectors = vectors
        logger.info(
            "Embedding index built: %d chunks, %d terms, neural=%s",
            len(self._chunks),
            len(self._tfidf.vocabulary),
            self._neural_vectors is not None,
        )

    async def score_chunks(self, query: str, use_neural: bool = False) -> list[ScoredChunk]:
        """Return every indexed chunk with a `[0, 1]` score, best first."""
        if self._tfidf is None or not self._chunks:
            return []

        scores = self._tfidf.score(query)
        if use_neural and self.neural_available:
            query_vectors = await self._encode([query[: self.settings.neural_char_limit]])
            if query_vectors is not None and len(query_vectors):
                neural = cosine_similarity(np.asarray(query_vectors[0]), self._neural_vectors)
                weight = self.settings.neural_weight
                scores = weight * neural + (1 - weight) * scores

        scores = np.clip(scores, 0.0, 1.0)
        order = np.argsort(-scores, kind="stable")
        return [ScoredChunk(chunk=self._chunks[idx], score=float(scores[idx])) for idx in order]
