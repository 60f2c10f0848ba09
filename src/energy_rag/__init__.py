"""Retrieval-augmented tutor core for the energy physics course material."""

from .corpus import CorpusBuilder
from .pipeline import TutorPipeline, TutorReply
from .prompts import NO_EVIDENCE_PREFIX, REFUSAL_MESSAGE, build_messages, format_evidence
from .retrieval import Retriever
from .schema import Chunk, Message, Reference, RetrievalResult, ScopeDecision, ScoredChunk
from .scope import ScopeGuard, check_scope
from .settings import RetrievalConfig

__all__ = [
    "Chunk",
    "CorpusBuilder",
    "Message",
    "NO_EVIDENCE_PREFIX",
    "REFUSAL_MESSAGE",
    "Reference",
    "RetrievalConfig",
    "RetrievalResult",
    "Retriever",
    "ScopeDecision",
    "ScopeGuard",
    "ScoredChunk",
    "TutorPipeline",
    "TutorReply",
    "build_messages",
    "check_scope",
    "format_evidence",
]
