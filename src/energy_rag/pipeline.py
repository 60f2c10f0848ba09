from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Literal

from opentelemetry import trace

from .corpus import CorpusBuilder
from .errors import RetrievalError
from .prompts import NO_EVIDENCE_PREFIX, REFUSAL_MESSAGE, build_messages
from .response_guard import GuardedResponse, guard
from .retrieval import Retriever
from .schema import Chunk, Message, RetrievalResult, ScopeDecision
from .scope import ScopeGuard
from .settings import RetrievalConfig
from .tracing import (
    ATTR_INPUT_VALUE,
    ATTR_OUTPUT_VALUE,
    traced_generation,
    traced_retrieval,
    traced_scope_check,
)

logger = logging.getLogger(__name__)

AnswerFn = Callable[[list[dict[str, str]]], Awaitable[str]]

FALLBACK_CONFIDENCES = frozenset({"none", "low"})


@dataclass(slots=True)
class TutorReply:
    """Outcome of one student question.

    ``kind`` is ``refused`` when the scope guard rejected the query (``text``
    is then the fixed refusal), ``prepared`` when messages were built but no
    model was called, and ``answered`` after a model answer was guarded.
    """

    kind: Literal["refused", "prepared", "answered"]
    text: str
    scope: ScopeDecision
    retrieval: RetrievalResult | None = None
    messages: list[Message] = field(default_factory=list)
    guarded: GuardedResponse | None = None


def apply_fallback_prefix(answer: str, confidence: str) -> str:
    """Prepend the general-knowledge disclaimer when evidence was weak or absent."""
    if confidence not in FALLBACK_CONFIDENCES or answer.startswith(NO_EVIDENCE_PREFIX):
        return answer
    return NO_EVIDENCE_PREFIX + answer


class TutorPipeline:
    """Scope check, evidence retrieval, prompt assembly and answer guarding.

    The model call itself is delegated to ``answer_fn``: any coroutine function
    taking chat messages as ``{"role", "content"}`` dicts and returning text.
    """

    def __init__(
        self,
        corpus: CorpusBuilder,
        retriever: Retriever | None = None,
        answer_fn: AnswerFn | None = None,
        scope_guard: ScopeGuard | None = None,
        tracer: trace.Tracer | None = None,
    ):
        self.corpus = corpus
        self.retriever = retriever or Retriever(corpus)
        self.scope_guard = scope_guard or ScopeGuard()
        self.tracer = tracer

        self._check_scope: Callable[[Any], ScopeDecision] = self.scope_guard.check_scope
        self._retrieve = self.retriever.retrieve
        self._answer_fn = answer_fn
        if tracer is not None:
            self._check_scope = traced_scope_check(self._check_scope, tracer)
            self._retrieve = traced_retrieval(self._retrieve, tracer)
            if answer_fn is not None:
                self._answer_fn = traced_generation(answer_fn, tracer)

    def load(self, material: Any) -> list[Chunk]:
        """Rebuild the corpus from material and invalidate the index."""
        chunks = self.corpus.build(material)
        self.retriever.reset()
        return chunks

    async def _gather_evidence(self, query: str, config: RetrievalConfig) -> RetrievalResult:
        try:
            return await self._retrieve(query, config)
        except RetrievalError:
            logger.exception("Retrieval failed; answering without evidence")
            return RetrievalResult(chunks=[], confidence="none")

    async def prepare(self, query: Any, config: RetrievalConfig | None = None) -> TutorReply:
        """Run everything up to, but not including, the model call."""
        config = config or RetrievalConfig()
        decision = self._check_scope(query)
        if not decision.in_scope:
            return TutorReply(kind="refused", text=REFUSAL_MESSAGE, scope=decision)

        retrieval = await self._gather_evidence(query, config)
        messages = build_messages(query, retrieval.chunks)
        return TutorReply(
            kind="prepared",
            text="",
            scope=decision,
            retrieval=retrieval,
            messages=messages,
        )

    async def _answer(self, query: Any, config: RetrievalConfig | None) -> TutorReply:
        reply = await self.prepare(query, config)
        if reply.kind == "refused":
            return reply

        raw = await self._answer_fn([message.to_dict() for message in reply.messages])
        guarded = guard(raw, reply.retrieval.chunks, self.corpus.get_ref_map())
        text = guarded.text
        if guarded.is_refusal:
            guarded = replace(guarded, citations=[])
        else:
            text = apply_fallback_prefix(text, reply.retrieval.confidence)

        reply.kind = "answered"
        reply.text = text
        reply.guarded = guarded
        return reply

    async def answer(self, query: Any, config: RetrievalConfig | None = None) -> TutorReply:
        """Answer one student question end to end.

        Args:
            query: Raw student question.
            config: Retrieval options; defaults to ``RetrievalConfig()``.

        Returns:
            The refusal, or the guarded model answer with its evidence.

        Raises:
            ValueError: If no ``answer_fn`` was configured.
        """
        if self._answer_fn is None:
            raise ValueError("TutorPipeline.answer requires an answer_fn")
        if self.tracer is None:
            return await self._answer(query, config)
        with self.tracer.start_as_current_span("tutor-pipeline") as span:
            span.set_attribute(ATTR_INPUT_VALUE, query if isinstance(query, str) else repr(query))
            reply = await self._answer(query, config)
            span.set_attribute(ATTR_OUTPUT_VALUE, reply.text[:500])
            return reply
