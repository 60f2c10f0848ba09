"""OpenTelemetry spans for the tutor pipeline.

One student question produces a `tutor-pipeline` span with `scope_check`,
`retrieval` and `generation` children, so refused questions, weak evidence and
slow model calls show up per question in the trace backend.

Usage with an OTLP backend such as Arize Phoenix:

    from energy_rag.tracing import configure_tracing, get_tracer, traced_retrieval

    configure_tracing(endpoint="http://localhost:6006/v1/traces", service_name="energy-tutor")
    tracer = get_tracer("energy-tutor.retrieval")
    retrieve = traced_retrieval(retriever.retrieve, tracer)
    result = await retrieve("how do control rods work?")

Without a backend, ``configure_tracing()`` prints spans to stdout.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from .schema import RetrievalResult, ScopeDecision

# ---------------------------------------------------------------------------
# Attribute names (OpenInference conventions where one exists)
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_OUTPUT_VALUE = "output.value"
ATTR_LLM_MODEL_NAME = "llm.model_name"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_RETRIEVAL_CONFIDENCE = "retrieval.confidence"
ATTR_SCOPE_IN_SCOPE = "scope.in_scope"
ATTR_SCOPE_REASON = "scope.reason"
ATTR_SCOPE_CONFIDENCE = "scope.confidence"

# ---------------------------------------------------------------------------
# Provider lifecycle helpers
# ---------------------------------------------------------------------------

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "energy-tutor",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Install the tracer provider used by the tutor pipeline.

    Args:
        endpoint: OTLP HTTP endpoint for traces. With neither *endpoint* nor
            *exporter*, spans go to a ``ConsoleSpanExporter``.
        service_name: ``service.name`` resource attribute.
        exporter: Exporter to use instead of OTLP or console output, such as
            an ``InMemorySpanExporter`` in tests.

    Returns:
        The new provider. It is also set as the global provider, and
        :func:`get_tracer` hands out tracers from it.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint.  Install it with:\n"
                "  pip install 'energy-rag[otlp]'"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    # Synchronous export so finished spans are readable immediately.
    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the provider installed by :func:`configure_tracing`.

    Falls back to the global (possibly no-op) provider when tracing was never
    configured.
    """
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


# ---------------------------------------------------------------------------
# Span-wrapping helpers
# ---------------------------------------------------------------------------


def traced_scope_check(
    check: Callable[[Any], ScopeDecision],
    tracer: trace.Tracer,
) -> Callable[[Any], ScopeDecision]:
    """Wrap a scope classifier so every decision is recorded as a ``scope_check`` span."""

    def _wrapped(query: Any) -> ScopeDecision:
        with tracer.start_as_current_span("scope_check") as span:
            span.set_attribute(ATTR_INPUT_VALUE, query if isinstance(query, str) else repr(query))
            decision = check(query)
            span.set_attribute(ATTR_SCOPE_IN_SCOPE, decision.in_scope)
            span.set_attribute(ATTR_SCOPE_REASON, decision.reason)
            span.set_attribute(ATTR_SCOPE_CONFIDENCE, decision.confidence)
            return decision

    return _wrapped


def traced_retrieval(
    retrieve: Callable[..., Awaitable[RetrievalResult]],
    tracer: trace.Tracer,
) -> Callable[..., Awaitable[RetrievalResult]]:
    """Wrap an async retriever so every call is recorded as a ``retrieval`` span.

    The span records:

    - ``input.value``: the query string
    - ``retrieval.documents``: the number of evidence chunks returned
    - ``retrieval.confidence``: the confidence bucket
    - span status: OK on success, ERROR on exception

    Args:
        retrieve: Coroutine function ``(query, config=None) -> RetrievalResult``.
        tracer: OTel tracer to use for span creation.

    Returns:
        A wrapped coroutine function with identical behaviour plus tracing.
    """

    async def _wrapped(query: str, *args, **kwargs) -> RetrievalResult:
        with tracer.start_as_current_span("retrieval") as span:
            span.set_attribute(ATTR_INPUT_VALUE, query)
            try:
                result = await retrieve(query, *args, **kwargs)
                span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(result.chunks))
                span.set_attribute(ATTR_RETRIEVAL_CONFIDENCE, result.confidence)
                span.set_status(trace.StatusCode.OK)
                return result
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise

    return _wrapped


def traced_generation(
    answer_fn: Callable[[list[dict[str, str]]], Awaitable[str]],
    tracer: trace.Tracer,
    model_name: str = "",
) -> Callable[[list[dict[str, str]]], Awaitable[str]]:
    """Wrap an async model call so every call is recorded as a ``generation`` span.

    The span records the student question (last user message) as
    ``input.value``, the model name when provided, and the first 500
    characters of the answer as ``output.value``.
    """

    async def _wrapped(messages: list[dict[str, str]]) -> str:
        with tracer.start_as_current_span("generation") as span:
            if messages:
                span.set_attribute(ATTR_INPUT_VALUE, messages[-1].get("content", ""))
            if model_name:
                span.set_attribute(ATTR_LLM_MODEL_NAME, model_name)
            try:
                answer = await answer_fn(messages)
                span.set_attribute(ATTR_OUTPUT_VALUE, (answer or "")[:500])
                span.set_status(trace.StatusCode.OK)
                return answer
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise

    return _wrapped
