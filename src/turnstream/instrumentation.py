"""Tracing spans for runs, turns and tool calls.

Spans are only emitted after :func:`instrument` has been called with
``opentelemetry-api`` installed (the ``otel`` extra); otherwise every helper
yields ``None`` and the runner behaves the same.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(tracer_name: str = "turnstream") -> None:
    """Start emitting spans through the global tracer provider.

    Raises:
        ImportError: ``opentelemetry-api`` is missing.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError("Tracing needs the otel extra: pip install turnstream[otel]")
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.warning("No TracerProvider configured; turnstream spans go nowhere")
    else:
        logger.info(f"Tracing chat runs with tracer {tracer_name}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def run_span(persona_id: str):
    """Wrap a Runner.run() invocation: every chained turn of one user message."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"chat {persona_id}",
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.agent.name": persona_id,
        },
    ) as span:
        yield span


@asynccontextmanager
async def turn_span(persona_id: str, turn: int):
    """Wrap one streamed turn request."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"turn {persona_id}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "turn",
            "gen_ai.agent.name": persona_id,
            "turnstream.turn": turn,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_response_id(span, response_id: str | None) -> None:
    """Tag a turn span with the server-assigned response id."""
    if span is None or not response_id:
        return
    span.set_attribute("gen_ai.response.id", response_id)


def record_error(span, exception: BaseException) -> None:
    """Mark a run, turn or tool span failed with ``exception``."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
