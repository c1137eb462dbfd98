import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import turnstream.instrumentation as inst
from turnstream.instrumentation import record_error, record_response_id, run_span, tool_span, turn_span


@pytest.fixture(autouse=True)
def _no_tracer():
    inst._tracer = None
    yield
    inst._tracer = None


@pytest.fixture
def fake_trace():
    """A stand-in ``opentelemetry.trace`` module whose tracer is a mock."""
    trace = MagicMock()
    trace.NoOpTracer = type("NoOpTracer", (), {})
    with patch("importlib.util.find_spec", return_value=MagicMock()), \
            patch.dict("sys.modules", {"opentelemetry": MagicMock(trace=trace), "opentelemetry.trace": trace}):
        yield trace


@pytest.fixture
def tracer():
    span = MagicMock()
    tracer = MagicMock()
    tracer.start_as_current_span.return_value.__enter__ = MagicMock(return_value=span)
    tracer.start_as_current_span.return_value.__exit__ = MagicMock(return_value=False)
    tracer.span = span
    inst._tracer = tracer
    return tracer


def test_instrument_needs_otel_extra():
    with patch("importlib.util.find_spec", return_value=None):
        with pytest.raises(ImportError, match=r"turnstream\[otel\]"):
            inst.instrument()


def test_instrument_then_uninstrument(fake_trace):
    inst.instrument(tracer_name="chat-app")
    fake_trace.get_tracer.assert_called_once_with("chat-app")
    assert inst._tracer is fake_trace.get_tracer.return_value

    inst.uninstrument()
    assert inst._tracer is None


def test_noop_provider_is_reported(fake_trace, caplog):
    fake_trace.get_tracer.return_value = fake_trace.NoOpTracer()
    with caplog.at_level(logging.WARNING, logger="turnstream.instrumentation"):
        inst.instrument()
    assert "No TracerProvider configured" in caplog.text


@pytest.mark.asyncio
async def test_spans_are_none_when_disabled():
    async with run_span("bard") as run, turn_span("bard", 1) as turn, tool_span("roll_dice", "call_1") as call:
        assert (run, turn, call) == (None, None, None)


@pytest.mark.asyncio
async def test_turn_span_is_a_client_span(tracer):
    async with turn_span("clerk", 2) as span:
        assert span is tracer.span

    tracer.start_as_current_span.assert_called_once_with(
        "turn clerk",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "turn",
            "gen_ai.agent.name": "clerk",
            "turnstream.turn": 2,
        },
    )


@pytest.mark.asyncio
async def test_run_and_tool_span_names(tracer):
    async with run_span("bard"):
        async with tool_span("roll_dice", "call_7"):
            pass

    names = [c.args[0] for c in tracer.start_as_current_span.call_args_list]
    assert names == ["chat bard", "execute_tool roll_dice"]
    tool_attrs = tracer.start_as_current_span.call_args_list[1].kwargs["attributes"]
    assert tool_attrs["gen_ai.tool.call.id"] == "call_7"


def test_record_response_id_skips_missing_values():
    span = MagicMock()
    record_response_id(span, None)
    record_response_id(None, "resp_1")
    span.set_attribute.assert_not_called()

    record_response_id(span, "resp_1")
    span.set_attribute.assert_called_once_with("gen_ai.response.id", "resp_1")


def test_record_error():
    span = MagicMock()
    error = TimeoutError("stream stalled")
    record_error(span, error)
    record_error(None, error)

    span.set_status.assert_called_once_with(StatusCode.ERROR, "stream stalled")
    span.record_exception.assert_called_once_with(error)
    span.set_attribute.assert_called_once_with("error.type", "TimeoutError")
