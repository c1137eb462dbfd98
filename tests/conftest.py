import json

import pytest

from turnstream.context import Context
from turnstream.persona import Persona
from turnstream.provider import TurnRequest, TurnTransport
from turnstream.sse import TransportError, encode_done, encode_frame
from turnstream.store import InMemoryConversationStore
from turnstream.tools import tool


# ---------------------------------------------------------------------------
# Frame builders (mirror the Responses API stream shape)
# ---------------------------------------------------------------------------

def frame(event: str, data: dict) -> bytes:
    return encode_frame(event, data).encode()


def done() -> bytes:
    return encode_done().encode()


def created(response_id: str = "resp_1") -> bytes:
    return frame("response.created", {"response": {"id": response_id}})


def completed(response_id: str = "resp_1") -> bytes:
    return frame("response.completed", {"response": {"id": response_id}})


def message_added(item_id: str = "msg_1", text: str = "") -> bytes:
    content = [{"type": "output_text", "text": text}] if text else []
    return frame("response.output_item.added", {
        "item": {"type": "message", "id": item_id, "role": "assistant", "content": content},
    })


def text_delta(delta: str, item_id: str = "msg_1") -> bytes:
    return frame("response.output_text.delta", {"item_id": item_id, "delta": delta})


def text_done(text: str, item_id: str = "msg_1") -> bytes:
    return frame("response.output_text.done", {"item_id": item_id, "text": text})


def function_call_added(name: str, item_id: str = "fc_1", call_id: str = "call_1") -> bytes:
    return frame("response.output_item.added", {
        "item": {
            "type": "function_call",
            "id": item_id,
            "call_id": call_id,
            "name": name,
            "arguments": "",
            "status": "in_progress",
        },
    })


def arguments_delta(delta: str, item_id: str = "fc_1") -> bytes:
    return frame("response.function_call_arguments.delta", {"item_id": item_id, "delta": delta})


def arguments_done(arguments: str, item_id: str = "fc_1") -> bytes:
    return frame("response.function_call_arguments.done", {"item_id": item_id, "arguments": arguments})


def make_text_turn(
    text: str,
    response_id: str = "resp_1",
    item_id: str = "msg_1",
    deltas: list[str] | None = None,
) -> list[bytes]:
    """Fake turn stream that answers with text only (no tool calls)."""
    deltas = deltas if deltas is not None else [text]
    return [
        created(response_id),
        message_added(item_id),
        *[text_delta(d, item_id) for d in deltas],
        text_done(text, item_id),
        completed(response_id),
        done(),
    ]


def make_function_call_turn(
    name: str,
    args: dict | None = None,
    chunks: list[str] | None = None,
    response_id: str = "resp_1",
    item_id: str = "fc_1",
    call_id: str = "call_1",
    final: str | None = None,
) -> list[bytes]:
    """Fake turn stream containing a single function call.

    The arguments stream as *chunks* (default: the whole JSON at once);
    *final* overrides the authoritative string of the done event.
    """
    raw = json.dumps(args or {})
    chunks = chunks if chunks is not None else [raw]
    return [
        created(response_id),
        function_call_added(name, item_id, call_id),
        *[arguments_delta(c, item_id) for c in chunks],
        arguments_done(final if final is not None else "".join(chunks), item_id),
        completed(response_id),
        done(),
    ]


# ---------------------------------------------------------------------------
# Mock transport
# ---------------------------------------------------------------------------

class MockTransport(TurnTransport):
    """Transport that replays pre-queued turn streams. No network calls."""

    def __init__(self, turns: list[list[bytes]] | None = None):
        self.turns: list[list[bytes] | Exception] = list(turns or [])
        self.requests: list[TurnRequest] = []
        self.closed = 0

    async def stream(self, request: TurnRequest):
        self.requests.append(request)
        if not self.turns:
            raise TransportError("No queued turn")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        try:
            for chunk in turn:
                yield chunk
        finally:
            self.closed += 1


@pytest.fixture
def transport():
    return MockTransport()


@pytest.fixture
def store():
    return InMemoryConversationStore(["bard", "clerk"])


@pytest.fixture
def get_weather():
    @tool
    def get_weather(city: str):
        """Look up the weather.

        Args:
            city: City name.
        """
        return {"city": city, "forecast": "sunny"}
    return get_weather


@pytest.fixture
def broken_tool():
    @tool
    def broken(city: str):
        """Always fails."""
        raise RuntimeError("weather service down")
    return broken


@pytest.fixture
def context_tool():
    @tool
    def whoami(context: Context):
        """Report the calling persona."""
        return context.persona_id
    return whoami


@pytest.fixture
def make_persona():
    def _make(name="bard", tools=None, prompt="You are a bard.", hosted_tools=None):
        return Persona(
            name=name,
            prompt=prompt,
            tools=tools or [],
            hosted_tools=hosted_tools or [],
        )
    return _make
