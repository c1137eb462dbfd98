"""Events of a streamed turn and of a run of chained turns.

Every envelope the backend sends is decoded exactly once, at the parser
boundary, into one of the :class:`TurnEvent` subclasses below.  Event kinds
the reducer does not handle become :class:`UnknownEvent`.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

RESPONSE_ID_PREFIX = "resp_"


def is_response_id(value: Any) -> bool:
    """Whether ``value`` has the shape of a server-assigned turn id."""
    return isinstance(value, str) and value.startswith(RESPONSE_ID_PREFIX)


@dataclass
class TurnEvent:
    """Base for all decoded backend events."""

    kind: ClassVar[str] = ""


@dataclass
class ResponseCreated(TurnEvent):
    kind: ClassVar[str] = "response.created"

    response_id: str | None = None


@dataclass
class ResponseCompleted(TurnEvent):
    kind: ClassVar[str] = "response.completed"

    response_id: str | None = None


@dataclass
class OutputTextDelta(TurnEvent):
    kind: ClassVar[str] = "response.output_text.delta"

    item_id: str = ""
    delta: str = ""


@dataclass
class OutputTextDone(TurnEvent):
    kind: ClassVar[str] = "response.output_text.done"

    item_id: str = ""
    text: str = ""


@dataclass
class OutputTextAnnotationAdded(TurnEvent):
    kind: ClassVar[str] = "response.output_text.annotation.added"

    item_id: str = ""
    annotation: dict = field(default_factory=dict)


@dataclass
class OutputItem:
    """The ``item`` of an ``output_item.added`` event."""

    type: str
    id: str = ""
    name: str | None = None
    call_id: str | None = None
    status: str | None = None
    text: str = ""

    @classmethod
    def from_payload(cls, item: dict) -> OutputItem:
        content = item.get("content") or []
        first = content[0] if content and isinstance(content[0], dict) else {}
        return cls(
            type=item.get("type") or "",
            id=item.get("id") or "",
            name=item.get("name"),
            call_id=item.get("call_id"),
            status=item.get("status"),
            text=first.get("text") or "",
        )


@dataclass
class OutputItemAdded(TurnEvent):
    kind: ClassVar[str] = "response.output_item.added"

    item: OutputItem | None = None


@dataclass
class FunctionCallArgumentsDelta(TurnEvent):
    kind: ClassVar[str] = "response.function_call_arguments.delta"

    item_id: str = ""
    delta: str = ""


@dataclass
class FunctionCallArgumentsDone(TurnEvent):
    kind: ClassVar[str] = "response.function_call_arguments.done"

    item_id: str = ""
    arguments: str | None = None


@dataclass
class WebSearchCallCompleted(TurnEvent):
    kind: ClassVar[str] = "response.web_search_call.completed"

    item_id: str = ""
    output: Any = None


@dataclass
class FileSearchCallCompleted(TurnEvent):
    kind: ClassVar[str] = "response.file_search_call.completed"

    item_id: str = ""
    output: Any = None


@dataclass
class ErrorEvent(TurnEvent):
    """The backend's upstream stream failed mid-turn."""

    kind: ClassVar[str] = "error"

    message: str = ""


@dataclass
class UnknownEvent(TurnEvent):
    """Any event kind the reducer ignores."""

    name: str = ""
    data: dict = field(default_factory=dict)


def _response_id(data: dict) -> str | None:
    response = data.get("response")
    if isinstance(response, dict) and response.get("id"):
        return response["id"]
    return data.get("id")


def _error_message(data: dict) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or "Stream error occurred"
    return data.get("message") or "Stream error occurred"


def _output_item_added(data: dict) -> OutputItemAdded:
    item = data.get("item")
    if not isinstance(item, dict) or not item.get("type"):
        return OutputItemAdded(item=None)
    return OutputItemAdded(item=OutputItem.from_payload(item))


_DECODERS: dict[str, Callable[[dict], TurnEvent]] = {
    ResponseCreated.kind: lambda d: ResponseCreated(response_id=_response_id(d)),
    ResponseCompleted.kind: lambda d: ResponseCompleted(response_id=_response_id(d)),
    OutputTextDelta.kind: lambda d: OutputTextDelta(item_id=d.get("item_id", ""), delta=d.get("delta") or ""),
    OutputTextDone.kind: lambda d: OutputTextDone(item_id=d.get("item_id", ""), text=d.get("text") or ""),
    OutputTextAnnotationAdded.kind: lambda d: OutputTextAnnotationAdded(
        item_id=d.get("item_id", ""), annotation=d.get("annotation") or {},
    ),
    OutputItemAdded.kind: _output_item_added,
    FunctionCallArgumentsDelta.kind: lambda d: FunctionCallArgumentsDelta(
        item_id=d.get("item_id", ""), delta=d.get("delta") or "",
    ),
    FunctionCallArgumentsDone.kind: lambda d: FunctionCallArgumentsDone(
        item_id=d.get("item_id", ""), arguments=d.get("arguments"),
    ),
    WebSearchCallCompleted.kind: lambda d: WebSearchCallCompleted(item_id=d.get("item_id", ""), output=d.get("output")),
    FileSearchCallCompleted.kind: lambda d: FileSearchCallCompleted(item_id=d.get("item_id", ""), output=d.get("output")),
    ErrorEvent.kind: lambda d: ErrorEvent(message=_error_message(d)),
}


def decode_event(envelope: dict) -> TurnEvent:
    """Decode one ``{event, data}`` envelope into a typed event."""
    name = envelope.get("event")
    data = envelope.get("data")
    if not isinstance(data, dict):
        data = {}
    decoder = _DECODERS.get(name) if isinstance(name, str) else None
    if decoder is None:
        return UnknownEvent(name=str(name or ""), data=data)
    return decoder(data)


# ---------------------------------------------------------------------------
# Run events: emitted by the Runner around the decoded turn events
# ---------------------------------------------------------------------------


@dataclass
class ToolCallEvent:
    """A dispatched function call finished, successfully or not."""

    item_id: str = ""
    tool_name: str = ""
    call_id: str | None = None
    output: str | None = None
    is_error: bool = False


@dataclass
class RunCompleteEvent:
    """Final event; always the last event yielded by a run."""

    result: Any = None


StreamEvent = TurnEvent | ToolCallEvent | RunCompleteEvent
