from turnstream.chat import Chat
from turnstream.config import ChatConfig, configure_logging
from turnstream.context import Context
from turnstream.events import RunCompleteEvent, ToolCallEvent, TurnEvent, decode_event
from turnstream.instrumentation import instrument, uninstrument
from turnstream.message import InputMessage, FunctionCallOutput, MessageItem, MessageRole, ToolCallItem
from turnstream.partial_json import PartialJSONParser, parse_partial
from turnstream.persona import Persona
from turnstream.provider import HttpTurnTransport, OpenAIResponsesTransport, TurnRequest, TurnTransport
from turnstream.reducer import ConversationReducer
from turnstream.runner import Runner, RunResult, TurnInProgressError
from turnstream.sse import StreamInterruptedError, TransportError
from turnstream.state import CharacterConversationState
from turnstream.store import ConversationStore, InMemoryConversationStore
from turnstream.tools import Tool, ToolRegistry, tool

__all__ = [
    "Chat",
    "ChatConfig",
    "configure_logging",
    "Context",
    "RunCompleteEvent",
    "ToolCallEvent",
    "TurnEvent",
    "decode_event",
    "instrument",
    "uninstrument",
    "InputMessage",
    "FunctionCallOutput",
    "MessageItem",
    "MessageRole",
    "ToolCallItem",
    "PartialJSONParser",
    "parse_partial",
    "Persona",
    "HttpTurnTransport",
    "OpenAIResponsesTransport",
    "TurnRequest",
    "TurnTransport",
    "ConversationReducer",
    "Runner",
    "RunResult",
    "TurnInProgressError",
    "StreamInterruptedError",
    "TransportError",
    "CharacterConversationState",
    "ConversationStore",
    "InMemoryConversationStore",
    "Tool",
    "ToolRegistry",
    "tool",
]
