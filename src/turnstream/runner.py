import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass

from turnstream.context import Context
from turnstream.events import (
    ErrorEvent,
    RunCompleteEvent,
    StreamEvent,
    ToolCallEvent,
    TurnEvent,
    is_response_id,
)
from turnstream.instrumentation import record_error, record_response_id, run_span, tool_span, turn_span
from turnstream.message import MessageItem, MessageRole, ToolCallItem
from turnstream.persona import Persona
from turnstream.provider import TurnRequest, TurnTransport
from turnstream.reducer import ConversationReducer
from turnstream.sse import TransportError, iter_events
from turnstream.state import CharacterConversationState
from turnstream.store import ConversationStore, InMemoryConversationStore
from turnstream.tools import ToolDispatchError, ToolNotFoundError, ToolRegistry, serialize_output

logger = logging.getLogger(__name__)


class TurnInProgressError(RuntimeError):
    """A turn is already running for this persona."""


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation."""

    persona_id: str
    turns: int
    last_message: MessageItem | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_request(
    state: CharacterConversationState,
    persona: Persona,
    registry: ToolRegistry,
) -> TurnRequest:
    """Assemble the next turn request from a persona's state.

    The persona prompt leads the input as a developer item.  The last
    response id threads the request only when it is a real response id.
    """
    developer = persona.developer_message()
    items = [developer] if developer else []
    items.extend(state.conversation_input())
    previous = state.last_response_id if is_response_id(state.last_response_id) else None
    return TurnRequest(input=items, tools=registry.declarations(), previous_response_id=previous)


def open_turn(transport: TurnTransport, request: TurnRequest) -> AsyncIterator[TurnEvent]:
    """Issue one turn request and decode its stream into events."""
    return iter_events(transport.stream(request))


def _last_assistant_message(state: CharacterConversationState) -> MessageItem | None:
    for item in reversed(state.chat_messages):
        if isinstance(item, MessageItem) and item.role == MessageRole.ASSISTANT:
            return item
    return None


class Runner:
    """Runs a persona's turns until one ends without function calls.

    Each turn streams from the transport through a fresh
    :class:`ConversationReducer`.  When a function call's arguments are
    complete the stream is paused, the tool is dispatched and its output
    recorded, and a follow-up turn is queued; the rest of the current turn
    is reduced before the queued turn is issued.  Turns therefore never
    interleave and the call stack stays flat however long the chain.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        transport: Issues turn requests.
        store: Conversation store shared with the chat.
        max_turns: Maximum number of chained turns for one run.
    """

    def __init__(
        self,
        transport: TurnTransport,
        store: ConversationStore | None = None,
        max_turns: int = 10,
    ):
        self.transport = transport
        self.store = store or InMemoryConversationStore()
        self.max_turns = max_turns
        self._running: set[str] = set()

    def is_running(self, persona_id: str) -> bool:
        return persona_id in self._running

    async def run(self, persona: Persona, persona_id: str | None = None) -> RunResult:
        """Run the turn chain until a final response or a failure."""
        result: RunResult | None = None
        async for event in self.iter(persona, persona_id):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting RunCompleteEvent")
        return result

    async def iter(
        self, persona: Persona, persona_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run the turn chain, yielding events as execution proceeds.

        Raises:
            TurnInProgressError: If this persona already has a run in flight.
            TransportError: If a request fails or its stream breaks off.
        """
        persona_id = persona_id or persona.name
        if persona_id in self._running:
            raise TurnInProgressError(f"A turn is already running for {persona_id}")
        self._running.add(persona_id)
        try:
            async with run_span(persona_id) as span:
                try:
                    async with aclosing(self._iter_chain(persona, persona_id)) as chain:
                        async for event in chain:
                            yield event
                except Exception as e:
                    record_error(span, e)
                    raise
        finally:
            self._running.discard(persona_id)

    async def _iter_chain(self, persona: Persona, persona_id: str) -> AsyncIterator[StreamEvent]:
        registry = persona.tool_registry
        pending = deque([1])
        turns = 0

        while pending:
            pending.popleft()
            if turns >= self.max_turns:
                logger.warning(f"Run for {persona_id} reached max turns ({self.max_turns})")
                yield RunCompleteEvent(result=RunResult(
                    persona_id=persona_id,
                    turns=turns,
                    last_message=_last_assistant_message(self.store.get_state(persona_id)),
                    error="Maximum turns reached. Please try again.",
                ))
                return
            turns += 1

            reducer = ConversationReducer(self.store, persona_id)
            request = build_request(self.store.get_state(persona_id), persona, registry)
            dispatched = False
            logger.debug(f"Turn {turns} for {persona_id}: {len(request.input)} input items")

            async with turn_span(persona_id, turns) as span:
                events = open_turn(self.transport, request)
                try:
                    async for event in events:
                        if isinstance(event, ErrorEvent):
                            raise TransportError(event.message)
                        call = reducer.apply(event)
                        yield event
                        if call is not None:
                            yield await self._execute(call, registry, reducer, persona, persona_id)
                            dispatched = True
                        if reducer.error:
                            break
                except BaseException as e:
                    # Anything that ends the stream early.
                    reducer.abort()
                    if isinstance(e, Exception):
                        record_error(span, e)
                    raise
                finally:
                    await events.aclose()
                record_response_id(span, reducer.response_id)

            if reducer.error:
                reducer.abort()
                yield RunCompleteEvent(result=RunResult(
                    persona_id=persona_id,
                    turns=turns,
                    last_message=_last_assistant_message(self.store.get_state(persona_id)),
                    error=reducer.error,
                ))
                return
            if dispatched:
                pending.append(turns + 1)

        yield RunCompleteEvent(result=RunResult(
            persona_id=persona_id,
            turns=turns,
            last_message=_last_assistant_message(self.store.get_state(persona_id)),
        ))

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        call: ToolCallItem,
        registry: ToolRegistry,
        reducer: ConversationReducer,
        persona: Persona,
        persona_id: str,
    ) -> ToolCallEvent:
        ctx = Context(persona_id=persona_id, persona=persona, state=self.store.get_state(persona_id))
        async with tool_span(call.name or "", call.call_id or call.id) as span:
            try:
                result = await registry.dispatch(call.name, call.parsed_arguments, context=ctx)
                output = serialize_output(result)
            except (ToolNotFoundError, ToolDispatchError, TypeError, ValueError) as e:
                logger.error(f"Tool call {call.id} ({call.name}) failed: {e}")
                record_error(span, e)
                reducer.fail_tool_call(call.id, str(e))
                return ToolCallEvent(
                    item_id=call.id, tool_name=call.name or "", call_id=call.call_id, is_error=True,
                )
        reducer.complete_tool_call(call.id, output)
        return ToolCallEvent(
            item_id=call.id, tool_name=call.name or "", call_id=call.call_id, output=output,
        )
