"""Reduction of streamed turn events into conversation state.

One :class:`ConversationReducer` is created per turn and bound to one
persona.  It applies events in arrival order and writes every change to the
:class:`~turnstream.store.ConversationStore` as an atomic replacement of the
affected field, so the chat view and the backend-shaped history stay
consistent after every event.

Items are never edited in place: each update puts a new ``MessageItem`` or
``ToolCallItem`` into a new list, so observers comparing by identity see
every change.  Nothing is ever moved earlier in the list.
"""

import logging

from pydantic import ValidationError

from turnstream.events import (
    FileSearchCallCompleted,
    FunctionCallArgumentsDelta,
    FunctionCallArgumentsDone,
    OutputItemAdded,
    OutputTextAnnotationAdded,
    OutputTextDelta,
    OutputTextDone,
    ResponseCompleted,
    ResponseCreated,
    TurnEvent,
    WebSearchCallCompleted,
    is_response_id,
)
from turnstream.message import (
    Annotation,
    FunctionCallOutput,
    InputMessage,
    InvalidTransitionError,
    MessageItem,
    MessageRole,
    ToolCallItem,
)
from turnstream.state import CharacterConversationState
from turnstream.store import ConversationStore
from turnstream.streaming import ArgumentAccumulator, ArgumentParseError
from turnstream.tools import serialize_output

logger = logging.getLogger(__name__)

_SEARCH_STATUSES = {"in_progress", "searching", "completed", "failed"}


class ConversationReducer:
    """Applies the events of one turn to one persona's state.

    Args:
        store: Where the persona's state lives.
        persona_id: The persona this turn belongs to.  Fixed for the
            reducer's lifetime, whatever persona is selected meanwhile.
    """

    def __init__(self, store: ConversationStore, persona_id: str):
        self.store = store
        self.persona_id = persona_id
        self.message_contents: dict[str, str] = {}
        self.arguments = ArgumentAccumulator()
        self.response_id: str | None = None
        self.completed = False
        self.error: str | None = None
        # Items created by this turn, for abort().
        self._opened: list[str] = []

    @property
    def state(self) -> CharacterConversationState:
        return self.store.get_state(self.persona_id)

    def apply(self, event: TurnEvent) -> ToolCallItem | None:
        """Apply one event.

        Returns:
            The function call to dispatch when ``event`` finalized a call's
            arguments, otherwise ``None``.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"Ignoring event {getattr(event, 'name', event.kind)}")
            return None
        return handler(self, event)

    # ------------------------------------------------------------------
    # Store writes
    # ------------------------------------------------------------------

    def _replace_item(self, index: int, item: MessageItem | ToolCallItem) -> None:
        items = list(self.state.chat_messages)
        items[index] = item
        self.store.set_chat_messages(self.persona_id, items)

    def _append_item(self, item: MessageItem | ToolCallItem) -> None:
        if item.id:
            self._opened.append(item.id)
        self.store.set_chat_messages(self.persona_id, [*self.state.chat_messages, item])

    def _append_conversation_item(self, item: InputMessage | FunctionCallOutput) -> None:
        self.store.set_conversation_items(self.persona_id, [*self.state.conversation_items, item])

    # ------------------------------------------------------------------
    # Response lifecycle
    # ------------------------------------------------------------------

    def _on_created(self, event: ResponseCreated) -> None:
        if is_response_id(event.response_id):
            self.response_id = event.response_id
            self.store.set_last_response_id(self.persona_id, event.response_id)

    def _on_completed(self, event: ResponseCompleted) -> None:
        self.completed = True
        items = self.state.chat_messages
        last = items[-1] if items else None
        if isinstance(last, MessageItem) and last.role == MessageRole.ASSISTANT:
            self._append_conversation_item(InputMessage(role=MessageRole.ASSISTANT, content=last.text))

    # ------------------------------------------------------------------
    # Output text
    # ------------------------------------------------------------------

    def _on_text_delta(self, event: OutputTextDelta) -> None:
        text = self.message_contents.get(event.item_id, "") + event.delta
        self.message_contents[event.item_id] = text

        if not self.state.last_response_id:
            self.store.set_last_response_id(self.persona_id, event.item_id)

        found = self.state.find_message(event.item_id)
        if found is None:
            self._append_item(MessageItem.assistant(event.item_id, text))
            return
        index, message = found
        self._replace_item(index, self._with_text(message, text))

    def _on_text_done(self, event: OutputTextDone) -> None:
        self.message_contents[event.item_id] = event.text
        found = self.state.find_message(event.item_id)
        if found is None:
            logger.debug(f"output_text.done for unknown message {event.item_id}")
            return
        index, message = found
        message = self._with_text(message, event.text)
        self._replace_item(index, message.model_copy(update={"status": "completed"}))

    def _on_annotation(self, event: OutputTextAnnotationAdded) -> None:
        found = self.state.find_message(event.item_id)
        if found is None:
            return
        try:
            annotation = Annotation.model_validate(event.annotation)
        except ValidationError as e:
            logger.warning(f"Skipping malformed annotation on {event.item_id}: {e}")
            return
        index, message = found
        content = message.content[0].with_annotation(annotation)
        self._replace_item(index, message.model_copy(update={"content": [content]}))

    @staticmethod
    def _with_text(message: MessageItem, text: str) -> MessageItem:
        first = message.content[0] if message.content else None
        if first is None or first.type != "output_text":
            content = MessageItem.assistant(None, text).content[0]
        else:
            content = first.with_text(text)
        return message.model_copy(update={"content": [content]})

    # ------------------------------------------------------------------
    # Output items
    # ------------------------------------------------------------------

    def _on_item_added(self, event: OutputItemAdded) -> None:
        item = event.item
        if item is None:
            return
        if item.type == "message":
            self.message_contents[item.id] = item.text
            self._append_item(MessageItem.assistant(item.id, item.text))
            self._append_conversation_item(InputMessage(role=MessageRole.ASSISTANT, content=item.text))
        elif item.type == "function_call":
            self._append_item(ToolCallItem(
                tool_type="function_call",
                status="in_progress",
                id=item.id,
                name=item.name,
                call_id=item.call_id,
                arguments="",
                parsed_arguments={},
                output=None,
            ))
        elif item.type in ("web_search_call", "file_search_call"):
            status = item.status if item.status in _SEARCH_STATUSES else "in_progress"
            self._append_item(ToolCallItem(tool_type=item.type, status=status, id=item.id))
        else:
            logger.debug(f"Ignoring output item of type {item.type}")

    def _on_search_completed(self, event: WebSearchCallCompleted | FileSearchCallCompleted) -> None:
        found = self.state.find_tool_call(event.item_id)
        if found is None:
            return
        index, call = found
        output = event.output if event.output is None or isinstance(event.output, str) else serialize_output(event.output)
        try:
            self._replace_item(index, call.with_output(output))
        except InvalidTransitionError as e:
            logger.warning(str(e))

    # ------------------------------------------------------------------
    # Function calls
    # ------------------------------------------------------------------

    def _on_arguments_delta(self, event: FunctionCallArgumentsDelta) -> None:
        pending = self.arguments.feed(event.item_id, event.delta)
        found = self.state.find_tool_call(event.item_id)
        if found is None:
            return
        index, call = found
        if call.is_terminal:
            return
        self._replace_item(index, call.model_copy(update={
            "arguments": pending.raw,
            "parsed_arguments": pending.parsed,
        }))

    def _on_arguments_done(self, event: FunctionCallArgumentsDone) -> ToolCallItem | None:
        found = self.state.find_tool_call(event.item_id)
        if found is None:
            logger.warning(f"arguments.done for unknown tool call {event.item_id}")
            self.arguments.discard(event.item_id)
            return None
        index, call = found
        if call.is_terminal:
            logger.warning(f"Ignoring repeated arguments.done for {call.status} tool call {event.item_id}")
            self.arguments.discard(event.item_id)
            return None
        try:
            arguments, parsed = self.arguments.finalize(event.item_id, event.arguments)
        except ArgumentParseError as e:
            logger.error(str(e))
            self.error = str(e)
            self._replace_item(index, call.with_status("failed", arguments=e.arguments))
            return None
        call = call.model_copy(update={"arguments": arguments, "parsed_arguments": parsed})
        self._replace_item(index, call)
        return call

    def complete_tool_call(self, item_id: str, output: str) -> ToolCallItem:
        """Record a dispatched call's output and its backend-shaped result."""
        found = self.state.find_tool_call(item_id)
        if found is None:
            raise LookupError(f"Unknown tool call {item_id}")
        index, call = found
        call = call.with_output(output)
        self._replace_item(index, call)
        self._append_conversation_item(FunctionCallOutput(call_id=call.call_id or call.id, output=output))
        return call

    def fail_tool_call(self, item_id: str, reason: str) -> ToolCallItem | None:
        """Mark a call failed; no output and no history item are recorded."""
        self.error = reason
        found = self.state.find_tool_call(item_id)
        if found is None:
            return None
        index, call = found
        if call.is_terminal:
            return call
        call = call.with_status("failed")
        self._replace_item(index, call)
        return call

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Leave nothing from this turn looking finalized.

        Messages still streaming become ``incomplete`` and tool calls still
        running become ``failed``.
        """
        self.arguments.clear()
        opened = set(self._opened)
        items = list(self.state.chat_messages)
        changed = False
        for index, item in enumerate(items):
            if item.id not in opened:
                continue
            if isinstance(item, MessageItem) and item.status == "in_progress":
                items[index] = item.model_copy(update={"status": "incomplete"})
                changed = True
            elif isinstance(item, ToolCallItem) and not item.is_terminal:
                items[index] = item.with_status("failed")
                changed = True
        if changed:
            logger.info(f"Aborted turn for {self.persona_id}")
            self.store.set_chat_messages(self.persona_id, items)

    _handlers = {
        ResponseCreated: _on_created,
        ResponseCompleted: _on_completed,
        OutputTextDelta: _on_text_delta,
        OutputTextDone: _on_text_done,
        OutputTextAnnotationAdded: _on_annotation,
        OutputItemAdded: _on_item_added,
        WebSearchCallCompleted: _on_search_completed,
        FileSearchCallCompleted: _on_search_completed,
        FunctionCallArgumentsDelta: _on_arguments_delta,
        FunctionCallArgumentsDone: _on_arguments_done,
    }
