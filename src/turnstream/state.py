from typing import Annotated

from pydantic import BaseModel, Field

from turnstream.message import FunctionCallOutput, InputMessage, MessageItem, ToolCallItem


class CharacterConversationState(BaseModel):
    """Conversation state of one persona.

    ``chat_messages`` is what the chat shows, including streaming and
    failed items.  ``conversation_items`` is the durable history sent to the
    backend as input on the next turn.  The two are kept consistent by the
    reducer but never share objects.

    Example:
        state = CharacterConversationState()
        state = state.model_copy(update={"chat_messages": [MessageItem.user("hi")]})
    """

    chat_messages: list[Annotated[MessageItem | ToolCallItem, Field(discriminator="type")]] = []
    conversation_items: list[InputMessage | FunctionCallOutput] = []
    last_response_id: str | None = None
    thread_id: str | None = None

    def find_message(self, item_id: str) -> tuple[int, MessageItem] | None:
        """First message with ``item_id`` in list order."""
        for index, item in enumerate(self.chat_messages):
            if isinstance(item, MessageItem) and item.id == item_id:
                return index, item
        return None

    def find_tool_call(self, item_id: str) -> tuple[int, ToolCallItem] | None:
        """First tool call with ``item_id`` in list order."""
        for index, item in enumerate(self.chat_messages):
            if isinstance(item, ToolCallItem) and item.id == item_id:
                return index, item
        return None

    def conversation_input(self) -> list[dict]:
        return [item.model_dump() for item in self.conversation_items]
