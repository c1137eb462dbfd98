from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    DEVELOPER = "developer"
    ASSISTANT = "assistant"
    USER = "user"


ContentType = Literal["input_text", "output_text", "refusal", "output_audio"]
MessageStatus = Literal["in_progress", "completed", "incomplete"]
ToolType = Literal["function_call", "web_search_call", "file_search_call"]
ToolCallStatus = Literal["in_progress", "searching", "completed", "failed"]

TERMINAL_STATUSES = frozenset({"completed", "failed"})

_ALLOWED_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    "function_call": {
        "in_progress": frozenset({"completed", "failed"}),
    },
    "web_search_call": {
        "in_progress": frozenset({"searching", "completed", "failed"}),
        "searching": frozenset({"completed", "failed"}),
    },
    "file_search_call": {
        "in_progress": frozenset({"searching", "completed", "failed"}),
        "searching": frozenset({"completed", "failed"}),
    },
}


class InvalidTransitionError(ValueError):
    """A tool call was moved to a status its state machine forbids."""


class Annotation(BaseModel):
    """Citation or file reference attached to output text.

    Only ``type`` is interpreted; everything else the backend sends is kept.
    """

    model_config = ConfigDict(extra="allow")

    type: str


class ContentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ContentType
    text: str | None = None
    annotations: list[Annotation] | None = None

    def with_text(self, text: str) -> "ContentItem":
        return self.model_copy(update={"text": text})

    def with_annotation(self, annotation: Annotation) -> "ContentItem":
        return self.model_copy(update={"annotations": [*(self.annotations or []), annotation]})


class MessageItem(BaseModel):
    """A message as shown in the chat.

    Messages authored locally carry no ``id`` and no ``status``.  Assistant
    messages streamed from the backend are ``in_progress`` until their
    final text arrives.
    """

    type: Literal["message"] = "message"
    role: MessageRole
    id: str | None = None
    status: MessageStatus | None = None
    content: list[ContentItem]

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @property
    def text(self) -> str:
        return "".join(c.text or "" for c in self.content)

    @classmethod
    def user(cls, text: str) -> "MessageItem":
        return cls(role=MessageRole.USER, content=[ContentItem(type="input_text", text=text)])

    @classmethod
    def assistant(cls, item_id: str | None, text: str = "", status: MessageStatus | None = "in_progress") -> "MessageItem":
        return cls(
            role=MessageRole.ASSISTANT,
            id=item_id,
            status=status,
            content=[ContentItem(type="output_text", text=text)],
        )


class ToolCallItem(BaseModel):
    """A tool call requested by the model, as shown in the chat."""

    type: Literal["tool_call"] = "tool_call"
    tool_type: ToolType
    status: ToolCallStatus = "in_progress"
    id: str
    name: str | None = None
    call_id: str | None = None
    arguments: str = ""
    parsed_arguments: dict[str, Any] = {}
    output: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_status(self, status: ToolCallStatus, **update: Any) -> "ToolCallItem":
        """Return a copy moved to ``status``.

        Raises:
            InvalidTransitionError: If the tool call's state machine does not
                allow the move.
        """
        if status != self.status:
            allowed = _ALLOWED_TRANSITIONS[self.tool_type].get(self.status, frozenset())
            if status not in allowed:
                raise InvalidTransitionError(
                    f"{self.tool_type} {self.id}: {self.status} -> {status} is not allowed"
                )
        return self.model_copy(update={"status": status, **update})

    def with_output(self, output: str | None) -> "ToolCallItem":
        """Record the result and complete the call; output is set once only."""
        if self.output is not None:
            raise InvalidTransitionError(f"Output of {self.id} is already recorded")
        return self.with_status("completed", output=output)


# ---------------------------------------------------------------------------
# Conversation items: the backend-shaped history sent with every turn
# ---------------------------------------------------------------------------


class InputMessage(BaseModel):
    role: MessageRole
    content: str

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class FunctionCallOutput(BaseModel):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    status: Literal["completed"] = "completed"
    output: str


ChatItem = MessageItem | ToolCallItem
ConversationItem = InputMessage | FunctionCallOutput
