from pydantic import BaseModel, Field

from turnstream.tools import Tool, ToolRegistry


class Persona(BaseModel):
    """A character the user can chat with.

    Each persona has its own conversation history, developer prompt and
    tools.  The prompt is sent as the first input item of every turn and is
    never stored in the conversation history.

    Args:
        name: Unique name; also the key of the persona's conversation state.
        prompt: Developer prompt describing the character.
        tools: Functions the model may call while playing this persona.
        hosted_tools: Backend-run tool declarations, e.g.
            ``{"type": "web_search_preview"}``.
        description: Short human-readable description.
    """

    model_config = {"arbitrary_types_allowed": True}

    name: str
    prompt: str = ""
    tools: list[Tool] = Field(default_factory=list)
    hosted_tools: list[dict] = Field(default_factory=list)
    description: str = ""

    @property
    def tool_registry(self) -> ToolRegistry:
        return ToolRegistry(self.tools, hosted_tools=self.hosted_tools)

    def developer_message(self) -> dict | None:
        if not self.prompt:
            return None
        return {"role": "developer", "content": self.prompt}
