from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from turnstream.persona import Persona
    from turnstream.state import CharacterConversationState


@dataclass
class Context:
    """Runtime context injected into tools that declare a ``context`` parameter.

    Gives tools read access to the conversation they were called from.  The
    Runner creates a Context before dispatching each tool call.

    Args:
        persona_id: Key of the persona whose turn requested the call.
        persona: The persona being run.
        state: The persona's conversation state when the call was dispatched.
    """

    persona_id: str
    persona: Persona
    state: CharacterConversationState
