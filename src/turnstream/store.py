import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

from turnstream.message import ChatItem, ConversationItem
from turnstream.state import CharacterConversationState

logger = logging.getLogger(__name__)

Listener = Callable[[str, CharacterConversationState], None]


class ConversationStore(ABC):
    """Keyed store of per-persona conversation state.

    Every setter atomically replaces one field of one persona's state.
    Implementations never mutate a state object that was handed out by
    :meth:`get_state`; they store a new one instead, so observers can detect
    changes by identity.

    Subclass to back the store with real persistence.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @abstractmethod
    def get_state(self, persona_id: str) -> CharacterConversationState:
        """Return the persona's state, creating an empty one on first use."""
        ...

    @abstractmethod
    def _put(self, persona_id: str, state: CharacterConversationState) -> None:
        ...

    @abstractmethod
    def personas(self) -> list[str]:
        ...

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(persona_id, state)`` after every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _replace(self, persona_id: str, **update) -> CharacterConversationState:
        state = self.get_state(persona_id).model_copy(update=update)
        self._put(persona_id, state)
        for listener in list(self._listeners):
            listener(persona_id, state)
        return state

    def set_chat_messages(self, persona_id: str, items: Iterable[ChatItem]) -> CharacterConversationState:
        return self._replace(persona_id, chat_messages=list(items))

    def set_conversation_items(self, persona_id: str, items: Iterable[ConversationItem]) -> CharacterConversationState:
        return self._replace(persona_id, conversation_items=list(items))

    def set_last_response_id(self, persona_id: str, response_id: str | None) -> CharacterConversationState:
        return self._replace(persona_id, last_response_id=response_id)

    def set_thread_id(self, persona_id: str, thread_id: str | None) -> CharacterConversationState:
        return self._replace(persona_id, thread_id=thread_id)

    def clear(self, persona_id: str) -> CharacterConversationState:
        logger.info(f"Clearing conversation for {persona_id}")
        state = CharacterConversationState()
        self._put(persona_id, state)
        for listener in list(self._listeners):
            listener(persona_id, state)
        return state

    def clear_all(self) -> None:
        for persona_id in self.personas():
            self.clear(persona_id)


class InMemoryConversationStore(ConversationStore):
    """Process-local store; state lives as long as the store does."""

    def __init__(self, personas: Iterable[str] = ()):
        super().__init__()
        self._states: dict[str, CharacterConversationState] = {
            persona_id: CharacterConversationState() for persona_id in personas
        }

    def get_state(self, persona_id: str) -> CharacterConversationState:
        state = self._states.get(persona_id)
        if state is None:
            state = self._states[persona_id] = CharacterConversationState()
        return state

    def _put(self, persona_id: str, state: CharacterConversationState) -> None:
        self._states[persona_id] = state

    def personas(self) -> list[str]:
        return list(self._states)
