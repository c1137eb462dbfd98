import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from turnstream.events import RunCompleteEvent, StreamEvent
from turnstream.message import InputMessage, MessageItem, MessageRole
from turnstream.persona import Persona
from turnstream.provider import TurnTransport
from turnstream.runner import Runner, RunResult, TurnInProgressError
from turnstream.state import CharacterConversationState
from turnstream.store import ConversationStore, InMemoryConversationStore

logger = logging.getLogger(__name__)


class Chat:
    """Chat client over a set of personas, one conversation each.

    The selected persona receives the user's messages.  A run is bound to
    the persona it was started for, so selecting another persona while a
    run is in flight never redirects that run's writes; the run keeps
    going in the background unless it is cancelled.

    Args:
        personas: Personas to register; the first is selected by default.
        transport: Issues turn requests.
        store: Conversation store, or a fresh in-memory store.
        runner: Runner instance, or a default Runner over ``store``.
        selected: Name of the persona to select initially.
        max_turns: Maximum chained turns per user message.
    """

    def __init__(
        self,
        personas: list[Persona],
        transport: TurnTransport | None = None,
        store: ConversationStore | None = None,
        runner: Runner | None = None,
        selected: str | None = None,
        max_turns: int = 10,
    ):
        if not personas:
            raise ValueError("At least one persona is required")
        self.personas: dict[str, Persona] = {p.name: p for p in personas}
        if runner is None:
            if transport is None:
                raise ValueError("Either a transport or a runner is required")
            runner = Runner(transport, store or InMemoryConversationStore(self.personas), max_turns=max_turns)
        self.runner = runner
        self.store = runner.store
        self.selected_persona = selected or personas[0].name
        if self.selected_persona not in self.personas:
            raise KeyError(f"Persona '{self.selected_persona}' not found")
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def state(self) -> CharacterConversationState:
        return self.store.get_state(self.selected_persona)

    def is_busy(self, persona_id: str | None = None) -> bool:
        persona_id = persona_id or self.selected_persona
        return persona_id in self._tasks or self.runner.is_running(persona_id)

    def select_persona(self, name: str, cancel_running: bool = False) -> CharacterConversationState:
        """Make ``name`` the persona that receives user messages.

        Args:
            name: Persona to select.
            cancel_running: Also cancel the run in flight for the persona
                being left.

        Raises:
            KeyError: If no persona is registered under ``name``.
        """
        if name not in self.personas:
            raise KeyError(f"Persona '{name}' not found")
        if name == self.selected_persona:
            return self.state
        if cancel_running:
            self.cancel(self.selected_persona)
        logger.info(f"Switching persona {self.selected_persona} -> {name}")
        self.selected_persona = name
        return self.state

    def add_user_message(self, text: str, persona_id: str | None = None) -> None:
        persona_id = persona_id or self.selected_persona
        state = self.store.get_state(persona_id)
        self.store.set_chat_messages(persona_id, [*state.chat_messages, MessageItem.user(text)])
        self.store.set_conversation_items(
            persona_id,
            [*state.conversation_items, InputMessage(role=MessageRole.USER, content=text)],
        )

    def _begin(self, text: str) -> str:
        persona_id = self.selected_persona
        if self.is_busy(persona_id):
            raise TurnInProgressError(f"A turn is already running for {persona_id}")
        self.add_user_message(text, persona_id)
        return persona_id

    async def send(self, text: str) -> RunResult:
        """Append a user message and run turns until the model is done."""
        persona_id = self._begin(text)
        task = asyncio.ensure_future(self.runner.run(self.personas[persona_id], persona_id))
        self._tasks[persona_id] = task
        try:
            return await task
        finally:
            self._tasks.pop(persona_id, None)

    async def iter(self, text: str) -> AsyncIterator[StreamEvent]:
        """Streaming variant of :meth:`send`; the last event carries the result."""
        persona_id = self._begin(text)
        self._tasks[persona_id] = asyncio.current_task()
        try:
            async with aclosing(self.runner.iter(self.personas[persona_id], persona_id)) as events:
                async for event in events:
                    yield event
                    if isinstance(event, RunCompleteEvent):
                        return
        finally:
            self._tasks.pop(persona_id, None)

    def cancel(self, persona_id: str | None = None) -> bool:
        """Cancel the run in flight for a persona (default: the selected one).

        Returns:
            Whether a run was cancelled.
        """
        persona_id = persona_id or self.selected_persona
        task = self._tasks.get(persona_id)
        if task is None or task.done():
            return False
        logger.info(f"Cancelling run for {persona_id}")
        task.cancel()
        return True

    def reset(self) -> CharacterConversationState:
        """Clear the selected persona's conversation."""
        if self.is_busy():
            raise TurnInProgressError(f"Cannot reset {self.selected_persona} while a turn is running")
        return self.store.clear(self.selected_persona)

    def reset_all(self) -> None:
        busy = [p for p in self.personas if self.is_busy(p)]
        if busy:
            raise TurnInProgressError(f"Cannot reset while turns are running for {', '.join(busy)}")
        for persona_id in self.personas:
            self.store.clear(persona_id)

    def set_thread_id(self, thread_id: str | None) -> None:
        self.store.set_thread_id(self.selected_persona, thread_id)
