import argparse
import asyncio
import random
from datetime import datetime, timezone

from turnstream.chat import Chat
from turnstream.config import ChatConfig, configure_logging
from turnstream.events import OutputTextDelta, RunCompleteEvent, ToolCallEvent
from turnstream.persona import Persona
from turnstream.runner import TurnInProgressError
from turnstream.sse import TransportError
from turnstream.tools import tool


@tool
def roll_dice(sides: int = 6, count: int = 1):
    """Roll some dice.

    Args:
        sides: Number of faces on each die.
        count: How many dice to roll.
    """
    return [random.randint(1, sides) for _ in range(count)]


@tool
def current_time():
    """Current UTC time in ISO format."""
    return datetime.now(timezone.utc).isoformat()


DEFAULT_PERSONAS = [
    Persona(
        name="bard",
        description="A travelling storyteller",
        prompt=(
            "You are a cheerful travelling bard. Answer in a playful tone and "
            "roll dice whenever the user asks you to decide something by chance."
        ),
        tools=[roll_dice],
    ),
    Persona(
        name="clerk",
        description="A precise town clerk",
        prompt="You are a terse, precise town clerk. Use the clock when asked about the time.",
        tools=[current_time],
    ),
]

HELP = """Commands:
  /persona NAME   switch persona
  /personas       list personas
  /reset          clear the current persona's conversation
  /quit           exit
"""


async def _respond(chat: Chat, text: str) -> None:
    print(f"{chat.selected_persona}: ", end="", flush=True)
    async for event in chat.iter(text):
        if isinstance(event, OutputTextDelta):
            print(event.delta, end="", flush=True)
        elif isinstance(event, ToolCallEvent):
            status = "failed" if event.is_error else event.output
            print(f"\n  [{event.tool_name}] {status}\n", end="", flush=True)
        elif isinstance(event, RunCompleteEvent) and not event.result.ok:
            print(f"\n  (error: {event.result.error})", end="")
    print("\n")


def _command(chat: Chat, line: str) -> bool:
    """Handle a slash command.  Returns False to exit."""
    name, _, arg = line[1:].partition(" ")
    if name == "quit":
        return False
    if name == "persona":
        try:
            chat.select_persona(arg.strip())
            print(f"Now talking to {chat.selected_persona}.\n")
        except KeyError:
            print(f"Unknown persona '{arg.strip()}'.\n")
    elif name == "personas":
        for persona in chat.personas.values():
            marker = "*" if persona.name == chat.selected_persona else " "
            print(f" {marker} {persona.name}: {persona.description}")
        print()
    elif name == "reset":
        try:
            chat.reset()
            print("Conversation cleared.\n")
        except TurnInProgressError as e:
            print(f"{e}\n")
    else:
        print(HELP)
    return True


async def run_chat_loop(chat: Chat) -> None:
    print(HELP)
    while True:
        try:
            line = (await asyncio.to_thread(input, "User: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("Farewell!")
            return
        if not line:
            continue
        if line.startswith("/"):
            if not _command(chat, line):
                print("Farewell!")
                return
            continue
        try:
            await _respond(chat, line)
        except TransportError as e:
            print(f"\n  (transport error: {e})\n")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Chat with streaming personas.")
    parser.add_argument("--model", help="Model name for the OpenAI Responses API")
    parser.add_argument("--url", help="Turn endpoint that answers with an SSE stream")
    parser.add_argument("--persona", help="Persona to start with")
    parser.add_argument("--log-level", help="Logging level")
    parser.add_argument("--log-file", help="Also write logs to this file")
    args = parser.parse_args(argv)

    config = ChatConfig.from_env(model=args.model, turn_url=args.url, log_level=args.log_level)
    configure_logging(config.log_level, args.log_file)

    chat = Chat(
        DEFAULT_PERSONAS,
        transport=config.build_transport(),
        selected=args.persona,
        max_turns=config.max_turns,
    )
    try:
        asyncio.run(run_chat_loop(chat))
    except KeyboardInterrupt:
        print("Farewell!")


if __name__ == "__main__":
    main()
