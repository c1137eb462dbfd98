"""Accumulation of streamed tool-call arguments.

The backend streams a function call's JSON arguments as fragments keyed by
the call's item id.  :class:`ArgumentAccumulator` appends each fragment to
the raw string for that call and keeps a lenient, best-effort decode of the
text received so far.  The final ``arguments.done`` string is decoded
strictly by :meth:`ArgumentAccumulator.finalize`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from turnstream.partial_json import PartialJSONError, PartialJSONParser

logger = logging.getLogger(__name__)


class ArgumentParseError(ValueError):
    """The authoritative arguments of a tool call are not a JSON object."""

    def __init__(self, item_id: str, arguments: str, reason: str):
        super().__init__(f"Invalid arguments for {item_id}: {reason}")
        self.item_id = item_id
        self.arguments = arguments
        self.reason = reason


@dataclass
class PendingArguments:
    """Raw argument text for one in-flight tool call."""

    raw: str = ""
    parsed: dict = field(default_factory=dict)
    parser: PartialJSONParser = field(default_factory=PartialJSONParser)


def parse_arguments(item_id: str, arguments: str) -> dict[str, Any]:
    """Strictly decode a complete arguments string.

    An empty string stands for a call without arguments.

    Raises:
        ArgumentParseError: If the text is not valid JSON or not an object.
    """
    if not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(item_id, arguments, str(e)) from e
    if not isinstance(parsed, dict):
        raise ArgumentParseError(item_id, arguments, f"expected an object, got {type(parsed).__name__}")
    return parsed


class ArgumentAccumulator:
    """Assembles tool-call arguments from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingArguments] = {}

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._pending

    def feed(self, item_id: str, delta: str | None) -> PendingArguments:
        """Append a fragment and refresh the lenient decode.

        Never raises on incomplete or malformed text: the previous decode is
        kept until the parser can produce a better one.
        """
        pending = self._pending.setdefault(item_id, PendingArguments())
        if not delta:
            return pending
        pending.raw += delta
        if pending.parser.failed:
            return pending
        try:
            pending.parser.feed(delta)
        except PartialJSONError as e:
            logger.debug(f"Partial arguments for {item_id} no longer parse: {e}")
            return pending
        snapshot = pending.parser.snapshot()
        if isinstance(snapshot, dict):
            pending.parsed = snapshot
        return pending

    def raw(self, item_id: str) -> str:
        pending = self._pending.get(item_id)
        return pending.raw if pending else ""

    def finalize(self, item_id: str, arguments: str | None = None) -> tuple[str, dict[str, Any]]:
        """Close out a call and strictly decode its authoritative arguments.

        The ``arguments`` given with the done event supersede whatever was
        accumulated from deltas; the accumulated text is used only when the
        event carries none.

        Raises:
            ArgumentParseError: If the final text does not decode to an object.
        """
        pending = self._pending.pop(item_id, None)
        if arguments is None:
            arguments = pending.raw if pending else ""
        return arguments, parse_arguments(item_id, arguments)

    def discard(self, item_id: str) -> None:
        self._pending.pop(item_id, None)

    def clear(self) -> None:
        self._pending.clear()
