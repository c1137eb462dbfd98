"""Incremental, lenient JSON reader for streamed tool-call arguments.

Tool-call arguments arrive as an append-only sequence of fragments.  The
:class:`PartialJSONParser` consumes each fragment exactly once, keeping its
position in the document (open containers, an in-progress string or scalar
token) between calls, so the total cost stays linear in the length of the
arguments no matter how many fragments arrive.

:meth:`PartialJSONParser.snapshot` returns the best value obtainable from
the text seen so far.  It never raises because the document is incomplete;
it raises only when the text is not a JSON prefix at all, and even then the
caller can fall back to the last good snapshot.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

_WHITESPACE = " \t\n\r"
_SCALAR_CHARS = frozenset("+-.0123456789eEabcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ")
_STRING_RUN = re.compile(r'[^"\\]+')
_TRAILING_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{0,3})?$")

# Object frames move through these positions.
_KEY = "key"
_COLON = "colon"
_VALUE = "value"
_COMMA = "comma"


class PartialJSONError(ValueError):
    """The text seen so far cannot be the prefix of a JSON document."""


@dataclass
class _Frame:
    container: dict | list
    # Key or index under which this container sits in its parent.
    slot: str | int | None = None
    expect: str = _VALUE
    key: str | None = None

    @property
    def is_object(self) -> bool:
        return isinstance(self.container, dict)


@dataclass
class _StringToken:
    is_key: bool
    parts: list[str] = field(default_factory=list)
    escape: bool = False

    @property
    def raw(self) -> str:
        return "".join(self.parts)


def _decode_string(raw: str) -> str:
    return json.loads(f'"{raw}"')


def _decode_partial_string(raw: str) -> str | None:
    try:
        return _decode_string(raw)
    except ValueError:
        pass
    # Drop an escape sequence cut off by the end of the input.
    try:
        return _decode_string(_TRAILING_ESCAPE.sub("", raw))
    except ValueError:
        return None


def _decode_scalar(token: str) -> Any:
    try:
        return json.loads(token)
    except ValueError as e:
        raise PartialJSONError(f"invalid token {token!r}") from e


class PartialJSONParser:
    """Streaming JSON reader that can report a value before the input ends.

    Example::

        parser = PartialJSONParser()
        parser.feed('{"city": "New Y')
        parser.snapshot()   # {"city": "New Y"}
        parser.feed('ork", "days": [1, 2')
        parser.snapshot()   # {"city": "New York", "days": [1, 2]}
    """

    def __init__(self) -> None:
        self._stack: list[_Frame] = []
        self._root: Any = None
        self._has_root = False
        self._string: _StringToken | None = None
        self._scalar: list[str] = []
        self._failed = False

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def complete(self) -> bool:
        """True once a whole top-level value has been read."""
        return self._has_root and not self._stack and self._string is None and not self._scalar

    def feed(self, fragment: str) -> None:
        """Consume the next fragment of the document.

        Raises:
            PartialJSONError: If the text cannot be a JSON prefix.  The
                parser stays failed afterwards and ignores further input.
        """
        if self._failed:
            raise PartialJSONError("parser is in a failed state")
        try:
            self._consume(fragment)
        except PartialJSONError:
            self._failed = True
            raise

    def snapshot(self) -> Any:
        """Return the best value parsed so far.

        Open containers along the current path are copied, so a snapshot
        never changes after it is returned.  Closed containers are shared
        with the parser's tree; nothing writes to them again.
        """
        pending = self._pending_value()
        if not self._stack:
            if self._has_root:
                return self._root
            return pending[1] if pending else None

        child: Any = None
        child_slot: str | int | None = None
        for depth, frame in enumerate(reversed(self._stack)):
            copied = frame.container.copy()
            if depth == 0 and pending is not None:
                slot, value = pending
                if isinstance(copied, dict):
                    copied[slot] = value
                else:
                    copied.append(value)
            elif child is not None:
                copied[child_slot] = child
            child, child_slot = copied, frame.slot
        return child

    # ------------------------------------------------------------------
    # Snapshot helpers
    # ------------------------------------------------------------------

    def _pending_value(self) -> tuple[Any, Any] | None:
        """The in-progress scalar as ``(slot, value)``, if it can be shown."""
        if self._string is not None:
            if self._string.is_key:
                return None
            value = _decode_partial_string(self._string.raw)
            if value is None:
                return None
        elif self._scalar:
            try:
                value = json.loads("".join(self._scalar))
            except ValueError:
                return None
        else:
            return None

        if not self._stack:
            return (None, value)
        frame = self._stack[-1]
        if frame.is_object:
            if frame.key is None or frame.expect != _VALUE:
                return None
            return (frame.key, value)
        return (None, value)

    # ------------------------------------------------------------------
    # Tokenizer
    # ------------------------------------------------------------------

    def _consume(self, text: str) -> None:
        i, n = 0, len(text)
        while i < n:
            if self._string is not None:
                i = self._consume_string(text, i)
                continue

            c = text[i]
            if self._scalar:
                if c in _SCALAR_CHARS:
                    self._scalar.append(c)
                    i += 1
                    continue
                self._finish_scalar()
                # fall through and handle the delimiter

            if c in _WHITESPACE:
                i += 1
                continue
            if self.complete:
                raise PartialJSONError(f"unexpected {c!r} after document end")

            if c == "{":
                self._open({})
            elif c == "[":
                self._open([])
            elif c == '"':
                is_key = self._expecting(_KEY)
                if not is_key:
                    self._require_value_position()
                self._string = _StringToken(is_key=is_key)
            elif c == ":":
                self._punctuate(_COLON, _VALUE)
            elif c == ",":
                frame = self._top()
                self._punctuate(_COMMA, _KEY if frame.is_object else _VALUE)
            elif c in "}]":
                self._close(c)
            elif c in _SCALAR_CHARS:
                self._require_value_position()
                self._scalar.append(c)
            else:
                raise PartialJSONError(f"unexpected {c!r}")
            i += 1

    def _consume_string(self, text: str, i: int) -> int:
        token = self._string
        n = len(text)
        while i < n:
            if token.escape:
                token.parts.append(text[i])
                token.escape = False
                i += 1
                continue
            match = _STRING_RUN.match(text, i)
            if match:
                token.parts.append(match.group())
                i = match.end()
                continue
            c = text[i]
            i += 1
            if c == "\\":
                token.parts.append(c)
                token.escape = True
                continue
            # closing quote
            self._string = None
            try:
                value = _decode_string(token.raw)
            except ValueError as e:
                raise PartialJSONError(f"invalid string {token.raw!r}") from e
            if token.is_key:
                frame = self._top()
                frame.key = value
                frame.expect = _COLON
            else:
                self._attach(value)
            return i
        return i

    def _finish_scalar(self) -> None:
        token = "".join(self._scalar)
        self._scalar = []
        self._attach(_decode_scalar(token))

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _top(self) -> _Frame:
        if not self._stack:
            raise PartialJSONError("punctuation outside of a container")
        return self._stack[-1]

    def _expecting(self, position: str) -> bool:
        return bool(self._stack) and self._stack[-1].expect == position

    def _require_value_position(self) -> None:
        if not self._stack:
            if self._has_root:
                raise PartialJSONError("multiple top-level values")
            return
        if self._stack[-1].expect != _VALUE:
            raise PartialJSONError("value where a key or delimiter was expected")

    def _punctuate(self, required: str, then: str) -> None:
        frame = self._top()
        if frame.expect != required:
            raise PartialJSONError(f"unexpected delimiter while expecting {frame.expect}")
        frame.expect = then

    def _open(self, container: dict | list) -> None:
        self._require_value_position()
        slot = self._attach(container)
        self._stack.append(_Frame(container=container, slot=slot, expect=_KEY if isinstance(container, dict) else _VALUE))

    def _close(self, bracket: str) -> None:
        frame = self._top()
        if frame.is_object != (bracket == "}"):
            raise PartialJSONError(f"mismatched {bracket!r}")
        # `{}` / `[]` close while still expecting their first member.
        first = _KEY if frame.is_object else _VALUE
        empty = not frame.container and frame.key is None and frame.expect == first
        if not empty and frame.expect != _COMMA:
            raise PartialJSONError(f"{bracket!r} while expecting {frame.expect}")
        self._stack.pop()

    def _attach(self, value: Any) -> str | int | None:
        """Place a finished value (or a freshly opened container)."""
        if not self._stack:
            if self._has_root:
                raise PartialJSONError("multiple top-level values")
            self._root = value
            self._has_root = True
            return None
        frame = self._stack[-1]
        if frame.expect != _VALUE:
            raise PartialJSONError(f"value while expecting {frame.expect}")
        frame.expect = _COMMA
        if frame.is_object:
            frame.container[frame.key] = value
            return frame.key
        frame.container.append(value)
        return len(frame.container) - 1


def parse_partial(text: str) -> Any:
    """One-shot lenient parse; returns ``None`` when nothing is salvageable."""
    parser = PartialJSONParser()
    try:
        parser.feed(text)
    except PartialJSONError:
        return None
    return parser.snapshot()
