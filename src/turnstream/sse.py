"""Server-Sent Events framing for streamed turns.

Wire format: every frame is ``data: <json>`` followed by a blank line, the
JSON being an envelope ``{"event": <kind>, "data": {...}}``.  A literal
``data: [DONE]`` frame ends the stream.

Decoding is split in two steps.  :class:`FrameDecoder` turns arbitrarily
chunked bytes into complete frames; :func:`parse_frame` turns one frame
into an envelope.  :func:`iter_events` composes both with
:func:`turnstream.events.decode_event`.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from turnstream.events import TurnEvent, decode_event

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

# Returned by parse_frame for the terminator frame.
DONE = object()


class TransportError(Exception):
    """The turn request failed or its stream broke off."""


class StreamInterruptedError(TransportError):
    """The stream ended before the ``[DONE]`` terminator."""


class FrameDecoder:
    """Splits a chunked stream into frames delimited by a blank line.

    Chunk boundaries may fall anywhere, including inside a multi-byte
    character or between the two newlines of a delimiter; the undelimited
    remainder is buffered and prepended to the next chunk.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add a chunk and return every frame it completes."""
        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        if not text:
            return []
        # A "\r" ending the previous chunk pairs with a "\n" starting this one.
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split(FRAME_DELIMITER)
        frames = [f.strip("\n") for f in frames]
        return [f for f in frames if f]

    def flush(self) -> list[str]:
        """Return whatever is left as a best-effort last frame."""
        tail = self._utf8.decode(b"", final=True)
        remainder = (self._buffer + tail).strip("\n")
        self._buffer = ""
        return [remainder] if remainder else []

    def reset(self) -> None:
        """Drop buffered state, e.g. after the stream was aborted."""
        self._buffer = ""
        self._utf8.reset()


def parse_frame(frame: str) -> Any:
    """Parse one frame into an envelope.

    Returns:
        The envelope dict, :data:`DONE` for the terminator, or ``None`` when
        the frame is not a data frame or its JSON does not decode.  A bad
        frame is logged and skipped; it never ends the stream.
    """
    if not frame.startswith(DATA_PREFIX):
        return None
    payload = frame[len(DATA_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return DONE
    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping undecodable frame: {e}")
        return None
    if not isinstance(envelope, dict):
        logger.warning(f"Skipping frame that is not an envelope: {payload[:80]!r}")
        return None
    return envelope


async def iter_frames(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Yield complete frames from a chunked stream, flushing at its end."""
    decoder = FrameDecoder()
    try:
        async for chunk in chunks:
            for frame in decoder.feed(chunk):
                yield frame
        for frame in decoder.flush():
            yield frame
    finally:
        decoder.reset()
        # Closing early must release the transport's read loop too.
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()


async def iter_envelopes(
    chunks: AsyncIterable[bytes | str],
    require_terminator: bool = True,
) -> AsyncIterator[dict]:
    """Yield envelopes until the ``[DONE]`` terminator.

    Raises:
        StreamInterruptedError: If the stream ends without a terminator and
            ``require_terminator`` is set.
    """
    frames = iter_frames(chunks)
    try:
        async for frame in frames:
            envelope = parse_frame(frame)
            if envelope is DONE:
                return
            if envelope is not None:
                yield envelope
    finally:
        await frames.aclose()
    if require_terminator:
        raise StreamInterruptedError("Stream ended before [DONE]")


async def iter_events(
    chunks: AsyncIterable[bytes | str],
    require_terminator: bool = True,
) -> AsyncIterator[TurnEvent]:
    """Decode a chunked stream into typed turn events."""
    envelopes = iter_envelopes(chunks, require_terminator=require_terminator)
    try:
        async for envelope in envelopes:
            yield decode_event(envelope)
    finally:
        await envelopes.aclose()


def encode_frame(event: str, data: dict) -> str:
    """Frame one event for the wire."""
    return f"{DATA_PREFIX}{json.dumps({'event': event, 'data': data})}{FRAME_DELIMITER}"


def encode_done() -> str:
    return f"{DATA_PREFIX}{DONE_SENTINEL}{FRAME_DELIMITER}"
