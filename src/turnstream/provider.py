import logging
import os
from collections.abc import AsyncIterator

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, Field

from turnstream.sse import TransportError, encode_done, encode_frame

logger = logging.getLogger(__name__)


class TurnRequest(BaseModel):
    """One outbound turn: full history, tool declarations, threading id."""

    input: list[dict]
    tools: list[dict] = Field(default_factory=list)
    previous_response_id: str | None = None


class TurnTransport:
    """Issues a turn request and streams back the raw framed response.

    Implementations yield the response body as it arrives, in chunks of any
    size; framing is decoded by :mod:`turnstream.sse`.
    """

    def stream(self, request: TurnRequest) -> AsyncIterator[bytes]:
        raise NotImplementedError


class HttpTurnTransport(TurnTransport):
    """Posts turns to an HTTP endpoint that answers with an SSE body.

    The request body is ``{"messages", "tools", "previousResponseId"}``.

    Args:
        url: The turn endpoint.
        timeout: Read timeout in seconds; streams can idle while the model
            thinks.
        client: Optional preconfigured ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 600.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.headers = {"Cache-Control": "no-cache", **(headers or {})}
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    async def stream(self, request: TurnRequest) -> AsyncIterator[bytes]:
        body = {"messages": request.input, "tools": request.tools}
        if request.previous_response_id:
            body["previousResponseId"] = request.previous_response_id
        try:
            async with self.client.stream("POST", self.url, json=body, headers=self.headers) as response:
                if response.is_error:
                    await response.aread()
                    raise TransportError(
                        f"Turn request failed: {response.status_code} - {response.reason_phrase}"
                    )
                logger.debug("Starting to read stream")
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"Turn request failed: {e}") from e

    async def aclose(self) -> None:
        await self.client.aclose()


class OpenAIResponsesTransport(TurnTransport):
    """Streams turns straight from the OpenAI Responses API.

    Each upstream event is re-framed as ``data: {"event", "data"}`` so the
    client decodes it exactly like a proxied stream.  An upstream failure
    mid-stream is sent as an ``error`` event and the stream ends without a
    terminator.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int = 5,
        timeout: float = 600.0,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    async def stream(self, request: TurnRequest) -> AsyncIterator[bytes]:
        kwargs = {
            "model": self.model,
            "input": request.input,
            "stream": True,
            "parallel_tool_calls": False,
            "store": True,
        }
        if request.tools:
            kwargs["tools"] = request.tools
        if request.previous_response_id:
            kwargs["previous_response_id"] = request.previous_response_id

        logger.info(f"Requesting turn from {self.model} with {len(request.input)} input items")
        try:
            events = await self.client.responses.create(**kwargs)
        except APIError as e:
            raise TransportError(f"Turn request failed: {e}") from e

        try:
            async for event in events:
                yield encode_frame(event.type, event.model_dump(mode="json")).encode()
        except APIError as e:
            logger.error(f"Error in streaming loop: {e}")
            yield encode_frame("error", {"message": str(e)}).encode()
            return
        finally:
            await events.close()
        yield encode_done().encode()
