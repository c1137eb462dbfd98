import logging
import os

from pydantic import BaseModel

from turnstream.provider import HttpTurnTransport, OpenAIResponsesTransport, TurnTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s:%(name)s:%(levelname)s:%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ChatConfig(BaseModel):
    """Settings for building a chat client.

    ``turn_url`` selects an HTTP turn endpoint that answers with an SSE
    body; without it turns go straight to the OpenAI Responses API.
    """

    model: str = "gpt-4.1"
    api_key: str | None = None
    base_url: str | None = None
    turn_url: str | None = None
    max_turns: int = 10
    timeout: float = 600.0
    max_retries: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides) -> "ChatConfig":
        env = {
            "model": os.getenv("TURNSTREAM_MODEL"),
            "api_key": os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv("OPENAI_BASE_URL"),
            "turn_url": os.getenv("TURNSTREAM_TURN_URL"),
            "max_turns": os.getenv("TURNSTREAM_MAX_TURNS"),
            "timeout": os.getenv("TURNSTREAM_TIMEOUT"),
            "max_retries": os.getenv("TURNSTREAM_MAX_RETRIES"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        values = {k: v for k, v in env.items() if v}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    def build_transport(self) -> TurnTransport:
        if self.turn_url:
            logger.info(f"Using turn endpoint {self.turn_url}")
            return HttpTurnTransport(self.turn_url, timeout=self.timeout)
        logger.info(f"Using OpenAI Responses API with model {self.model}")
        return OpenAIResponsesTransport(
            model=self.model,
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=self.max_retries,
            timeout=self.timeout,
        )


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Install the root handlers.  Call once from an entry point."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
