"""Engine settings and logging setup."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful study assistant for a flashcard app. "
    "Use the search tools to look up the user's own decks and cards "
    "when the question is about their study material."
)

ENV_PREFIX = "DECKTUTOR_"


class EngineSettings(BaseModel):
    """Settings for one :class:`~decktutor.engine.ChatEngine`.

    Example:
        settings = EngineSettings(model="gpt-4o", max_steps=3)
        settings = EngineSettings.from_env()   # DECKTUTOR_MODEL=gpt-4o ...
    """

    api_key: str | None = None
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    max_retries: int = Field(default=5, ge=0)
    timeout: float = Field(default=600.0, gt=0)

    max_steps: int = Field(default=5, ge=1)
    history_length: int = Field(default=10, ge=0)

    debounce_interval_ms: float = Field(default=500, ge=0)
    debounce_min_chars: int = Field(default=20, ge=0)

    chat_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    additional_instructions: str | None = None
    failure_message: str = "An error occurred while generating a response."
    cancel_on_disconnect: bool = True

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides) -> EngineSettings:
        """Build settings from ``<prefix><FIELD>`` environment variables.

        ``OPENAI_API_KEY`` is used when no prefixed key is set.  Keyword
        *overrides* win over the environment.  Values are validated by
        pydantic, so ``DECKTUTOR_MAX_STEPS=0`` raises ``ValidationError``.
        """
        raw: dict[str, str] = {}
        for name in cls.model_fields:
            value = os.environ.get(f"{prefix}{name.upper()}")
            if value is not None:
                raw[name] = value
        if "api_key" not in raw and os.environ.get("OPENAI_API_KEY"):
            raw["api_key"] = os.environ["OPENAI_API_KEY"]
        raw.update(overrides)
        return cls.model_validate(raw)


def configure_logging(level: str | int = "INFO", log_file: str | None = None) -> None:
    """Install the package log format on the root logger.

    Never called on import; applications opt in.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )
