"""Provider contract, the completion result type and shared response parsing."""

import json
import os
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict

from vacancy_agent.core.errors import AIResponseError

DEFAULT_SYSTEM_PROMPT = (
    "You are a careful assistant for a job seeker. "
    "Return ONLY a JSON object (no markdown, no explanation)."
)

DEFAULT_MAX_TOKENS = 4096


class Completion(BaseModel):
    """Text returned by a provider, with token counts when the API reports them."""

    model_config = ConfigDict(frozen=True)

    text: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None


def parse_json_response(raw_text: str) -> dict[str, Any]:
    """Parse an LLM response text into a JSON object.

    Handles markdown-wrapped JSON (```json ... ```) and plain JSON.

    Raises:
        AIResponseError: If the text is not a JSON object.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM response as JSON: {e}"
        raise AIResponseError(msg) from e

    if not isinstance(data, dict):
        msg = f"Expected a JSON object from the LLM, got {type(data).__name__}"
        raise AIResponseError(msg)
    return data


class LLMProvider(ABC):
    """One chat-completion backend. SDKs are imported lazily inside ``complete``."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Registry name of this provider (e.g. 'anthropic')."""

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when the caller passes none."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable holding the API key, or None for local backends."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> Completion:
        """Send one user message and return the reply.

        Args:
            prompt: The user message.
            model: Override the provider's default model. None uses default.
            system: Override the system prompt. None falls back to DEFAULT_SYSTEM_PROMPT.
        """

    def api_key(self) -> str:
        """Read the API key from ``env_var``.

        Raises:
            ValueError: If the variable is unset or empty.
        """
        key = os.environ.get(self.env_var or "", "")
        if not key:
            msg = f"{self.env_var} environment variable is required"
            raise ValueError(msg)
        return key
