"""Local Ollama provider over its OpenAI-compatible endpoint."""

import logging
import os

from vacancy_agent.ai.llm.base import Completion, LLMProvider
from vacancy_agent.ai.llm.openai import chat_completion, import_openai

logger = logging.getLogger(__name__)

_OLLAMA_BASE_URL = "http://localhost:11434/v1"


class OllamaProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def env_var(self) -> None:
        return None

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> Completion:
        openai = import_openai("Ollama (OpenAI-compatible API)")
        base_url = os.environ.get("OLLAMA_BASE_URL", _OLLAMA_BASE_URL)
        use_model = model or self.default_model
        logger.info("Asking Ollama at %s (%s), prompt %d chars", base_url, use_model, len(prompt))
        # Small local models often ignore json_object mode, so rely on the prompt.
        return chat_completion(
            openai.OpenAI(base_url=base_url, api_key="ollama"),
            use_model,
            prompt,
            system,
            json_mode=False,
        )
