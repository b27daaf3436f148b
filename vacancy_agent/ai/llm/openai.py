"""OpenAI provider, plus the chat-completions call shared with Ollama."""

import logging
from typing import Any

from vacancy_agent.ai.llm.base import DEFAULT_SYSTEM_PROMPT, Completion, LLMProvider

logger = logging.getLogger(__name__)


def import_openai(purpose: str) -> Any:
    try:
        import openai
    except ImportError:
        msg = (
            f"openai is required for {purpose}. "
            "Install with: pip install 'vacancy-agent[openai]'"
        )
        raise ImportError(msg) from None
    return openai


def chat_completion(
    client: Any,
    model: str,
    prompt: str,
    system: str | None,
    *,
    json_mode: bool,
) -> Completion:
    """Run one system+user exchange through a chat-completions client."""
    extra: dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system if system is not None else DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        **extra,
    )
    usage = getattr(response, "usage", None)
    return Completion(
        text=response.choices[0].message.content or "",
        model=model,
        input_tokens=getattr(usage, "prompt_tokens", None),
        output_tokens=getattr(usage, "completion_tokens", None),
    )


class OpenAIProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str:
        return "OPENAI_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> Completion:
        api_key = self.api_key()
        openai = import_openai("this provider")
        use_model = model or self.default_model
        logger.info("Asking OpenAI (%s), prompt %d chars", use_model, len(prompt))
        return chat_completion(
            openai.OpenAI(api_key=api_key), use_model, prompt, system, json_mode=True,
        )
