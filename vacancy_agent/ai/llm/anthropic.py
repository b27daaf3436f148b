"""Anthropic (Claude) provider."""

import logging

from vacancy_agent.ai.llm.base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_SYSTEM_PROMPT,
    Completion,
    LLMProvider,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> Completion:
        api_key = self.api_key()
        try:
            import anthropic
        except ImportError:
            msg = (
                "anthropic is required for this provider. "
                "Install with: pip install 'vacancy-agent[anthropic]'"
            )
            raise ImportError(msg) from None

        use_model = model or self.default_model
        logger.info("Asking Anthropic (%s), prompt %d chars", use_model, len(prompt))
        message = anthropic.Anthropic(api_key=api_key).messages.create(
            model=use_model,
            max_tokens=DEFAULT_MAX_TOKENS,
            system=system if system is not None else DEFAULT_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(getattr(block, "text", "") for block in message.content)
        usage = getattr(message, "usage", None)
        return Completion(
            text=text,
            model=use_model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )
