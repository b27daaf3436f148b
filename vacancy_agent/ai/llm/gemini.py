"""Google Gemini provider (google-genai SDK)."""

import logging

from vacancy_agent.ai.llm.base import DEFAULT_SYSTEM_PROMPT, Completion, LLMProvider

logger = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> Completion:
        api_key = self.api_key()
        try:
            from google import genai
            from google.genai import types as genai_types
        except ImportError:
            msg = (
                "google-genai is required for this provider. "
                "Install with: pip install 'vacancy-agent[gemini]'"
            )
            raise ImportError(msg) from None

        use_model = model or self.default_model
        logger.info("Asking Gemini (%s), prompt %d chars", use_model, len(prompt))
        response = genai.Client(api_key=api_key).models.generate_content(
            model=use_model,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                system_instruction=system if system is not None else DEFAULT_SYSTEM_PROMPT,
                response_mime_type="application/json",
            ),
        )
        usage = getattr(response, "usage_metadata", None)
        return Completion(
            text=response.text or "",
            model=use_model,
            input_tokens=getattr(usage, "prompt_token_count", None),
            output_tokens=getattr(usage, "candidates_token_count", None),
        )
