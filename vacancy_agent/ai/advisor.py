"""LLM-backed implementation of the AI port.

Each call renders its input model as JSON inside a task prompt, asks the
configured provider for a JSON object, and validates the answer with the
matching pydantic model. Unparseable answers raise ``AIResponseError`` and
mis-shaped ones pydantic's ``ValidationError``; the orchestrator maps only those
two to a ``*_ERROR`` status. Provider setup and transport errors propagate.
"""

import logging
from typing import Any

from pydantic import BaseModel

from vacancy_agent.ai.llm import LLMProvider, get_provider, parse_json_response
from vacancy_agent.core.config import LLMConfig
from vacancy_agent.core.schemas import SearchUISpec, TargetingSpec, TokenUsage
from vacancy_agent.ports.ai import (
    AIPort,
    EvaluationInput,
    EvaluationOutput,
    ProfileSummary,
    QuestionnaireAnswerSet,
    QuestionnaireInput,
    ScreeningInput,
    ScreeningOutput,
    SearchUIAnalysisInput,
)

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio for providers whose usage we do not read back.
CHARS_PER_TOKEN = 4

SYSTEM_PROMPT = (
    "You help a job seeker search and apply for vacancies on a job board. "
    "Base every answer only on the data given. "
    "Return ONLY a JSON object (no markdown, no explanation)."
)

TARGETING_TASK = """\
Derive a vacancy search strategy from the resume below.
Return a JSON object with:
- target_roles: {"ru_titles": [..], "en_titles": [..]}, job titles to search for, at least one
- seniority_levels: list of INTERN, JUNIOR, MIDDLE, SENIOR, LEAD, C_LEVEL
- role_categories: list of ENGINEERING, PRODUCT, DESIGN, ANALYTICS, MANAGEMENT, OTHER
- title_match_weights: {"exact": 0..1, "contains": 0..1, "fuzzy": 0..1, "negative_keywords": [..]}
- salary_rules: {"ignore_if_missing": bool, "min_threshold_strategy": "STRICT" | "MARKET_BOTTOM_10" | "IGNORE"}
- work_mode_rules: {"strict_mode": bool}
- confidence_thresholds: {"auto_read": 0..1, "auto_ignore": 0..1}
- assumptions: list of short strings describing what you inferred

Profile:
"""

SEARCH_UI_TASK = """\
Map the scanned search form controls to search filters.
For each useful control return a field with:
- key: stable identifier (reuse the control id)
- label: human label
- ui_control_type: TEXT, SELECT, CHECKBOX, RADIO, BUTTON or RANGE
- semantic_type: KEYWORD, SALARY, LOCATION, WORK_MODE, SUBMIT or OTHER
- default_behavior: INCLUDE, EXCLUDE, RANGE or CLICK
- dom_hint: how to find the control, e.g. "name=text" or "data-qa=advanced-search-submit-button"
- confidence: 0..1
- options: option labels for selects
Return {"fields": [..], "unsupported_fields": [..], "assumptions": [..]}.
Exactly one field should be the SUBMIT button.

Form:
"""

SCREENING_TASK = """\
Screen vacancy cards against the target roles. For every card return
{"card_id": <id>, "decision": "READ" | "DEFER" | "IGNORE", "confidence": 0..1, "reasons": [..]}.
Return {"results": [..]} with one entry per card and no other ids.

Input:
"""

EVALUATION_TASK = """\
Decide whether the candidate should apply to each vacancy. Use only facts from
the vacancy sections and the profile. For every candidate return
{"vacancy_id": <id>, "decision": "APPLY" | "SKIP" | "NEEDS_HUMAN", "confidence": 0..1,
 "reasons": [..], "risks": [..], "facts_used": [..]}.
Return {"results": [..]}.

Input:
"""

QUESTIONNAIRE_TASK = """\
Answer the employer's application questions on behalf of the candidate, using only
facts from the profile. For every field return {"field_id": <id>, "value": <answer>,
"confidence": 0..1}. For checkboxes and radios the value is true or false. Leave the
value null when the profile does not contain the answer.
Return {"answers": [..]}.

Input:
"""


def _as_json(model: BaseModel) -> str:
    return model.model_dump_json(indent=2)


def estimate_usage(prompt: str, response: str) -> TokenUsage:
    return TokenUsage(
        input_tokens=len(prompt) // CHARS_PER_TOKEN,
        output_tokens=len(response) // CHARS_PER_TOKEN,
    )


class LLMAdvisor(AIPort):
    """AI port backed by one of the registered LLM providers."""

    def __init__(self, provider: LLMProvider, model: str | None = None) -> None:
        self._provider = provider
        self._model = model

    @classmethod
    def from_config(cls, config: LLMConfig) -> "LLMAdvisor":
        return cls(get_provider(config.provider), config.model)

    @property
    def model_id(self) -> str:
        return f"{self._provider.provider_id}:{self._model or self._provider.default_model}"

    def _ask(self, task: str, payload: str) -> tuple[dict[str, Any], TokenUsage]:
        prompt = f"{task}{payload}"
        completion = self._provider.complete(prompt, self._model, system=SYSTEM_PROMPT)
        logger.debug("LLM answered %d chars", len(completion.text))
        usage = estimate_usage(prompt, completion.text)
        if completion.input_tokens is not None and completion.output_tokens is not None:
            usage = TokenUsage(
                input_tokens=completion.input_tokens, output_tokens=completion.output_tokens,
            )
        return parse_json_response(completion.text), usage

    def analyze_profile(self, profile: ProfileSummary) -> TargetingSpec:
        data, usage = self._ask(TARGETING_TASK, profile.profile_text)
        data.update(
            user_constraints=profile.user_constraints.model_dump(),
            profile_hash=profile.profile_hash,
            token_usage=usage.model_dump(),
        )
        return TargetingSpec.model_validate(data)

    def analyze_search_dom(self, analysis: SearchUIAnalysisInput) -> SearchUISpec:
        # Hidden controls are noise for the mapping and inflate the prompt.
        visible = analysis.model_copy(
            update={"fields": tuple(f for f in analysis.fields if f.is_visible)},
        )
        data, usage = self._ask(SEARCH_UI_TASK, _as_json(visible))
        data.update(
            site_id=analysis.site_id,
            source_url=analysis.page_url,
            token_usage=usage.model_dump(),
        )
        return SearchUISpec.model_validate(data)

    def screen_vacancy_cards_batch(self, screening: ScreeningInput) -> ScreeningOutput:
        data, usage = self._ask(SCREENING_TASK, _as_json(screening))
        return ScreeningOutput.model_validate({
            "model_id": self.model_id,
            "results": data.get("results", []),
            "token_usage": usage.model_dump(),
        })

    def evaluate_vacancy_extracts_batch(self, evaluation: EvaluationInput) -> EvaluationOutput:
        data, usage = self._ask(EVALUATION_TASK, _as_json(evaluation))
        return EvaluationOutput.model_validate({
            "model_id": self.model_id,
            "results": data.get("results", []),
            "token_usage": usage.model_dump(),
        })

    def generate_questionnaire_answers(
        self, questionnaire: QuestionnaireInput,
    ) -> QuestionnaireAnswerSet:
        data, usage = self._ask(QUESTIONNAIRE_TASK, _as_json(questionnaire))
        return QuestionnaireAnswerSet.model_validate({
            "answers": data.get("answers", []),
            "token_usage": usage.model_dump(),
        })
