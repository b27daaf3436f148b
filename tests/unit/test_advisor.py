"""Tests for the LLM-backed AI port."""

import json
from unittest.mock import MagicMock, patch

import pytest

from vacancy_agent.ai.advisor import (
    CHARS_PER_TOKEN,
    SYSTEM_PROMPT,
    LLMAdvisor,
    estimate_usage,
)
from vacancy_agent.ai.llm.base import Completion, LLMProvider
from vacancy_agent.core.config import LLMConfig
from vacancy_agent.core.errors import AIResponseError
from vacancy_agent.core.schemas import (
    ControlType,
    RawFormField,
    SalaryStrategy,
    SemanticType,
    TitleMatchWeights,
    UserConstraints,
    WorkModeRules,
)
from vacancy_agent.core.vacancies import (
    EvaluationVerdict,
    QuestionnaireField,
    ScreeningVerdict,
    VacancySections,
)
from vacancy_agent.ports.ai import (
    EvaluationCandidate,
    EvaluationInput,
    ProfileSummary,
    QuestionnaireInput,
    ScreeningCard,
    ScreeningInput,
    SearchUIAnalysisInput,
)


def _provider(
    response: dict | str,  # type: ignore[type-arg]
    usage: tuple[int, int] | None = None,
) -> MagicMock:
    provider = MagicMock(spec=LLMProvider)
    provider.provider_id = "mock"
    provider.default_model = "mock-1"
    text = response if isinstance(response, str) else json.dumps(response, ensure_ascii=False)
    input_tokens, output_tokens = usage or (None, None)
    provider.complete.return_value = Completion(
        text=text, model="mock-1", input_tokens=input_tokens, output_tokens=output_tokens,
    )
    return provider


def _profile() -> ProfileSummary:
    return ProfileSummary(
        site_id="hh.ru",
        profile_hash="abc123",
        profile_text="Python developer, 6 years, Django, PostgreSQL",
        user_constraints=UserConstraints(min_salary=250000, city="Москва"),
    )


# ---------------------------------------------------------------------------
# TestAdvisorBasics
# ---------------------------------------------------------------------------


class TestAdvisorBasics:
    def test_model_id_uses_default_model(self) -> None:
        assert LLMAdvisor(_provider({})).model_id == "mock:mock-1"

    def test_model_id_uses_override(self) -> None:
        assert LLMAdvisor(_provider({}), model="mock-2").model_id == "mock:mock-2"

    def test_from_config(self) -> None:
        provider = _provider({})
        with patch("vacancy_agent.ai.advisor.get_provider", return_value=provider) as mock_get:
            advisor = LLMAdvisor.from_config(LLMConfig(provider="openai", model="gpt-x"))
        mock_get.assert_called_once_with("openai")
        assert advisor.model_id == "mock:gpt-x"

    def test_estimate_usage(self) -> None:
        usage = estimate_usage("a" * 40, "b" * 8)
        assert usage.input_tokens == 40 // CHARS_PER_TOKEN
        assert usage.output_tokens == 8 // CHARS_PER_TOKEN

    def test_reported_usage_preferred_over_estimate(self) -> None:
        provider = _provider({"target_roles": {"ru_titles": ["Dev"]}}, usage=(1234, 56))
        spec = LLMAdvisor(provider).analyze_profile(_profile())
        assert spec.token_usage is not None
        assert (spec.token_usage.input_tokens, spec.token_usage.output_tokens) == (1234, 56)


# ---------------------------------------------------------------------------
# TestAnalyzeProfile
# ---------------------------------------------------------------------------


class TestAnalyzeProfile:
    def test_valid_answer(self) -> None:
        provider = _provider({
            "target_roles": {"ru_titles": ["Python разработчик"], "en_titles": ["Python Developer"]},
            "seniority_levels": ["SENIOR"],
            "title_match_weights": {"negative_keywords": ["1C"]},
            "salary_rules": {"min_threshold_strategy": "STRICT"},
        })
        spec = LLMAdvisor(provider).analyze_profile(_profile())
        assert spec.target_roles.all_titles() == ["Python разработчик", "Python Developer"]
        assert spec.profile_hash == "abc123"
        assert spec.user_constraints.min_salary == 250000
        assert spec.token_usage is not None
        assert spec.token_usage.input_tokens > 0
        assert provider.complete.call_args.kwargs["system"] == SYSTEM_PROMPT

    def test_profile_text_is_sent(self) -> None:
        provider = _provider({"target_roles": {"en_titles": ["Dev"]}})
        LLMAdvisor(provider).analyze_profile(_profile())
        prompt = provider.complete.call_args.args[0]
        assert "Django, PostgreSQL" in prompt

    def test_no_titles_rejected(self) -> None:
        provider = _provider({"target_roles": {"ru_titles": [], "en_titles": [" "]}})
        with pytest.raises(ValueError, match="at least one title"):
            LLMAdvisor(provider).analyze_profile(_profile())

    def test_malformed_json_rejected(self) -> None:
        with pytest.raises(AIResponseError, match="Failed to parse LLM response"):
            LLMAdvisor(_provider("Sure! Here is the JSON: {")).analyze_profile(_profile())

    def test_out_of_range_weight_rejected(self) -> None:
        provider = _provider({
            "target_roles": {"en_titles": ["Dev"]},
            "title_match_weights": {"exact": 1.7},
        })
        with pytest.raises(ValueError, match="title match weight"):
            LLMAdvisor(provider).analyze_profile(_profile())


# ---------------------------------------------------------------------------
# TestAnalyzeSearchDom
# ---------------------------------------------------------------------------


class TestAnalyzeSearchDom:
    def _analysis(self) -> SearchUIAnalysisInput:
        return SearchUIAnalysisInput(
            site_id="hh.ru",
            page_url="https://hh.ru/search/vacancy/advanced",
            fields=(
                RawFormField(id="text", tag="input", input_type="text", label="Ключевые слова"),
                RawFormField(id="hidden_token", tag="input", input_type="hidden", is_visible=False),
            ),
            target_roles=["Python Developer"],
            work_mode_rules=WorkModeRules(),
            min_threshold_strategy=SalaryStrategy.STRICT,
        )

    def test_hidden_fields_not_sent(self) -> None:
        provider = _provider({"fields": [{
            "key": "text", "label": "Ключевые слова", "ui_control_type": "TEXT",
            "semantic_type": "KEYWORD", "dom_hint": "name=text",
        }]})
        spec = LLMAdvisor(provider).analyze_search_dom(self._analysis())
        prompt = provider.complete.call_args.args[0]
        assert "hidden_token" not in prompt
        assert spec.site_id == "hh.ru"
        assert spec.source_url == "https://hh.ru/search/vacancy/advanced"
        assert spec.fields[0].ui_control_type == ControlType.TEXT
        assert spec.fields[0].semantic_type == SemanticType.KEYWORD

    def test_duplicate_keys_rejected(self) -> None:
        field = {"key": "text", "label": "x", "ui_control_type": "TEXT", "semantic_type": "KEYWORD"}
        provider = _provider({"fields": [field, field]})
        with pytest.raises(ValueError, match="unique"):
            LLMAdvisor(provider).analyze_search_dom(self._analysis())

    def test_no_semantic_field_rejected(self) -> None:
        provider = _provider({"fields": [
            {"key": "x", "label": "x", "ui_control_type": "TEXT", "semantic_type": "OTHER"},
        ]})
        with pytest.raises(ValueError, match="no field to a semantic role"):
            LLMAdvisor(provider).analyze_search_dom(self._analysis())


# ---------------------------------------------------------------------------
# TestBatchCalls
# ---------------------------------------------------------------------------


class TestBatchCalls:
    def test_screening(self) -> None:
        provider = _provider({"results": [
            {"card_id": "c1", "decision": "READ", "confidence": 0.9, "reasons": ["title"]},
        ]})
        screening = ScreeningInput(
            site_id="hh.ru",
            target_roles=["Python Developer"],
            match_weights=TitleMatchWeights(),
            cards=[ScreeningCard(
                id="c1", title="Python Developer", work_mode="REMOTE",
                url="https://hh.ru/vacancy/1", prefilter_score=1.0,
            )],
        )
        output = LLMAdvisor(provider).screen_vacancy_cards_batch(screening)
        assert output.model_id == "mock:mock-1"
        assert output.results[0].decision == ScreeningVerdict.READ

    def test_screening_unknown_verdict_rejected(self) -> None:
        provider = _provider({"results": [{"card_id": "c1", "decision": "MAYBE"}]})
        screening = ScreeningInput(
            site_id="hh.ru", target_roles=["x"], match_weights=TitleMatchWeights(), cards=[],
        )
        with pytest.raises(ValueError):
            LLMAdvisor(provider).screen_vacancy_cards_batch(screening)

    def test_evaluation_missing_results_is_empty(self) -> None:
        evaluation = EvaluationInput(
            profile_summary="Python developer",
            target_roles=["Python Developer"],
            work_mode_rules=WorkModeRules(),
            candidates=[EvaluationCandidate(id="v1", title="Dev", sections=VacancySections())],
        )
        output = LLMAdvisor(_provider({})).evaluate_vacancy_extracts_batch(evaluation)
        assert output.results == []

    def test_evaluation(self) -> None:
        provider = _provider({"results": [{
            "vacancy_id": "v1", "decision": "APPLY", "confidence": 0.8,
            "facts_used": ["Django in requirements"],
        }]})
        evaluation = EvaluationInput(
            profile_summary="Python developer",
            target_roles=["Python Developer"],
            work_mode_rules=WorkModeRules(),
            candidates=[EvaluationCandidate(id="v1", title="Dev", sections=VacancySections())],
        )
        output = LLMAdvisor(provider).evaluate_vacancy_extracts_batch(evaluation)
        assert output.results[0].decision == EvaluationVerdict.APPLY
        assert output.token_usage.output_tokens > 0

    def test_questionnaire(self) -> None:
        provider = _provider({"answers": [{"field_id": "q1", "value": "6 лет", "confidence": 0.7}]})
        questionnaire = QuestionnaireInput(
            vacancy_id="v1",
            vacancy_title="Python Developer",
            profile_summary="Python developer, 6 years",
            fields=[QuestionnaireField(id="q1", label="Опыт с Python?", selector="#q1")],
        )
        answers = LLMAdvisor(provider).generate_questionnaire_answers(questionnaire)
        assert answers.answers[0].value == "6 лет"
