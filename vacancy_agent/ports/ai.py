"""AI port: input/output contracts for every model-backed decision."""

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

from vacancy_agent.core.schemas import (
    RawFormField,
    SalaryStrategy,
    SearchUISpec,
    SeniorityLevel,
    TargetingSpec,
    TitleMatchWeights,
    TokenUsage,
    UserConstraints,
    WorkModeRules,
)
from vacancy_agent.core.vacancies import (
    EvaluationResult,
    QuestionnaireAnswer,
    QuestionnaireField,
    ScreeningDecision,
    VacancySections,
)


class ProfileSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    profile_hash: str
    profile_text: str
    user_constraints: UserConstraints


class SearchUIAnalysisInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    page_url: str
    fields: tuple[RawFormField, ...]
    target_roles: list[str]
    work_mode_rules: WorkModeRules
    min_threshold_strategy: SalaryStrategy


class ScreeningCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    company: str | None = None
    salary: str | None = None
    work_mode: str
    url: str
    prefilter_score: float


class ScreeningInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    target_roles: list[str]
    seniority: list[SeniorityLevel] = Field(default_factory=list)
    match_weights: TitleMatchWeights
    cards: list[ScreeningCard]


class ScreeningOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    model_id: str
    results: list[ScreeningDecision]
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class EvaluationCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    sections: VacancySections


class EvaluationInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    profile_summary: str
    target_roles: list[str]
    work_mode_rules: WorkModeRules
    min_salary: int | None = None
    candidates: list[EvaluationCandidate]


class EvaluationOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    model_id: str
    results: list[EvaluationResult]
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class QuestionnaireInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    vacancy_id: str
    vacancy_title: str
    profile_summary: str
    fields: list[QuestionnaireField]


class QuestionnaireAnswerSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    answers: list[QuestionnaireAnswer]
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class AIPort(ABC):
    """Base class for model-backed advisors.

    Methods are blocking; the orchestrator runs them off the event loop.
    Returned models are re-validated by the caller before being persisted.
    """

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the model answering the calls."""

    @abstractmethod
    def analyze_profile(self, profile: ProfileSummary) -> TargetingSpec: ...

    @abstractmethod
    def analyze_search_dom(self, analysis: SearchUIAnalysisInput) -> SearchUISpec: ...

    @abstractmethod
    def screen_vacancy_cards_batch(self, screening: ScreeningInput) -> ScreeningOutput: ...

    @abstractmethod
    def evaluate_vacancy_extracts_batch(self, evaluation: EvaluationInput) -> EvaluationOutput: ...

    @abstractmethod
    def generate_questionnaire_answers(
        self, questionnaire: QuestionnaireInput,
    ) -> QuestionnaireAnswerSet: ...
