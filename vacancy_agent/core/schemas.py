"""Core data models: profile, targeting, search UI, preferences and filter plans.

Every model is frozen. A phase that changes an artifact builds a new one
via ``model_copy(update=...)`` and persists it whole.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class WorkMode(str, Enum):
    REMOTE = "REMOTE"
    HYBRID = "HYBRID"
    OFFICE = "OFFICE"
    ANY = "ANY"


class SeniorityLevel(str, Enum):
    INTERN = "INTERN"
    JUNIOR = "JUNIOR"
    MIDDLE = "MIDDLE"
    SENIOR = "SENIOR"
    LEAD = "LEAD"
    C_LEVEL = "C_LEVEL"


class RoleCategory(str, Enum):
    ENGINEERING = "ENGINEERING"
    PRODUCT = "PRODUCT"
    DESIGN = "DESIGN"
    ANALYTICS = "ANALYTICS"
    MANAGEMENT = "MANAGEMENT"
    OTHER = "OTHER"


class SalaryStrategy(str, Enum):
    STRICT = "STRICT"
    MARKET_BOTTOM_10 = "MARKET_BOTTOM_10"
    IGNORE = "IGNORE"


class ControlType(str, Enum):
    TEXT = "TEXT"
    SELECT = "SELECT"
    CHECKBOX = "CHECKBOX"
    RADIO = "RADIO"
    BUTTON = "BUTTON"
    RANGE = "RANGE"


class SemanticType(str, Enum):
    KEYWORD = "KEYWORD"
    SALARY = "SALARY"
    LOCATION = "LOCATION"
    WORK_MODE = "WORK_MODE"
    SUBMIT = "SUBMIT"
    OTHER = "OTHER"


class DefaultBehavior(str, Enum):
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"
    RANGE = "RANGE"
    CLICK = "CLICK"


class ActionType(str, Enum):
    FILL_TEXT = "FILL_TEXT"
    SELECT_OPTION = "SELECT_OPTION"
    TOGGLE_CHECKBOX = "TOGGLE_CHECKBOX"
    CLICK = "CLICK"
    UNKNOWN = "UNKNOWN"


class ExecutionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class VerificationStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    UNKNOWN = "UNKNOWN"


class ReadbackSource(str, Enum):
    CONTROL_VALUE = "CONTROL_VALUE"
    URL_PARAMS = "URL_PARAMS"
    UNKNOWN = "UNKNOWN"


def _unit_interval(value: float, name: str) -> float:
    if not 0.0 <= value <= 1.0:
        msg = f"{name} must be within [0, 1], got {value}"
        raise ValueError(msg)
    return value


class TokenUsage(BaseModel):
    """Token counts reported by one AI call."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Profile and targeting
# ---------------------------------------------------------------------------


class ProfileSnapshot(BaseModel):
    """Captured profile page text, keyed by site id."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    source_url: str
    raw_content: str
    content_hash: str
    captured_at: datetime = Field(default_factory=datetime.now)


class UserConstraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    preferred_work_modes: list[WorkMode] = Field(default_factory=lambda: [WorkMode.REMOTE])
    min_salary: int | None = None
    currency: str = "RUB"
    city: str | None = None
    target_languages: list[str] = Field(default_factory=lambda: ["ru"])
    strict_work_mode: bool = False


class TargetRoles(BaseModel):
    model_config = ConfigDict(frozen=True)

    ru_titles: list[str] = Field(default_factory=list)
    en_titles: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def at_least_one_title(self) -> "TargetRoles":
        if not any(t.strip() for t in [*self.ru_titles, *self.en_titles]):
            msg = "target roles must contain at least one title"
            raise ValueError(msg)
        return self

    def all_titles(self) -> list[str]:
        return [*self.ru_titles, *self.en_titles]


class TitleMatchWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    exact: float = 1.0
    contains: float = 0.8
    fuzzy: float = 0.5
    negative_keywords: list[str] = Field(default_factory=list)

    @field_validator("exact", "contains", "fuzzy")
    @classmethod
    def weight_in_range(cls, v: float) -> float:
        return _unit_interval(v, "title match weight")


class SalaryRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    ignore_if_missing: bool = True
    min_threshold_strategy: SalaryStrategy = SalaryStrategy.STRICT


class WorkModeRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    strict_mode: bool = False


class ConfidenceThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    auto_read: float = 0.7
    auto_ignore: float = 0.3

    @field_validator("auto_read", "auto_ignore")
    @classmethod
    def threshold_in_range(cls, v: float) -> float:
        return _unit_interval(v, "confidence threshold")


class TargetingSpec(BaseModel):
    """AI-derived search strategy for one profile."""

    model_config = ConfigDict(frozen=True)

    target_roles: TargetRoles
    seniority_levels: list[SeniorityLevel] = Field(default_factory=list)
    role_categories: list[RoleCategory] = Field(default_factory=list)
    title_match_weights: TitleMatchWeights = Field(default_factory=TitleMatchWeights)
    salary_rules: SalaryRules = Field(default_factory=SalaryRules)
    work_mode_rules: WorkModeRules = Field(default_factory=WorkModeRules)
    confidence_thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    assumptions: list[str] = Field(default_factory=list)
    user_constraints: UserConstraints = Field(default_factory=UserConstraints)
    profile_hash: str = ""
    token_usage: TokenUsage | None = None
    derived_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Search page
# ---------------------------------------------------------------------------


class RawFormField(BaseModel):
    """One interactive element as scanned from a page, before any analysis."""

    model_config = ConfigDict(frozen=True)

    id: str
    tag: str
    input_type: str | None = None
    label: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    options: list[str] = Field(default_factory=list)
    is_visible: bool = True


class SearchDOMSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    page_url: str
    dom_hash: str
    fields: tuple[RawFormField, ...] = ()
    dom_version: int = 1
    captured_at: datetime = Field(default_factory=datetime.now)


class DomDriftEvent(BaseModel):
    """The search page no longer matches the snapshot its search UI spec was built from."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    page_url: str
    expected_hash: str
    observed_hash: str
    previous_version: int = 1
    observed_fields: tuple[RawFormField, ...] = ()
    detected_at: datetime = Field(default_factory=datetime.now)


class SearchFieldDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    ui_control_type: ControlType
    semantic_type: SemanticType = SemanticType.OTHER
    default_behavior: DefaultBehavior = DefaultBehavior.INCLUDE
    dom_hint: str | None = None
    confidence: float = 0.5
    options: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def confidence_in_range(cls, v: float) -> float:
        return _unit_interval(v, "field confidence")


class SearchUISpec(BaseModel):
    """Semantic map of the site's search form, created once per site."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    source_url: str
    fields: tuple[SearchFieldDefinition, ...]
    unsupported_fields: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    version: int = 1
    token_usage: TokenUsage | None = None
    derived_at: datetime = Field(default_factory=datetime.now)

    @field_validator("fields")
    @classmethod
    def fields_are_usable(
        cls, v: tuple[SearchFieldDefinition, ...],
    ) -> tuple[SearchFieldDefinition, ...]:
        keys = [f.key for f in v]
        if len(keys) != len(set(keys)):
            msg = "search field keys must be unique"
            raise ValueError(msg)
        if not any(f.semantic_type != SemanticType.OTHER for f in v):
            msg = "search UI spec maps no field to a semantic role"
            raise ValueError(msg)
        return v

    def field(self, key: str) -> SearchFieldDefinition | None:
        for f in self.fields:
            if f.key == key:
                return f
        return None


class UserSearchPrefs(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    filters: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Filter plan execution and verification
# ---------------------------------------------------------------------------


class SearchApplyStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    field_key: str
    action_type: ActionType
    value: Any = None
    rationale: str = ""
    priority: int = 0


class SearchApplyPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    steps: tuple[SearchApplyStep, ...] = ()
    created_at: datetime = Field(default_factory=datetime.now)


class AppliedStepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    field_key: str
    action_type: ActionType
    intended_value: Any = None
    success: bool
    observed_value: Any = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class AppliedFiltersSnapshot(BaseModel):
    """Append-only log of filter step attempts."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    overall_status: ExecutionStatus = ExecutionStatus.IN_PROGRESS
    results: tuple[AppliedStepResult, ...] = ()
    created_at: datetime = Field(default_factory=datetime.now)
    last_updated_at: datetime = Field(default_factory=datetime.now)


class ControlVerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_key: str
    expected_value: Any = None
    actual_value: Any = None
    source: ReadbackSource = ReadbackSource.UNKNOWN
    status: VerificationStatus


class FiltersVerification(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_id: str
    verified: bool
    results: tuple[ControlVerificationResult, ...] = ()
    mismatches: tuple[ControlVerificationResult, ...] = ()
    verified_at: datetime = Field(default_factory=datetime.now)
