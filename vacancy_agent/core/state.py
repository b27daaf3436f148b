"""Session state: the single record every orchestrator phase reads and replaces.

A state is never mutated. ``advance`` returns a new, validated state, and
validation enforces that each status carries the artifacts it promises
(see ``REQUIRED_ARTIFACTS``), so a consumer that sees ``PREFILTER_DONE``
can rely on ``artifacts.prefilter`` being present.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vacancy_agent.core.schemas import (
    AppliedFiltersSnapshot,
    DomDriftEvent,
    FiltersVerification,
    SearchApplyPlan,
    SearchDOMSnapshot,
    SearchUISpec,
    TargetingSpec,
    TokenUsage,
    UserSearchPrefs,
)
from vacancy_agent.core.vacancies import (
    ApplyDraftSnapshot,
    ApplyEntrypointProbe,
    ApplyFormProbe,
    ApplyQueue,
    DedupedBatch,
    EvaluationBatch,
    ExtractionBatch,
    PrefilterBatch,
    ScreeningBatch,
    VacancyCardBatch,
)

DEFAULT_MAX_LOG_ITEMS = 50
KEPT_LOG_HEAD = 5
KEPT_LOG_TAIL = 5


class AgentStatus(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    NAVIGATING = "NAVIGATING"
    WAITING_FOR_HUMAN = "WAITING_FOR_HUMAN"
    LOGGED_IN_CONFIRMED = "LOGGED_IN_CONFIRMED"
    WAITING_FOR_PROFILE_PAGE = "WAITING_FOR_PROFILE_PAGE"
    EXTRACTING = "EXTRACTING"
    PROFILE_CAPTURED = "PROFILE_CAPTURED"
    TARGETING_PENDING = "TARGETING_PENDING"
    TARGETING_READY = "TARGETING_READY"
    TARGETING_ERROR = "TARGETING_ERROR"
    NAVIGATING_TO_SEARCH = "NAVIGATING_TO_SEARCH"
    SEARCH_PAGE_READY = "SEARCH_PAGE_READY"
    EXTRACTING_SEARCH_UI = "EXTRACTING_SEARCH_UI"
    SEARCH_DOM_READY = "SEARCH_DOM_READY"
    DOM_DRIFT_DETECTED = "DOM_DRIFT_DETECTED"
    ANALYZING_SEARCH_UI = "ANALYZING_SEARCH_UI"
    SEARCH_UI_ERROR = "SEARCH_UI_ERROR"
    WAITING_FOR_SEARCH_PREFS = "WAITING_FOR_SEARCH_PREFS"
    SEARCH_PREFS_SAVED = "SEARCH_PREFS_SAVED"
    APPLY_PLAN_READY = "APPLY_PLAN_READY"
    APPLYING_FILTERS = "APPLYING_FILTERS"
    APPLY_STEP_DONE = "APPLY_STEP_DONE"
    APPLY_STEP_FAILED = "APPLY_STEP_FAILED"
    SEARCH_READY = "SEARCH_READY"
    FILTERS_VERIFIED = "FILTERS_VERIFIED"
    VACANCIES_CAPTURED = "VACANCIES_CAPTURED"
    VACANCIES_DEDUPED = "VACANCIES_DEDUPED"
    PREFILTER_DONE = "PREFILTER_DONE"
    LLM_SCREENING_DONE = "LLM_SCREENING_DONE"
    SCREENING_ERROR = "SCREENING_ERROR"
    EXTRACTING_VACANCIES = "EXTRACTING_VACANCIES"
    VACANCIES_EXTRACTED = "VACANCIES_EXTRACTED"
    EVALUATION_DONE = "EVALUATION_DONE"
    EVALUATION_ERROR = "EVALUATION_ERROR"
    APPLY_QUEUE_READY = "APPLY_QUEUE_READY"
    APPLY_BUTTON_FOUND = "APPLY_BUTTON_FOUND"
    APPLY_ITEM_SKIPPED = "APPLY_ITEM_SKIPPED"
    APPLY_FORM_OPENED = "APPLY_FORM_OPENED"
    APPLY_DRAFT_FILLED = "APPLY_DRAFT_FILLED"
    APPLY_SUBMIT_SUCCESS = "APPLY_SUBMIT_SUCCESS"
    APPLY_SUBMIT_FAILED = "APPLY_SUBMIT_FAILED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TOKEN_BUDGET_EXCEEDED = "TOKEN_BUDGET_EXCEEDED"


ERROR_STATUSES = frozenset({
    AgentStatus.TARGETING_ERROR,
    AgentStatus.SEARCH_UI_ERROR,
    AgentStatus.SCREENING_ERROR,
    AgentStatus.EVALUATION_ERROR,
})

TERMINAL_STATUSES = frozenset({
    AgentStatus.IDLE,
    AgentStatus.COMPLETED,
    AgentStatus.FAILED,
    AgentStatus.TOKEN_BUDGET_EXCEEDED,
    *ERROR_STATUSES,
})

HUMAN_GATES = frozenset({
    AgentStatus.WAITING_FOR_HUMAN,
    AgentStatus.WAITING_FOR_PROFILE_PAGE,
    AgentStatus.WAITING_FOR_SEARCH_PREFS,
    AgentStatus.DOM_DRIFT_DETECTED,
})


class SessionArtifacts(BaseModel):
    """The artifacts a session currently holds. Absent means not yet produced."""

    model_config = ConfigDict(frozen=True)

    targeting: TargetingSpec | None = None
    search_dom: SearchDOMSnapshot | None = None
    dom_drift: DomDriftEvent | None = None
    search_ui: SearchUISpec | None = None
    prefs: UserSearchPrefs | None = None
    plan: SearchApplyPlan | None = None
    applied_filters: AppliedFiltersSnapshot | None = None
    verification: FiltersVerification | None = None
    vacancy_batch: VacancyCardBatch | None = None
    deduped: DedupedBatch | None = None
    prefilter: PrefilterBatch | None = None
    screening: ScreeningBatch | None = None
    extraction: ExtractionBatch | None = None
    evaluation: EvaluationBatch | None = None
    apply_queue: ApplyQueue | None = None
    apply_probe: ApplyEntrypointProbe | None = None
    apply_form: ApplyFormProbe | None = None
    apply_draft: ApplyDraftSnapshot | None = None


_SEARCH_FORM = ("search_ui", "prefs")
_PLAN = (*_SEARCH_FORM, "plan")
_FUNNEL_BASE = ("targeting", "vacancy_batch")

REQUIRED_ARTIFACTS: dict[AgentStatus, tuple[str, ...]] = {
    AgentStatus.TARGETING_READY: ("targeting",),
    AgentStatus.SEARCH_DOM_READY: ("targeting", "search_dom"),
    AgentStatus.DOM_DRIFT_DETECTED: ("targeting", "dom_drift"),
    AgentStatus.WAITING_FOR_SEARCH_PREFS: _SEARCH_FORM,
    AgentStatus.SEARCH_PREFS_SAVED: _SEARCH_FORM,
    AgentStatus.APPLY_PLAN_READY: _PLAN,
    AgentStatus.APPLYING_FILTERS: (*_PLAN, "applied_filters"),
    AgentStatus.APPLY_STEP_DONE: (*_PLAN, "applied_filters"),
    AgentStatus.APPLY_STEP_FAILED: (*_PLAN, "applied_filters"),
    AgentStatus.SEARCH_READY: (*_PLAN, "applied_filters"),
    AgentStatus.FILTERS_VERIFIED: ("targeting", "verification"),
    AgentStatus.VACANCIES_CAPTURED: _FUNNEL_BASE,
    AgentStatus.VACANCIES_DEDUPED: (*_FUNNEL_BASE, "deduped"),
    AgentStatus.PREFILTER_DONE: (*_FUNNEL_BASE, "prefilter"),
    AgentStatus.LLM_SCREENING_DONE: (*_FUNNEL_BASE, "screening"),
    AgentStatus.EXTRACTING_VACANCIES: (*_FUNNEL_BASE, "screening"),
    AgentStatus.VACANCIES_EXTRACTED: (*_FUNNEL_BASE, "extraction"),
    AgentStatus.EVALUATION_DONE: (*_FUNNEL_BASE, "evaluation"),
    AgentStatus.APPLY_QUEUE_READY: ("apply_queue",),
    AgentStatus.APPLY_BUTTON_FOUND: ("apply_queue", "apply_probe"),
    AgentStatus.APPLY_ITEM_SKIPPED: ("apply_queue",),
    AgentStatus.APPLY_FORM_OPENED: ("apply_queue", "apply_probe", "apply_form"),
    AgentStatus.APPLY_DRAFT_FILLED: ("apply_queue", "apply_form", "apply_draft"),
    AgentStatus.APPLY_SUBMIT_SUCCESS: ("apply_queue",),
    AgentStatus.APPLY_SUBMIT_FAILED: ("apply_queue",),
}


class BudgetStatus(str, Enum):
    OK = "OK"
    NEAR_LIMIT = "NEAR_LIMIT"
    OVER_LIMIT = "OVER_LIMIT"


class TokenLedger(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    calls: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def budget_status(self, soft_limit: int | None, hard_limit: int | None) -> BudgetStatus:
        """Where the tokens spent so far stand against the configured limits."""
        if hard_limit is not None and self.total >= hard_limit:
            return BudgetStatus.OVER_LIMIT
        if soft_limit is not None and self.total >= soft_limit:
            return BudgetStatus.NEAR_LIMIT
        return BudgetStatus.OK

    def add(self, usage: TokenUsage | None) -> "TokenLedger":
        if usage is None:
            return self
        return TokenLedger(
            input_tokens=self.input_tokens + usage.input_tokens,
            output_tokens=self.output_tokens + usage.output_tokens,
            calls=self.calls + 1,
        )


class SessionState(BaseModel):
    """One immutable snapshot of an agent session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    site_id: str
    status: AgentStatus = AgentStatus.IDLE
    current_url: str | None = None
    logs: tuple[str, ...] = ()
    artifacts: SessionArtifacts = Field(default_factory=SessionArtifacts)
    token_ledger: TokenLedger = Field(default_factory=TokenLedger)
    failure_reason: str | None = None
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def status_artifacts_present(self) -> "SessionState":
        missing = [
            name
            for name in REQUIRED_ARTIFACTS.get(self.status, ())
            if getattr(self.artifacts, name) is None
        ]
        if missing:
            msg = f"status {self.status.value} requires artifacts: {', '.join(missing)}"
            raise ValueError(msg)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(
        self,
        status: AgentStatus,
        *messages: str,
        current_url: str | None = None,
        failure_reason: str | None = None,
        token_ledger: TokenLedger | None = None,
        **artifacts: Any,
    ) -> "SessionState":
        """Return the next state with ``status``, new log lines and artifact updates.

        Pass an artifact as ``None`` to drop it from the session.
        """
        payload = dict(self)
        payload.update(
            status=status,
            logs=(*self.logs, *messages),
            updated_at=datetime.now(),
        )
        if artifacts:
            unknown = set(artifacts) - set(SessionArtifacts.model_fields)
            if unknown:
                msg = f"Unknown session artifacts: {', '.join(sorted(unknown))}"
                raise ValueError(msg)
            payload["artifacts"] = self.artifacts.model_copy(update=artifacts)
        if current_url is not None:
            payload["current_url"] = current_url
        if failure_reason is not None:
            payload["failure_reason"] = failure_reason
        if token_ledger is not None:
            payload["token_ledger"] = token_ledger
        return SessionState(**payload)


def compact_logs(
    logs: tuple[str, ...],
    max_items: int = DEFAULT_MAX_LOG_ITEMS,
    head: int = KEPT_LOG_HEAD,
    tail: int = KEPT_LOG_TAIL,
) -> tuple[str, ...]:
    """Keep the first ``head`` and last ``tail`` lines once ``max_items`` is exceeded."""
    if len(logs) <= max_items:
        return logs
    dropped = len(logs) - head - tail
    return (*logs[:head], f"... [{dropped} log lines compacted] ...", *logs[-tail:])
