"""Vacancy funnel artifacts: cards, batches, queue and apply-flow records.

Each batch carries the id of the artifact it was derived from, so the
chain card batch -> deduped -> prefilter -> screening -> extraction ->
evaluation -> apply queue can be walked back to its source.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vacancy_agent.core.schemas import TokenUsage


class VacancyWorkMode(str, Enum):
    REMOTE = "REMOTE"
    HYBRID = "HYBRID"
    OFFICE = "OFFICE"
    UNKNOWN = "UNKNOWN"


class DedupDecision(str, Enum):
    SELECTED = "SELECTED"
    DUPLICATE = "DUPLICATE"
    SKIP_SEEN = "SKIP_SEEN"


class GateOutcome(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    UNKNOWN = "UNKNOWN"


class PrefilterDecision(str, Enum):
    READ_CANDIDATE = "READ_CANDIDATE"
    DEFER = "DEFER"
    REJECT = "REJECT"


class ScreeningVerdict(str, Enum):
    READ = "READ"
    DEFER = "DEFER"
    IGNORE = "IGNORE"


class ExtractionStatus(str, Enum):
    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class EvaluationVerdict(str, Enum):
    APPLY = "APPLY"
    SKIP = "SKIP"
    NEEDS_HUMAN = "NEEDS_HUMAN"


class QueueItemStatus(str, Enum):
    PENDING = "PENDING"
    APPLYING = "APPLYING"
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# ---------------------------------------------------------------------------
# Cards and collection
# ---------------------------------------------------------------------------


class VacancySalary(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int | None = None
    max: int | None = None
    currency: str = "RUB"
    gross: bool = False

    @property
    def is_known(self) -> bool:
        return self.min is not None or self.max is not None


class VacancyCard(BaseModel):
    """Listing-level record as normalized from a search results page."""

    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    url: str
    title: str
    card_hash: str
    external_id: str | None = None
    company: str | None = None
    city: str | None = None
    work_mode: VacancyWorkMode = VacancyWorkMode.UNKNOWN
    salary: VacancySalary | None = None
    published_at: str | None = None


class VacancyCardBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: str
    site_id: str
    query_fingerprint: str
    cards: tuple[VacancyCard, ...] = ()
    page_cursor: str | None = None
    captured_at: datetime = Field(default_factory=datetime.now)

    def card(self, card_id: str) -> VacancyCard | None:
        for c in self.cards:
            if c.id == card_id:
                return c
        return None


# ---------------------------------------------------------------------------
# Dedup
# ---------------------------------------------------------------------------


class DedupedCardResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    decision: DedupDecision
    dedup_key: str


class DedupSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    selected: int = 0
    duplicates: int = 0
    seen: int = 0


class DedupedBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    batch_id: str
    site_id: str
    user_city: str | None = None
    results: tuple[DedupedCardResult, ...] = ()
    summary: DedupSummary = Field(default_factory=DedupSummary)
    processed_at: datetime = Field(default_factory=datetime.now)


class SeenIndex(BaseModel):
    """Cross-run set of dedup keys already surfaced. Only ever grows."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    seen_keys: tuple[str, ...] = ()
    last_updated_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Prefilter and screening
# ---------------------------------------------------------------------------


class PrefilterGates(BaseModel):
    model_config = ConfigDict(frozen=True)

    salary: GateOutcome = GateOutcome.UNKNOWN
    work_mode: GateOutcome = GateOutcome.UNKNOWN


class PrefilterThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    read: float
    defer: float


class PrefilterResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    decision: PrefilterDecision
    score: float = Field(ge=-1.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    gates: PrefilterGates = Field(default_factory=PrefilterGates)


class PrefilterSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    read: int = 0
    defer: int = 0
    reject: int = 0


class PrefilterBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    input_batch_id: str
    thresholds: PrefilterThresholds
    results: tuple[PrefilterResult, ...] = ()
    summary: PrefilterSummary = Field(default_factory=PrefilterSummary)
    processed_at: datetime = Field(default_factory=datetime.now)


class ScreeningDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    decision: ScreeningVerdict
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)


class ScreeningSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    read: int = 0
    defer: int = 0
    ignore: int = 0


class ScreeningBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    input_prefilter_batch_id: str
    model_id: str
    decisions: tuple[ScreeningDecision, ...] = ()
    summary: ScreeningSummary = Field(default_factory=ScreeningSummary)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    decided_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Extraction and evaluation
# ---------------------------------------------------------------------------


class VacancySections(BaseModel):
    model_config = ConfigDict(frozen=True)

    requirements: list[str] = Field(default_factory=list)
    responsibilities: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    salary: VacancySalary | None = None
    work_mode: VacancyWorkMode | None = None


class VacancyExtract(BaseModel):
    model_config = ConfigDict(frozen=True)

    vacancy_id: str
    site_id: str
    url: str
    title: str
    extraction_status: ExtractionStatus
    sections: VacancySections = Field(default_factory=VacancySections)
    error: str | None = None
    extracted_at: datetime = Field(default_factory=datetime.now)


class ExtractionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    success: int = 0
    failed: int = 0


class ExtractionBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    input_screening_batch_id: str
    results: tuple[VacancyExtract, ...] = ()
    summary: ExtractionSummary = Field(default_factory=ExtractionSummary)
    processed_at: datetime = Field(default_factory=datetime.now)


class EvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    vacancy_id: str
    decision: EvaluationVerdict
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    facts_used: list[str] = Field(default_factory=list)


class EvaluationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    apply: int = 0
    skip: int = 0
    needs_human: int = 0


class EvaluationBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    input_extraction_batch_id: str
    model_id: str
    results: tuple[EvaluationResult, ...] = ()
    summary: EvaluationSummary = Field(default_factory=EvaluationSummary)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    decided_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Apply queue and apply flow
# ---------------------------------------------------------------------------


class ApplyQueueItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    vacancy_id: str
    url: str
    title: str = ""
    status: QueueItemStatus = QueueItemStatus.PENDING
    note: str | None = None


class ApplyQueue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    input_eval_batch_id: str
    items: tuple[ApplyQueueItem, ...] = ()
    created_at: datetime = Field(default_factory=datetime.now)

    def next_open(self) -> ApplyQueueItem | None:
        """First item still to be worked on. An APPLYING item was interrupted and goes first."""
        for status in (QueueItemStatus.APPLYING, QueueItemStatus.PENDING):
            for item in self.items:
                if item.status == status:
                    return item
        return None

    def item(self, vacancy_id: str) -> ApplyQueueItem | None:
        for item in self.items:
            if item.vacancy_id == vacancy_id:
                return item
        return None

    def with_item_status(
        self, vacancy_id: str, status: QueueItemStatus, note: str | None = None,
    ) -> "ApplyQueue":
        """Return a copy of the queue with one item's status replaced."""
        items = tuple(
            item.model_copy(update={"status": status, "note": note})
            if item.vacancy_id == vacancy_id
            else item
            for item in self.items
        )
        return self.model_copy(update={"items": items})

    def summary(self) -> dict[str, int]:
        counts = {s.value.lower(): 0 for s in QueueItemStatus}
        for item in self.items:
            counts[item.status.value.lower()] += 1
        counts["total"] = len(self.items)
        return counts


class ApplyControl(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    selector: str
    kind: str = "BUTTON"


class ApplyBlockers(BaseModel):
    model_config = ConfigDict(frozen=True)

    requires_login: bool = False
    apply_not_available: bool = False
    unknown_layout: bool = False

    @property
    def blocked(self) -> bool:
        return self.requires_login or self.apply_not_available or self.unknown_layout


class ApplyEntrypointProbe(BaseModel):
    """Transient result of looking for apply controls on a vacancy page."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    vacancy_id: str
    vacancy_url: str
    found_controls: tuple[ApplyControl, ...] = ()
    blockers: ApplyBlockers = Field(default_factory=ApplyBlockers)
    probed_at: datetime = Field(default_factory=datetime.now)


class QuestionnaireField(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    selector: str
    kind: str = "TEXT"
    options: list[str] = Field(default_factory=list)
    required: bool = False


class QuestionnaireAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_id: str
    value: Any = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ApplyUiKind(str, Enum):
    MODAL = "MODAL"
    PAGE = "PAGE"
    UNKNOWN = "UNKNOWN"


class ApplyFormFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    cover_letter: bool = False
    resume_selector: bool = False
    submit_button: bool = False
    questionnaire: bool = False


class ApplyFormProbe(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str
    vacancy_id: str
    entrypoint_used: str
    ui_kind: ApplyUiKind = ApplyUiKind.UNKNOWN
    detected_fields: ApplyFormFields = Field(default_factory=ApplyFormFields)
    cover_letter_selector: str | None = None
    submit_selector: str | None = None
    questionnaire_fields: tuple[QuestionnaireField, ...] = ()
    success_text_hints: list[str] = Field(default_factory=list)
    blockers: ApplyBlockers = Field(default_factory=ApplyBlockers)
    scanned_at: datetime = Field(default_factory=datetime.now)


class ApplyDraftSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    vacancy_id: str
    site_id: str
    cover_letter_field_found: bool = False
    cover_letter_filled: bool = False
    cover_letter_readback_hash: str | None = None
    cover_letter_source: str = "TEMPLATE"
    questionnaire_found: bool = False
    questionnaire_filled: bool = False
    questionnaire_answers: tuple[QuestionnaireAnswer, ...] = ()
    blocked_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class ApplySubmitReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    receipt_id: str
    vacancy_id: str
    site_id: str
    success_confirmed: bool
    final_status: QueueItemStatus
    confirmation_evidence: str | None = None
    submitted_at: datetime = Field(default_factory=datetime.now)
