"""Persistence port: typed, site-namespaced artifact storage.

Backends implement three primitives (``_load``, ``_store``, ``_remove``);
the typed accessors and the cascade rules live here so every backend
deletes the same things together.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel

from vacancy_agent.core.schemas import (
    AppliedFiltersSnapshot,
    FiltersVerification,
    ProfileSnapshot,
    SearchApplyPlan,
    SearchDOMSnapshot,
    SearchUISpec,
    TargetingSpec,
    UserSearchPrefs,
)
from vacancy_agent.core.state import SessionState
from vacancy_agent.core.vacancies import (
    ApplyDraftSnapshot,
    ApplyQueue,
    ApplySubmitReceipt,
    DedupedBatch,
    EvaluationBatch,
    ExtractionBatch,
    PrefilterBatch,
    ScreeningBatch,
    SeenIndex,
    VacancyCardBatch,
)

M = TypeVar("M", bound=BaseModel)

CURRENT = "current"


class ArtifactSlot(str, Enum):
    PROFILE = "profile"
    TARGETING = "targeting"
    SEARCH_DOM = "search_dom"
    SEARCH_UI = "search_ui"
    PREFS = "prefs"
    PLAN = "plan"
    APPLIED_FILTERS = "applied_filters"
    VERIFICATION = "verification"
    VACANCY_BATCH = "vacancy_batch"
    DEDUPED = "deduped"
    PREFILTER = "prefilter"
    SCREENING = "screening"
    EXTRACTION = "extraction"
    EVALUATION = "evaluation"
    APPLY_QUEUE = "apply_queue"
    APPLY_DRAFT = "apply_draft"
    APPLY_RECEIPT = "apply_receipt"
    SEEN_INDEX = "seen_index"
    SESSION = "session"


# Everything derived from a profile, directly or through the search form.
PROFILE_CASCADE = (
    ArtifactSlot.PROFILE,
    ArtifactSlot.TARGETING,
    ArtifactSlot.SEARCH_UI,
    ArtifactSlot.PREFS,
    ArtifactSlot.PLAN,
    ArtifactSlot.APPLIED_FILTERS,
    ArtifactSlot.VERIFICATION,
)

PREFS_DEPENDENTS = (
    ArtifactSlot.PLAN,
    ArtifactSlot.APPLIED_FILTERS,
    ArtifactSlot.VERIFICATION,
)

# Everything built on the scanned search form.
SEARCH_FORM_CASCADE = (
    ArtifactSlot.SEARCH_DOM,
    ArtifactSlot.SEARCH_UI,
    ArtifactSlot.PREFS,
    *PREFS_DEPENDENTS,
)

# Describe the live page, meaningless once the browser is relaunched.
PAGE_BOUND = (ArtifactSlot.APPLIED_FILTERS, ArtifactSlot.VERIFICATION)

SEARCH_HISTORY = (
    ArtifactSlot.SEEN_INDEX,
    ArtifactSlot.VACANCY_BATCH,
    ArtifactSlot.DEDUPED,
    ArtifactSlot.PREFILTER,
    ArtifactSlot.SCREENING,
    ArtifactSlot.EXTRACTION,
    ArtifactSlot.EVALUATION,
    ArtifactSlot.APPLY_QUEUE,
)


class ArtifactStore(ABC):
    """Base class for artifact storage backends."""

    @abstractmethod
    def _load(self, site_id: str, slot: ArtifactSlot, key: str, model: type[M]) -> M | None:
        """Return the artifact stored under (site_id, slot, key), or None."""

    @abstractmethod
    def _store(self, site_id: str, slot: ArtifactSlot, key: str, artifact: BaseModel) -> None:
        """Insert or replace the artifact under (site_id, slot, key)."""

    @abstractmethod
    def _remove(self, site_id: str, slots: Iterable[ArtifactSlot]) -> None:
        """Delete every artifact in ``slots`` for the site as one operation."""

    def close(self) -> None:
        """Release backend resources. No-op by default."""

    # --- Profile and its cascade ---

    def get_profile(self, site_id: str) -> ProfileSnapshot | None:
        return self._load(site_id, ArtifactSlot.PROFILE, CURRENT, ProfileSnapshot)

    def save_profile(self, profile: ProfileSnapshot) -> None:
        self._store(profile.site_id, ArtifactSlot.PROFILE, CURRENT, profile)

    def delete_profile(self, site_id: str) -> None:
        """Delete the profile and every artifact derived from it."""
        self._remove(site_id, PROFILE_CASCADE)

    def get_targeting_spec(self, site_id: str) -> TargetingSpec | None:
        return self._load(site_id, ArtifactSlot.TARGETING, CURRENT, TargetingSpec)

    def save_targeting_spec(self, site_id: str, spec: TargetingSpec) -> None:
        self._store(site_id, ArtifactSlot.TARGETING, CURRENT, spec)

    # --- Search form ---

    def get_search_dom_snapshot(self, site_id: str) -> SearchDOMSnapshot | None:
        return self._load(site_id, ArtifactSlot.SEARCH_DOM, CURRENT, SearchDOMSnapshot)

    def save_search_dom_snapshot(self, snapshot: SearchDOMSnapshot) -> None:
        self._store(snapshot.site_id, ArtifactSlot.SEARCH_DOM, CURRENT, snapshot)

    def invalidate_search_form(self, site_id: str) -> None:
        """Drop the search DOM snapshot and the UI spec, prefs and plan built on it."""
        self._remove(site_id, SEARCH_FORM_CASCADE)

    def get_search_ui_spec(self, site_id: str) -> SearchUISpec | None:
        return self._load(site_id, ArtifactSlot.SEARCH_UI, CURRENT, SearchUISpec)

    def save_search_ui_spec(self, spec: SearchUISpec) -> None:
        self._store(spec.site_id, ArtifactSlot.SEARCH_UI, CURRENT, spec)

    def get_user_search_prefs(self, site_id: str) -> UserSearchPrefs | None:
        return self._load(site_id, ArtifactSlot.PREFS, CURRENT, UserSearchPrefs)

    def save_user_search_prefs(self, prefs: UserSearchPrefs) -> None:
        self._store(prefs.site_id, ArtifactSlot.PREFS, CURRENT, prefs)

    def get_search_apply_plan(self, site_id: str) -> SearchApplyPlan | None:
        return self._load(site_id, ArtifactSlot.PLAN, CURRENT, SearchApplyPlan)

    def save_search_apply_plan(self, plan: SearchApplyPlan) -> None:
        self._store(plan.site_id, ArtifactSlot.PLAN, CURRENT, plan)

    def invalidate_search_plan(self, site_id: str) -> None:
        """Drop the plan and everything recorded while executing it."""
        self._remove(site_id, PREFS_DEPENDENTS)

    def get_applied_filters_snapshot(self, site_id: str) -> AppliedFiltersSnapshot | None:
        return self._load(
            site_id, ArtifactSlot.APPLIED_FILTERS, CURRENT, AppliedFiltersSnapshot,
        )

    def save_applied_filters_snapshot(self, snapshot: AppliedFiltersSnapshot) -> None:
        self._store(snapshot.site_id, ArtifactSlot.APPLIED_FILTERS, CURRENT, snapshot)

    def get_filters_verification(self, site_id: str) -> FiltersVerification | None:
        return self._load(site_id, ArtifactSlot.VERIFICATION, CURRENT, FiltersVerification)

    def save_filters_verification(self, verification: FiltersVerification) -> None:
        self._store(verification.site_id, ArtifactSlot.VERIFICATION, CURRENT, verification)

    def clear_page_state(self, site_id: str) -> None:
        self._remove(site_id, PAGE_BOUND)

    # --- Vacancy funnel, each keyed by the id of its input ---

    def get_vacancy_batch(self, site_id: str, batch_id: str) -> VacancyCardBatch | None:
        return self._load(site_id, ArtifactSlot.VACANCY_BATCH, batch_id, VacancyCardBatch)

    def save_vacancy_batch(self, batch: VacancyCardBatch) -> None:
        self._store(batch.site_id, ArtifactSlot.VACANCY_BATCH, batch.batch_id, batch)

    def get_deduped_batch(self, site_id: str, vacancy_batch_id: str) -> DedupedBatch | None:
        return self._load(site_id, ArtifactSlot.DEDUPED, vacancy_batch_id, DedupedBatch)

    def save_deduped_batch(self, batch: DedupedBatch) -> None:
        self._store(batch.site_id, ArtifactSlot.DEDUPED, batch.batch_id, batch)

    def get_prefilter_batch(self, site_id: str, deduped_batch_id: str) -> PrefilterBatch | None:
        return self._load(site_id, ArtifactSlot.PREFILTER, deduped_batch_id, PrefilterBatch)

    def save_prefilter_batch(self, batch: PrefilterBatch) -> None:
        self._store(batch.site_id, ArtifactSlot.PREFILTER, batch.input_batch_id, batch)

    def get_screening_batch(self, site_id: str, prefilter_batch_id: str) -> ScreeningBatch | None:
        return self._load(site_id, ArtifactSlot.SCREENING, prefilter_batch_id, ScreeningBatch)

    def save_screening_batch(self, batch: ScreeningBatch) -> None:
        self._store(
            batch.site_id, ArtifactSlot.SCREENING, batch.input_prefilter_batch_id, batch,
        )

    def get_extraction_batch(
        self, site_id: str, screening_batch_id: str,
    ) -> ExtractionBatch | None:
        return self._load(site_id, ArtifactSlot.EXTRACTION, screening_batch_id, ExtractionBatch)

    def save_extraction_batch(self, batch: ExtractionBatch) -> None:
        self._store(
            batch.site_id, ArtifactSlot.EXTRACTION, batch.input_screening_batch_id, batch,
        )

    def get_evaluation_batch(
        self, site_id: str, extraction_batch_id: str,
    ) -> EvaluationBatch | None:
        return self._load(site_id, ArtifactSlot.EVALUATION, extraction_batch_id, EvaluationBatch)

    def save_evaluation_batch(self, batch: EvaluationBatch) -> None:
        self._store(
            batch.site_id, ArtifactSlot.EVALUATION, batch.input_extraction_batch_id, batch,
        )

    def get_apply_queue(self, site_id: str, evaluation_batch_id: str) -> ApplyQueue | None:
        return self._load(site_id, ArtifactSlot.APPLY_QUEUE, evaluation_batch_id, ApplyQueue)

    def save_apply_queue(self, queue: ApplyQueue) -> None:
        self._store(queue.site_id, ArtifactSlot.APPLY_QUEUE, queue.input_eval_batch_id, queue)

    def get_seen_index(self, site_id: str) -> SeenIndex | None:
        return self._load(site_id, ArtifactSlot.SEEN_INDEX, CURRENT, SeenIndex)

    def save_seen_index(self, index: SeenIndex) -> None:
        self._store(index.site_id, ArtifactSlot.SEEN_INDEX, CURRENT, index)

    def forget_search_history(self, site_id: str) -> None:
        """Delete the seen index and every funnel artifact for the site."""
        self._remove(site_id, SEARCH_HISTORY)

    # --- Apply flow, keyed by vacancy id ---

    def get_apply_draft(self, site_id: str, vacancy_id: str) -> ApplyDraftSnapshot | None:
        return self._load(site_id, ArtifactSlot.APPLY_DRAFT, vacancy_id, ApplyDraftSnapshot)

    def save_apply_draft(self, draft: ApplyDraftSnapshot) -> None:
        self._store(draft.site_id, ArtifactSlot.APPLY_DRAFT, draft.vacancy_id, draft)

    def get_apply_receipt(self, site_id: str, vacancy_id: str) -> ApplySubmitReceipt | None:
        return self._load(site_id, ArtifactSlot.APPLY_RECEIPT, vacancy_id, ApplySubmitReceipt)

    def save_apply_receipt(self, receipt: ApplySubmitReceipt) -> None:
        self._store(receipt.site_id, ArtifactSlot.APPLY_RECEIPT, receipt.vacancy_id, receipt)

    # --- Session ---

    def get_session_state(self, site_id: str) -> SessionState | None:
        return self._load(site_id, ArtifactSlot.SESSION, CURRENT, SessionState)

    def save_session_state(self, state: SessionState) -> None:
        self._store(state.site_id, ArtifactSlot.SESSION, CURRENT, state)
