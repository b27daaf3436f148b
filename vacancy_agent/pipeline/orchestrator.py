"""Orchestrator: the phase operations that drive one agent session.

Every phase takes the current ``SessionState`` and returns the next one.
Rules shared by all phases:

  - Preconditions are loaded explicitly; a missing one fails the session
    with a named reason (``PreconditionError``).
  - If the phase's output artifact is already stored, it is loaded and the
    phase short-circuits to its "ready" status without touching the
    automation or AI ports.
  - Every transition is persisted first, then rendered (``_commit``).
  - Any port exception escaping a phase fails the session. Filter-step
    execution retries instead, and extraction isolates failures per item.
"""

import asyncio
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from vacancy_agent.browser.actions import random_sleep
from vacancy_agent.core.config import Settings
from vacancy_agent.core.errors import (
    AIResponseError,
    PlanConstructionError,
    PreconditionError,
    TokenBudgetExceededError,
)
from vacancy_agent.core.schemas import (
    AppliedFiltersSnapshot,
    ControlVerificationResult,
    DomDriftEvent,
    ExecutionStatus,
    ProfileSnapshot,
    ReadbackSource,
    SearchDOMSnapshot,
    SearchUISpec,
    TargetingSpec,
    UserConstraints,
    UserSearchPrefs,
    VerificationStatus,
)
from vacancy_agent.core.sites import get_site
from vacancy_agent.core.state import AgentStatus, BudgetStatus, SessionState, compact_logs
from vacancy_agent.core.vacancies import (
    ApplyBlockers,
    ApplyDraftSnapshot,
    ApplyEntrypointProbe,
    ApplyFormFields,
    ApplyFormProbe,
    ApplyQueue,
    ApplyQueueItem,
    ApplySubmitReceipt,
    ApplyUiKind,
    EvaluationBatch,
    ExtractionBatch,
    ExtractionStatus,
    ExtractionSummary,
    QueueItemStatus,
    ScreeningBatch,
    VacancyCard,
    VacancyCardBatch,
    VacancyExtract,
    VacancySections,
    VacancyWorkMode,
)
from vacancy_agent.pipeline import maintenance
from vacancy_agent.pipeline.dedup import dedup_batch, grow_seen_index
from vacancy_agent.pipeline.normalize import (
    card_from_raw,
    normalize_text,
    parse_salary,
    parse_work_mode,
    query_fingerprint,
    sha256_hex,
    structural_hash,
)
from vacancy_agent.pipeline.plan import (
    MAX_STEP_ATTEMPTS,
    build_apply_plan,
    draft_search_prefs,
    failure_count,
    next_pending_step,
    record_attempt,
)
from vacancy_agent.pipeline.prefilter import run_prefilter
from vacancy_agent.pipeline.screening import (
    build_apply_queue,
    build_screening_input,
    keep_known_decisions,
    select_evaluation_candidates,
    select_extraction_targets,
    select_screening_candidates,
    summarize_evaluation,
    summarize_screening,
)
from vacancy_agent.pipeline.verification import (
    build_verification,
    check_field,
    expected_field_values,
)
from vacancy_agent.ports.ai import (
    AIPort,
    EvaluationInput,
    EvaluationOutput,
    ProfileSummary,
    QuestionnaireAnswerSet,
    QuestionnaireInput,
    ScreeningOutput,
    SearchUIAnalysisInput,
)
from vacancy_agent.ports.automation import AutomationPort
from vacancy_agent.ports.presentation import Presenter
from vacancy_agent.ports.storage import ArtifactStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
PhaseFn = Callable[..., Awaitable[SessionState]]

EVALUATION_PROFILE_CHARS = 3000
_TEXT_FIELD_KINDS = ("TEXT", "TEXTAREA")


def phase(name: str) -> Callable[[PhaseFn], PhaseFn]:
    """Turn errors escaping a phase into a FAILED session with a named reason."""

    def decorator(func: PhaseFn) -> PhaseFn:
        @functools.wraps(func)
        async def wrapper(self: "Orchestrator", state: SessionState, *args: Any) -> SessionState:
            self._latest = state
            try:
                return await func(self, state, *args)
            except PreconditionError as e:
                return self.fail_session(self._latest, str(e))
            except PlanConstructionError as e:
                return self.fail_session(self._latest, f"{name}: {e}")
            except TokenBudgetExceededError as e:
                logger.error("Phase '%s' stopped: %s", name, e)
                return self._commit(self._latest.advance(
                    AgentStatus.TOKEN_BUDGET_EXCEEDED, f"ERROR: {e}", failure_reason=str(e),
                ))
            except Exception as e:
                logger.exception("Phase '%s' failed", name)
                return self.fail_session(self._latest, f"{name}: {type(e).__name__}: {e}")

        return wrapper

    return decorator


def _revalidate(model: type[M], artifact: BaseModel, **update: Any) -> M:
    """Re-run validation on an AI-produced artifact before it is trusted."""
    return model.model_validate({**artifact.model_dump(), **update})


class Orchestrator:
    """Composes the automation, AI, storage and presentation ports into the pipeline."""

    def __init__(
        self,
        automation: AutomationPort,
        ai: AIPort,
        store: ArtifactStore,
        presenter: Presenter,
        settings: Settings,
    ) -> None:
        self._automation = automation
        self._ai = ai
        self._store = store
        self._presenter = presenter
        self._settings = settings
        self._site = get_site(settings.site_id)
        self._abort_requested = False
        self._latest: SessionState | None = None

    @property
    def site_id(self) -> str:
        return self._site.id

    @property
    def automation(self) -> AutomationPort:
        return self._automation

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    @property
    def _constraints(self) -> UserConstraints:
        return self._settings.constraints.to_user_constraints()

    def request_abort(self) -> None:
        """Ask the session to stop at the next phase boundary."""
        logger.info("Abort requested")
        self._abort_requested = True

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def new_session(self) -> SessionState:
        return self._commit(SessionState(site_id=self.site_id, logs=("Session created",)))

    def load_session(self) -> SessionState | None:
        return self._store.get_session_state(self.site_id)

    def _commit(self, state: SessionState) -> SessionState:
        state = self._note_soft_limit(state)
        max_items = self._settings.session.max_log_items
        if len(state.logs) > max_items:
            state = state.model_copy(update={"logs": compact_logs(state.logs, max_items)})
        self._store.save_session_state(state)
        try:
            self._presenter.render_state(state)
        except Exception:
            logger.exception("Presenter failed to render %s", state.status.value)
        self._latest = state
        return state

    def _note_soft_limit(self, state: SessionState) -> SessionState:
        """Log once, on the transition whose AI call crosses the soft token limit."""
        soft = self._settings.llm.token_soft_limit
        previous = self._latest
        if soft is None or previous is None or previous.id != state.id:
            return state
        if not previous.token_ledger.total < soft <= state.token_ledger.total:
            return state
        total = state.token_ledger.total
        logger.warning("Token budget near limit: %d tokens used, soft limit %d", total, soft)
        message = f"Token budget warning: {total} tokens used (soft limit {soft})"
        return state.model_copy(update={"logs": (*state.logs, message)})

    def fail_session(self, state: SessionState, reason: str) -> SessionState:
        logger.error("Session failed: %s", reason)
        return self._commit(
            state.advance(AgentStatus.FAILED, f"ERROR: {reason}", failure_reason=reason),
        )

    def abort_session(self, state: SessionState) -> SessionState:
        self._abort_requested = False
        return self._commit(state.advance(AgentStatus.IDLE, "Session stopped by user"))

    def reset_profile(self, state: SessionState) -> SessionState:
        return self._commit(maintenance.reset_profile(self._store, state))

    def forget_search_history(self, state: SessionState) -> SessionState:
        return self._commit(maintenance.forget_search_history(self._store, state))

    # ------------------------------------------------------------------
    # Precondition helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _need(phase_name: str, artifact: str, value: M | None) -> M:
        if value is None:
            raise PreconditionError(phase_name, artifact)
        return value

    def _targeting(self, phase_name: str, state: SessionState) -> TargetingSpec:
        return self._need(
            phase_name,
            "targeting",
            state.artifacts.targeting or self._store.get_targeting_spec(self.site_id),
        )

    def _search_ui(self, phase_name: str, state: SessionState) -> SearchUISpec:
        return self._need(
            phase_name,
            "search_ui",
            state.artifacts.search_ui or self._store.get_search_ui_spec(self.site_id),
        )

    def _profile(self, phase_name: str) -> ProfileSnapshot:
        return self._need(phase_name, "profile", self._store.get_profile(self.site_id))

    async def _ask(self, state: SessionState, call: Callable[[Any], M], payload: BaseModel) -> M:
        llm = self._settings.llm
        ledger = state.token_ledger
        if ledger.budget_status(llm.token_soft_limit, llm.token_hard_limit) == BudgetStatus.OVER_LIMIT:
            raise TokenBudgetExceededError(ledger.total, llm.token_hard_limit or 0)
        return await asyncio.to_thread(call, payload)

    # ------------------------------------------------------------------
    # Login and profile
    # ------------------------------------------------------------------

    @phase("start")
    async def start_login_flow(self, state: SessionState) -> SessionState:
        """Launch the browser, open the site and wait for a manual login."""
        self._store.clear_page_state(self.site_id)
        state = self._commit(state.advance(
            AgentStatus.STARTING,
            f"Starting agent for {self._site.label} ({self._site.id})",
            applied_filters=None,
            verification=None,
        ))
        await self._automation.launch()
        state = self._commit(state.advance(
            AgentStatus.NAVIGATING,
            f"Opening {self._site.base_url}",
            current_url=self._site.base_url,
        ))
        await self._automation.navigate_to(self._site.base_url)
        return self._commit(state.advance(
            AgentStatus.WAITING_FOR_HUMAN,
            "Waiting for the user to log in",
            current_url=await self._automation.get_current_url(),
        ))

    @phase("human gate")
    async def wait_for_human(self, state: SessionState, message: str) -> SessionState:
        """Block on the automation port until the human confirms; state is unchanged."""
        await self._automation.wait_for_human_interaction(message)
        return state

    @phase("login")
    async def confirm_login(self, state: SessionState) -> SessionState:
        return self._commit(state.advance(AgentStatus.LOGGED_IN_CONFIRMED, "Login confirmed"))

    @phase("profile")
    async def check_and_capture_profile(self, state: SessionState) -> SessionState:
        if self._store.get_profile(self.site_id) is not None:
            return self._commit(state.advance(
                AgentStatus.PROFILE_CAPTURED, "Saved profile found, skipping capture",
            ))
        message = "No saved profile. Open your resume page"
        links = await self._automation.find_links_by_text_keywords(
            self._site.profile_link_keywords,
        )
        if links:
            await self._automation.click_link(links[0].href)
            message = f"Opened '{links[0].text.strip()}'. Confirm once your resume page is shown"
        return self._commit(state.advance(
            AgentStatus.WAITING_FOR_PROFILE_PAGE,
            message,
            current_url=await self._automation.get_current_url(),
        ))

    @phase("profile capture")
    async def capture_profile(self, state: SessionState) -> SessionState:
        state = self._commit(state.advance(AgentStatus.EXTRACTING, "Capturing profile page"))
        url = await self._automation.get_current_url()
        text = await self._automation.get_page_text_minimal()
        if not text.strip():
            return self.fail_session(state, "Profile page has no visible text")

        content_hash = sha256_hex(normalize_text(text))
        messages = [f"Profile captured, hash {content_hash[:8]}"]
        previous = self._store.get_profile(self.site_id)
        if previous is not None and previous.content_hash != content_hash:
            logger.info("Profile drift: %s -> %s", previous.content_hash[:8], content_hash[:8])
            messages.insert(0, f"Profile changed since last capture ({previous.content_hash[:8]})")

        self._store.save_profile(ProfileSnapshot(
            site_id=self.site_id,
            source_url=url,
            raw_content=text,
            content_hash=content_hash,
        ))
        return self._commit(state.advance(
            AgentStatus.PROFILE_CAPTURED, *messages, current_url=url,
        ))

    # ------------------------------------------------------------------
    # Targeting
    # ------------------------------------------------------------------

    @phase("targeting")
    async def generate_targeting_spec(self, state: SessionState) -> SessionState:
        cached = self._store.get_targeting_spec(self.site_id)
        if cached is not None:
            message = "Targeting spec loaded from cache"
            if cached.user_constraints != self._constraints:
                cached = cached.model_copy(update={"user_constraints": self._constraints})
                self._store.save_targeting_spec(self.site_id, cached)
                message = "Targeting spec loaded from cache, user constraints refreshed"
            return self._commit(state.advance(
                AgentStatus.TARGETING_READY, message, targeting=cached,
            ))

        profile = self._profile("targeting")
        state = self._commit(state.advance(
            AgentStatus.TARGETING_PENDING, "Deriving search strategy from profile",
        ))
        summary = ProfileSummary(
            site_id=self.site_id,
            profile_hash=profile.content_hash,
            profile_text=profile.raw_content[: self._settings.llm.max_profile_chars],
            user_constraints=self._constraints,
        )
        try:
            raw = await self._ask(state, self._ai.analyze_profile, summary)
            spec = _revalidate(
                TargetingSpec,
                raw,
                profile_hash=profile.content_hash,
                user_constraints=self._constraints.model_dump(),
            )
        except (AIResponseError, ValidationError) as e:
            logger.warning("Targeting spec rejected: %s", e)
            return self._commit(state.advance(
                AgentStatus.TARGETING_ERROR, f"Targeting spec rejected: {e}",
            ))

        self._store.save_targeting_spec(self.site_id, spec)
        titles = ", ".join(spec.target_roles.all_titles()[:3])
        return self._commit(state.advance(
            AgentStatus.TARGETING_READY,
            f"Search strategy ready: {titles}",
            targeting=spec,
            token_ledger=state.token_ledger.add(spec.token_usage),
        ))

    # ------------------------------------------------------------------
    # Search page, UI analysis and preferences
    # ------------------------------------------------------------------

    @phase("search navigation")
    async def navigate_to_search(self, state: SessionState) -> SessionState:
        search_url = self._site.search_url
        state = self._commit(state.advance(
            AgentStatus.NAVIGATING_TO_SEARCH,
            f"Opening search page {search_url}",
            current_url=search_url,
        ))
        await self._automation.navigate_to(search_url)
        await random_sleep(self._settings.pacing.page_delay_min, self._settings.pacing.page_delay_max)
        return self._commit(state.advance(
            AgentStatus.SEARCH_PAGE_READY,
            "Search page open",
            current_url=await self._automation.get_current_url(),
        ))

    @phase("search page scan")
    async def scan_search_page_dom(self, state: SessionState) -> SessionState:
        """Scan the search form, or confirm the cached scan still matches the page.

        The search UI spec is built once from the cached snapshot, so a page
        whose structure no longer matches it stops at ``DOM_DRIFT_DETECTED``.
        """
        targeting = self._targeting("search page scan", state)
        cached = self._store.get_search_dom_snapshot(self.site_id)
        state = self._commit(state.advance(
            AgentStatus.EXTRACTING_SEARCH_UI, "Scanning search form controls",
        ))
        fields = await self._automation.scan_page_interaction_elements()
        url = await self._automation.get_current_url()
        dom_hash = structural_hash(fields)

        if cached is not None:
            if cached.dom_hash == dom_hash:
                return self._commit(state.advance(
                    AgentStatus.SEARCH_DOM_READY,
                    "Search page structure matches the cached scan",
                    targeting=targeting,
                    search_dom=cached,
                ))
            drift = DomDriftEvent(
                site_id=self.site_id,
                page_url=url,
                expected_hash=cached.dom_hash,
                observed_hash=dom_hash,
                previous_version=cached.dom_version,
                observed_fields=tuple(fields),
            )
            logger.warning(
                "Search page drifted: %s -> %s", cached.dom_hash[:12], dom_hash[:12],
            )
            return self._commit(state.advance(
                AgentStatus.DOM_DRIFT_DETECTED,
                f"Search page layout changed ({len(cached.fields)} controls before, "
                f"{len(fields)} now). Human check required",
                targeting=targeting,
                dom_drift=drift,
            ))

        snapshot = SearchDOMSnapshot(
            site_id=self.site_id, page_url=url, dom_hash=dom_hash, fields=tuple(fields),
        )
        self._store.save_search_dom_snapshot(snapshot)
        return self._commit(state.advance(
            AgentStatus.SEARCH_DOM_READY,
            f"Search form scanned: {len(fields)} controls",
            targeting=targeting,
            search_dom=snapshot,
        ))

    @phase("drift resolution")
    async def resolve_dom_drift(self, state: SessionState) -> SessionState:
        """Accept the drifted page as the new search form and map it again.

        Drops the old snapshot and everything built on it, then stores the
        observed scan as the next snapshot version.
        """
        drift = self._need("drift resolution", "dom_drift", state.artifacts.dom_drift)
        self._store.invalidate_search_form(self.site_id)
        snapshot = SearchDOMSnapshot(
            site_id=self.site_id,
            page_url=drift.page_url,
            dom_hash=drift.observed_hash,
            fields=drift.observed_fields,
            dom_version=drift.previous_version + 1,
        )
        self._store.save_search_dom_snapshot(snapshot)
        return self._commit(state.advance(
            AgentStatus.SEARCH_DOM_READY,
            f"Search form re-scanned (version {snapshot.dom_version}), filters will be mapped again",
            search_dom=snapshot,
            dom_drift=None,
            search_ui=None,
            prefs=None,
            plan=None,
            applied_filters=None,
            verification=None,
        ))

    @phase("search UI analysis")
    async def analyze_search_ui(self, state: SessionState) -> SessionState:
        targeting = self._targeting("search UI analysis", state)
        cached = self._store.get_search_ui_spec(self.site_id)
        if cached is not None:
            prefs = self._store.get_user_search_prefs(self.site_id) or draft_search_prefs(
                self.site_id, cached, targeting, self._constraints,
            )
            return self._commit(state.advance(
                AgentStatus.WAITING_FOR_SEARCH_PREFS,
                "Search UI spec loaded from cache",
                search_ui=cached,
                prefs=prefs,
            ))

        dom = self._need(
            "search UI analysis",
            "search_dom",
            state.artifacts.search_dom or self._store.get_search_dom_snapshot(self.site_id),
        )
        state = self._commit(state.advance(
            AgentStatus.ANALYZING_SEARCH_UI, "Mapping search controls to filters",
        ))
        analysis = SearchUIAnalysisInput(
            site_id=self.site_id,
            page_url=dom.page_url,
            fields=dom.fields,
            target_roles=targeting.target_roles.all_titles(),
            work_mode_rules=targeting.work_mode_rules,
            min_threshold_strategy=targeting.salary_rules.min_threshold_strategy,
        )
        try:
            raw = await self._ask(state, self._ai.analyze_search_dom, analysis)
            ui_spec = _revalidate(SearchUISpec, raw, site_id=self.site_id)
        except (AIResponseError, ValidationError) as e:
            logger.warning("Search UI spec rejected: %s", e)
            return self._commit(state.advance(
                AgentStatus.SEARCH_UI_ERROR, f"Search UI spec rejected: {e}",
            ))

        self._store.save_search_ui_spec(ui_spec)
        prefs = draft_search_prefs(self.site_id, ui_spec, targeting, self._constraints)
        return self._commit(state.advance(
            AgentStatus.WAITING_FOR_SEARCH_PREFS,
            f"Search UI mapped: {len(ui_spec.fields)} fields. Waiting for filter confirmation",
            search_ui=ui_spec,
            prefs=prefs,
            token_ledger=state.token_ledger.add(ui_spec.token_usage),
        ))

    @phase("search preferences")
    async def submit_search_prefs(
        self, state: SessionState, prefs: UserSearchPrefs,
    ) -> SessionState:
        search_ui = self._search_ui("search preferences", state)
        stored = self._store.get_user_search_prefs(self.site_id)
        messages = ["Search preferences saved"]
        dropped: dict[str, Any] = {}
        if stored is not None and stored.filters != prefs.filters:
            self._store.invalidate_search_plan(self.site_id)
            dropped = {"plan": None, "applied_filters": None, "verification": None}
            messages.append("Preferences changed, previous search plan discarded")
        self._store.save_user_search_prefs(prefs)
        return self._commit(state.advance(
            AgentStatus.SEARCH_PREFS_SAVED,
            *messages,
            search_ui=search_ui,
            prefs=prefs,
            **dropped,
        ))

    @phase("search plan")
    async def build_search_plan(self, state: SessionState) -> SessionState:
        search_ui = self._search_ui("search plan", state)
        prefs = self._need(
            "search plan",
            "prefs",
            state.artifacts.prefs or self._store.get_user_search_prefs(self.site_id),
        )
        plan = self._store.get_search_apply_plan(self.site_id)
        message = "Search plan loaded from cache"
        if plan is None:
            plan = build_apply_plan(search_ui, prefs)
            self._store.save_search_apply_plan(plan)
            message = f"Search plan built: {len(plan.steps)} steps"
        return self._commit(state.advance(
            AgentStatus.APPLY_PLAN_READY, message, search_ui=search_ui, prefs=prefs, plan=plan,
        ))

    # ------------------------------------------------------------------
    # Filter plan execution
    # ------------------------------------------------------------------

    @phase("filter step")
    async def execute_plan_step(self, state: SessionState) -> SessionState:
        """Run one attempt of the first step that has not succeeded yet."""
        plan = self._need(
            "filter step",
            "plan",
            state.artifacts.plan or self._store.get_search_apply_plan(self.site_id),
        )
        search_ui = self._search_ui("filter step", state)
        snapshot = (
            state.artifacts.applied_filters
            or self._store.get_applied_filters_snapshot(self.site_id)
            or AppliedFiltersSnapshot(site_id=self.site_id)
        )
        context: dict[str, Any] = {"search_ui": search_ui, "plan": plan}
        if state.artifacts.prefs is None:
            context["prefs"] = self._need(
                "filter step", "prefs", self._store.get_user_search_prefs(self.site_id),
            )

        step = next_pending_step(plan, snapshot)
        if snapshot.overall_status == ExecutionStatus.COMPLETED or step is None:
            snapshot = snapshot.model_copy(update={"overall_status": ExecutionStatus.COMPLETED})
            return self._commit(state.advance(
                AgentStatus.SEARCH_READY,
                "All search filters applied",
                applied_filters=snapshot,
                **context,
            ))

        field = search_ui.field(step.field_key)
        if field is None:
            msg = f"Plan step {step.step_id} targets unknown field '{step.field_key}'"
            raise PlanConstructionError(msg)

        attempt = failure_count(snapshot, step.step_id) + 1
        state = self._commit(state.advance(
            AgentStatus.APPLYING_FILTERS,
            f"Applying {step.step_id} ({field.label}), attempt {attempt}/{MAX_STEP_ATTEMPTS}",
            applied_filters=snapshot,
            **context,
        ))
        try:
            result = await self._automation.apply_control_action(
                field, step.action_type, step.value,
            )
            success, observed, error = result.success, result.observed_value, result.error
        except Exception as e:
            logger.warning("Step %s raised: %s", step.step_id, e)
            success, observed, error = False, None, f"{type(e).__name__}: {e}"

        snapshot = record_attempt(
            plan, snapshot, step, success=success, observed_value=observed, error=error,
        )
        self._store.save_applied_filters_snapshot(snapshot)

        if snapshot.overall_status == ExecutionStatus.FAILED:
            state = self._commit(state.advance(
                AgentStatus.APPLY_STEP_FAILED,
                f"Step {step.step_id} failed: {error}",
                applied_filters=snapshot,
            ))
            return self.fail_session(
                state,
                f"Search plan failed: step {step.step_id} ({field.label}) "
                f"failed {MAX_STEP_ATTEMPTS} times",
            )
        if snapshot.overall_status == ExecutionStatus.COMPLETED:
            return self._commit(state.advance(
                AgentStatus.SEARCH_READY,
                f"Step {step.step_id}: OK. All search filters applied",
                applied_filters=snapshot,
            ))
        if success:
            return self._commit(state.advance(
                AgentStatus.APPLY_STEP_DONE, f"Step {step.step_id}: OK", applied_filters=snapshot,
            ))
        return self._commit(state.advance(
            AgentStatus.APPLY_STEP_FAILED,
            f"Step {step.step_id} failed (attempt {attempt}/{MAX_STEP_ATTEMPTS}): {error}",
            applied_filters=snapshot,
        ))

    async def execute_apply_plan_cycle(self, state: SessionState) -> SessionState:
        """Run filter steps until the search is ready, the plan fails, or an abort."""
        pacing = self._settings.pacing
        while True:
            if self._abort_requested:
                return self.abort_session(state)
            state = await self.execute_plan_step(state)
            if state.status == AgentStatus.APPLY_STEP_DONE:
                await random_sleep(pacing.step_delay_min, pacing.step_delay_max)
            elif state.status == AgentStatus.APPLY_STEP_FAILED:
                await random_sleep(pacing.retry_backoff_min, pacing.retry_backoff_max)
            else:
                return state

    @phase("filter verification")
    async def verify_applied_filters(self, state: SessionState) -> SessionState:
        targeting = self._targeting("filter verification", state)
        cached = self._store.get_filters_verification(self.site_id)
        if cached is not None:
            return self._commit(state.advance(
                AgentStatus.FILTERS_VERIFIED,
                "Filter verification loaded from cache",
                targeting=targeting,
                verification=cached,
            ))

        search_ui = self._search_ui("filter verification", state)
        snapshot = self._need(
            "filter verification",
            "applied_filters",
            state.artifacts.applied_filters or self._store.get_applied_filters_snapshot(self.site_id),
        )
        checks: list[ControlVerificationResult] = []
        for field_key, expected in expected_field_values(snapshot).items():
            field = search_ui.field(field_key)
            if field is None:
                continue
            try:
                readback = await self._automation.read_control_value(field)
                checks.append(check_field(field_key, expected, readback.value, readback.source))
            except Exception as e:
                logger.warning("Could not read back '%s': %s", field_key, e)
                checks.append(ControlVerificationResult(
                    field_key=field_key,
                    expected_value=expected,
                    source=ReadbackSource.UNKNOWN,
                    status=VerificationStatus.UNKNOWN,
                ))

        verification = build_verification(self.site_id, checks)
        self._store.save_filters_verification(verification)
        if verification.verified:
            message = f"Filters verified: {len(checks)} fields checked"
        else:
            keys = ", ".join(m.field_key for m in verification.mismatches)
            message = f"WARNING: {len(verification.mismatches)} filters differ from plan ({keys})"
            logger.warning("Filter mismatches: %s", keys)
        return self._commit(state.advance(
            AgentStatus.FILTERS_VERIFIED, message, targeting=targeting, verification=verification,
        ))

    # ------------------------------------------------------------------
    # Vacancy funnel
    # ------------------------------------------------------------------

    @phase("collection")
    async def collect_vacancy_cards(self, state: SessionState) -> SessionState:
        targeting = self._targeting("collection", state)
        if state.artifacts.vacancy_batch is not None:
            return self._commit(state.advance(
                AgentStatus.VACANCIES_CAPTURED,
                "Vacancy batch already collected for this session",
                targeting=targeting,
            ))

        scan = await self._automation.scan_vacancy_cards(self._settings.collection.cards_per_batch)
        prefs = state.artifacts.prefs or self._store.get_user_search_prefs(self.site_id)
        batch = VacancyCardBatch(
            batch_id=uuid.uuid4().hex,
            site_id=self.site_id,
            query_fingerprint=query_fingerprint(self.site_id, prefs.filters if prefs else {}),
            cards=tuple(card_from_raw(raw, self.site_id) for raw in scan.cards),
            page_cursor=scan.next_page_cursor,
        )
        self._store.save_vacancy_batch(batch)
        return self._commit(state.advance(
            AgentStatus.VACANCIES_CAPTURED,
            f"Collected {len(batch.cards)} vacancies",
            targeting=targeting,
            vacancy_batch=batch,
        ))

    def _vacancy_batch(self, phase_name: str, state: SessionState) -> VacancyCardBatch:
        return self._need(phase_name, "vacancy_batch", state.artifacts.vacancy_batch)

    @phase("dedup")
    async def dedup_vacancies(self, state: SessionState) -> SessionState:
        targeting = self._targeting("dedup", state)
        batch = self._vacancy_batch("dedup", state)
        deduped = self._store.get_deduped_batch(self.site_id, batch.batch_id)
        seen = self._store.get_seen_index(self.site_id)
        if deduped is None:
            deduped = dedup_batch(batch, seen, self._constraints.city)
            self._store.save_deduped_batch(deduped)
        # Idempotent; completes a seen-index write lost after the batch was saved.
        grown = grow_seen_index(deduped, seen)
        if grown is not None:
            self._store.save_seen_index(grown)
        summary = deduped.summary
        return self._commit(state.advance(
            AgentStatus.VACANCIES_DEDUPED,
            f"Dedup: {summary.selected} new, {summary.duplicates} duplicates, "
            f"{summary.seen} already seen",
            targeting=targeting,
            deduped=deduped,
        ))

    @phase("prefilter")
    async def run_prefilter(self, state: SessionState) -> SessionState:
        targeting = self._targeting("prefilter", state)
        batch = self._vacancy_batch("prefilter", state)
        deduped = self._need("prefilter", "deduped", state.artifacts.deduped)
        result = self._store.get_prefilter_batch(self.site_id, deduped.id)
        if result is None:
            result = run_prefilter(batch, deduped, targeting)
            self._store.save_prefilter_batch(result)
        summary = result.summary
        return self._commit(state.advance(
            AgentStatus.PREFILTER_DONE,
            f"Prefilter: {summary.read} to read, {summary.defer} deferred, "
            f"{summary.reject} rejected",
            targeting=targeting,
            prefilter=result,
        ))

    @phase("screening")
    async def run_llm_screening(self, state: SessionState) -> SessionState:
        targeting = self._targeting("screening", state)
        batch = self._vacancy_batch("screening", state)
        prefilter = self._need("screening", "prefilter", state.artifacts.prefilter)
        cached = self._store.get_screening_batch(self.site_id, prefilter.id)
        if cached is not None:
            return self._screening_done(state, targeting, cached, "Screening loaded from cache")

        candidates = select_screening_candidates(prefilter)
        if not candidates:
            empty = ScreeningBatch(
                id=uuid.uuid4().hex,
                site_id=self.site_id,
                input_prefilter_batch_id=prefilter.id,
                model_id="none",
            )
            self._store.save_screening_batch(empty)
            return self._screening_done(state, targeting, empty, "No candidates to screen")

        screening_input = build_screening_input(self.site_id, candidates, batch, targeting)
        try:
            output = await self._ask(state, self._ai.screen_vacancy_cards_batch, screening_input)
            output = _revalidate(ScreeningOutput, output)
        except (AIResponseError, ValidationError) as e:
            logger.warning("Screening output rejected: %s", e)
            return self._commit(state.advance(
                AgentStatus.SCREENING_ERROR, f"Screening output rejected: {e}",
            ))

        decisions = keep_known_decisions(output.results, {c.id for c in screening_input.cards})
        screening = ScreeningBatch(
            id=uuid.uuid4().hex,
            site_id=self.site_id,
            input_prefilter_batch_id=prefilter.id,
            model_id=output.model_id,
            decisions=decisions,
            summary=summarize_screening(decisions),
            token_usage=output.token_usage,
        )
        self._store.save_screening_batch(screening)
        state = state.advance(
            state.status, token_ledger=state.token_ledger.add(output.token_usage),
        )
        return self._screening_done(
            state, targeting, screening, f"Screened {len(screening_input.cards)} vacancies",
        )

    def _screening_done(
        self,
        state: SessionState,
        targeting: TargetingSpec,
        screening: ScreeningBatch,
        message: str,
    ) -> SessionState:
        summary = screening.summary
        return self._commit(state.advance(
            AgentStatus.LLM_SCREENING_DONE,
            f"{message}: {summary.read} to read, {summary.defer} deferred, "
            f"{summary.ignore} ignored",
            targeting=targeting,
            screening=screening,
        ))

    @phase("extraction")
    async def extract_vacancies(self, state: SessionState) -> SessionState:
        targeting = self._targeting("extraction", state)
        batch = self._vacancy_batch("extraction", state)
        screening = self._need("extraction", "screening", state.artifacts.screening)
        extraction = self._store.get_extraction_batch(self.site_id, screening.id)
        if extraction is not None:
            return self._extraction_done(state, targeting, extraction)

        targets = select_extraction_targets(screening, batch)
        state = self._commit(state.advance(
            AgentStatus.EXTRACTING_VACANCIES,
            f"Reading {len(targets)} vacancy pages",
            targeting=targeting,
        ))
        pacing = self._settings.pacing
        results: list[VacancyExtract] = []
        for idx, card in enumerate(targets):
            if idx:
                await random_sleep(pacing.page_delay_min, pacing.page_delay_max)
            state = self._commit(state.advance(
                AgentStatus.EXTRACTING_VACANCIES, current_url=card.url,
            ))
            results.append(await self._extract_one(card))

        failed = sum(1 for r in results if r.extraction_status == ExtractionStatus.FAILED)
        extraction = ExtractionBatch(
            id=uuid.uuid4().hex,
            site_id=self.site_id,
            input_screening_batch_id=screening.id,
            results=tuple(results),
            summary=ExtractionSummary(
                total=len(results), success=len(results) - failed, failed=failed,
            ),
        )
        self._store.save_extraction_batch(extraction)
        return self._extraction_done(state, targeting, extraction)

    async def _extract_one(self, card: VacancyCard) -> VacancyExtract:
        try:
            await self._automation.navigate_to(card.url)
            page = await self._automation.extract_vacancy_page()
        except Exception as e:
            logger.warning("Extraction failed for %s: %s", card.url, e)
            return VacancyExtract(
                vacancy_id=card.id,
                site_id=card.site_id,
                url=card.url,
                title=card.title,
                extraction_status=ExtractionStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
            )

        work_mode = parse_work_mode(page.work_mode_text)
        if work_mode == VacancyWorkMode.UNKNOWN:
            work_mode = card.work_mode
        sections = VacancySections(
            requirements=page.requirements,
            responsibilities=page.responsibilities,
            conditions=page.conditions,
            salary=parse_salary(page.salary_text) or card.salary,
            work_mode=None if work_mode == VacancyWorkMode.UNKNOWN else work_mode,
        )
        complete = bool(sections.requirements or sections.responsibilities or sections.conditions)
        return VacancyExtract(
            vacancy_id=card.id,
            site_id=card.site_id,
            url=card.url,
            title=card.title,
            extraction_status=ExtractionStatus.COMPLETE if complete else ExtractionStatus.PARTIAL,
            sections=sections,
        )

    def _extraction_done(
        self, state: SessionState, targeting: TargetingSpec, extraction: ExtractionBatch,
    ) -> SessionState:
        summary = extraction.summary
        return self._commit(state.advance(
            AgentStatus.VACANCIES_EXTRACTED,
            f"Extracted {summary.success} of {summary.total} vacancies ({summary.failed} failed)",
            targeting=targeting,
            extraction=extraction,
        ))

    @phase("evaluation")
    async def evaluate_vacancies(self, state: SessionState) -> SessionState:
        targeting = self._targeting("evaluation", state)
        extraction = self._need("evaluation", "extraction", state.artifacts.extraction)
        self._vacancy_batch("evaluation", state)
        cached = self._store.get_evaluation_batch(self.site_id, extraction.id)
        if cached is not None:
            return self._evaluation_done(state, targeting, cached, "Evaluation loaded from cache")

        profile = self._profile("evaluation")
        candidates = select_evaluation_candidates(extraction)
        if not candidates:
            empty = EvaluationBatch(
                id=uuid.uuid4().hex,
                site_id=self.site_id,
                input_extraction_batch_id=extraction.id,
                model_id="none",
            )
            self._store.save_evaluation_batch(empty)
            return self._evaluation_done(state, targeting, empty, "Nothing to evaluate")

        evaluation_input = EvaluationInput(
            profile_summary=profile.raw_content[:EVALUATION_PROFILE_CHARS],
            target_roles=targeting.target_roles.all_titles(),
            work_mode_rules=targeting.work_mode_rules,
            min_salary=targeting.user_constraints.min_salary,
            candidates=candidates,
        )
        try:
            output = await self._ask(state, self._ai.evaluate_vacancy_extracts_batch, evaluation_input)
            output = _revalidate(EvaluationOutput, output)
        except (AIResponseError, ValidationError) as e:
            logger.warning("Evaluation output rejected: %s", e)
            return self._commit(state.advance(
                AgentStatus.EVALUATION_ERROR, f"Evaluation output rejected: {e}",
            ))

        sent = {c.id for c in candidates}
        results = tuple(r for r in output.results if r.vacancy_id in sent)
        evaluation = EvaluationBatch(
            id=uuid.uuid4().hex,
            site_id=self.site_id,
            input_extraction_batch_id=extraction.id,
            model_id=output.model_id,
            results=results,
            summary=summarize_evaluation(results),
            token_usage=output.token_usage,
        )
        self._store.save_evaluation_batch(evaluation)
        state = state.advance(
            state.status, token_ledger=state.token_ledger.add(output.token_usage),
        )
        return self._evaluation_done(
            state, targeting, evaluation, f"Evaluated {len(candidates)} vacancies",
        )

    def _evaluation_done(
        self,
        state: SessionState,
        targeting: TargetingSpec,
        evaluation: EvaluationBatch,
        message: str,
    ) -> SessionState:
        summary = evaluation.summary
        return self._commit(state.advance(
            AgentStatus.EVALUATION_DONE,
            f"{message}: {summary.apply} apply, {summary.skip} skip, "
            f"{summary.needs_human} need a human",
            targeting=targeting,
            evaluation=evaluation,
        ))

    @phase("apply queue")
    async def build_apply_queue(self, state: SessionState) -> SessionState:
        evaluation = self._need("apply queue", "evaluation", state.artifacts.evaluation)
        extraction = self._need("apply queue", "extraction", state.artifacts.extraction)
        queue = self._store.get_apply_queue(self.site_id, evaluation.id)
        message = "Apply queue loaded from cache"
        if queue is None:
            queue = build_apply_queue(evaluation, extraction)
            self._store.save_apply_queue(queue)
            message = f"Apply queue built: {len(queue.items)} vacancies"
        return self._commit(state.advance(
            AgentStatus.APPLY_QUEUE_READY, message, apply_queue=queue,
        ))

    # ------------------------------------------------------------------
    # Apply flow
    # ------------------------------------------------------------------

    def _requires_login(self, url: str) -> bool:
        lowered = url.lower()
        return any(hint in lowered for hint in self._site.login_url_hints)

    def _settle_item(
        self,
        state: SessionState,
        queue: ApplyQueue,
        item: ApplyQueueItem,
        status: AgentStatus,
        item_status: QueueItemStatus,
        note: str | None,
        **artifacts: Any,
    ) -> SessionState:
        """Persist the queue with one item's new status and commit ``status``."""
        queue = queue.with_item_status(item.vacancy_id, item_status, note)
        self._store.save_apply_queue(queue)
        suffix = f" ({note})" if note else ""
        return self._commit(state.advance(
            status,
            f"Vacancy {item.vacancy_id}: {item_status.value.lower()}{suffix}",
            apply_queue=queue,
            **artifacts,
        ))

    @phase("apply probe")
    async def probe_next_apply_entrypoint(self, state: SessionState) -> SessionState:
        queue = self._need("apply probe", "apply_queue", state.artifacts.apply_queue)
        item = queue.next_open()
        if item is None:
            counts = queue.summary()
            return self._commit(state.advance(
                AgentStatus.COMPLETED,
                f"All applications processed: {counts['applied']} applied, "
                f"{counts['failed']} failed, {counts['skipped']} skipped",
                apply_probe=None,
                apply_form=None,
                apply_draft=None,
            ))

        await self._automation.navigate_to(item.url)
        url = await self._automation.get_current_url()
        controls = await self._automation.scan_apply_entrypoints()
        probe = ApplyEntrypointProbe(
            task_id=uuid.uuid4().hex,
            vacancy_id=item.vacancy_id,
            vacancy_url=item.url,
            found_controls=tuple(controls),
            blockers=ApplyBlockers(
                requires_login=self._requires_login(url),
                apply_not_available=not controls,
            ),
        )
        if probe.blockers.blocked:
            reason = "login required" if probe.blockers.requires_login else "no apply control"
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_ITEM_SKIPPED, QueueItemStatus.SKIPPED,
                reason, apply_probe=probe, apply_form=None, apply_draft=None,
            )
        if not self._settings.apply.enabled:
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_ITEM_SKIPPED, QueueItemStatus.SKIPPED,
                "applying disabled", apply_probe=probe, apply_form=None, apply_draft=None,
            )
        return self._commit(state.advance(
            AgentStatus.APPLY_BUTTON_FOUND,
            f"Vacancy {item.vacancy_id}: {len(controls)} apply controls found",
            current_url=url,
            apply_probe=probe,
        ))

    @phase("apply form")
    async def open_apply_form(self, state: SessionState) -> SessionState:
        queue = self._need("apply form", "apply_queue", state.artifacts.apply_queue)
        probe = self._need("apply form", "apply_probe", state.artifacts.apply_probe)
        item = self._need("apply form", "apply_queue item", queue.item(probe.vacancy_id))
        control = probe.found_controls[0]

        if not await self._automation.click_element(control.selector):
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_SUBMIT_FAILED, QueueItemStatus.FAILED,
                "apply control could not be clicked", apply_probe=None,
            )
        await random_sleep(self._settings.pacing.page_delay_min, self._settings.pacing.page_delay_max)
        scan = await self._automation.scan_apply_form()
        url = await self._automation.get_current_url()
        blockers = ApplyBlockers(
            requires_login=self._requires_login(url),
            apply_not_available=not scan.has_submit,
        )
        form = ApplyFormProbe(
            task_id=probe.task_id,
            vacancy_id=item.vacancy_id,
            entrypoint_used=control.selector,
            ui_kind=ApplyUiKind.MODAL if scan.is_modal else ApplyUiKind.PAGE,
            detected_fields=ApplyFormFields(
                cover_letter=scan.has_cover_letter,
                resume_selector=scan.has_resume_select,
                submit_button=scan.has_submit,
                questionnaire=bool(scan.questionnaire_fields),
            ),
            cover_letter_selector=scan.cover_letter_selector,
            submit_selector=scan.submit_selector,
            questionnaire_fields=tuple(scan.questionnaire_fields),
            success_text_hints=list(self._settings.apply.success_text_hints),
            blockers=blockers,
        )
        if blockers.blocked:
            reason = "login required" if blockers.requires_login else "no submit button"
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_ITEM_SKIPPED, QueueItemStatus.SKIPPED,
                reason, apply_probe=None,
            )

        queue = queue.with_item_status(item.vacancy_id, QueueItemStatus.APPLYING)
        self._store.save_apply_queue(queue)
        return self._commit(state.advance(
            AgentStatus.APPLY_FORM_OPENED,
            f"Apply form opened ({form.ui_kind.value.lower()})",
            current_url=url,
            apply_queue=queue,
            apply_form=form,
        ))

    @phase("apply draft")
    async def fill_apply_draft(self, state: SessionState) -> SessionState:
        queue = self._need("apply draft", "apply_queue", state.artifacts.apply_queue)
        form = self._need("apply draft", "apply_form", state.artifacts.apply_form)
        item = self._need("apply draft", "apply_queue item", queue.item(form.vacancy_id))

        letter_filled = False
        readback_hash: str | None = None
        if form.detected_fields.cover_letter and form.cover_letter_selector:
            letter = self._settings.apply.cover_letter_template.replace("{title}", item.title)
            typed = await self._automation.input_text(form.cover_letter_selector, letter)
            readback = await self._automation.read_input_value(form.cover_letter_selector)
            if readback is not None:
                readback_hash = sha256_hex(normalize_text(readback))
            letter_filled = typed and readback_hash == sha256_hex(normalize_text(letter))

        answers: QuestionnaireAnswerSet | None = None
        questionnaire_filled = False
        blocked_reason: str | None = None
        ledger = state.token_ledger
        if form.questionnaire_fields:
            profile = self._profile("apply draft")
            answers = await self._ask(
                state,
                self._ai.generate_questionnaire_answers,
                QuestionnaireInput(
                    vacancy_id=item.vacancy_id,
                    vacancy_title=item.title,
                    profile_summary=profile.raw_content[:EVALUATION_PROFILE_CHARS],
                    fields=list(form.questionnaire_fields),
                ),
            )
            ledger = ledger.add(answers.token_usage)
            questionnaire_filled, blocked_reason = await self._fill_questionnaire(form, answers)

        if form.detected_fields.cover_letter and not letter_filled and blocked_reason is None:
            blocked_reason = "cover letter did not read back"

        draft = ApplyDraftSnapshot(
            vacancy_id=item.vacancy_id,
            site_id=self.site_id,
            cover_letter_field_found=form.detected_fields.cover_letter,
            cover_letter_filled=letter_filled,
            cover_letter_readback_hash=readback_hash,
            questionnaire_found=bool(form.questionnaire_fields),
            questionnaire_filled=questionnaire_filled,
            questionnaire_answers=tuple(answers.answers) if answers else (),
            blocked_reason=blocked_reason,
        )
        self._store.save_apply_draft(draft)
        message = "Apply draft filled"
        if blocked_reason:
            message = f"Apply draft incomplete: {blocked_reason}"
        return self._commit(state.advance(
            AgentStatus.APPLY_DRAFT_FILLED, message, apply_draft=draft, token_ledger=ledger,
        ))

    async def _fill_questionnaire(
        self, form: ApplyFormProbe, answers: QuestionnaireAnswerSet,
    ) -> tuple[bool, str | None]:
        by_field = {a.field_id: a for a in answers.answers}
        all_filled = True
        for field in form.questionnaire_fields:
            answer = by_field.get(field.id)
            if answer is None or answer.value in (None, ""):
                if field.required:
                    return False, f"no answer for required question '{field.label}'"
                all_filled = False
                continue
            if field.kind.upper() in _TEXT_FIELD_KINDS:
                ok = await self._automation.input_text(field.selector, str(answer.value))
            elif answer.value is True or str(answer.value).lower() == "true":
                ok = await self._automation.click_element(field.selector)
            else:
                continue
            all_filled = all_filled and ok
        return all_filled, None

    @phase("apply submit")
    async def submit_application(self, state: SessionState) -> SessionState:
        queue = self._need("apply submit", "apply_queue", state.artifacts.apply_queue)
        form = self._need("apply submit", "apply_form", state.artifacts.apply_form)
        draft = self._need("apply submit", "apply_draft", state.artifacts.apply_draft)
        item = self._need("apply submit", "apply_queue item", queue.item(form.vacancy_id))
        cleared = {"apply_probe": None, "apply_form": None, "apply_draft": None}

        if draft.blocked_reason:
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_ITEM_SKIPPED, QueueItemStatus.SKIPPED,
                draft.blocked_reason, **cleared,
            )
        if not form.submit_selector:
            return self._settle_item(
                state, queue, item, AgentStatus.APPLY_SUBMIT_FAILED, QueueItemStatus.FAILED,
                "submit button has no selector", **cleared,
            )

        clicked = await self._automation.click_element(form.submit_selector)
        await random_sleep(self._settings.pacing.page_delay_min, self._settings.pacing.page_delay_max)
        page_text = (await self._automation.get_page_text_minimal()).lower()
        evidence = next((h for h in form.success_text_hints if h.lower() in page_text), None)
        success = clicked and evidence is not None

        final_status = QueueItemStatus.APPLIED if success else QueueItemStatus.FAILED
        self._store.save_apply_receipt(ApplySubmitReceipt(
            receipt_id=uuid.uuid4().hex,
            vacancy_id=item.vacancy_id,
            site_id=self.site_id,
            success_confirmed=success,
            final_status=final_status,
            confirmation_evidence=evidence,
        ))
        note = None if success else "no confirmation after submit"
        return self._settle_item(
            state,
            queue,
            item,
            AgentStatus.APPLY_SUBMIT_SUCCESS if success else AgentStatus.APPLY_SUBMIT_FAILED,
            final_status,
            note,
            **cleared,
        )
