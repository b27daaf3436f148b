"""Runner: drives an orchestrator session from launch to a terminal status.

Each non-terminal status maps to exactly one handler. The human
gates wait through ``Orchestrator.wait_for_human`` and then call the phase
that consumes the human's input. A browser or console failure while
waiting fails the session like any other phase.
"""

import json
import logging
from collections.abc import Awaitable, Callable

from vacancy_agent.core.config import Settings
from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.pipeline.orchestrator import Orchestrator
from vacancy_agent.pipeline.plan import apply_overrides
from vacancy_agent.ports.automation import AutomationPort

logger = logging.getLogger(__name__)

Handler = Callable[[SessionState], Awaitable[SessionState]]


class AgentRunner:
    """Loops the orchestrator until the session reaches a terminal status."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        automation: AutomationPort,
        settings: Settings,
    ) -> None:
        self._orchestrator = orchestrator
        self._automation = automation
        self._settings = settings
        o = orchestrator
        self._handlers: dict[AgentStatus, Handler] = {
            AgentStatus.WAITING_FOR_HUMAN: self._login_gate,
            AgentStatus.LOGGED_IN_CONFIRMED: o.check_and_capture_profile,
            AgentStatus.WAITING_FOR_PROFILE_PAGE: self._profile_gate,
            AgentStatus.PROFILE_CAPTURED: o.generate_targeting_spec,
            AgentStatus.TARGETING_READY: o.navigate_to_search,
            AgentStatus.SEARCH_PAGE_READY: o.scan_search_page_dom,
            AgentStatus.SEARCH_DOM_READY: o.analyze_search_ui,
            AgentStatus.DOM_DRIFT_DETECTED: self._drift_gate,
            AgentStatus.WAITING_FOR_SEARCH_PREFS: self._prefs_gate,
            AgentStatus.SEARCH_PREFS_SAVED: o.build_search_plan,
            AgentStatus.APPLY_PLAN_READY: o.execute_apply_plan_cycle,
            AgentStatus.SEARCH_READY: o.verify_applied_filters,
            AgentStatus.FILTERS_VERIFIED: o.collect_vacancy_cards,
            AgentStatus.VACANCIES_CAPTURED: o.dedup_vacancies,
            AgentStatus.VACANCIES_DEDUPED: o.run_prefilter,
            AgentStatus.PREFILTER_DONE: o.run_llm_screening,
            AgentStatus.LLM_SCREENING_DONE: o.extract_vacancies,
            AgentStatus.VACANCIES_EXTRACTED: o.evaluate_vacancies,
            AgentStatus.EVALUATION_DONE: o.build_apply_queue,
            AgentStatus.APPLY_QUEUE_READY: o.probe_next_apply_entrypoint,
            AgentStatus.APPLY_ITEM_SKIPPED: o.probe_next_apply_entrypoint,
            AgentStatus.APPLY_SUBMIT_SUCCESS: o.probe_next_apply_entrypoint,
            AgentStatus.APPLY_SUBMIT_FAILED: o.probe_next_apply_entrypoint,
            AgentStatus.APPLY_BUTTON_FOUND: o.open_apply_form,
            AgentStatus.APPLY_FORM_OPENED: o.fill_apply_draft,
            AgentStatus.APPLY_DRAFT_FILLED: o.submit_application,
        }

    def _initial_state(self, resume: bool) -> SessionState:
        if resume:
            stored = self._orchestrator.load_session()
            if stored is not None and stored.status != AgentStatus.COMPLETED:
                logger.info("Resuming session %s from %s", stored.id, stored.status.value)
                return stored
            logger.info("No resumable session found, starting a new one")
        return self._orchestrator.new_session()

    async def run(self, resume: bool = False) -> SessionState:
        """Run one session. Returns the final state."""
        o = self._orchestrator
        state = self._initial_state(resume)
        try:
            # A fresh browser always needs a login; cached artifacts let
            # every later phase short-circuit back to where the session was.
            state = await o.start_login_flow(state)
            transitions = 0
            while not state.is_terminal:
                if o.abort_requested:
                    return o.abort_session(state)
                transitions += 1
                if transitions > self._settings.session.max_transitions:
                    return o.fail_session(
                        state,
                        f"Transition limit reached ({self._settings.session.max_transitions})",
                    )
                handler = self._handlers.get(state.status)
                if handler is None:
                    return o.fail_session(state, f"No handler for status {state.status.value}")
                logger.debug("Dispatching %s", state.status.value)
                state = await handler(state)
            return state
        finally:
            await self._automation.close()

    # ------------------------------------------------------------------
    # Human gates
    # ------------------------------------------------------------------

    async def _login_gate(self, state: SessionState) -> SessionState:
        o = self._orchestrator
        state = await o.wait_for_human(
            state, "Log in to the site in the browser window, then press Enter",
        )
        return state if state.is_terminal else await o.confirm_login(state)

    async def _profile_gate(self, state: SessionState) -> SessionState:
        o = self._orchestrator
        state = await o.wait_for_human(
            state, "Open the resume you want to apply with, then press Enter",
        )
        return state if state.is_terminal else await o.capture_profile(state)

    async def _drift_gate(self, state: SessionState) -> SessionState:
        o = self._orchestrator
        state = await o.wait_for_human(
            state,
            "The search page layout changed since its filters were mapped. "
            "Check the page, then press Enter to map the filters again",
        )
        return state if state.is_terminal else await o.resolve_dom_drift(state)

    async def _prefs_gate(self, state: SessionState) -> SessionState:
        drafted = state.artifacts.prefs
        if drafted is None:
            return self._orchestrator.fail_session(state, "No drafted search preferences")
        prefs = apply_overrides(drafted, self._settings.search_overrides)
        filters = json.dumps(prefs.filters, ensure_ascii=False, indent=2, default=str)
        state = await self._orchestrator.wait_for_human(
            state, f"Search filters to apply:\n{filters}\nPress Enter to confirm",
        )
        if state.is_terminal:
            return state
        return await self._orchestrator.submit_search_prefs(state, prefs)
