"""Console presenter: reports session progress through the logging system."""

import logging

from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.ports.presentation import Presenter

logger = logging.getLogger(__name__)


class LoggingPresenter(Presenter):
    """Logs each status change and every session log line not yet shown."""

    def __init__(self) -> None:
        self._last_status: AgentStatus | None = None
        self._session_id: str | None = None
        self._shown = 0

    def render_state(self, state: SessionState) -> None:
        if state.id != self._session_id:
            self._session_id = state.id
            self._shown = 0
        elif len(state.logs) < self._shown:
            # Compacted: only the newest line has not been shown.
            self._shown = len(state.logs) - 1

        for line in state.logs[self._shown:]:
            logger.info("  %s", line)
        self._shown = len(state.logs)

        if state.status != self._last_status:
            self._last_status = state.status
            ledger = state.token_ledger
            logger.info(
                "[%s] %s (tokens in/out: %d/%d, %d AI calls)",
                state.site_id, state.status.value,
                ledger.input_tokens, ledger.output_tokens, ledger.calls,
            )
