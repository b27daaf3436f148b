"""Tests for the logging presenter."""

import logging

import pytest

from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.presentation.console import LoggingPresenter

LOGGER = "vacancy_agent.presentation.console"


@pytest.fixture
def caplog_info(caplog):  # type: ignore[no-untyped-def]
    caplog.set_level(logging.INFO, logger=LOGGER)
    return caplog


def _messages(caplog) -> list[str]:  # type: ignore[no-untyped-def]
    return [r.getMessage() for r in caplog.records if r.name == LOGGER]


class TestLoggingPresenter:
    def test_status_and_lines_logged(self, caplog_info) -> None:  # type: ignore[no-untyped-def]
        state = SessionState(site_id="hh.ru", logs=("Session created",))
        LoggingPresenter().render_state(state)
        messages = _messages(caplog_info)
        assert messages[0] == "  Session created"
        assert messages[1].startswith("[hh.ru] IDLE")

    def test_only_new_lines_logged(self, caplog_info) -> None:  # type: ignore[no-untyped-def]
        presenter = LoggingPresenter()
        state = SessionState(site_id="hh.ru", logs=("one",))
        presenter.render_state(state)
        caplog_info.clear()

        presenter.render_state(state.advance(AgentStatus.IDLE, "two"))
        assert _messages(caplog_info) == ["  two"]

    def test_status_change_logged_once(self, caplog_info) -> None:  # type: ignore[no-untyped-def]
        presenter = LoggingPresenter()
        state = SessionState(site_id="hh.ru").advance(AgentStatus.STARTING, "a")
        presenter.render_state(state)
        presenter.render_state(state.advance(AgentStatus.STARTING, "b"))
        status_lines = [m for m in _messages(caplog_info) if m.startswith("[hh.ru]")]
        assert status_lines == [
            "[hh.ru] STARTING (tokens in/out: 0/0, 0 AI calls)",
        ]

    def test_compacted_logs_show_newest_line(self, caplog_info) -> None:  # type: ignore[no-untyped-def]
        presenter = LoggingPresenter()
        state = SessionState(site_id="hh.ru", logs=tuple(str(i) for i in range(30)))
        presenter.render_state(state)
        caplog_info.clear()

        compacted = state.model_copy(update={"logs": ("0", "...", "29", "30")})
        presenter.render_state(compacted)
        assert _messages(caplog_info) == ["  30"]

    def test_new_session_starts_from_first_line(self, caplog_info) -> None:  # type: ignore[no-untyped-def]
        presenter = LoggingPresenter()
        presenter.render_state(SessionState(site_id="hh.ru", logs=("a", "b")))
        caplog_info.clear()
        presenter.render_state(SessionState(site_id="hh.ru", logs=("fresh",)))
        assert "  fresh" in _messages(caplog_info)
