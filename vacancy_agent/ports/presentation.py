"""Presentation port: a one-way sink for session state snapshots."""

from abc import ABC, abstractmethod

from vacancy_agent.core.state import SessionState


class Presenter(ABC):
    @abstractmethod
    def render_state(self, state: SessionState) -> None:
        """Display ``state``. Must not raise and must not mutate anything."""
