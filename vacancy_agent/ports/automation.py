"""Automation port: what the orchestrator needs from "a browser".

Implementations own timeouts and selectors. The orchestrator treats any
exception raised from these methods as a port failure.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vacancy_agent.core.schemas import (
    ActionType,
    RawFormField,
    ReadbackSource,
    SearchFieldDefinition,
)
from vacancy_agent.core.vacancies import ApplyControl, QuestionnaireField


class PageLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    href: str


class ActionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    observed_value: Any = None
    error: str | None = None


class ControlReadback(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Any = None
    source: ReadbackSource = ReadbackSource.UNKNOWN


class RawVacancyCard(BaseModel):
    """A search result card as scraped, before normalization."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str
    external_id: str | None = None
    company: str | None = None
    city: str | None = None
    salary_text: str | None = None
    work_mode_text: str | None = None
    published_at_text: str | None = None


class VacancyScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    cards: list[RawVacancyCard] = Field(default_factory=list)
    next_page_cursor: str | None = None


class VacancyPageExtract(BaseModel):
    model_config = ConfigDict(frozen=True)

    requirements: list[str] = Field(default_factory=list)
    responsibilities: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    salary_text: str | None = None
    work_mode_text: str | None = None


class ApplyFormScan(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_modal: bool = False
    has_cover_letter: bool = False
    has_resume_select: bool = False
    has_submit: bool = False
    cover_letter_selector: str | None = None
    submit_selector: str | None = None
    questionnaire_fields: list[QuestionnaireField] = Field(default_factory=list)


class AutomationPort(ABC):
    """Base class that every browser automation adapter must implement."""

    @abstractmethod
    async def launch(self) -> None:
        """Start (or attach to) the browser."""

    @abstractmethod
    async def navigate_to(self, url: str) -> None: ...

    @abstractmethod
    async def wait_for_human_interaction(self, message: str) -> None:
        """Block until a person confirms they are done with the page."""

    @abstractmethod
    async def get_dom_snapshot(self) -> str: ...

    @abstractmethod
    async def get_current_url(self) -> str: ...

    @abstractmethod
    async def get_page_text_minimal(self) -> str:
        """Visible text of the current page, without markup."""

    @abstractmethod
    async def find_links_by_text_keywords(self, keywords: list[str]) -> list[PageLink]:
        """Links whose text contains any keyword (case-insensitive)."""

    @abstractmethod
    async def click_link(self, href: str) -> None: ...

    @abstractmethod
    async def scan_page_interaction_elements(self) -> list[RawFormField]:
        """Raw structure of inputs, selects, buttons and textareas on the page."""

    @abstractmethod
    async def apply_control_action(
        self,
        field: SearchFieldDefinition,
        action_type: ActionType,
        value: Any,
    ) -> ActionResult: ...

    @abstractmethod
    async def read_control_value(self, field: SearchFieldDefinition) -> ControlReadback: ...

    @abstractmethod
    async def scan_vacancy_cards(self, limit: int) -> VacancyScanResult: ...

    @abstractmethod
    async def extract_vacancy_page(self) -> VacancyPageExtract: ...

    @abstractmethod
    async def scan_apply_entrypoints(self) -> list[ApplyControl]: ...

    @abstractmethod
    async def click_element(self, selector: str) -> bool: ...

    @abstractmethod
    async def scan_apply_form(self) -> ApplyFormScan: ...

    @abstractmethod
    async def input_text(self, selector: str, text: str) -> bool: ...

    @abstractmethod
    async def read_input_value(self, selector: str) -> str | None: ...

    @abstractmethod
    async def close(self) -> None: ...
