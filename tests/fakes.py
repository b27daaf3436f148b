"""In-memory stand-ins for the automation and AI ports, plus model builders.

Shared by the orchestrator, runner and pipeline tests. Nothing here
touches a browser or a model provider.
"""

from collections import Counter
from collections.abc import Callable
from typing import Any

from vacancy_agent.core.config import (
    ApplyConfig,
    ConstraintsConfig,
    PacingConfig,
    Settings,
    StorageConfig,
)
from vacancy_agent.core.schemas import (
    ActionType,
    ControlType,
    DefaultBehavior,
    RawFormField,
    ReadbackSource,
    SearchFieldDefinition,
    SearchUISpec,
    SemanticType,
    TargetingSpec,
    TargetRoles,
    TokenUsage,
    WorkMode,
)
from vacancy_agent.core.state import SessionState
from vacancy_agent.core.vacancies import (
    ApplyControl,
    EvaluationResult,
    EvaluationVerdict,
    QuestionnaireAnswer,
    ScreeningDecision,
    ScreeningVerdict,
)
from vacancy_agent.pipeline.orchestrator import Orchestrator
from vacancy_agent.ports.ai import (
    AIPort,
    EvaluationInput,
    EvaluationOutput,
    ProfileSummary,
    QuestionnaireAnswerSet,
    QuestionnaireInput,
    ScreeningInput,
    ScreeningOutput,
    SearchUIAnalysisInput,
)
from vacancy_agent.ports.automation import (
    ActionResult,
    ApplyFormScan,
    AutomationPort,
    ControlReadback,
    PageLink,
    RawVacancyCard,
    VacancyPageExtract,
    VacancyScanResult,
)
from vacancy_agent.ports.presentation import Presenter
from vacancy_agent.ports.storage import ArtifactStore
from vacancy_agent.storage.memory import MemoryArtifactStore

PROFILE_TEXT = "Иван Иванов\nPython разработчик\nОпыт 6 лет: Django, FastAPI, PostgreSQL"
SUBMIT_SELECTOR = 'button[data-qa="vacancy-response-submit-popup"]'
LETTER_SELECTOR = 'textarea[name="letter"]'
SUCCESS_TEXT = "Резюме доставлено"

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_targeting(**kw: Any) -> TargetingSpec:
    defaults: dict[str, Any] = {
        "target_roles": TargetRoles(
            ru_titles=["Python разработчик"], en_titles=["Python Developer"],
        ),
        "token_usage": TokenUsage(input_tokens=100, output_tokens=20),
    }
    defaults.update(kw)
    return TargetingSpec(**defaults)


def make_ui_spec(site_id: str = "hh.ru") -> SearchUISpec:
    return SearchUISpec(
        site_id=site_id,
        source_url="https://hh.ru/search/vacancy/advanced",
        fields=(
            SearchFieldDefinition(
                key="text", label="Ключевые слова", ui_control_type=ControlType.TEXT,
                semantic_type=SemanticType.KEYWORD, dom_hint="name=text",
            ),
            SearchFieldDefinition(
                key="salary", label="Уровень дохода", ui_control_type=ControlType.TEXT,
                semantic_type=SemanticType.SALARY, dom_hint="name=salary",
            ),
            SearchFieldDefinition(
                key="remote", label="Удалённая работа", ui_control_type=ControlType.CHECKBOX,
                semantic_type=SemanticType.WORK_MODE, dom_hint="name=schedule value=remote",
            ),
            SearchFieldDefinition(
                key="submit", label="Найти", ui_control_type=ControlType.BUTTON,
                semantic_type=SemanticType.SUBMIT, default_behavior=DefaultBehavior.CLICK,
            ),
        ),
        token_usage=TokenUsage(input_tokens=300, output_tokens=80),
    )


def make_settings(**kw: Any) -> Settings:
    """Settings with no pacing delays and in-memory storage."""
    defaults: dict[str, Any] = {
        "constraints": ConstraintsConfig(
            work_modes=[WorkMode.REMOTE], min_salary=250000, city="Москва",
        ),
        "pacing": PacingConfig(
            step_delay_min=0, step_delay_max=0,
            retry_backoff_min=0, retry_backoff_max=0,
            page_delay_min=0, page_delay_max=0,
        ),
        "storage": StorageConfig(backend="memory"),
        "apply": ApplyConfig(success_text_hints=[SUCCESS_TEXT]),
    }
    defaults.update(kw)
    return Settings(**defaults)


def raw_card(external_id: str, title: str = "Python разработчик", **kw: Any) -> RawVacancyCard:
    defaults: dict[str, Any] = {
        "url": f"https://hh.ru/vacancy/{external_id}",
        "title": title,
        "company": f"Company {external_id}",
        "city": "Москва",
        "salary_text": "от 300 000 ₽",
        "work_mode_text": "Можно удалённо",
    }
    defaults.update(kw)
    return RawVacancyCard(**defaults)


def vacancy_page(**kw: Any) -> VacancyPageExtract:
    defaults: dict[str, Any] = {
        "requirements": ["Python 3 от 3 лет", "Django или FastAPI"],
        "responsibilities": ["Разработка backend-сервисов"],
        "conditions": ["Удалённая работа"],
        "salary_text": "от 300 000 ₽",
        "work_mode_text": "Удалённо",
    }
    defaults.update(kw)
    return VacancyPageExtract(**defaults)


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


class FakeAutomation(AutomationPort):
    """Scriptable browser.

    ``step_outcomes`` maps a field key to a list of results (or exceptions)
    consumed one per attempt; once exhausted, actions succeed. ``readbacks``
    overrides what ``read_control_value`` reports; otherwise the last
    written value is returned.
    """

    def __init__(
        self,
        *,
        profile_text: str = PROFILE_TEXT,
        profile_links: list[PageLink] | None = None,
        form_fields: list[RawFormField] | None = None,
        step_outcomes: dict[str, list[ActionResult | Exception]] | None = None,
        readbacks: dict[str, Any] | None = None,
        cards: list[RawVacancyCard] | None = None,
        pages: dict[str, VacancyPageExtract | Exception] | None = None,
        entrypoints: dict[str, list[ApplyControl]] | None = None,
        apply_form: ApplyFormScan | None = None,
        login_redirect: str | None = None,
    ) -> None:
        self.profile_text = profile_text
        self.profile_links = profile_links if profile_links is not None else [
            PageLink(text="Мои резюме", href="/applicant/resumes"),
        ]
        self.form_fields = form_fields if form_fields is not None else [
            RawFormField(id="text", tag="input", input_type="text", label="Ключевые слова",
                         attributes={"name": "text"}),
            RawFormField(id="salary", tag="input", input_type="text", label="Уровень дохода",
                         attributes={"name": "salary"}),
            RawFormField(id="submit", tag="button", label="Найти"),
        ]
        self.step_outcomes = {k: list(v) for k, v in (step_outcomes or {}).items()}
        self.readbacks = readbacks or {}
        self.cards = cards if cards is not None else [raw_card("1001"), raw_card("1002")]
        self.pages = pages or {}
        self.entrypoints = entrypoints
        self.apply_form = apply_form if apply_form is not None else ApplyFormScan(
            is_modal=True,
            has_cover_letter=True,
            has_submit=True,
            cover_letter_selector=LETTER_SELECTOR,
            submit_selector=SUBMIT_SELECTOR,
        )
        self.login_redirect = login_redirect

        self.current_url = "about:blank"
        self.page_text = ""
        self.written: dict[str, Any] = {}
        self.inputs: dict[str, str] = {}
        self.calls: Counter[str] = Counter()
        self.human_prompts: list[str] = []
        self.launched = False
        self.closed = False

    async def launch(self) -> None:
        self.calls["launch"] += 1
        self.launched = True

    async def close(self) -> None:
        self.calls["close"] += 1
        self.closed = True

    async def navigate_to(self, url: str) -> None:
        self.calls["navigate_to"] += 1
        self.current_url = url
        self.page_text = self.profile_text if "/resume" in url else ""

    async def wait_for_human_interaction(self, message: str) -> None:
        self.calls["wait_for_human_interaction"] += 1
        self.human_prompts.append(message)

    async def get_dom_snapshot(self) -> str:
        return "<html></html>"

    async def get_current_url(self) -> str:
        if self.login_redirect and "/vacancy/" in self.current_url:
            return self.login_redirect
        return self.current_url

    async def get_page_text_minimal(self) -> str:
        self.calls["get_page_text_minimal"] += 1
        return self.page_text

    async def find_links_by_text_keywords(self, keywords: list[str]) -> list[PageLink]:
        self.calls["find_links_by_text_keywords"] += 1
        return list(self.profile_links)

    async def click_link(self, href: str) -> None:
        self.calls["click_link"] += 1
        self.current_url = f"https://hh.ru{href}" if href.startswith("/") else href
        self.page_text = self.profile_text

    async def scan_page_interaction_elements(self) -> list[RawFormField]:
        self.calls["scan_page_interaction_elements"] += 1
        return list(self.form_fields)

    async def apply_control_action(
        self, field: SearchFieldDefinition, action_type: ActionType, value: Any,
    ) -> ActionResult:
        self.calls["apply_control_action"] += 1
        pending = self.step_outcomes.get(field.key)
        if pending:
            outcome = pending.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        self.written[field.key] = value
        return ActionResult(success=True, observed_value=value)

    async def read_control_value(self, field: SearchFieldDefinition) -> ControlReadback:
        self.calls["read_control_value"] += 1
        if field.key in self.readbacks:
            return ControlReadback(
                value=self.readbacks[field.key], source=ReadbackSource.CONTROL_VALUE,
            )
        if field.key in self.written:
            return ControlReadback(value=self.written[field.key], source=ReadbackSource.CONTROL_VALUE)
        return ControlReadback()

    async def scan_vacancy_cards(self, limit: int) -> VacancyScanResult:
        self.calls["scan_vacancy_cards"] += 1
        return VacancyScanResult(cards=self.cards[:limit])

    async def extract_vacancy_page(self) -> VacancyPageExtract:
        self.calls["extract_vacancy_page"] += 1
        page = self.pages.get(self.current_url, vacancy_page())
        if isinstance(page, Exception):
            raise page
        return page

    async def scan_apply_entrypoints(self) -> list[ApplyControl]:
        self.calls["scan_apply_entrypoints"] += 1
        if self.entrypoints is not None and self.current_url in self.entrypoints:
            return list(self.entrypoints[self.current_url])
        return [ApplyControl(label="Откликнуться", selector='a[data-qa="vacancy-response-link-top"]')]

    async def click_element(self, selector: str) -> bool:
        self.calls["click_element"] += 1
        if selector == SUBMIT_SELECTOR:
            self.page_text = SUCCESS_TEXT
        return True

    async def scan_apply_form(self) -> ApplyFormScan:
        self.calls["scan_apply_form"] += 1
        return self.apply_form

    async def input_text(self, selector: str, text: str) -> bool:
        self.calls["input_text"] += 1
        self.inputs[selector] = text
        return True

    async def read_input_value(self, selector: str) -> str | None:
        return self.inputs.get(selector)


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------


def _read_all(screening: ScreeningInput) -> ScreeningOutput:
    return ScreeningOutput(
        model_id="fake:model",
        results=[
            ScreeningDecision(card_id=c.id, decision=ScreeningVerdict.READ, confidence=0.9)
            for c in screening.cards
        ],
        token_usage=TokenUsage(input_tokens=500, output_tokens=100),
    )


def _apply_all(evaluation: EvaluationInput) -> EvaluationOutput:
    return EvaluationOutput(
        model_id="fake:model",
        results=[
            EvaluationResult(vacancy_id=c.id, decision=EvaluationVerdict.APPLY, confidence=0.8)
            for c in evaluation.candidates
        ],
        token_usage=TokenUsage(input_tokens=800, output_tokens=150),
    )


class FakeAI(AIPort):
    """Scriptable advisor. Each answer may be a value, a callable or an exception."""

    def __init__(
        self,
        *,
        targeting: TargetingSpec | Exception | None = None,
        ui_spec: SearchUISpec | Exception | None = None,
        screening: Callable[[ScreeningInput], ScreeningOutput] | Exception = _read_all,
        evaluation: Callable[[EvaluationInput], EvaluationOutput] | Exception = _apply_all,
        answers: list[QuestionnaireAnswer] | None = None,
    ) -> None:
        self.targeting = targeting if targeting is not None else make_targeting()
        self.ui_spec = ui_spec if ui_spec is not None else make_ui_spec()
        self.screening = screening
        self.evaluation = evaluation
        self.answers = answers or []
        self.calls: Counter[str] = Counter()
        self.screening_inputs: list[ScreeningInput] = []

    @property
    def model_id(self) -> str:
        return "fake:model"

    @staticmethod
    def _answer(answer: Any, payload: Any) -> Any:
        if isinstance(answer, Exception):
            raise answer
        return answer(payload) if callable(answer) else answer

    def analyze_profile(self, profile: ProfileSummary) -> TargetingSpec:
        self.calls["analyze_profile"] += 1
        return self._answer(self.targeting, profile)  # type: ignore[no-any-return]

    def analyze_search_dom(self, analysis: SearchUIAnalysisInput) -> SearchUISpec:
        self.calls["analyze_search_dom"] += 1
        return self._answer(self.ui_spec, analysis)  # type: ignore[no-any-return]

    def screen_vacancy_cards_batch(self, screening: ScreeningInput) -> ScreeningOutput:
        self.calls["screen_vacancy_cards_batch"] += 1
        self.screening_inputs.append(screening)
        return self._answer(self.screening, screening)  # type: ignore[no-any-return]

    def evaluate_vacancy_extracts_batch(self, evaluation: EvaluationInput) -> EvaluationOutput:
        self.calls["evaluate_vacancy_extracts_batch"] += 1
        return self._answer(self.evaluation, evaluation)  # type: ignore[no-any-return]

    def generate_questionnaire_answers(
        self, questionnaire: QuestionnaireInput,
    ) -> QuestionnaireAnswerSet:
        self.calls["generate_questionnaire_answers"] += 1
        return QuestionnaireAnswerSet(
            answers=list(self.answers), token_usage=TokenUsage(input_tokens=50, output_tokens=10),
        )


# ---------------------------------------------------------------------------
# Presenter and wiring
# ---------------------------------------------------------------------------


class RecordingPresenter(Presenter):
    def __init__(self) -> None:
        self.states: list[SessionState] = []

    def render_state(self, state: SessionState) -> None:
        self.states.append(state)

    @property
    def statuses(self) -> list[str]:
        return [s.status.value for s in self.states]


def make_orchestrator(
    automation: FakeAutomation | None = None,
    ai: FakeAI | None = None,
    store: ArtifactStore | None = None,
    settings: Settings | None = None,
) -> tuple[Orchestrator, FakeAutomation, FakeAI, ArtifactStore, RecordingPresenter]:
    automation = automation or FakeAutomation()
    ai = ai or FakeAI()
    store = store or MemoryArtifactStore()
    presenter = RecordingPresenter()
    orchestrator = Orchestrator(
        automation=automation,
        ai=ai,
        store=store,
        presenter=presenter,
        settings=settings or make_settings(),
    )
    return orchestrator, automation, ai, store, presenter
