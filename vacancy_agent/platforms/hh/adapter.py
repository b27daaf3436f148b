"""hh.ru automation adapter: the AutomationPort on top of a patchright page."""

import asyncio
import logging
import re
from typing import Any
from urllib.parse import parse_qs, urljoin, urlparse

from patchright.async_api import Error as PlaywrightError

from vacancy_agent.browser.actions import TYPING_DELAY_MS, action_pause
from vacancy_agent.browser.session import BrowserSession
from vacancy_agent.core.schemas import (
    ActionType,
    ControlType,
    RawFormField,
    ReadbackSource,
    SearchFieldDefinition,
)
from vacancy_agent.core.vacancies import ApplyControl, QuestionnaireField
from vacancy_agent.platforms.hh.parser import (
    HHCardParser,
    find_first,
    split_sections,
    text_fallback,
)
from vacancy_agent.platforms.hh.selectors import (
    APPLY_BUTTON_SELECTORS,
    APPLY_MODAL_SELECTORS,
    COVER_LETTER_SELECTORS,
    COVER_LETTER_TOGGLE_SELECTORS,
    DESCRIPTION_SELECTORS,
    DETAIL_SALARY_SELECTORS,
    DETAIL_WORK_MODE_SELECTORS,
    NEXT_PAGE_SELECTORS,
    QUESTIONNAIRE_SELECTORS,
    RESUME_SELECT_SELECTORS,
    SUBMIT_SELECTORS,
)
from vacancy_agent.ports.automation import (
    ActionResult,
    ApplyFormScan,
    AutomationPort,
    ControlReadback,
    PageLink,
    VacancyPageExtract,
    VacancyScanResult,
)

logger = logging.getLogger(__name__)

_QUOTES = "\"'"
_HINT_PART = re.compile(r"([\w-]+)=(\"[^\"]*\"|'[^']*'|\S+)")

# Returns every interactive element with a stable id and a human label.
_SCAN_FIELDS_JS = """
() => {
  const labelFor = (el) => {
    if (el.id) {
      const l = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
      if (l && l.innerText.trim()) return l.innerText.trim();
    }
    const wrap = el.closest('label');
    if (wrap && wrap.innerText.trim()) return wrap.innerText.trim();
    return (el.getAttribute('aria-label') || el.getAttribute('placeholder')
      || el.innerText || el.value || '').trim();
  };
  const keep = ['name', 'data-qa', 'value', 'placeholder', 'type', 'id', 'aria-label'];
  return Array.from(document.querySelectorAll('input, select, textarea, button'))
    .filter((el) => el.type !== 'hidden')
    .map((el, i) => {
      const attributes = {};
      for (const k of keep) {
        const v = el.getAttribute(k);
        if (v !== null && v !== '') attributes[k] = v;
      }
      const name = el.getAttribute('name');
      const dataQa = el.getAttribute('data-qa');
      const value = el.getAttribute('value');
      const id = el.id || dataQa || (name ? (value ? `${name}:${value}` : name) : `${el.tagName.toLowerCase()}-${i}`);
      return {
        id,
        tag: el.tagName.toLowerCase(),
        input_type: el.getAttribute('type'),
        label: labelFor(el).slice(0, 200),
        attributes,
        options: el.tagName === 'SELECT' ? Array.from(el.options).map((o) => o.text.trim()) : [],
        is_visible: el.offsetParent !== null,
      };
    });
}
"""

_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]'))
  .map((a) => ({text: (a.innerText || '').trim(), href: a.getAttribute('href')}))
  .filter((l) => l.text && l.href)
"""

_QUESTIONNAIRE_JS = """
(containerSelector) => {
  const root = document.querySelector(containerSelector);
  if (!root) return [];
  return Array.from(root.querySelectorAll('textarea, input, select'))
    .filter((el) => el.type !== 'hidden')
    .map((el, i) => {
      const name = el.getAttribute('name');
      const value = el.getAttribute('value');
      let selector = `${containerSelector} ${el.tagName.toLowerCase()}`;
      if (name) selector += `[name="${name}"]`;
      if (value && (el.type === 'radio' || el.type === 'checkbox')) selector += `[value="${value}"]`;
      const block = el.closest('[data-qa="task-question"]') || el.parentElement;
      return {
        id: name ? (value ? `${name}:${value}` : name) : `q-${i}`,
        label: ((block && block.innerText) || el.getAttribute('placeholder') || '').trim().slice(0, 300),
        selector,
        kind: el.tagName === 'TEXTAREA' ? 'TEXTAREA' : (el.type || 'text').toUpperCase(),
        options: el.tagName === 'SELECT' ? Array.from(el.options).map((o) => o.text.trim()) : [],
        required: el.required || el.getAttribute('aria-required') === 'true',
      };
    });
}
"""


def hint_to_selector(hint: str) -> str:
    """Turn a DOM hint into a CSS selector.

    ``name=salary`` → ``[name="salary"]``; several ``key=value`` pairs are
    combined (``name=schedule value=remote``). Anything else is taken as CSS.
    """
    hint = hint.strip()
    parts = _HINT_PART.findall(hint)
    if not parts or " ".join(f"{k}={v}" for k, v in parts) != hint:
        return hint
    return "".join(f'[{key}="{value.strip(_QUOTES)}"]' for key, value in parts)


class HHAutomation(AutomationPort):
    """hh.ru automation over a single patchright page.

    The browser session is started by ``launch`` and stopped by ``close``.
    """

    def __init__(self, session: BrowserSession) -> None:
        self._session = session
        self._parser = HHCardParser()

    @property
    def _page(self) -> Any:
        return self._session.page

    async def launch(self) -> None:
        await self._session.start()

    async def close(self) -> None:
        await self._session.stop()

    async def navigate_to(self, url: str) -> None:
        logger.info("Navigating to %s", url)
        await self._page.goto(url, wait_until="domcontentloaded")

    async def wait_for_human_interaction(self, message: str) -> None:
        await asyncio.to_thread(input, f"\n>>> {message} ")
        # The human may have just logged in; keep the session for next time.
        await self._session.save_cookies()

    async def get_dom_snapshot(self) -> str:
        return await self._page.content()  # type: ignore[no-any-return]

    async def get_current_url(self) -> str:
        return self._page.url  # type: ignore[no-any-return]

    async def get_page_text_minimal(self) -> str:
        text = await self._page.inner_text("body")
        lines = (" ".join(line.split()) for line in text.splitlines())
        return "\n".join(line for line in lines if line)

    async def find_links_by_text_keywords(self, keywords: list[str]) -> list[PageLink]:
        wanted = [k.lower() for k in keywords if k.strip()]
        links = await self._page.evaluate(_LINKS_JS)
        return [
            PageLink(text=link["text"], href=link["href"])
            for link in links
            if any(k in link["text"].lower() for k in wanted)
        ]

    async def click_link(self, href: str) -> None:
        await self.navigate_to(urljoin(self._page.url, href))

    # ------------------------------------------------------------------
    # Search form
    # ------------------------------------------------------------------

    async def scan_page_interaction_elements(self) -> list[RawFormField]:
        raw = await self._page.evaluate(_SCAN_FIELDS_JS)
        fields = [RawFormField.model_validate(item) for item in raw]
        logger.info("Scanned %d interactive elements", len(fields))
        return fields

    def _locator(self, field: SearchFieldDefinition) -> Any:
        hint = field.dom_hint or f"data-qa={field.key}"
        return self._page.locator(hint_to_selector(hint)).first

    async def apply_control_action(
        self,
        field: SearchFieldDefinition,
        action_type: ActionType,
        value: Any,
    ) -> ActionResult:
        locator = self._locator(field)
        try:
            if await locator.count() == 0:
                return ActionResult(success=False, error=f"control '{field.key}' not found")
            if action_type == ActionType.FILL_TEXT:
                await locator.fill("")
                await locator.press_sequentially(str(value), delay=TYPING_DELAY_MS)
                observed: Any = await locator.input_value()
            elif action_type == ActionType.SELECT_OPTION:
                await locator.select_option(label=str(value))
                observed = await locator.input_value()
            elif action_type == ActionType.TOGGLE_CHECKBOX:
                await locator.set_checked(bool(value))
                observed = await locator.is_checked()
            elif action_type == ActionType.CLICK:
                await locator.click()
                observed = True
            else:
                return ActionResult(success=False, error=f"unsupported action {action_type.value}")
        except PlaywrightError as e:
            return ActionResult(success=False, error=str(e).splitlines()[0])
        await action_pause()
        return ActionResult(success=True, observed_value=observed)

    async def read_control_value(self, field: SearchFieldDefinition) -> ControlReadback:
        locator = self._locator(field)
        if await locator.count() > 0:
            if field.ui_control_type in (ControlType.CHECKBOX, ControlType.RADIO):
                return ControlReadback(
                    value=await locator.is_checked(), source=ReadbackSource.CONTROL_VALUE,
                )
            return ControlReadback(
                value=await locator.input_value(), source=ReadbackSource.CONTROL_VALUE,
            )

        # Submitted search pages may re-render the form; fall back to the URL.
        params = parse_qs(urlparse(self._page.url).query)
        name = _hint_attribute(field.dom_hint, "name") or field.key
        if name in params:
            return ControlReadback(value=params[name][0], source=ReadbackSource.URL_PARAMS)
        return ControlReadback()

    # ------------------------------------------------------------------
    # Vacancies
    # ------------------------------------------------------------------

    async def scan_vacancy_cards(self, limit: int) -> VacancyScanResult:
        cards = await self._parser.parse_page(self._page, limit)
        cursor = None
        next_link = await find_first(self._page, NEXT_PAGE_SELECTORS)
        if next_link is not None:
            href = await next_link.get_attribute("href")
            cursor = urljoin(self._page.url, href) if href else None
        logger.info("Parsed %d vacancy cards", len(cards))
        return VacancyScanResult(cards=cards, next_page_cursor=cursor)

    async def extract_vacancy_page(self) -> VacancyPageExtract:
        description = await find_first(self._page, DESCRIPTION_SELECTORS)
        if description is None:
            msg = f"No vacancy description on {self._page.url}"
            raise ValueError(msg)
        text = await description.inner_text()
        sections = split_sections(text.splitlines())
        return VacancyPageExtract(
            requirements=sections["requirements"],
            responsibilities=sections["responsibilities"],
            conditions=sections["conditions"],
            salary_text=await text_fallback(self._page, DETAIL_SALARY_SELECTORS),
            work_mode_text=await text_fallback(self._page, DETAIL_WORK_MODE_SELECTORS),
        )

    # ------------------------------------------------------------------
    # Apply flow
    # ------------------------------------------------------------------

    async def scan_apply_entrypoints(self) -> list[ApplyControl]:
        controls: list[ApplyControl] = []
        for selector in APPLY_BUTTON_SELECTORS:
            el = await self._page.query_selector(selector)
            if el is None or not await el.is_visible():
                continue
            label = (await el.text_content() or "").strip()
            controls.append(ApplyControl(label=label or "Откликнуться", selector=selector))
        return controls

    async def click_element(self, selector: str) -> bool:
        locator = self._page.locator(selector).first
        try:
            if await locator.count() == 0:
                logger.warning("Nothing to click for '%s'", selector)
                return False
            await locator.click()
        except PlaywrightError as e:
            logger.warning("Click on '%s' failed: %s", selector, str(e).splitlines()[0])
            return False
        await action_pause()
        return True

    async def _first_present(self, selectors: tuple[str, ...]) -> str | None:
        for selector in selectors:
            if await self._page.locator(selector).count() > 0:
                return selector
        return None

    async def scan_apply_form(self) -> ApplyFormScan:
        modal = await self._first_present(APPLY_MODAL_SELECTORS)
        letter = await self._first_present(COVER_LETTER_SELECTORS)
        if letter is None:
            toggle = await self._first_present(COVER_LETTER_TOGGLE_SELECTORS)
            if toggle is not None and await self.click_element(toggle):
                letter = await self._first_present(COVER_LETTER_SELECTORS)
        submit = await self._first_present(SUBMIT_SELECTORS)

        questionnaire: list[QuestionnaireField] = []
        container = await self._first_present(QUESTIONNAIRE_SELECTORS)
        if container is not None:
            raw = await self._page.evaluate(_QUESTIONNAIRE_JS, container)
            questionnaire = [QuestionnaireField.model_validate(item) for item in raw]

        return ApplyFormScan(
            is_modal=modal is not None,
            has_cover_letter=letter is not None,
            has_resume_select=await self._first_present(RESUME_SELECT_SELECTORS) is not None,
            has_submit=submit is not None,
            cover_letter_selector=letter,
            submit_selector=submit,
            questionnaire_fields=questionnaire,
        )

    async def input_text(self, selector: str, text: str) -> bool:
        locator = self._page.locator(selector).first
        try:
            if await locator.count() == 0:
                return False
            await locator.fill(text)
        except PlaywrightError as e:
            logger.warning("Typing into '%s' failed: %s", selector, str(e).splitlines()[0])
            return False
        await action_pause()
        return True

    async def read_input_value(self, selector: str) -> str | None:
        locator = self._page.locator(selector).first
        if await locator.count() == 0:
            return None
        return await locator.input_value()  # type: ignore[no-any-return]


def _hint_attribute(hint: str | None, attribute: str) -> str | None:
    if not hint:
        return None
    for key, value in _HINT_PART.findall(hint):
        if key == attribute:
            return value.strip(_QUOTES)
    return None

