"""hh.ru DOM parser: search-result cards and vacancy description sections.

Every selector lookup uses a fallback tuple. A missing optional field
becomes ``None``; only a card without a title or URL is dropped.
"""

import logging
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse, urlunparse

from vacancy_agent.platforms.hh.selectors import (
    CARD_SELECTORS,
    CITY_SELECTORS,
    COMPANY_SELECTORS,
    CONDITIONS_HEADINGS,
    PUBLISHED_SELECTORS,
    REQUIREMENTS_HEADINGS,
    RESPONSIBILITIES_HEADINGS,
    SALARY_SELECTORS,
    TITLE_LINK_SELECTORS,
    WORK_MODE_SELECTORS,
)
from vacancy_agent.ports.automation import RawVacancyCard

logger = logging.getLogger(__name__)

HH_BASE = "https://hh.ru"


@runtime_checkable
class ElementLike(Protocol):
    """Minimal element interface so tests can use AsyncMock instead of patchright."""

    async def query_selector(self, selector: str) -> "ElementLike | None": ...
    async def query_selector_all(self, selector: str) -> "list[ElementLike]": ...
    async def get_attribute(self, name: str) -> str | None: ...
    async def text_content(self) -> str | None: ...


async def find_first(parent: ElementLike, selectors: tuple[str, ...]) -> ElementLike | None:
    """Return the first element matching any selector in order."""
    for selector in selectors:
        try:
            el = await parent.query_selector(selector)
            if el is not None:
                return el
        except Exception:
            logger.debug("Selector '%s' raised, trying next", selector, exc_info=True)
    return None


async def find_all(parent: ElementLike, selectors: tuple[str, ...]) -> list[ElementLike]:
    """Return all elements for the first selector that matches anything."""
    for selector in selectors:
        found = await parent.query_selector_all(selector)
        if found:
            logger.debug("Found %d elements with selector '%s'", len(found), selector)
            return found
    return []


async def text_fallback(parent: ElementLike, selectors: tuple[str, ...]) -> str | None:
    """Text of the first matching element, whitespace-collapsed, or None."""
    try:
        el = await find_first(parent, selectors)
        if el is None:
            return None
        text = await el.text_content()
    except Exception:
        logger.debug("Error reading text with fallback selectors", exc_info=True)
        return None
    if not text:
        return None
    collapsed = " ".join(text.split())
    return collapsed or None


def clean_url(href: str) -> str:
    """Strip tracking params and prepend the domain if relative."""
    if href.startswith("/"):
        href = f"{HH_BASE}{href}"
    parsed = urlparse(href)
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))


class HHCardParser:
    """Parses hh.ru search-result card elements into ``RawVacancyCard`` objects."""

    async def parse_page(self, page: ElementLike, limit: int) -> list[RawVacancyCard]:
        cards = await find_all(page, CARD_SELECTORS)
        if not cards:
            logger.warning("No vacancy cards found with any selector")
        results: list[RawVacancyCard] = []
        for card in cards:
            if len(results) >= limit:
                break
            try:
                parsed = await self.parse_card(card)
            except Exception:
                logger.debug("Failed to parse card, skipping", exc_info=True)
                continue
            if parsed is not None:
                results.append(parsed)
        return results

    async def parse_card(self, card: ElementLike) -> RawVacancyCard | None:
        """Parse a single card. Returns None without a title link."""
        link = await find_first(card, TITLE_LINK_SELECTORS)
        if link is None:
            logger.debug("Card without title link, skipping")
            return None
        href = await link.get_attribute("href")
        title = await link.text_content()
        if not href or not title or not title.strip():
            return None
        return RawVacancyCard(
            url=clean_url(href),
            title=" ".join(title.split()),
            company=await text_fallback(card, COMPANY_SELECTORS),
            city=await text_fallback(card, CITY_SELECTORS),
            salary_text=await text_fallback(card, SALARY_SELECTORS),
            work_mode_text=await text_fallback(card, WORK_MODE_SELECTORS),
            published_at_text=await text_fallback(card, PUBLISHED_SELECTORS),
        )


def split_sections(lines: list[str]) -> dict[str, list[str]]:
    """Group description lines under the heading that precedes them.

    Lines before any known heading are ignored; each heading line itself
    is dropped. Returns keys ``requirements``, ``responsibilities`` and
    ``conditions``.
    """
    headings = {
        "requirements": REQUIREMENTS_HEADINGS,
        "responsibilities": RESPONSIBILITIES_HEADINGS,
        "conditions": CONDITIONS_HEADINGS,
    }
    sections: dict[str, list[str]] = {name: [] for name in headings}
    current: str | None = None
    for raw in lines:
        line = " ".join(raw.split()).strip("•-–· ")
        if not line:
            continue
        lowered = line.lower()
        matched = next(
            (name for name, prefixes in headings.items() if lowered.startswith(prefixes)),
            None,
        )
        if matched is not None and len(line) < 60:
            current = matched
            continue
        if current is not None:
            sections[current].append(line)
    return sections
