"""Text normalization, hashing and raw-card parsing.

Pure functions, zero browser dependency.
"""

import hashlib
import json
import re
import uuid
from collections.abc import Iterable
from typing import Any

from vacancy_agent.core.schemas import RawFormField
from vacancy_agent.core.vacancies import VacancyCard, VacancySalary, VacancyWorkMode
from vacancy_agent.ports.automation import RawVacancyCard

_WS_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_VACANCY_ID_RE = re.compile(r"/vacancy/(\d+)")
_DIGITS_RE = re.compile(r"\d+")

# Checked in order: "hybrid" text often also mentions the office.
WORK_MODE_MARKERS: tuple[tuple[VacancyWorkMode, tuple[str, ...]], ...] = (
    (VacancyWorkMode.HYBRID, ("гибрид", "hybrid")),
    (VacancyWorkMode.REMOTE, ("удал", "remote", "из дома")),
    (VacancyWorkMode.OFFICE, ("офис", "office", "on-site", "onsite", "на месте работодателя")),
)

_GROSS_MARKERS = ("до вычета", "gross")
_UP_TO_MARKERS = ("до ", "up to")
_FROM_MARKERS = ("от ", "from")


def normalize_text(text: str) -> str:
    """Collapse whitespace, trim and lower-case."""
    return _WS_RE.sub(" ", text).strip().lower()


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def structural_hash(fields: Iterable[RawFormField]) -> str:
    """Order-insensitive fingerprint of a page's interactive controls.

    Digits in ids are masked: positional and generated ids change between
    visits without the form changing.
    """
    shape = sorted(f"{f.tag}:{f.input_type or ''}:{_DIGITS_RE.sub('#', f.id)}" for f in fields)
    return sha256_hex(json.dumps(shape))


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def parse_salary(text: str | None) -> VacancySalary | None:
    """Parse a salary label such as ``"от 150 000 до 200 000 ₽ на руки"``.

    One number is a lower bound unless the label reads "up to", two numbers
    are a range. Currency defaults to RUB.
    """
    if not text or not text.strip():
        return None
    lowered = text.lower()
    numbers = [int(n) for n in re.findall(r"\d+", _WS_RE.sub("", text))]
    salary_min: int | None = None
    salary_max: int | None = None
    if len(numbers) == 1:
        up_to = any(lowered.lstrip().startswith(m) for m in _UP_TO_MARKERS)
        from_ = any(lowered.lstrip().startswith(m) for m in _FROM_MARKERS)
        if up_to and not from_:
            salary_max = numbers[0]
        else:
            salary_min = numbers[0]
    elif len(numbers) >= 2:
        salary_min, salary_max = numbers[0], numbers[1]

    upper = text.upper()
    currency = "RUB"
    if "USD" in upper or "$" in text:
        currency = "USD"
    elif "EUR" in upper or "€" in text:
        currency = "EUR"

    return VacancySalary(
        min=salary_min,
        max=salary_max,
        currency=currency,
        gross=any(m in lowered for m in _GROSS_MARKERS),
    )


def parse_work_mode(text: str | None) -> VacancyWorkMode:
    if not text:
        return VacancyWorkMode.UNKNOWN
    lowered = text.lower()
    for mode, markers in WORK_MODE_MARKERS:
        if any(m in lowered for m in markers):
            return mode
    return VacancyWorkMode.UNKNOWN


def extract_external_id(url: str) -> str | None:
    match = _VACANCY_ID_RE.search(url)
    return match.group(1) if match else None


def card_hash(site_id: str, url: str, title: str) -> str:
    return sha256_hex(f"{site_id}|{url}|{normalize_text(title)}")


def card_from_raw(raw: RawVacancyCard, site_id: str) -> VacancyCard:
    """Normalize a scraped card. The card id is unique per capture."""
    external_id = raw.external_id or extract_external_id(raw.url)
    return VacancyCard(
        id=uuid.uuid4().hex[:12],
        site_id=site_id,
        external_id=external_id,
        url=raw.url,
        title=raw.title.strip(),
        company=(raw.company or "").strip() or None,
        city=(raw.city or "").strip() or None,
        work_mode=parse_work_mode(raw.work_mode_text),
        salary=parse_salary(raw.salary_text),
        published_at=raw.published_at_text,
        card_hash=card_hash(site_id, raw.url, raw.title),
    )


def query_fingerprint(site_id: str, filters: dict[str, Any]) -> str:
    """Stable hash of the filters a batch was collected under."""
    payload = json.dumps(filters, sort_keys=True, ensure_ascii=False, default=str)
    return sha256_hex(f"{site_id}|{payload}")[:16]
