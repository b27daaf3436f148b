"""hh.ru DOM selector constants with fallbacks.

Ordered by stability: data-qa > name/aria > class names.
Each constant is a tuple so callers iterate until a match is found.
"""

# --- Search results ---
CARD_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-serp__vacancy"]',
    '[data-qa^="vacancy-serp__vacancy vacancy-serp-item"]',
    "div.vacancy-card--z_UXteNo7bRGzxWVcL7y",
)

TITLE_LINK_SELECTORS: tuple[str, ...] = (
    'a[data-qa="serp-item__title"]',
    'span[data-qa="serp-item__title-text"]',
    'a[href*="/vacancy/"]',
)

COMPANY_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-serp__vacancy-employer"]',
    '[data-qa="vacancy-serp__vacancy-employer-text"]',
)

SALARY_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-serp__vacancy-compensation"]',
    'span[class*="compensation"]',
)

CITY_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-serp__vacancy-address"]',
    '[data-qa="vacancy-serp__vacancy-address_narrow"]',
)

WORK_MODE_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-label-work-schedule-remote"]',
    '[data-qa*="vacancy-label-work-schedule"]',
    '[data-qa="vacancy-serp__vacancy-work-schedule"]',
)

PUBLISHED_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-serp__vacancy-date"]',
    "time",
)

NEXT_PAGE_SELECTORS: tuple[str, ...] = (
    'a[data-qa="pager-next"]',
)

# --- Vacancy detail page ---
DESCRIPTION_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-description"]',
    "div.vacancy-description",
    "div.g-user-content",
)

DETAIL_SALARY_SELECTORS: tuple[str, ...] = (
    '[data-qa="vacancy-salary"]',
    '[data-qa="vacancy-salary-compensation-type-net"]',
    '[data-qa="vacancy-salary-compensation-type-gross"]',
)

DETAIL_WORK_MODE_SELECTORS: tuple[str, ...] = (
    '[data-qa="work-formats-text"]',
    '[data-qa="vacancy-view-employment-mode"]',
    '[data-qa="vacancy-view-work-schedule"]',
)

# Section headings inside the description, lowercased prefixes.
REQUIREMENTS_HEADINGS: tuple[str, ...] = ("требования", "мы ждем", "мы ожидаем", "requirements")
RESPONSIBILITIES_HEADINGS: tuple[str, ...] = ("обязанности", "задачи", "responsibilities")
CONDITIONS_HEADINGS: tuple[str, ...] = ("условия", "мы предлагаем", "что мы предлагаем", "benefits")

# --- Apply flow ---
APPLY_BUTTON_SELECTORS: tuple[str, ...] = (
    'a[data-qa="vacancy-response-link-top"]',
    'a[data-qa="vacancy-response-link-bottom"]',
    'button[data-qa="vacancy-response-link-top"]',
)

APPLY_MODAL_SELECTORS: tuple[str, ...] = (
    '[data-qa="modal-overlay"] .bloko-modal',
    ".bloko-modal",
    '[role="dialog"]',
)

COVER_LETTER_SELECTORS: tuple[str, ...] = (
    'textarea[data-qa="vacancy-response-popup-form-letter-input"]',
    'textarea[name="letter"]',
    'textarea[name="message"]',
)

COVER_LETTER_TOGGLE_SELECTORS: tuple[str, ...] = (
    'button[data-qa="vacancy-response-letter-toggle"]',
    'button[data-qa="add-cover-letter"]',
)

RESUME_SELECT_SELECTORS: tuple[str, ...] = (
    '[data-qa="resume-select"]',
    '[data-qa^="vacancy-response-popup-resume"]',
)

SUBMIT_SELECTORS: tuple[str, ...] = (
    'button[data-qa="vacancy-response-submit-popup"]',
    'button[data-qa="vacancy-response-letter-submit"]',
    'button[type="submit"]',
)

QUESTIONNAIRE_SELECTORS: tuple[str, ...] = (
    '[data-qa="task-body"]',
    '[data-qa="employer-asking-for-test"]',
)
