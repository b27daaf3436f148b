"""Registry of target sites the agent knows how to drive."""

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SITE_ID = "hh.ru"


class SiteDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    base_url: str
    search_url: str
    enabled: bool = True
    profile_link_keywords: list[str] = Field(default_factory=list)
    login_url_hints: list[str] = Field(default_factory=lambda: ["login", "auth"])


SITES: dict[str, SiteDefinition] = {
    "hh.ru": SiteDefinition(
        id="hh.ru",
        label="HeadHunter",
        base_url="https://hh.ru",
        search_url="https://hh.ru/search/vacancy/advanced",
        profile_link_keywords=["мои резюме", "резюме", "my resumes"],
        login_url_hints=["/account/login", "/auth"],
    ),
    "linkedin": SiteDefinition(
        id="linkedin",
        label="LinkedIn",
        base_url="https://www.linkedin.com",
        search_url="https://www.linkedin.com/jobs/search/",
        enabled=False,
        profile_link_keywords=["view profile", "me"],
        login_url_hints=["/login", "/checkpoint", "/authwall"],
    ),
}


def get_site(site_id: str) -> SiteDefinition:
    """Return the definition for an enabled site.

    Raises:
        ValueError: If the site is unknown or disabled.
    """
    site = SITES.get(site_id)
    if site is None:
        valid = ", ".join(sorted(SITES))
        msg = f"Unknown site '{site_id}'. Available: {valid}"
        raise ValueError(msg)
    if not site.enabled:
        msg = f"Site '{site_id}' is not enabled"
        raise ValueError(msg)
    return site


def enabled_sites() -> list[str]:
    return sorted(s.id for s in SITES.values() if s.enabled)
