"""Configuration models and YAML loader for the vacancy agent."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from vacancy_agent.core.schemas import UserConstraints, WorkMode
from vacancy_agent.core.sites import DEFAULT_SITE_ID, get_site


class ConstraintsConfig(BaseModel):
    """What the user is willing to accept, independent of any site."""

    work_modes: list[WorkMode] = Field(default_factory=lambda: [WorkMode.REMOTE])
    min_salary: int | None = Field(default=None, ge=0)
    currency: str = "RUB"
    city: str | None = None
    target_languages: list[str] = Field(default_factory=lambda: ["ru"])
    strict_work_mode: bool = False

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        if not v.strip():
            msg = "currency must not be empty"
            raise ValueError(msg)
        return v.strip().upper()

    def to_user_constraints(self) -> UserConstraints:
        return UserConstraints(
            preferred_work_modes=list(self.work_modes),
            min_salary=self.min_salary,
            currency=self.currency,
            city=self.city,
            target_languages=list(self.target_languages),
            strict_work_mode=self.strict_work_mode,
        )


class BrowserConfig(BaseModel):
    """Browser session configuration."""

    cookies_path: str = "config/hh_cookies.json"
    timeout_ms: int = Field(default=30000, ge=1000)


class LLMConfig(BaseModel):
    provider: str = "anthropic"
    model: str | None = None
    max_profile_chars: int = Field(default=5000, ge=500)
    # Per-session token budget; None disables a limit.
    token_soft_limit: int | None = Field(default=150_000, ge=1)
    token_hard_limit: int | None = Field(default=200_000, ge=1)

    @model_validator(mode="after")
    def limits_ordered(self) -> "LLMConfig":
        soft, hard = self.token_soft_limit, self.token_hard_limit
        if soft is not None and hard is not None and soft > hard:
            msg = "llm.token_soft_limit must be <= llm.token_hard_limit"
            raise ValueError(msg)
        return self


class PacingConfig(BaseModel):
    """Randomized delays, in seconds, between automated interactions."""

    step_delay_min: float = Field(default=1.0, ge=0.0)
    step_delay_max: float = Field(default=2.5, ge=0.0)
    retry_backoff_min: float = Field(default=2.0, ge=0.0)
    retry_backoff_max: float = Field(default=4.0, ge=0.0)
    page_delay_min: float = Field(default=3.0, ge=0.0)
    page_delay_max: float = Field(default=6.0, ge=0.0)

    @model_validator(mode="after")
    def ranges_ordered(self) -> "PacingConfig":
        for name in ("step_delay", "retry_backoff", "page_delay"):
            if getattr(self, f"{name}_max") < getattr(self, f"{name}_min"):
                msg = f"pacing.{name}_max must be >= pacing.{name}_min"
                raise ValueError(msg)
        return self


class CollectionConfig(BaseModel):
    cards_per_batch: int = Field(default=15, ge=1, le=50)


class ApplyConfig(BaseModel):
    enabled: bool = True
    cover_letter_template: str = (
        "Здравствуйте! Меня заинтересовала вакансия «{title}». "
        "Мой опыт соответствует требованиям, буду рад обсудить детали."
    )
    success_text_hints: list[str] = Field(
        default_factory=lambda: ["Резюме доставлено", "Вы откликнулись", "Отклик отправлен"],
    )


class StorageConfig(BaseModel):
    """Artifact storage configuration."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "data/agent.db"


class SessionConfig(BaseModel):
    max_log_items: int = Field(default=50, ge=20)
    max_transitions: int = Field(default=500, ge=10)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    site_id: str = DEFAULT_SITE_ID
    constraints: ConstraintsConfig = Field(default_factory=ConstraintsConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    search_overrides: dict[str, Any] = Field(default_factory=dict)

    @field_validator("site_id")
    @classmethod
    def site_is_enabled(cls, v: str) -> str:
        get_site(v)
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
