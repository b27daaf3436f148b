"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from vacancy_agent.core.config import (
    CollectionConfig,
    ConstraintsConfig,
    LLMConfig,
    PacingConfig,
    SessionConfig,
    Settings,
    StorageConfig,
)
from vacancy_agent.core.schemas import WorkMode
from vacancy_agent.core.sites import enabled_sites, get_site


class TestConstraintsConfig:
    def test_defaults(self) -> None:
        c = ConstraintsConfig()
        assert c.work_modes == [WorkMode.REMOTE]
        assert c.min_salary is None
        assert c.currency == "RUB"

    def test_currency_normalized(self) -> None:
        assert ConstraintsConfig(currency=" usd ").currency == "USD"

    def test_empty_currency_rejected(self) -> None:
        with pytest.raises(ValidationError, match="currency must not be empty"):
            ConstraintsConfig(currency="  ")

    def test_negative_salary_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConstraintsConfig(min_salary=-1)

    def test_to_user_constraints(self) -> None:
        uc = ConstraintsConfig(
            work_modes=[WorkMode.REMOTE, WorkMode.HYBRID],
            min_salary=250000,
            city="Москва",
            strict_work_mode=True,
        ).to_user_constraints()
        assert uc.preferred_work_modes == [WorkMode.REMOTE, WorkMode.HYBRID]
        assert uc.min_salary == 250000
        assert uc.city == "Москва"
        assert uc.strict_work_mode is True


class TestPacingConfig:
    def test_defaults_are_ordered(self) -> None:
        p = PacingConfig()
        assert p.step_delay_min <= p.step_delay_max
        assert p.page_delay_min <= p.page_delay_max

    def test_inverted_range_rejected(self) -> None:
        with pytest.raises(ValidationError, match="retry_backoff_max must be >="):
            PacingConfig(retry_backoff_min=5.0, retry_backoff_max=1.0)

    def test_zero_delays_allowed(self) -> None:
        p = PacingConfig(step_delay_min=0, step_delay_max=0)
        assert p.step_delay_max == 0


class TestBounds:
    def test_cards_per_batch_bounds(self) -> None:
        with pytest.raises(ValidationError):
            CollectionConfig(cards_per_batch=0)
        with pytest.raises(ValidationError):
            CollectionConfig(cards_per_batch=51)

    def test_session_limits(self) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(max_log_items=5)

    def test_storage_backend_literal(self) -> None:
        with pytest.raises(ValidationError):
            StorageConfig(backend="redis")  # type: ignore[arg-type]

    def test_token_limits_ordered(self) -> None:
        with pytest.raises(ValidationError, match="token_soft_limit must be <="):
            LLMConfig(token_soft_limit=300, token_hard_limit=200)

    def test_token_limits_optional(self) -> None:
        config = LLMConfig(token_soft_limit=None, token_hard_limit=None)
        assert config.token_hard_limit is None
        assert LLMConfig(token_soft_limit=None).token_hard_limit == 200_000


class TestSites:
    def test_hh_is_enabled(self) -> None:
        site = get_site("hh.ru")
        assert site.base_url == "https://hh.ru"
        assert "hh.ru" in enabled_sites()

    def test_disabled_site_rejected(self) -> None:
        with pytest.raises(ValueError, match="not enabled"):
            get_site("linkedin")

    def test_unknown_site_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown site 'nope'"):
            get_site("nope")


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings()
        assert s.site_id == "hh.ru"
        assert s.llm.provider == "anthropic"
        assert s.storage.backend == "sqlite"
        assert s.search_overrides == {}

    def test_disabled_site_rejected(self) -> None:
        with pytest.raises(ValidationError, match="not enabled"):
            Settings(site_id="linkedin")

    def test_from_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(dedent("""\
            site_id: hh.ru
            constraints:
              work_modes: [REMOTE, HYBRID]
              min_salary: 300000
              city: Москва
            llm:
              provider: openai
              model: gpt-4o
            storage:
              backend: memory
            search_overrides:
              salary: 350000
              area: null
        """))
        s = Settings.from_yaml(config_file)
        assert s.constraints.min_salary == 300000
        assert s.constraints.work_modes == [WorkMode.REMOTE, WorkMode.HYBRID]
        assert s.llm.model == "gpt-4o"
        assert s.storage.backend == "memory"
        assert s.search_overrides == {"salary": 350000, "area": None}

    def test_from_yaml_empty_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")
        assert Settings.from_yaml(config_file).site_id == "hh.ru"

    def test_from_yaml_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            Settings.from_yaml(tmp_path / "nope.yaml")

    def test_from_yaml_bad_work_mode(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("constraints:\n  work_modes: [SPACE]\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(config_file)

    def test_example_file_loads(self) -> None:
        example = Path(__file__).parents[2] / "config" / "settings.example.yaml"
        s = Settings.from_yaml(example)
        assert s.constraints.city == "Москва"
        assert "{title}" in s.apply.cover_letter_template
