"""Tests for the deterministic prefilter: gates, title score and decisions."""

import pytest

from vacancy_agent.core.schemas import (
    SalaryRules,
    SalaryStrategy,
    TargetingSpec,
    TargetRoles,
    TitleMatchWeights,
    UserConstraints,
    WorkMode,
)
from vacancy_agent.core.vacancies import (
    DedupDecision,
    DedupedBatch,
    DedupedCardResult,
    GateOutcome,
    PrefilterDecision,
    VacancyCard,
    VacancyCardBatch,
    VacancySalary,
    VacancyWorkMode,
)
from vacancy_agent.pipeline.prefilter import (
    DEFER_THRESHOLD,
    READ_THRESHOLD,
    prefilter_card,
    run_prefilter,
    salary_gate,
    title_score,
    work_mode_gate,
)


def _targeting(
    *,
    min_salary: int | None = 300000,
    modes: list[WorkMode] | None = None,
    strict: bool = False,
    negative: list[str] | None = None,
    strategy: SalaryStrategy = SalaryStrategy.STRICT,
) -> TargetingSpec:
    return TargetingSpec(
        target_roles=TargetRoles(ru_titles=["Python разработчик"], en_titles=["Python Developer"]),
        title_match_weights=TitleMatchWeights(negative_keywords=negative or []),
        salary_rules=SalaryRules(min_threshold_strategy=strategy),
        user_constraints=UserConstraints(
            preferred_work_modes=modes if modes is not None else [WorkMode.REMOTE],
            min_salary=min_salary,
            strict_work_mode=strict,
        ),
    )


def _card(
    title: str = "Senior Python Developer",
    *,
    salary: VacancySalary | None = None,
    work_mode: VacancyWorkMode = VacancyWorkMode.UNKNOWN,
    card_id: str = "c1",
) -> VacancyCard:
    return VacancyCard(
        id=card_id,
        site_id="hh.ru",
        url=f"https://hh.ru/vacancy/{card_id}",
        title=title,
        card_hash=f"h-{card_id}",
        salary=salary,
        work_mode=work_mode,
    )


# ---------------------------------------------------------------------------
# TestSalaryGate
# ---------------------------------------------------------------------------


class TestSalaryGate:
    def test_max_below_minimum_fails(self) -> None:
        outcome, reason = salary_gate(_card(salary=VacancySalary(max=250000)), _targeting())
        assert outcome == GateOutcome.FAIL
        assert reason == "salary_below_threshold"

    def test_unknown_salary(self) -> None:
        assert salary_gate(_card(), _targeting())[0] == GateOutcome.UNKNOWN

    def test_only_min_known_passes(self) -> None:
        assert salary_gate(_card(salary=VacancySalary(min=100000)), _targeting())[0] == GateOutcome.PASS

    def test_ignore_strategy_passes(self) -> None:
        targeting = _targeting(strategy=SalaryStrategy.IGNORE)
        assert salary_gate(_card(salary=VacancySalary(max=1)), targeting)[0] == GateOutcome.PASS

    def test_no_minimum_passes(self) -> None:
        targeting = _targeting(min_salary=None)
        assert salary_gate(_card(salary=VacancySalary(max=1)), targeting)[0] == GateOutcome.PASS


# ---------------------------------------------------------------------------
# TestWorkModeGate
# ---------------------------------------------------------------------------


class TestWorkModeGate:
    def test_unknown_mode_gets_benefit_of_doubt(self) -> None:
        outcome, reason = work_mode_gate(_card(), _targeting(strict=True))
        assert outcome == GateOutcome.PASS
        assert reason == "work_mode_unknown"

    def test_strict_mismatch_fails(self) -> None:
        card = _card(work_mode=VacancyWorkMode.OFFICE)
        assert work_mode_gate(card, _targeting(strict=True))[0] == GateOutcome.FAIL

    def test_tolerated_mismatch_passes(self) -> None:
        outcome, reason = work_mode_gate(_card(work_mode=VacancyWorkMode.OFFICE), _targeting())
        assert outcome == GateOutcome.PASS
        assert reason == "work_mode_mismatch_tolerated"

    def test_hybrid_satisfies_office(self) -> None:
        card = _card(work_mode=VacancyWorkMode.HYBRID)
        targeting = _targeting(modes=[WorkMode.OFFICE], strict=True)
        assert work_mode_gate(card, targeting)[0] == GateOutcome.PASS

    def test_any_mode_passes(self) -> None:
        card = _card(work_mode=VacancyWorkMode.OFFICE)
        targeting = _targeting(modes=[WorkMode.ANY], strict=True)
        assert work_mode_gate(card, targeting) == (GateOutcome.PASS, None)


# ---------------------------------------------------------------------------
# TestTitleScore
# ---------------------------------------------------------------------------


class TestTitleScore:
    def test_substring_match(self) -> None:
        score, reason = title_score("Senior Python Developer (Django)", _targeting())
        assert score == 1.0
        assert reason.startswith("title_match:")

    def test_russian_title_match(self) -> None:
        assert title_score("Ведущий Python разработчик", _targeting())[0] == 1.0

    def test_negative_keyword_forces_minus_one(self) -> None:
        score, reason = title_score("Python Developer 1C", _targeting(negative=["1c"]))
        assert score == -1.0
        assert reason == "negative_keyword:1c"

    def test_partial_overlap_scaled(self) -> None:
        score, _ = title_score("Python Engineer", _targeting())
        assert score == pytest.approx(0.25)

    def test_no_overlap(self) -> None:
        assert title_score("Бухгалтер", _targeting())[0] == 0.0


# ---------------------------------------------------------------------------
# TestDecision
# ---------------------------------------------------------------------------


class TestDecision:
    def test_salary_fail_rejects_despite_title(self) -> None:
        result = prefilter_card(
            _card("Python Developer", salary=VacancySalary(max=250000)), _targeting(),
        )
        assert result.gates.salary == GateOutcome.FAIL
        assert result.score == 1.0
        assert result.decision == PrefilterDecision.REJECT

    def test_negative_keyword_never_passes(self) -> None:
        card = _card("Python Developer стажер", salary=VacancySalary(min=400000),
                     work_mode=VacancyWorkMode.REMOTE)
        result = prefilter_card(card, _targeting(negative=["стажер"]))
        assert result.decision == PrefilterDecision.REJECT

    def test_read_candidate(self) -> None:
        result = prefilter_card(_card("Python Developer"), _targeting())
        assert result.decision == PrefilterDecision.READ_CANDIDATE
        assert "salary_unknown" in result.reasons

    def test_thresholds_ordered(self) -> None:
        assert DEFER_THRESHOLD < READ_THRESHOLD


class TestRunPrefilter:
    def test_only_selected_cards(self) -> None:
        cards = (_card(card_id="a"), _card(card_id="b"), _card("Бухгалтер", card_id="c"))
        batch = VacancyCardBatch(batch_id="b1", site_id="hh.ru", query_fingerprint="fp", cards=cards)
        deduped = DedupedBatch(
            id="d1",
            batch_id="b1",
            site_id="hh.ru",
            results=(
                DedupedCardResult(card_id="a", decision=DedupDecision.SELECTED, dedup_key="k1"),
                DedupedCardResult(card_id="b", decision=DedupDecision.DUPLICATE, dedup_key="k1"),
                DedupedCardResult(card_id="c", decision=DedupDecision.SELECTED, dedup_key="k2"),
            ),
        )
        result = run_prefilter(batch, deduped, _targeting())
        assert [r.card_id for r in result.results] == ["a", "c"]
        assert result.input_batch_id == "d1"
        assert (result.summary.read, result.summary.reject) == (1, 1)
        assert result.thresholds.read == READ_THRESHOLD
