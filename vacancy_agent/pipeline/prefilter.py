"""Deterministic prefilter: salary gate, work-mode gate and title score.

Missing data gets the benefit of the doubt: an unknown salary or work mode
never fails a gate. Only a known mismatch does.
"""

import logging
import uuid

from vacancy_agent.core.schemas import SalaryStrategy, TargetingSpec, WorkMode
from vacancy_agent.core.vacancies import (
    DedupDecision,
    DedupedBatch,
    GateOutcome,
    PrefilterBatch,
    PrefilterDecision,
    PrefilterGates,
    PrefilterResult,
    PrefilterSummary,
    PrefilterThresholds,
    VacancyCard,
    VacancyCardBatch,
    VacancyWorkMode,
)
from vacancy_agent.pipeline.normalize import normalize_text, tokenize

logger = logging.getLogger(__name__)

READ_THRESHOLD = 0.7
DEFER_THRESHOLD = 0.4

# Weight of the token-overlap ratio when no target title matches as a substring.
FUZZY_CEILING = 0.5


def salary_gate(card: VacancyCard, targeting: TargetingSpec) -> tuple[GateOutcome, str | None]:
    salary = card.salary
    if salary is None or not salary.is_known:
        return GateOutcome.UNKNOWN, "salary_unknown"
    minimum = targeting.user_constraints.min_salary
    if minimum is None or targeting.salary_rules.min_threshold_strategy == SalaryStrategy.IGNORE:
        return GateOutcome.PASS, None
    if salary.max is not None and salary.max < minimum:
        return GateOutcome.FAIL, "salary_below_threshold"
    return GateOutcome.PASS, None


def work_mode_gate(
    card: VacancyCard, targeting: TargetingSpec,
) -> tuple[GateOutcome, str | None]:
    constraints = targeting.user_constraints
    wanted = {m.value for m in constraints.preferred_work_modes}
    if not wanted or WorkMode.ANY.value in wanted:
        return GateOutcome.PASS, None
    if card.work_mode == VacancyWorkMode.UNKNOWN:
        return GateOutcome.PASS, "work_mode_unknown"
    if card.work_mode.value in wanted:
        return GateOutcome.PASS, None
    if card.work_mode == VacancyWorkMode.HYBRID and WorkMode.OFFICE.value in wanted:
        return GateOutcome.PASS, None
    if constraints.strict_work_mode or targeting.work_mode_rules.strict_mode:
        return GateOutcome.FAIL, "work_mode_mismatch"
    return GateOutcome.PASS, "work_mode_mismatch_tolerated"


def title_score(title: str, targeting: TargetingSpec) -> tuple[float, str]:
    """Score a title in [-1, 1] against the target roles."""
    normalized = normalize_text(title)
    for keyword in targeting.title_match_weights.negative_keywords:
        needle = normalize_text(keyword)
        if needle and needle in normalized:
            return -1.0, f"negative_keyword:{needle}"

    targets = [normalize_text(t) for t in targeting.target_roles.all_titles() if t.strip()]
    for target in targets:
        if target in normalized:
            return 1.0, f"title_match:{target}"

    title_tokens = tokenize(normalized)
    best = 0.0
    for target in targets:
        target_tokens = tokenize(target)
        if not target_tokens:
            continue
        best = max(best, len(title_tokens & target_tokens) / len(target_tokens))
    return round(FUZZY_CEILING * best, 4), f"title_overlap:{best:.2f}"


def decide(gates: PrefilterGates, score: float) -> PrefilterDecision:
    if GateOutcome.FAIL in (gates.salary, gates.work_mode) or score < 0:
        return PrefilterDecision.REJECT
    if score >= READ_THRESHOLD:
        return PrefilterDecision.READ_CANDIDATE
    if score >= DEFER_THRESHOLD:
        return PrefilterDecision.DEFER
    return PrefilterDecision.REJECT


def prefilter_card(card: VacancyCard, targeting: TargetingSpec) -> PrefilterResult:
    salary, salary_reason = salary_gate(card, targeting)
    work_mode, work_mode_reason = work_mode_gate(card, targeting)
    score, title_reason = title_score(card.title, targeting)
    gates = PrefilterGates(salary=salary, work_mode=work_mode)
    reasons = [r for r in (salary_reason, work_mode_reason, title_reason) if r]
    return PrefilterResult(
        card_id=card.id,
        decision=decide(gates, score),
        score=score,
        reasons=reasons,
        gates=gates,
    )


def run_prefilter(
    batch: VacancyCardBatch,
    deduped: DedupedBatch,
    targeting: TargetingSpec,
) -> PrefilterBatch:
    """Prefilter every SELECTED card of ``deduped``."""
    results: list[PrefilterResult] = []
    for entry in deduped.results:
        if entry.decision != DedupDecision.SELECTED:
            continue
        card = batch.card(entry.card_id)
        if card is None:
            logger.warning("Deduped card %s not found in batch %s", entry.card_id, batch.batch_id)
            continue
        results.append(prefilter_card(card, targeting))

    summary = PrefilterSummary(
        read=sum(1 for r in results if r.decision == PrefilterDecision.READ_CANDIDATE),
        defer=sum(1 for r in results if r.decision == PrefilterDecision.DEFER),
        reject=sum(1 for r in results if r.decision == PrefilterDecision.REJECT),
    )
    return PrefilterBatch(
        id=uuid.uuid4().hex,
        site_id=deduped.site_id,
        input_batch_id=deduped.id,
        thresholds=PrefilterThresholds(read=READ_THRESHOLD, defer=DEFER_THRESHOLD),
        results=tuple(results),
        summary=summary,
    )
