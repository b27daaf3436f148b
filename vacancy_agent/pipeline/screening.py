"""Candidate selection for the AI batch calls and the apply queue build."""

import logging
import uuid

from vacancy_agent.core.schemas import TargetingSpec
from vacancy_agent.core.vacancies import (
    ApplyQueue,
    ApplyQueueItem,
    EvaluationBatch,
    EvaluationResult,
    EvaluationSummary,
    EvaluationVerdict,
    ExtractionBatch,
    ExtractionStatus,
    PrefilterBatch,
    PrefilterDecision,
    PrefilterResult,
    ScreeningBatch,
    ScreeningDecision,
    ScreeningSummary,
    ScreeningVerdict,
    VacancyCard,
    VacancyCardBatch,
    VacancyExtract,
)
from vacancy_agent.ports.ai import EvaluationCandidate, ScreeningCard, ScreeningInput

logger = logging.getLogger(__name__)

SCREENING_BATCH_SIZE = 15
EVALUATION_BATCH_SIZE = 15

_DECISION_RANK = {PrefilterDecision.READ_CANDIDATE: 0, PrefilterDecision.DEFER: 1}


def select_screening_candidates(
    prefilter: PrefilterBatch, limit: int = SCREENING_BATCH_SIZE,
) -> list[PrefilterResult]:
    """READ_CANDIDATE before DEFER, then by score descending, capped at ``limit``."""
    eligible = [r for r in prefilter.results if r.decision in _DECISION_RANK]
    ranked = sorted(eligible, key=lambda r: (_DECISION_RANK[r.decision], -r.score))
    return ranked[:limit]


def build_screening_input(
    site_id: str,
    candidates: list[PrefilterResult],
    batch: VacancyCardBatch,
    targeting: TargetingSpec,
) -> ScreeningInput:
    cards: list[ScreeningCard] = []
    for result in candidates:
        card = batch.card(result.card_id)
        if card is None:
            continue
        cards.append(ScreeningCard(
            id=card.id,
            title=card.title,
            company=card.company,
            salary=_salary_label(card),
            work_mode=card.work_mode.value,
            url=card.url,
            prefilter_score=result.score,
        ))
    return ScreeningInput(
        site_id=site_id,
        target_roles=targeting.target_roles.all_titles(),
        seniority=list(targeting.seniority_levels),
        match_weights=targeting.title_match_weights,
        cards=cards,
    )


def _salary_label(card: VacancyCard) -> str | None:
    if card.salary is None or not card.salary.is_known:
        return None
    low = card.salary.min if card.salary.min is not None else "?"
    high = card.salary.max if card.salary.max is not None else "?"
    return f"{low}-{high} {card.salary.currency}"


def keep_known_decisions(
    decisions: list[ScreeningDecision], sent_ids: set[str],
) -> tuple[ScreeningDecision, ...]:
    """Drop decisions for cards that were not part of the request."""
    kept = tuple(d for d in decisions if d.card_id in sent_ids)
    if len(kept) != len(decisions):
        logger.warning("Dropped %d screening decisions for unknown cards", len(decisions) - len(kept))
    return kept


def summarize_screening(decisions: tuple[ScreeningDecision, ...]) -> ScreeningSummary:
    return ScreeningSummary(
        read=sum(1 for d in decisions if d.decision == ScreeningVerdict.READ),
        defer=sum(1 for d in decisions if d.decision == ScreeningVerdict.DEFER),
        ignore=sum(1 for d in decisions if d.decision == ScreeningVerdict.IGNORE),
    )


def select_extraction_targets(
    screening: ScreeningBatch, batch: VacancyCardBatch,
) -> list[VacancyCard]:
    cards: list[VacancyCard] = []
    for decision in screening.decisions:
        if decision.decision != ScreeningVerdict.READ:
            continue
        card = batch.card(decision.card_id)
        if card is not None:
            cards.append(card)
    return cards


def select_evaluation_candidates(
    extraction: ExtractionBatch, limit: int = EVALUATION_BATCH_SIZE,
) -> list[EvaluationCandidate]:
    usable = [e for e in extraction.results if e.extraction_status != ExtractionStatus.FAILED]
    return [
        EvaluationCandidate(id=e.vacancy_id, title=e.title, sections=e.sections)
        for e in usable[:limit]
    ]


def summarize_evaluation(results: tuple[EvaluationResult, ...]) -> EvaluationSummary:
    return EvaluationSummary(
        apply=sum(1 for r in results if r.decision == EvaluationVerdict.APPLY),
        skip=sum(1 for r in results if r.decision == EvaluationVerdict.SKIP),
        needs_human=sum(1 for r in results if r.decision == EvaluationVerdict.NEEDS_HUMAN),
    )


def build_apply_queue(evaluation: EvaluationBatch, extraction: ExtractionBatch) -> ApplyQueue:
    """Queue every APPLY result as PENDING, with the URL it was extracted from."""
    extracts: dict[str, VacancyExtract] = {e.vacancy_id: e for e in extraction.results}
    items: list[ApplyQueueItem] = []
    for result in evaluation.results:
        if result.decision != EvaluationVerdict.APPLY:
            continue
        extract = extracts.get(result.vacancy_id)
        if extract is None:
            logger.warning("Evaluated vacancy %s has no extract; not queued", result.vacancy_id)
            continue
        items.append(ApplyQueueItem(
            vacancy_id=result.vacancy_id, url=extract.url, title=extract.title,
        ))
    return ApplyQueue(
        id=uuid.uuid4().hex,
        site_id=evaluation.site_id,
        input_eval_batch_id=evaluation.id,
        items=tuple(items),
    )
