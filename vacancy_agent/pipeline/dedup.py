"""Deduplication of a collected card batch against itself and the seen index.

Cards are grouped by a dedup key, one card per group is selected, and the
selected keys are appended to the cross-run seen index so the same posting
is never surfaced twice.
"""

import logging
import uuid
from datetime import datetime

from vacancy_agent.core.vacancies import (
    DedupDecision,
    DedupedBatch,
    DedupedCardResult,
    DedupSummary,
    SeenIndex,
    VacancyCard,
    VacancyCardBatch,
    VacancySalary,
    VacancyWorkMode,
)
from vacancy_agent.pipeline.normalize import normalize_text, sha256_hex

logger = logging.getLogger(__name__)


def salary_signature(salary: VacancySalary | None) -> str:
    if salary is None or not salary.is_known:
        return "none"
    low = "" if salary.min is None else str(salary.min)
    high = "" if salary.max is None else str(salary.max)
    return f"{low}-{high}-{salary.currency}"


def dedup_key(card: VacancyCard) -> str:
    """``EXT:<id>`` when the site exposes an id, else a content hash."""
    if card.external_id:
        return f"EXT:{card.external_id}"
    signature = "|".join((
        normalize_text(card.title),
        normalize_text(card.company or ""),
        salary_signature(card.salary),
    ))
    return f"HASH:{sha256_hex(signature)[:16]}"


def completeness(card: VacancyCard) -> int:
    score = 0
    if card.salary is not None and card.salary.is_known:
        score += 2
    if card.work_mode != VacancyWorkMode.UNKNOWN:
        score += 1
    return score


def in_city(card: VacancyCard, user_city: str | None) -> bool:
    if not user_city or not card.city:
        return False
    return normalize_text(user_city) in normalize_text(card.city)


def _rank(card: VacancyCard, user_city: str | None) -> tuple[bool, int, str]:
    return (not in_city(card, user_city), -completeness(card), card.card_hash)


def dedup_batch(
    batch: VacancyCardBatch,
    seen: SeenIndex | None,
    user_city: str | None,
) -> DedupedBatch:
    """Decide SELECTED / DUPLICATE / SKIP_SEEN for every card in ``batch``."""
    seen_keys = set(seen.seen_keys if seen is not None else ())
    groups: dict[str, list[int]] = {}
    for idx, card in enumerate(batch.cards):
        groups.setdefault(dedup_key(card), []).append(idx)

    decisions: dict[int, tuple[DedupDecision, str]] = {}
    for key, members in groups.items():
        if key in seen_keys:
            for idx in members:
                decisions[idx] = (DedupDecision.SKIP_SEEN, key)
            continue
        ranked = sorted(members, key=lambda i: (*_rank(batch.cards[i], user_city), i))
        decisions[ranked[0]] = (DedupDecision.SELECTED, key)
        for idx in ranked[1:]:
            decisions[idx] = (DedupDecision.DUPLICATE, key)

    results = tuple(
        DedupedCardResult(card_id=card.id, decision=decisions[idx][0], dedup_key=decisions[idx][1])
        for idx, card in enumerate(batch.cards)
    )
    summary = DedupSummary(
        total=len(results),
        selected=sum(1 for r in results if r.decision == DedupDecision.SELECTED),
        duplicates=sum(1 for r in results if r.decision == DedupDecision.DUPLICATE),
        seen=sum(1 for r in results if r.decision == DedupDecision.SKIP_SEEN),
    )
    logger.debug(
        "Dedup %s: %d selected, %d duplicates, %d seen",
        batch.batch_id, summary.selected, summary.duplicates, summary.seen,
    )

    return DedupedBatch(
        id=uuid.uuid4().hex,
        batch_id=batch.batch_id,
        site_id=batch.site_id,
        user_city=user_city,
        results=results,
        summary=summary,
    )


def grow_seen_index(deduped: DedupedBatch, seen: SeenIndex | None) -> SeenIndex | None:
    """Return ``seen`` extended by the batch's selected keys.

    Returns None when every selected key is already recorded, so calling this
    again after a completed write is a no-op.
    """
    previous = seen.seen_keys if seen is not None else ()
    known = set(previous)
    missing = [
        r.dedup_key for r in deduped.results
        if r.decision == DedupDecision.SELECTED and r.dedup_key not in known
    ]
    if not missing:
        return None
    return SeenIndex(
        site_id=deduped.site_id,
        seen_keys=(*previous, *missing),
        last_updated_at=datetime.now(),
    )
