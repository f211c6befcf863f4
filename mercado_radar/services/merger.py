"""Collapse candidate promotions that share market and validity window."""

from __future__ import annotations

import logging

from mercado_radar.schemas import CandidatePromotion

logger = logging.getLogger(__name__)


def merge_promotions_by_period(
    promotions: list[CandidatePromotion],
) -> list[CandidatePromotion]:
    """Return one candidate per ``(market, start, end)`` key.

    Keys are exact ISO date strings: overlapping or adjacent windows stay
    separate.  Posts of merged candidates are concatenated in input order
    without dedup (the persister skips repeated post codes).  The first
    candidate of each key keeps its title.  Input objects are not mutated.
    """
    grouped: dict[tuple[str, str, str], CandidatePromotion] = {}
    for promotion in promotions:
        key = promotion.period_key
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = CandidatePromotion(
                market_name=promotion.market_name,
                title=promotion.title,
                start_date=promotion.start_date,
                end_date=promotion.end_date,
                posts=list(promotion.posts),
            )
        else:
            existing.posts.extend(promotion.posts)

    merged = list(grouped.values())
    if len(merged) != len(promotions):
        logger.info("Merged %d candidate promotions into %d", len(promotions), len(merged))
    return merged
