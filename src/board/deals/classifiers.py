"""Deterministic priority and staleness classification for deals.

Both classifiers are pure and total: every well-typed input maps to a tier,
and missing values are handled by defaults rather than exceptions.

Thresholds:
    Priority (weighted amount):  >= 500,000 -> HOT, >= 100,000 -> WARM
    Staleness (rotting days):    >= 14 -> CRITICAL, >= 9 -> WARNING

The rotting quick filter uses its own boundary (>= 10 days, see
filtering.ROTTING_QUICK_FILTER_DAYS).
"""

from __future__ import annotations

from src.board.deals.schemas import (
    Deal,
    DealStatus,
    PriorityTier,
    Severity,
    compute_weighted_amount,
)

HOT_WEIGHTED_THRESHOLD = 500_000
WARM_WEIGHTED_THRESHOLD = 100_000

CRITICAL_ROTTING_DAYS = 14
WARNING_ROTTING_DAYS = 9

# Column ordering rank: hot cards first.
PRIORITY_RANK: dict[PriorityTier, int] = {
    PriorityTier.HOT: 0,
    PriorityTier.WARM: 1,
    PriorityTier.NORMAL: 2,
}


def classify_priority(amount: int, probability: int) -> PriorityTier:
    """Classify a deal's priority tier from its weighted amount.

    Args:
        amount: Deal amount (non-negative integer).
        probability: Close probability, 0-100.

    Returns:
        HOT if weighted >= 500,000; WARM if weighted >= 100,000; NORMAL otherwise.
    """
    weighted = compute_weighted_amount(amount, probability)
    if weighted >= HOT_WEIGHTED_THRESHOLD:
        return PriorityTier.HOT
    if weighted >= WARM_WEIGHTED_THRESHOLD:
        return PriorityTier.WARM
    return PriorityTier.NORMAL


def staleness_severity(rotting_days: int | None, status: DealStatus) -> Severity:
    """Classify how stale a deal is.

    Won and lost deals are never stale, whatever their rotting count.

    Args:
        rotting_days: Days since the last stage change (None counts as 0).
        status: Current deal status.

    Returns:
        CRITICAL if >= 14 days; WARNING if >= 9 days; NONE otherwise.
    """
    if status != DealStatus.OPEN:
        return Severity.NONE
    days = rotting_days or 0
    if days >= CRITICAL_ROTTING_DAYS:
        return Severity.CRITICAL
    if days >= WARNING_ROTTING_DAYS:
        return Severity.WARNING
    return Severity.NONE


def deal_priority(deal: Deal) -> PriorityTier:
    """Priority tier of a deal at its current amount and probability."""
    return classify_priority(deal.amount, deal.probability)


def deal_severity(deal: Deal) -> Severity:
    """Staleness severity of a deal at its current status."""
    return staleness_severity(deal.rotting_days, deal.status)
