"""Filter engine for the pipeline board.

Composes a single predicate from the search text, one quick filter, and the
advanced filter set. Every active criterion is ANDed. No criterion raises:
missing optional fields (close date, owner name) simply do not match
range/date based criteria, and contradictory bounds (min > max) match nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import date, timedelta

import structlog

from src.board.deals.schemas import (
    AdvancedFilters,
    Deal,
    DealStatus,
    FilterCriteria,
    OwnerOption,
    QuickFilter,
)

logger = structlog.get_logger(__name__)

DealPredicate = Callable[[Deal], bool]

HIGH_VALUE_AMOUNT = 500_000
# Quick-filter boundary, distinct from the staleness warning threshold (9)
ROTTING_QUICK_FILTER_DAYS = 10
CLOSING_WINDOW_DAYS = 30


# ── Individual criteria ─────────────────────────────────────────────────────


def matches_search(deal: Deal, search: str) -> bool:
    """Case-insensitive substring match on title, account name or owner name."""
    needle = search.strip().lower()
    if not needle:
        return True
    haystacks = (deal.title, deal.account_name, deal.owner_name)
    return any(h is not None and needle in h.lower() for h in haystacks)


def matches_quick_filter(
    deal: Deal,
    quick_filter: QuickFilter,
    *,
    current_user_id: str | None,
    today: date,
    closing_window_days: int = CLOSING_WINDOW_DAYS,
) -> bool:
    """Apply one quick filter preset."""
    if quick_filter == QuickFilter.MINE:
        return current_user_id is not None and deal.owner_id == current_user_id
    if quick_filter == QuickFilter.ROTTING:
        return deal.status == DealStatus.OPEN and deal.rotting_days >= ROTTING_QUICK_FILTER_DAYS
    if quick_filter == QuickFilter.HIGH_VALUE:
        return deal.amount >= HIGH_VALUE_AMOUNT
    if quick_filter == QuickFilter.CLOSING:
        close = deal.expected_close_date
        if close is None:
            return False
        return today <= close <= today + timedelta(days=closing_window_days)
    return True


def matches_advanced(deal: Deal, advanced: AdvancedFilters) -> bool:
    """Apply the advanced filter set (owner, status, amount range, rotting min)."""
    if advanced.owner_id is not None and deal.owner_id != advanced.owner_id:
        return False
    if advanced.status not in (None, "all") and deal.status != advanced.status:
        return False
    if advanced.amount_min is not None and deal.amount < advanced.amount_min:
        return False
    if advanced.amount_max is not None and deal.amount > advanced.amount_max:
        return False
    if advanced.rotting_min is not None and deal.rotting_days < advanced.rotting_min:
        return False
    return True


# ── Composition ─────────────────────────────────────────────────────────────


def build_predicate(
    criteria: FilterCriteria,
    *,
    current_user_id: str | None = None,
    today: date | None = None,
    closing_window_days: int = CLOSING_WINDOW_DAYS,
) -> DealPredicate:
    """Build one predicate combining every active criterion with AND.

    Args:
        criteria: Search text, quick filter and advanced filters.
        current_user_id: Caller's user id, required for the "mine" preset.
        today: Reference date for the "closing" preset (defaults to date.today()).
        closing_window_days: Width of the "closing" window, inclusive.

    Returns:
        Callable returning True for deals that pass every criterion.
    """
    reference_day = today or date.today()
    # Snapshot the criteria; later edits must not reach an already built predicate
    search = criteria.search
    quick_filter = criteria.quick_filter
    advanced = criteria.advanced.model_copy()

    if (
        advanced.amount_min is not None
        and advanced.amount_max is not None
        and advanced.amount_min > advanced.amount_max
    ):
        logger.debug(
            "filter.empty_amount_range",
            amount_min=advanced.amount_min,
            amount_max=advanced.amount_max,
        )
        return lambda deal: False

    if quick_filter == QuickFilter.MINE and not current_user_id:
        logger.warning("filter.mine_without_current_user")

    predicates: list[DealPredicate] = []
    if search.strip():
        predicates.append(lambda deal: matches_search(deal, search))
    if quick_filter != QuickFilter.ALL:
        predicates.append(
            lambda deal: matches_quick_filter(
                deal,
                quick_filter,
                current_user_id=current_user_id,
                today=reference_day,
                closing_window_days=closing_window_days,
            )
        )
    predicates.append(lambda deal: matches_advanced(deal, advanced))

    def predicate(deal: Deal) -> bool:
        return all(check(deal) for check in predicates)

    return predicate


def filter_deals(
    deals: Iterable[Deal],
    criteria: FilterCriteria,
    *,
    current_user_id: str | None = None,
    today: date | None = None,
    closing_window_days: int = CLOSING_WINDOW_DAYS,
) -> list[Deal]:
    """Return the deals passing ``criteria``, in their original order."""
    predicate = build_predicate(
        criteria,
        current_user_id=current_user_id,
        today=today,
        closing_window_days=closing_window_days,
    )
    return [deal for deal in deals if predicate(deal)]


# ── Presentation helpers ────────────────────────────────────────────────────


def active_filter_count(advanced: AdvancedFilters) -> int:
    """Number of advanced filters the user has changed from the board reset state.

    Status counts whenever it is set to anything other than "open"
    (including "all", which widens the default view).
    """
    count = sum(
        1
        for value in (
            advanced.owner_id,
            advanced.amount_min,
            advanced.amount_max,
            advanced.rotting_min,
        )
        if value is not None
    )
    if advanced.status is not None and advanced.status != DealStatus.OPEN:
        count += 1
    return count


def owner_options(deals: Iterable[Deal]) -> list[OwnerOption]:
    """Distinct owners with a known name, in first-seen order."""
    seen: dict[str, str] = {}
    for deal in deals:
        if deal.owner_id and deal.owner_name and deal.owner_id not in seen:
            seen[deal.owner_id] = deal.owner_name
    return [OwnerOption(id=owner_id, full_name=name) for owner_id, name in seen.items()]
