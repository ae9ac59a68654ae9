"""Sort engine for the table view.

One active field plus a direction. The sort is stable in both directions:
deals with equal keys keep their input order, because descending order is
produced by negating the comparison rather than reversing the result.

Missing-value policy:
- amount / rotting_days: missing rotting counts as 0.
- expected_close_date: missing dates always sort last, in either direction.
- owner: missing owner name compares as "".
- stage: the probability of the deal's current stage stands in for funnel
  position. Two stages sharing a probability compare equal.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from functools import cmp_to_key
from typing import Any

from src.board.deals.schemas import Deal, DealStatus, SortDirection, SortField, SortSpec, Stage

STATUS_ORDER: dict[DealStatus, int] = {
    DealStatus.WON: 0,
    DealStatus.OPEN: 1,
    DealStatus.LOST: 2,
}


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _stage_probability(deal: Deal, stages: Mapping[str, Stage]) -> int:
    stage = stages.get(deal.stage_id)
    if stage is not None:
        return stage.probability
    return deal.probability


def _key_for(field: SortField, stages: Mapping[str, Stage]) -> Callable[[Deal], Any]:
    if field == SortField.AMOUNT:
        return lambda d: d.amount
    if field == SortField.ROTTING_DAYS:
        return lambda d: d.rotting_days
    if field == SortField.TITLE:
        return lambda d: d.title.lower()
    if field == SortField.OWNER:
        return lambda d: (d.owner_name or "").lower()
    if field == SortField.STAGE:
        return lambda d: _stage_probability(d, stages)
    if field == SortField.STATUS:
        return lambda d: STATUS_ORDER.get(d.status, 1)
    return lambda d: d.expected_close_date


def make_comparator(
    spec: SortSpec, stages: Mapping[str, Stage] | None = None
) -> Callable[[Deal, Deal], int]:
    """Build a three-way comparator for ``spec``.

    Args:
        spec: Active sort field and direction.
        stages: Stage catalog by id, used by the stage sort.

    Returns:
        Comparator returning <0, 0 or >0 like the classic cmp().
    """
    key = _key_for(spec.field, stages or {})
    sign = 1 if spec.direction == SortDirection.ASC else -1

    if spec.field == SortField.EXPECTED_CLOSE_DATE:

        def compare_dates(a: Deal, b: Deal) -> int:
            ka, kb = key(a), key(b)
            if ka is None or kb is None:
                # Missing dates sink to the bottom regardless of direction
                return (ka is None) - (kb is None)
            return sign * _cmp(ka, kb)

        return compare_dates

    def compare(a: Deal, b: Deal) -> int:
        return sign * _cmp(key(a), key(b))

    return compare


def sort_deals(
    deals: Iterable[Deal],
    spec: SortSpec | None = None,
    stages: Iterable[Stage] | None = None,
) -> list[Deal]:
    """Return a new list of deals ordered by ``spec`` (default: amount descending).

    Args:
        deals: Deals to sort (typically the filtered set). Not modified.
        spec: Sort field and direction.
        stages: Stage catalog for the stage sort. Deals whose stage is not in
            the catalog fall back to their own probability.
    """
    spec = spec or SortSpec()
    catalog = {stage.id: stage for stage in stages or ()}
    return sorted(deals, key=cmp_to_key(make_comparator(spec, catalog)))
