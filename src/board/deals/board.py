"""Board aggregator -- groups deals by stage and computes pipeline KPIs.

Column ordering is fixed: priority tier first (hot, warm, normal), then
amount descending. It is independent of the table sort. Each column surfaces
at most ``column_cap`` cards and reports how many more sit below.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from src.board.config import get_settings
from src.board.deals.classifiers import PRIORITY_RANK, deal_priority, deal_severity
from src.board.deals.filtering import ROTTING_QUICK_FILTER_DAYS
from src.board.deals.schemas import (
    BoardView,
    Deal,
    DealStatus,
    PipelineKPIs,
    PriorityTier,
    Severity,
    Stage,
    StageColumn,
)

logger = structlog.get_logger(__name__)


def _column_order_key(deal: Deal) -> tuple[int, int]:
    return PRIORITY_RANK[deal_priority(deal)], -deal.amount


def build_column(stage: Stage, deals: Sequence[Deal], column_cap: int) -> StageColumn:
    """Build one stage column from the deals already selected for it."""
    ordered = sorted(deals, key=_column_order_key)
    return StageColumn(
        stage=stage,
        count=len(ordered),
        total_amount=sum(d.amount for d in ordered),
        critical_count=sum(1 for d in ordered if deal_severity(d) == Severity.CRITICAL),
        hot_count=sum(1 for d in ordered if deal_priority(d) == PriorityTier.HOT),
        deals=ordered[:column_cap],
        overflow=max(0, len(ordered) - column_cap),
    )


def build_board(
    deals: Iterable[Deal],
    stages: Iterable[Stage],
    *,
    column_cap: int | None = None,
) -> BoardView:
    """Group a filtered deal set into stage columns.

    Args:
        deals: Filtered (not necessarily sorted) deals.
        stages: Stage catalog of the active pipeline.
        column_cap: Cards surfaced per column. Defaults to BOARD_COLUMN_CAP.

    Returns:
        BoardView with one column per stage, in display order.
    """
    cap = column_cap if column_cap is not None else get_settings().BOARD_COLUMN_CAP
    cap = max(0, cap)
    ordered_stages = sorted(stages, key=lambda s: s.display_order)

    by_stage: dict[str, list[Deal]] = {stage.id: [] for stage in ordered_stages}
    orphaned = 0
    for deal in deals:
        bucket = by_stage.get(deal.stage_id)
        if bucket is None:
            orphaned += 1
            continue
        bucket.append(deal)

    if orphaned:
        logger.debug("board.deals_outside_catalog", count=orphaned)

    columns = [build_column(stage, by_stage[stage.id], cap) for stage in ordered_stages]
    return BoardView(columns=columns, column_cap=cap)


def compute_kpis(deals: Iterable[Deal]) -> PipelineKPIs:
    """Aggregate pipeline KPIs over a deal set (usually the filtered one).

    Win rate is won / (won + lost), 0 when nothing has been decided.
    Rotting figures only consider open deals.
    """
    deal_list = list(deals)
    open_deals = [d for d in deal_list if d.status == DealStatus.OPEN]
    won_deals = [d for d in deal_list if d.status == DealStatus.WON]
    lost_count = sum(1 for d in deal_list if d.status == DealStatus.LOST)

    decided = len(won_deals) + lost_count
    win_rate = len(won_deals) / decided if decided else 0.0
    avg_rotting = (
        sum(d.rotting_days for d in open_deals) / len(open_deals) if open_deals else 0.0
    )

    return PipelineKPIs(
        total_open_amount=sum(d.amount for d in open_deals),
        total_weighted_amount=sum(d.weighted_amount for d in open_deals),
        total_won_amount=sum(d.amount for d in won_deals),
        open_count=len(open_deals),
        won_count=len(won_deals),
        lost_count=lost_count,
        win_rate=win_rate,
        avg_rotting_days=avg_rotting,
        rotting_count=sum(
            1 for d in open_deals if d.rotting_days >= ROTTING_QUICK_FILTER_DAYS
        ),
    )
