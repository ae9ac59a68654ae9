#!/usr/bin/env python3
"""CLI script to print a pipeline board snapshot.

Usage:
    uv run python scripts/board_snapshot.py
    uv run python scripts/board_snapshot.py --view table --sort expected_close_date --direction asc
    uv run python scripts/board_snapshot.py --quick-filter rotting --status all
    uv run python scripts/board_snapshot.py --demo --move deal-3 stage-closing

Reads deals from the REST Deal Store configured by DEAL_STORE_URL (environment
or .env file), or from a built-in sample pipeline with --demo. --move runs one
stage transition through the coordinator before printing.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import date, timedelta

# Ensure project root is on sys.path so we can import src.board
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _demo_store():
    """Three-stage sample pipeline with a handful of deals."""
    from src.board.deals.schemas import Deal, DealStatus, Pipeline, Stage
    from src.board.deals.store.memory import InMemoryDealStore

    stages = (
        Stage(id="stage-prospecting", pipeline_id="demo", name="Prospecting", probability=10, display_order=1),
        Stage(id="stage-proposal", pipeline_id="demo", name="Proposal", probability=50, display_order=2),
        Stage(id="stage-closing", pipeline_id="demo", name="Closing", probability=90, display_order=3),
    )
    today = date.today()
    deals = [
        Deal(id="deal-1", title="Acme rollout", amount=250_000, probability=10, stage_id="stage-prospecting",
             pipeline_id="demo", owner_id="u-1", owner_name="Ana Souza", account_name="Acme", rotting_days=3),
        Deal(id="deal-2", title="Globex renewal", amount=80_000, probability=50, stage_id="stage-proposal",
             pipeline_id="demo", owner_id="u-2", owner_name="Bruno Lima", account_name="Globex",
             rotting_days=11, expected_close_date=today + timedelta(days=12)),
        Deal(id="deal-3", title="Initech platform", amount=1_000_000, probability=50, stage_id="stage-proposal",
             pipeline_id="demo", owner_id="u-1", owner_name="Ana Souza", account_name="Initech", rotting_days=15),
        Deal(id="deal-4", title="Umbrella pilot", amount=120_000, probability=90, stage_id="stage-closing",
             pipeline_id="demo", owner_id="u-3", owner_name="Carla Dias", account_name="Umbrella",
             status=DealStatus.WON),
    ]
    pipeline = Pipeline(id="demo", name="Demo pipeline", is_default=True, stages=stages)
    return InMemoryDealStore(pipelines=[pipeline], deals=deals)


async def snapshot(args: argparse.Namespace) -> None:
    """Load the pipeline, optionally move a deal, and print the requested view."""
    from src.board.core.logging import configure_structlog
    from src.board.config import get_settings
    from src.board.deals.schemas import (
        AdvancedFilters,
        FilterCriteria,
        QuickFilter,
        SortDirection,
        SortField,
        SortSpec,
    )
    from src.board.deals.state import PipelineBoardState
    from src.board.deals.store import HttpDealStore, resolve_pipeline
    from src.board.deals.transitions import TransitionCoordinator

    configure_structlog()
    settings = get_settings()

    store = _demo_store() if args.demo else HttpDealStore.from_settings()
    pipeline = await resolve_pipeline(store, args.pipeline or settings.DEFAULT_PIPELINE_ID or None)

    state = PipelineBoardState(pipeline.id)
    await state.load(store)

    if args.move:
        deal_id, stage_id = args.move
        result = await TransitionCoordinator(state, store).move(deal_id, stage_id)
        print(f"Move {deal_id} -> {stage_id}: {result.outcome.value}")
        if result.error:
            print(f"  {result.error}")

    criteria = FilterCriteria(
        search=args.search,
        quick_filter=QuickFilter(args.quick_filter),
        advanced=AdvancedFilters(status=args.status, owner_id=args.owner),
    )
    sort = SortSpec(field=SortField(args.sort), direction=SortDirection(args.direction))
    view = state.view(criteria, sort, current_user_id=args.user)

    print(f"Pipeline: {pipeline.name} ({len(view.table)} deals visible)")

    if args.view == "board":
        for column in view.board.columns:
            print(
                f"\n[{column.stage.name} {column.stage.probability}%] "
                f"{column.count} deals, {column.total_amount:,} total, "
                f"{column.hot_count} hot, {column.critical_count} critical"
            )
            for deal in column.deals:
                print(f"  - {deal.title}: {deal.amount:,} (weighted {deal.weighted_amount:,})")
            if column.overflow:
                print(f"  ... {column.overflow} more below")
    elif args.view == "table":
        for deal in view.table:
            close = deal.expected_close_date.isoformat() if deal.expected_close_date else "-"
            print(
                f"{deal.title:<30} {deal.amount:>12,} {deal.status.value:<6} "
                f"{deal.rotting_days:>3}d  {close}  {deal.owner_name or ''}"
            )
    else:
        kpis = view.kpis
        print(f"Open pipeline:   {kpis.total_open_amount:,} ({kpis.open_count} deals)")
        print(f"Weighted:        {kpis.total_weighted_amount:,}")
        print(f"Won:             {kpis.total_won_amount:,} ({kpis.won_count} deals)")
        print(f"Win rate:        {kpis.win_rate:.1%}")
        print(f"Avg rotting:     {kpis.avg_rotting_days:.1f}d ({kpis.rotting_count} rotting)")


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a pipeline board snapshot")
    parser.add_argument("--demo", action="store_true", help="Use the built-in sample pipeline")
    parser.add_argument("--pipeline", default=None, help="Pipeline id (default: store default)")
    parser.add_argument("--view", choices=["board", "table", "kpis"], default="board")
    parser.add_argument("--search", default="", help="Search title, account or owner")
    parser.add_argument(
        "--quick-filter",
        choices=["all", "mine", "rotting", "highvalue", "closing"],
        default="all",
    )
    parser.add_argument("--status", choices=["open", "won", "lost", "all"], default="all")
    parser.add_argument("--owner", default=None, help="Owner id filter")
    parser.add_argument(
        "--user", default=None, help="Current user id for the 'mine' filter (default: CURRENT_USER_ID)"
    )
    parser.add_argument(
        "--sort",
        choices=["amount", "rotting_days", "expected_close_date", "title", "stage", "owner", "status"],
        default="amount",
    )
    parser.add_argument("--direction", choices=["asc", "desc"], default="desc")
    parser.add_argument("--move", nargs=2, metavar=("DEAL_ID", "STAGE_ID"), help="Move a deal first")
    args = parser.parse_args()

    asyncio.run(snapshot(args))


if __name__ == "__main__":
    main()
