"""Unit tests for the board aggregator and KPIs.

Tests cover:
- one column per stage, in display order, including empty stages
- column metrics: count, total, hot and critical counts
- intra-column ordering: priority tier, then amount descending
- column cap and overflow count
- deals outside the stage catalog are dropped
- compute_kpis aggregates
"""

from __future__ import annotations

import pytest

from src.board.deals.board import build_board, compute_kpis
from src.board.deals.schemas import Deal, DealStatus, Stage


def _make_deal(deal_id: str, **overrides) -> Deal:
    """Create a test Deal with sensible defaults."""
    defaults = {
        "id": deal_id,
        "title": f"Deal {deal_id}",
        "amount": 10_000,
        "probability": 50,
        "stage_id": "st-a",
        "pipeline_id": "p-1",
        "owner_id": "u-1",
    }
    defaults.update(overrides)
    return Deal(**defaults)


@pytest.fixture
def board_stages() -> list[Stage]:
    # Deliberately out of display order
    return [
        Stage(id="st-c", pipeline_id="p-1", name="C", probability=90, display_order=3),
        Stage(id="st-a", pipeline_id="p-1", name="A", probability=10, display_order=1),
        Stage(id="st-b", pipeline_id="p-1", name="B", probability=50, display_order=2),
    ]


# ── Columns ─────────────────────────────────────────────────────────────────


class TestColumns:
    """Tests for column layout and metrics."""

    def test_columns_follow_display_order(self, board_stages: list[Stage]) -> None:
        board = build_board([], board_stages, column_cap=8)
        assert [c.stage.id for c in board.columns] == ["st-a", "st-b", "st-c"]

    def test_empty_stage_has_zero_metrics(self, board_stages: list[Stage]) -> None:
        board = build_board([_make_deal("x")], board_stages, column_cap=8)
        empty = board.column("st-c")
        assert empty is not None
        assert empty.count == 0
        assert empty.total_amount == 0
        assert empty.deals == []
        assert empty.overflow == 0

    def test_column_metrics(self, board_stages: list[Stage]) -> None:
        deals = [
            _make_deal("hot", amount=2_000_000, probability=50, stage_id="st-b"),
            _make_deal("stale", amount=50_000, rotting_days=20, stage_id="st-b"),
            _make_deal("won-stale", amount=50_000, rotting_days=20, status=DealStatus.WON, stage_id="st-b"),
        ]
        column = build_board(deals, board_stages, column_cap=8).column("st-b")
        assert column is not None
        assert column.count == 3
        assert column.total_amount == 2_100_000
        assert column.hot_count == 1
        assert column.critical_count == 1

    def test_column_lookup_unknown(self, board_stages: list[Stage]) -> None:
        assert build_board([], board_stages, column_cap=8).column("nope") is None

    def test_deals_outside_catalog_dropped(self, board_stages: list[Stage]) -> None:
        deals = [_make_deal("in"), _make_deal("out", stage_id="st-zzz")]
        board = build_board(deals, board_stages, column_cap=8)
        assert sum(c.count for c in board.columns) == 1


# ── Ordering ────────────────────────────────────────────────────────────────


class TestColumnOrdering:
    """Tests for fixed intra-column ordering."""

    def test_priority_then_amount(self, board_stages: list[Stage]) -> None:
        deals = [
            _make_deal("normal-big", amount=190_000, probability=50),  # weighted 95k
            _make_deal("warm", amount=300_000, probability=50),  # weighted 150k
            _make_deal("hot", amount=1_000_000, probability=50),  # weighted 500k
            _make_deal("normal-small", amount=20_000, probability=50),
            _make_deal("warm-big", amount=900_000, probability=50),  # weighted 450k
        ]
        column = build_board(deals, board_stages, column_cap=8).column("st-a")
        assert column is not None
        assert [d.id for d in column.deals] == [
            "hot",
            "warm-big",
            "warm",
            "normal-big",
            "normal-small",
        ]

    def test_independent_of_input_order(self, board_stages: list[Stage]) -> None:
        deals = [_make_deal(str(i), amount=i * 1_000) for i in range(1, 6)]
        forward = build_board(deals, board_stages, column_cap=8).column("st-a")
        backward = build_board(list(reversed(deals)), board_stages, column_cap=8).column("st-a")
        assert forward is not None and backward is not None
        assert [d.id for d in forward.deals] == [d.id for d in backward.deals]


# ── Cap ─────────────────────────────────────────────────────────────────────


class TestColumnCap:
    """Tests for the per-column card cap."""

    def test_twelve_deals_default_cap(self, board_stages: list[Stage]) -> None:
        deals = [_make_deal(f"d{i}", amount=1_000 * (i + 1)) for i in range(12)]
        board = build_board(deals, board_stages)
        column = board.column("st-a")
        assert column is not None
        assert board.column_cap == 8
        assert len(column.deals) == 8
        assert column.overflow == 4
        assert column.count == 12
        # The largest eight are surfaced
        assert column.deals[0].id == "d11"
        assert column.deals[-1].id == "d4"

    def test_metrics_cover_hidden_deals(self, board_stages: list[Stage]) -> None:
        deals = [_make_deal(f"d{i}", amount=100) for i in range(5)]
        column = build_board(deals, board_stages, column_cap=2).column("st-a")
        assert column is not None
        assert column.total_amount == 500
        assert column.overflow == 3

    def test_exactly_cap_has_no_overflow(self, board_stages: list[Stage]) -> None:
        deals = [_make_deal(f"d{i}") for i in range(3)]
        column = build_board(deals, board_stages, column_cap=3).column("st-a")
        assert column is not None
        assert column.overflow == 0


# ── KPIs ────────────────────────────────────────────────────────────────────


class TestComputeKpis:
    """Tests for pipeline KPI aggregation."""

    def test_empty_set(self) -> None:
        kpis = compute_kpis([])
        assert kpis.open_count == 0
        assert kpis.win_rate == 0.0
        assert kpis.avg_rotting_days == 0.0

    def test_aggregates(self) -> None:
        deals = [
            _make_deal("o1", amount=1_000, probability=50, rotting_days=10),
            _make_deal("o2", amount=3_000, probability=10, rotting_days=2),
            _make_deal("w1", amount=5_000, status=DealStatus.WON, rotting_days=40),
            _make_deal("l1", amount=7_000, status=DealStatus.LOST),
            _make_deal("l2", amount=9_000, status=DealStatus.LOST),
        ]
        kpis = compute_kpis(deals)
        assert kpis.total_open_amount == 4_000
        assert kpis.total_weighted_amount == 500 + 300
        assert kpis.total_won_amount == 5_000
        assert (kpis.open_count, kpis.won_count, kpis.lost_count) == (2, 1, 2)
        assert kpis.win_rate == pytest.approx(1 / 3)
        assert kpis.avg_rotting_days == pytest.approx(6.0)
        assert kpis.rotting_count == 1
