"""Tests for the TransitionCoordinator move protocol and drag gestures.

Tests cover:
- same-stage drop is a no-op with zero store calls
- successful move: optimistic update, exactly one store call, final state
- failed move: error surfaced, full resync to store state
- failed resync: stale flag and combined error
- resync voided by a concurrent move is reissued; confirmed moves survive reloads
- transport and payload failures from the REST store take the resync path
- rejection of unknown deals and stages
- drag state machine (Idle / Dragging) and in-flight drag refusal
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.board.deals.classifiers import deal_priority
from src.board.deals.schemas import Deal, Pipeline, PriorityTier, Stage
from src.board.deals.state import PipelineBoardState
from src.board.deals.store.adapter import DealValidationError, TransientStoreError
from src.board.deals.store.http import HttpDealStore
from src.board.deals.store.memory import InMemoryDealStore
from src.board.deals.transitions import (
    MAX_RESYNC_ATTEMPTS,
    Dragging,
    Idle,
    MoveOutcome,
    TransitionCoordinator,
)

PIPELINE_ID = "pipe-main"


def _slow_setup(
    stages: list[Stage], seed_deals: list[Deal]
) -> tuple[InMemoryDealStore, PipelineBoardState, TransitionCoordinator]:
    """Store answering every call after 50ms, with a state and coordinator over it."""
    pipeline = Pipeline(id=PIPELINE_ID, name="Main", stages=tuple(stages))
    slow_store = InMemoryDealStore(pipelines=[pipeline], deals=seed_deals, latency=0.05)
    state = PipelineBoardState(PIPELINE_ID)
    state.apply_snapshot(state.issue_sequence(), seed_deals, stages)
    return slow_store, state, TransitionCoordinator(state, slow_store)


# ── Move protocol ───────────────────────────────────────────────────────────


class TestMove:
    """Tests for TransitionCoordinator.move."""

    @pytest.mark.asyncio
    async def test_same_stage_is_noop(
        self,
        coordinator: TransitionCoordinator,
        store: InMemoryDealStore,
        state: PipelineBoardState,
    ) -> None:
        before = state.deals
        result = await coordinator.move("d-big", "st-proposal")

        assert result.outcome == MoveOutcome.NOOP
        assert store.move_calls == []
        assert state.deals == before

    @pytest.mark.asyncio
    async def test_proposal_to_closing(
        self,
        coordinator: TransitionCoordinator,
        store: InMemoryDealStore,
        state: PipelineBoardState,
    ) -> None:
        """1,000,000 at 50% moved to a 90% stage becomes weighted 900,000, hot."""
        result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.CONFIRMED
        assert result.error is None
        assert store.move_calls == [("d-big", "st-closing")]

        deal = state.get_deal("d-big")
        assert deal.stage_id == "st-closing"
        assert deal.probability == 90
        assert deal.weighted_amount == 900_000
        assert deal_priority(deal) == PriorityTier.HOT

        column = state.view().board.column("st-closing")
        assert column is not None
        assert "d-big" in [d.id for d in column.deals]
        assert column.hot_count == 1

    @pytest.mark.asyncio
    async def test_store_records_stage_change(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore
    ) -> None:
        await coordinator.move("d-small", "st-proposal")

        stored = store.get("d-small")
        assert stored.stage_id == "st-proposal"
        assert stored.probability == 50
        assert len(store.activities) == 1
        assert store.activities[0].from_stage == "Prospecting"
        assert store.activities[0].to_stage == "Proposal"

    @pytest.mark.asyncio
    async def test_unknown_stage_rejected(
        self,
        coordinator: TransitionCoordinator,
        store: InMemoryDealStore,
        state: PipelineBoardState,
    ) -> None:
        before = state.deals
        result = await coordinator.move("d-big", "st-nowhere")

        assert result.outcome == MoveOutcome.REJECTED
        assert "st-nowhere" in result.error
        assert store.move_calls == []
        assert state.deals == before

    @pytest.mark.asyncio
    async def test_unknown_deal_rejected(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore
    ) -> None:
        result = await coordinator.move("d-ghost", "st-closing")

        assert result.outcome == MoveOutcome.REJECTED
        assert store.move_calls == []

    @pytest.mark.asyncio
    async def test_optimistic_state_visible_while_persisting(
        self, stages: list[Stage], seed_deals: list[Deal]
    ) -> None:
        slow_store, state, coordinator = _slow_setup(stages, seed_deals)

        task = asyncio.create_task(coordinator.move("d-big", "st-closing"))
        await asyncio.sleep(0)

        assert state.get_deal("d-big").stage_id == "st-closing"
        assert slow_store.get("d-big").stage_id == "st-proposal"
        assert coordinator.in_flight == frozenset({"d-big"})
        assert coordinator.start_drag("d-big") is False
        assert coordinator.start_drag("d-small") is True

        result = await task
        assert result.outcome == MoveOutcome.CONFIRMED
        assert coordinator.in_flight == frozenset()


# ── Failure recovery ────────────────────────────────────────────────────────


class TestMoveFailure:
    """Tests for failed persistence and resync."""

    @pytest.mark.asyncio
    async def test_failure_resyncs_to_store_state(
        self,
        coordinator: TransitionCoordinator,
        store: InMemoryDealStore,
        state: PipelineBoardState,
    ) -> None:
        store.fail_next_move(TransientStoreError("gateway timeout"))

        result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.RESYNCED
        assert store.move_calls == [("d-big", "st-closing")]
        assert list(state.deals) == await store.list_deals(PIPELINE_ID)
        assert state.get_deal("d-big").stage_id == "st-proposal"
        assert state.get_deal("d-big").probability == 50
        assert not state.stale
        assert coordinator.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_failure_surfaces_error(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore, state: PipelineBoardState
    ) -> None:
        store.fail_next_move(DealValidationError("stage locked"))

        result = await coordinator.move("d-big", "st-closing")

        expected = "Could not move 'Initech platform' to Closing: stage locked"
        assert result.error == expected
        assert state.error == expected
        assert state.view().error == expected

    @pytest.mark.asyncio
    async def test_resync_picks_up_server_side_changes(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore, state: PipelineBoardState
    ) -> None:
        """Whatever the store holds after a failure is what the board shows."""
        await store.move_deal_to_stage("d-small", "st-closing")
        store.fail_next_move(TransientStoreError("boom"))

        await coordinator.move("d-big", "st-closing")

        assert state.get_deal("d-small").stage_id == "st-closing"

    @pytest.mark.asyncio
    async def test_resync_failure_marks_stale(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore, state: PipelineBoardState
    ) -> None:
        store.fail_next_move(TransientStoreError("boom"))

        with patch.object(store, "list_deals", AsyncMock(side_effect=TransientStoreError("store down"))):
            result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.RESYNC_FAILED
        assert state.stale
        assert "Reload failed: store down" in state.error
        assert result.error == state.error

    @pytest.mark.asyncio
    async def test_next_load_clears_stale(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore, state: PipelineBoardState
    ) -> None:
        store.fail_next_move(TransientStoreError("boom"))
        with patch.object(store, "list_deals", AsyncMock(side_effect=TransientStoreError("down"))):
            await coordinator.move("d-big", "st-closing")

        await state.load(store)

        assert not state.stale
        assert state.get_deal("d-big").stage_id == "st-proposal"

    @pytest.mark.asyncio
    async def test_superseded_resync_is_reissued(
        self, stages: list[Stage], seed_deals: list[Deal]
    ) -> None:
        """A move landing while a resync loads voids it; the resync runs again."""
        slow_store, state, coordinator = _slow_setup(stages, seed_deals)
        slow_store.fail_next_move(TransientStoreError("boom"))

        failing = asyncio.create_task(coordinator.move("d-big", "st-closing"))
        # The failed call returns at ~50ms and its reload runs until ~100ms
        await asyncio.sleep(0.07)
        other = await coordinator.move("d-small", "st-proposal")
        failed = await failing

        assert failed.outcome == MoveOutcome.RESYNCED
        assert other.outcome == MoveOutcome.CONFIRMED
        for stored in await slow_store.list_deals(PIPELINE_ID):
            assert state.get_deal(stored.id).stage_id == stored.stage_id
        assert state.get_deal("d-big").stage_id == "st-proposal"
        assert state.get_deal("d-small").stage_id == "st-proposal"
        assert not state.stale

    @pytest.mark.asyncio
    async def test_resync_always_superseded_marks_stale(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore, state: PipelineBoardState
    ) -> None:
        store.fail_next_move(TransientStoreError("boom"))

        with patch.object(state, "load", AsyncMock(return_value=False)) as mock_load:
            result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.RESYNC_FAILED
        assert mock_load.await_count == MAX_RESYNC_ATTEMPTS
        assert state.stale
        assert "superseded" in state.error

    @pytest.mark.asyncio
    async def test_confirmed_move_survives_concurrent_reload(
        self,
        coordinator: TransitionCoordinator,
        store: InMemoryDealStore,
        state: PipelineBoardState,
        stages: list[Stage],
        seed_deals: list[Deal],
    ) -> None:
        """A reload read before the move persisted must not undo a confirmed move."""
        persist = store.move_deal_to_stage

        async def persist_then_reload(deal_id: str, stage_id: str) -> Deal:
            stored = await persist(deal_id, stage_id)
            state.apply_snapshot(state.issue_sequence(), seed_deals, stages)
            return stored

        with patch.object(store, "move_deal_to_stage", side_effect=persist_then_reload):
            result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.CONFIRMED
        assert state.get_deal("d-big").stage_id == "st-closing"
        assert state.get_deal("d-big").probability == 90

    @pytest.mark.asyncio
    async def test_network_error_from_http_store_resyncs(
        self, state: PipelineBoardState, store: InMemoryDealStore
    ) -> None:
        """Transport failures other than connect/timeout still take the resync path."""
        http_store = HttpDealStore(base_url="https://crm.test/api/v1")
        coordinator = TransitionCoordinator(state, http_store)
        deals = await store.list_deals(PIPELINE_ID)
        stages = await store.list_stages(PIPELINE_ID)

        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, side_effect=httpx.ReadError("conn reset")),
            patch.object(http_store, "list_deals", AsyncMock(return_value=deals)),
            patch.object(http_store, "list_stages", AsyncMock(return_value=stages)),
        ):
            result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.RESYNCED
        assert "conn reset" in result.error
        assert state.get_deal("d-big").stage_id == "st-proposal"
        assert coordinator.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_malformed_move_response_resyncs(
        self, state: PipelineBoardState, store: InMemoryDealStore
    ) -> None:
        http_store = HttpDealStore(base_url="https://crm.test/api/v1")
        coordinator = TransitionCoordinator(state, http_store)
        bad_response = httpx.Response(
            200, text="<html>gateway</html>", request=httpx.Request("POST", "https://test.com")
        )

        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=bad_response),
            patch.object(http_store, "list_deals", AsyncMock(return_value=await store.list_deals(PIPELINE_ID))),
            patch.object(http_store, "list_stages", AsyncMock(return_value=await store.list_stages(PIPELINE_ID))),
        ):
            result = await coordinator.move("d-big", "st-closing")

        assert result.outcome == MoveOutcome.RESYNCED
        assert state.get_deal("d-big").stage_id == "st-proposal"


# ── Drag gestures ───────────────────────────────────────────────────────────


class TestDragGestures:
    """Tests for the drag state machine."""

    @pytest.mark.asyncio
    async def test_drag_and_drop(self, coordinator: TransitionCoordinator) -> None:
        assert coordinator.drag_state == Idle()
        assert coordinator.start_drag("d-small")
        assert coordinator.drag_state == Dragging("d-small")

        result = await coordinator.drop("st-proposal")
        coordinator.end_drag()

        assert result.outcome == MoveOutcome.CONFIRMED
        assert result.deal_id == "d-small"
        assert coordinator.drag_state == Idle()

    @pytest.mark.asyncio
    async def test_second_drag_refused(self, coordinator: TransitionCoordinator) -> None:
        assert coordinator.start_drag("d-small")
        assert coordinator.start_drag("d-big") is False
        assert coordinator.drag_state == Dragging("d-small")

    @pytest.mark.asyncio
    async def test_drop_without_drag_rejected(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore
    ) -> None:
        result = await coordinator.drop("st-closing")
        assert result.outcome == MoveOutcome.REJECTED
        assert store.move_calls == []

    @pytest.mark.asyncio
    async def test_drag_unknown_deal_refused(self, coordinator: TransitionCoordinator) -> None:
        assert coordinator.start_drag("d-ghost") is False
        assert isinstance(coordinator.drag_state, Idle)

    @pytest.mark.asyncio
    async def test_drop_on_own_stage(
        self, coordinator: TransitionCoordinator, store: InMemoryDealStore
    ) -> None:
        coordinator.start_drag("d-big")
        result = await coordinator.drop("st-proposal")
        assert result.outcome == MoveOutcome.NOOP
        assert store.move_calls == []
