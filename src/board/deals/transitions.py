"""Transition coordinator -- turns drag/drop gestures into stage moves.

Gesture state is an explicit tagged value: ``Idle`` or ``Dragging(deal_id)``.
A drop onto a stage runs the move protocol:

1. Same stage: no-op, nothing persisted.
2. Unknown deal or stage: rejected before any mutation.
3. Optimistic local mutation (stage, probability, weighted amount).
4. Exactly one move_deal_to_stage call to the store.
5. Success: the optimistic state is final. If a resync reverted it while the
   call was pending, the deal returned by the store is applied.
6. Failure: surface an error, then full resync from the store. A resync
   voided by a newer optimistic move is reissued until one applies.

Failures are never compensated field by field. The local snapshot is
replaced wholesale by whatever the store reports.

A drag cannot start for a deal whose previous move is still persisting;
other deals can be dragged meanwhile.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog
from pydantic import BaseModel

from src.board.deals.schemas import Deal
from src.board.deals.state import PipelineBoardState
from src.board.deals.store.adapter import DealStore, DealStoreError

logger = structlog.get_logger(__name__)

# Reloads attempted after a failed move before the board is flagged stale
MAX_RESYNC_ATTEMPTS = 3


# ── Gesture State ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Idle:
    """No drag in progress."""


@dataclass(frozen=True)
class Dragging:
    """A card is being dragged."""

    deal_id: str


DragState = Idle | Dragging


# ── Move Results ────────────────────────────────────────────────────────────


class MoveOutcome(str, Enum):
    """How a move request ended."""

    NOOP = "noop"  # Dropped on its own stage
    REJECTED = "rejected"  # Unknown deal/stage or no active drag; nothing mutated
    CONFIRMED = "confirmed"  # Persisted; optimistic state is final
    RESYNCED = "resynced"  # Persistence failed; state replaced from the store
    RESYNC_FAILED = "resync_failed"  # Persistence and resync both failed; state is stale


class MoveResult(BaseModel):
    """Outcome of one move request."""

    outcome: MoveOutcome
    deal_id: str | None = None
    stage_id: str | None = None
    error: str | None = None


# ── Coordinator ─────────────────────────────────────────────────────────────


class TransitionCoordinator:
    """Drives stage transitions against the canonical board state.

    Args:
        state: Canonical deal collection for the active pipeline.
        store: Deal Store used to persist moves and to resync after failures.
    """

    def __init__(self, state: PipelineBoardState, store: DealStore) -> None:
        self._state = state
        self._store = store
        self._drag: DragState = Idle()
        self._in_flight: set[str] = set()

    @property
    def drag_state(self) -> DragState:
        return self._drag

    @property
    def in_flight(self) -> frozenset[str]:
        """Deals whose move is currently being persisted."""
        return frozenset(self._in_flight)

    # ── Gestures ───────────────────────────────────────────────────────────

    def start_drag(self, deal_id: str) -> bool:
        """Idle -> Dragging(deal_id). Returns False if the drag is refused."""
        if isinstance(self._drag, Dragging):
            logger.warning(
                "board.drag_already_active",
                active_deal_id=self._drag.deal_id,
                deal_id=deal_id,
            )
            return False
        if deal_id in self._in_flight:
            logger.info("board.drag_refused_move_pending", deal_id=deal_id)
            return False
        if self._state.get_deal(deal_id) is None:
            logger.warning("board.drag_unknown_deal", deal_id=deal_id)
            return False
        self._drag = Dragging(deal_id)
        return True

    def end_drag(self) -> None:
        """Back to Idle, whatever the drop outcome."""
        self._drag = Idle()

    async def drop(self, stage_id: str) -> MoveResult:
        """Move the dragged deal onto ``stage_id``."""
        drag = self._drag
        if not isinstance(drag, Dragging):
            return MoveResult(outcome=MoveOutcome.REJECTED, stage_id=stage_id, error="no active drag")
        return await self.move(drag.deal_id, stage_id)

    # ── Move protocol ──────────────────────────────────────────────────────

    async def move(self, deal_id: str, stage_id: str) -> MoveResult:
        """Move a deal to a stage: optimistic update, persist, resync on failure.

        Args:
            deal_id: Deal to move.
            stage_id: Target stage in the active pipeline.

        Returns:
            MoveResult describing what happened.
        """
        deal = self._state.get_deal(deal_id)
        if deal is None:
            logger.warning("board.move_unknown_deal", deal_id=deal_id, stage_id=stage_id)
            return MoveResult(
                outcome=MoveOutcome.REJECTED,
                deal_id=deal_id,
                stage_id=stage_id,
                error=f"Unknown deal: {deal_id}",
            )

        if deal.stage_id == stage_id:
            return MoveResult(outcome=MoveOutcome.NOOP, deal_id=deal_id, stage_id=stage_id)

        stage = self._state.get_stage(stage_id)
        if stage is None:
            logger.warning("board.move_unknown_stage", deal_id=deal_id, stage_id=stage_id)
            return MoveResult(
                outcome=MoveOutcome.REJECTED,
                deal_id=deal_id,
                stage_id=stage_id,
                error=f"Unknown stage: {stage_id}",
            )

        self._state.apply_optimistic(deal.moved_to(stage))
        self._in_flight.add(deal_id)
        logger.info(
            "board.move_optimistic",
            deal_id=deal_id,
            from_stage=deal.stage_id,
            to_stage=stage_id,
            probability=stage.probability,
        )

        try:
            stored = await self._store.move_deal_to_stage(deal_id, stage_id)
        except DealStoreError as exc:
            return await self._resync_after_failure(deal, stage_id, stage.name, exc)
        finally:
            self._in_flight.discard(deal_id)

        current = self._state.get_deal(deal_id)
        if current is not None and current.stage_id != stored.stage_id:
            # A resync loaded while this move was persisting reverted it
            self._state.apply_optimistic(stored)
        logger.info("board.move_confirmed", deal_id=deal_id, stage_id=stage_id)
        return MoveResult(outcome=MoveOutcome.CONFIRMED, deal_id=deal_id, stage_id=stage_id)

    async def _resync(self) -> bool:
        """Reload until a snapshot applies; False if every attempt was superseded.

        Each optimistic move started during a reload takes a newer sequence
        ticket and voids that reload, so the next attempt is issued after it.

        Raises:
            DealStoreError: The store failed while reloading.
        """
        for attempt in range(1, MAX_RESYNC_ATTEMPTS + 1):
            if await self._state.load(self._store):
                return True
            logger.info(
                "board.resync_superseded",
                pipeline_id=self._state.pipeline_id,
                attempt=attempt,
            )
        return False

    async def _resync_after_failure(
        self,
        deal: Deal,
        stage_id: str,
        stage_name: str,
        exc: DealStoreError,
    ) -> MoveResult:
        """Surface the failure, then replace local state with the store's."""
        message = f"Could not move '{deal.title}' to {stage_name}: {exc}"
        logger.error(
            "board.move_failed",
            deal_id=deal.id,
            stage_id=stage_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        self._state.set_error(message)

        try:
            applied = await self._resync()
        except DealStoreError as resync_exc:
            logger.error(
                "board.resync_failed",
                pipeline_id=self._state.pipeline_id,
                error=str(resync_exc),
            )
            return self._resync_failed(deal, stage_id, f"{message}. Reload failed: {resync_exc}")

        if not applied:
            logger.error(
                "board.resync_failed",
                pipeline_id=self._state.pipeline_id,
                error="superseded",
                attempts=MAX_RESYNC_ATTEMPTS,
            )
            return self._resync_failed(
                deal, stage_id, f"{message}. Reload was superseded {MAX_RESYNC_ATTEMPTS} times"
            )

        logger.info("board.resynced", pipeline_id=self._state.pipeline_id, deal_id=deal.id)
        return MoveResult(
            outcome=MoveOutcome.RESYNCED,
            deal_id=deal.id,
            stage_id=stage_id,
            error=message,
        )

    def _resync_failed(self, deal: Deal, stage_id: str, message: str) -> MoveResult:
        self._state.mark_stale()
        self._state.set_error(message)
        return MoveResult(
            outcome=MoveOutcome.RESYNC_FAILED,
            deal_id=deal.id,
            stage_id=stage_id,
            error=message,
        )
