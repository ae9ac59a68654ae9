"""Canonical deal collection for one pipeline, with sequenced loads.

PipelineBoardState is the single shared mutable resource of the board. It
is changed in exactly two ways:

1. A completed load (initial load or full resync) replaces deals and stages
   wholesale.
2. The transition coordinator applies an optimistic stage change.

Both take a ticket from one monotonically increasing sequence. A load
response is applied only if nothing issued after it has been applied yet;
otherwise it is stale and discarded. This keeps a slow response from
overwriting newer state when loads resolve out of order, and keeps a load
issued before an optimistic move from reverting that move.

Readers get tuples of frozen models; derived views (table, board, KPIs) are
recomputed in full from the current snapshot on request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import date

import structlog

from src.board.config import get_settings
from src.board.deals.board import build_board, compute_kpis
from src.board.deals.filtering import active_filter_count, filter_deals, owner_options
from src.board.deals.schemas import Deal, FilterCriteria, PipelineView, SortSpec, Stage
from src.board.deals.sorting import sort_deals
from src.board.deals.store.adapter import DealStore

logger = structlog.get_logger(__name__)

Listener = Callable[["PipelineBoardState"], None]


class PipelineInconsistencyError(RuntimeError):
    """Raised when store data breaks the pipeline membership invariant.

    Not a user-facing condition: correct upstream data never triggers it.
    """

    def __init__(self, pipeline_id: str, problems: list[str]) -> None:
        self.pipeline_id = pipeline_id
        self.problems = problems
        super().__init__(
            f"Inconsistent data for pipeline {pipeline_id}: {'; '.join(problems)}"
        )


class PipelineBoardState:
    """Observable holder of one pipeline's deals and stages.

    Args:
        pipeline_id: Active pipeline; every loaded deal and stage must belong to it.
    """

    def __init__(self, pipeline_id: str) -> None:
        self.pipeline_id = pipeline_id
        self._deals: tuple[Deal, ...] = ()
        self._stages: tuple[Stage, ...] = ()
        self._issued_seq = 0
        self._applied_seq = 0
        self._listeners: list[Listener] = []
        self.error: str | None = None
        self._pending_loads = 0
        self.loaded = False
        self.stale = False

    # ── Read access ────────────────────────────────────────────────────────

    @property
    def deals(self) -> tuple[Deal, ...]:
        return self._deals

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def applied_sequence(self) -> int:
        return self._applied_seq

    @property
    def loading(self) -> bool:
        """True while any load is awaiting the store."""
        return self._pending_loads > 0

    def get_deal(self, deal_id: str) -> Deal | None:
        for deal in self._deals:
            if deal.id == deal_id:
                return deal
        return None

    def get_stage(self, stage_id: str) -> Stage | None:
        for stage in self._stages:
            if stage.id == stage_id:
                return stage
        return None

    # ── Listeners ──────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ── Sequencing ─────────────────────────────────────────────────────────

    def issue_sequence(self) -> int:
        """Take the next ticket in the snapshot sequence."""
        self._issued_seq += 1
        return self._issued_seq

    def apply_snapshot(
        self, seq: int, deals: Iterable[Deal], stages: Iterable[Stage]
    ) -> bool:
        """Replace deals and stages wholesale if ``seq`` is still current.

        Returns:
            True if applied, False if discarded as stale.

        Raises:
            PipelineInconsistencyError: Data belongs to another pipeline.
        """
        if seq <= self._applied_seq:
            logger.info(
                "board.stale_snapshot_discarded",
                pipeline_id=self.pipeline_id,
                seq=seq,
                applied_seq=self._applied_seq,
            )
            return False

        deal_tuple = tuple(deals)
        stage_tuple = tuple(sorted(stages, key=lambda s: s.display_order))
        self._check_consistency(deal_tuple, stage_tuple)

        self._deals = deal_tuple
        self._stages = stage_tuple
        self._applied_seq = seq
        self.loaded = True
        self.stale = False
        logger.debug(
            "board.snapshot_applied",
            pipeline_id=self.pipeline_id,
            seq=seq,
            deals=len(deal_tuple),
            stages=len(stage_tuple),
        )
        self._notify()
        return True

    def apply_optimistic(self, deal: Deal) -> int:
        """Replace one deal locally ahead of persistence; returns its sequence."""
        seq = self.issue_sequence()
        self._deals = tuple(deal if d.id == deal.id else d for d in self._deals)
        self._applied_seq = seq
        self._notify()
        return seq

    # ── Loading ────────────────────────────────────────────────────────────

    async def load(self, store: DealStore) -> bool:
        """Fetch deals and stages and apply them if still current.

        Store errors propagate to the caller; the state is left untouched.

        Returns:
            True if the response was applied, False if it arrived stale.
        """
        seq = self.issue_sequence()
        self._pending_loads += 1
        try:
            deals, stages = await asyncio.gather(
                store.list_deals(self.pipeline_id),
                store.list_stages(self.pipeline_id),
            )
        finally:
            self._pending_loads -= 1
        return self.apply_snapshot(seq, deals, stages)

    # ── Errors ─────────────────────────────────────────────────────────────

    def set_error(self, message: str) -> None:
        """Surface a user-visible error."""
        self.error = message
        self._notify()

    def clear_error(self) -> None:
        self.error = None
        self._notify()

    def mark_stale(self) -> None:
        """Flag the local snapshot as possibly diverged from the store."""
        self.stale = True
        self._notify()

    # ── Derived views ──────────────────────────────────────────────────────

    def view(
        self,
        criteria: FilterCriteria | None = None,
        sort: SortSpec | None = None,
        *,
        current_user_id: str | None = None,
        today: date | None = None,
        column_cap: int | None = None,
    ) -> PipelineView:
        """Recompute table, board and KPIs from the current snapshot.

        Args:
            criteria: Search, quick filter and advanced filters.
            sort: Table sort; the board ignores it.
            current_user_id: Caller id for the "mine" filter (default CURRENT_USER_ID).
            today: Reference date for the "closing" filter.
            column_cap: Board cards per column (default BOARD_COLUMN_CAP).
        """
        settings = get_settings()
        criteria = criteria or FilterCriteria()
        user_id = current_user_id or settings.CURRENT_USER_ID or None

        filtered = filter_deals(
            self._deals,
            criteria,
            current_user_id=user_id,
            today=today,
            closing_window_days=settings.CLOSING_WINDOW_DAYS,
        )
        return PipelineView(
            pipeline_id=self.pipeline_id,
            table=sort_deals(filtered, sort, self._stages),
            board=build_board(filtered, self._stages, column_cap=column_cap),
            kpis=compute_kpis(filtered),
            owners=owner_options(self._deals),
            active_filter_count=active_filter_count(criteria.advanced),
            error=self.error,
        )

    # ── Invariants ─────────────────────────────────────────────────────────

    def _check_consistency(
        self, deals: tuple[Deal, ...], stages: tuple[Stage, ...]
    ) -> None:
        problems: list[str] = []
        for stage in stages:
            if stage.pipeline_id != self.pipeline_id:
                problems.append(f"stage {stage.id} belongs to {stage.pipeline_id}")
        for deal in deals:
            if deal.pipeline_id != self.pipeline_id:
                problems.append(f"deal {deal.id} belongs to {deal.pipeline_id}")

        if problems:
            logger.error(
                "board.pipeline_inconsistency",
                pipeline_id=self.pipeline_id,
                problems=problems,
            )
            raise PipelineInconsistencyError(self.pipeline_id, problems)

        known = {stage.id for stage in stages}
        unknown = [deal.id for deal in deals if deal.stage_id not in known]
        if unknown:
            logger.warning(
                "board.deals_with_unknown_stage",
                pipeline_id=self.pipeline_id,
                deal_ids=unknown,
            )
