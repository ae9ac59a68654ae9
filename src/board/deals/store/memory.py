"""In-memory Deal Store -- seeded reference backend for demos and tests.

Mirrors what a real store does on a move: validates the deal and target
stage, overwrites the probability with the stage's, stamps updated_at and
last_stage_change_at, and records a system-generated stage-change activity.
Optional latency and one-shot failure injection let callers exercise
out-of-order and failed persistence paths.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime, timezone

import structlog

from src.board.deals.schemas import Deal, DealStatus, Pipeline, Stage, StageChangeActivity
from src.board.deals.store.adapter import (
    DealNotFoundError,
    DealStore,
    DealStoreError,
    DealValidationError,
)

logger = structlog.get_logger(__name__)


class InMemoryDealStore(DealStore):
    """Deal Store backed by plain dicts.

    Args:
        pipelines: Pipelines to serve. Stages are taken from each pipeline's
            catalog plus any given in ``stages``.
        stages: Extra stages (for pipelines listed without a catalog).
        deals: Initial deals.
        latency: Seconds each call waits before answering.
    """

    def __init__(
        self,
        pipelines: Iterable[Pipeline] = (),
        stages: Iterable[Stage] = (),
        deals: Iterable[Deal] = (),
        latency: float = 0.0,
    ) -> None:
        self._pipelines: dict[str, Pipeline] = {p.id: p for p in pipelines}
        self._stages: dict[str, Stage] = {}
        for pipeline in self._pipelines.values():
            for stage in pipeline.stages:
                self._stages[stage.id] = stage
        for stage in stages:
            self._stages[stage.id] = stage
        self._deals: dict[str, Deal] = {d.id: d for d in deals}
        self._latency = latency
        self._pending_failures: list[DealStoreError] = []
        self.activities: list[StageChangeActivity] = []
        self.move_calls: list[tuple[str, str]] = []

    async def _wait(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)

    # ── Failure injection ──────────────────────────────────────────────────

    def fail_next_move(self, error: DealStoreError) -> None:
        """Make the next move_deal_to_stage call raise ``error``."""
        self._pending_failures.append(error)

    # ── DealStore interface ────────────────────────────────────────────────

    async def list_pipelines(self) -> list[Pipeline]:
        await self._wait()
        return [
            pipeline.model_copy(update={"stages": tuple(self._sorted_stages(pipeline.id))})
            for pipeline in self._pipelines.values()
        ]

    async def list_deals(self, pipeline_id: str) -> list[Deal]:
        await self._wait()
        return [d for d in self._deals.values() if d.pipeline_id == pipeline_id]

    async def list_stages(self, pipeline_id: str) -> list[Stage]:
        await self._wait()
        return self._sorted_stages(pipeline_id)

    async def move_deal_to_stage(self, deal_id: str, stage_id: str) -> Deal:
        await self._wait()
        self.move_calls.append((deal_id, stage_id))

        if self._pending_failures:
            error = self._pending_failures.pop(0)
            logger.info("memory_store.injected_failure", deal_id=deal_id, error=str(error))
            raise error

        deal = self._deals.get(deal_id)
        if deal is None:
            raise DealNotFoundError(f"Deal not found: {deal_id}", entity_id=deal_id)
        stage = self._stages.get(stage_id)
        if stage is None:
            raise DealNotFoundError(f"Stage not found: {stage_id}", entity_id=stage_id)
        if stage.pipeline_id != deal.pipeline_id:
            raise DealValidationError(
                f"Stage {stage_id} does not belong to pipeline {deal.pipeline_id}",
                entity_id=stage_id,
            )

        previous = self._stages.get(deal.stage_id)
        now = datetime.now(timezone.utc)
        updated = deal.moved_to(stage).model_copy(
            update={"updated_at": now, "last_stage_change_at": now, "rotting_days": 0}
        )
        self._deals[deal_id] = updated
        self.activities.append(
            StageChangeActivity(
                deal_id=deal_id,
                from_stage=previous.name if previous else None,
                to_stage=stage.name,
                from_probability=deal.probability,
                to_probability=stage.probability,
                user_id=deal.owner_id,
                timestamp=now,
            )
        )
        logger.info(
            "memory_store.deal_moved",
            deal_id=deal_id,
            from_stage=deal.stage_id,
            to_stage=stage_id,
        )
        return updated

    # ── Detail-view operations ─────────────────────────────────────────────

    async def update_status(
        self,
        deal_id: str,
        status: DealStatus,
        lost_reason: str | None = None,
    ) -> Deal:
        """Mark a deal won, lost or reopen it.

        Raises:
            DealNotFoundError: Unknown deal.
            DealValidationError: Marking lost without a lost reason.
        """
        await self._wait()
        deal = self._deals.get(deal_id)
        if deal is None:
            raise DealNotFoundError(f"Deal not found: {deal_id}", entity_id=deal_id)
        if status == DealStatus.LOST and not (lost_reason or deal.lost_reason):
            raise DealValidationError(
                "A lost reason is required before marking a deal lost",
                entity_id=deal_id,
            )

        update: dict = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if status == DealStatus.LOST:
            update["lost_reason"] = lost_reason or deal.lost_reason
        elif status == DealStatus.OPEN:
            update["lost_reason"] = None
        updated = deal.model_copy(update=update)
        self._deals[deal_id] = updated
        logger.info("memory_store.status_changed", deal_id=deal_id, status=status.value)
        return updated

    def get(self, deal_id: str) -> Deal | None:
        """Synchronous peek at the stored deal (no latency)."""
        return self._deals.get(deal_id)

    def _sorted_stages(self, pipeline_id: str) -> list[Stage]:
        return sorted(
            (s for s in self._stages.values() if s.pipeline_id == pipeline_id),
            key=lambda s: s.display_order,
        )
