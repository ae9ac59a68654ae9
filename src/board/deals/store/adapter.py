"""Deal Store abstract base class -- the persistence contract the board consumes.

Every backend (in-memory, REST) implements this ABC. The board engine never
persists anything itself: it reads deals and stages through the store and
asks it to move deals between stages.

Failure taxonomy for store calls:
    DealNotFoundError:   deal or stage disappeared server-side.
    DealValidationError: the store rejected the request (e.g. stage from
                         another pipeline, lost without a reason).
    TransientStoreError: network/timeout/5xx; safe to retry reads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.board.deals.schemas import Deal, Pipeline, Stage


class DealStoreError(Exception):
    """Base class for Deal Store failures."""

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class DealNotFoundError(DealStoreError):
    """Raised when a deal, stage or pipeline does not exist in the store."""


class DealValidationError(DealStoreError):
    """Raised when the store rejects a request as invalid."""


class TransientStoreError(DealStoreError):
    """Raised on network, timeout or server-side failures."""


class DealStore(ABC):
    """Abstract interface for Deal Store operations.

    Methods:
        list_pipelines: All pipelines with their stage catalogs.
        list_deals: Deals of one pipeline.
        list_stages: Stages of one pipeline, in display order.
        move_deal_to_stage: Persist a stage transition.
    """

    @abstractmethod
    async def list_pipelines(self) -> list[Pipeline]:
        """List pipelines known to the store."""
        ...

    @abstractmethod
    async def list_deals(self, pipeline_id: str) -> list[Deal]:
        """List deals belonging to a pipeline."""
        ...

    @abstractmethod
    async def list_stages(self, pipeline_id: str) -> list[Stage]:
        """List a pipeline's stages ordered by display_order."""
        ...

    @abstractmethod
    async def move_deal_to_stage(self, deal_id: str, stage_id: str) -> Deal:
        """Move a deal to a stage, return the stored deal."""
        ...


async def resolve_pipeline(store: DealStore, pipeline_id: str | None = None) -> Pipeline:
    """Return the requested pipeline, or the store's default one.

    The default is the pipeline flagged ``is_default``, else the first listed.

    Raises:
        DealNotFoundError: No matching pipeline exists.
    """
    pipelines = await store.list_pipelines()
    if pipeline_id:
        for pipeline in pipelines:
            if pipeline.id == pipeline_id:
                return pipeline
        raise DealNotFoundError(f"Pipeline not found: {pipeline_id}", entity_id=pipeline_id)

    if not pipelines:
        raise DealNotFoundError("No pipelines configured")
    for pipeline in pipelines:
        if pipeline.is_default:
            return pipeline
    return pipelines[0]
