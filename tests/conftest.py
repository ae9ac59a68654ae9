"""Shared fixtures for pipeline board tests.

Provides:
- A three-stage pipeline catalog (Prospecting 10%, Proposal 50%, Closing 90%)
- A seeded InMemoryDealStore over that pipeline
- A loaded PipelineBoardState and a TransitionCoordinator wired to the store
"""

from __future__ import annotations

from datetime import date

import pytest
import pytest_asyncio

from src.board.deals.schemas import Deal, DealStatus, Pipeline, Stage
from src.board.deals.state import PipelineBoardState
from src.board.deals.store.memory import InMemoryDealStore
from src.board.deals.transitions import TransitionCoordinator

PIPELINE_ID = "pipe-main"
TODAY = date(2026, 3, 10)


@pytest.fixture
def stages() -> list[Stage]:
    """Stage catalog in display order."""
    return [
        Stage(id="st-prospecting", pipeline_id=PIPELINE_ID, name="Prospecting", probability=10, display_order=1),
        Stage(id="st-proposal", pipeline_id=PIPELINE_ID, name="Proposal", probability=50, display_order=2),
        Stage(id="st-closing", pipeline_id=PIPELINE_ID, name="Closing", probability=90, display_order=3),
    ]


@pytest.fixture
def seed_deals() -> list[Deal]:
    """Deals spread across the pipeline."""
    return [
        Deal(
            id="d-big",
            title="Initech platform",
            amount=1_000_000,
            probability=50,
            stage_id="st-proposal",
            pipeline_id=PIPELINE_ID,
            owner_id="u-ana",
            owner_name="Ana Souza",
            account_name="Initech",
            rotting_days=4,
        ),
        Deal(
            id="d-small",
            title="Acme pilot",
            amount=40_000,
            probability=10,
            stage_id="st-prospecting",
            pipeline_id=PIPELINE_ID,
            owner_id="u-bruno",
            owner_name="Bruno Lima",
            account_name="Acme",
            rotting_days=12,
        ),
        Deal(
            id="d-won",
            title="Globex renewal",
            amount=300_000,
            probability=90,
            stage_id="st-closing",
            pipeline_id=PIPELINE_ID,
            owner_id="u-ana",
            owner_name="Ana Souza",
            status=DealStatus.WON,
            rotting_days=30,
        ),
    ]


@pytest.fixture
def store(stages: list[Stage], seed_deals: list[Deal]) -> InMemoryDealStore:
    """In-memory store seeded with the main pipeline."""
    pipeline = Pipeline(id=PIPELINE_ID, name="Main", is_default=True, stages=tuple(stages))
    return InMemoryDealStore(pipelines=[pipeline], deals=seed_deals)


@pytest_asyncio.fixture
async def state(store: InMemoryDealStore) -> PipelineBoardState:
    """Board state loaded from the seeded store."""
    board_state = PipelineBoardState(PIPELINE_ID)
    await board_state.load(store)
    return board_state


@pytest.fixture
def coordinator(state: PipelineBoardState, store: InMemoryDealStore) -> TransitionCoordinator:
    """Coordinator over the loaded state and seeded store."""
    return TransitionCoordinator(state, store)
