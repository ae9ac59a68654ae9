"""Deal Store layer -- pluggable persistence backends for the pipeline board.

Provides the abstract DealStore interface with concrete implementations:
- InMemoryDealStore: Seeded dict-backed store for demos and tests
- HttpDealStore: REST client with retried reads and a single-shot move call

Store failures are reported through DealStoreError subclasses
(DealNotFoundError, DealValidationError, TransientStoreError).
"""

from src.board.deals.store.adapter import (
    DealNotFoundError,
    DealStore,
    DealStoreError,
    DealValidationError,
    TransientStoreError,
    resolve_pipeline,
)
from src.board.deals.store.http import HttpDealStore
from src.board.deals.store.memory import InMemoryDealStore

__all__ = [
    "DealStore",
    "DealStoreError",
    "DealNotFoundError",
    "DealValidationError",
    "TransientStoreError",
    "HttpDealStore",
    "InMemoryDealStore",
    "resolve_pipeline",
]
