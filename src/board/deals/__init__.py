"""Pipeline board engine -- classification, filtering, sorting, grouping and stage moves.

Provides Pydantic schemas (Deal, Stage, Pipeline, filter/sort specs, board
views), pure classifiers and view builders, the canonical PipelineBoardState,
the TransitionCoordinator for drag/drop moves, and the DealStore backends.
"""
