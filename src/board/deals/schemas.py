"""Pydantic schemas for the pipeline board -- deals, stages, filters, board views.

Defines all structured types shared by the board engine:
- Enums: DealStatus, PriorityTier, Severity, QuickFilter, SortField, SortDirection
- Entities: Stage, Pipeline, Deal (frozen value objects; weighted_amount is derived)
- Filter/sort input: AdvancedFilters, FilterCriteria, SortSpec, OwnerOption
- Board output: StageColumn, BoardView, PipelineKPIs
- Store records: StageChangeActivity

Deals and stages are immutable. Every change produces a new copy via
model_copy so that views handed to the presentation layer can never
mutate the canonical collection.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# ── Enums ───────────────────────────────────────────────────────────────────


class DealStatus(str, Enum):
    """Lifecycle status of a deal."""

    OPEN = "open"
    WON = "won"
    LOST = "lost"


class PriorityTier(str, Enum):
    """Priority derived from a deal's weighted amount."""

    HOT = "hot"
    WARM = "warm"
    NORMAL = "normal"


class Severity(str, Enum):
    """Staleness severity derived from rotting days."""

    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class QuickFilter(str, Enum):
    """Mutually exclusive filter presets."""

    ALL = "all"
    MINE = "mine"
    ROTTING = "rotting"
    HIGH_VALUE = "highvalue"
    CLOSING = "closing"


class SortField(str, Enum):
    """Fields the table view can be sorted by."""

    AMOUNT = "amount"
    ROTTING_DAYS = "rotting_days"
    EXPECTED_CLOSE_DATE = "expected_close_date"
    TITLE = "title"
    STAGE = "stage"
    OWNER = "owner"
    STATUS = "status"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ── Derived values ──────────────────────────────────────────────────────────


def compute_weighted_amount(amount: int, probability: int) -> int:
    """Return round(amount * probability / 100), rounding halves up.

    Integer arithmetic keeps the result exact for any amount; halves round
    away from zero for the non-negative inputs deals carry.
    """
    return (amount * probability + 50) // 100


# ── Entities ────────────────────────────────────────────────────────────────


class Stage(BaseModel):
    """A named step in a pipeline with an associated close probability."""

    model_config = ConfigDict(frozen=True)

    id: str
    pipeline_id: str
    name: str
    probability: int = Field(ge=0, le=100)
    color: str = "#64748B"
    display_order: int = 0
    rot_after_days: int | None = None


class Pipeline(BaseModel):
    """A sales pipeline and its ordered stage catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_default: bool = False
    stages: tuple[Stage, ...] = ()


class Deal(BaseModel):
    """A sales opportunity tracked through pipeline stages.

    weighted_amount is recomputed from amount and probability on every
    access; any weighted value supplied by the store is ignored.
    rotting_days is computed by the Deal Store and only meaningful while
    the deal is open.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    amount: int = Field(ge=0)
    probability: int = Field(ge=0, le=100)
    stage_id: str
    pipeline_id: str
    owner_id: str
    owner_name: str | None = None
    account_id: str | None = None
    account_name: str | None = None
    status: DealStatus = DealStatus.OPEN
    expected_close_date: date | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_stage_change_at: datetime | None = None
    tags: frozenset[str] = frozenset()
    lost_reason: str | None = None
    rotting_days: int = Field(default=0, ge=0)

    @field_validator("rotting_days", mode="before")
    @classmethod
    def _missing_rotting_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def weighted_amount(self) -> int:
        return compute_weighted_amount(self.amount, self.probability)

    def moved_to(self, stage: Stage) -> Deal:
        """Return a copy of this deal placed in ``stage``.

        The stage's probability overwrites the deal's; manual probability
        overrides are not supported.
        """
        return self.model_copy(
            update={"stage_id": stage.id, "probability": stage.probability}
        )


# ── Filter / Sort Input ─────────────────────────────────────────────────────


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class AdvancedFilters(BaseModel):
    """Independently toggled advanced filters (all bounds inclusive).

    Presentation inputs arrive as plain values; blank strings mean
    "not set". status="all" disables the status check.
    """

    owner_id: str | None = None
    status: DealStatus | Literal["all"] | None = None
    amount_min: int | None = None
    amount_max: int | None = None
    rotting_min: int | None = None

    @field_validator("owner_id", "status", "amount_min", "amount_max", "rotting_min", mode="before")
    @classmethod
    def _normalize_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @classmethod
    def cleared(cls) -> AdvancedFilters:
        """Board reset state: every filter off except status, which shows open deals."""
        return cls(status=DealStatus.OPEN)


class FilterCriteria(BaseModel):
    """Search text, one quick filter, and the advanced filter set."""

    search: str = ""
    quick_filter: QuickFilter = QuickFilter.ALL
    advanced: AdvancedFilters = Field(default_factory=AdvancedFilters)


class SortSpec(BaseModel):
    """Single active sort field plus direction for the table view."""

    model_config = ConfigDict(frozen=True)

    field: SortField = SortField.AMOUNT
    direction: SortDirection = SortDirection.DESC

    def toggled(self, field: SortField) -> SortSpec:
        """Header-click behavior: same field flips direction, new field starts descending."""
        if field == self.field:
            flipped = (
                SortDirection.ASC
                if self.direction == SortDirection.DESC
                else SortDirection.DESC
            )
            return SortSpec(field=field, direction=flipped)
        return SortSpec(field=field, direction=SortDirection.DESC)


class OwnerOption(BaseModel):
    """Owner choice for the advanced owner filter."""

    id: str
    full_name: str


# ── Board Output ────────────────────────────────────────────────────────────


class StageColumn(BaseModel):
    """One board column: a stage, its metrics and its capped card list."""

    stage: Stage
    count: int = 0
    total_amount: int = 0
    critical_count: int = 0
    hot_count: int = 0
    deals: list[Deal] = Field(default_factory=list)
    overflow: int = 0


class BoardView(BaseModel):
    """Per-stage grouped structure for the board view."""

    columns: list[StageColumn] = Field(default_factory=list)
    column_cap: int = 8

    def column(self, stage_id: str) -> StageColumn | None:
        for col in self.columns:
            if col.stage.id == stage_id:
                return col
        return None


class PipelineKPIs(BaseModel):
    """Aggregate pipeline indicators over a deal set."""

    total_open_amount: int = 0
    total_weighted_amount: int = 0
    total_won_amount: int = 0
    open_count: int = 0
    won_count: int = 0
    lost_count: int = 0
    win_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_rotting_days: float = 0.0
    rotting_count: int = 0


class PipelineView(BaseModel):
    """Everything the presentation layer renders for one pipeline."""

    pipeline_id: str
    table: list[Deal] = Field(default_factory=list)
    board: BoardView = Field(default_factory=BoardView)
    kpis: PipelineKPIs = Field(default_factory=PipelineKPIs)
    owners: list[OwnerOption] = Field(default_factory=list)
    active_filter_count: int = 0
    error: str | None = None


# ── Store Records ───────────────────────────────────────────────────────────


class StageChangeActivity(BaseModel):
    """System-generated activity recorded when a deal changes stage."""

    deal_id: str
    from_stage: str | None = None
    to_stage: str
    from_probability: int
    to_probability: int
    user_id: str | None = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
