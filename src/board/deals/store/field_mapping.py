"""Wire payload mappings for the REST Deal Store.

Defines:
- DEAL_FIELD_MAP / STAGE_FIELD_MAP / PIPELINE_FIELD_MAP: internal field name
  -> camelCase wire name.
- from_wire(): Converts a wire payload to an internal field dict.
- deal_from_wire() / stage_from_wire() / pipeline_from_wire(): Build models.

The store may embed related records instead of flat names
(``owner: {fullName}``, ``account: {name}``, ``stage: {...}``); embedded
owner and account names are lifted into owner_name / account_name.
A weightedAmount sent by the store is dropped: Deal derives it.
"""

from __future__ import annotations

from typing import Any

from src.board.deals.schemas import Deal, Pipeline, Stage


# ── Field Maps ─────────────────────────────────────────────────────────────

DEAL_FIELD_MAP: dict[str, str] = {
    "id": "id",
    "title": "title",
    "amount": "amount",
    "probability": "probability",
    "stage_id": "stageId",
    "pipeline_id": "pipelineId",
    "owner_id": "ownerId",
    "owner_name": "ownerName",
    "account_id": "accountId",
    "account_name": "accountName",
    "status": "status",
    "expected_close_date": "expectedCloseDate",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "last_stage_change_at": "lastStageChangeAt",
    "tags": "tags",
    "lost_reason": "lostReason",
    "rotting_days": "rottingDays",
}

STAGE_FIELD_MAP: dict[str, str] = {
    "id": "id",
    "pipeline_id": "pipelineId",
    "name": "name",
    "probability": "probability",
    "color": "color",
    "display_order": "displayOrder",
    "rot_after_days": "rotAfterDays",
}

PIPELINE_FIELD_MAP: dict[str, str] = {
    "id": "id",
    "name": "name",
    "is_default": "isDefault",
}


# ── Conversion Functions ───────────────────────────────────────────────────


def from_wire(payload: dict[str, Any], field_map: dict[str, str]) -> dict[str, Any]:
    """Convert a camelCase wire payload to an internal field dict.

    Unknown wire keys and null values are dropped so model defaults apply.

    Args:
        payload: Decoded JSON object from the store.
        field_map: Internal name -> wire name mapping.

    Returns:
        Dict of internal field names to values.
    """
    result: dict[str, Any] = {}
    for internal_name, wire_name in field_map.items():
        value = payload.get(wire_name)
        if value is not None:
            result[internal_name] = value
    return result


def deal_from_wire(payload: dict[str, Any]) -> Deal:
    """Build a Deal from a store payload, lifting embedded owner/account names."""
    data = from_wire(payload, DEAL_FIELD_MAP)

    owner = payload.get("owner")
    if "owner_name" not in data and isinstance(owner, dict) and owner.get("fullName"):
        data["owner_name"] = owner["fullName"]

    account = payload.get("account")
    if "account_name" not in data and isinstance(account, dict) and account.get("name"):
        data["account_name"] = account["name"]

    # Dates may arrive as full ISO timestamps
    close = data.get("expected_close_date")
    if isinstance(close, str) and "T" in close:
        data["expected_close_date"] = close.split("T", 1)[0]

    return Deal(**data)


def stage_from_wire(payload: dict[str, Any]) -> Stage:
    """Build a Stage from a store payload."""
    return Stage(**from_wire(payload, STAGE_FIELD_MAP))


def pipeline_from_wire(payload: dict[str, Any]) -> Pipeline:
    """Build a Pipeline (with its embedded stage catalog) from a store payload."""
    data = from_wire(payload, PIPELINE_FIELD_MAP)
    stages = [stage_from_wire(s) for s in payload.get("stages") or []]
    data["stages"] = tuple(sorted(stages, key=lambda s: s.display_order))
    return Pipeline(**data)


def move_to_wire(stage_id: str) -> dict[str, Any]:
    """Request body for a move-to-stage call."""
    return {"stageId": stage_id}
