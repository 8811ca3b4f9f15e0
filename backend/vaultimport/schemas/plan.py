"""Plan usage schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PlanInfoResponse(BaseModel):
    """Current usage of the account's photo limit."""

    model_config = {"from_attributes": True}

    plan_tier: str
    current_photos: int = Field(..., description="Live (not deleted) vault assets")
    max_photos: int
    remaining_photos: int


class PlanCheckResponse(BaseModel):
    """Outcome of comparing a planned import with remaining capacity."""

    model_config = {"from_attributes": True}

    can_import: bool
    remaining_photos: int
    current_photos: int
    max_photos: int
    would_exceed_by: int = Field(
        0, description="How many planned assets exceed the remaining capacity"
    )
