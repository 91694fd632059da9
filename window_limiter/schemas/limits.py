"""Pydantic schemas for rate-limit decision responses."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RateDescription(BaseModel):
    """Rate applied by the limiter."""

    requests: float = Field(..., description="Maximum requests allowed in the period.")
    period: float = Field(..., description="Period length, in 'unit'.")
    unit: Literal["seconds", "minutes", "hours"] = Field(..., description="Period unit.")
    period_in_seconds: float = Field(..., description="Period length in seconds.")


class LimitDecisionResponse(BaseModel):
    """Outcome of a rate-limit decision for one logical key."""

    key: str = Field(..., description="Logical key the decision applies to.")
    decision: Literal["allowed", "rate-limited"] = Field(
        ..., description="Whether one more request fits in the sliding window."
    )
    counted: bool = Field(
        ..., description="True when an allowed request was counted against the key."
    )
    retry_after_seconds: int | None = Field(
        default=None,
        description="Predicted seconds until the key is unblocked (only when rate-limited).",
    )
    rate: RateDescription
