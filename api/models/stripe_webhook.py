"""Pydantic models for Stripe webhook payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StripeWebhookEvent(BaseModel):
    """Stripe webhook event envelope (only the fields reconciliation reads)."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    created: int | None = None
