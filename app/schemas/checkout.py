"""
app/schemas/checkout.py

Request and response schemas for checkout sessions.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CheckoutSessionCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    category: str | None = None


class CheckoutSessionInfoRequest(BaseModel):
    """
    User-supplied checkout information, merged into the session.
    """

    info: dict[str, Any] = Field(default_factory=dict)


class CheckoutSessionResponse(BaseModel):
    id: str
    user_id: str
    product_id: str
    category: str | None = None
    state: str
    collected_info: dict[str, Any] = Field(default_factory=dict)
    completed_steps: list[str] = Field(default_factory=list)
    progress: int = Field(..., ge=0, le=100)
    created_at: str
    updated_at: str


class MissingFieldResponse(BaseModel):
    name: str
    type: str
    label: str | None = None


class CheckoutDeeplinkResponse(BaseModel):
    success: bool
    url: str | None = None
    has_all_required_info: bool | None = None
    error: str | None = None
