"""Pydantic schemas for billing endpoints."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class StripeWebhookResponse(BaseModel):
    status: str
    duplicate: bool
    event_id: str
    event_type: str
    message: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    tier: str = Field(min_length=1, max_length=32)
    billing_period: Literal["monthly", "annual"] = "monthly"
    workspace_id: Optional[str] = Field(default=None, max_length=36)
    workspace_name: Optional[str] = Field(default=None, max_length=120)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str


class PortalSessionRequest(BaseModel):
    return_url: Optional[str] = None


class PortalSessionResponse(BaseModel):
    url: str


class ProvisionProfileRequest(BaseModel):
    workspace_name: Optional[str] = Field(default=None, max_length=120)


class ProvisionProfileResponse(BaseModel):
    success: bool = True
    workspace_id: str
    profile_key_present: bool
    subscription_status: str
    subscription_tier: str
    created: bool
