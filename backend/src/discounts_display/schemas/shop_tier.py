"""Pydantic schemas for shop tier state and entitlement decisions."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from discounts_display.models.discount import DiscountKind, DiscountStatus


class ShopTierState(BaseModel):
    """Schema for returning a shop's persisted tier state."""

    domain: str
    tier: str
    live_discount_limit: Optional[int] = None
    billing_tier: Optional[str] = None
    billing_status: Optional[str] = None
    billing_current_period_end: Optional[datetime] = None
    pending_tier: Optional[str] = None
    pending_tier_effective_at: Optional[datetime] = None
    pending_tier_source_subscription_id: Optional[str] = None
    pending_tier_context: Optional[dict[str, Any]] = None
    trial_ends_at: Optional[datetime] = None
    trial_recorded_at: Optional[datetime] = None
    trial_source_subscription_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LiveDiscountDecision(BaseModel):
    """Whether a shop may take one more discount live."""

    can_create: bool
    reason: str
    current_count: Optional[int] = None
    limit: Optional[int] = None
    tier: Optional[str] = None


class TierFeatureSchema(BaseModel):
    text: str
    bold: bool = False


class ShopTierInfo(BaseModel):
    """Resolved tier, quota usage and billing fields for the admin UI."""

    tier: str
    tier_name: str
    live_discount_limit: Optional[int] = None
    current_live_discounts: int = 0
    price: float = 0
    features: list[TierFeatureSchema] = Field(default_factory=list)
    is_unlimited: bool = False
    usage_percentage: int = 0
    enforced_limit: bool = False
    billing_tier: str = "FREE"
    billing_current_period_end: Optional[datetime] = None
    pending_tier: Optional[str] = None
    pending_tier_effective_at: Optional[datetime] = None


class TierUpdate(BaseModel):
    """Administrative tier override."""

    tier: str = Field(..., description="Target tier key (FREE, BASIC or ADVANCED)")
    update_billing_tier: bool = Field(default=False, description="Also move the billing tier")
    clear_pending: bool = Field(default=True, description="Clear a pending change that targets the same tier")


class TierScheduleRequest(BaseModel):
    """Schedule a tier change for a later date."""

    tier: str = Field(..., description="Target tier key")
    effective_at: Optional[datetime] = Field(
        default=None,
        description="When the change takes effect (defaults to the current billing period end)",
    )
    billing_subscription_id: Optional[str] = None
    context: Optional[dict[str, Any]] = Field(default=None, description="Audit payload stored with the change")


class BillingStatusUpdate(BaseModel):
    status: Optional[str] = None


class StorefrontTokenResponse(BaseModel):
    domain: str
    token: str


class DiscountRegistration(BaseModel):
    """Discount synced from the commerce platform for display."""

    title: Optional[str] = None
    summary: Optional[str] = None
    discount_type: DiscountKind = DiscountKind.AUTO
    applies_on_subscription: bool = False
    has_variant_targets: bool = False
    is_fixed_amount: bool = False
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class LiveDiscountRecord(BaseModel):
    """Display projection of a discount."""

    gid: str
    shop: str
    summary: Optional[str] = None
    discount_type: DiscountKind
    status: DiscountStatus
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    exclusion_reason: Optional[str] = None
    exclusion_details: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
