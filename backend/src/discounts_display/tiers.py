"""Subscription tier catalog and feature gating.

Tiers are ordered by capability (FREE < BASIC < ADVANCED). Each tier carries a
live discount quota (None means unlimited) and unlocks the features whose
minimum tier it meets.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class FeatureFlag(str, enum.Enum):
    """Features gated behind a minimum tier."""

    FIXED_AMOUNT = "fixed_amount"
    AUTO_APPLY = "auto_apply"
    SUBSCRIPTION = "subscription"
    VARIANT_SPECIFIC = "variant_specific"


class ExclusionReason(str, enum.Enum):
    """Reasons a discount is held back until the shop upgrades."""

    SUBSCRIPTION_TIER = "SUBSCRIPTION_TIER"
    VARIANT_TIER = "VARIANT_TIER"
    FIXED_AMOUNT_TIER = "FIXED_AMOUNT_TIER"


@dataclass(frozen=True)
class TierFeature:
    """Marketing line shown on the pricing page."""

    text: str
    bold: bool = False


@dataclass(frozen=True)
class TierConfig:
    """Static definition of one subscription tier."""

    key: str
    name: str
    price: float
    live_discount_limit: Optional[int]
    features: tuple[TierFeature, ...] = field(default_factory=tuple)

    @property
    def is_unlimited(self) -> bool:
        return self.live_discount_limit is None


TIER_CONFIG: dict[str, TierConfig] = {
    "FREE": TierConfig(
        key="FREE",
        name="Free",
        price=0,
        live_discount_limit=1,
        features=(
            TierFeature("1 active discount"),
            TierFeature("Automatic and code discounts"),
            TierFeature("Product page, grids and collections"),
            TierFeature("Customizable UI"),
            TierFeature("Updated price in cart and checkout"),
        ),
    ),
    "BASIC": TierConfig(
        key="BASIC",
        name="Basic",
        price=9.99,
        live_discount_limit=3,
        features=(
            TierFeature("3 live discounts"),
            TierFeature("All features of the Free tier"),
            TierFeature("Auto-apply coupon option", bold=True),
            TierFeature("Fixed-price discount support", bold=True),
        ),
    ),
    "ADVANCED": TierConfig(
        key="ADVANCED",
        name="Advanced",
        price=19.99,
        live_discount_limit=None,
        features=(
            TierFeature("Unlimited live discounts"),
            TierFeature("All features of the Basic tier"),
            TierFeature("Subscription product compatibility", bold=True),
            TierFeature("Variant-specific discount support", bold=True),
        ),
    ),
}

TIER_KEYS: list[str] = list(TIER_CONFIG)

DEFAULT_TIER = "FREE"

FEATURE_TIERS: dict[FeatureFlag, str] = {
    FeatureFlag.FIXED_AMOUNT: "BASIC",
    FeatureFlag.AUTO_APPLY: "BASIC",
    FeatureFlag.SUBSCRIPTION: "ADVANCED",
    FeatureFlag.VARIANT_SPECIFIC: "ADVANCED",
}

# Feature each upgrade-required exclusion is waiting on
EXCLUSION_FEATURES: dict[ExclusionReason, FeatureFlag] = {
    ExclusionReason.SUBSCRIPTION_TIER: FeatureFlag.SUBSCRIPTION,
    ExclusionReason.VARIANT_TIER: FeatureFlag.VARIANT_SPECIFIC,
    ExclusionReason.FIXED_AMOUNT_TIER: FeatureFlag.FIXED_AMOUNT,
}


def is_valid_tier(tier: Any) -> bool:
    return isinstance(tier, str) and tier in TIER_CONFIG


def get_tier_config(tier: Any) -> TierConfig:
    """Return the tier definition, falling back to FREE for unknown keys."""
    if is_valid_tier(tier):
        return TIER_CONFIG[tier]
    return TIER_CONFIG[DEFAULT_TIER]


def get_tier_price(tier: Any) -> float:
    if not is_valid_tier(tier):
        return 0
    return TIER_CONFIG[tier].price


def get_live_discount_limit(tier: Any) -> Optional[int]:
    return get_tier_config(tier).live_discount_limit


def get_available_tiers() -> list[dict[str, Any]]:
    """Catalog in display order."""
    return [
        {
            "key": key,
            "name": config.name,
            "price": config.price,
            "live_discount_limit": config.live_discount_limit,
            "features": [{"text": f.text, "bold": f.bold} for f in config.features],
            "is_unlimited": config.is_unlimited,
        }
        for key, config in TIER_CONFIG.items()
    ]


def get_effective_tier(shop: Any) -> str:
    """Tier a shop record is entitled to; anything unrecognised is FREE."""
    tier = getattr(shop, "tier", None)
    if is_valid_tier(tier):
        return tier
    return DEFAULT_TIER


def is_feature_enabled(tier: Any, feature: FeatureFlag | str) -> bool:
    if not is_valid_tier(tier):
        return False
    try:
        required = FEATURE_TIERS[FeatureFlag(feature)]
    except ValueError:
        return False
    return TIER_KEYS.index(tier) >= TIER_KEYS.index(required)


def get_upgrade_eligible_reasons(tier: Any) -> list[str]:
    """Exclusion reasons that the given tier no longer blocks."""
    return [
        reason.value
        for reason, feature in EXCLUSION_FEATURES.items()
        if is_feature_enabled(tier, feature)
    ]


@dataclass(frozen=True)
class TierGateExclusion:
    """Why a discount cannot go live on the shop's current tier."""

    reason: ExclusionReason
    details: str


def evaluate_tier_gate(
    tier: Any,
    *,
    applies_on_subscription: bool = False,
    has_variant_targets: bool = False,
    is_fixed_amount: bool = False,
) -> Optional[TierGateExclusion]:
    """
    Check a discount's traits against the shop's tier.

    Subscription and variant targeting are checked before fixed amounts, so
    the first blocking feature is reported.

    Returns:
        The exclusion to record, or None when the tier permits the discount
    """
    tier_name = get_tier_config(tier).name

    if applies_on_subscription and not is_feature_enabled(tier, FeatureFlag.SUBSCRIPTION):
        return TierGateExclusion(
            ExclusionReason.SUBSCRIPTION_TIER,
            f"Subscription discounts require the Advanced plan. Your current plan is {tier_name}.",
        )

    if has_variant_targets and not is_feature_enabled(tier, FeatureFlag.VARIANT_SPECIFIC):
        return TierGateExclusion(
            ExclusionReason.VARIANT_TIER,
            f"Variant-specific discounts require the Advanced plan. Your current plan is {tier_name}.",
        )

    if is_fixed_amount and not is_feature_enabled(tier, FeatureFlag.FIXED_AMOUNT):
        return TierGateExclusion(
            ExclusionReason.FIXED_AMOUNT_TIER,
            f"Fixed-amount discounts require the Basic plan or higher. Your current plan is {tier_name}.",
        )

    return None
