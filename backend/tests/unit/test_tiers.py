"""Unit tests for the tier catalog and feature gating."""
from types import SimpleNamespace

import pytest

from discounts_display.tiers import (
    ExclusionReason,
    FeatureFlag,
    evaluate_tier_gate,
    get_available_tiers,
    get_effective_tier,
    get_live_discount_limit,
    get_tier_config,
    get_tier_price,
    get_upgrade_eligible_reasons,
    is_feature_enabled,
    is_valid_tier,
)


def test_catalog_limits_and_prices() -> None:
    assert get_live_discount_limit("FREE") == 1
    assert get_live_discount_limit("BASIC") == 3
    assert get_live_discount_limit("ADVANCED") is None
    assert get_tier_price("BASIC") == 9.99
    assert get_tier_price("ADVANCED") == 19.99


def test_unknown_tier_falls_back_to_free() -> None:
    assert is_valid_tier("GOLD") is False
    assert is_valid_tier(None) is False
    assert get_tier_config("GOLD").key == "FREE"
    assert get_tier_price("GOLD") == 0


def test_available_tiers_in_display_order() -> None:
    tiers = get_available_tiers()

    assert [t["key"] for t in tiers] == ["FREE", "BASIC", "ADVANCED"]
    assert tiers[2]["is_unlimited"] is True
    assert tiers[0]["features"][0] == {"text": "1 active discount", "bold": False}


def test_effective_tier_of_shop_record() -> None:
    assert get_effective_tier(SimpleNamespace(tier="BASIC")) == "BASIC"
    assert get_effective_tier(SimpleNamespace(tier="corrupt")) == "FREE"
    assert get_effective_tier(None) == "FREE"


@pytest.mark.parametrize(
    "tier,feature,expected",
    [
        ("FREE", FeatureFlag.FIXED_AMOUNT, False),
        ("BASIC", FeatureFlag.FIXED_AMOUNT, True),
        ("BASIC", FeatureFlag.AUTO_APPLY, True),
        ("BASIC", FeatureFlag.SUBSCRIPTION, False),
        ("ADVANCED", FeatureFlag.SUBSCRIPTION, True),
        ("ADVANCED", "variant_specific", True),
        ("ADVANCED", "teleport", False),
        ("GOLD", FeatureFlag.FIXED_AMOUNT, False),
    ],
)
def test_feature_gating(tier: str, feature, expected: bool) -> None:
    assert is_feature_enabled(tier, feature) is expected


def test_upgrade_eligible_reasons() -> None:
    assert get_upgrade_eligible_reasons("FREE") == []
    assert get_upgrade_eligible_reasons("BASIC") == ["FIXED_AMOUNT_TIER"]
    assert set(get_upgrade_eligible_reasons("ADVANCED")) == {
        "SUBSCRIPTION_TIER",
        "VARIANT_TIER",
        "FIXED_AMOUNT_TIER",
    }


class TestTierGate:
    """Tests for discount gating by tier."""

    def test_permitted_discount_has_no_exclusion(self) -> None:
        assert evaluate_tier_gate("FREE") is None
        assert evaluate_tier_gate("BASIC", is_fixed_amount=True) is None

    def test_fixed_amount_needs_basic(self) -> None:
        exclusion = evaluate_tier_gate("FREE", is_fixed_amount=True)

        assert exclusion.reason == ExclusionReason.FIXED_AMOUNT_TIER
        assert "Your current plan is Free." in exclusion.details

    def test_subscription_is_reported_first(self) -> None:
        exclusion = evaluate_tier_gate(
            "FREE",
            applies_on_subscription=True,
            has_variant_targets=True,
            is_fixed_amount=True,
        )

        assert exclusion.reason == ExclusionReason.SUBSCRIPTION_TIER

    def test_variant_targets_need_advanced(self) -> None:
        exclusion = evaluate_tier_gate("BASIC", has_variant_targets=True, is_fixed_amount=True)

        assert exclusion.reason == ExclusionReason.VARIANT_TIER
        assert exclusion.details.endswith("Your current plan is Basic.")
