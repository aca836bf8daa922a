"""Integration tests for shop tier state, scheduled changes and live discount quotas."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.models.discount import Discount, DiscountStatus, LiveDiscount
from discounts_display.models.shop import Shop
from discounts_display.schemas.shop_tier import DiscountRegistration
from discounts_display.services.shop_tier_service import ShopTierService
from utils.factories import DiscountFactory, ShopFactory


def metric_value(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


async def create_shop(db_session: AsyncSession, **overrides) -> Shop:
    shop = Shop(**ShopFactory.create(overrides))
    db_session.add(shop)
    await db_session.commit()
    return shop


async def create_discounts(
    db_session: AsyncSession,
    shop: str,
    count: int,
    status: DiscountStatus = DiscountStatus.LIVE,
    **live_overrides,
) -> list[str]:
    gids = []
    for _ in range(count):
        stored = DiscountFactory.create(shop, {"status": status})
        live = DiscountFactory.create_live(stored, {"status": status, **live_overrides})
        db_session.add(Discount(**stored))
        db_session.add(LiveDiscount(**live))
        gids.append(stored["gid"])
    await db_session.commit()
    return gids


async def live_statuses(db_session: AsyncSession, shop: str) -> list[DiscountStatus]:
    result = await db_session.execute(select(LiveDiscount.status).where(LiveDiscount.shop == shop))
    return list(result.scalars().all())


async def stored_statuses(db_session: AsyncSession, shop: str) -> list[DiscountStatus]:
    result = await db_session.execute(select(Discount.status).where(Discount.shop == shop))
    return list(result.scalars().all())


class TestGetOrCreateShopTier:
    """Tests for tier resolution."""

    @pytest.mark.asyncio
    async def test_unknown_shop_is_created_on_free(self, db_session: AsyncSession) -> None:
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier("new-shop.myshopify.com")
        await db_session.commit()

        assert result.is_fallback is False
        assert result.error is None
        assert result.shop.id is not None
        assert result.shop.tier == "FREE"
        assert result.shop.billing_tier == "FREE"
        assert result.shop.live_discount_limit == 1

        again = await service.get_or_create_shop_tier("new-shop.myshopify.com")
        assert again.shop.id == result.shop.id

    @pytest.mark.asyncio
    async def test_missing_domain_returns_fallback(self, db_session: AsyncSession) -> None:
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier("")

        assert result.is_fallback is True
        assert result.shop.tier == "FREE"
        assert result.error == "Shop domain is required"

    @pytest.mark.asyncio
    async def test_storage_failure_returns_fallback(self, db_session: AsyncSession) -> None:
        service = ShopTierService(db_session)
        failure = OperationalError("SELECT", {}, Exception("database is down"))

        with patch.object(service, "get_shop", AsyncMock(side_effect=failure)):
            result = await service.get_or_create_shop_tier("down.myshopify.com")

        assert result.is_fallback is True
        assert result.shop.domain == "down.myshopify.com"
        assert result.shop.tier == "FREE"
        assert "database is down" in result.error

    @pytest.mark.asyncio
    async def test_billing_tier_converges_to_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="BASIC", live_discount_limit=3, billing_tier="FREE")
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.billing_tier == "BASIC"

    @pytest.mark.asyncio
    async def test_billing_tier_follows_pending_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="BASIC",
            billing_tier="BASIC",
            pending_tier="ADVANCED",
            pending_tier_effective_at=datetime.utcnow() + timedelta(days=10),
        )
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.tier == "BASIC"
        assert result.shop.billing_tier == "ADVANCED"


class TestPendingTierChanges:
    """Tests for scheduled tier transitions."""

    @pytest.mark.asyncio
    async def test_due_pending_tier_is_applied(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="BASIC",
            live_discount_limit=3,
            billing_tier="FREE",
            billing_current_period_end=datetime.utcnow() - timedelta(minutes=5),
            pending_tier="FREE",
            pending_tier_effective_at=datetime.utcnow() - timedelta(minutes=5),
            pending_tier_source_subscription_id="sub_123",
            pending_tier_context={"reason": "downgrade"},
        )
        applied_before = metric_value("pending_tier_transitions_total", {"outcome": "applied"})
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.tier == "FREE"
        assert result.shop.live_discount_limit == 1
        assert result.shop.billing_tier == "FREE"
        assert result.shop.billing_current_period_end is None
        assert result.shop.pending_tier is None
        assert result.shop.pending_tier_effective_at is None
        assert result.shop.pending_tier_source_subscription_id is None
        assert result.shop.pending_tier_context is None
        assert metric_value("pending_tier_transitions_total", {"outcome": "applied"}) == applied_before + 1

    @pytest.mark.asyncio
    async def test_upgrade_to_unlimited_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            pending_tier="ADVANCED",
            billing_tier="ADVANCED",
            pending_tier_effective_at=datetime.utcnow() - timedelta(seconds=1),
        )
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.tier == "ADVANCED"
        assert result.shop.live_discount_limit is None

    @pytest.mark.asyncio
    async def test_future_pending_tier_is_not_applied(self, db_session: AsyncSession) -> None:
        effective_at = datetime.utcnow() + timedelta(days=3)
        shop = await create_shop(
            db_session,
            tier="BASIC",
            billing_tier="FREE",
            pending_tier="FREE",
            pending_tier_effective_at=effective_at,
        )
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.tier == "BASIC"
        assert result.shop.pending_tier == "FREE"
        assert result.shop.pending_tier_effective_at == effective_at

    @pytest.mark.asyncio
    async def test_invalid_pending_tier_is_cleared(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="BASIC",
            live_discount_limit=3,
            billing_tier="BASIC",
            pending_tier="PLATINUM",
            pending_tier_effective_at=datetime.utcnow() - timedelta(hours=1),
        )
        invalid_before = metric_value("pending_tier_transitions_total", {"outcome": "invalid"})
        service = ShopTierService(db_session)

        result = await service.get_or_create_shop_tier(shop.domain)

        assert result.shop.tier == "BASIC"
        assert result.shop.billing_tier == "BASIC"
        assert result.shop.pending_tier is None
        assert result.shop.pending_tier_effective_at is None
        assert metric_value("pending_tier_transitions_total", {"outcome": "invalid"}) == invalid_before + 1

    @pytest.mark.asyncio
    async def test_apply_pending_tier_is_idempotent(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="ADVANCED",
            live_discount_limit=None,
            billing_tier="BASIC",
            pending_tier="BASIC",
            pending_tier_effective_at=datetime.utcnow() - timedelta(days=1),
        )
        service = ShopTierService(db_session)

        first = await service.apply_pending_tier_if_due(shop.domain)
        second = await service.apply_pending_tier_if_due(shop.domain)

        assert first.tier == "BASIC"
        assert second.tier == "BASIC"
        assert second.live_discount_limit == 3
        assert second.pending_tier is None

    @pytest.mark.asyncio
    async def test_apply_pending_tier_for_unknown_shop(self, db_session: AsyncSession) -> None:
        service = ShopTierService(db_session)

        assert await service.apply_pending_tier_if_due("ghost.myshopify.com") is None
        assert await service.get_shop("ghost.myshopify.com") is None

    @pytest.mark.asyncio
    async def test_schedule_defaults_to_period_end(self, db_session: AsyncSession) -> None:
        period_end = datetime.utcnow() + timedelta(days=20)
        shop = await create_shop(
            db_session,
            tier="BASIC",
            live_discount_limit=3,
            billing_tier="BASIC",
            billing_current_period_end=period_end,
        )
        service = ShopTierService(db_session)

        updated = await service.schedule_shop_tier_change(
            shop.domain,
            "FREE",
            billing_subscription_id="sub_456",
            context={"requestedAt": datetime(2025, 1, 2, 3, 4, 5)},
        )

        assert updated.tier == "BASIC"
        assert updated.billing_tier == "FREE"
        assert updated.pending_tier == "FREE"
        assert updated.pending_tier_effective_at == period_end
        assert updated.billing_current_period_end == period_end
        assert updated.pending_tier_source_subscription_id == "sub_456"
        assert updated.pending_tier_context == {
            "requestedAt": "2025-01-02T03:04:05",
            "scheduledEffectiveAt": period_end.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_schedule_accepts_iso_effective_date(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        updated = await service.schedule_shop_tier_change(shop.domain, "BASIC", "2099-01-01T00:00:00Z")

        assert updated.pending_tier_effective_at == datetime(2099, 1, 1)
        assert updated.pending_tier_context == {"scheduledEffectiveAt": "2099-01-01T00:00:00"}
        assert updated.tier == "FREE"

    @pytest.mark.asyncio
    async def test_schedule_rejects_invalid_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        with pytest.raises(ValueError, match="Invalid target tier"):
            await service.schedule_shop_tier_change(shop.domain, "GOLD", datetime.utcnow())

    @pytest.mark.asyncio
    async def test_schedule_requires_an_effective_date(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        with pytest.raises(ValueError, match="No effective date"):
            await service.schedule_shop_tier_change(shop.domain, "BASIC")

    @pytest.mark.asyncio
    async def test_clear_pending_restores_billing_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="BASIC", live_discount_limit=3, billing_tier="BASIC")
        service = ShopTierService(db_session)
        await service.schedule_shop_tier_change(shop.domain, "FREE", datetime.utcnow() + timedelta(days=5))

        cleared = await service.clear_pending_tier_change(shop.domain)

        assert cleared.tier == "BASIC"
        assert cleared.billing_tier == "BASIC"
        assert cleared.pending_tier is None
        assert cleared.pending_tier_effective_at is None
        assert cleared.pending_tier_context is None
        assert cleared.billing_current_period_end is None


class TestUpdateShopTier:
    """Tests for administrative tier changes."""

    @pytest.mark.asyncio
    async def test_update_tier_clears_matching_pending_change(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="BASIC",
            live_discount_limit=3,
            billing_tier="ADVANCED",
            pending_tier="ADVANCED",
            pending_tier_effective_at=datetime.utcnow() + timedelta(days=5),
        )
        service = ShopTierService(db_session)

        updated = await service.update_shop_tier(shop.domain, "ADVANCED", update_billing_tier=True)

        assert updated.tier == "ADVANCED"
        assert updated.live_discount_limit is None
        assert updated.billing_tier == "ADVANCED"
        assert updated.pending_tier is None

    @pytest.mark.asyncio
    async def test_update_tier_keeps_unrelated_pending_change(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="BASIC",
            billing_tier="ADVANCED",
            pending_tier="ADVANCED",
            pending_tier_effective_at=datetime.utcnow() + timedelta(days=5),
        )
        service = ShopTierService(db_session)

        updated = await service.update_shop_tier(shop.domain, "FREE")

        assert updated.tier == "FREE"
        assert updated.live_discount_limit == 1
        assert updated.billing_tier == "ADVANCED"
        assert updated.pending_tier == "ADVANCED"

    @pytest.mark.asyncio
    async def test_update_tier_rejects_invalid_tier_and_unknown_shop(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        with pytest.raises(ValueError, match="Invalid tier"):
            await service.update_shop_tier(shop.domain, "GOLD")
        with pytest.raises(ValueError, match="Shop not found"):
            await service.update_shop_tier("ghost.myshopify.com", "BASIC")

    @pytest.mark.asyncio
    async def test_billing_status_is_normalised(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        updated = await service.update_shop_billing_status(shop.domain, "  active ")
        assert updated.billing_status == "ACTIVE"

        updated = await service.update_shop_billing_status(shop.domain, "   ")
        assert updated.billing_status is None

        assert await service.update_shop_billing_status("ghost.myshopify.com", "ACTIVE") is None


class TestLiveDiscountQuota:
    """Tests for live discount capacity and enforcement."""

    @pytest.mark.asyncio
    async def test_free_shop_within_limit(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        decision = await service.can_have_more_live_discounts(shop.domain)

        assert decision.can_create is True
        assert decision.reason == "Within limit"
        assert decision.current_count == 0
        assert decision.limit == 1
        assert decision.tier == "FREE"

    @pytest.mark.asyncio
    async def test_free_shop_at_limit(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        await create_discounts(db_session, shop.domain, 1)
        service = ShopTierService(db_session)

        decision = await service.can_have_more_live_discounts(shop.domain)

        assert decision.can_create is False
        assert decision.reason == "Tier limit reached"
        assert decision.current_count == 1

    @pytest.mark.asyncio
    async def test_unlimited_tier(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="ADVANCED", billing_tier="ADVANCED", live_discount_limit=None)
        await create_discounts(db_session, shop.domain, 5)
        service = ShopTierService(db_session)

        decision = await service.can_have_more_live_discounts(shop.domain)

        assert decision.can_create is True
        assert decision.reason == "Unlimited tier"

    @pytest.mark.asyncio
    async def test_over_limit_hides_every_live_discount(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        await create_discounts(db_session, shop.domain, 3)
        enforced_before = metric_value("quota_enforcements_total", {"tier": "FREE"})
        service = ShopTierService(db_session)

        info = await service.get_shop_tier_info(shop.domain)
        await db_session.commit()

        assert info.tier == "FREE"
        assert info.current_live_discounts == 0
        assert info.enforced_limit is True
        assert info.usage_percentage == 0
        assert await live_statuses(db_session, shop.domain) == [DiscountStatus.HIDDEN] * 3
        assert await stored_statuses(db_session, shop.domain) == [DiscountStatus.HIDDEN] * 3
        assert metric_value("quota_enforcements_total", {"tier": "FREE"}) == enforced_before + 1

    @pytest.mark.asyncio
    async def test_downgrade_enforces_new_limit(self, db_session: AsyncSession) -> None:
        shop = await create_shop(
            db_session,
            tier="ADVANCED",
            live_discount_limit=None,
            billing_tier="BASIC",
            pending_tier="BASIC",
            pending_tier_effective_at=datetime.utcnow() - timedelta(minutes=1),
        )
        await create_discounts(db_session, shop.domain, 4)
        service = ShopTierService(db_session)

        info = await service.get_shop_tier_info(shop.domain)

        assert info.tier == "BASIC"
        assert info.live_discount_limit == 3
        assert info.enforced_limit is True
        assert info.current_live_discounts == 0
        assert await live_statuses(db_session, shop.domain) == [DiscountStatus.HIDDEN] * 4

    @pytest.mark.asyncio
    async def test_tier_info_reports_usage(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="BASIC", billing_tier="BASIC", live_discount_limit=3)
        await create_discounts(db_session, shop.domain, 1)
        await create_discounts(db_session, shop.domain, 2, status=DiscountStatus.HIDDEN)
        service = ShopTierService(db_session)

        info = await service.get_shop_tier_info(shop.domain)

        assert info.tier_name == "Basic"
        assert info.price == 9.99
        assert info.current_live_discounts == 1
        assert info.usage_percentage == 33
        assert info.enforced_limit is False
        assert info.is_unlimited is False
        assert info.features[-1].bold is True

    @pytest.mark.asyncio
    async def test_capacity_check_fails_open(self, db_session: AsyncSession) -> None:
        service = ShopTierService(db_session)

        with patch.object(service, "get_or_create_shop_tier", AsyncMock(side_effect=RuntimeError("boom"))):
            decision = await service.can_have_more_live_discounts("any.myshopify.com")

        assert decision.can_create is True
        assert decision.reason == "Error occurred, defaulting to allow"
        assert decision.tier == "FREE"
        assert decision.limit == 1

    @pytest.mark.asyncio
    async def test_capacity_check_on_fallback_shop_keeps_live_discounts(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="ADVANCED", billing_tier="ADVANCED", live_discount_limit=None)
        await create_discounts(db_session, shop.domain, 3)
        service = ShopTierService(db_session)
        failure = OperationalError("SELECT", {}, Exception("transient"))

        with patch.object(service, "get_shop", AsyncMock(side_effect=failure)):
            decision = await service.can_have_more_live_discounts(shop.domain)

        assert decision.can_create is True
        assert decision.reason == "Error occurred, defaulting to allow"
        assert await live_statuses(db_session, shop.domain) == [DiscountStatus.LIVE] * 3
        assert await stored_statuses(db_session, shop.domain) == [DiscountStatus.LIVE] * 3

    @pytest.mark.asyncio
    async def test_tier_info_on_fallback_shop_keeps_live_discounts(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="ADVANCED", billing_tier="ADVANCED", live_discount_limit=None)
        await create_discounts(db_session, shop.domain, 3)
        service = ShopTierService(db_session)
        failure = OperationalError("SELECT", {}, Exception("transient"))

        with patch.object(service, "get_shop", AsyncMock(side_effect=failure)):
            info = await service.get_shop_tier_info(shop.domain)

        assert info.tier == "FREE"
        assert info.enforced_limit is False
        assert await live_statuses(db_session, shop.domain) == [DiscountStatus.LIVE] * 3


class TestUpgradeRequiredRefresh:
    """Tests for releasing discounts after an upgrade."""

    @pytest.mark.asyncio
    async def test_upgrade_releases_permitted_discounts(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="BASIC", billing_tier="BASIC", live_discount_limit=3)
        service = ShopTierService(db_session)

        started = await create_discounts(
            db_session,
            shop.domain,
            1,
            status=DiscountStatus.UPGRADE_REQUIRED,
            exclusion_reason="FIXED_AMOUNT_TIER",
            exclusion_details="Fixed-amount discounts require the Basic plan or higher.",
        )
        future = DiscountFactory.create(
            shop.domain,
            {"status": DiscountStatus.UPGRADE_REQUIRED, "starts_at": datetime.utcnow() + timedelta(days=2)},
        )
        db_session.add(Discount(**future))
        db_session.add(LiveDiscount(**DiscountFactory.create_live(future, {"exclusion_reason": "FIXED_AMOUNT_TIER"})))
        blocked = await create_discounts(
            db_session,
            shop.domain,
            1,
            status=DiscountStatus.UPGRADE_REQUIRED,
            exclusion_reason="SUBSCRIPTION_TIER",
        )

        refreshed, candidates = await service.live_discounts.refresh_upgrade_required_discounts(shop.domain, "BASIC")
        await db_session.commit()

        assert (refreshed, candidates) == (2, 2)

        rows = (
            await db_session.execute(
                select(LiveDiscount.gid, LiveDiscount.status, LiveDiscount.exclusion_reason).where(
                    LiveDiscount.shop == shop.domain
                )
            )
        ).all()
        by_gid = {gid: (status, reason) for gid, status, reason in rows}

        assert by_gid[started[0]] == (DiscountStatus.HIDDEN, None)
        assert by_gid[future["gid"]] == (DiscountStatus.SCHEDULED, None)
        assert by_gid[blocked[0]] == (DiscountStatus.UPGRADE_REQUIRED, "SUBSCRIPTION_TIER")

    @pytest.mark.asyncio
    async def test_row_without_stored_discount_is_skipped(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session, tier="ADVANCED", billing_tier="ADVANCED", live_discount_limit=None)
        orphan = DiscountFactory.create(shop.domain, {"status": DiscountStatus.UPGRADE_REQUIRED})
        db_session.add(LiveDiscount(**DiscountFactory.create_live(orphan, {"exclusion_reason": "VARIANT_TIER"})))
        await db_session.commit()
        service = ShopTierService(db_session)

        refreshed, candidates = await service.live_discounts.refresh_upgrade_required_discounts(
            shop.domain, "ADVANCED"
        )

        assert (refreshed, candidates) == (0, 1)

    @pytest.mark.asyncio
    async def test_free_tier_releases_nothing(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        await create_discounts(
            db_session,
            shop.domain,
            1,
            status=DiscountStatus.UPGRADE_REQUIRED,
            exclusion_reason="FIXED_AMOUNT_TIER",
        )
        service = ShopTierService(db_session)

        assert await service.live_discounts.refresh_upgrade_required_discounts(shop.domain, "FREE") == (0, 0)


class TestDiscountLifecycle:
    """Tests for registering and enabling discounts."""

    @pytest.mark.asyncio
    async def test_gated_discount_requires_upgrade(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        live = await service.register_discount(
            shop.domain,
            "gid://shopify/DiscountNode/1",
            DiscountRegistration(title="$5 off", is_fixed_amount=True),
        )

        assert live.status == DiscountStatus.UPGRADE_REQUIRED
        assert live.exclusion_reason == "FIXED_AMOUNT_TIER"
        assert "Basic plan" in live.exclusion_details

        decision = await service.enable_live_discount(shop.domain, "gid://shopify/DiscountNode/1")
        assert decision.can_create is False

    @pytest.mark.asyncio
    async def test_enable_respects_quota(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)
        for gid in ("gid://shopify/DiscountNode/1", "gid://shopify/DiscountNode/2"):
            live = await service.register_discount(shop.domain, gid, DiscountRegistration(title="10% off"))
            assert live.status == DiscountStatus.HIDDEN

        first = await service.enable_live_discount(shop.domain, "gid://shopify/DiscountNode/1")
        second = await service.enable_live_discount(shop.domain, "gid://shopify/DiscountNode/2")
        await db_session.commit()

        assert first.can_create is True
        assert second.can_create is False
        assert second.reason == "Tier limit reached"
        assert sorted(s.value for s in await live_statuses(db_session, shop.domain)) == ["HIDDEN", "LIVE"]

    @pytest.mark.asyncio
    async def test_future_discount_is_scheduled(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        live = await service.register_discount(
            shop.domain,
            "gid://shopify/DiscountNode/9",
            DiscountRegistration(starts_at=datetime.utcnow() + timedelta(days=1)),
        )

        assert live.status == DiscountStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_offset_dates_are_stored_as_naive_utc(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        live = await service.register_discount(
            shop.domain,
            "gid://shopify/DiscountNode/10",
            DiscountRegistration(starts_at="2030-01-01T02:00:00+02:00", ends_at="2030-02-01T00:00:00Z"),
            now=datetime(2029, 12, 1),
        )

        assert live.status == DiscountStatus.SCHEDULED
        assert live.starts_at == datetime(2030, 1, 1, 0, 0)
        assert live.ends_at == datetime(2030, 2, 1, 0, 0)
        assert live.ends_at.tzinfo is None

    @pytest.mark.asyncio
    async def test_ended_discount_with_utc_suffix_is_expired(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        live = await service.register_discount(
            shop.domain,
            "gid://shopify/DiscountNode/11",
            DiscountRegistration(ends_at="2020-01-01T00:00:00Z"),
        )

        assert live.status == DiscountStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_gid_of_another_shop_is_rejected(self, db_session: AsyncSession) -> None:
        owner = await create_shop(db_session)
        other = await create_shop(db_session)
        service = ShopTierService(db_session)
        await service.register_discount(owner.domain, "gid://shopify/DiscountNode/5", DiscountRegistration())

        with pytest.raises(ValueError, match="another shop"):
            await service.register_discount(other.domain, "gid://shopify/DiscountNode/5", DiscountRegistration())

    @pytest.mark.asyncio
    async def test_enable_unknown_discount(self, db_session: AsyncSession) -> None:
        shop = await create_shop(db_session)
        service = ShopTierService(db_session)

        with pytest.raises(ValueError, match="not found"):
            await service.enable_live_discount(shop.domain, "gid://shopify/DiscountNode/404")
