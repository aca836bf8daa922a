"""Shop tier state machine: current, billing and pending tiers plus quota checks."""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.metrics import pending_tier_transitions_total
from discounts_display.models.discount import Discount, DiscountStatus, LiveDiscount
from discounts_display.models.shop import Shop
from discounts_display.schemas.shop_tier import (
    DiscountRegistration,
    LiveDiscountDecision,
    ShopTierInfo,
    TierFeatureSchema,
)
from discounts_display.services.live_discount_service import LiveDiscountService
from discounts_display.tiers import (
    DEFAULT_TIER,
    TIER_CONFIG,
    evaluate_tier_gate,
    get_effective_tier,
    get_tier_config,
    is_valid_tier,
)
from discounts_display.utils.tier_context import normalize_date_input, sanitize_context

logger = structlog.get_logger(__name__)

PENDING_FIELDS_CLEARED = {
    "pending_tier": None,
    "pending_tier_effective_at": None,
    "pending_tier_source_subscription_id": None,
    "pending_tier_context": None,
}

BLOCKED_STATUSES = (
    DiscountStatus.UPGRADE_REQUIRED,
    DiscountStatus.NOT_SUPPORTED,
    DiscountStatus.EXPIRED,
)


@dataclass
class ShopTierResult:
    """
    Outcome of resolving a shop's tier.

    ``is_fallback`` distinguishes a shop that is legitimately on FREE from a
    lookup that failed and was defaulted to FREE.
    """

    shop: Shop
    is_fallback: bool = False
    error: Optional[str] = None


def build_default_shop(domain: str = "unknown") -> Shop:
    """Non-persisted FREE shop used when the real record cannot be loaded."""
    now = datetime.utcnow()
    return Shop(
        domain=domain,
        tier=DEFAULT_TIER,
        live_discount_limit=TIER_CONFIG[DEFAULT_TIER].live_discount_limit,
        billing_tier=DEFAULT_TIER,
        billing_status=None,
        billing_current_period_end=None,
        pending_tier=None,
        pending_tier_effective_at=None,
        pending_tier_source_subscription_id=None,
        pending_tier_context=None,
        trial_ends_at=None,
        trial_recorded_at=None,
        trial_source_subscription_id=None,
        created_at=now,
        updated_at=now,
    )


class ShopTierService:
    """Service layer for shop tier operations."""

    def __init__(self, db: AsyncSession):
        """Initialize shop tier service with database session."""
        self.db = db
        self.live_discounts = LiveDiscountService(db)

    async def get_shop(self, shop_domain: str) -> Shop | None:
        """
        Get shop by domain.

        Args:
            shop_domain: Shop domain

        Returns:
            Shop or None if not found
        """
        result = await self.db.execute(select(Shop).where(Shop.domain == shop_domain))
        return result.scalar_one_or_none()

    async def _write_shop(self, shop: Shop, updates: dict[str, Any]) -> Shop:
        """Apply column updates to one shop row and reload it."""
        async with self.db.begin_nested():
            await self.db.execute(
                update(Shop)
                .where(Shop.id == shop.id)
                .values(**updates)
                .execution_options(synchronize_session="fetch")
            )
        await self.db.refresh(shop)
        return shop

    async def _try_update_shop(self, shop: Shop, updates: dict[str, Any], event: str) -> Shop | None:
        """Like _write_shop, but logs and returns None when the write fails."""
        try:
            return await self._write_shop(shop, updates)
        except SQLAlchemyError as e:
            logger.error(event, shop=shop.domain, error=str(e))
            return None

    async def _create_shop(self, shop_domain: str) -> Shop:
        shop = Shop(
            domain=shop_domain,
            tier=DEFAULT_TIER,
            billing_tier=DEFAULT_TIER,
            live_discount_limit=TIER_CONFIG[DEFAULT_TIER].live_discount_limit,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(shop)
                await self.db.flush()
        except IntegrityError:
            # Another request created the row first
            existing = await self.get_shop(shop_domain)
            if existing is None:
                raise
            return existing

        logger.info("shop_created", shop=shop_domain, tier=DEFAULT_TIER)
        return shop

    async def get_or_create_shop_tier(self, shop_domain: str) -> ShopTierResult:
        """
        Load a shop's tier state, creating a FREE record on first reference.

        Also converges ``billing_tier`` and applies a pending tier change whose
        effective date has passed.

        Args:
            shop_domain: Shop domain

        Returns:
            ShopTierResult; on failure a non-persisted FREE shop flagged as a
            fallback, so pricing can still render
        """
        if not shop_domain:
            logger.error("shop_domain_missing", operation="get_or_create_shop_tier")
            return ShopTierResult(build_default_shop("unknown"), is_fallback=True, error="Shop domain is required")

        try:
            shop = await self.get_shop(shop_domain)
            if shop is None:
                shop = await self._create_shop(shop_domain)

            shop = await self._ensure_billing_tier_synced(shop)
            shop = await self._apply_pending_tier(shop)
            return ShopTierResult(shop)

        except Exception as e:
            logger.error("shop_tier_lookup_failed", shop=shop_domain, error=str(e))
            return ShopTierResult(build_default_shop(shop_domain), is_fallback=True, error=str(e))

    async def _ensure_billing_tier_synced(self, shop: Shop) -> Shop:
        """Move billing_tier to the pending tier if one exists, else to the current tier."""
        billing_tier = shop.billing_tier if isinstance(shop.billing_tier, str) else None
        pending_tier = shop.pending_tier if is_valid_tier(shop.pending_tier) else None
        current_tier = shop.tier or DEFAULT_TIER

        if not pending_tier and billing_tier == current_tier:
            return shop
        if pending_tier and billing_tier == pending_tier:
            return shop

        target = pending_tier or current_tier
        updated = await self._try_update_shop(shop, {"billing_tier": target}, "billing_tier_sync_failed")
        if updated is None:
            logger.warning("billing_tier_sync_skipped", shop=shop.domain, billing_tier=target)
            return shop
        return updated

    async def _apply_pending_tier(self, shop: Shop, now: Optional[datetime] = None) -> Shop:
        """
        Apply a pending tier change if it is due.

        A change is due once ``pending_tier_effective_at`` is not in the
        future. An unknown pending tier is cleared without touching the
        current tier. Re-applying after the pending fields are cleared is a
        no-op.
        """
        if not shop.pending_tier or not shop.pending_tier_effective_at:
            return shop

        effective_at = normalize_date_input(shop.pending_tier_effective_at)
        if effective_at is None:
            return shop

        now = now or datetime.utcnow()
        if effective_at > now:
            return shop

        target_tier = shop.pending_tier
        if not is_valid_tier(target_tier):
            logger.warning("pending_tier_invalid_cleared", shop=shop.domain, pending_tier=target_tier)
            pending_tier_transitions_total.labels(outcome="invalid").inc()
            updated = await self._try_update_shop(
                shop,
                {**PENDING_FIELDS_CLEARED, "billing_tier": shop.tier or DEFAULT_TIER},
                "pending_tier_clear_failed",
            )
            return updated or shop

        updated = await self._try_update_shop(
            shop,
            {
                "tier": target_tier,
                "live_discount_limit": TIER_CONFIG[target_tier].live_discount_limit,
                "billing_tier": target_tier,
                "billing_current_period_end": None,
                **PENDING_FIELDS_CLEARED,
            },
            "pending_tier_apply_failed",
        )
        if updated is None:
            return shop

        pending_tier_transitions_total.labels(outcome="applied").inc()
        logger.info("pending_tier_applied", shop=shop.domain, tier=target_tier, effective_at=effective_at.isoformat())
        return updated

    async def apply_pending_tier_if_due(self, shop_domain: str, now: Optional[datetime] = None) -> Shop | None:
        """
        Apply a shop's due pending tier change without creating the shop.

        Returns:
            The shop after the check, or None if it does not exist or the
            lookup failed
        """
        if not shop_domain:
            return None
        try:
            shop = await self.get_shop(shop_domain)
            if shop is None:
                return None
            return await self._apply_pending_tier(shop, now=now)
        except SQLAlchemyError as e:
            logger.error("pending_tier_apply_failed", shop=shop_domain, error=str(e))
            return None

    async def schedule_shop_tier_change(
        self,
        shop_domain: str,
        target_tier: str,
        effective_at: Any = None,
        *,
        billing_subscription_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        billing_tier: Optional[str] = None,
        shop: Optional[Shop] = None,
    ) -> Shop:
        """
        Schedule a tier change for a later date.

        Billing truth moves first: ``billing_tier`` is set to the target now,
        while the entitlement (``tier``) only changes once the effective date
        passes. Without an explicit date the change lands on the current
        billing period end.

        Args:
            shop_domain: Shop domain
            target_tier: Tier to switch to
            effective_at: When the change applies (datetime, ISO string or epoch ms)
            billing_subscription_id: Billing subscription that requested the change
            context: Audit payload stored with the change
            billing_tier: Billing tier to record (defaults to target_tier)
            shop: Already-loaded shop record

        Returns:
            Updated shop, or the unmodified shop when the write failed

        Raises:
            ValueError: If the target tier is unknown or no effective date can be determined
        """
        if not is_valid_tier(target_tier):
            raise ValueError(f"Invalid target tier for schedule: {target_tier}")

        if shop is None:
            result = await self.get_or_create_shop_tier(shop_domain)
            if result.is_fallback:
                logger.error("tier_change_schedule_failed", shop=shop_domain, error=result.error)
                return result.shop
            shop = result.shop

        effective_date = normalize_date_input(effective_at) or normalize_date_input(shop.billing_current_period_end)
        if effective_date is None:
            raise ValueError(f"No effective date for scheduled tier change on {shop_domain}")

        serialized_effective = effective_date.isoformat()
        if context is not None:
            stored_context = sanitize_context({**context, "scheduledEffectiveAt": serialized_effective})
        else:
            stored_context = {"scheduledEffectiveAt": serialized_effective}

        updated = await self._try_update_shop(
            shop,
            {
                "billing_tier": billing_tier or target_tier,
                "pending_tier": target_tier,
                "pending_tier_effective_at": effective_date,
                "pending_tier_source_subscription_id": billing_subscription_id,
                "pending_tier_context": stored_context,
                "billing_current_period_end": effective_date,
            },
            "tier_change_schedule_failed",
        )
        if updated is None:
            return shop

        logger.info(
            "tier_change_scheduled",
            shop=shop_domain,
            current_tier=shop.tier,
            pending_tier=target_tier,
            effective_at=serialized_effective,
        )
        return updated

    async def clear_pending_tier_change(self, shop_domain: str) -> Shop:
        """
        Cancel a scheduled tier change and restore billing_tier to the current tier.

        Returns:
            Updated shop, or the unmodified shop when nothing was pending or the write failed
        """
        result = await self.get_or_create_shop_tier(shop_domain)
        shop = result.shop
        if result.is_fallback or not shop.pending_tier:
            return shop

        updated = await self._try_update_shop(
            shop,
            {
                **PENDING_FIELDS_CLEARED,
                "billing_tier": shop.tier,
                "billing_current_period_end": None,
            },
            "pending_tier_clear_failed",
        )
        if updated is None:
            return shop

        logger.info("pending_tier_cleared", shop=shop_domain, tier=shop.tier)
        return updated

    async def update_shop_tier(
        self,
        shop_domain: str,
        new_tier: str,
        *,
        update_billing_tier: bool = False,
        clear_pending: bool = True,
    ) -> Shop:
        """
        Set a shop's tier immediately, outside the scheduling path.

        Used for billing events that take effect at once, such as a
        cancellation dropping the shop to FREE.

        Args:
            shop_domain: Shop domain
            new_tier: Tier to switch to
            update_billing_tier: Also set billing_tier
            clear_pending: Clear a pending change that targets the same tier

        Returns:
            Updated shop

        Raises:
            ValueError: If the tier is unknown or the shop does not exist
        """
        if not is_valid_tier(new_tier):
            raise ValueError(f"Invalid tier: {new_tier}")

        shop = await self.get_shop(shop_domain)
        if shop is None:
            raise ValueError(f"Shop not found for tier update: {shop_domain}")

        updates: dict[str, Any] = {
            "tier": new_tier,
            "live_discount_limit": TIER_CONFIG[new_tier].live_discount_limit,
            "billing_current_period_end": None,
        }
        if update_billing_tier:
            updates["billing_tier"] = new_tier
        if clear_pending and shop.pending_tier and shop.pending_tier == new_tier:
            updates.update(PENDING_FIELDS_CLEARED)

        previous_tier = shop.tier
        try:
            shop = await self._write_shop(shop, updates)
        except SQLAlchemyError as e:
            logger.error("shop_tier_update_failed", shop=shop_domain, tier=new_tier, error=str(e))
            raise

        logger.info("shop_tier_updated", shop=shop_domain, previous_tier=previous_tier, tier=new_tier)
        return shop

    async def update_shop_billing_status(self, shop_domain: str, status: Optional[str]) -> Shop | None:
        """Record the billing provider's subscription status (upper-cased, blank clears it)."""
        if not shop_domain:
            return None

        normalized = status.strip().upper() if isinstance(status, str) and status.strip() else None

        shop = await self.get_shop(shop_domain)
        if shop is None:
            logger.error("billing_status_update_failed", shop=shop_domain, error="shop not found")
            return None
        return await self._try_update_shop(shop, {"billing_status": normalized}, "billing_status_update_failed")

    async def can_have_more_live_discounts(self, shop_domain: str) -> LiveDiscountDecision:
        """
        Decide whether the shop may take one more discount live.

        Discounts held back for a feature the current tier now includes are
        released first. Fails open: an internal error allows the change
        rather than blocking the merchant. A fallback shop never drives
        refresh or enforcement, since its FREE tier is not the real one.

        Returns:
            LiveDiscountDecision
        """
        try:
            result = await self.get_or_create_shop_tier(shop_domain)
            if result.is_fallback:
                logger.warning("live_discount_check_skipped", shop=shop_domain, error=result.error)
                return self._allow_on_error()

            tier = get_effective_tier(result.shop)
            await self.live_discounts.refresh_upgrade_required_discounts(shop_domain, tier)

            tier_config = get_tier_config(tier)
            if tier_config.is_unlimited:
                return LiveDiscountDecision(can_create=True, reason="Unlimited tier", tier=tier)

            state = await self.live_discounts.get_live_discount_state(
                shop_domain,
                tier_config,
                "can_have_more_live_discounts",
            )
            can_create = state.live_discount_count < tier_config.live_discount_limit

            return LiveDiscountDecision(
                can_create=can_create,
                reason="Within limit" if can_create else "Tier limit reached",
                current_count=state.live_discount_count,
                limit=tier_config.live_discount_limit,
                tier=tier,
            )

        except Exception as e:
            logger.error("live_discount_check_failed", shop=shop_domain, error=str(e))
            return self._allow_on_error()

    @staticmethod
    def _allow_on_error() -> LiveDiscountDecision:
        return LiveDiscountDecision(
            can_create=True,
            reason="Error occurred, defaulting to allow",
            current_count=0,
            limit=TIER_CONFIG[DEFAULT_TIER].live_discount_limit,
            tier=DEFAULT_TIER,
        )

    async def get_shop_tier_info(self, shop_domain: str) -> ShopTierInfo:
        """
        Resolve tier, quota usage and billing fields for display.

        Reading the live count also enforces the quota, so a shop that was
        just downgraded below its live count has every discount hidden here.
        """
        free = TIER_CONFIG[DEFAULT_TIER]
        fallback = ShopTierInfo(
            tier=DEFAULT_TIER,
            tier_name=free.name,
            live_discount_limit=free.live_discount_limit,
            price=free.price,
            features=[TierFeatureSchema(text=f.text, bold=f.bold) for f in free.features],
        )

        if not shop_domain:
            logger.error("shop_domain_missing", operation="get_shop_tier_info")
            return fallback

        try:
            result = await self.get_or_create_shop_tier(shop_domain)
            if result.is_fallback:
                logger.warning("shop_tier_info_fallback", shop=shop_domain, error=result.error)
                return fallback

            shop = result.shop
            tier = get_effective_tier(shop)
            tier_config = get_tier_config(tier)

            state = await self.live_discounts.get_live_discount_state(shop_domain, tier_config, "get_shop_tier_info")
            limit = tier_config.live_discount_limit
            usage = math.floor(state.live_discount_count / limit * 100 + 0.5) if limit else 0

            return ShopTierInfo(
                tier=tier,
                tier_name=tier_config.name,
                live_discount_limit=limit,
                current_live_discounts=state.live_discount_count,
                price=tier_config.price,
                features=[TierFeatureSchema(text=f.text, bold=f.bold) for f in tier_config.features],
                is_unlimited=tier_config.is_unlimited,
                usage_percentage=usage,
                enforced_limit=state.enforced_limit,
                billing_tier=shop.billing_tier or tier,
                billing_current_period_end=shop.billing_current_period_end,
                pending_tier=shop.pending_tier,
                pending_tier_effective_at=shop.pending_tier_effective_at,
            )

        except Exception as e:
            logger.error("shop_tier_info_failed", shop=shop_domain, error=str(e))
            return fallback

    async def register_discount(
        self,
        shop_domain: str,
        gid: str,
        registration: DiscountRegistration,
        now: Optional[datetime] = None,
    ) -> LiveDiscount:
        """
        Create or update a discount and its display projection.

        A discount needing a feature the shop's tier lacks is stored as
        UPGRADE_REQUIRED with the exclusion recorded. Otherwise it starts
        out SCHEDULED or HIDDEN and goes live through enable_live_discount.
        An ended discount is EXPIRED.

        Raises:
            ValueError: If the gid already belongs to another shop
        """
        now = normalize_date_input(now) or datetime.utcnow()
        starts_at = normalize_date_input(registration.starts_at)
        ends_at = normalize_date_input(registration.ends_at)
        result = await self.get_or_create_shop_tier(shop_domain)
        tier = get_effective_tier(result.shop)

        exclusion = evaluate_tier_gate(
            tier,
            applies_on_subscription=registration.applies_on_subscription,
            has_variant_targets=registration.has_variant_targets,
            is_fixed_amount=registration.is_fixed_amount,
        )

        if ends_at is not None and ends_at <= now:
            target_status = DiscountStatus.EXPIRED
        elif exclusion is not None:
            target_status = DiscountStatus.UPGRADE_REQUIRED
        elif starts_at is not None and starts_at > now:
            target_status = DiscountStatus.SCHEDULED
        else:
            target_status = DiscountStatus.HIDDEN

        stored = (await self.db.execute(select(Discount).where(Discount.gid == gid))).scalar_one_or_none()
        live = (await self.db.execute(select(LiveDiscount).where(LiveDiscount.gid == gid))).scalar_one_or_none()
        for row in (stored, live):
            if row is not None and row.shop != shop_domain:
                raise ValueError(f"Discount {gid} belongs to another shop")

        if stored is None:
            stored = Discount(gid=gid, shop=shop_domain)
            self.db.add(stored)
        if live is None:
            live = LiveDiscount(gid=gid, shop=shop_domain)
            self.db.add(live)

        # A discount that is live and still permitted stays live
        if live.status == DiscountStatus.LIVE and target_status == DiscountStatus.HIDDEN:
            target_status = DiscountStatus.LIVE

        stored.title = registration.title or ""
        stored.status = target_status
        stored.starts_at = starts_at
        stored.ends_at = ends_at

        live.summary = registration.summary
        live.discount_type = registration.discount_type
        live.status = target_status
        live.starts_at = starts_at
        live.ends_at = ends_at
        live.exclusion_reason = exclusion.reason.value if exclusion is not None else None
        live.exclusion_details = exclusion.details if exclusion is not None else None

        await self.db.flush()

        logger.info(
            "discount_registered",
            shop=shop_domain,
            gid=gid,
            status=target_status.value,
            exclusion_reason=live.exclusion_reason,
        )
        return live

    async def enable_live_discount(self, shop_domain: str, gid: str) -> LiveDiscountDecision:
        """
        Re-enable a hidden or scheduled discount if the quota allows it.

        Raises:
            ValueError: If the discount does not exist for the shop
        """
        result = await self.db.execute(
            select(LiveDiscount).where(LiveDiscount.shop == shop_domain, LiveDiscount.gid == gid)
        )
        live_discount = result.scalar_one_or_none()
        if live_discount is None:
            raise ValueError(f"Discount {gid} not found for {shop_domain}")

        if live_discount.status == DiscountStatus.LIVE:
            return LiveDiscountDecision(can_create=True, reason="Already live")
        if live_discount.status in BLOCKED_STATUSES:
            return LiveDiscountDecision(
                can_create=False,
                reason=f"Discount is {live_discount.status.value}",
            )

        decision = await self.can_have_more_live_discounts(shop_domain)
        if not decision.can_create:
            logger.info("live_discount_enable_blocked", shop=shop_domain, gid=gid, limit=decision.limit)
            return decision

        live_discount.status = DiscountStatus.LIVE
        stored = await self.db.execute(select(Discount).where(Discount.shop == shop_domain, Discount.gid == gid))
        stored_discount = stored.scalar_one_or_none()
        if stored_discount is not None:
            stored_discount.status = DiscountStatus.LIVE
        await self.db.flush()

        logger.info("live_discount_enabled", shop=shop_domain, gid=gid)
        return decision
