"""Live discount quota enforcement and upgrade-required reclassification."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.metrics import quota_enforcements_total, upgrade_required_refreshed_total
from discounts_display.models.discount import Discount, DiscountStatus, LiveDiscount
from discounts_display.tiers import TierConfig, get_upgrade_eligible_reasons

logger = structlog.get_logger(__name__)


@dataclass
class LiveDiscountState:
    """Live discount count after quota enforcement."""

    live_discount_count: int
    enforced_limit: bool = False
    previous_count: int = 0


class LiveDiscountService:
    """Service layer for live discount quota operations."""

    def __init__(self, db: AsyncSession):
        """Initialize live discount service with database session."""
        self.db = db

    async def count_live_discounts(self, shop_domain: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(LiveDiscount)
            .where(LiveDiscount.shop == shop_domain, LiveDiscount.status == DiscountStatus.LIVE)
        )
        return result.scalar_one()

    async def get_live_discount_state(
        self,
        shop_domain: str,
        tier_config: TierConfig,
        context_label: str = "",
    ) -> LiveDiscountState:
        """
        Count a shop's live discounts, hiding all of them if over the tier limit.

        The read and the demotion run in one transaction with the LIVE rows
        locked, so a concurrent writer cannot change the count in between.
        Every live discount is hidden rather than a chosen subset; the
        merchant re-enables the ones to keep.

        Args:
            shop_domain: Shop domain
            tier_config: Tier whose limit applies
            context_label: Caller name included in log events

        Returns:
            LiveDiscountState; the count is 0 when enforcement ran
        """
        limit = tier_config.live_discount_limit

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(LiveDiscount.gid)
                    .where(LiveDiscount.shop == shop_domain, LiveDiscount.status == DiscountStatus.LIVE)
                    .with_for_update()
                )
                count = len(result.scalars().all())

                if limit is not None and count > limit:
                    await self.db.execute(
                        update(Discount)
                        .where(Discount.shop == shop_domain, Discount.status == DiscountStatus.LIVE)
                        .values(status=DiscountStatus.HIDDEN)
                        .execution_options(synchronize_session="fetch")
                    )
                    await self.db.execute(
                        update(LiveDiscount)
                        .where(LiveDiscount.shop == shop_domain, LiveDiscount.status == DiscountStatus.LIVE)
                        .values(status=DiscountStatus.HIDDEN)
                        .execution_options(synchronize_session="fetch")
                    )
                    state = LiveDiscountState(live_discount_count=0, enforced_limit=True, previous_count=count)
                else:
                    state = LiveDiscountState(live_discount_count=count, previous_count=count)

        except SQLAlchemyError as e:
            logger.error(
                "live_discount_state_failed",
                shop=shop_domain,
                context=context_label or None,
                error=str(e),
            )
            try:
                count = await self.count_live_discounts(shop_domain)
            except SQLAlchemyError as count_error:
                logger.warning("live_discount_count_failed", shop=shop_domain, error=str(count_error))
                count = 0
            return LiveDiscountState(live_discount_count=count, previous_count=count)

        if state.enforced_limit:
            quota_enforcements_total.labels(tier=tier_config.key).inc()
            logger.warning(
                "live_discount_limit_enforced",
                shop=shop_domain,
                limit=limit,
                previous_count=state.previous_count,
                context=context_label or None,
            )

        return state

    async def refresh_upgrade_required_discounts(
        self,
        shop_domain: str,
        tier: str,
        now: Optional[datetime] = None,
    ) -> tuple[int, int]:
        """
        Release discounts that were waiting on a feature the tier now includes.

        A released discount becomes SCHEDULED when its start is still in the
        future and HIDDEN otherwise. It is never set LIVE here; going live
        again needs the quota check and an explicit re-enable.

        Returns:
            Tuple of (refreshed, candidates)
        """
        eligible_reasons = get_upgrade_eligible_reasons(tier)
        if not shop_domain or not eligible_reasons:
            return 0, 0

        now = now or datetime.utcnow()

        try:
            result = await self.db.execute(
                select(LiveDiscount).where(
                    LiveDiscount.shop == shop_domain,
                    LiveDiscount.status == DiscountStatus.UPGRADE_REQUIRED,
                    LiveDiscount.exclusion_reason.in_(eligible_reasons),
                )
            )
            candidates = result.scalars().all()
            if not candidates:
                return 0, 0

            stored_result = await self.db.execute(
                select(Discount).where(
                    Discount.shop == shop_domain,
                    Discount.gid.in_([row.gid for row in candidates]),
                )
            )
            stored_by_gid = {discount.gid: discount for discount in stored_result.scalars().all()}

            refreshed = 0
            for row in candidates:
                stored = stored_by_gid.get(row.gid)
                if stored is None:
                    continue

                if stored.starts_at is not None and stored.starts_at > now:
                    row.status = DiscountStatus.SCHEDULED
                else:
                    row.status = DiscountStatus.HIDDEN
                row.exclusion_reason = None
                row.exclusion_details = None
                refreshed += 1

            await self.db.flush()

        except SQLAlchemyError as e:
            logger.error("upgrade_required_refresh_failed", shop=shop_domain, error=str(e))
            return 0, 0

        if refreshed:
            upgrade_required_refreshed_total.labels(tier=tier).inc(refreshed)
            logger.info(
                "upgrade_required_discounts_cleared",
                shop=shop_domain,
                tier=tier,
                refreshed=refreshed,
            )

        return refreshed, len(candidates)
