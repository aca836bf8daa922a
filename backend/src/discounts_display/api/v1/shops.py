"""Admin endpoints for shop tiers, live discount capacity and storefront tokens."""
import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.api.deps import get_authenticator, get_current_user, get_db
from discounts_display.auth.storefront import StorefrontAuthenticator
from discounts_display.schemas.shop_tier import (
    BillingStatusUpdate,
    DiscountRegistration,
    LiveDiscountDecision,
    LiveDiscountRecord,
    ShopTierInfo,
    ShopTierState,
    StorefrontTokenResponse,
    TierScheduleRequest,
    TierUpdate,
)
from discounts_display.services.shop_tier_service import ShopTierService
from discounts_display.tiers import is_valid_tier

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/shops", tags=["Shops"])


@router.get("/{domain}/tier", response_model=ShopTierInfo)
async def get_shop_tier(
    domain: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ShopTierInfo:
    """
    Get a shop's tier, live discount usage and billing state.

    Creates the shop on FREE if it has never been seen. Reading usage
    enforces the tier's live discount limit.
    """
    service = ShopTierService(db)
    info = await service.get_shop_tier_info(domain)
    await db.commit()
    return info


@router.get("/{domain}/live-discounts/capacity", response_model=LiveDiscountDecision)
async def get_live_discount_capacity(
    domain: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> LiveDiscountDecision:
    """Whether the shop may take one more discount live."""
    service = ShopTierService(db)
    decision = await service.can_have_more_live_discounts(domain)
    await db.commit()
    return decision


@router.put("/{domain}/tier", response_model=ShopTierState)
async def update_shop_tier(
    domain: str,
    tier_update: TierUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ShopTierState:
    """
    Change a shop's tier immediately.

    - **tier**: FREE, BASIC or ADVANCED
    - **update_billing_tier**: Also move the billing tier
    - **clear_pending**: Drop a pending change that targets the same tier
    """
    if not is_valid_tier(tier_update.tier):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid tier: {tier_update.tier}")

    service = ShopTierService(db)

    try:
        shop = await service.update_shop_tier(
            domain,
            tier_update.tier,
            update_billing_tier=tier_update.update_billing_tier,
            clear_pending=tier_update.clear_pending,
        )
        await db.commit()
    except ValueError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    logger.info("shop_tier_overridden", shop=domain, tier=tier_update.tier, operator=current_user.get("sub"))
    return ShopTierState.model_validate(shop)


@router.post("/{domain}/tier/schedule", response_model=ShopTierState)
async def schedule_tier_change(
    domain: str,
    schedule: TierScheduleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ShopTierState:
    """
    Schedule a tier change.

    The billing tier moves now; the entitlement follows once
    **effective_at** (or the current billing period end) has passed.
    """
    service = ShopTierService(db)

    try:
        shop = await service.schedule_shop_tier_change(
            domain,
            schedule.tier,
            schedule.effective_at,
            billing_subscription_id=schedule.billing_subscription_id,
            context=schedule.context,
        )
        await db.commit()
    except ValueError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return ShopTierState.model_validate(shop)


@router.delete("/{domain}/tier/schedule", response_model=ShopTierState)
async def cancel_tier_change(
    domain: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ShopTierState:
    """Cancel a scheduled tier change."""
    service = ShopTierService(db)
    shop = await service.clear_pending_tier_change(domain)
    await db.commit()
    return ShopTierState.model_validate(shop)


@router.put("/{domain}/billing-status", response_model=ShopTierState)
async def update_billing_status(
    domain: str,
    billing_status: BillingStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ShopTierState:
    """Record the billing provider's subscription status."""
    service = ShopTierService(db)
    shop = await service.update_shop_billing_status(domain, billing_status.status)
    if shop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Shop {domain} not found")

    await db.commit()
    return ShopTierState.model_validate(shop)


@router.put("/{domain}/discounts/{gid}", response_model=LiveDiscountRecord)
async def register_discount(
    domain: str,
    gid: str,
    registration: DiscountRegistration,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> LiveDiscountRecord:
    """
    Create or update a discount's display record.

    Discounts needing a feature outside the shop's tier are stored as
    UPGRADE_REQUIRED; others start hidden or scheduled.
    """
    service = ShopTierService(db)

    try:
        live_discount = await service.register_discount(domain, gid, registration)
        await db.commit()
    except ValueError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return LiveDiscountRecord.model_validate(live_discount)


@router.post("/{domain}/live-discounts/{gid}/enable", response_model=LiveDiscountDecision)
async def enable_live_discount(
    domain: str,
    gid: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """
    Take a hidden or scheduled discount live.

    Returns 409 with the quota decision when the tier limit is reached.
    """
    service = ShopTierService(db)

    try:
        decision = await service.enable_live_discount(domain, gid)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    await db.commit()

    if not decision.can_create:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=decision.model_dump())
    return decision


@router.post("/{domain}/storefront-token", response_model=StorefrontTokenResponse)
async def rotate_storefront_token(
    domain: str,
    db: AsyncSession = Depends(get_db),
    authenticator: StorefrontAuthenticator = Depends(get_authenticator),
    current_user: dict = Depends(get_current_user),
) -> StorefrontTokenResponse:
    """
    Issue a new storefront token.

    The previous token stops working immediately on this instance and once
    its cache entry expires on others.
    """
    service = ShopTierService(db)
    result = await service.get_or_create_shop_tier(domain)
    if result.is_fallback:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Shop record unavailable")

    token = await authenticator.rotate_storefront_token(domain, db)
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Shop {domain} not found")

    await db.commit()
    return StorefrontTokenResponse(domain=domain, token=token)
