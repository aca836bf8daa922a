"""Storefront best-discount resolution endpoint."""
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.api.deps import get_authenticator, get_db, get_rate_limiter
from discounts_display.auth.storefront import StorefrontAuthenticator, is_storefront_auth_enforced
from discounts_display.middleware.rate_limit import (
    RateLimiter,
    create_rate_limit_response,
    get_rate_limit_headers,
)
from discounts_display.schemas.best_discounts import (
    BestDiscountsError,
    BestDiscountsRequest,
    BestDiscountsResponse,
    BestDiscountsResult,
)
from discounts_display.schemas.discount import ResolvedDiscounts
from discounts_display.utils.discount_math import (
    filter_for_purchase_context,
    is_finite_number,
    normalize_discount_payload,
    resolve_best_discounts,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Storefront"])


def _bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization")
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):] or None
    return None


def _resolve_entry(entry: Any) -> BestDiscountsResult | BestDiscountsError:
    """Validate and price one request entry."""
    if not isinstance(entry, dict):
        return BestDiscountsError(error="Invalid request entry")

    product_id = entry.get("productId")
    if not product_id or isinstance(product_id, bool) or not isinstance(product_id, (str, int)):
        return BestDiscountsError(error="productId is required")

    regular_price_cents = entry.get("regularPriceCents")
    if not is_finite_number(regular_price_cents):
        return BestDiscountsError(error="regularPriceCents must be a finite number", product_id=product_id)

    discounts = entry.get("discounts")
    if not isinstance(discounts, list):
        return BestDiscountsError(error="discounts must be an array", product_id=product_id)

    variant_id = entry.get("variantId")
    filtered = filter_for_purchase_context(
        discounts,
        purchase_context=entry.get("purchaseContext"),
        is_subscription=entry.get("isSubscription"),
    )
    if not filtered:
        return BestDiscountsResult(product_id=product_id, variant_id=variant_id, best_discounts=ResolvedDiscounts())

    normalized = [d for d in (normalize_discount_payload(raw) for raw in filtered) if d is not None]
    if not normalized:
        return BestDiscountsError(error="No valid discounts after normalization", product_id=product_id)

    return BestDiscountsResult(
        product_id=product_id,
        variant_id=variant_id,
        best_discounts=resolve_best_discounts(normalized, regular_price_cents, variant_id),
    )


@router.post("/best-discounts")
async def best_discounts(
    request: Request,
    db: AsyncSession = Depends(get_db),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    authenticator: StorefrontAuthenticator = Depends(get_authenticator),
) -> JSONResponse:
    """
    Resolve the discounts to display for a batch of products.

    The shop is rate limited and its storefront token checked before any
    entry is priced. Entries that fail validation are reported in ``errors``
    without failing the batch; the response is 400 only when no entry
    could be priced.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("best_discounts_body_unparseable")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid request body"})

    if not isinstance(body, dict):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid request body"})

    try:
        payload = BestDiscountsRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid request body"})

    if not isinstance(payload.requests, list) or not payload.requests:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "requests must be a non-empty array"},
        )

    shop = payload.shop
    token = _bearer_token(request) or payload.token
    headers: dict[str, str] = {}

    if shop:
        rate_result = rate_limiter.check(shop)
        if not rate_result.allowed:
            return create_rate_limit_response(rate_result)
        headers.update(get_rate_limit_headers(rate_result))

        if not await authenticator.authenticate(shop, token, db):
            if is_storefront_auth_enforced():
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content={"error": "Unauthorized"},
                    headers=headers,
                )
            logger.debug("storefront_request_unauthenticated", shop=shop, has_token=bool(token))

    results: list[BestDiscountsResult] = []
    errors: list[BestDiscountsError] = []

    for entry in payload.requests:
        try:
            outcome = _resolve_entry(entry)
        except (ValueError, TypeError) as e:
            product_id = entry.get("productId") if isinstance(entry, dict) else None
            if isinstance(product_id, bool) or not isinstance(product_id, (str, int)):
                product_id = None
            logger.error("best_discounts_entry_failed", product_id=product_id, error=str(e))
            outcome = BestDiscountsError(error="Failed to resolve best discounts", product_id=product_id)

        if isinstance(outcome, BestDiscountsError):
            errors.append(outcome)
        else:
            results.append(outcome)

    logger.debug(
        "best_discounts_batch_processed",
        shop=shop,
        request_count=len(payload.requests),
        success_count=len(results),
        error_count=len(errors),
    )

    response = BestDiscountsResponse(shop=shop, results=results, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_200_OK if results else status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json", by_alias=True),
        headers=headers,
    )
