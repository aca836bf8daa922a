"""Discount arithmetic and best-discount selection.

All amounts are integer minor currency units (cents). Savings are always
floored, never rounded up, so a shopper is never shown a price lower than the
one checkout will charge.
"""
import math
from numbers import Real
from typing import Any, Optional, Sequence

import structlog
from pydantic import TypeAdapter, ValidationError

from discounts_display.schemas.discount import (
    BestDiscount,
    BestDiscountPair,
    FixedDiscount,
    PercentageDiscount,
    PriceEntry,
    PricingDiscount,
    ResolvedDiscounts,
)

logger = structlog.get_logger(__name__)

_discount_adapter = TypeAdapter(PricingDiscount)

SUBSCRIPTION_CONTEXTS = {"subscription", "SUBSCRIPTION"}
ONE_TIME_CONTEXTS = {"one_time", "ONE_TIME"}


def is_finite_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _clamped_savings(price: Real, discount: PercentageDiscount | FixedDiscount) -> int:
    value = discount.value if is_finite_number(discount.value) else 0
    if discount.type == "percentage":
        percentage = min(max(value, 0), 100)
        return math.floor(price * percentage / 100)
    return math.floor(min(max(value, 0), price))


def calculate_discounted_price(price: Any, discount: Optional[PercentageDiscount | FixedDiscount]) -> Any:
    """
    Apply a discount to a price.

    Args:
        price: Regular price in cents
        discount: Percentage or fixed discount, or None

    Returns:
        Discounted price in cents; ``price`` unchanged when there is no
        discount or the price is not a finite number
    """
    if discount is None or not is_finite_number(price):
        return price
    return max(0, price - _clamped_savings(price, discount))


def calculate_actual_savings(price: Any, discount: Optional[PercentageDiscount | FixedDiscount]) -> int:
    """Savings in cents a discount yields on a price (0 when not computable)."""
    if discount is None or not is_finite_number(price):
        return 0
    return _clamped_savings(price, discount)


def is_discount_eligible_for_variant(
    discount: PercentageDiscount | FixedDiscount,
    current_variant_id: Any,
) -> bool:
    """
    Check whether a discount applies to a variant.

    Variant ids are compared as strings, so numeric and string ids match.
    Only ALL and PARTIAL scopes are recognised; any other scope kind is
    treated as not applicable.
    """
    scope = discount.variant_scope
    if scope is None or not scope.type:
        return True

    if scope.type == "ALL":
        return True

    if scope.type == "PARTIAL" and isinstance(scope.ids, list):
        if current_variant_id is None:
            return False
        return str(current_variant_id) in {str(variant_id) for variant_id in scope.ids}

    return False


def find_best_discount(
    discounts: Sequence[PercentageDiscount | FixedDiscount],
    regular_price_cents: Any,
    current_variant_id: Any,
) -> Optional[BestDiscount]:
    """
    Pick the discount with the largest savings among those eligible.

    Ties on savings go to the discount with the larger raw ``value``, whatever
    its type: a 2000-cent fixed discount beats 20% off when both save 2000.
    """
    eligible = [d for d in discounts if is_discount_eligible_for_variant(d, current_variant_id)]
    if not eligible:
        return None

    best = None
    best_savings = -1
    best_value = -math.inf

    for discount in eligible:
        savings = calculate_actual_savings(regular_price_cents, discount)
        value = discount.value if is_finite_number(discount.value) else 0
        if savings > best_savings or (savings == best_savings and value > best_value):
            best = discount
            best_savings = savings
            best_value = value

    return BestDiscount(
        discount=best,
        final_price=calculate_discounted_price(regular_price_cents, best),
        savings=best_savings,
    )


def find_best_discounts(
    discounts: Sequence[PercentageDiscount | FixedDiscount],
    regular_price_cents: Any,
    current_variant_id: Any,
) -> BestDiscountPair:
    """Find the best automatic and best coupon discount independently."""
    automatic = find_best_discount(
        [d for d in discounts if d.is_automatic],
        regular_price_cents,
        current_variant_id,
    )
    coupon = find_best_discount(
        [d for d in discounts if not d.is_automatic],
        regular_price_cents,
        current_variant_id,
    )

    return BestDiscountPair(
        automatic_discount=automatic.discount if automatic else None,
        automatic_final_price=automatic.final_price if automatic else None,
        automatic_savings=automatic.savings if automatic else None,
        coupon_discount=coupon.discount if coupon else None,
        coupon_final_price=coupon.final_price if coupon else None,
        coupon_savings=coupon.savings if coupon else None,
    )


def resolve_best_discounts(
    discounts: Any,
    regular_price_cents: Any,
    current_variant_id: Any = None,
) -> ResolvedDiscounts:
    """
    Resolve what to display for one product/variant.

    A coupon is only surfaced when it is strictly better than the best
    automatic discount; an equal or worse coupon is suppressed.

    Returns:
        ResolvedDiscounts, all fields None when ``discounts`` is not a list or
        the price is not a finite number
    """
    if not isinstance(discounts, list) or not is_finite_number(regular_price_cents):
        return ResolvedDiscounts()

    pair = find_best_discounts(discounts, regular_price_cents, current_variant_id)
    coupon_discount = pair.coupon_discount
    coupon_final_price = pair.coupon_final_price

    if pair.automatic_discount is not None and coupon_discount is not None:
        if pair.automatic_final_price <= coupon_final_price:
            coupon_discount = None
            coupon_final_price = None

    automatic_entry = None
    if pair.automatic_discount is not None:
        automatic_entry = PriceEntry(
            final_price_cents=pair.automatic_final_price,
            regular_price_cents=regular_price_cents,
        )

    coupon_entry = None
    if coupon_discount is not None:
        coupon_entry = PriceEntry(
            final_price_cents=coupon_final_price,
            regular_price_cents=regular_price_cents,
        )

    return ResolvedDiscounts(
        automatic_discount=pair.automatic_discount,
        coupon_discount=coupon_discount,
        automatic_entry=automatic_entry,
        coupon_entry=coupon_entry,
        base_price_cents=regular_price_cents,
    )


def normalize_discount_payload(raw: Any) -> Optional[PercentageDiscount | FixedDiscount]:
    """
    Coerce an untrusted storefront discount object into a typed discount.

    Returns:
        The typed discount, or None for unsupported types and non-finite values
    """
    if not isinstance(raw, dict):
        return None

    discount_type = raw.get("type")
    discount_type = discount_type.lower() if isinstance(discount_type, str) else None
    if discount_type not in ("percentage", "fixed"):
        return None

    value = raw.get("value")
    if not is_finite_number(value):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(value):
            return None

    payload = {
        **raw,
        "type": discount_type,
        "value": value,
        "isAutomatic": bool(raw.get("isAutomatic", raw.get("is_automatic"))),
    }
    payload.pop("is_automatic", None)

    try:
        return _discount_adapter.validate_python(payload)
    except ValidationError as exc:
        logger.debug("discount_payload_rejected", errors=exc.error_count())
        return None


def filter_for_purchase_context(
    discounts: Sequence[Any],
    purchase_context: Optional[str] = None,
    is_subscription: Optional[bool] = None,
) -> list[Any]:
    """
    Keep the raw discounts that apply to the shopper's purchase option.

    Subscription purchases only see discounts that opt into subscriptions;
    one-time purchases drop discounts that explicitly exclude them.
    """
    wants_subscription = purchase_context in SUBSCRIPTION_CONTEXTS or is_subscription is True
    wants_one_time = purchase_context in ONE_TIME_CONTEXTS

    kept = []
    for discount in discounts:
        if not isinstance(discount, dict):
            continue
        if wants_subscription:
            if discount.get("appliesOnSubscription") is True:
                kept.append(discount)
        elif wants_one_time:
            if discount.get("appliesOnOneTimePurchase") is not False:
                kept.append(discount)
        else:
            kept.append(discount)
    return kept
