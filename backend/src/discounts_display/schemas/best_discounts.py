"""Pydantic schemas for the storefront best-discounts endpoint."""
from typing import Any, Optional, Union

from discounts_display.schemas.discount import CamelModel, ResolvedDiscounts


class BestDiscountsEntry(CamelModel):
    """One product/variant to price.

    ``discounts`` stays untyped here: malformed entries are reported per item
    instead of failing the whole batch.
    """

    product_id: Optional[Union[str, int]] = None
    variant_id: Optional[Union[str, int]] = None
    regular_price_cents: Any = None
    discounts: Any = None
    purchase_context: Optional[str] = None
    is_subscription: Optional[bool] = None


class BestDiscountsRequest(CamelModel):
    """Batch pricing request from the storefront extension."""

    shop: Optional[str] = None
    token: Optional[str] = None
    requests: Any = None


class BestDiscountsResult(CamelModel):
    """Resolved pricing for one entry."""

    product_id: Union[str, int]
    variant_id: Optional[Union[str, int]] = None
    best_discounts: ResolvedDiscounts


class BestDiscountsError(CamelModel):
    """Per-entry validation failure."""

    error: str
    product_id: Optional[Union[str, int]] = None


class BestDiscountsResponse(CamelModel):
    """Batch pricing response."""

    shop: Optional[str] = None
    results: list[BestDiscountsResult]
    errors: list[BestDiscountsError]
