"""Pydantic schemas for discounts evaluated by the pricing resolver.

Discounts arrive from the storefront as camelCase JSON; fields are populated
either by alias or by name.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Number = Union[int, float]


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VariantScope(CamelModel):
    """Variants a discount applies to: ALL, or PARTIAL with explicit ids."""

    type: Optional[str] = None
    ids: Optional[list[Union[str, int]]] = None


class DiscountBase(CamelModel):
    """Fields shared by every discount kind."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[Union[str, int]] = None
    title: Optional[str] = None
    code: Optional[str] = None
    value: Optional[Number] = 0
    is_automatic: bool = False
    variant_scope: Optional[VariantScope] = None
    applies_on_subscription: Optional[bool] = False
    applies_on_one_time_purchase: Optional[bool] = True


class PercentageDiscount(DiscountBase):
    """Percentage off; ``value`` is in percentage points."""

    type: Literal["percentage"] = "percentage"


class FixedDiscount(DiscountBase):
    """Fixed amount off; ``value`` is in minor currency units."""

    type: Literal["fixed"] = "fixed"


PricingDiscount = Annotated[Union[PercentageDiscount, FixedDiscount], Field(discriminator="type")]


class BestDiscount(CamelModel):
    """Winning discount within one pool."""

    discount: PricingDiscount
    final_price: Number
    savings: Number


class BestDiscountPair(CamelModel):
    """Best automatic and best coupon discount, chosen independently."""

    automatic_discount: Optional[PricingDiscount] = None
    automatic_final_price: Optional[Number] = None
    automatic_savings: Optional[Number] = None
    coupon_discount: Optional[PricingDiscount] = None
    coupon_final_price: Optional[Number] = None
    coupon_savings: Optional[Number] = None


class PriceEntry(CamelModel):
    """Price pair rendered by the storefront badge."""

    final_price_cents: Number
    regular_price_cents: Number


class ResolvedDiscounts(CamelModel):
    """Pricing decision for one product/variant."""

    automatic_discount: Optional[PricingDiscount] = None
    coupon_discount: Optional[PricingDiscount] = None
    automatic_entry: Optional[PriceEntry] = None
    coupon_entry: Optional[PriceEntry] = None
    base_price_cents: Optional[Number] = None
