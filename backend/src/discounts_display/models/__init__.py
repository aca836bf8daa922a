"""SQLAlchemy ORM models for the discount display engine."""
# Import all models here so they register on the shared metadata

from discounts_display.models.base import Base
from discounts_display.models.shop import Shop
from discounts_display.models.discount import Discount, DiscountKind, DiscountStatus, LiveDiscount

__all__ = [
    "Base",
    "Shop",
    "Discount",
    "DiscountKind",
    "DiscountStatus",
    "LiveDiscount",
]
