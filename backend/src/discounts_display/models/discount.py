"""Discount models: the stored discount and its storefront display state."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, String, Text

from discounts_display.models.base import Base


class DiscountStatus(enum.Enum):
    """Display status of a discount on the storefront."""

    LIVE = "LIVE"
    HIDDEN = "HIDDEN"
    SCHEDULED = "SCHEDULED"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    EXPIRED = "EXPIRED"
    NOT_SUPPORTED = "NOT_SUPPORTED"


class DiscountKind(enum.Enum):
    """Automatic discounts apply without a code; CODE discounts are coupons."""

    AUTO = "AUTO"
    CODE = "CODE"


class Discount(Base):
    """Discount record synchronised from the commerce platform."""

    __tablename__ = "discounts"

    gid = Column(String, nullable=False, unique=True, index=True)
    shop = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    status = Column(SQLEnum(DiscountStatus), nullable=False, default=DiscountStatus.HIDDEN)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Discount(gid={self.gid}, shop={self.shop}, status={self.status.value})>"


class LiveDiscount(Base):
    """
    Storefront projection of a discount.

    The per-tier live quota is counted on this table. ``exclusion_reason``
    records why a discount is held back (for example FIXED_AMOUNT_TIER).
    """

    __tablename__ = "live_discounts"

    gid = Column(String, nullable=False, unique=True, index=True)
    shop = Column(String, nullable=False, index=True)
    summary = Column(Text, nullable=True)
    discount_type = Column(SQLEnum(DiscountKind), nullable=False, default=DiscountKind.AUTO)
    status = Column(SQLEnum(DiscountStatus), nullable=False, default=DiscountStatus.LIVE, index=True)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    exclusion_reason = Column(String, nullable=True)
    exclusion_details = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<LiveDiscount(gid={self.gid}, shop={self.shop}, status={self.status.value})>"
