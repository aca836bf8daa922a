"""Shop model holding a shop's subscription tier state."""
from sqlalchemy import Column, DateTime, Integer, JSON, String

from discounts_display.models.base import Base


class Shop(Base):
    """
    Tier and billing state for one shop domain.

    ``tier`` is the entitlement currently in effect. ``billing_tier`` is the
    last tier confirmed by the billing provider and can run ahead of ``tier``
    while a scheduled change is pending. ``pending_tier`` and
    ``pending_tier_effective_at`` are always set or cleared together.
    """

    __tablename__ = "shops"

    domain = Column(String, nullable=False, unique=True, index=True)
    # Stored as plain strings so a corrupt value can be detected and cleared
    tier = Column(String, nullable=False, default="FREE")
    live_discount_limit = Column(Integer, nullable=True)  # NULL means unlimited
    billing_tier = Column(String, nullable=False, default="FREE")
    billing_status = Column(String, nullable=True)
    billing_current_period_end = Column(DateTime, nullable=True)

    pending_tier = Column(String, nullable=True)
    pending_tier_effective_at = Column(DateTime, nullable=True)
    pending_tier_source_subscription_id = Column(String, nullable=True)
    pending_tier_context = Column(JSON, nullable=True)

    trial_ends_at = Column(DateTime, nullable=True)
    trial_recorded_at = Column(DateTime, nullable=True)
    trial_source_subscription_id = Column(String, nullable=True)

    storefront_token = Column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Shop(domain={self.domain}, tier={self.tier}, pending_tier={self.pending_tier})>"
