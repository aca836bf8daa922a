"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Storefront edge metrics
rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the per-shop rate limiter",
)

storefront_auth_failures_total = Counter(
    "storefront_auth_failures_total",
    "Storefront requests that failed token authentication",
    labelnames=["reason"],  # invalid_input, missing_record, length_mismatch, mismatch, error
)

# Entitlement metrics
quota_enforcements_total = Counter(
    "quota_enforcements_total",
    "Times every live discount of a shop was hidden to enforce its tier limit",
    labelnames=["tier"],
)

pending_tier_transitions_total = Counter(
    "pending_tier_transitions_total",
    "Scheduled tier changes applied or discarded",
    labelnames=["outcome"],  # applied, invalid
)

upgrade_required_refreshed_total = Counter(
    "upgrade_required_refreshed_total",
    "Discounts released from UPGRADE_REQUIRED after a tier change",
    labelnames=["tier"],
)
