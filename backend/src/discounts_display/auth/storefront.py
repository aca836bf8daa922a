"""Storefront request authentication against a per-shop shared secret."""
import hmac
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from discounts_display.config import settings
from discounts_display.metrics import storefront_auth_failures_total
from discounts_display.models.shop import Shop

logger = structlog.get_logger(__name__)


def generate_storefront_token() -> str:
    """Generate a 64-character hex token from 32 random bytes."""
    return secrets.token_hex(32)


@dataclass
class TokenCacheEntry:
    token: str
    expires_at: float


class TokenCache:
    """
    Bounded TTL cache of storefront tokens keyed by shop domain.

    At capacity, expired entries are purged first; if the cache is still full
    the oldest inserted entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, TokenCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, shop: str) -> Optional[str]:
        entry = self._entries.get(shop)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[shop]
            logger.debug("token_cache_entry_expired", shop=shop)
            return None
        return entry.token

    def set(self, shop: str, token: str) -> None:
        now = self._clock()
        self._entries.pop(shop, None)

        if len(self._entries) >= self.max_size:
            self._prune_expired(now)
            if len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("token_cache_entry_evicted", shop=evicted)

        self._entries[shop] = TokenCacheEntry(token=token, expires_at=now + self.ttl_seconds)

    def clear(self, shop: str) -> None:
        if self._entries.pop(shop, None) is not None:
            logger.debug("token_cache_cleared", shop=shop)

    def clear_all(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.debug("token_cache_cleared_all", cleared_entries=size)

    def _prune_expired(self, now: float) -> None:
        expired = [shop for shop, entry in self._entries.items() if now > entry.expires_at]
        for shop in expired:
            del self._entries[shop]
        if expired:
            logger.debug("token_cache_pruned", pruned_count=len(expired))


class StorefrontAuthenticator:
    """Verifies storefront tokens with a cache-aside lookup of the shop record."""

    def __init__(self, cache: TokenCache):
        self.cache = cache

    async def authenticate(self, shop: Optional[str], provided_token: Optional[str], db: AsyncSession) -> bool:
        """
        Check a storefront token against the shop's stored token.

        Fails closed: any missing input, missing record or internal error
        yields False.

        Args:
            shop: Shop domain
            provided_token: Token sent by the storefront
            db: Database session

        Returns:
            True if the token matches
        """
        try:
            if not shop or not provided_token or not isinstance(provided_token, str):
                storefront_auth_failures_total.labels(reason="invalid_input").inc()
                logger.debug("storefront_auth_invalid_input", shop=shop, has_token=bool(provided_token))
                return False

            stored_token = self.cache.get(shop)
            if not stored_token:
                result = await db.execute(select(Shop.storefront_token).where(Shop.domain == shop))
                stored_token = result.scalar_one_or_none()
                if not stored_token:
                    storefront_auth_failures_total.labels(reason="missing_record").inc()
                    logger.warning("storefront_token_not_configured", shop=shop)
                    return False
                self.cache.set(shop, stored_token)

            expected = stored_token.encode("utf-8")
            provided = provided_token.encode("utf-8")
            if len(expected) != len(provided):
                storefront_auth_failures_total.labels(reason="length_mismatch").inc()
                logger.warning("storefront_token_length_mismatch", shop=shop)
                return False

            if not hmac.compare_digest(expected, provided):
                storefront_auth_failures_total.labels(reason="mismatch").inc()
                logger.warning("storefront_token_invalid", shop=shop)
                return False

            logger.debug("storefront_auth_succeeded", shop=shop)
            return True

        except Exception as e:
            storefront_auth_failures_total.labels(reason="error").inc()
            logger.error("storefront_auth_failed", shop=shop, error=str(e))
            return False

    def clear_token_cache(self, shop: str) -> None:
        self.cache.clear(shop)

    def clear_all_token_cache(self) -> None:
        self.cache.clear_all()

    async def rotate_storefront_token(self, shop_domain: str, db: AsyncSession) -> Optional[str]:
        """
        Issue a new storefront token for a shop and drop the cached one.

        Returns:
            The new token, or None if the shop does not exist
        """
        result = await db.execute(select(Shop).where(Shop.domain == shop_domain))
        shop = result.scalar_one_or_none()
        if shop is None:
            return None

        token = generate_storefront_token()
        shop.storefront_token = token
        await db.flush()

        self.cache.clear(shop_domain)
        logger.info("storefront_token_rotated", shop=shop_domain)
        return token


def is_storefront_auth_enforced() -> bool:
    """Whether unauthenticated storefront requests are rejected."""
    return settings.storefront_auth_enforce
