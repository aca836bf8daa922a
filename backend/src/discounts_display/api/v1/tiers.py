"""Tier catalog endpoint."""
from typing import Any

from fastapi import APIRouter

from discounts_display.tiers import get_available_tiers

router = APIRouter(prefix="/tiers", tags=["Tiers"])


@router.get("")
async def list_tiers() -> list[dict[str, Any]]:
    """List the subscription tiers with price, live discount limit and features."""
    return get_available_tiers()
