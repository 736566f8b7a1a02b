import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from app.core.pricing import get_all_pricing_tiers, get_pricing_tier, get_upgrade_pricing_tiers

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def get_plans(current_plan: Optional[str] = Query(None)):
    """
    Pricing tiers.
    Public endpoint - no authentication required.
    With current_plan, returns the upgrade view: purchasable tiers only,
    each flagged with whether it is the caller's plan.
    """
    logger.info(f"get_plans: Entry - current_plan: {current_plan}")

    if current_plan is not None:
        plans = get_upgrade_pricing_tiers(current_plan)
    else:
        plans = get_all_pricing_tiers()

    logger.info(f"get_plans: Success - {len(plans)} plans")
    return {"plans": plans}


@router.get("/{plan_id}")
async def get_plan(plan_id: str):
    tier = get_pricing_tier(plan_id)
    if tier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Plan not found: {plan_id}")
    return tier
