"""
ZRS CRM - Routes Investors
Profiles, credit limit, percentage band and investment summary. Admin only.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models import (
    InvestorCreate,
    InvestorStatusUpdate,
    CreditLimitUpdate,
    PercentageBandUpdate,
    PaymentPreferences,
)
from services import credit_ledger, investors
from services.permissions import Actor, require_capability

router = APIRouter(prefix="/investors", tags=["Investors"])

manage_investors = require_capability("can_manage_investors", "manage investors")


@router.get("")
async def list_investors(
    status: Optional[str] = None,
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    actor: Actor = Depends(manage_investors),
):
    return {"success": True, "data": await investors.list_investors(status, limit=limit, skip=skip)}


@router.post("")
async def create_investor(data: InvestorCreate, actor: Actor = Depends(manage_investors)):
    investor = await investors.create_investor(data.model_dump(), actor)
    return {"success": True, "message": f"Investor {investor['email']} invited", "data": investor}


@router.get("/{investor_id}")
async def get_investor(investor_id: str, actor: Actor = Depends(manage_investors)):
    return {"success": True, "data": await investors.get_investor(investor_id)}


@router.get("/{investor_id}/summary")
async def investment_summary(investor_id: str, actor: Actor = Depends(manage_investors)):
    return {"success": True, "data": await credit_ledger.investment_summary(investor_id)}


@router.put("/{investor_id}/status")
async def update_status(investor_id: str, data: InvestorStatusUpdate, actor: Actor = Depends(manage_investors)):
    investor = await investors.update_investor_status(investor_id, data.status.value)
    return {"success": True, "data": investor}


@router.put("/{investor_id}/credit-limit")
async def update_credit_limit(investor_id: str, data: CreditLimitUpdate, actor: Actor = Depends(manage_investors)):
    await credit_ledger.update_credit_limit(investor_id, data.credit_limit)
    return {"success": True, "message": "Credit limit updated", "data": await investors.get_investor(investor_id)}


@router.put("/{investor_id}/percentage-band")
async def update_band(investor_id: str, data: PercentageBandUpdate, actor: Actor = Depends(manage_investors)):
    investor = await investors.update_percentage_band(investor_id, data.min_percentage, data.max_percentage)
    return {"success": True, "data": investor}


@router.put("/{investor_id}/payment-preferences")
async def update_payment_preferences(
    investor_id: str, data: PaymentPreferences, actor: Actor = Depends(manage_investors)
):
    investor = await investors.update_payment_preferences(investor_id, data.model_dump())
    return {"success": True, "data": investor}
