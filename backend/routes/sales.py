"""
ZRS CRM - Routes Sales
Close a sale on a ready vehicle, dual admin approval, settlement, report.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models import ApprovalComment, DeclineRequest, SaleClose
from routes.auth import get_current_actor, require_admin
from services import sale_settlement
from services.collaborators import Collaborators, get_collaborators
from services.permissions import Actor, Admin

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.get("")
async def list_sales(
    status: Optional[str] = None,
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    admin: Admin = Depends(require_admin),
):
    return {"success": True, "data": await sale_settlement.list_sales(status, limit=limit, skip=skip)}


@router.get("/report")
async def sales_report(
    start: Optional[str] = None,
    end: Optional[str] = None,
    admin: Admin = Depends(require_admin),
):
    """KPIs over approved sales; start / end are ISO dates"""
    return {"success": True, "data": await sale_settlement.sales_report(start, end)}


@router.get("/{sale_id}")
async def get_sale(sale_id: str, admin: Admin = Depends(require_admin)):
    return {"success": True, "data": await sale_settlement.get_sale(sale_id)}


@router.post("/vehicles/{lead_id}/close")
async def close_sale(lead_id: str, data: SaleClose, actor: Actor = Depends(get_current_actor)):
    sale = await sale_settlement.close_sale(lead_id, actor, data.model_dump())
    return {"success": True, "message": f"Sale {sale['sale_number']} created, pending approval", "data": sale}


@router.post("/{sale_id}/approve")
async def approve_sale(
    sale_id: str,
    data: Optional[ApprovalComment] = None,
    admin: Admin = Depends(require_admin),
    collaborators: Collaborators = Depends(get_collaborators),
):
    sale = await sale_settlement.approve_sale(sale_id, admin, collaborators, data.comments if data else None)
    return {"success": True, "message": f"Sale {sale['sale_number']} is {sale['status']}", "data": sale}


@router.post("/{sale_id}/decline")
async def decline_sale(sale_id: str, data: DeclineRequest, admin: Admin = Depends(require_admin)):
    sale = await sale_settlement.decline_sale(sale_id, admin, data.reason)
    return {"success": True, "message": f"Sale {sale['sale_number']} declined", "data": sale}
