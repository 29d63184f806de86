"""
ZRS CRM - Routes Purchase Orders
Dual admin approval (two distinct admins, any group).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models import ApprovalComment, DeclineRequest
from routes.auth import require_admin
from services.permissions import Admin
from services.purchase_orders import (
    approve_purchase_order,
    decline_purchase_order,
    get_purchase_order,
    list_purchase_orders,
)

router = APIRouter(prefix="/purchases/po", tags=["Purchase Orders"])


@router.get("")
async def list_pos(
    status: Optional[str] = None,
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    admin: Admin = Depends(require_admin),
):
    return {"success": True, "data": await list_purchase_orders(status, limit=limit, skip=skip)}


@router.get("/{po_id}")
async def get_po(po_id: str, admin: Admin = Depends(require_admin)):
    return {"success": True, "data": await get_purchase_order(po_id)}


@router.post("/{po_id}/approve")
async def approve_po(po_id: str, data: Optional[ApprovalComment] = None, admin: Admin = Depends(require_admin)):
    po = await approve_purchase_order(po_id, admin, data.comments if data else None)
    return {"success": True, "message": f"Purchase order {po['po_number']} is {po['status']}", "data": po}


@router.post("/{po_id}/decline")
async def decline_po(po_id: str, data: DeclineRequest, admin: Admin = Depends(require_admin)):
    po = await decline_purchase_order(po_id, admin, data.reason)
    return {"success": True, "message": f"Purchase order {po['po_number']} declined", "data": po}
