"""
ZRS CRM - Routes Purchases (leads)
Lead intake, manual updates, the dual-group approval cycle, signature
dispatch and conversion to inventory.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models import (
    LeadCreate,
    StatusUpdate,
    NoteCreate,
    AttachmentCreate,
    PriceAnalysisUpdate,
    AssignInvestors,
    ConvertRequest,
    DeclineRequest,
    PurchaseOrderUpsert,
)
from routes.auth import get_current_actor
from services import lead_lifecycle
from services.collaborators import Collaborators, get_collaborators
from services.permissions import Actor, ensure_lead_access
from services.purchase_orders import find_for_lead, upsert_purchase_order

router = APIRouter(prefix="/purchases", tags=["Purchases"])


# ==================== LEADS ====================

@router.get("/leads")
async def list_leads(
    status: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    """Admins see every lead, managers only theirs or unassigned ones"""
    data = await lead_lifecycle.list_leads(actor, status=status, lead_type=type, limit=limit, skip=skip)
    return {"success": True, "data": data}


@router.post("/leads")
async def create_lead(data: LeadCreate, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.create_lead(data.model_dump(mode="json"), actor)
    return {"success": True, "message": f"Lead {lead['lead_number']} created", "data": lead}


@router.get("/leads/{lead_id}")
async def get_lead(lead_id: str, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.get_lead_for(actor, lead_id)
    return {"success": True, "data": lead}


@router.put("/leads/{lead_id}/status")
async def update_status(lead_id: str, data: StatusUpdate, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.update_lead_status(lead_id, actor, data.status.value, data.note)
    return {"success": True, "message": f"Status changed to {lead['status']}", "data": lead}


@router.post("/leads/{lead_id}/notes")
async def add_note(lead_id: str, data: NoteCreate, actor: Actor = Depends(get_current_actor)):
    note = await lead_lifecycle.add_note(lead_id, actor, data.content)
    return {"success": True, "data": note}


@router.post("/leads/{lead_id}/attachments")
async def add_attachment(lead_id: str, data: AttachmentCreate, actor: Actor = Depends(get_current_actor)):
    attachment = await lead_lifecycle.add_attachment(lead_id, actor, data.model_dump(mode="json"))
    return {"success": True, "data": attachment}


@router.put("/leads/{lead_id}/price-analysis")
async def update_price_analysis(lead_id: str, data: PriceAnalysisUpdate, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.update_price_analysis(
        lead_id, actor,
        min_selling_price=data.min_selling_price,
        max_selling_price=data.max_selling_price,
        purchased_final_price=data.purchased_final_price,
        vin=data.vin,
    )
    return {"success": True, "data": lead}


@router.put("/leads/{lead_id}/investors")
async def assign_investors(lead_id: str, data: AssignInvestors, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.assign_investors(
        lead_id, actor, [a.model_dump() for a in data.allocations]
    )
    return {"success": True, "message": "Investor allocations saved", "data": lead}


# ==================== PURCHASE ORDER ====================

@router.get("/leads/{lead_id}/purchase-order")
async def get_lead_purchase_order(lead_id: str, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.get_lead(lead_id)
    ensure_lead_access(actor, lead)
    return {"success": True, "data": await find_for_lead(lead_id)}


@router.put("/leads/{lead_id}/purchase-order")
async def save_purchase_order(lead_id: str, data: PurchaseOrderUpsert, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.get_lead(lead_id)
    po = await upsert_purchase_order(
        lead, actor,
        costs=data.costs.model_dump(),
        cost_assignments=data.cost_assignments.model_dump(),
        prepared_by=data.prepared_by,
    )
    return {"success": True, "message": f"Purchase order {po['po_number']} saved", "data": po}


# ==================== APPROVAL ====================

@router.post("/leads/{lead_id}/submit-approval")
async def submit_for_approval(
    lead_id: str,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
):
    result = await lead_lifecycle.submit_for_approval(lead_id, actor, collaborators)
    return {"success": True, "message": "Lead submitted for approval", "data": result}


@router.post("/leads/{lead_id}/approve")
async def approve_lead(
    lead_id: str,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
):
    result = await lead_lifecycle.approve_lead(lead_id, actor, collaborators)
    message = "Lead approved" if result["quorum_met"] else "Approval recorded, waiting for the other group"
    return {"success": True, "message": message, "data": result}


@router.post("/leads/{lead_id}/decline")
async def decline_lead(lead_id: str, data: DeclineRequest, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.decline_lead(lead_id, actor, data.reason)
    return {"success": True, "message": "Lead declined", "data": lead}


@router.post("/leads/{lead_id}/signature/retry")
async def retry_signature(
    lead_id: str,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
):
    result = await lead_lifecycle.retry_signature_dispatch(lead_id, actor, collaborators)
    return {"success": True, "data": result}


# ==================== CONVERSION / INVENTORY ====================

@router.post("/leads/{lead_id}/convert")
async def convert_to_inventory(
    lead_id: str,
    data: Optional[ConvertRequest] = None,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
):
    payment = data.model_dump(exclude_none=True) if data else {}
    result = await lead_lifecycle.convert_lead_to_vehicle(lead_id, actor, payment, collaborators)
    return {
        "success": True,
        "message": f"Vehicle added to inventory, {len(result['invoices'])} invoices generated",
        "data": result,
    }


@router.post("/inventory/{lead_id}/ready")
async def mark_ready(lead_id: str, actor: Actor = Depends(get_current_actor)):
    lead = await lead_lifecycle.mark_vehicle_ready(lead_id, actor)
    return {"success": True, "message": "Vehicle ready for sale", "data": lead}
