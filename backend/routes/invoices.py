"""
ZRS CRM - Routes Invoices
Purchase invoices generated at conversion: listing, PDF download,
cost evidence and re-delivery.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from models import EvidenceAttach
from routes.auth import require_admin
from services import invoice_generator
from services.collaborators import Collaborators, get_collaborators
from services.permissions import Admin

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.get("")
async def list_invoices(
    investor_id: Optional[str] = None,
    lead_id: Optional[str] = None,
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    admin: Admin = Depends(require_admin),
):
    data = await invoice_generator.list_invoices(investor_id=investor_id, lead_id=lead_id, limit=limit, skip=skip)
    return {"success": True, "data": data}


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, admin: Admin = Depends(require_admin)):
    return {"success": True, "data": await invoice_generator.get_invoice(invoice_id)}


@router.get("/{invoice_id}/pdf")
async def download_pdf(invoice_id: str, admin: Admin = Depends(require_admin)):
    file_name, content = await invoice_generator.invoice_pdf_bytes(invoice_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.put("/{invoice_id}/evidence")
async def attach_evidence(invoice_id: str, data: EvidenceAttach, admin: Admin = Depends(require_admin)):
    file = data.model_dump(exclude={"category"})
    invoice = await invoice_generator.attach_evidence(invoice_id, data.category, file, admin)
    return {"success": True, "message": "Evidence attached", "data": invoice}


@router.post("/{invoice_id}/send")
async def resend_invoice(
    invoice_id: str,
    admin: Admin = Depends(require_admin),
    collaborators: Collaborators = Depends(get_collaborators),
):
    invoice = await invoice_generator.resend_invoice(invoice_id, collaborators)
    return {"success": invoice.get("email_status") == "sent", "data": invoice}
