"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Invoice Generator                                                 ║
║                                                                              ║
║  One invoice per (purchase_order_id, investor_id), numbered INV####.         ║
║                                                                              ║
║  RULES:                                                                      ║
║  - totals are copied from the computed share, never recomputed               ║
║  - vehicle fields are a snapshot taken at generation time                    ║
║  - a second generate for the same pair returns the existing invoice          ║
║  - evidence files are added to the existing invoice, never regenerated       ║
║  - numbering is best-effort: unique index + retry on collision               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import base64
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from config import SENDGRID_INVOICE_TEMPLATE_ID, db, now_iso
from services.allocation import CostCategory, round2
from services.collaborators import Collaborators
from services.errors import NotFoundError, PreconditionError, ValidationError
from services.invoice_pdf import render_invoice_pdf
from services.permissions import Actor
from services.sequences import next_reference

logger = logging.getLogger("invoice_generator")

INVOICE_STATUSES = ["draft", "sent"]
EVIDENCE_SLOTS = [c.value for c in CostCategory]
INVOICE_NUMBER_ATTEMPTS = 5

# Heavy fields left out of list / detail responses
NO_PDF = {"_id": 0, "pdf.content": 0}


async def get_invoice(invoice_id: str, include_pdf: bool = False) -> Dict[str, Any]:
    invoice = await db.invoices.find_one({"id": invoice_id}, {"_id": 0} if include_pdf else NO_PDF)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


async def find_invoice(purchase_order_id: str, investor_id: str) -> Optional[Dict[str, Any]]:
    return await db.invoices.find_one(
        {"purchase_order_id": purchase_order_id, "investor_id": investor_id}, NO_PDF
    )


async def list_invoices(
    investor_id: Optional[str] = None,
    lead_id: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if investor_id:
        query["investor_id"] = investor_id
    if lead_id:
        query["lead_id"] = lead_id
    invoices = await db.invoices.find(query, NO_PDF).sort("seq", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.invoices.count_documents(query)
    return {"invoices": invoices, "count": len(invoices), "total": total}


def _vehicle_snapshot(lead: Dict[str, Any]) -> Dict[str, Any]:
    vehicle = lead.get("vehicle_info") or {}
    return {k: vehicle.get(k) for k in ("make", "model", "trim", "year", "color", "mileage", "vin")}


def build_totals(share_info: Dict[str, Any]) -> Dict[str, float]:
    totals = {"buying_price": round2(share_info["breakdown"].get("buying_price"))}
    for category in CostCategory:
        totals[category.value] = round2(share_info["breakdown"].get(category.value))
    totals["total_amount_payable"] = round2(share_info["total"])
    return totals


async def generate_invoice(
    lead: Dict[str, Any],
    purchase_order: Dict[str, Any],
    allocation: Dict[str, Any],
    share_info: Dict[str, Any],
    payment_meta: Dict[str, Any],
    collaborators: Collaborators,
    investor: Optional[Dict[str, Any]] = None,
    prepared_by: Optional[str] = None,
) -> Dict[str, Any]:
    investor_id = allocation["investor_id"]
    existing = await find_invoice(purchase_order["id"], investor_id)
    if existing:
        logger.info(f"[INVOICE] {existing['invoice_number']} already exists for PO {purchase_order['id']} "
                    f"investor {investor_id}, not regenerated")
        return existing

    if investor is None:
        investor = await db.investors.find_one({"id": investor_id}, {"_id": 0}) or {"id": investor_id}

    now = now_iso()
    invoice = {
        "id": str(uuid.uuid4()),
        "lead_id": lead["id"],
        "lead_number": lead.get("lead_number"),
        "purchase_order_id": purchase_order["id"],
        "po_number": purchase_order.get("po_number"),
        "investor_id": investor_id,
        "investor_name": investor.get("name"),
        "investor_email": investor.get("email"),
        "percentage": allocation.get("percentage"),
        "vehicle": _vehicle_snapshot(lead),
        "totals": build_totals(share_info),
        "payment": {
            "mode_of_payment": payment_meta.get("mode_of_payment"),
            "payment_received_by": payment_meta.get("payment_received_by"),
            "date_of_payment": payment_meta.get("date_of_payment"),
        },
        "evidence": {slot: None for slot in EVIDENCE_SLOTS},
        "prepared_by": prepared_by,
        "status": "draft",
        "email_status": "pending",
        "created_at": now,
        "updated_at": now,
    }

    for _ in range(INVOICE_NUMBER_ATTEMPTS):
        invoice["invoice_number"], invoice["seq"] = await next_reference(db.invoices, "INV")
        pdf = render_invoice_pdf(invoice)
        invoice["pdf"] = {
            "file_name": f"{invoice['invoice_number']}.pdf",
            "content": base64.b64encode(pdf).decode("ascii"),
            "file_size": len(pdf),
        }
        try:
            await db.invoices.insert_one(invoice)
            break
        except DuplicateKeyError:
            invoice.pop("_id", None)
            raced = await find_invoice(purchase_order["id"], investor_id)
            if raced:
                return raced
            logger.warning(f"[INVOICE] number {invoice['invoice_number']} taken, retrying")
    else:
        raise PreconditionError("Could not allocate an invoice number, please retry")

    logger.info(f"[INVOICE] {invoice['invoice_number']} created for investor {investor_id} "
                f"total={invoice['totals']['total_amount_payable']:.2f}")
    await _send_invoice(invoice, collaborators)
    return await get_invoice(invoice["id"])


async def _send_invoice(invoice: Dict[str, Any], collaborators: Collaborators) -> None:
    """Fail-open: a delivery failure leaves the invoice in draft with the error recorded"""
    try:
        result = await collaborators.email.send_templated_email(
            SENDGRID_INVOICE_TEMPLATE_ID,
            {
                "investor_name": invoice.get("investor_name"),
                "invoice_number": invoice["invoice_number"],
                "po_number": invoice.get("po_number"),
                "total_amount_payable": invoice["totals"]["total_amount_payable"],
            },
            [{"email": invoice.get("investor_email"), "name": invoice.get("investor_name")}],
            [{"content": invoice["pdf"]["content"], "filename": invoice["pdf"]["file_name"],
              "type": "application/pdf"}],
        )
    except Exception as e:
        logger.error(f"[INVOICE] email for {invoice['invoice_number']} failed: {e}")
        await db.invoices.update_one(
            {"id": invoice["id"]},
            {"$set": {"email_status": "failed", "email_error": str(e), "updated_at": now_iso()}},
        )
        return

    now = now_iso()
    await db.invoices.update_one(
        {"id": invoice["id"]},
        {"$set": {
            "status": "sent",
            "email_status": "sent",
            "email_error": None,
            "message_ids": result.get("message_ids", []),
            "sent_at": now,
            "updated_at": now,
        }},
    )


async def resend_invoice(invoice_id: str, collaborators: Collaborators) -> Dict[str, Any]:
    invoice = await get_invoice(invoice_id, include_pdf=True)
    await _send_invoice(invoice, collaborators)
    return await get_invoice(invoice_id)


async def attach_evidence(invoice_id: str, category: str, file: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    """Fill the evidence slot of one cost category"""
    if category not in EVIDENCE_SLOTS:
        raise ValidationError(f"Invalid evidence category: {category}. Allowed: {EVIDENCE_SLOTS}")
    if not file.get("url"):
        raise ValidationError("Evidence url is required")
    await get_invoice(invoice_id)

    await db.invoices.update_one(
        {"id": invoice_id},
        {"$set": {
            f"evidence.{category}": {
                "url": file["url"],
                "public_id": file.get("public_id"),
                "file_name": file.get("file_name"),
                "file_type": file.get("file_type"),
                "uploaded_by": actor.id,
                "uploaded_at": now_iso(),
            },
            "updated_at": now_iso(),
        }},
    )
    logger.info(f"[INVOICE] evidence {category} attached to {invoice_id} by {actor.id}")
    return await get_invoice(invoice_id)


async def invoice_pdf_bytes(invoice_id: str) -> Tuple[str, bytes]:
    """(file_name, bytes) of the stored PDF"""
    invoice = await get_invoice(invoice_id, include_pdf=True)
    pdf = invoice.get("pdf") or {}
    if not pdf.get("content"):
        raise NotFoundError("Invoice PDF not found")
    return pdf["file_name"], base64.b64decode(pdf["content"])
