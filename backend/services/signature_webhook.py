"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Signature status webhook                                          ║
║                                                                              ║
║  At-least-once delivery: every event may arrive twice, out of order, or      ║
║  for an envelope we never sent. The handler never raises to the caller.      ║
║                                                                              ║
║  RULES:                                                                      ║
║  - envelopes are updated in place, keyed by envelope_id (positional $set)    ║
║  - repeats and events on already final envelopes are no-ops                  ║
║  - declined / voided / deleted reset the current lead approval cycle         ║
║  - completed pulls the signed PDFs, replacing that envelope's previous copy  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Tuple

from config import db, now_iso
from services.collaborators import Collaborators
from services.lead_lifecycle import reset_lead_approval
from services.purchase_orders import SIGNATURE_STATUSES, aggregate_signature_status, po_status_for_signature

logger = logging.getLogger("signature_webhook")

DELETED_EVENT = "envelope-deleted"
RESET_STATUSES = ["declined", "voided"]
FINAL_ENVELOPE_STATUSES = ["completed", "declined", "voided"]


def parse_event(payload: Dict[str, Any]) -> Tuple[Optional[str], str, bool]:
    """(envelope_id, lower-cased status, deleted) from a nested or flat payload"""
    data = payload.get("data") or {}
    envelope_id = data.get("envelopeId") or payload.get("envelopeId") or payload.get("envelope_id")
    event = (payload.get("event") or "").lower()

    if event == DELETED_EVENT:
        return envelope_id, "voided", True

    status = (
        (data.get("envelopeSummary") or {}).get("status")
        or data.get("status")
        or payload.get("status")
        or ""
    )
    if not status and event.startswith("envelope-"):
        status = event[len("envelope-"):]
    return envelope_id, status.lower(), False


def is_pdf(content: Optional[str]) -> bool:
    if not content:
        return False
    try:
        return base64.b64decode(content)[:4] == b"%PDF"
    except (binascii.Error, ValueError):
        return False


def repeat_reason(po: Dict[str, Any], envelope: Dict[str, Any], status: str) -> Optional[str]:
    """Why this event changes nothing for the envelope, or None"""
    stored = envelope.get("status")
    if stored == "completed" and status == "completed":
        stored_docs = [
            d for d in po.get("docusign_documents") or []
            if d.get("source_envelope_id") == envelope.get("envelope_id")
        ]
        # a completed envelope without documents may still need them fetched
        return "envelope already completed" if stored_docs else None
    if stored in FINAL_ENVELOPE_STATUSES or stored == status:
        return f"envelope already {stored}"
    return None


def sent_in_current_cycle(lead: Dict[str, Any], envelope: Dict[str, Any]) -> bool:
    """False for an envelope sent before the lead's last approval reset"""
    reset_at = (lead.get("approval") or {}).get("reset_at")
    sent_at = envelope.get("sent_at")
    return not (reset_at and sent_at and sent_at <= reset_at)


async def handle_signature_event(payload: Dict[str, Any], collaborators: Collaborators) -> Dict[str, Any]:
    """Entry point for the webhook route. Always returns, never raises."""
    try:
        return await _process_event(payload, collaborators)
    except Exception as e:
        logger.exception(f"[WEBHOOK] processing failed: {e}")
        return {"processed": False, "reason": "internal error"}


async def _process_event(payload: Dict[str, Any], collaborators: Collaborators) -> Dict[str, Any]:
    envelope_id, status, deleted = parse_event(payload or {})
    if not envelope_id:
        logger.warning(f"[WEBHOOK] event without envelope id ignored: {payload}")
        return {"processed": False, "reason": "missing envelope id"}
    if status not in SIGNATURE_STATUSES:
        logger.warning(f"[WEBHOOK] envelope {envelope_id}: unsupported status '{status}' ignored")
        return {"processed": False, "reason": f"unsupported status {status}"}

    po = await db.purchase_orders.find_one({"docusign_envelopes.envelope_id": envelope_id}, {"_id": 0})
    if not po:
        logger.warning(f"[WEBHOOK] unknown envelope {envelope_id} ({status}), no-op")
        return {"processed": False, "reason": "unknown envelope"}

    envelope = next(e for e in po["docusign_envelopes"] if e.get("envelope_id") == envelope_id)
    repeat = repeat_reason(po, envelope, status)
    if repeat:
        logger.info(f"[WEBHOOK] envelope {envelope_id} ({status}) ignored: {repeat}")
        return {"processed": False, "reason": repeat}
    now = now_iso()

    fields = {"docusign_envelopes.$.status": status, "docusign_envelopes.$.updated_at": now}
    if status == "completed":
        fields["docusign_envelopes.$.completed_at"] = envelope.get("completed_at") or now
    await db.purchase_orders.update_one(
        {"id": po["id"], "docusign_envelopes.envelope_id": envelope_id},
        {"$set": fields},
    )
    logger.info(f"[WEBHOOK] envelope {envelope_id} of PO {po.get('po_number')} -> {status}")

    if status == "completed":
        await _store_signed_documents(po["id"], envelope, collaborators)
    elif status in RESET_STATUSES:
        await db.purchase_orders.update_one({"id": po["id"]}, {"$set": {"docusign_documents": []}})

    fresh = await db.purchase_orders.find_one({"id": po["id"]}, {"_id": 0})
    aggregate = aggregate_signature_status(
        fresh.get("docusign_envelopes") or [],
        [a["investor_id"] for a in fresh.get("investor_allocations") or []],
    )
    updates: Dict[str, Any] = {"docusign_status": aggregate, "updated_at": now_iso()}
    if fresh.get("status") != "completed":
        updates["status"] = po_status_for_signature(aggregate, fresh.get("status"))
    if deleted:
        updates["docusign_error"] = "Envelope deleted"
    await db.purchase_orders.update_one({"id": po["id"]}, {"$set": updates})

    if status in RESET_STATUSES:
        lead = await db.leads.find_one({"id": po["lead_id"]}, {"_id": 0})
        if lead and not sent_in_current_cycle(lead, envelope):
            logger.info(f"[WEBHOOK] envelope {envelope_id} predates the current approval cycle of lead "
                        f"{lead.get('lead_number')}, approval kept")
        elif lead and lead.get("status") != "inventory":
            await reset_lead_approval(lead, reason=f"Purchase agreement {'deleted' if deleted else status}")
            logger.info(f"[WEBHOOK] lead {lead.get('lead_number')} approval reset after envelope {status}")

    return {
        "processed": True,
        "purchase_order_id": po["id"],
        "envelope_id": envelope_id,
        "status": status,
        "docusign_status": aggregate,
    }


async def _store_signed_documents(po_id: str, envelope: Dict[str, Any], collaborators: Collaborators) -> List[Dict]:
    envelope_id = envelope["envelope_id"]
    try:
        documents = await collaborators.signature.fetch_signed_documents(envelope_id)
    except Exception as e:
        logger.error(f"[WEBHOOK] signed documents for envelope {envelope_id} unavailable: {e}")
        await db.purchase_orders.update_one(
            {"id": po_id},
            {"$set": {"docusign_error": f"Signed documents unavailable for envelope {envelope_id}: {e}"}},
        )
        return []

    now = now_iso()
    valid = []
    for doc in documents or []:
        if not is_pdf(doc.get("content")):
            logger.warning(f"[WEBHOOK] document {doc.get('document_id')} of envelope {envelope_id} is not a PDF, skipped")
            continue
        valid.append({
            **doc,
            "source_envelope_id": envelope_id,
            "investor_id": envelope.get("investor_id"),
            "fetched_at": now,
        })
    if not valid:
        return []

    await db.purchase_orders.update_one(
        {"id": po_id},
        {"$pull": {"docusign_documents": {
            "source_envelope_id": envelope_id,
            "document_id": {"$in": [d.get("document_id") for d in valid]},
        }}},
    )
    await db.purchase_orders.update_one(
        {"id": po_id},
        {"$push": {"docusign_documents": {"$each": valid}}},
    )
    logger.info(f"[WEBHOOK] stored {len(valid)} signed documents from envelope {envelope_id}")
    return valid
