"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Purchase Orders                                                   ║
║                                                                              ║
║  One purchase order per purchase lead. Sole owner of cost figures, cost      ║
║  assignments and signature-envelope tracking.                                ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - sum(investor_allocations.amount) == amount (+/- 0.01)                     ║
║  - total_investment = buying price + itemized costs                          ║
║  - status advances to approved only on DistinctApproverCount(2)              ║
║  - costs are frozen once the PO is approved                                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import db, now_iso
from services.allocation import CostCategory, allocation_totals, round2, to_decimal, total_payable
from services.approval_gate import PURCHASE_ORDER_POLICY, commit_approval, record_approval
from services.errors import NotFoundError, PreconditionError, ValidationError
from services.permissions import Actor, actor_ref, ensure_capability
from services.sequences import next_reference

logger = logging.getLogger("purchase_orders")

PO_STATUSES = ["draft", "pending_approval", "approved", "signed", "completed", "rejected"]

SIGNATURE_STATUSES = ["created", "sent", "delivered", "signed", "completed", "declined", "voided", "failed"]

LOCKED_PO_STATUSES = ["approved", "signed", "completed"]
LEAD_APPROVAL = "lead_approval"

AMOUNT_TOLERANCE = 0.01
PO_NUMBER_ATTEMPTS = 5


# ════════════════════════════════════════════════════════════════════════════
# READS / PURE HELPERS
# ════════════════════════════════════════════════════════════════════════════

async def get_purchase_order(po_id: str) -> Dict[str, Any]:
    po = await db.purchase_orders.find_one({"id": po_id}, {"_id": 0})
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


async def find_for_lead(lead_id: str) -> Optional[Dict[str, Any]]:
    return await db.purchase_orders.find_one({"lead_id": lead_id}, {"_id": 0})


def buying_price(lead: Dict[str, Any]) -> float:
    return round2((lead.get("price_analysis") or {}).get("purchased_final_price"))


def allocation_alignment_error(lead: Dict[str, Any]) -> Optional[str]:
    """Why the lead's allocations cannot back a purchase order, or None"""
    price = buying_price(lead)
    if price <= 0:
        return "Purchased final price is required before creating a purchase order"
    allocations = lead.get("investor_allocations") or []
    if not allocations:
        return "At least one investor allocation is required"
    allocated = allocation_totals(allocations)["amount"]
    if abs(to_decimal(allocated) - to_decimal(price)) > to_decimal(AMOUNT_TOLERANCE):
        return (
            f"Total investor allocation ({allocated:.2f}) must equal the purchase order "
            f"amount ({price:.2f})"
        )
    return None


def aggregate_signature_status(
    envelopes: List[Dict[str, Any]], investor_ids: Optional[List[str]] = None
) -> Optional[str]:
    """
    all completed -> completed; any voided -> voided; any declined -> declined;
    any failed -> failed; else the most advanced of signed/delivered/sent/created.

    With investor_ids, an investor without an envelope keeps the result below completed.
    """
    statuses = [e.get("status") for e in envelopes if e.get("status")]
    if not statuses:
        return None
    covered = {e.get("investor_id") for e in envelopes}
    unsent = [i for i in investor_ids or [] if i not in covered]
    if all(s == "completed" for s in statuses) and not unsent:
        return "completed"
    for terminal in ("voided", "declined", "failed"):
        if terminal in statuses:
            return terminal
    if "completed" in statuses or "signed" in statuses:
        return "signed"
    for progress in ("delivered", "sent", "created"):
        if progress in statuses:
            return progress
    return statuses[-1]


def po_status_for_signature(signature_status: Optional[str], current: str) -> str:
    if signature_status == "completed":
        return "signed"
    if signature_status == "voided":
        return "draft"
    if signature_status == "declined":
        return "rejected"
    return current


def _clean_costs(costs: Dict[str, Any]) -> Dict[str, float]:
    cleaned = {}
    for category in CostCategory:
        value = costs.get(category.value)
        if value is None or value == "":
            cleaned[category.value] = 0.0
            continue
        amount = round2(value)
        if amount < 0:
            raise ValidationError(f"{category.label} cannot be negative")
        cleaned[category.value] = amount
    return cleaned


# ════════════════════════════════════════════════════════════════════════════
# CREATE / ALIGN
# ════════════════════════════════════════════════════════════════════════════

async def _insert_purchase_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    for _ in range(PO_NUMBER_ATTEMPTS):
        doc["po_number"], doc["seq"] = await next_reference(db.purchase_orders, "PO")
        try:
            await db.purchase_orders.insert_one(doc)
        except DuplicateKeyError:
            existing = await find_for_lead(doc["lead_id"])
            if existing:
                return existing
            doc.pop("_id", None)
            continue
        doc.pop("_id", None)
        logger.info(f"[PO] created {doc['po_number']} for lead {doc['lead_id']}")
        return doc
    raise PreconditionError("Could not allocate a purchase order number, please retry")


def _new_purchase_order(lead: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "lead_id": lead["id"],
        "amount": buying_price(lead),
        "investor_allocations": [],
        "costs": {c.value: 0.0 for c in CostCategory},
        "cost_assignments": {},
        "total_investment": buying_price(lead),
        "prepared_by": actor.name or actor.id,
        "status": "draft",
        "approvals": [],
        "approved_via": None,
        "docusign_status": None,
        "docusign_envelopes": [],
        "docusign_documents": [],
        "docusign_errors": [],
        "docusign_error": None,
        "created_by": actor_ref(actor),
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }


def _po_allocations(lead: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"investor_id": a["investor_id"], "percentage": a.get("percentage"), "amount": a.get("amount")}
        for a in lead.get("investor_allocations") or []
    ]


async def ensure_purchase_order(lead: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    """
    Create the PO or realign it with the lead's current allocations and price.

    Lead group quorum stands in for the PO's own dual approval: the PO is
    stored approved with the lead's approvals, which locks its costs while
    agreements are out for signature.
    """
    error = allocation_alignment_error(lead)
    if error:
        raise PreconditionError(error)

    po = await find_for_lead(lead["id"])
    if not po:
        po = await _insert_purchase_order(_new_purchase_order(lead, actor))

    price = buying_price(lead)
    await db.purchase_orders.update_one(
        {"id": po["id"]},
        {
            "$set": {
                "amount": price,
                "investor_allocations": _po_allocations(lead),
                "total_investment": total_payable(price, po.get("costs")),
                "status": "approved",
                "approvals": (lead.get("approval") or {}).get("approvals") or [],
                "approved_via": LEAD_APPROVAL,
                "updated_at": now_iso(),
            },
            "$inc": {"version": 1},
        },
    )
    if lead.get("purchase_order_id") != po["id"]:
        await db.leads.update_one({"id": lead["id"]}, {"$set": {"purchase_order_id": po["id"]}})
    return await get_purchase_order(po["id"])


async def upsert_purchase_order(
    lead: Dict[str, Any],
    actor: Actor,
    costs: Dict[str, Any],
    cost_assignments: Optional[Dict[str, Optional[str]]] = None,
    prepared_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Set cost figures and cost-responsibility assignments for a lead's PO"""
    ensure_capability(actor, "can_manage_purchase_orders", "manage purchase orders")

    cleaned = _clean_costs(costs or {})
    investor_ids = {a["investor_id"] for a in lead.get("investor_allocations") or []}
    assignments = {}
    for key, investor_id in (cost_assignments or {}).items():
        try:
            category = CostCategory(key)
        except ValueError:
            raise ValidationError(f"Unknown cost category: {key}")
        if not investor_id:
            continue
        if investor_id not in investor_ids:
            raise ValidationError(f"{category.label} can only be assigned to an investor allocated on this lead")
        assignments[category.value] = investor_id

    po = await find_for_lead(lead["id"])
    if po and po.get("status") in LOCKED_PO_STATUSES:
        raise PreconditionError(f"Purchase order is {po['status']}, costs can no longer be changed")

    if not po:
        po = await _insert_purchase_order(_new_purchase_order(lead, actor))
        await db.leads.update_one({"id": lead["id"]}, {"$set": {"purchase_order_id": po["id"]}})

    price = buying_price(lead)
    await db.purchase_orders.update_one(
        {"id": po["id"], "status": {"$nin": LOCKED_PO_STATUSES}},
        {
            "$set": {
                "costs": cleaned,
                "cost_assignments": assignments,
                "amount": price,
                "investor_allocations": _po_allocations(lead),
                "total_investment": total_payable(price, cleaned),
                "prepared_by": prepared_by or po.get("prepared_by") or actor.name,
                "updated_at": now_iso(),
            },
            "$inc": {"version": 1},
        },
    )
    logger.info(f"[PO] costs updated on {po['po_number']} by {actor.id}")
    return await get_purchase_order(po["id"])


# ════════════════════════════════════════════════════════════════════════════
# DUAL APPROVAL (DistinctApproverCount)
# ════════════════════════════════════════════════════════════════════════════

async def approve_purchase_order(po_id: str, actor: Actor, comments: Optional[str] = None) -> Dict[str, Any]:
    ensure_capability(actor, "can_approve", "approve purchase orders")
    po = await get_purchase_order(po_id)

    approvals, entry, quorum = record_approval(po.get("approvals") or [], actor.id, PURCHASE_ORDER_POLICY,
                                               comments=comments)
    if po.get("approved_via") == LEAD_APPROVAL and po.get("status") in LOCKED_PO_STATUSES:
        raise PreconditionError(f"Purchase order {po['po_number']} was approved together with its lead")
    if po.get("status") not in ("draft", "pending_approval"):
        raise PreconditionError(f"Purchase order is {po['status']} and cannot be approved")
    allocations = po.get("investor_allocations") or []
    allocated = allocation_totals(allocations)["amount"]
    if allocations and abs(to_decimal(allocated) - to_decimal(round2(po.get("amount")))) > to_decimal(AMOUNT_TOLERANCE):
        raise PreconditionError(
            f"Total investor allocation ({allocated:.2f}) must equal the purchase order "
            f"amount ({round2(po.get('amount')):.2f})"
        )

    status = "approved" if quorum else "pending_approval"
    updates: Dict[str, Any] = {"status": status}
    if quorum:
        updates["approved_via"] = "purchase_order_approval"
    await commit_approval(db.purchase_orders, po, "approvals", entry, updates)
    logger.info(f"[APPROVAL] PO {po['po_number']} approved by {actor.id} ({len(approvals)}/2) -> {status}")
    return await get_purchase_order(po_id)


async def decline_purchase_order(po_id: str, actor: Actor, reason: Optional[str] = None) -> Dict[str, Any]:
    ensure_capability(actor, "can_approve", "decline purchase orders")
    po = await get_purchase_order(po_id)
    if po.get("status") not in ("pending_approval", "approved"):
        raise PreconditionError(f"Purchase order is {po.get('status')} and cannot be declined")
    if po.get("approved_via") == LEAD_APPROVAL and po.get("status") == "approved":
        raise PreconditionError("Purchase order was approved together with its lead, decline the lead instead")

    await db.purchase_orders.update_one(
        {"id": po_id},
        {
            "$set": {
                "approvals": [],
                "status": "draft",
                "declined_by": actor.id,
                "decline_reason": reason,
                "updated_at": now_iso(),
            },
            "$inc": {"version": 1},
        },
    )
    logger.info(f"[APPROVAL] PO {po['po_number']} declined by {actor.id}")
    return await get_purchase_order(po_id)


async def list_purchase_orders(status: Optional[str] = None, limit: int = 100, skip: int = 0) -> Dict[str, Any]:
    query = {"status": status} if status else {}
    items = await db.purchase_orders.find(
        query, {"_id": 0, "docusign_documents.content": 0}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.purchase_orders.count_documents(query)
    return {"purchase_orders": items, "count": len(items), "total": total}
