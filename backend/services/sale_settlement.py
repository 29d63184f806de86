"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Sale & Settlement                                                 ║
║                                                                              ║
║  ready_for_sale vehicle -> close_sale (pending_approval)                     ║
║                         -> approve_sale x2 distinct admins (approved)        ║
║                         -> investments settled + investors notified          ║
║                                                                              ║
║  RULES:                                                                      ║
║  - profit = selling_price - purchase_price                                   ║
║  - profit_amount = profit * allocation % / 100                               ║
║  - profit_percentage per investor is ROI: profit_amount / amount * 100       ║
║  - total_payout = allocation amount + profit_amount                          ║
║  - settlement releases the investment's recorded amount, not the payout      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import SENDGRID_SETTLEMENT_TEMPLATE_ID, db, now_iso
from services import credit_ledger
from services.allocation import round2, to_decimal
from services.approval_gate import SALE_POLICY, commit_approval, record_approval
from services.collaborators import Collaborators
from services.errors import NotFoundError, PreconditionError, ValidationError
from services.permissions import Actor, actor_ref, ensure_capability, ensure_lead_access
from services.purchase_orders import buying_price
from services.sequences import next_reference

logger = logging.getLogger("sale_settlement")

SALE_STATUSES = ["draft", "pending_approval", "approved", "rejected", "cancelled"]
OPEN_SALE_STATUSES = ["draft", "pending_approval", "approved"]
SALE_NUMBER_ATTEMPTS = 5


def compute_sale_breakdown(
    selling_price: Any,
    purchase_price: Any,
    allocations: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Profit figures and one payout line per allocation"""
    selling = to_decimal(selling_price)
    purchase = to_decimal(purchase_price)
    profit = round2(selling - purchase)
    profit_percentage = round2(to_decimal(profit) / purchase * 100) if purchase > 0 else 0.0

    breakdown = []
    for alloc in allocations:
        amount = to_decimal(alloc.get("amount"))
        profit_amount = round2(to_decimal(profit) * to_decimal(alloc.get("percentage")) / 100)
        breakdown.append({
            "investor_id": alloc["investor_id"],
            "investor_name": alloc.get("investor_name"),
            "investment_amount": round2(amount),
            "investment_percentage": round2(alloc.get("percentage")),
            "profit_amount": profit_amount,
            # ROI of this investor, not their share of total profit
            "profit_percentage": round2(to_decimal(profit_amount) / amount * 100) if amount > 0 else 0.0,
            "total_payout": round2(amount + to_decimal(profit_amount)),
        })

    return {
        "profit": profit,
        "profit_percentage": profit_percentage,
        "investor_breakdown": breakdown,
    }


async def get_sale(sale_id: str) -> Dict[str, Any]:
    sale = await db.sales.find_one({"id": sale_id}, {"_id": 0})
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


async def list_sales(status: Optional[str] = None, limit: int = 100, skip: int = 0) -> Dict[str, Any]:
    query = {"status": status} if status else {}
    sales = await db.sales.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.sales.count_documents(query)
    return {"sales": sales, "count": len(sales), "total": total}


# ════════════════════════════════════════════════════════════════════════════
# CLOSE SALE
# ════════════════════════════════════════════════════════════════════════════

async def close_sale(lead_id: str, actor: Actor, data: Dict[str, Any]) -> Dict[str, Any]:
    ensure_capability(actor, "can_close_sale", "close sales")
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise NotFoundError("Vehicle not found")
    ensure_lead_access(actor, lead)

    selling_price = round2(data.get("selling_price"))
    if selling_price <= 0:
        raise ValidationError("Selling price must be greater than 0")
    if not (data.get("customer_name") or "").strip():
        raise ValidationError("Customer name is required")
    if lead.get("status") != "inventory" or lead.get("vehicle_status") != "ready_for_sale":
        raise PreconditionError("Vehicle must be in inventory and ready for sale")
    open_sale = await db.sales.find_one({"lead_id": lead_id, "status": {"$in": OPEN_SALE_STATUSES}}, {"_id": 0})
    if open_sale:
        raise PreconditionError(f"Vehicle already has sale {open_sale['sale_number']}")

    purchase_price = buying_price(lead)
    if purchase_price <= 0:
        raise PreconditionError("Vehicle has no purchase price")
    allocations = lead.get("investor_allocations") or []
    figures = compute_sale_breakdown(selling_price, purchase_price, allocations)

    claimed = await db.leads.update_one(
        {"id": lead_id, "vehicle_status": "ready_for_sale"},
        {"$set": {"vehicle_status": "sold", "sold_at": now_iso(), "updated_at": now_iso()}},
    )
    if claimed.modified_count == 0:
        raise PreconditionError("Vehicle is no longer available for sale")

    now = now_iso()
    sale = {
        "id": str(uuid.uuid4()),
        "lead_id": lead_id,
        "lead_number": lead.get("lead_number"),
        "vehicle": {k: (lead.get("vehicle_info") or {}).get(k) for k in ("make", "model", "trim", "year", "vin")},
        "customer": {
            "name": data["customer_name"].strip(),
            "phone": data.get("customer_phone"),
            "email": data.get("customer_email"),
        },
        "selling_price": selling_price,
        "purchase_price": purchase_price,
        **figures,
        "notes": data.get("notes"),
        "status": "pending_approval",
        "approvals": [],
        "settlement": [],
        "created_by": actor_ref(actor),
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }

    for _ in range(SALE_NUMBER_ATTEMPTS):
        sale["sale_number"], sale["seq"] = await next_reference(db.sales, "S")
        try:
            await db.sales.insert_one(sale)
            break
        except DuplicateKeyError:
            sale.pop("_id", None)
    else:
        await db.leads.update_one({"id": lead_id}, {"$set": {"vehicle_status": "ready_for_sale"}})
        raise PreconditionError("Could not allocate a sale number, please retry")

    await db.leads.update_one({"id": lead_id}, {"$set": {"sale_id": sale["id"]}})
    logger.info(f"[SALE] {sale['sale_number']} closed on {lead.get('lead_number')} profit={figures['profit']:.2f}")
    return await get_sale(sale["id"])


# ════════════════════════════════════════════════════════════════════════════
# DUAL APPROVAL + SETTLEMENT
# ════════════════════════════════════════════════════════════════════════════

async def approve_sale(
    sale_id: str,
    actor: Actor,
    collaborators: Collaborators,
    comments: Optional[str] = None,
) -> Dict[str, Any]:
    ensure_capability(actor, "can_approve", "approve sales")
    sale = await get_sale(sale_id)

    approvals, entry, quorum = record_approval(sale.get("approvals") or [], actor.id, SALE_POLICY,
                                               comments=comments)
    if sale.get("status") not in ("draft", "pending_approval"):
        raise PreconditionError(f"Sale is {sale.get('status')} and cannot be approved")

    updates: Dict[str, Any] = {"status": "approved" if quorum else "pending_approval"}
    if quorum:
        updates["approved_at"] = now_iso()
    await commit_approval(db.sales, sale, "approvals", entry, updates)
    logger.info(f"[APPROVAL] sale {sale['sale_number']} approved by {actor.id} ({len(approvals)}/2)")

    if quorum:
        await settle_sale(await get_sale(sale_id), collaborators)
    return await get_sale(sale_id)


async def settle_sale(sale: Dict[str, Any], collaborators: Collaborators) -> List[Dict[str, Any]]:
    """Release each investment and notify the investor; neither step blocks the other investors"""
    results = []
    for line in sale.get("investor_breakdown") or []:
        investor_id = line["investor_id"]
        released = await credit_ledger.release(investor_id, lead_id=sale["lead_id"])
        outcome = {"investor_id": investor_id, "released": released is not None, "notified": False, "error": None}

        investor = await db.investors.find_one({"id": investor_id}, {"_id": 0, "name": 1, "email": 1}) or {}
        try:
            await collaborators.email.send_templated_email(
                SENDGRID_SETTLEMENT_TEMPLATE_ID,
                {
                    "investor_name": investor.get("name"),
                    "sale_number": sale["sale_number"],
                    "vehicle": " ".join(str(v) for v in (sale.get("vehicle") or {}).values() if v),
                    "investment_amount": line["investment_amount"],
                    "profit_amount": line["profit_amount"],
                    "profit_percentage": line["profit_percentage"],
                    "total_payout": line["total_payout"],
                },
                [{"email": investor.get("email"), "name": investor.get("name")}],
            )
            outcome["notified"] = True
        except Exception as e:
            logger.error(f"[SALE] settlement email to investor {investor_id} failed: {e}")
            outcome["error"] = str(e)
        results.append(outcome)

    await db.sales.update_one(
        {"id": sale["id"]},
        {"$set": {"settlement": results, "settled_at": now_iso(), "updated_at": now_iso()}},
    )
    logger.info(f"[SALE] {sale['sale_number']} settled for {len(results)} investors")
    return results


async def decline_sale(sale_id: str, actor: Actor, reason: Optional[str] = None) -> Dict[str, Any]:
    ensure_capability(actor, "can_approve", "decline sales")
    sale = await get_sale(sale_id)
    if sale.get("status") != "pending_approval":
        raise PreconditionError("Only sales pending approval can be declined")

    await db.sales.update_one(
        {"id": sale_id, "status": "pending_approval"},
        {
            "$set": {"approvals": [], "status": "draft", "decline_reason": reason,
                     "declined_by": actor.id, "updated_at": now_iso()},
            "$inc": {"version": 1},
        },
    )
    logger.info(f"[APPROVAL] sale {sale['sale_number']} declined by {actor.id}")
    return await get_sale(sale_id)


async def sales_report(start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
    """KPIs over approved sales created in [start, end]"""
    query: Dict[str, Any] = {"status": "approved"}
    if start or end:
        query["created_at"] = {}
        if start:
            query["created_at"]["$gte"] = start
        if end:
            query["created_at"]["$lte"] = end

    sales = await db.sales.find(query, {"_id": 0}).to_list(10000)
    count = len(sales)
    revenue = sum(to_decimal(s.get("selling_price")) for s in sales)
    profit = sum(to_decimal(s.get("profit")) for s in sales)
    pct = sum(to_decimal(s.get("profit_percentage")) for s in sales)
    return {
        "total_sales": count,
        "total_revenue": round2(revenue),
        "total_profit": round2(profit),
        "average_profit": round2(profit / count) if count else 0.0,
        "average_profit_percentage": round2(pct / count) if count else 0.0,
    }
