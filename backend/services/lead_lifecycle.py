"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Lead / Purchase Lifecycle                                         ║
║                                                                              ║
║  new -> under_review -> inspection -> approved -> inventory                  ║
║                                   +-> consignment                            ║
║                                                                              ║
║  ONLY THIS MODULE moves a lead to "approved" (approval quorum) or            ║
║  "inventory" (conversion after every agreement is signed).                   ║
║                                                                              ║
║  RULES:                                                                      ║
║  - every guard is evaluated before the first write                           ║
║  - managers add notes / details on their own or unassigned leads only        ║
║  - signature / email failures never roll back a committed transition         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import db, now_iso
from services import credit_ledger, invoice_generator
from services.allocation import compute_share, normalize_allocations, round2, validate_allocation_set
from services.approval_gate import (
    LEAD_POLICY,
    commit_approval,
    empty_approval,
    record_approval,
    resolve_admin_group,
)
from services.collaborators import Collaborators
from services.errors import AccessDeniedError, CRMError, NotFoundError, PreconditionError, ValidationError
from services.permissions import (
    Actor,
    Manager,
    actor_capabilities,
    actor_ref,
    ensure_capability,
    ensure_lead_access,
)
from services.purchase_orders import (
    LEAD_APPROVAL,
    aggregate_signature_status,
    allocation_alignment_error,
    buying_price,
    ensure_purchase_order,
    find_for_lead,
    get_purchase_order,
)
from services.sequences import next_reference
from services.settings import PAYMENT_FIELDS, get_payment_defaults

logger = logging.getLogger("lead_lifecycle")


# ════════════════════════════════════════════════════════════════════════════
# STATES
# ════════════════════════════════════════════════════════════════════════════

LEAD_TYPE_PREFIXES = {"purchase": "PL", "sales": "SL"}

LEAD_STATUSES = [
    "new", "contacted", "qualified", "negotiation", "under_review", "inspection",
    "approved", "inventory", "consignment", "lost", "cancelled",
]

VALID_LEAD_TRANSITIONS = {
    "new": ["contacted", "qualified", "negotiation", "under_review", "inspection", "lost", "cancelled"],
    "contacted": ["qualified", "negotiation", "under_review", "inspection", "lost", "cancelled"],
    "qualified": ["negotiation", "under_review", "inspection", "lost", "cancelled"],
    "negotiation": ["under_review", "inspection", "lost", "cancelled"],
    "under_review": ["inspection", "lost", "cancelled"],
    "inspection": ["consignment", "lost", "cancelled"],
    "approved": ["consignment", "cancelled"],
    "consignment": [],  # TERMINAL
    "inventory": [],    # TERMINAL - vehicle moves to the sale lifecycle
    "lost": [],         # TERMINAL
    "cancelled": [],    # TERMINAL
}

# Reachable only through approve_lead / convert_lead_to_vehicle
SYSTEM_ONLY_STATUSES = ["approved", "inventory"]

ATTACHMENT_CATEGORIES = ["inspectionReport", "registrationCard", "carPictures", "onlineHistoryCheck"]
REQUIRED_ATTACHMENTS = ["registrationCard", "carPictures", "onlineHistoryCheck"]
REQUIRED_PRICE_FIELDS = {
    "min_selling_price": "minimum selling price",
    "max_selling_price": "maximum selling price",
    "purchased_final_price": "purchased final price",
}

FOLLOW_UP_OFFSETS_DAYS = [3, 7, 15]

LEAD_NUMBER_ATTEMPTS = 5


# ════════════════════════════════════════════════════════════════════════════
# READS
# ════════════════════════════════════════════════════════════════════════════

async def get_lead(lead_id: str) -> Dict[str, Any]:
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise NotFoundError("Lead not found")
    return lead


async def get_lead_for(actor: Actor, lead_id: str) -> Dict[str, Any]:
    lead = await get_lead(lead_id)
    ensure_lead_access(actor, lead)
    return lead


async def list_leads(
    actor: Actor,
    status: Optional[str] = None,
    lead_type: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if isinstance(actor, Manager):
        query["assigned_to"] = {"$in": [actor.id, None]}
    if status:
        query["status"] = status
    if lead_type:
        query["type"] = lead_type

    leads = await db.leads.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.leads.count_documents(query)
    return {"leads": leads, "count": len(leads), "total": total}


# ════════════════════════════════════════════════════════════════════════════
# INTAKE / FOLLOW-UPS
# ════════════════════════════════════════════════════════════════════════════

def build_follow_ups(lead: Dict[str, Any], created_by: Dict[str, str], now: Optional[datetime] = None) -> List[Dict]:
    """Call reminders at +3 / +7 / +15 days; high priority for the first one"""
    now = now or datetime.now(timezone.utc)
    contact = (lead.get("contact_info") or {}).get("name") or lead.get("lead_number")
    follow_ups = []
    for days in FOLLOW_UP_OFFSETS_DAYS:
        follow_ups.append({
            "id": str(uuid.uuid4()),
            "lead_id": lead["id"],
            "type": "call",
            "title": f"Follow up with {contact} (day {days})",
            "priority": "high" if days <= 3 else "medium",
            "status": "pending",
            "due_date": (now + timedelta(days=days)).isoformat(),
            "assigned_to": lead.get("assigned_to"),
            "auto_generated": True,
            "reminder_sent_at": None,
            "created_by": created_by,
            "created_at": now.isoformat(),
        })
    return follow_ups


async def _create_follow_ups(lead: Dict[str, Any], actor: Actor) -> List[Dict]:
    follow_ups = build_follow_ups(lead, actor_ref(actor))
    await db.follow_ups.insert_many([dict(f) for f in follow_ups])
    await db.leads.update_one(
        {"id": lead["id"]},
        {"$push": {"follow_up_ids": {"$each": [f["id"] for f in follow_ups]}}},
    )
    logger.info(f"[LIFECYCLE] {len(follow_ups)} follow-ups scheduled for lead {lead['lead_number']}")
    return follow_ups


async def create_lead(data: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    ensure_capability(actor, "can_create_lead", "create leads")

    lead_type = data.get("type") or "purchase"
    if lead_type not in LEAD_TYPE_PREFIXES:
        raise ValidationError(f"Invalid lead type: {lead_type}")
    status = data.get("status") or "new"
    if status not in ("new", "under_review"):
        raise ValidationError("A new lead must start as new or under_review")

    assigned_to = data.get("assigned_to")
    if isinstance(actor, Manager):
        assigned_to = actor.id

    now = now_iso()
    lead = {
        "id": str(uuid.uuid4()),
        "type": lead_type,
        "status": status,
        "source": data.get("source"),
        "contact_info": data.get("contact_info") or {},
        "vehicle_info": data.get("vehicle_info") or {},
        "price_analysis": {},
        "attachments": [],
        "investor_allocations": [],
        "approval": empty_approval(),
        "purchase_order_id": None,
        "invoice_ids": [],
        "follow_up_ids": [],
        "notes": [],
        "assigned_to": assigned_to,
        "created_by": actor_ref(actor),
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }

    for _ in range(LEAD_NUMBER_ATTEMPTS):
        lead["lead_number"], lead["seq"] = await next_reference(
            db.leads, LEAD_TYPE_PREFIXES[lead_type], {"type": lead_type}
        )
        try:
            await db.leads.insert_one(lead)
            break
        except DuplicateKeyError:
            lead.pop("_id", None)
    else:
        raise PreconditionError("Could not allocate a lead number, please retry")
    lead.pop("_id", None)

    logger.info(f"[LIFECYCLE] lead {lead['lead_number']} created by {actor.id}")
    if status == "under_review":
        await _create_follow_ups(lead, actor)
    return await get_lead(lead["id"])


# ════════════════════════════════════════════════════════════════════════════
# MANUAL UPDATES
# ════════════════════════════════════════════════════════════════════════════

def validate_lead_transition(lead: Dict[str, Any], to_status: str) -> None:
    from_status = lead.get("status")
    if to_status not in LEAD_STATUSES:
        raise ValidationError(f"Invalid lead status: {to_status}")
    if to_status in SYSTEM_ONLY_STATUSES:
        raise PreconditionError(
            f"Status {to_status} is set by the approval workflow, not by a manual update"
        )
    valid_next = VALID_LEAD_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise PreconditionError(
            f"Lead {lead.get('lead_number')} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}"
        )


async def update_lead_status(lead_id: str, actor: Actor, status: str, note: Optional[str] = None) -> Dict:
    lead = await get_lead(lead_id)
    if not actor_capabilities(actor).can_change_status:
        raise AccessDeniedError("Managers cannot change lead status, they can only add notes")
    validate_lead_transition(lead, status)

    update: Dict[str, Any] = {"$set": {"status": status, "updated_at": now_iso()}, "$inc": {"version": 1}}
    if note:
        update["$push"] = {"notes": _note(note, actor)}

    result = await db.leads.update_one({"id": lead_id, "status": lead["status"]}, update)
    if result.modified_count == 0:
        raise PreconditionError("Lead status changed concurrently, please reload and retry")

    logger.info(f"[LIFECYCLE] lead {lead['lead_number']} {lead['status']} -> {status} by {actor.id}")
    if status == "under_review":
        await _create_follow_ups(lead, actor)
    return await get_lead(lead_id)


def _note(content: str, actor: Actor) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "content": content,
        "author_id": actor.id,
        "author_name": actor.name,
        "author_role": actor.role,
        "created_at": now_iso(),
    }


async def add_note(lead_id: str, actor: Actor, content: str) -> Dict[str, Any]:
    if not (content or "").strip():
        raise ValidationError("Note content is required")
    ensure_capability(actor, "can_add_note", "add notes")
    await get_lead_for(actor, lead_id)

    note = _note(content.strip(), actor)
    await db.leads.update_one({"id": lead_id}, {"$push": {"notes": note}, "$set": {"updated_at": now_iso()}})
    return note


async def add_attachment(lead_id: str, actor: Actor, attachment: Dict[str, Any]) -> Dict[str, Any]:
    """Stores the storage URL / identifier and category tag only"""
    ensure_capability(actor, "can_update_lead_details", "attach documents")
    category = attachment.get("category")
    if category not in ATTACHMENT_CATEGORIES:
        raise ValidationError(f"Invalid attachment category: {category}. Allowed: {ATTACHMENT_CATEGORIES}")
    if not attachment.get("url"):
        raise ValidationError("Attachment url is required")
    await get_lead_for(actor, lead_id)

    doc = {
        "id": str(uuid.uuid4()),
        "category": category,
        "url": attachment["url"],
        "public_id": attachment.get("public_id"),
        "file_name": attachment.get("file_name"),
        "file_type": attachment.get("file_type"),
        "file_size": attachment.get("file_size"),
        "uploaded_by": actor.id,
        "uploaded_at": now_iso(),
    }
    await db.leads.update_one({"id": lead_id}, {"$push": {"attachments": doc}, "$set": {"updated_at": now_iso()}})
    return doc


async def update_price_analysis(
    lead_id: str,
    actor: Actor,
    min_selling_price: Optional[float] = None,
    max_selling_price: Optional[float] = None,
    purchased_final_price: Optional[float] = None,
    vin: Optional[str] = None,
) -> Dict[str, Any]:
    ensure_capability(actor, "can_update_lead_details", "update price analysis")
    if min_selling_price is None and max_selling_price is None:
        raise ValidationError("At least one of minimum or maximum selling price is required")
    for label, value in (("Minimum selling price", min_selling_price),
                         ("Maximum selling price", max_selling_price),
                         ("Purchased final price", purchased_final_price)):
        if value is not None and value < 0:
            raise ValidationError(f"{label} cannot be negative")
    if min_selling_price is not None and max_selling_price is not None and min_selling_price > max_selling_price:
        raise ValidationError("Minimum selling price cannot be greater than maximum selling price")

    lead = await get_lead_for(actor, lead_id)
    if lead.get("approval", {}).get("status") != "not_submitted" and purchased_final_price is not None \
            and round2(purchased_final_price) != buying_price(lead):
        raise PreconditionError("Purchased final price is locked while the lead is in approval")

    fields: Dict[str, Any] = {"price_analysis.updated_at": now_iso(), "price_analysis.updated_by": actor.id}
    if min_selling_price is not None:
        fields["price_analysis.min_selling_price"] = round2(min_selling_price)
    if max_selling_price is not None:
        fields["price_analysis.max_selling_price"] = round2(max_selling_price)
    if purchased_final_price is not None:
        fields["price_analysis.purchased_final_price"] = round2(purchased_final_price)
    if vin:
        fields["vehicle_info.vin"] = vin.strip().upper()

    await db.leads.update_one({"id": lead_id}, {"$set": {**fields, "updated_at": now_iso()}, "$inc": {"version": 1}})
    return await get_lead(lead_id)


async def assign_investors(lead_id: str, actor: Actor, raw_allocations: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize against the purchased final price, validate against live investors, check capacity"""
    ensure_capability(actor, "can_assign_investors", "assign investors")
    lead = await get_lead(lead_id)
    if lead.get("approval", {}).get("status") != "not_submitted":
        raise PreconditionError("Investor allocations are locked while the lead is in approval")

    price = buying_price(lead)
    if price <= 0:
        raise PreconditionError("Purchased final price must be set before assigning investors")

    allocations = normalize_allocations(raw_allocations, price)
    if not allocations:
        raise ValidationError("At least one allocation with an investor and a percentage or amount is required")

    ids = [a["investor_id"] for a in allocations]
    investors = {i["id"]: i for i in await db.investors.find({"id": {"$in": ids}}, {"_id": 0}).to_list(len(ids))}
    validate_allocation_set(allocations, investors)
    for alloc in allocations:
        await credit_ledger.check_capacity(alloc["investor_id"], alloc["amount"])

    stored = []
    for alloc in allocations:
        entry = {
            "investor_id": alloc["investor_id"],
            "investor_name": investors[alloc["investor_id"]].get("name"),
            "percentage": alloc["percentage"],
            "amount": alloc["amount"],
        }
        for field in PAYMENT_FIELDS:
            if alloc.get(field):
                entry[field] = alloc[field]
        stored.append(entry)

    result = await db.leads.update_one(
        {"id": lead_id, "approval.status": "not_submitted"},
        {"$set": {"investor_allocations": stored, "updated_at": now_iso()}, "$inc": {"version": 1}},
    )
    if result.modified_count == 0:
        raise PreconditionError("Investor allocations are locked while the lead is in approval")
    logger.info(f"[LIFECYCLE] {len(stored)} allocations set on lead {lead['lead_number']}")
    return await get_lead(lead_id)


# ════════════════════════════════════════════════════════════════════════════
# APPROVAL (DistinctGroupCount)
# ════════════════════════════════════════════════════════════════════════════

def submission_gaps(lead: Dict[str, Any]) -> List[str]:
    """Every unmet requirement for submit_for_approval, in a stable order"""
    gaps = []
    categories = {a.get("category") for a in lead.get("attachments") or []}
    for category in REQUIRED_ATTACHMENTS:
        if category not in categories:
            gaps.append(f"Missing required document: {category}")

    price = lead.get("price_analysis") or {}
    missing_prices = [label for field, label in REQUIRED_PRICE_FIELDS.items() if price.get(field) in (None, "")]
    if missing_prices:
        gaps.append(f"Price analysis incomplete: {', '.join(missing_prices)} required")

    if not lead.get("investor_allocations"):
        gaps.append("At least one investor allocation is required")
    return gaps


async def submit_for_approval(lead_id: str, actor: Actor, collaborators: Collaborators) -> Dict[str, Any]:
    """Records the submitting admin's approval; inspection until the other group confirms"""
    ensure_capability(actor, "can_approve", "submit leads for approval")
    lead = await get_lead(lead_id)

    gaps = submission_gaps(lead)
    if gaps:
        raise PreconditionError(gaps[0], {"missing": gaps})
    if lead.get("status") in ("inventory", "lost", "cancelled", "consignment"):
        raise PreconditionError(f"Lead is {lead['status']} and cannot be submitted for approval")
    if lead.get("approval", {}).get("status") != "not_submitted":
        raise PreconditionError("Lead has already been submitted for approval")

    return await _record_lead_approval(lead, actor, collaborators, submitting=True)


async def approve_lead(lead_id: str, actor: Actor, collaborators: Collaborators) -> Dict[str, Any]:
    ensure_capability(actor, "can_approve", "approve leads")
    lead = await get_lead(lead_id)
    if lead.get("approval", {}).get("status") == "not_submitted":
        raise PreconditionError("Lead has not been submitted for approval")
    return await _record_lead_approval(lead, actor, collaborators, submitting=False)


async def _record_lead_approval(lead, actor, collaborators, submitting: bool) -> Dict[str, Any]:
    group_name = await resolve_admin_group(actor.id)
    approval = lead.get("approval") or empty_approval()
    approvals, entry, quorum = record_approval(approval.get("approvals") or [], actor.id, LEAD_POLICY,
                                               group_name=group_name)
    if approval.get("status") == "approved":
        raise PreconditionError("Lead is already approved")

    if quorum:
        error = allocation_alignment_error(lead)
        if error:
            raise PreconditionError(error)

    updates: Dict[str, Any] = {
        "approval.status": "approved" if quorum else "pending",
        "status": "approved" if quorum else "inspection",
    }
    if submitting:
        updates["approval.submitted_by"] = actor.id
        updates["approval.submitted_at"] = now_iso()
    await commit_approval(db.leads, lead, "approval.approvals", entry, updates)
    logger.info(
        f"[APPROVAL] lead {lead['lead_number']} approved by {actor.id} ({group_name}), "
        f"groups={sorted({a.get('group_name') for a in approvals})} quorum={quorum}"
    )

    result: Dict[str, Any] = {"quorum_met": quorum}
    if quorum:
        fresh = await get_lead(lead["id"])
        po = await ensure_purchase_order(fresh, actor)
        result["dispatch"] = await dispatch_signatures(fresh, po, collaborators, new_cycle=True)
        result["purchase_order"] = await get_purchase_order(po["id"])
    result["lead"] = await get_lead(lead["id"])
    return result


async def decline_lead(lead_id: str, actor: Actor, reason: Optional[str] = None) -> Dict[str, Any]:
    """Reset the approval cycle; under_review / approved go back to inspection"""
    ensure_capability(actor, "can_approve", "decline leads")
    lead = await get_lead(lead_id)
    if lead.get("approval", {}).get("status") not in ("pending", "approved"):
        raise PreconditionError("Only leads pending approval or approved can be declined")
    if lead.get("status") == "inventory":
        raise PreconditionError("Lead has already been converted to inventory")

    await reset_lead_approval(lead, reason=reason, declined_by=actor.id)
    if reason:
        await db.leads.update_one({"id": lead_id}, {"$push": {"notes": _note(f"Declined: {reason}", actor)}})
    logger.info(f"[APPROVAL] lead {lead['lead_number']} declined by {actor.id}")
    return await get_lead(lead_id)


async def reset_lead_approval(lead: Dict[str, Any], reason: Optional[str] = None,
                              declined_by: Optional[str] = None) -> None:
    """Shared by decline and by voided / declined signature events"""
    fields: Dict[str, Any] = {
        "approval": {**empty_approval(), "reset_reason": reason, "reset_by": declined_by, "reset_at": now_iso()},
        "updated_at": now_iso(),
    }
    if lead.get("status") in ("under_review", "approved"):
        fields["status"] = "inspection"
    await db.leads.update_one(
        {"id": lead["id"], "status": {"$ne": "inventory"}},
        {"$set": fields, "$inc": {"version": 1}},
    )
    # a PO approved through this lead's quorum goes back to draft with it
    await db.purchase_orders.update_one(
        {"lead_id": lead["id"], "approved_via": LEAD_APPROVAL, "status": "approved"},
        {"$set": {"status": "draft", "approvals": [], "updated_at": now_iso()}, "$inc": {"version": 1}},
    )


# ════════════════════════════════════════════════════════════════════════════
# SIGNATURE DISPATCH
# ════════════════════════════════════════════════════════════════════════════

LIVE_ENVELOPE_STATUSES = ["created", "sent", "delivered", "signed", "completed"]


async def dispatch_signatures(
    lead: Dict[str, Any],
    po: Dict[str, Any],
    collaborators: Collaborators,
    only_investor_ids: Optional[List[str]] = None,
    new_cycle: bool = False,
) -> Dict[str, Any]:
    """One agreement per allocation; failures are isolated per investor"""
    allocations = [
        a for a in lead.get("investor_allocations") or []
        if only_investor_ids is None or a["investor_id"] in only_investor_ids
    ]
    ids = [a["investor_id"] for a in allocations]
    allocated_ids = [a["investor_id"] for a in lead.get("investor_allocations") or []]
    investors = {i["id"]: i for i in await db.investors.find({"id": {"$in": ids}}, {"_id": 0}).to_list(len(ids) or 1)}

    envelopes, errors = [], []
    for alloc in allocations:
        investor = investors.get(alloc["investor_id"])
        if not investor:
            errors.append({"investor_id": alloc["investor_id"], "reason": "Investor not found"})
            continue
        try:
            sent = await collaborators.signature.send_agreement(investor, lead, po, alloc)
        except Exception as e:
            logger.error(f"[LIFECYCLE] agreement dispatch failed lead={lead['lead_number']} "
                         f"investor={investor['id']}: {e}")
            errors.append({"investor_id": investor["id"], "investor_name": investor.get("name"), "reason": str(e)})
            continue
        envelopes.append({
            "envelope_id": sent["envelope_id"],
            "investor_id": investor["id"],
            "investor_name": investor.get("name"),
            "investor_email": investor.get("email"),
            "status": sent.get("status") or "sent",
            "sent_at": now_iso(),
            "completed_at": None,
        })

    now = now_iso()
    previous = po.get("docusign_envelopes") or []
    envelope_update: Dict[str, Any] = {}
    if new_cycle:
        # a fresh approval cycle supersedes every earlier envelope
        current = envelopes
        envelope_update["$set"] = {"docusign_envelopes": envelopes, "docusign_documents": []}
        if previous:
            envelope_update["$push"] = {"docusign_history": {"$each": previous}}
    else:
        current = previous + envelopes
        envelope_update["$set"] = {}
        if envelopes:
            envelope_update["$push"] = {"docusign_envelopes": {"$each": envelopes}}

    if current:
        envelope_update["$set"].update({
            "docusign_status": aggregate_signature_status(current, allocated_ids),
            "docusign_errors": errors,
            "docusign_error": f"{len(errors)} agreement(s) could not be sent" if errors else None,
            "updated_at": now,
        })
    else:
        envelope_update["$set"].update({
            "docusign_status": "failed",
            "docusign_errors": errors,
            "docusign_error": "No purchase agreement could be sent",
            "docusign_failed_at": now,
            "updated_at": now,
        })
        logger.error(f"[LIFECYCLE] no agreement sent for lead {lead['lead_number']}: {errors}")
    await db.purchase_orders.update_one({"id": po["id"]}, envelope_update)

    return {"sent": len(envelopes), "failed": len(errors), "errors": errors}


async def retry_signature_dispatch(lead_id: str, actor: Actor, collaborators: Collaborators) -> Dict[str, Any]:
    """Resend agreements to investors without a live envelope"""
    ensure_capability(actor, "can_approve", "resend agreements")
    lead = await get_lead(lead_id)
    if lead.get("approval", {}).get("status") != "approved":
        raise PreconditionError("Agreements can only be sent for approved leads")
    po = await find_for_lead(lead_id)
    if not po:
        raise PreconditionError("Purchase order not found for this lead")

    covered = {
        e["investor_id"] for e in po.get("docusign_envelopes") or []
        if e.get("status") in LIVE_ENVELOPE_STATUSES
    }
    pending = [a["investor_id"] for a in lead.get("investor_allocations") or [] if a["investor_id"] not in covered]
    if not pending:
        raise PreconditionError("Every investor already has an active agreement")

    dispatch = await dispatch_signatures(lead, po, collaborators, only_investor_ids=pending)
    return {"dispatch": dispatch, "purchase_order": await get_purchase_order(po["id"])}


# ════════════════════════════════════════════════════════════════════════════
# CONVERSION TO INVENTORY
# ════════════════════════════════════════════════════════════════════════════

def resolve_payment_meta(
    allocation: Dict[str, Any],
    investor: Dict[str, Any],
    overrides: Dict[str, Any],
    global_defaults: Dict[str, Any],
) -> Dict[str, Optional[str]]:
    """
    First non-empty of: request override for this investor, value stored on the
    allocation, investor preference, request default, global setting.
    """
    per_investor = (overrides.get("investors") or {}).get(allocation["investor_id"]) or {}
    request_default = overrides.get("default") or {}
    preferences = investor.get("payment_preferences") or {}

    meta = {}
    for field in PAYMENT_FIELDS:
        meta[field] = (
            per_investor.get(field)
            or allocation.get(field)
            or preferences.get(field)
            or request_default.get(field)
            or global_defaults.get(field)
        )
    return meta


async def convert_lead_to_vehicle(
    lead_id: str,
    actor: Actor,
    payment: Optional[Dict[str, Any]],
    collaborators: Collaborators,
) -> Dict[str, Any]:
    ensure_capability(actor, "can_convert", "convert leads to inventory")
    lead = await get_lead(lead_id)
    if lead.get("status") == "inventory":
        raise PreconditionError("Lead has already been converted to inventory")

    po = await find_for_lead(lead_id)
    if not po:
        raise PreconditionError("Purchase order not found for this lead")
    if po.get("docusign_status") != "completed":
        raise PreconditionError(
            f"Purchase agreement must be signed by every investor "
            f"(signature status: {po.get('docusign_status') or 'not sent'})"
        )

    allocations = lead.get("investor_allocations") or []
    if not allocations:
        raise PreconditionError("At least one investor allocation is required")

    signed = {e.get("investor_id") for e in po.get("docusign_envelopes") or [] if e.get("status") == "completed"}
    unsigned = [a["investor_id"] for a in allocations if a["investor_id"] not in signed]
    if unsigned:
        raise PreconditionError(
            f"Purchase agreement not signed by investor(s): {', '.join(unsigned)}",
            {"unsigned": unsigned},
        )

    ids = [a["investor_id"] for a in allocations]
    investors = {i["id"]: i for i in await db.investors.find({"id": {"$in": ids}}, {"_id": 0}).to_list(len(ids))}
    global_defaults = await get_payment_defaults()

    plans = []
    for alloc in allocations:
        investor = investors.get(alloc["investor_id"])
        if not investor:
            raise PreconditionError(f"Investor not found: {alloc['investor_id']}")
        meta = resolve_payment_meta(alloc, investor, payment or {}, global_defaults)
        missing = [field for field, value in meta.items() if not value]
        if missing:
            raise PreconditionError(
                f"Payment details missing for investor {investor.get('name', investor['id'])}: {', '.join(missing)}"
            )
        share = compute_share(alloc, allocations, buying_price(lead), po.get("costs"), po.get("cost_assignments"))
        plans.append({"allocation": alloc, "investor": investor, "payment": meta, "share": share})

    for plan in plans:
        if not credit_ledger.find_live_investment(plan["investor"], lead_id):
            await credit_ledger.check_capacity(plan["investor"]["id"], plan["share"]["total"])

    reserved_now = []
    try:
        for plan in plans:
            outcome = await credit_ledger.reserve(
                plan["investor"]["id"],
                plan["share"]["total"],
                {"lead_id": lead_id, "purchase_order_id": po["id"], "percentage": plan["allocation"].get("percentage")},
            )
            if outcome["reserved"]:
                reserved_now.append(plan["investor"]["id"])
    except CRMError:
        for investor_id in reserved_now:
            await credit_ledger.cancel_reservation(investor_id, lead_id)
        raise

    now = now_iso()
    await db.purchase_orders.update_one(
        {"id": po["id"]},
        {"$set": {"status": "completed", "completed_at": now, "updated_at": now}, "$inc": {"version": 1}},
    )
    await db.leads.update_one(
        {"id": lead_id, "status": {"$ne": "inventory"}},
        {
            "$set": {
                "status": "inventory",
                "vehicle_status": "in_stock",
                "converted_at": now,
                "converted_by": actor.id,
                "updated_at": now,
            },
            "$inc": {"version": 1},
        },
    )
    logger.info(f"[LIFECYCLE] lead {lead['lead_number']} converted to inventory by {actor.id}")

    fresh_po = await get_purchase_order(po["id"])
    invoices = []
    for plan in plans:
        invoice = await invoice_generator.generate_invoice(
            lead, fresh_po, plan["allocation"], plan["share"], plan["payment"], collaborators,
            investor=plan["investor"], prepared_by=fresh_po.get("prepared_by") or actor.name,
        )
        invoices.append(invoice)

    await db.leads.update_one(
        {"id": lead_id},
        {"$addToSet": {"invoice_ids": {"$each": [i["id"] for i in invoices]}}},
    )
    return {
        "lead": await get_lead(lead_id),
        "purchase_order": fresh_po,
        "invoices": invoices,
        "shares": [p["share"] for p in plans],
    }


async def mark_vehicle_ready(lead_id: str, actor: Actor) -> Dict[str, Any]:
    ensure_capability(actor, "can_convert", "mark vehicles ready for sale")
    lead = await get_lead(lead_id)
    if lead.get("status") != "inventory":
        raise PreconditionError("Only inventory vehicles can be marked ready for sale")

    result = await db.leads.update_one(
        {"id": lead_id, "vehicle_status": "in_stock"},
        {"$set": {"vehicle_status": "ready_for_sale", "ready_at": now_iso(), "updated_at": now_iso()}},
    )
    if result.modified_count == 0:
        raise PreconditionError(f"Vehicle is {lead.get('vehicle_status')}, not in stock")
    logger.info(f"[LIFECYCLE] vehicle {lead['lead_number']} ready for sale")
    return await get_lead(lead_id)
