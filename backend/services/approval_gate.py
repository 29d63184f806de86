"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Approval Gate                                                     ║
║                                                                              ║
║  not_submitted -> pending -> approved, pending/approved -> not_submitted     ║
║  (decline / void). approved is terminal for one cycle.                       ║
║                                                                              ║
║  QUORUM POLICIES:                                                            ║
║  - DistinctApproverCount(2): purchase orders, sales                          ║
║  - DistinctGroupCount(2): lead approval (Group A + Group B)                  ║
║                                                                              ║
║  An admin approves at most once per cycle, whatever the policy.              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from config import db, now_iso
from services.errors import (
    ConcurrentUpdateError,
    DuplicateApprovalError,
    NotInGroupError,
    ValidationError,
)

logger = logging.getLogger("approval_gate")

APPROVAL_STATES = ["not_submitted", "pending", "approved"]

VALID_APPROVAL_TRANSITIONS = {
    "not_submitted": ["pending", "approved"],
    "pending": ["approved", "not_submitted"],
    "approved": ["not_submitted"],
}

DEFAULT_GROUP_NAMES = ["Group A", "Group B"]
MAX_GROUP_MEMBERS = 2
REQUIRED_GROUPS = 2


# ════════════════════════════════════════════════════════════════════════════
# QUORUM POLICIES
# ════════════════════════════════════════════════════════════════════════════

class QuorumPolicy:
    """Decides when a list of approvals is enough"""

    requires_group = False

    def __init__(self, required: int = 2):
        self.required = required

    def check_approver(self, approvals: List[Dict[str, Any]], admin_id: str, group_name: Optional[str]) -> None:
        if any(a.get("admin_id") == admin_id for a in approvals):
            raise DuplicateApprovalError("You have already approved this item")

    def is_met(self, approvals: List[Dict[str, Any]]) -> bool:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}({self.required})"


class DistinctApproverCount(QuorumPolicy):
    """Met when `required` distinct admins approved"""

    def is_met(self, approvals: List[Dict[str, Any]]) -> bool:
        admin_ids = [a.get("admin_id") for a in approvals]
        return len(admin_ids) >= self.required and len(set(admin_ids)) == len(admin_ids)


class DistinctGroupCount(QuorumPolicy):
    """Met when approvals cover `required` distinct admin groups"""

    requires_group = True

    def check_approver(self, approvals: List[Dict[str, Any]], admin_id: str, group_name: Optional[str]) -> None:
        if not group_name:
            raise NotInGroupError("You are not assigned to an admin group and cannot approve")
        super().check_approver(approvals, admin_id, group_name)

    def is_met(self, approvals: List[Dict[str, Any]]) -> bool:
        groups = {a.get("group_name") for a in approvals if a.get("group_name")}
        return len(groups) >= self.required


PURCHASE_ORDER_POLICY = DistinctApproverCount(2)
SALE_POLICY = DistinctApproverCount(2)
LEAD_POLICY = DistinctGroupCount(2)


# ════════════════════════════════════════════════════════════════════════════
# PURE STATE HELPERS
# ════════════════════════════════════════════════════════════════════════════

def empty_approval() -> Dict[str, Any]:
    return {"status": "not_submitted", "approvals": []}


def approval_status(approvals: List[Dict[str, Any]], policy: QuorumPolicy) -> str:
    if not approvals:
        return "not_submitted"
    return "approved" if policy.is_met(approvals) else "pending"


def record_approval(
    approvals: List[Dict[str, Any]],
    admin_id: str,
    policy: QuorumPolicy,
    group_name: Optional[str] = None,
    comments: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Dict[str, Any], bool]:
    """
    Returns (new approvals, the appended entry, quorum met).
    Raises DuplicateApprovalError / NotInGroupError without touching the input list.
    """
    approvals = list(approvals or [])
    policy.check_approver(approvals, admin_id, group_name)

    entry = {"admin_id": admin_id, "approved_at": now_iso()}
    if group_name:
        entry["group_name"] = group_name
    if comments:
        entry["comments"] = comments

    updated = approvals + [entry]
    return updated, entry, policy.is_met(updated)


async def commit_approval(
    collection,
    doc: Dict[str, Any],
    field: str,
    entry: Dict[str, Any],
    updates: Dict[str, Any],
) -> None:
    """
    Append `entry` to `field` and apply `updates`, only if the document is
    still at the version that was read.
    """
    result = await collection.update_one(
        {"id": doc["id"], "version": doc.get("version")},
        {
            "$push": {field: entry},
            "$set": {**updates, "updated_at": now_iso()},
            "$inc": {"version": 1},
        },
    )
    if result.modified_count == 0:
        fresh = await collection.find_one({"id": doc["id"]}, {"_id": 0})
        approvals = _read_path(fresh or {}, field) or []
        if any(a.get("admin_id") == entry["admin_id"] for a in approvals):
            raise DuplicateApprovalError("You have already approved this item")
        raise ConcurrentUpdateError("This item was modified by another request, please retry")


def _read_path(doc: Dict[str, Any], dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


# ════════════════════════════════════════════════════════════════════════════
# ADMIN GROUPS
# ════════════════════════════════════════════════════════════════════════════

async def list_admin_groups() -> List[Dict[str, Any]]:
    """Groups sorted by name; the two default groups are created on first use"""
    groups = await db.admin_groups.find({}, {"_id": 0}).sort("name", 1).to_list(100)
    if groups:
        return groups

    for name in DEFAULT_GROUP_NAMES:
        await db.admin_groups.update_one(
            {"name": name},
            {"$setOnInsert": {"name": name, "members": [], "created_at": now_iso()}},
            upsert=True,
        )
    logger.info(f"[APPROVAL] seeded admin groups {DEFAULT_GROUP_NAMES}")
    return await db.admin_groups.find({}, {"_id": 0}).sort("name", 1).to_list(100)


async def resolve_admin_group(admin_id: str) -> Optional[str]:
    """Name of the first group (by name) listing this admin"""
    groups = await db.admin_groups.find({}, {"_id": 0}).sort("name", 1).to_list(100)
    for group in groups:
        if admin_id in (group.get("members") or []):
            return group["name"]
    return None


def validate_admin_groups(groups: List[Dict[str, Any]]) -> None:
    if len(groups) != REQUIRED_GROUPS:
        raise ValidationError(f"Exactly {REQUIRED_GROUPS} admin groups are required")

    names = set()
    seen: Dict[str, str] = {}
    for group in groups:
        name = (group.get("name") or "").strip()
        if not name:
            raise ValidationError("Admin group name is required")
        if name in names:
            raise ValidationError(f"Duplicate admin group name: {name}")
        names.add(name)

        members = group.get("members") or []
        if len(members) > MAX_GROUP_MEMBERS:
            raise ValidationError(f"{name} cannot have more than {MAX_GROUP_MEMBERS} admins")
        if len(set(members)) != len(members):
            raise ValidationError(f"{name} lists the same admin twice")
        for admin_id in members:
            if admin_id in seen:
                raise ValidationError(f"Admin {admin_id} cannot belong to both {seen[admin_id]} and {name}")
            seen[admin_id] = name


async def update_admin_groups(groups: List[Dict[str, Any]], updated_by: str) -> List[Dict[str, Any]]:
    validate_admin_groups(groups)

    admin_ids = [a for g in groups for a in g.get("members") or []]
    if admin_ids:
        found = await db.admins.count_documents({"id": {"$in": admin_ids}})
        if found != len(admin_ids):
            raise ValidationError("Every group member must be an existing admin")

    await db.admin_groups.delete_many({})
    now = now_iso()
    await db.admin_groups.insert_many([
        {"name": g["name"].strip(), "members": list(g.get("members") or []), "updated_by": updated_by,
         "created_at": now, "updated_at": now}
        for g in groups
    ])
    logger.info(f"[APPROVAL] admin groups updated by {updated_by}")
    return await db.admin_groups.find({}, {"_id": 0}).sort("name", 1).to_list(100)
