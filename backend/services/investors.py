"""
ZRS CRM - Investors
Profile, status and percentage band. Credit figures change only through
services.credit_ledger.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from config import db, now_iso
from services.allocation import round2
from services.credit_ledger import remaining_credit
from services.errors import NotFoundError, ValidationError
from services.permissions import Actor, actor_ref

logger = logging.getLogger("investors")

INVESTOR_STATUSES = ["invited", "active", "inactive"]


def with_remaining(investor: Dict[str, Any]) -> Dict[str, Any]:
    return {**investor, "remaining_credit": remaining_credit(investor)}


def validate_band(min_pct: Any, max_pct: Any) -> Dict[str, float]:
    low, high = round2(min_pct), round2(max_pct)
    if low < 0 or high > 100 or low > high:
        raise ValidationError("Percentage band must satisfy 0 <= min <= max <= 100")
    return {"min": low, "max": high}


async def get_investor(investor_id: str) -> Dict[str, Any]:
    investor = await db.investors.find_one({"id": investor_id}, {"_id": 0})
    if not investor:
        raise NotFoundError("Investor not found")
    return with_remaining(investor)


async def list_investors(status: Optional[str] = None, limit: int = 100, skip: int = 0) -> Dict[str, Any]:
    query = {"status": status} if status else {}
    items = await db.investors.find(
        query, {"_id": 0, "investments": 0, "otp": 0}
    ).sort("name", 1).skip(skip).limit(limit).to_list(limit)
    total = await db.investors.count_documents(query)
    return {"investors": [with_remaining(i) for i in items], "count": len(items), "total": total}


async def create_investor(data: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValidationError("Investor email is required")
    credit_limit = round2(data.get("credit_limit"))
    if credit_limit < 0:
        raise ValidationError("Credit limit must be a positive amount")
    band = validate_band(data.get("min_percentage", 0), data.get("max_percentage", 100))

    now = now_iso()
    investor = {
        "id": str(uuid.uuid4()),
        "name": (data.get("name") or "").strip(),
        "email": email,
        "phone": data.get("phone"),
        "status": "invited",
        "credit_limit": credit_limit,
        "utilized_amount": 0.0,
        "decided_percentage": band,
        "payment_preferences": data.get("payment_preferences") or {},
        "investments": [],
        "created_by": actor_ref(actor),
        "created_at": now,
        "updated_at": now,
    }
    try:
        await db.investors.insert_one(investor)
    except DuplicateKeyError:
        raise ValidationError(f"An investor with email {email} already exists")
    logger.info(f"[INVESTORS] {email} invited by {actor.id}")
    return await get_investor(investor["id"])


async def update_investor_status(investor_id: str, status: str) -> Dict[str, Any]:
    if status not in INVESTOR_STATUSES:
        raise ValidationError(f"Invalid investor status: {status}")
    result = await db.investors.update_one({"id": investor_id}, {"$set": {"status": status, "updated_at": now_iso()}})
    if result.matched_count == 0:
        raise NotFoundError("Investor not found")
    return await get_investor(investor_id)


async def update_percentage_band(investor_id: str, min_pct: float, max_pct: float) -> Dict[str, Any]:
    band = validate_band(min_pct, max_pct)
    result = await db.investors.update_one(
        {"id": investor_id}, {"$set": {"decided_percentage": band, "updated_at": now_iso()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Investor not found")
    return await get_investor(investor_id)


async def update_payment_preferences(investor_id: str, preferences: Dict[str, Optional[str]]) -> Dict[str, Any]:
    """Per-investor override of the global payment defaults"""
    fields = {f"payment_preferences.{k}": v for k, v in preferences.items() if v is not None}
    if not fields:
        raise ValidationError("Nothing to update")
    result = await db.investors.update_one({"id": investor_id}, {"$set": {**fields, "updated_at": now_iso()}})
    if result.matched_count == 0:
        raise NotFoundError("Investor not found")
    return await get_investor(investor_id)
