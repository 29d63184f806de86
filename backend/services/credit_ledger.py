"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Credit Ledger                                                     ║
║                                                                              ║
║  ONLY THIS MODULE writes investors.utilized_amount and .investments          ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - utilized_amount <= credit_limit at commit time                            ║
║  - one live reservation per (investor, lead): reserve is idempotent          ║
║  - investment active -> settled exactly once                                 ║
║  - every change is a single conditional update_one ($inc), never             ║
║    read-modify-write                                                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from config import db, now_iso
from services.allocation import round2, to_decimal
from services.errors import InsufficientCreditError, NotFoundError, ValidationError

logger = logging.getLogger("credit_ledger")

INVESTMENT_STATUSES = ["active", "settled", "cancelled"]
RESERVE_ATTEMPTS = 3
# utilized_amount accumulates float $inc error; stored bounds are compared to the half cent
HALF_CENT = Decimal("0.005")


def remaining_credit(investor: Dict[str, Any]) -> float:
    return round2(to_decimal(investor.get("credit_limit")) - to_decimal(investor.get("utilized_amount")))


def find_live_investment(investor: Dict[str, Any], lead_id: str) -> Optional[Dict[str, Any]]:
    """Active or settled investment for this lead, if any"""
    for investment in investor.get("investments") or []:
        if investment.get("lead_id") == lead_id and investment.get("status") in ("active", "settled"):
            return investment
    return None


async def _get_investor(investor_id: str) -> Dict[str, Any]:
    investor = await db.investors.find_one({"id": investor_id}, {"_id": 0})
    if not investor:
        raise NotFoundError(f"Investor not found: {investor_id}")
    return investor


# ════════════════════════════════════════════════════════════════════════════
# CAPACITY
# ════════════════════════════════════════════════════════════════════════════

async def check_capacity(investor_id: str, amount: float) -> Dict[str, Any]:
    """Raises InsufficientCreditError when amount > credit_limit - utilized_amount"""
    investor = await _get_investor(investor_id)
    available = remaining_credit(investor)
    if to_decimal(round2(amount)) > to_decimal(available):
        raise InsufficientCreditError(investor.get("name", investor_id), available, round2(amount))
    return investor


# ════════════════════════════════════════════════════════════════════════════
# RESERVE / RELEASE / CANCEL
# ════════════════════════════════════════════════════════════════════════════

async def reserve(investor_id: str, amount: float, investment: Dict[str, Any]) -> Dict[str, Any]:
    """
    Increment utilized_amount and append an active investment.

    `investment` must carry lead_id; purchase_order_id and percentage are
    optional. A second call for the same (investor, lead) is a no-op and
    returns {"reserved": False, "investment": <existing>}.
    """
    lead_id = investment["lead_id"]
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError(f"Reservation amount must be greater than 0 (investor {investor_id})")

    for _ in range(RESERVE_ATTEMPTS):
        investor = await _get_investor(investor_id)

        existing = find_live_investment(investor, lead_id)
        if existing:
            logger.info(f"[LEDGER] reserve no-op: investor={investor_id} lead={lead_id} already {existing['status']}")
            return {"reserved": False, "investment": existing}

        limit = investor.get("credit_limit", 0)
        available = remaining_credit(investor)
        if to_decimal(amount) > to_decimal(available):
            raise InsufficientCreditError(investor.get("name", investor_id), available, amount)

        record = {
            "id": str(uuid.uuid4()),
            "lead_id": lead_id,
            "purchase_order_id": investment.get("purchase_order_id"),
            "amount": amount,
            "percentage": investment.get("percentage"),
            "status": "active",
            "reservation_key": lead_id,
            "date": now_iso(),
        }

        result = await db.investors.update_one(
            {
                "id": investor_id,
                "credit_limit": limit,
                "utilized_amount": {"$lte": float(to_decimal(limit) - to_decimal(amount) + HALF_CENT)},
                "investments.reservation_key": {"$ne": lead_id},
            },
            {
                "$inc": {"utilized_amount": amount},
                "$push": {"investments": record},
                "$set": {"updated_at": now_iso()},
            },
        )
        if result.modified_count == 1:
            logger.info(f"[LEDGER] reserved {amount:.2f} investor={investor_id} lead={lead_id}")
            return {"reserved": True, "investment": record}

        logger.warning(f"[LEDGER] reserve raced for investor={investor_id} lead={lead_id}, re-reading")

    investor = await _get_investor(investor_id)
    existing = find_live_investment(investor, lead_id)
    if existing:
        return {"reserved": False, "investment": existing}
    raise InsufficientCreditError(investor.get("name", investor_id), remaining_credit(investor), amount)


async def release(
    investor_id: str,
    amount: Optional[float] = None,
    investment_id: Optional[str] = None,
    lead_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Settle the matching active investment and give its recorded amount back.

    Never raises for a missing investor/investment: logs and returns None.
    """
    investor = await db.investors.find_one({"id": investor_id}, {"_id": 0})
    if not investor:
        logger.warning(f"[LEDGER] release skipped: investor {investor_id} not found")
        return None

    investment = None
    for candidate in investor.get("investments") or []:
        if candidate.get("status") != "active":
            continue
        if investment_id and candidate.get("id") == investment_id:
            investment = candidate
            break
        if not investment_id and lead_id and candidate.get("lead_id") == lead_id:
            investment = candidate
            break

    if not investment:
        logger.warning(
            f"[LEDGER] release skipped: no active investment investor={investor_id} "
            f"investment={investment_id} lead={lead_id}"
        )
        return None

    recorded = round2(investment.get("amount"))
    if amount is not None and round2(amount) != recorded:
        logger.warning(
            f"[LEDGER] release amount {round2(amount):.2f} differs from recorded {recorded:.2f}, "
            f"using recorded (investor={investor_id})"
        )

    settled_at = now_iso()
    result = await db.investors.update_one(
        {"id": investor_id, "investments": {"$elemMatch": {"id": investment["id"], "status": "active"}}},
        {
            "$set": {
                "investments.$.status": "settled",
                "investments.$.settled_at": settled_at,
                "updated_at": settled_at,
            },
            "$inc": {"utilized_amount": -recorded},
        },
    )
    if result.modified_count == 0:
        logger.info(f"[LEDGER] release no-op: investment {investment['id']} already settled")
        return None

    logger.info(f"[LEDGER] released {recorded:.2f} investor={investor_id} investment={investment['id']}")
    return {**investment, "status": "settled", "settled_at": settled_at}


async def cancel_reservation(investor_id: str, lead_id: str) -> Optional[Dict[str, Any]]:
    """Undo an active reservation (compensation when a multi-investor commit fails)"""
    investor = await db.investors.find_one({"id": investor_id}, {"_id": 0})
    if not investor:
        return None
    investment = next(
        (i for i in investor.get("investments") or [] if i.get("lead_id") == lead_id and i.get("status") == "active"),
        None,
    )
    if not investment:
        return None

    result = await db.investors.update_one(
        {"id": investor_id, "investments": {"$elemMatch": {"id": investment["id"], "status": "active"}}},
        {
            "$set": {
                "investments.$.status": "cancelled",
                "investments.$.reservation_key": None,
                "updated_at": now_iso(),
            },
            "$inc": {"utilized_amount": -round2(investment.get("amount"))},
        },
    )
    if result.modified_count == 0:
        return None
    logger.warning(f"[LEDGER] cancelled reservation investor={investor_id} lead={lead_id}")
    return {**investment, "status": "cancelled"}


# ════════════════════════════════════════════════════════════════════════════
# LIMITS / SUMMARY
# ════════════════════════════════════════════════════════════════════════════

async def update_credit_limit(investor_id: str, credit_limit: float) -> Dict[str, Any]:
    """New limit may never drop below what is already utilized"""
    credit_limit = round2(credit_limit)
    if credit_limit < 0:
        raise ValidationError("Credit limit must be a positive amount")

    result = await db.investors.update_one(
        {"id": investor_id, "utilized_amount": {"$lte": float(to_decimal(credit_limit) + HALF_CENT)}},
        {"$set": {"credit_limit": credit_limit, "updated_at": now_iso()}},
    )
    investor = await _get_investor(investor_id)
    if result.matched_count == 0:
        raise ValidationError(
            f"Credit limit cannot be less than utilized amount "
            f"({round2(investor.get('utilized_amount')):.2f})"
        )
    logger.info(f"[LEDGER] credit limit investor={investor_id} -> {credit_limit:.2f}")
    return investor


async def investment_summary(investor_id: str) -> Dict[str, Any]:
    investor = await _get_investor(investor_id)
    investments = investor.get("investments") or []
    active = [i for i in investments if i.get("status") == "active"]
    settled = [i for i in investments if i.get("status") == "settled"]
    return {
        "investor_id": investor_id,
        "credit_limit": round2(investor.get("credit_limit")),
        "utilized_amount": round2(investor.get("utilized_amount")),
        "remaining_credit": remaining_credit(investor),
        "active_count": len(active),
        "active_amount": round2(sum(to_decimal(i.get("amount")) for i in active)),
        "settled_count": len(settled),
        "settled_amount": round2(sum(to_decimal(i.get("amount")) for i in settled)),
        "investments": investments,
    }
