"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Allocation Calculator                                             ║
║                                                                              ║
║  Pure functions, no database access.                                         ║
║                                                                              ║
║  RULES:                                                                      ║
║  - money is rounded half-up to 2 decimals                                    ║
║  - sum(percentages) <= 100 (epsilon 0.0001)                                  ║
║  - one allocation per investor                                               ║
║  - a cost assigned to one investor is 100% theirs, 0 for the others          ║
║  - share total = rounded sum of the already-rounded breakdown lines          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from services.errors import ValidationError

ALLOCATION_EPSILON = 0.0001
CENTS = Decimal("0.01")


# ════════════════════════════════════════════════════════════════════════════
# MONEY
# ════════════════════════════════════════════════════════════════════════════

def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Any) -> float:
    """Round half-up to cents. round2(0.125) == 0.13"""
    return float(to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


def _given(value: Any) -> bool:
    return value is not None and value != ""


# ════════════════════════════════════════════════════════════════════════════
# COST CATEGORIES
# ════════════════════════════════════════════════════════════════════════════

class CostCategory(str, Enum):
    """Itemized purchase costs. The value is the field name on the PO costs dict."""
    TRANSFER = "transfer_cost"
    DETAILING_INSPECTION = "detailing_inspection_cost"
    AGENT_COMMISSION = "agent_commission"
    CAR_RECOVERY = "car_recovery_cost"
    OTHER = "other_charges"

    def amount_from(self, costs: Optional[Dict[str, Any]]) -> float:
        return float(to_decimal((costs or {}).get(self.value)))

    def assignee_from(self, cost_assignments: Optional[Dict[str, Any]]) -> Optional[str]:
        return (cost_assignments or {}).get(self.value) or None

    @property
    def label(self) -> str:
        return COST_LABELS[self]


COST_LABELS = {
    CostCategory.TRANSFER: "Transfer Cost (RTA)",
    CostCategory.DETAILING_INSPECTION: "Detailing / Inspection Cost",
    CostCategory.AGENT_COMMISSION: "Agent Commission",
    CostCategory.CAR_RECOVERY: "Car Recovery Cost",
    CostCategory.OTHER: "Other Charges",
}


def total_costs(costs: Optional[Dict[str, Any]]) -> float:
    return round2(sum(to_decimal(c.amount_from(costs)) for c in CostCategory))


def total_payable(buying_price: Any, costs: Optional[Dict[str, Any]]) -> float:
    """Buying price plus every itemized cost"""
    return round2(to_decimal(buying_price) + to_decimal(total_costs(costs)))


# ════════════════════════════════════════════════════════════════════════════
# NORMALIZATION / VALIDATION
# ════════════════════════════════════════════════════════════════════════════

def normalize_allocations(raw_allocations: List[Dict[str, Any]], base_price: Any) -> List[Dict[str, Any]]:
    """
    Resolve every entry to {investor_id, percentage, amount}.

    - percentage only: amount = round2(percentage / 100 * base_price)
    - amount only: percentage = round2(amount / base_price * 100)
    - neither derivable, or no investor reference: dropped
    Extra keys (payment metadata) are carried through.
    """
    base = to_decimal(base_price)
    normalized = []

    for raw in raw_allocations or []:
        investor_id = raw.get("investor_id")
        if not investor_id:
            continue

        percentage = raw.get("percentage")
        amount = raw.get("amount")

        if _given(percentage) and _given(amount):
            percentage = round2(percentage)
            amount = round2(amount)
        elif _given(percentage):
            percentage = round2(percentage)
            amount = round2(to_decimal(percentage) / 100 * base)
        elif _given(amount) and base > 0:
            amount = round2(amount)
            percentage = round2(to_decimal(amount) / base * 100)
        else:
            continue

        entry = dict(raw)
        entry.update({"investor_id": investor_id, "percentage": percentage, "amount": amount})
        normalized.append(entry)

    return normalized


def validate_allocation_set(
    allocations: List[Dict[str, Any]],
    investors: Optional[Dict[str, Dict[str, Any]]] = None,
) -> bool:
    """
    Raises ValidationError on the first broken rule.
    `investors` maps investor_id -> investor document; when given, status and
    the decided percentage band are checked too.
    """
    seen = set()
    total = Decimal("0")

    for alloc in allocations:
        investor_id = alloc["investor_id"]
        percentage = to_decimal(alloc.get("percentage"))

        if investor_id in seen:
            raise ValidationError(f"Duplicate investor in allocations: {investor_id}")
        seen.add(investor_id)

        if percentage <= 0:
            raise ValidationError(f"Allocation percentage must be greater than 0 (investor {investor_id})")

        if investors is not None:
            investor = investors.get(investor_id)
            if not investor:
                raise ValidationError(f"Investor not found: {investor_id}")
            name = investor.get("name", investor_id)
            if investor.get("status") != "active":
                raise ValidationError(f"Investor {name} is not active")

            band = investor.get("decided_percentage") or {}
            low = to_decimal(band.get("min", 0))
            high = to_decimal(band.get("max", 100))
            if percentage < low or percentage > high:
                raise ValidationError(
                    f"Allocation of {percentage}% for investor {name} is outside "
                    f"the allowed range {low}%-{high}%"
                )

        total += percentage

    if total > Decimal("100") + Decimal(str(ALLOCATION_EPSILON)):
        raise ValidationError("Total allocation percentage cannot exceed 100%")

    return True


def allocation_totals(allocations: List[Dict[str, Any]]) -> Dict[str, float]:
    return {
        "percentage": round2(sum(to_decimal(a.get("percentage")) for a in allocations)),
        "amount": round2(sum(to_decimal(a.get("amount")) for a in allocations)),
    }


# ════════════════════════════════════════════════════════════════════════════
# SHARE OF TOTAL PAYABLE
# ════════════════════════════════════════════════════════════════════════════

def share_ratio(allocation: Dict[str, Any], allocations: List[Dict[str, Any]]) -> Decimal:
    """amount / sum(amounts), else percentage / sum(percentages), else 1/N"""
    amount_sum = sum(to_decimal(a.get("amount")) for a in allocations if to_decimal(a.get("amount")) > 0)
    if amount_sum > 0:
        return to_decimal(allocation.get("amount")) / amount_sum

    pct_sum = sum(to_decimal(a.get("percentage")) for a in allocations if to_decimal(a.get("percentage")) > 0)
    if pct_sum > 0:
        return to_decimal(allocation.get("percentage")) / pct_sum

    return Decimal("1") / Decimal(max(len(allocations), 1))


def compute_share(
    allocation: Dict[str, Any],
    allocations: List[Dict[str, Any]],
    buying_price: Any,
    costs: Optional[Dict[str, Any]] = None,
    cost_assignments: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    This investor's slice of buying price and of each itemized cost.

    Returns {investor_id, percentage, ratio, breakdown, total} where breakdown
    is keyed by "buying_price" and the CostCategory values.
    """
    ratio = share_ratio(allocation, allocations)
    investor_id = allocation["investor_id"]

    breakdown = {"buying_price": round2(to_decimal(buying_price) * ratio)}
    for category in CostCategory:
        amount = to_decimal(category.amount_from(costs))
        assignee = category.assignee_from(cost_assignments)
        if assignee:
            share = amount if assignee == investor_id else Decimal("0")
        else:
            share = amount * ratio
        breakdown[category.value] = round2(share)

    total = round2(sum(to_decimal(v) for v in breakdown.values()))

    return {
        "investor_id": investor_id,
        "percentage": allocation.get("percentage"),
        "ratio": float(ratio),
        "breakdown": breakdown,
        "total": total,
    }
