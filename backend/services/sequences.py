"""
Human-readable reference numbers (PL0001, SL0001, PO0001, S0001, INV0001).

Each document stores its numeric suffix in `seq`; the next number is the
highest stored seq + 1. Callers that need uniqueness back it with a unique
index and retry on DuplicateKeyError.
"""

from typing import Any, Dict, Optional, Tuple


async def next_reference(collection, prefix: str, query: Optional[Dict[str, Any]] = None) -> Tuple[str, int]:
    last = await collection.find(query or {}, {"_id": 0, "seq": 1}).sort("seq", -1).limit(1).to_list(1)
    seq = (last[0].get("seq") or 0) + 1 if last else 1
    return f"{prefix}{seq:04d}", seq
