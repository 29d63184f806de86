"""
ZRS CRM - Settings service

Runtime parameters stored in the settings collection (one doc per key).

Available settings:
- payment_defaults: global {mode_of_payment, payment_received_by} used when
  converting a lead whose allocations carry no payment metadata
"""

import logging
from typing import Optional, Dict, Any
from config import db, now_iso

logger = logging.getLogger("settings")

PAYMENT_FIELDS = ("mode_of_payment", "payment_received_by")


async def get_setting(key: str) -> Optional[Dict]:
    return await db.settings.find_one({"key": key}, {"_id": 0})


async def upsert_setting(key: str, values: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Single upsert keyed by `key`; created_at is stamped on first write only"""
    now = now_iso()
    await db.settings.update_one(
        {"key": key},
        {
            "$set": {**values, "updated_at": now, "updated_by": updated_by},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
    return await get_setting(key)


# ---- Payment defaults ----

async def get_payment_defaults() -> Dict[str, Optional[str]]:
    doc = await get_setting("payment_defaults") or {}
    return {field: doc.get(field) for field in PAYMENT_FIELDS}


async def set_payment_defaults(mode_of_payment: str, payment_received_by: str, updated_by: str) -> Dict:
    logger.info(f"[SETTINGS] payment defaults updated by {updated_by}")
    return await upsert_setting(
        "payment_defaults",
        {"mode_of_payment": mode_of_payment, "payment_received_by": payment_received_by},
        updated_by,
    )
