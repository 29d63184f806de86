"""
ZRS CRM - Seed demo data (dev/staging only)
Creates 4 admins split into the two approval groups, 1 manager, 3 investors,
payment defaults and a 7-day session token per user.
Run: python scripts/seed_demo_data.py
Reset: python scripts/seed_demo_data.py --reset
"""

import asyncio
import sys
import uuid
from datetime import datetime, timezone, timedelta
from motor.motor_asyncio import AsyncIOMotorClient

MONGO_URL = "mongodb://localhost:27017"
DB_NAME = "zrs_crm"

SESSION_DAYS = 7

DEMO_ADMINS = [
    {"email": "admin_a1@demo.local", "name": "Admin A1", "group": "Group A"},
    {"email": "admin_a2@demo.local", "name": "Admin A2", "group": "Group A"},
    {"email": "admin_b1@demo.local", "name": "Admin B1", "group": "Group B"},
    {"email": "admin_b2@demo.local", "name": "Admin B2", "group": "Group B"},
]

DEMO_MANAGERS = [
    {"email": "manager@demo.local", "name": "Sales Manager"},
]

DEMO_INVESTORS = [
    {"email": "investor1@demo.local", "name": "Investor One", "credit_limit": 250000, "band": (10, 70)},
    {"email": "investor2@demo.local", "name": "Investor Two", "credit_limit": 150000, "band": (10, 60)},
    {"email": "investor3@demo.local", "name": "Investor Three", "credit_limit": 80000, "band": (5, 40)},
]

DEMO_DOMAIN = "@demo\\.local$"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def reset(db):
    """Delete every demo.local user, investor and their sessions"""
    ids = []
    for collection in ("admins", "managers"):
        docs = await db[collection].find({"email": {"$regex": DEMO_DOMAIN}}, {"id": 1}).to_list(100)
        ids += [d["id"] for d in docs]
        await db[collection].delete_many({"email": {"$regex": DEMO_DOMAIN}})
    result = await db.investors.delete_many({"email": {"$regex": DEMO_DOMAIN}})
    await db.sessions.delete_many({"user_id": {"$in": ids}})
    await db.admin_groups.delete_many({})
    print(f"Deleted {len(ids)} demo users and {result.deleted_count} demo investors")


async def _create_user(db, collection: str, user_type: str, data: dict) -> str:
    user_id = str(uuid.uuid4())
    await db[collection].insert_one({
        "id": user_id,
        "email": data["email"],
        "name": data["name"],
        "is_active": True,
        "created_at": _now(),
    })
    token = uuid.uuid4().hex
    await db.sessions.insert_one({
        "token": token,
        "user_id": user_id,
        "user_type": user_type,
        "created_at": _now(),
        "expires_at": (datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)).isoformat(),
    })
    print(f"  Created {user_type}: {data['email']}  token={token}")
    return user_id


async def seed(db):
    groups = {"Group A": [], "Group B": []}
    for admin in DEMO_ADMINS:
        admin_id = await _create_user(db, "admins", "admin", admin)
        groups[admin["group"]].append(admin_id)

    for manager in DEMO_MANAGERS:
        await _create_user(db, "managers", "manager", manager)

    for name, members in sorted(groups.items()):
        await db.admin_groups.insert_one({"name": name, "members": members, "created_at": _now()})

    for inv in DEMO_INVESTORS:
        low, high = inv["band"]
        await db.investors.insert_one({
            "id": str(uuid.uuid4()),
            "name": inv["name"],
            "email": inv["email"],
            "status": "active",
            "credit_limit": float(inv["credit_limit"]),
            "utilized_amount": 0.0,
            "decided_percentage": {"min": float(low), "max": float(high)},
            "payment_preferences": {},
            "investments": [],
            "created_at": _now(),
            "updated_at": _now(),
        })
        print(f"  Created investor: {inv['email']} (limit {inv['credit_limit']})")

    await db.settings.update_one(
        {"key": "payment_defaults"},
        {"$set": {"key": "payment_defaults", "mode_of_payment": "Bank transfer",
                  "payment_received_by": "ZRS Accounts", "updated_at": _now()}},
        upsert=True,
    )


async def main():
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    if "--reset" in sys.argv:
        await reset(db)
        print("Reset complete. Run without --reset to re-seed.")
    else:
        await reset(db)
        await seed(db)
        print(f"\nDemo data seeded: {len(DEMO_ADMINS)} admins, {len(DEMO_MANAGERS)} manager, "
              f"{len(DEMO_INVESTORS)} investors")
        print("Reset: python scripts/seed_demo_data.py --reset")

    client.close()


if __name__ == "__main__":
    asyncio.run(main())
