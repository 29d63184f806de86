"""
ZRS CRM - Routes Auth
Bearer session -> Admin | Manager. Sessions are issued by the identity
service; this module only resolves and revokes them.
"""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import db, now_iso
from services.permissions import Actor, Admin, Manager, actor_capabilities

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)

ACTOR_COLLECTIONS = {"admin": ("admins", Admin), "manager": ("managers", Manager)}


# ==================== HELPERS ====================

async def get_current_actor(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    """Resolve the logged-in admin or manager from the bearer token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        raise HTTPException(status_code=401, detail="Session expired")

    collection, actor_cls = ACTOR_COLLECTIONS.get(session.get("user_type"), (None, None))
    if not collection:
        raise HTTPException(status_code=401, detail="Unknown user type")

    user = await db[collection].find_one({"id": session["user_id"]}, {"_id": 0, "password": 0})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    return actor_cls(id=user["id"], name=user.get("name", ""), email=user.get("email", ""))


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Admin:
    """Admin-only access."""
    if not isinstance(actor, Admin):
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor


# ==================== SESSION ====================

@router.get("/me")
async def get_me(actor: Actor = Depends(get_current_actor)):
    """Current actor and what it may do."""
    return {
        "success": True,
        "data": {
            "id": actor.id,
            "name": actor.name,
            "email": actor.email,
            "role": actor.role,
            "capabilities": asdict(actor_capabilities(actor)),
        }
    }


@router.post("/logout")
async def logout(
    actor: Actor = Depends(get_current_actor),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}
