"""
ZRS CRM - Routes Settings (Admin)

- Payment defaults used by conversion when neither the request nor the
  investor supplies them
- Admin approval groups
"""

from fastapi import APIRouter, Depends

from models import AdminGroupsUpdate, PaymentDefaults
from routes.auth import require_admin
from services.approval_gate import list_admin_groups, update_admin_groups
from services.permissions import Actor, require_capability
from services.settings import get_payment_defaults, set_payment_defaults

router = APIRouter(prefix="/settings", tags=["Settings"])


# ---- Payment defaults ----

@router.get("/payment-defaults")
async def read_payment_defaults(admin: Actor = Depends(require_admin)):
    return {"success": True, "data": await get_payment_defaults()}


@router.put("/payment-defaults")
async def write_payment_defaults(data: PaymentDefaults, admin: Actor = Depends(require_admin)):
    saved = await set_payment_defaults(data.mode_of_payment, data.payment_received_by, admin.id)
    return {"success": True, "message": "Payment defaults updated", "data": saved}


# ---- Admin groups ----

@router.get("/admin-groups")
async def read_admin_groups(admin: Actor = Depends(require_admin)):
    return {"success": True, "data": await list_admin_groups()}


@router.put("/admin-groups")
async def write_admin_groups(
    data: AdminGroupsUpdate,
    admin: Actor = Depends(require_capability("can_manage_groups", "manage admin groups")),
):
    groups = await update_admin_groups([g.model_dump() for g in data.groups], admin.id)
    return {"success": True, "message": "Admin groups updated", "data": groups}
