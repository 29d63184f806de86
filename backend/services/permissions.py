"""
ZRS CRM - Actors and capabilities
Admin | Manager variant + one capability table + FastAPI dependencies.
Guards ask actor_capabilities(actor), never compare role strings.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Union

from fastapi import Depends

from services.errors import AccessDeniedError

logger = logging.getLogger("permissions")


@dataclass(frozen=True)
class Admin:
    id: str
    name: str = ""
    email: str = ""

    role = "admin"


@dataclass(frozen=True)
class Manager:
    id: str
    name: str = ""
    email: str = ""

    role = "manager"


Actor = Union[Admin, Manager]


@dataclass(frozen=True)
class Capabilities:
    can_create_lead: bool
    can_add_note: bool
    can_update_lead_details: bool
    can_change_status: bool
    can_approve: bool
    can_assign_investors: bool
    can_manage_purchase_orders: bool
    can_convert: bool
    can_close_sale: bool
    can_manage_investors: bool
    can_manage_groups: bool


ADMIN_CAPABILITIES = Capabilities(
    can_create_lead=True,
    can_add_note=True,
    can_update_lead_details=True,
    can_change_status=True,
    can_approve=True,
    can_assign_investors=True,
    can_manage_purchase_orders=True,
    can_convert=True,
    can_close_sale=True,
    can_manage_investors=True,
    can_manage_groups=True,
)

MANAGER_CAPABILITIES = Capabilities(
    can_create_lead=True,
    can_add_note=True,
    can_update_lead_details=True,
    can_change_status=False,
    can_approve=False,
    can_assign_investors=False,
    can_manage_purchase_orders=False,
    can_convert=False,
    can_close_sale=True,
    can_manage_investors=False,
    can_manage_groups=False,
)


def actor_capabilities(actor: Actor) -> Capabilities:
    if isinstance(actor, Admin):
        return ADMIN_CAPABILITIES
    return MANAGER_CAPABILITIES


def actor_ref(actor: Actor) -> Dict[str, str]:
    """Snapshot stored on documents (created_by, author, ...)"""
    return {"id": actor.id, "name": actor.name, "role": actor.role}


def can_access_lead(actor: Actor, lead: Dict[str, Any]) -> bool:
    """Admins see every lead; managers only theirs or unassigned ones"""
    if isinstance(actor, Admin):
        return True
    assigned = lead.get("assigned_to")
    return not assigned or assigned == actor.id


def ensure_capability(actor: Actor, capability: str, action: str) -> None:
    if not getattr(actor_capabilities(actor), capability):
        logger.warning(f"[PERMISSION_DENIED] actor={actor.id} role={actor.role} capability={capability}")
        raise AccessDeniedError(f"Only admins can {action}")


def ensure_lead_access(actor: Actor, lead: Dict[str, Any]) -> None:
    if not can_access_lead(actor, lead):
        raise AccessDeniedError("Managers can only access leads assigned to them or unassigned leads")


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_capability(capability: str, action: str = "perform this action"):
    """
    FastAPI dependency factory.
    Usage: actor = Depends(require_capability("can_manage_investors", "manage investors"))
    """
    from routes.auth import get_current_actor

    async def _check(actor: Actor = Depends(get_current_actor)):
        ensure_capability(actor, capability, action)
        return actor

    return _check
