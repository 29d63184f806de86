"""
ZRS CRM - Routes Webhooks
E-signature status callbacks. Always acknowledged so the provider does not
retry forever; the outcome is in the response body and the logs.
"""

import logging

from fastapi import APIRouter, Depends, Request

from services.collaborators import Collaborators, get_collaborators
from services.signature_webhook import handle_signature_event

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger("webhooks")


@router.post("/esign")
async def esign_event(request: Request, collaborators: Collaborators = Depends(get_collaborators)):
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("[WEBHOOK] non-JSON body ignored")
        return {"success": True, "data": {"processed": False, "reason": "invalid body"}}
    if not isinstance(payload, dict):
        return {"success": True, "data": {"processed": False, "reason": "invalid body"}}

    result = await handle_signature_event(payload, collaborators)
    return {"success": True, "data": result}
