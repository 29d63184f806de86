"""
ZRS CRM - E-signature client (DocuSign-style REST API)

One envelope per investor allocation, built from the purchase agreement
template. Text tabs carry the vehicle, purchase order and allocation fields.
Every failure surfaces as CollaboratorError; callers decide whether to degrade.
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from config import (
    COLLABORATOR_TIMEOUT_SECONDS,
    COMPANY_NAME,
    ESIGN_ACCESS_TOKEN,
    ESIGN_ACCOUNT_ID,
    ESIGN_BASE_URL,
    ESIGN_PURCHASE_TEMPLATE_ID,
)
from services.collaborators import SignatureService
from services.errors import CollaboratorError

logger = logging.getLogger("esign_client")


def _fmt(value: Any) -> str:
    return "N/A" if value is None or value == "" else str(value)


def agreement_tabs(
    investor: Dict[str, Any],
    lead: Dict[str, Any],
    purchase_order: Dict[str, Any],
    allocation: Dict[str, Any],
) -> List[Dict[str, str]]:
    vehicle = lead.get("vehicle_info") or {}
    contact = lead.get("contact_info") or {}
    price = lead.get("price_analysis") or {}
    costs = purchase_order.get("costs") or {}

    values = {
        "buying_price": price.get("purchased_final_price"),
        "car_chassis": vehicle.get("vin"),
        "car_color": vehicle.get("color"),
        "car_make": vehicle.get("make"),
        "car_mileage": vehicle.get("mileage"),
        "car_model": vehicle.get("model"),
        "car_region": vehicle.get("region"),
        "car_trim": vehicle.get("trim"),
        "car_year": vehicle.get("year"),
        "eid_passport": contact.get("passport_or_emirates_id"),
        "investor_name": investor.get("name"),
        "agent_commission": costs.get("agent_commission"),
        "car_recovery_cost": costs.get("car_recovery_cost"),
        "detailing_inspection_cost": costs.get("detailing_inspection_cost"),
        "other_charges": costs.get("other_charges"),
        "transfer_cost_rta": costs.get("transfer_cost"),
        "prepared_by": purchase_order.get("prepared_by"),
        "purchase_order_no": purchase_order.get("po_number"),
        "total_investment_amount": purchase_order.get("total_investment"),
        "date": datetime.now(timezone.utc).strftime("%d/%m/%Y"),
        "investor_allocation_percentage": allocation.get("percentage"),
        "investor_allocation_amount": allocation.get("amount"),
    }
    return [{"tabLabel": label, "value": _fmt(value)} for label, value in values.items()]


class ESignClient(SignatureService):
    """httpx client, one AsyncClient per call, bounded by the collaborator timeout"""

    def __init__(
        self,
        base_url: str = ESIGN_BASE_URL,
        account_id: str = ESIGN_ACCOUNT_ID,
        access_token: str = ESIGN_ACCESS_TOKEN,
        template_id: str = ESIGN_PURCHASE_TEMPLATE_ID,
        timeout: float = COLLABORATOR_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.access_token = access_token
        self.template_id = template_id
        self.timeout = timeout

    @property
    def _envelopes_url(self) -> str:
        return f"{self.base_url}/v2.1/accounts/{self.account_id}/envelopes"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}

    async def send_agreement(self, investor, lead, purchase_order, allocation) -> Dict[str, Any]:
        if not investor.get("email"):
            raise CollaboratorError(f"Investor {investor.get('name', investor.get('id'))} has no email address")
        if not self.template_id:
            raise CollaboratorError("ESIGN_PURCHASE_TEMPLATE_ID is not configured")

        payload = {
            "emailSubject": f"Purchase Agreement {lead.get('lead_number')} - {COMPANY_NAME}",
            "templateId": self.template_id,
            "status": "sent",
            "templateRoles": [{
                "email": investor["email"],
                "name": investor.get("name", ""),
                "roleName": "investor",
                "tabs": {"textTabs": agreement_tabs(investor, lead, purchase_order, allocation)},
            }],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self._envelopes_url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"E-signature request timed out: {e}")
        except httpx.HTTPError as e:
            raise CollaboratorError(f"E-signature request failed: {e}")

        if resp.status_code not in (200, 201):
            raise CollaboratorError(f"E-signature API error {resp.status_code}: {resp.text[:300]}")

        data = resp.json()
        logger.info(f"[ESIGN] envelope {data.get('envelopeId')} sent for lead {lead.get('lead_number')}")
        return {"envelope_id": data["envelopeId"], "status": (data.get("status") or "sent").lower()}

    async def fetch_signed_documents(self, envelope_id: str) -> List[Dict[str, Any]]:
        documents = []
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self._envelopes_url}/{envelope_id}/documents", headers=self._headers())
                if resp.status_code != 200:
                    raise CollaboratorError(f"E-signature API error {resp.status_code}: {resp.text[:300]}")

                for doc in resp.json().get("envelopeDocuments") or []:
                    document_id = doc.get("documentId")
                    content = await client.get(
                        f"{self._envelopes_url}/{envelope_id}/documents/{document_id}",
                        headers={**self._headers(), "Accept": "application/pdf"},
                    )
                    if content.status_code != 200 or not content.content:
                        logger.error(f"[ESIGN] no content for document {document_id} of envelope {envelope_id}")
                        continue
                    documents.append({
                        "document_id": document_id,
                        "name": doc.get("name") or f"document_{document_id}.pdf",
                        "file_type": "application/pdf",
                        "file_size": len(content.content),
                        "content": base64.b64encode(content.content).decode("ascii"),
                        "uri": doc.get("uri"),
                    })
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Failed to fetch signed documents for envelope {envelope_id}: {e}")

        logger.info(f"[ESIGN] fetched {len(documents)} signed documents for envelope {envelope_id}")
        return documents
