"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Lead models                                                       ║
║                                                                              ║
║  Request bodies for the purchase lifecycle. Business validation lives in     ║
║  services.lead_lifecycle; these models only shape the payload.               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LeadType(str, Enum):
    PURCHASE = "purchase"
    SALES = "sales"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    NEGOTIATION = "negotiation"
    UNDER_REVIEW = "under_review"
    INSPECTION = "inspection"
    APPROVED = "approved"            # approval quorum only
    INVENTORY = "inventory"          # conversion only
    CONSIGNMENT = "consignment"
    LOST = "lost"
    CANCELLED = "cancelled"


class AttachmentCategory(str, Enum):
    INSPECTION_REPORT = "inspectionReport"
    REGISTRATION_CARD = "registrationCard"
    CAR_PICTURES = "carPictures"
    ONLINE_HISTORY_CHECK = "onlineHistoryCheck"


class ContactInfo(BaseModel):
    name: Optional[str] = ""
    phone: Optional[str] = ""
    email: Optional[str] = ""


class VehicleInfo(BaseModel):
    make: Optional[str] = ""
    model: Optional[str] = ""
    trim: Optional[str] = ""
    year: Optional[int] = None
    color: Optional[str] = ""
    mileage: Optional[int] = None
    vin: Optional[str] = ""


class LeadCreate(BaseModel):
    """
    Example:
    {
        "type": "purchase",
        "source": "dubizzle",
        "contact_info": {"name": "Omar", "phone": "+971500000000"},
        "vehicle_info": {"make": "Nissan", "model": "Patrol", "year": 2021}
    }
    """
    type: LeadType = LeadType.PURCHASE
    status: LeadStatus = LeadStatus.NEW
    source: Optional[str] = None
    contact_info: ContactInfo = ContactInfo()
    vehicle_info: VehicleInfo = VehicleInfo()
    assigned_to: Optional[str] = None


class StatusUpdate(BaseModel):
    status: LeadStatus
    note: Optional[str] = None


class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1)


class AttachmentCreate(BaseModel):
    """Storage URL / identifier of an already uploaded file"""
    category: AttachmentCategory
    url: str
    public_id: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None


class PriceAnalysisUpdate(BaseModel):
    min_selling_price: Optional[float] = None
    max_selling_price: Optional[float] = None
    purchased_final_price: Optional[float] = None
    vin: Optional[str] = None


class AllocationInput(BaseModel):
    """Either percentage or amount; the other is derived from the purchased final price"""
    investor_id: str
    percentage: Optional[float] = None
    amount: Optional[float] = None
    mode_of_payment: Optional[str] = None
    payment_received_by: Optional[str] = None


class AssignInvestors(BaseModel):
    allocations: List[AllocationInput]


class PaymentMeta(BaseModel):
    mode_of_payment: Optional[str] = None
    payment_received_by: Optional[str] = None
    date_of_payment: Optional[str] = None


class ConvertRequest(BaseModel):
    """
    Payment details for the generated invoices.
    `investors` overrides the default per investor id.
    """
    default: Optional[PaymentMeta] = None
    investors: Dict[str, PaymentMeta] = {}


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class ApprovalComment(BaseModel):
    comments: Optional[str] = None
