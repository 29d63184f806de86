"""
ZRS CRM - Sale / invoice / admin models
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SaleStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SaleClose(BaseModel):
    customer_name: str = Field(..., min_length=1)
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    selling_price: float = Field(..., gt=0)
    notes: Optional[str] = None


class EvidenceAttach(BaseModel):
    """Receipt / proof for one cost category of an invoice"""
    category: str
    url: str
    public_id: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None


class AdminGroup(BaseModel):
    name: str
    members: List[str] = []


class AdminGroupsUpdate(BaseModel):
    groups: List[AdminGroup]


class PaymentDefaults(BaseModel):
    mode_of_payment: str = Field(..., min_length=1)
    payment_received_by: str = Field(..., min_length=1)
