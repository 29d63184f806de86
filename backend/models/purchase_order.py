"""
ZRS CRM - Purchase order models
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SIGNED = "signed"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PurchaseOrderCosts(BaseModel):
    transfer_cost: float = Field(default=0, ge=0)
    detailing_inspection_cost: float = Field(default=0, ge=0)
    agent_commission: float = Field(default=0, ge=0)
    car_recovery_cost: float = Field(default=0, ge=0)
    other_charges: float = Field(default=0, ge=0)


class CostAssignments(BaseModel):
    """Investor id responsible for each cost; None = shared by percentage"""
    transfer_cost: Optional[str] = None
    detailing_inspection_cost: Optional[str] = None
    agent_commission: Optional[str] = None
    car_recovery_cost: Optional[str] = None
    other_charges: Optional[str] = None


class PurchaseOrderUpsert(BaseModel):
    costs: PurchaseOrderCosts = PurchaseOrderCosts()
    cost_assignments: CostAssignments = CostAssignments()
    prepared_by: Optional[str] = None
