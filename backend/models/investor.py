"""
ZRS CRM - Investor models
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InvestorStatus(str, Enum):
    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentPreferences(BaseModel):
    mode_of_payment: Optional[str] = None
    payment_received_by: Optional[str] = None


class InvestorCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    credit_limit: float = Field(default=0, ge=0)
    min_percentage: float = Field(default=0, ge=0, le=100)
    max_percentage: float = Field(default=100, ge=0, le=100)
    payment_preferences: PaymentPreferences = PaymentPreferences()


class InvestorStatusUpdate(BaseModel):
    status: InvestorStatus


class CreditLimitUpdate(BaseModel):
    credit_limit: float = Field(..., ge=0)


class PercentageBandUpdate(BaseModel):
    min_percentage: float = Field(..., ge=0, le=100)
    max_percentage: float = Field(..., ge=0, le=100)
