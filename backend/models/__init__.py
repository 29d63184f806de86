"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - Models Package                                                    ║
║                                                                              ║
║  Request bodies for every route                                              ║
║  from models import LeadCreate, AssignInvestors, SaleClose, etc.             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Lead / purchase lifecycle
from .lead import (
    LeadType,
    LeadStatus,
    AttachmentCategory,
    ContactInfo,
    VehicleInfo,
    LeadCreate,
    StatusUpdate,
    NoteCreate,
    AttachmentCreate,
    PriceAnalysisUpdate,
    AllocationInput,
    AssignInvestors,
    PaymentMeta,
    ConvertRequest,
    DeclineRequest,
    ApprovalComment,
)

# Purchase orders
from .purchase_order import (
    PurchaseOrderStatus,
    PurchaseOrderCosts,
    CostAssignments,
    PurchaseOrderUpsert,
)

# Investors
from .investor import (
    InvestorStatus,
    PaymentPreferences,
    InvestorCreate,
    InvestorStatusUpdate,
    CreditLimitUpdate,
    PercentageBandUpdate,
)

# Sales / invoices / admin
from .sale import (
    SaleStatus,
    SaleClose,
    EvidenceAttach,
    AdminGroup,
    AdminGroupsUpdate,
    PaymentDefaults,
)

__all__ = [
    # Lead
    "LeadType",
    "LeadStatus",
    "AttachmentCategory",
    "ContactInfo",
    "VehicleInfo",
    "LeadCreate",
    "StatusUpdate",
    "NoteCreate",
    "AttachmentCreate",
    "PriceAnalysisUpdate",
    "AllocationInput",
    "AssignInvestors",
    "PaymentMeta",
    "ConvertRequest",
    "DeclineRequest",
    "ApprovalComment",
    # Purchase order
    "PurchaseOrderStatus",
    "PurchaseOrderCosts",
    "CostAssignments",
    "PurchaseOrderUpsert",
    # Investor
    "InvestorStatus",
    "PaymentPreferences",
    "InvestorCreate",
    "InvestorStatusUpdate",
    "CreditLimitUpdate",
    "PercentageBandUpdate",
    # Sale / admin
    "SaleStatus",
    "SaleClose",
    "EvidenceAttach",
    "AdminGroup",
    "AdminGroupsUpdate",
    "PaymentDefaults",
]
