"""
ZRS CRM - Domain errors

Every guard in the allocation / approval / settlement engine raises one of
these. server.py renders them as {success: false, message, data?} with the
status code carried by the class.
"""

from typing import Any, Dict, Optional


class CRMError(Exception):
    """Base class for business rule violations"""
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CRMError):
    """Malformed or out-of-range input"""
    status_code = 400


class PreconditionError(CRMError):
    """A business-rule gate is not met"""
    status_code = 400


class NotFoundError(CRMError):
    status_code = 404


class AccessDeniedError(CRMError):
    status_code = 403


class DuplicateApprovalError(AccessDeniedError):
    """The admin already recorded an approval on this instance"""
    pass


class NotInGroupError(AccessDeniedError):
    """Group-based quorum requires the approver to belong to an admin group"""
    pass


class ConcurrentUpdateError(CRMError):
    """The document changed between read and conditional write"""
    status_code = 409


class InsufficientCreditError(CRMError):
    status_code = 400

    def __init__(self, investor_name: str, available: float, required: float):
        super().__init__(
            f"Insufficient credit for investor {investor_name}: "
            f"available {available:.2f}, required {required:.2f}",
            {"investor": investor_name, "available": available, "required": required},
        )
        self.available = available
        self.required = required


class CollaboratorError(CRMError):
    """Signature, email or document service failure"""
    status_code = 502
