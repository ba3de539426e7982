"""
Custom Exception Hierarchy

Structured exceptions shared by the commission services. The HTTP-style
status codes let whatever wraps the ledger translate a failure into a
response without re-classifying it.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Partner errors (3xxx)
    PARTNER_NOT_FOUND = "ERR_3001"

    # Commission / wallet errors (4xxx)
    INSUFFICIENT_COMMISSION_BALANCE = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    INVALID_COMMISSION_RATE = "ERR_4005"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_INVALID_STATUS = "ERR_2005"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class PartnerNotFoundError(NotFoundException):
    """Raised when a partner is not found"""

    def __init__(self, partner_id: Any):
        super().__init__("Partner", partner_id, error_code=ErrorCode.PARTNER_NOT_FOUND)


class OrderNotFoundError(NotFoundException):
    """Raised when a buy or sell order is not found"""

    def __init__(self, order_model: str, order_id: Any):
        super().__init__(order_model, order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class CommissionException(AppException):
    """Base exception for commission ledger errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        partner_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if partner_id:
            self.details["partner_id"] = partner_id


class InsufficientCommissionBalanceError(CommissionException):
    """Raised when a partner's commission balance cannot cover an amount"""

    def __init__(
        self,
        partner_id: int,
        current_balance: Decimal,
        required_amount: Decimal
    ):
        super().__init__(
            message=f"Insufficient commission balance for partner {partner_id}",
            error_code=ErrorCode.INSUFFICIENT_COMMISSION_BALANCE,
            partner_id=partner_id,
            details={
                "current_balance": float(current_balance),
                "required_amount": float(required_amount),
            }
        )


class OrderStatusError(AppException):
    """Raised when an order has an invalid status for the operation"""

    def __init__(self, order_model: str, order_id: Any, current_status: str, required_status: str):
        super().__init__(
            message=f"{order_model} {order_id} has status '{current_status}', required '{required_status}'",
            error_code=ErrorCode.ORDER_INVALID_STATUS,
            status_code=409,
            details={
                "order_id": order_id,
                "current_status": current_status,
                "required_status": required_status,
            }
        )
