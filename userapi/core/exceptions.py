from fastapi import HTTPException, status
from typing import Optional, Dict, Any

class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )

class AuthorizationError(BaseAPIException):
    """Authorization related errors"""
    def __init__(self, message: str = "Access forbidden", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="AUTH_002",
            message=message,
            details=details
        )

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class InvalidPointsAmountError(BaseAPIException):
    """Negative/zero amounts, malformed action types"""
    def __init__(self, message: str = "Invalid points amount", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="POINTS_001",
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class PointRuleNotFoundError(NotFoundError):
    def __init__(self, action_type: str):
        super().__init__(
            message=f"Point rule for action '{action_type}' not found or inactive",
            details={"action_type": action_type},
        )

class UserPointsNotFoundError(NotFoundError):
    def __init__(self, user_id: Any):
        super().__init__(
            message=f"Points record for user '{user_id}' not found",
            details={"user_id": str(user_id)},
        )

class PointMultiplierNotFoundError(NotFoundError):
    def __init__(self, multiplier_id: int):
        super().__init__(
            message=f"Point multiplier '{multiplier_id}' not found",
            details={"multiplier_id": multiplier_id},
        )

class RedemptionNotFoundError(NotFoundError):
    def __init__(self, redemption_id: int):
        super().__init__(
            message=f"Redemption '{redemption_id}' not found",
            details={"redemption_id": redemption_id},
        )

class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )

class ConcurrencyConflictError(ConflictError):
    """Raised after the ledger retry budget is exhausted; safe to retry"""
    def __init__(self, operation: str, attempts: int):
        super().__init__(
            message=f"Concurrent update conflict during '{operation}'",
            details={"operation": operation, "attempts": attempts, "retryable": True},
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )

class ExternalServiceError(BaseAPIException):
    """Sibling service (review, geolocation) call failures"""
    def __init__(self, service: str, message: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="UPSTREAM_001",
            message=f"{service}: {message}",
            details={"service": service, **(details or {})}
        )

class InsufficientPointsError(BaseAPIException):
    """Insufficient points errors"""
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BALANCE_001",
            message=f"Insufficient points. Required: {required}, Available: {available}",
            details={"required": required, "available": available}
        )
