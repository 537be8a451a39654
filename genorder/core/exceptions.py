from typing import Dict, Any, List, Optional, TYPE_CHECKING
from datetime import datetime, timezone
import enum
import logging

from fastapi import status
from pydantic import BaseModel

if TYPE_CHECKING:
    from genorder.infrastructure.resource_api import ApiResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION_FAILURE = "validation_failure"
    RESOURCE_CONFLICT = "resource_conflict"
    NOT_FOUND = "not_found"
    REMOTE_FAILURE = "remote_failure"
    # Never raised: marks a best-effort step that failed after the order committed
    PARTIAL_SUCCESS = "partial_success"


class BaseCustomException(Exception):
    """Base class for order composition errors"""

    kind: ErrorKind = ErrorKind.REMOTE_FAILURE

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.error_code = error_code
        super().__init__(self.message)


class ValidationFailure(BaseCustomException):
    """Caller-supplied data is insufficient to compose the order"""

    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(
        self,
        message: str = "Required information is missing or invalid. Please complete the form.",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            error_code=error_code or "VALIDATION_FAILURE"
        )


class ResourceConflict(BaseCustomException):
    """A scarce identifier (barcode, prescription) is already bound elsewhere"""

    kind = ErrorKind.RESOURCE_CONFLICT

    def __init__(
        self,
        message: str = "This value is already in use. Please choose a different one.",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            error_code=error_code or "RESOURCE_CONFLICT"
        )


class NotFound(BaseCustomException):
    """A referenced entity does not exist"""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str = "Referenced resource not found",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
            error_code=error_code or "NOT_FOUND"
        )


class RemoteFailure(BaseCustomException):
    """Network or server error from the resource API, possibly transient"""

    kind = ErrorKind.REMOTE_FAILURE

    def __init__(
        self,
        message: str = "The order service is temporarily unavailable. Please retry later.",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            details=details,
            error_code=error_code or "REMOTE_FAILURE"
        )


# Response models for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    error: str
    kind: ErrorKind
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None


def create_error_response(
    exception: BaseCustomException,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create standardized error response"""
    response = {
        "error": exception.__class__.__name__,
        "kind": exception.kind.value,
        "message": exception.message,
        "error_code": exception.error_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id
    }

    if exception.details:
        response["details"] = exception.details

    return response


def field_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic error dicts to field/message pairs"""
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in errors
    ]


CONFLICT_MARKERS = ("already exists", "already used", "already in use", "duplicate key")
NOT_FOUND_MARKERS = ("not found",)
VALIDATION_MARKERS = ("validation", "required", "invalid")


def _conflict_field(message: str, resource: str) -> str:
    if "barcode" in message:
        return "barcode_id"
    if "ordername" in message or "order_name" in message or "order name" in message:
        return "order_name"
    if "specify" in message or "prescription" in message or resource == "order":
        # Order-side unique violations come from a prescription bound twice
        return "prescription_id"
    return f"{resource}_id"


CONFLICT_MESSAGES = {
    "barcode_id": "This barcode is already attached to another order. Please choose a different barcode.",
    "prescription_id": "This prescription is already used by another order. Please choose a different prescription.",
    "order_name": "An order with this name already exists. Please choose a different name.",
}


def classify_failure(
    envelope: "ApiResponse",
    resource: str,
    operation: str,
) -> BaseCustomException:
    """Map a failed resource API envelope to exactly one error kind."""
    original = envelope.error or "Unknown error"
    text = original.lower()
    code = envelope.status_code
    details: Dict[str, Any] = {
        "resource": resource,
        "operation": operation,
        "status_code": code,
        "original_error": original,
    }

    if code == status.HTTP_409_CONFLICT or any(marker in text for marker in CONFLICT_MARKERS):
        field = _conflict_field(text, resource)
        details["field"] = field
        return ResourceConflict(
            message=CONFLICT_MESSAGES.get(
                field, "This value is already in use. Please choose a different one."
            ),
            details=details,
        )

    if code == status.HTTP_404_NOT_FOUND or any(marker in text for marker in NOT_FOUND_MARKERS):
        return NotFound(
            message=f"The referenced {resource.replace('_', ' ')} could not be found.",
            details=details,
        )

    if code in (status.HTTP_400_BAD_REQUEST, status.HTTP_422_UNPROCESSABLE_ENTITY) or any(
        marker in text for marker in VALIDATION_MARKERS
    ):
        return ValidationFailure(details=details)

    if envelope.transport_error:
        return RemoteFailure(
            message="Could not reach the order service. Please check the connection and retry later.",
            details=details,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return RemoteFailure(details=details)


# Exception mapping for common scenarios
EXCEPTION_MAPPING = {
    "ValueError": ValidationFailure,
    "TypeError": ValidationFailure,
    "KeyError": ValidationFailure,
    "ConnectionError": RemoteFailure,
    "TimeoutError": RemoteFailure,
}


def map_exception_to_custom(error: Exception) -> BaseCustomException:
    """Map standard exceptions to custom exceptions"""
    error_type = type(error).__name__
    logger.error(f"Unexpected {error_type} during order composition: {error}")

    if error_type in EXCEPTION_MAPPING:
        custom_exception_class = EXCEPTION_MAPPING[error_type]
        return custom_exception_class(
            message=str(error) or error_type,
            details={"original_error": str(error)},
            error_code=f"{error_type.upper()}_ERROR"
        )

    return RemoteFailure(
        message="An unexpected error occurred",
        details={"original_error": str(error)},
        error_code="UNEXPECTED_ERROR"
    )
