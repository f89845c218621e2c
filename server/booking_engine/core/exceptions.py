"""Exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://booking.example.com/problems"

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> Optional[str]:
        return self.problem_details.get("code")

    @property
    def retryable(self) -> bool:
        return bool(self.problem_details.get("retryable", False))


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[List[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR", "retryable": False}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=422,
            title="Validation Error",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/authentication-required",
            instance=instance,
            extensions={"code": "UNAUTHENTICATED", "retryable": False},
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/access-forbidden",
            instance=instance,
            extensions={"code": "FORBIDDEN", "retryable": False},
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions: Dict[str, Any] = {
            "code": "NOT_FOUND",
            "retryable": False,
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-not-found",
            instance=instance,
            extensions=extensions,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class UnavailableError(ProblemDetailsException):
    """A collaborator (datastore or payment gateway) could not be reached in time."""

    def __init__(
        self,
        service: str,
        operation: Optional[str] = None,
        timed_out: bool = False,
        retry_after: int = 5,
    ):
        detail = f"The {service} is temporarily unavailable"
        if operation:
            detail += f" ({operation})"

        super().__init__(
            status_code=503,
            title="Service Unavailable",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/service-unavailable",
            extensions={
                "code": "TIMEOUT" if timed_out else "UNAVAILABLE",
                "retryable": True,
                "service": service,
                "error": "We could not reach the booking service. Please try again.",
            },
            headers={"Retry-After": str(retry_after)},
        )
        self.service = service
        self.timed_out = timed_out


class DataIntegrityError(ProblemDetailsException):
    """
    Referential inconsistency in stored data.

    The internal description is logged with an error id; clients only ever
    see the generic message.
    """

    def __init__(self, internal_detail: str, **context: Any):
        error_id = str(uuid.uuid4())
        logger.error(
            "Data integrity violation",
            extra={"error_id": error_id, "internal_detail": internal_detail, **context},
        )

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=GENERIC_ERROR_MESSAGE,
            type_uri=f"{PROBLEM_BASE_URI}/internal-server-error",
            extensions={
                "code": "DATA_INTEGRITY",
                "retryable": False,
                "success": False,
                "error": GENERIC_ERROR_MESSAGE,
                "error_id": error_id,
            },
        )
        self.internal_detail = internal_detail


class InternalServerError(ProblemDetailsException):
    """Unexpected failure inside a request handler."""

    def __init__(self, error_id: Optional[str] = None):
        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=GENERIC_ERROR_MESSAGE,
            type_uri=f"{PROBLEM_BASE_URI}/internal-server-error",
            extensions={
                "code": "INTERNAL",
                "retryable": False,
                "success": False,
                "error": GENERIC_ERROR_MESSAGE,
                "error_id": error_id or str(uuid.uuid4()),
            },
        )


# Booking rule violations


class BookingRejectedError(ProblemDetailsException):
    """A booking or cancellation was refused by a business rule."""

    code_value = "BOOKING_REJECTED"
    slug = "booking-rejected"
    title_text = "Booking Rejected"
    status = 409

    def __init__(self, message: str, extensions: Optional[Dict[str, Any]] = None):
        payload: Dict[str, Any] = {
            "code": self.code_value,
            "retryable": False,
            "success": False,
            "error": message,
        }
        payload.update(extensions or {})

        super().__init__(
            status_code=self.status,
            title=self.title_text,
            detail=message,
            type_uri=f"{PROBLEM_BASE_URI}/{self.slug}",
            extensions=payload,
        )
        self.message = message


class CapacityExceededError(BookingRejectedError):
    code_value = "FULL"
    slug = "capacity-exceeded"
    title_text = "Capacity Exceeded"

    def __init__(self, event_id: str, capacity: int, booked_count: int):
        super().__init__(
            "This class is full",
            {"event_id": event_id, "capacity": capacity, "booked_count": booked_count},
        )


class DuplicateBookingError(BookingRejectedError):
    code_value = "DUPLICATE_BOOKING"
    slug = "duplicate-booking"
    title_text = "Duplicate Booking"

    def __init__(self, athlete_id: str, event_id: str):
        super().__init__(
            "You are already booked for this class",
            {"athlete_id": athlete_id, "event_id": event_id},
        )


class PackageDepletedError(BookingRejectedError):
    code_value = "PACKAGE_DEPLETED"
    slug = "package-depleted"
    title_text = "Package Depleted"

    def __init__(self, package_id: str):
        super().__init__(
            "No remaining sessions on this package",
            {"package_id": package_id},
        )


class RestrictionBlockedError(BookingRejectedError):
    code_value = "RESTRICTION_BLOCKED"
    slug = "restriction-blocked"
    title_text = "Restriction Blocked"
    status = 403

    def __init__(self, missing_restrictions: List[Dict[str, Any]]):
        super().__init__(
            "Missing required restrictions",
            {"missing_restrictions": missing_restrictions},
        )


class BookingWindowClosedError(BookingRejectedError):
    code_value = "BOOKING_WINDOW_CLOSED"
    slug = "booking-window-closed"
    title_text = "Booking Window Closed"

    def __init__(self, message: str, event_id: str):
        super().__init__(message, {"event_id": event_id})


class PaymentSourceInvalidError(BookingRejectedError):
    code_value = "PAYMENT_SOURCE_INVALID"
    slug = "payment-source-invalid"
    title_text = "Payment Source Invalid"

    def __init__(self, message: str, payment_type: str, payment_id: Optional[str] = None):
        super().__init__(message, {"payment_type": payment_type, "payment_id": payment_id})


class WaiverRequiredError(BookingRejectedError):
    code_value = "WAIVER_REQUIRED"
    slug = "waiver-required"
    title_text = "Waiver Required"

    def __init__(self, pending_waivers: List[Dict[str, Any]]):
        super().__init__(
            "Waivers must be signed before booking",
            {"pending_waivers": pending_waivers},
        )


class PaymentError(BookingRejectedError):
    """The payment gateway rejected or did not complete a charge or refund."""

    code_value = "PAYMENT_FAILED"
    slug = "payment-failed"
    title_text = "Payment Failed"
    status = 402

    def __init__(
        self,
        message: str = "Payment could not be completed",
        provider_code: Optional[str] = None,
        refunded: Optional[bool] = None,
    ):
        extensions: Dict[str, Any] = {}
        if provider_code:
            extensions["provider_code"] = provider_code
        if refunded is not None:
            extensions["refunded"] = refunded
        super().__init__(message, extensions)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    content.setdefault("instance", request.url.path)

    request_id = getattr(request.state, "request_id", None)
    if request_id:
        content["request_id"] = request_id

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures as Problem Details."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=request.url.path)
    return await problem_details_handler(request, problem)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())
    logger.error(
        "Unhandled exception",
        extra={"error_id": error_id, "path": request.url.path},
        exc_info=exc,
    )

    problem_details = {
        "type": f"{PROBLEM_BASE_URI}/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": GENERIC_ERROR_MESSAGE,
        "instance": request.url.path,
        "code": "INTERNAL",
        "retryable": False,
        "success": False,
        "error": GENERIC_ERROR_MESSAGE,
        "error_id": error_id,
        "timestamp": _utc_timestamp(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
