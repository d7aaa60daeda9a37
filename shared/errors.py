"""
Shared error handling for the Work Item Automation service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AutomationException(Exception):
    """Base exception for Work Item Automation services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AutomationException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RuleSyntaxError(AutomationException):
    """Raised when rule DSL text cannot be parsed.

    Carries the 1-based line number in the rule text and the offending
    line so callers can point authors at the problem.
    """

    def __init__(self, message: str, line_number: Optional[int] = None, line: Optional[str] = None):
        details: Dict[str, Any] = {}
        if line_number is not None:
            details["line_number"] = line_number
            message = f"{message} at line {line_number}"
        if line is not None:
            details["line"] = line
            message = f"{message}: {line}"
        super().__init__("RULE_SYNTAX_ERROR", message, details)
        self.line_number = line_number
        self.line = line


class UnsupportedEventError(AutomationException):
    """Raised for service hook events the service does not handle."""

    def __init__(self, event_type: str):
        super().__init__(
            "UNSUPPORTED_EVENT",
            f"Unsupported event type: {event_type}",
            {"event_type": event_type}
        )


class WorkItemNotFoundError(AutomationException):
    """Raised when a work item required by the webhook flow is missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("WORK_ITEM_NOT_FOUND", message, details)


class ExternalServiceError(AutomationException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
