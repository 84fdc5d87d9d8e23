"""
Webhook pipeline error taxonomy.
Each error knows the HTTP status it maps to and the failure category it is logged under.
"""
from typing import Optional


class FailureCategory:
    """Failure category constants used in structured logs."""
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    MALFORMED_INPUT = "malformed_input"
    HANDLER_RETRYABLE = "handler_retryable"
    HANDLER_TERMINAL = "handler_terminal"
    STORAGE = "storage"
    NOT_FOUND = "not_found"


class WebhookError(Exception):
    """Base class for failures the dispatcher turns into a response."""

    status_code = 500
    failure_category = FailureCategory.CONFIGURATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SignatureVerificationError(WebhookError):
    """Missing, malformed, stale or mismatched signature. Never retried."""

    status_code = 401
    failure_category = FailureCategory.AUTHENTICATION


class WebhookConfigurationError(WebhookError):
    """Server-side misconfiguration, e.g. no secret for a verified source."""

    status_code = 500
    failure_category = FailureCategory.CONFIGURATION


class PayloadValidationError(WebhookError):
    """Body rejected before reaching a handler."""

    status_code = 400
    failure_category = FailureCategory.MALFORMED_INPUT

    EMPTY_BODY = "empty_body"
    INVALID_JSON = "invalid_json"
    INVALID_SHAPE = "invalid_shape"
    TOO_LARGE = "too_large"
    UNKNOWN_SOURCE = "unknown_source"

    def __init__(self, message: str, kind: str = INVALID_SHAPE):
        super().__init__(message)
        self.kind = kind


class EventNotFoundError(WebhookError):
    """Retry requested for an event id with no audit row."""

    status_code = 404
    failure_category = FailureCategory.NOT_FOUND

    def __init__(self, event_id: str, message: Optional[str] = None):
        super().__init__(message or f"No webhook event found with ID: {event_id}")
        self.event_id = event_id
