"""
Webhook payload parsing - turns verified raw bytes into a validated provider event.

Order of checks:
1. Size ceiling (before any JSON work)
2. Empty body
3. JSON decoding
4. Provider envelope shape (pydantic models in hookgate.schemas.webhook_payloads)
5. GitHub per-event shape (push / pull_request / issues); other events pass through

Failures are reported as a ParseResult with a distinguishing kind, never raised.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from hookgate.errors import PayloadValidationError
from hookgate.schemas.webhook_payloads import (
    GITHUB_EVENT_MODELS,
    ClerkEventPayload,
    GitHubEventPayload,
    StripeEventPayload,
    WebhookSource,
)

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 1024 * 1024
UNKNOWN_EVENT_TYPE = "unknown"

_PROVIDER_NAMES = {
    WebhookSource.STRIPE: "Stripe",
    WebhookSource.GITHUB: "GitHub",
    WebhookSource.CLERK: "Clerk",
    WebhookSource.TEST: "Test",
}


@dataclass
class ParsedWebhook:
    """A validated provider event. `data` is the decoded JSON, untouched; handlers get dicts, not models."""
    source: WebhookSource
    event_type: str
    data: Any


@dataclass
class ParseResult:
    success: bool
    data: Optional[ParsedWebhook] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    def raise_for_error(self) -> ParsedWebhook:
        """Return the parsed event or raise the matching PayloadValidationError."""
        if not self.success or self.data is None:
            raise PayloadValidationError(self.error or "Invalid payload", self.kind)
        return self.data


def _failure(error: str, kind: str) -> ParseResult:
    return ParseResult(success=False, error=error, kind=kind)


def is_payload_size_valid(raw_body: Optional[bytes], max_bytes: int = MAX_PAYLOAD_BYTES) -> bool:
    if raw_body is None:
        return False
    return len(raw_body) <= max_bytes


def _describe_validation_error(exc: ValidationError, source: WebhookSource) -> str:
    """Turn the first pydantic error into a short, stable message."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    if not loc:
        if first.get("type") == "value_error":
            return str(first.get("msg", "")).removeprefix("Value error, ")
        return "Payload must be an object"
    if loc == "object":
        return f"Invalid {_PROVIDER_NAMES[source]} event object"
    return f"Missing or invalid {loc}"


def _validate(model: type[BaseModel], data: Any, source: WebhookSource) -> BaseModel:
    if not isinstance(data, dict):
        raise PayloadValidationError("Payload must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise PayloadValidationError(_describe_validation_error(e, source)) from e


def _parse_stripe(data: Any, event_type_hint: Optional[str]) -> ParsedWebhook:
    event = _validate(StripeEventPayload, data, WebhookSource.STRIPE)
    return ParsedWebhook(WebhookSource.STRIPE, event.type, data)


def _parse_github(data: Any, event_type_hint: Optional[str]) -> ParsedWebhook:
    if not event_type_hint:
        raise PayloadValidationError("Missing GitHub event type header")
    # Unknown event types only get the common-field checks
    model = GITHUB_EVENT_MODELS.get(event_type_hint, GitHubEventPayload)
    _validate(model, data, WebhookSource.GITHUB)
    return ParsedWebhook(WebhookSource.GITHUB, event_type_hint, data)


def _parse_clerk(data: Any, event_type_hint: Optional[str]) -> ParsedWebhook:
    event = _validate(ClerkEventPayload, data, WebhookSource.CLERK)
    return ParsedWebhook(WebhookSource.CLERK, event.type, data)


def _parse_test(data: Any, event_type_hint: Optional[str]) -> ParsedWebhook:
    event_type = event_type_hint
    if not event_type and isinstance(data, dict) and isinstance(data.get("type"), str):
        event_type = data["type"]
    return ParsedWebhook(WebhookSource.TEST, event_type or UNKNOWN_EVENT_TYPE, data)


_PARSERS = {
    WebhookSource.STRIPE: _parse_stripe,
    WebhookSource.GITHUB: _parse_github,
    WebhookSource.CLERK: _parse_clerk,
    WebhookSource.TEST: _parse_test,
}


def parse_json_payload(raw_body: bytes) -> ParseResult:
    """Decode a raw body as JSON; empty and malformed bodies are failures, not crashes."""
    if not raw_body or not raw_body.strip():
        return _failure("Empty request body", PayloadValidationError.EMPTY_BODY)
    try:
        data = json.loads(raw_body)
    except (ValueError, RecursionError) as e:
        return _failure(f"Invalid JSON: {e}", PayloadValidationError.INVALID_JSON)
    return ParseResult(success=True, data=ParsedWebhook(WebhookSource.TEST, UNKNOWN_EVENT_TYPE, data))


def parse_webhook_payload(
    raw_body: bytes,
    source: WebhookSource,
    event_type_hint: Optional[str] = None,
    max_bytes: int = MAX_PAYLOAD_BYTES,
) -> ParseResult:
    """Parse and validate a webhook body for the given source."""
    if not is_payload_size_valid(raw_body, max_bytes):
        if raw_body is None:
            return _failure("Empty request body", PayloadValidationError.EMPTY_BODY)
        return _failure(
            f"Payload exceeds maximum size of {max_bytes} bytes",
            PayloadValidationError.TOO_LARGE,
        )

    parser = _PARSERS.get(source)
    if parser is None:
        return _failure(f"Unknown webhook source: {source}", PayloadValidationError.UNKNOWN_SOURCE)

    decoded = parse_json_payload(raw_body)
    if not decoded.success:
        return decoded

    try:
        parsed = parser(decoded.data.data, event_type_hint)
    except PayloadValidationError as e:
        return _failure(e.message, e.kind)
    return ParseResult(success=True, data=parsed)
