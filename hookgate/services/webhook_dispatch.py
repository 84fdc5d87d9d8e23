"""
Webhook dispatch orchestrator.

Per request, in order:
1. Authenticate (bypass only for test sources, loudly; missing secret is a 500)
2. Parse and validate the exact bytes received
3. Derive the idempotency key and short-circuit duplicates
4. Claim the event row (pending audit write before any side effect)
5. Invoke the registered handler behind the Ok | Err boundary
6. Record the outcome and translate it into a status code:
   200 success, 500 retryable failure, 200 + success=false terminal failure

The retry entry point re-runs steps 5-6 against a stored audit row.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from hookgate.config import Settings, get_settings
from hookgate.errors import (
    EventNotFoundError,
    FailureCategory,
    PayloadValidationError,
    SignatureVerificationError,
    WebhookConfigurationError,
    WebhookError,
)
from hookgate.schemas.api_responses import WebhookResponse
from hookgate.schemas.webhook_payloads import SOURCE_HEADERS, WebhookSource
from hookgate.services.event_ids import derive_event_id
from hookgate.services.handler_registry import HandlerRegistry, Ok, invoke_handler
from hookgate.services.payload_parser import UNKNOWN_EVENT_TYPE, ParsedWebhook, parse_webhook_payload
from hookgate.services.webhook_ledger import ClaimOutcome, WebhookLedger
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.metrics import Timer
from hookgate.utils.webhook_signatures import compute_payload_hash, verify_signature

logger = logging.getLogger(__name__)

ALREADY_PROCESSED_MESSAGE = "already processed"
IN_PROGRESS_MESSAGE = "already in progress"
INVALID_SIGNATURE_MESSAGE = "Invalid signature"
SECRET_MISSING_MESSAGE = "Webhook secret not configured"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class Outcome:
    """Terminal states of a dispatch, as logged in the `outcome` field."""
    SUCCEEDED = "succeeded"
    ALREADY_PROCESSED = "already_processed"
    IN_PROGRESS = "in_progress"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass
class DispatchResult:
    status_code: int
    body: WebhookResponse
    outcome: str


class WebhookDispatcher:
    def __init__(
        self,
        ledger: WebhookLedger,
        registry: HandlerRegistry,
        settings: Optional[Settings] = None,
        alert: Callable[..., Awaitable[None]] = send_alert,
    ):
        self.ledger = ledger
        self.registry = registry
        self.settings = settings or get_settings()
        self._alert = alert

    @property
    def handler_timeout(self) -> Optional[float]:
        timeout = self.settings.webhook_handler_timeout_seconds
        return timeout if timeout and timeout > 0 else None

    async def dispatch(
        self,
        source: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> DispatchResult:
        """Run one inbound delivery through the pipeline. Never raises."""
        timer = Timer().start()
        headers = {k.lower(): v for k, v in headers.items()}
        event_type = UNKNOWN_EVENT_TYPE
        event_id = None
        source_name = str(getattr(source, "value", source))

        try:
            try:
                source = WebhookSource(source)
            except ValueError:
                raise PayloadValidationError(
                    f"Unknown webhook source: {source_name}",
                    PayloadValidationError.UNKNOWN_SOURCE,
                )
            signature_header, event_type_header = SOURCE_HEADERS[source]
            if event_type_header:
                event_type = headers.get(event_type_header) or UNKNOWN_EVENT_TYPE

            await self._authenticate(source, raw_body, headers.get(signature_header, ""))

            parsed = parse_webhook_payload(
                raw_body,
                source,
                event_type_hint=headers.get(event_type_header) if event_type_header else None,
                max_bytes=self.settings.webhook_max_payload_bytes,
            ).raise_for_error()
            event_type = parsed.event_type

            event_id, stable = derive_event_id(parsed, headers)
            if not stable:
                logger.warning(
                    "No stable event id for %s/%s - idempotency is best-effort (%s)",
                    source.value, event_type, event_id,
                    extra={"source": source.value, "event_id": event_id, "event_type": event_type},
                )
            return await self._process(event_id, parsed, compute_payload_hash(raw_body), timer)

        except WebhookError as e:
            return self._reject(e, source_name, event_id, event_type, timer)
        except Exception as e:
            logger.error(
                "Unexpected error dispatching %s webhook: %s", source_name, str(e),
                exc_info=True,
                extra=self._extra(source_name, event_id, event_type, timer, Outcome.ERROR, 500),
            )
            return DispatchResult(
                500, WebhookResponse(success=False, error=INTERNAL_ERROR_MESSAGE), Outcome.ERROR,
            )

    async def retry(self, event_id: str) -> DispatchResult:
        """Re-invoke the handler for a stored event against its stored (sanitized) payload."""
        timer = Timer().start()
        source_name = None
        event_type = UNKNOWN_EVENT_TYPE
        try:
            try:
                record = await self.ledger.get_event(event_id)
            except Exception as e:
                logger.error(
                    "Failed to load webhook event %s for retry: %s", event_id, str(e),
                    extra={
                        **self._extra(None, event_id, event_type, timer, Outcome.ERROR, 500),
                        "failure_category": FailureCategory.STORAGE,
                    },
                )
                return DispatchResult(
                    500, WebhookResponse(success=False, error=INTERNAL_ERROR_MESSAGE, event_id=event_id),
                    Outcome.ERROR,
                )
            if record is None:
                raise EventNotFoundError(event_id)

            source_name = record["source"]
            event_type = record["event_type"] or UNKNOWN_EVENT_TYPE
            if record["processed"]:
                return self._already_processed(event_id, source_name, event_type, timer)

            logger.info(
                "Retrying webhook event %s (%s/%s, %d previous attempts)",
                event_id, source_name, event_type, record.get("attempts") or 0,
            )
            return await self._run_handler(
                event_id, WebhookSource(source_name), event_type, record["payload"], None, timer,
            )

        except WebhookError as e:
            return self._reject(e, source_name, event_id, event_type, timer)
        except Exception as e:
            logger.error(
                "Unexpected error retrying webhook event %s: %s", event_id, str(e),
                exc_info=True,
                extra=self._extra(source_name, event_id, event_type, timer, Outcome.ERROR, 500),
            )
            return DispatchResult(
                500, WebhookResponse(success=False, error=INTERNAL_ERROR_MESSAGE, event_id=event_id),
                Outcome.ERROR,
            )

    async def _authenticate(self, source: WebhookSource, raw_body: bytes, signature: str) -> None:
        if source.value in self.settings.skip_verification_sources:
            logger.warning(
                "SECURITY: signature verification BYPASSED for %s webhook", source.value,
                extra={"source": source.value, "failure_category": FailureCategory.AUTHENTICATION},
            )
            await self._alert(
                AlertType.WEBHOOK_VERIFICATION_BYPASSED,
                f"Signature verification bypassed for {source.value} webhook",
                severity="critical",
                source=source.value,
            )
            return

        secret = self.settings.webhook_secret_for(source.value)
        if not secret:
            await self._alert(
                AlertType.WEBHOOK_SECRET_MISSING,
                f"No webhook secret configured for {source.value}",
                source=source.value,
            )
            raise WebhookConfigurationError(SECRET_MISSING_MESSAGE)

        result = verify_signature(
            raw_body,
            signature,
            secret,
            source,
            tolerance_seconds=self.settings.webhook_timestamp_tolerance_seconds,
        )
        if not result.valid:
            logger.warning(
                "Signature verification failed for %s webhook: %s", source.value, result.error,
                extra={"source": source.value, "failure_category": FailureCategory.AUTHENTICATION},
            )
            await self._alert(
                AlertType.WEBHOOK_SIGNATURE_INVALID,
                f"Invalid {source.value} webhook signature: {result.error}",
                severity="warning",
                source=source.value,
            )
            raise SignatureVerificationError(INVALID_SIGNATURE_MESSAGE)

    async def _process(
        self,
        event_id: str,
        parsed: ParsedWebhook,
        payload_hash: str,
        timer: Timer,
    ) -> DispatchResult:
        source, event_type = parsed.source, parsed.event_type

        if await self.ledger.is_processed(event_id):
            return self._already_processed(event_id, source.value, event_type, timer)

        claim = await self.ledger.claim(
            event_id, source, event_type, parsed.data, payload_hash=payload_hash,
        )
        if claim == ClaimOutcome.ALREADY_PROCESSED:
            await self.ledger.mark_processed(event_id)
            return self._already_processed(event_id, source.value, event_type, timer)
        if claim == ClaimOutcome.IN_PROGRESS:
            logger.info(
                "Webhook event %s is being processed by another delivery", event_id,
                extra=self._extra(source.value, event_id, event_type, timer, Outcome.IN_PROGRESS, 200),
            )
            return DispatchResult(
                200,
                WebhookResponse(success=True, message=IN_PROGRESS_MESSAGE, event_id=event_id),
                Outcome.IN_PROGRESS,
            )

        return await self._run_handler(event_id, source, event_type, parsed.data, payload_hash, timer)

    async def _run_handler(
        self,
        event_id: str,
        source: WebhookSource,
        event_type: str,
        payload: Any,
        payload_hash: Optional[str],
        timer: Timer,
    ) -> DispatchResult:
        await self.ledger.record_attempt(event_id)
        handler = self.registry.resolve(source, event_type)
        outcome = await invoke_handler(handler, payload, event_type, timeout=self.handler_timeout)

        if isinstance(outcome, Ok):
            await self.ledger.log_event(
                event_id, source, event_type, payload, processed=True, payload_hash=payload_hash,
            )
            await self.ledger.mark_processed(event_id)
            message = outcome.result.message or "Webhook processed"
            logger.info(
                "Webhook %s processed: %s", event_id, message,
                extra=self._extra(source.value, event_id, event_type, timer, Outcome.SUCCEEDED, 200),
            )
            return DispatchResult(
                200,
                WebhookResponse(success=True, message=message, event_id=event_id),
                Outcome.SUCCEEDED,
            )

        await self.ledger.log_event(
            event_id, source, event_type, payload,
            processed=False, error=outcome.reason, payload_hash=payload_hash,
        )
        if outcome.should_retry:
            status_code, state, category = 500, Outcome.FAILED_RETRYABLE, FailureCategory.HANDLER_RETRYABLE
        else:
            status_code, state, category = 200, Outcome.FAILED_TERMINAL, FailureCategory.HANDLER_TERMINAL
        logger.warning(
            "Webhook %s handler failed (%s): %s", event_id, state, outcome.reason,
            extra={
                **self._extra(source.value, event_id, event_type, timer, state, status_code),
                "failure_category": category,
            },
        )
        return DispatchResult(
            status_code,
            WebhookResponse(success=False, error=outcome.reason, event_id=event_id),
            state,
        )

    def _already_processed(
        self, event_id: str, source: Optional[str], event_type: str, timer: Timer,
    ) -> DispatchResult:
        logger.info(
            "Webhook event %s already processed, skipping", event_id,
            extra=self._extra(source, event_id, event_type, timer, Outcome.ALREADY_PROCESSED, 200),
        )
        return DispatchResult(
            200,
            WebhookResponse(success=True, message=ALREADY_PROCESSED_MESSAGE, event_id=event_id),
            Outcome.ALREADY_PROCESSED,
        )

    def _reject(
        self,
        error: WebhookError,
        source: Optional[str],
        event_id: Optional[str],
        event_type: str,
        timer: Timer,
    ) -> DispatchResult:
        extra = {
            **self._extra(source, event_id, event_type, timer, Outcome.REJECTED, error.status_code),
            "failure_category": error.failure_category,
        }
        if error.status_code >= 500:
            logger.error("Webhook rejected: %s", error.message, extra=extra)
        else:
            logger.warning("Webhook rejected: %s", error.message, extra=extra)
        return DispatchResult(
            error.status_code,
            WebhookResponse(success=False, error=error.message, event_id=event_id),
            Outcome.REJECTED,
        )

    @staticmethod
    def _extra(
        source: Optional[str],
        event_id: Optional[str],
        event_type: str,
        timer: Timer,
        outcome: str,
        status_code: int,
    ) -> dict:
        return {
            "source": source,
            "event_id": event_id,
            "event_type": event_type,
            "duration_ms": timer.elapsed_ms,
            "outcome": outcome,
            "status_code": status_code,
        }
