"""
Idempotency & audit ledger.

- is_processed: cache fast path, then the durable row; storage errors read as
  "not processed" (a provider redelivery is the safety net)
- claim: first-writer-wins on the primary key for concurrent duplicates
- log_event: sanitizes the payload on every write, regardless of caller;
  storage failures are logged and alerted but never abort the request
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from hookgate.errors import FailureCategory
from hookgate.schemas.webhook_payloads import WebhookSource
from hookgate.services.event_store import EventStore
from hookgate.services.payload_sanitizer import sanitize_payload
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.dedup import ProcessedEventCache
from hookgate.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

DEFAULT_INFLIGHT_WINDOW_SECONDS = 60


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    IN_PROGRESS = "in_progress"
    ALREADY_PROCESSED = "already_processed"


class WebhookLedger:
    def __init__(
        self,
        store: EventStore,
        cache: ProcessedEventCache,
        extra_redaction_patterns: Optional[Iterable[str]] = None,
        inflight_window_seconds: int = DEFAULT_INFLIGHT_WINDOW_SECONDS,
        alert: Callable[..., Awaitable[None]] = send_alert,
    ):
        self.store = store
        self.cache = cache
        self.extra_redaction_patterns = tuple(extra_redaction_patterns or ())
        self.inflight_window = timedelta(seconds=inflight_window_seconds)
        self._alert = alert

    async def is_processed(self, event_id: str) -> bool:
        if await self.cache.seen(event_id):
            return True
        try:
            record = await self.store.find_by_id(event_id)
        except Exception as e:
            logger.warning(
                "Ledger lookup failed for %s: %s. Assuming not processed.",
                event_id, str(e),
                extra={"event_id": event_id, "failure_category": FailureCategory.STORAGE},
            )
            return False
        return bool(record and record.get("processed"))

    async def mark_processed(self, event_id: str) -> None:
        await self.cache.mark(event_id)

    def _fields(
        self,
        source: WebhookSource,
        event_type: str,
        payload: Any,
        processed: bool,
        error: Optional[str],
        payload_hash: Optional[str],
    ) -> dict:
        fields = {
            "source": WebhookSource(source).value,
            "event_type": event_type,
            "payload": sanitize_payload(payload, source, self.extra_redaction_patterns),
            "processed": processed,
            "processed_at": datetime.now(timezone.utc) if processed else None,
            "error": None if processed else error,
            "correlation_id": get_correlation_id(),
        }
        if payload_hash is not None:
            fields["payload_hash"] = payload_hash
        return fields

    async def log_event(
        self,
        event_id: str,
        source: WebhookSource,
        event_type: str,
        payload: Any,
        processed: bool = False,
        error: Optional[str] = None,
        payload_hash: Optional[str] = None,
    ) -> Optional[dict]:
        """Upsert the audit row. Returns the stored record, or None if the write failed."""
        try:
            fields = self._fields(source, event_type, payload, processed, error, payload_hash)
            return await self.store.upsert(event_id, fields)
        except Exception as e:
            await self._storage_failed(event_id, source, "write", e)
            return None

    async def claim(
        self,
        event_id: str,
        source: WebhookSource,
        event_type: str,
        payload: Any,
        payload_hash: Optional[str] = None,
    ) -> ClaimOutcome:
        """
        Write the pending row, or decide that another delivery owns this event.
        A stale unprocessed row (failed, or older than the in-flight window) is reclaimed.
        """
        try:
            fields = self._fields(source, event_type, payload, False, None, payload_hash)
            if await self.store.insert_if_absent(event_id, fields):
                return ClaimOutcome.CLAIMED
            existing = await self.store.find_by_id(event_id)
        except Exception as e:
            await self._storage_failed(event_id, source, "claim", e)
            return ClaimOutcome.CLAIMED

        if existing is not None:
            if existing.get("processed"):
                return ClaimOutcome.ALREADY_PROCESSED
            updated_at = existing.get("updated_at")
            if (
                existing.get("error") is None
                and updated_at is not None
                and datetime.now(timezone.utc) - updated_at < self.inflight_window
            ):
                return ClaimOutcome.IN_PROGRESS

        await self.log_event(
            event_id, source, event_type, payload, processed=False, payload_hash=payload_hash,
        )
        return ClaimOutcome.CLAIMED

    async def record_attempt(self, event_id: str) -> None:
        try:
            await self.store.record_attempt(event_id)
        except Exception as e:
            logger.warning("Failed to record handler attempt for %s: %s", event_id, str(e))

    async def get_event(self, event_id: str) -> Optional[dict]:
        """Fetch the audit row. Storage errors propagate to the caller."""
        return await self.store.find_by_id(event_id)

    async def _storage_failed(
        self, event_id: str, source: WebhookSource, operation: str, error: Exception,
    ) -> None:
        logger.error(
            "Failed to %s webhook event %s: %s", operation, event_id, str(error),
            extra={
                "event_id": event_id,
                "source": WebhookSource(source).value,
                "failure_category": FailureCategory.STORAGE,
            },
        )
        await self._alert(
            AlertType.WEBHOOK_AUDIT_WRITE_FAILED,
            f"Webhook audit {operation} failed for {event_id}: {str(error)[:200]}",
            source=WebhookSource(source).value,
        )
