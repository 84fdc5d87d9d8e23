"""
Webhook endpoints - receive signed events from Stripe, GitHub, Clerk and the test source.

Each endpoint hands the exact request bytes to the dispatcher; all security,
idempotency and audit handling lives there. Operators recover failed events
through the retry endpoint.
"""
import hmac
import json
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from hookgate.config import get_settings
from hookgate.database import get_session_factory
from hookgate.errors import FailureCategory
from hookgate.schemas.api_responses import (
    SampleEventResponse,
    SignatureHelperResponse,
    WebhookResponse,
)
from hookgate.schemas.webhook_payloads import SOURCE_HEADERS, WebhookSource
from hookgate.services.default_handlers import register_default_handlers
from hookgate.services.event_store import SqlAlchemyEventStore
from hookgate.services.handler_registry import HandlerRegistry
from hookgate.services.webhook_dispatch import DispatchResult, Outcome, WebhookDispatcher
from hookgate.services.webhook_ledger import WebhookLedger
from hookgate.utils.dedup import build_processed_event_cache
from hookgate.utils.webhook_signatures import generate_signature_header

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

# Process-wide dispatcher (lazily initialized)
_dispatcher: Optional[WebhookDispatcher] = None


def get_dispatcher() -> WebhookDispatcher:
    """Build the dispatcher once per process: durable store, cache, default handlers."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        ledger = WebhookLedger(
            store=SqlAlchemyEventStore(get_session_factory()),
            cache=build_processed_event_cache(settings),
            extra_redaction_patterns=settings.redaction_extra_pattern_list,
            inflight_window_seconds=settings.webhook_inflight_window_seconds,
        )
        registry = register_default_handlers(HandlerRegistry())
        _dispatcher = WebhookDispatcher(ledger, registry, settings)
    return _dispatcher


def _to_response(result: DispatchResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body.to_body())


def _require_dev_helpers() -> None:
    if get_settings().app_env == "production":
        raise HTTPException(status_code=404, detail="Not found")


# === TEST HELPERS (development only) ===

def _sample_payloads(event_type: str) -> dict:
    stamp = int(time.time() * 1000)
    samples = {
        "test.invoice.paid": {
            "id": f"test_inv_{stamp}",
            "type": "test.invoice.paid",
            "object": "invoice",
            "amount_due": 25000,
            "amount_paid": 25000,
            "currency": "usd",
            "customer": f"cus_test_{stamp}",
            "status": "paid",
            "paid": True,
        },
        "test.subscription.created": {
            "id": f"test_sub_{stamp}",
            "type": "test.subscription.created",
            "object": "subscription",
            "customer": f"cus_test_{stamp}",
            "status": "active",
            "plan": {"id": "plan_test", "nickname": "Test Plan"},
        },
        "test.push": {
            "id": f"test_push_{stamp}",
            "type": "test.push",
            "ref": "refs/heads/main",
            "before": "abc123",
            "after": "def456",
            "repository": {"id": 12345, "name": "test-repo", "full_name": "test-org/test-repo"},
            "commits": [
                {
                    "id": "def456",
                    "message": "Test commit",
                    "author": {"name": "Test User", "email": "test@example.com"},
                },
            ],
        },
        "test.pull_request": {
            "id": f"test_pr_{stamp}",
            "type": "test.pull_request",
            "action": "opened",
            "number": 1,
            "pull_request": {"id": 12345, "title": "Test PR", "state": "open"},
            "repository": {"id": 12345, "name": "test-repo", "full_name": "test-org/test-repo"},
        },
    }
    return samples.get(event_type) or {"id": f"test_{stamp}", "type": event_type, "test": True}


@router.get("/test/signature", response_model=SignatureHelperResponse)
async def test_signature(
    payload: str = Query(..., description="Exact request body to sign"),
    _: None = Depends(_require_dev_helpers),
):
    """Sign an arbitrary body with the test source secret."""
    signature = generate_signature_header(
        WebhookSource.TEST, payload.encode("utf-8"), get_settings().test_webhook_secret,
    )
    return SignatureHelperResponse(
        source=WebhookSource.TEST.value,
        payload=payload,
        signature=signature,
        header=SOURCE_HEADERS[WebhookSource.TEST][0],
    )


@router.get("/test/sample", response_model=SampleEventResponse)
async def test_sample(
    request: Request,
    event_type: str = Query("test.event", alias="type", description="Sample event type"),
    _: None = Depends(_require_dev_helpers),
):
    """Return a signed sample test event with ready-to-use headers."""
    payload = _sample_payloads(event_type)
    body = json.dumps(payload, separators=(",", ":"))
    signature = generate_signature_header(
        WebhookSource.TEST, body.encode("utf-8"), get_settings().test_webhook_secret,
    )
    headers = {
        "Content-Type": "application/json",
        "X-Test-Signature": signature,
        "X-Test-Event": event_type,
    }
    url = str(request.url_for("receive_webhook", source=WebhookSource.TEST.value))
    curl = (
        f"curl -X POST {url} \\\n"
        + "".join(f'  -H "{name}: {value}" \\\n' for name, value in headers.items())
        + f"  -d '{body}'"
    )
    return SampleEventResponse(
        event_type=event_type, payload=payload, body=body, headers=headers, curl_example=curl,
    )


# === OPERATOR RETRY ===

@router.post("/events/{event_id}/retry")
async def retry_event(
    event_id: str,
    x_admin_key: str = Header("", alias="X-Admin-Key"),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Re-run the handler for a stored event whose earlier processing failed."""
    admin_key = get_settings().admin_api_key
    if not admin_key:
        raise HTTPException(status_code=503, detail="Retry endpoint not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), admin_key.encode("utf-8")):
        logger.warning("Rejected webhook retry for %s: invalid admin key", event_id)
        raise HTTPException(status_code=403, detail="Invalid admin key")

    return _to_response(await dispatcher.retry(event_id))


# === PROVIDER ENDPOINTS ===

async def _read_limited_body(request: Request, max_bytes: int) -> Optional[bytes]:
    """Read the body, giving up once it passes max_bytes. None means too large."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        return None
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            return None
    return bytes(body)


@router.post("/{source}", name="receive_webhook")
async def receive_webhook(
    source: str,
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Receive one provider delivery. The body is read verbatim before anything else."""
    if source not in {s.value for s in WebhookSource}:
        raise HTTPException(status_code=404, detail="Unknown webhook source")

    max_bytes = get_settings().webhook_max_payload_bytes
    raw_body = await _read_limited_body(request, max_bytes)
    if raw_body is None:
        logger.warning(
            "Rejected oversized %s webhook before reading it in full",
            source,
            extra={
                "source": source,
                "status_code": 400,
                "outcome": Outcome.REJECTED,
                "failure_category": FailureCategory.MALFORMED_INPUT,
            },
        )
        body = WebhookResponse(
            success=False, error=f"Payload exceeds maximum size of {max_bytes} bytes",
        )
        return JSONResponse(status_code=400, content=body.to_body())

    result = await dispatcher.dispatch(source, raw_body, request.headers)
    return _to_response(result)
