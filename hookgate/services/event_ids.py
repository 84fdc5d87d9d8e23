"""
Idempotency key derivation.

Preference order per source:
1. A stable provider id (Stripe event id, GitHub delivery GUID, Svix message id, test "id")
2. A key synthesized from correlating payload fields
3. A random id - idempotency is best-effort for that delivery
"""
import time
import uuid
from typing import Any, Mapping, Optional

from hookgate.schemas.webhook_payloads import DELIVERY_ID_HEADERS, WebhookSource
from hookgate.services.payload_parser import ParsedWebhook

COARSE_BUCKET_SECONDS = 60


def _random_id(source: WebhookSource) -> str:
    return f"{source.value}:{uuid.uuid4().hex}"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _github_subject(event_type: str, data: dict) -> Optional[str]:
    """A value that changes between distinct deliveries of the same repo/action."""
    if event_type == "push":
        return data.get("after") or _as_dict(data.get("head_commit")).get("id")
    if event_type == "pull_request":
        pr = _as_dict(data.get("pull_request"))
        return f"{data.get('number')}:{pr.get('updated_at', '')}"
    if event_type == "issues":
        issue = _as_dict(data.get("issue"))
        return f"{issue.get('number')}:{issue.get('updated_at', '')}"
    return None


def _synthesize_github(parsed: ParsedWebhook, now: float) -> Optional[str]:
    data = _as_dict(parsed.data)
    owner_id = _as_dict(data.get("repository")).get("id") or _as_dict(data.get("organization")).get("id")
    if not owner_id:
        return None
    parts = ["github", str(owner_id), parsed.event_type, str(data.get("action") or "none")]
    subject = _github_subject(parsed.event_type, data)
    parts.append(str(subject) if subject else str(int(now // COARSE_BUCKET_SECONDS)))
    return ":".join(parts)


def _synthesize_clerk(parsed: ParsedWebhook) -> Optional[str]:
    """Object id plus its version when present; deletions carry no timestamp."""
    data = _as_dict(_as_dict(parsed.data).get("data"))
    object_id = data.get("id")
    if not isinstance(object_id, str) or not object_id:
        return None
    version = data.get("updated_at") or data.get("created_at")
    if version is None:
        return f"clerk:{parsed.event_type}:{object_id}"
    return f"clerk:{parsed.event_type}:{object_id}:{version}"


def derive_event_id(
    parsed: ParsedWebhook,
    headers: Optional[Mapping[str, str]] = None,
    now: Optional[float] = None,
) -> tuple[str, bool]:
    """
    Return (event_id, stable). `stable` is False when the id is random,
    i.e. a redelivery of the same event would not be recognised.
    """
    headers = headers or {}
    source = parsed.source
    current = time.time() if now is None else now
    data = _as_dict(parsed.data)

    if source == WebhookSource.STRIPE:
        event_id = data.get("id")
        if isinstance(event_id, str) and event_id:
            return event_id, True
        return _random_id(source), False

    delivery_header = DELIVERY_ID_HEADERS.get(source)
    if delivery_header:
        delivery_id = headers.get(delivery_header)
        if delivery_id:
            return f"{source.value}:{delivery_id}", True

    if source == WebhookSource.GITHUB:
        synthesized = _synthesize_github(parsed, current)
    elif source == WebhookSource.CLERK:
        synthesized = _synthesize_clerk(parsed)
    else:
        event_id = data.get("id")
        synthesized = event_id if isinstance(event_id, str) and event_id else None

    if synthesized:
        return synthesized, True
    return _random_id(source), False
