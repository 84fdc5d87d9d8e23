"""
Sign a webhook payload and post it to a running Hookgate instance.

Usage:
    python scripts/send_test_webhook.py
    python scripts/send_test_webhook.py --source stripe --event-type invoice.paid --secret whsec_...
    python scripts/send_test_webhook.py --source github --event-type push --file push.json
    python scripts/send_test_webhook.py --simulate retryable_failure
"""
import argparse
import asyncio
import json
import logging
import uuid

import httpx

from hookgate.schemas.webhook_payloads import SOURCE_HEADERS, WebhookSource
from hookgate.utils.webhook_signatures import generate_signature_header

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"
DEFAULT_TEST_SECRET = "test-secret-dev-only"


def build_payload(source: WebhookSource, event_type: str, simulate: str | None) -> dict:
    """A minimal payload that passes validation for the given source."""
    event_id = uuid.uuid4().hex[:16]
    if source == WebhookSource.STRIPE:
        return {
            "id": f"evt_{event_id}",
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": f"in_{event_id}", "object": "invoice", "customer": "cus_test"}},
        }
    if source == WebhookSource.GITHUB:
        payload = {
            "sender": {"login": "octocat", "id": 1},
            "repository": {"id": 12345, "full_name": "test-org/test-repo"},
        }
        if event_type == "push":
            payload.update({"ref": "refs/heads/main", "after": event_id})
        return payload
    if source == WebhookSource.CLERK:
        return {
            "object": "event",
            "type": event_type,
            "data": {"id": f"user_{event_id}", "updated_at": 1700000000000},
        }
    payload = {"id": f"test_{event_id}", "type": event_type}
    if simulate:
        payload["simulate"] = simulate
    return payload


def build_headers(source: WebhookSource, body: bytes, secret: str, event_type: str) -> dict:
    signature_header, event_type_header = SOURCE_HEADERS[source]
    headers = {
        "Content-Type": "application/json",
        signature_header: generate_signature_header(source, body, secret),
    }
    if event_type_header:
        headers[event_type_header] = event_type
    if source == WebhookSource.GITHUB:
        headers["x-github-delivery"] = str(uuid.uuid4())
    if source == WebhookSource.CLERK:
        headers["svix-id"] = f"msg_{uuid.uuid4().hex}"
    return headers


async def send_webhook(base_url: str, source: WebhookSource, body: bytes, headers: dict):
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{base_url}/api/v1/webhooks/{source.value}", content=body, headers=headers)
        logger.info("%s webhook response: %s %s", source.value, resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Send a signed test webhook")
    parser.add_argument("--source", default="test", choices=[s.value for s in WebhookSource])
    parser.add_argument("--event-type", default="test.event")
    parser.add_argument("--secret", default=DEFAULT_TEST_SECRET)
    parser.add_argument("--file", help="JSON file to send instead of a generated payload")
    parser.add_argument(
        "--simulate", choices=["retryable_failure", "terminal_failure", "exception"],
        help="Ask the built-in test handler to fail (test source only)",
    )
    parser.add_argument("--url", default=BASE_URL)
    parser.add_argument("--repeat", type=int, default=1, help="Send the same signed body N times")
    args = parser.parse_args()

    source = WebhookSource(args.source)
    if args.file:
        with open(args.file, "rb") as f:
            body = f.read()
    else:
        body = json.dumps(build_payload(source, args.event_type, args.simulate)).encode("utf-8")
    headers = build_headers(source, body, args.secret, args.event_type)

    logger.info("Sending %s %s webhook x%d...", source.value, args.event_type, args.repeat)
    for _ in range(args.repeat):
        await send_webhook(args.url, source, body, headers)


if __name__ == "__main__":
    asyncio.run(main())
