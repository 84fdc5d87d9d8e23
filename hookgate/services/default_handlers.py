"""
Built-in webhook handlers - acknowledge and log known events per provider.
Applications replace them by registering their own handlers on the registry.
"""
import logging
from typing import Any

from hookgate.schemas.webhook_payloads import WebhookSource
from hookgate.services.handler_registry import HandlerRegistry, HandlerResult

logger = logging.getLogger(__name__)

STRIPE_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "invoice.paid",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
})
GITHUB_EVENT_TYPES = frozenset({"push", "pull_request", "issues", "ping"})
CLERK_EVENT_TYPES = frozenset({"user.created", "user.updated", "user.deleted"})


def _unhandled(source: str, event_type: str) -> HandlerResult:
    logger.info("Unhandled %s event type: %s", source, event_type)
    return HandlerResult(success=True, message=f"Event {event_type} acknowledged but not processed")


def _object(payload: Any) -> dict:
    data = payload.get("data") if isinstance(payload, dict) else None
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


async def handle_stripe_event(payload: dict, event_type: str) -> HandlerResult:
    if event_type not in STRIPE_EVENT_TYPES and not event_type.startswith("customer.subscription."):
        return _unhandled("Stripe", event_type)
    obj = _object(payload)
    logger.info(
        "Stripe %s for %s (customer=%s)",
        event_type, obj.get("id", "unknown"), obj.get("customer", "unknown"),
    )
    return HandlerResult(success=True, message=f"Stripe {event_type} processed")


async def handle_github_event(payload: dict, event_type: str) -> HandlerResult:
    if event_type not in GITHUB_EVENT_TYPES:
        return _unhandled("GitHub", event_type)
    repository = payload.get("repository") or {}
    name = repository.get("full_name") if isinstance(repository, dict) else None
    if event_type == "push":
        commits = payload.get("commits")
        logger.info(
            "GitHub push to %s on %s (%d commits)",
            name, payload.get("ref"), len(commits) if isinstance(commits, list) else 0,
        )
    elif event_type == "ping":
        logger.info("GitHub ping: %s", payload.get("zen", ""))
    else:
        logger.info("GitHub %s %s on %s", event_type, payload.get("action"), name)
    return HandlerResult(success=True, message=f"GitHub {event_type} processed")


async def handle_clerk_event(payload: dict, event_type: str) -> HandlerResult:
    if event_type not in CLERK_EVENT_TYPES and not event_type.startswith("session."):
        return _unhandled("Clerk", event_type)
    data = payload.get("data") or {}
    logger.info("Clerk %s for %s", event_type, data.get("id", "unknown"))
    return HandlerResult(success=True, message=f"Clerk {event_type} processed")


async def handle_test_event(payload: Any, event_type: str) -> HandlerResult:
    """
    Test source handler. A body field "simulate" drives the outcome:
    retryable_failure, terminal_failure, exception. Anything else succeeds.
    """
    simulate = payload.get("simulate") if isinstance(payload, dict) else None
    if simulate == "retryable_failure":
        return HandlerResult(
            success=False, message="Simulated failure",
            error="Simulated retryable failure", should_retry=True,
        )
    if simulate == "terminal_failure":
        return HandlerResult(
            success=False, message="Simulated failure",
            error="Simulated terminal failure", should_retry=False,
        )
    if simulate == "exception":
        raise RuntimeError("Simulated handler exception")
    logger.info("Test webhook %s received", event_type)
    return HandlerResult(success=True, message=f"Test event {event_type} processed")


def register_default_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    registry.register(WebhookSource.STRIPE, handle_stripe_event)
    registry.register(WebhookSource.GITHUB, handle_github_event)
    registry.register(WebhookSource.CLERK, handle_clerk_event)
    registry.register(WebhookSource.TEST, handle_test_event)
    return registry
