"""
Handler registry - the extension point applications use to react to webhook events.

A handler is `async (payload, event_type) -> HandlerResult` (a plain dict with
success/message/error/shouldRetry is also accepted). Handlers are registered per
source, optionally narrowed to one event type. invoke_handler() is the result
boundary: nothing a handler raises crosses into response building.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from hookgate.schemas.webhook_payloads import WebhookSource

logger = logging.getLogger(__name__)

NO_HANDLER_ERROR = "No handler registered"


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    message: str = ""
    error: Optional[str] = None
    should_retry: Optional[bool] = None

    @classmethod
    def coerce(cls, value: Any) -> "HandlerResult":
        """
        Accept a HandlerResult or a result dict. Raises TypeError otherwise.

        error and message are normalized to strings; should_retry counts only
        when it is a real bool, so "false" or 0 never requests a retry.
        """
        if isinstance(value, cls):
            success, message, error, should_retry = (
                value.success, value.message, value.error, value.should_retry,
            )
        elif isinstance(value, dict) and isinstance(value.get("success"), bool):
            success = value["success"]
            message = value.get("message")
            error = value.get("error")
            should_retry = value.get("should_retry", value.get("shouldRetry"))
        else:
            raise TypeError(f"Handler returned {type(value).__name__}, expected HandlerResult")

        return cls(
            success=success,
            message=_as_text(message) or "",
            error=_as_text(error),
            should_retry=should_retry if isinstance(should_retry, bool) else None,
        )


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return str(value)


Handler = Callable[[Any, str], Awaitable[Union[HandlerResult, dict]]]


@dataclass(frozen=True)
class Ok:
    result: HandlerResult


@dataclass(frozen=True)
class Err:
    reason: str
    should_retry: bool
    message: str = ""


class HandlerRegistry:
    def __init__(self):
        self._handlers: dict[tuple[WebhookSource, Optional[str]], Handler] = {}

    def register(
        self,
        source: WebhookSource,
        handler: Optional[Handler] = None,
        event_type: Optional[str] = None,
    ):
        """
        Register a handler for a source (all event types) or one (source, event_type).

        Usable directly or as a decorator:
            @registry.register(WebhookSource.STRIPE, event_type="invoice.paid")
            async def on_invoice_paid(payload, event_type): ...
        """
        key = (WebhookSource(source), event_type)

        def decorator(func: Handler) -> Handler:
            if key in self._handlers:
                logger.info(
                    "Replacing webhook handler for %s/%s", key[0].value, event_type or "*",
                )
            self._handlers[key] = func
            return func

        if handler is not None:
            return decorator(handler)
        return decorator

    def resolve(self, source: WebhookSource, event_type: str) -> Optional[Handler]:
        source = WebhookSource(source)
        return self._handlers.get((source, event_type)) or self._handlers.get((source, None))

    def __contains__(self, key) -> bool:
        return key in self._handlers


async def invoke_handler(
    handler: Optional[Handler],
    payload: Any,
    event_type: str,
    timeout: Optional[float] = None,
) -> Union[Ok, Err]:
    """
    Run a handler and fold every outcome into Ok | Err.

    A raised exception, a timeout or an unusable return value is retryable.
    A returned failure is retryable only when the handler asks for it.
    On timeout the handler task is cancelled.
    """
    if handler is None:
        return Err(reason=NO_HANDLER_ERROR, should_retry=False)

    try:
        if timeout:
            raw = await asyncio.wait_for(handler(payload, event_type), timeout=timeout)
        else:
            raw = await handler(payload, event_type)
    except asyncio.TimeoutError:
        logger.error("Webhook handler for %s timed out after %ss", event_type, timeout)
        return Err(reason=f"Handler timed out after {timeout}s", should_retry=True)
    except Exception as e:
        logger.error(
            "Webhook handler for %s raised: %s", event_type, str(e), exc_info=True,
        )
        return Err(reason=str(e) or type(e).__name__, should_retry=True)

    try:
        result = HandlerResult.coerce(raw)
    except TypeError as e:
        logger.error("Webhook handler for %s returned an invalid result: %s", event_type, str(e))
        return Err(reason=str(e), should_retry=True)

    if result.success:
        return Ok(result)
    return Err(
        reason=result.error or result.message or "Handler reported failure",
        should_retry=bool(result.should_retry),
        message=result.message,
    )
