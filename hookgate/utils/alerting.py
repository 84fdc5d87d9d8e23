"""
Security alerting - raises alerts on security-relevant webhook events.

Alert channels:
1. Structured log (always) - at ERROR or CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: Per-type cooldowns to prevent alert storms during a signature-spray.
Cooldowns stored in Redis (survives restarts), with an in-memory fallback.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes (default)

# Per-type cooldown overrides (seconds)
ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "webhook_signature_invalid": 60,
    "webhook_audit_write_failed": 900,
}

# In-memory fallback when Redis is down
_local_cooldowns: dict[str, float] = {}  # cooldown key -> expiry (monotonic)


class AlertType:
    """Alert type constants."""
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    WEBHOOK_SECRET_MISSING = "webhook_secret_missing"
    WEBHOOK_VERIFICATION_BYPASSED = "webhook_verification_bypassed"
    WEBHOOK_AUDIT_WRITE_FAILED = "webhook_audit_write_failed"


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    source: Optional[str] = None,
    extra: Optional[dict] = None,
) -> None:
    """
    Send an alert through all configured channels.
    The log line is always written; the webhook channel is rate-limited per type and source.
    """
    from hookgate.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    log_extra = {"alert_type": alert_type, "source": source, "correlation_id": cid}
    if severity == "critical":
        logger.critical(log_message, extra=log_extra)
    else:
        logger.error(log_message, extra=log_extra)

    cooldown_key = f"{alert_type}:{source}" if source else alert_type
    if not await _acquire_cooldown(cooldown_key, _get_cooldown_seconds(alert_type)):
        return

    await _send_webhook_alert(alert_type, message, cid, severity, extra)


async def _acquire_cooldown(cooldown_key: str, cooldown: int) -> bool:
    """
    Atomically check-and-set alert cooldown. Returns True if the alert should go out.
    Uses Redis SET NX EX; falls back to an in-memory dict when Redis is unavailable.
    """
    try:
        from hookgate.utils.dedup import get_redis
        redis = await get_redis()
        acquired = await redis.set(
            f"hookgate:alert_cooldown:{cooldown_key}", "1", nx=True, ex=cooldown,
        )
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(cooldown_key, 0):
            return False
        _local_cooldowns[cooldown_key] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str],
    severity: str,
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        from hookgate.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        severity_emoji = {"critical": "\U0001f6a8", "error": "❌", "warning": "⚠️"}.get(
            severity, "ℹ️"
        )
        content = f"{severity_emoji} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the pipeline
        logger.warning("Failed to send webhook alert: %s", str(e))
