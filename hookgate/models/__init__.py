"""
Database models - import all models here so Alembic can discover them.
"""
from hookgate.models.webhook_event import WebhookEvent

__all__ = [
    "WebhookEvent",
]
