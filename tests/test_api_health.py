"""
Tests for hookgate/api/health.py - liveness and readiness endpoints.
"""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from hookgate.api.health import APP_VERSION, health_check, readiness_check


def _settings(backend="memory"):
    settings = MagicMock()
    settings.idempotency_cache_backend = backend
    return settings


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == APP_VERSION
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


class TestReadinessCheck:
    async def test_database_only_with_memory_cache(self):
        """Redis is not consulted when the in-memory cache backend is selected."""
        mock_db = AsyncMock()
        with (
            patch("hookgate.config.get_settings", return_value=_settings("memory")),
            patch("hookgate.utils.dedup.get_redis", new_callable=AsyncMock) as get_redis,
        ):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "ready"
        assert result["checks"] == {"database": True}
        get_redis.assert_not_called()

    async def test_redis_checked_with_redis_cache(self):
        mock_db = AsyncMock()
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(return_value=True)
        with (
            patch("hookgate.config.get_settings", return_value=_settings("redis")),
            patch("hookgate.utils.dedup.get_redis", new_callable=AsyncMock, return_value=mock_redis),
        ):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}

    async def test_db_failure_returns_degraded(self):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("connection refused"))
        with patch("hookgate.config.get_settings", return_value=_settings("memory")):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "degraded"
        assert result["checks"]["database"] is False

    async def test_redis_failure_returns_degraded(self):
        mock_db = AsyncMock()
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("redis down"))
        with (
            patch("hookgate.config.get_settings", return_value=_settings("redis")),
            patch("hookgate.utils.dedup.get_redis", new_callable=AsyncMock, return_value=mock_redis),
        ):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False
