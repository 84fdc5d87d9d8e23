"""
Settings tests - per-source secrets, the test-only bypass and list-valued options.
"""
from hookgate.config import Settings


class TestWebhookSecrets:
    def test_secret_per_source(self):
        settings = Settings(_env_file=None, stripe_webhook_secret="whsec", github_webhook_secret="gh")
        assert settings.webhook_secret_for("stripe") == "whsec"
        assert settings.webhook_secret_for("github") == "gh"

    def test_unset_secret_is_none(self):
        settings = Settings(_env_file=None, clerk_webhook_secret="")
        assert settings.webhook_secret_for("clerk") is None
        assert settings.webhook_secret_for("bitbucket") is None

    def test_env_vars_are_read(self, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "from-env")
        monkeypatch.setenv("WEBHOOK_MAX_PAYLOAD_BYTES", "2048")
        settings = Settings(_env_file=None)
        assert settings.webhook_secret_for("stripe") == "from-env"
        assert settings.webhook_max_payload_bytes == 2048


class TestVerificationBypass:
    def test_defaults_to_none(self):
        assert Settings(_env_file=None).skip_verification_sources == frozenset()

    def test_only_test_source_can_bypass(self):
        settings = Settings(_env_file=None, webhook_skip_verification_sources=" Test , stripe,github")
        assert settings.skip_verification_sources == frozenset({"test"})


class TestDefaults:
    def test_ingestion_limits(self):
        settings = Settings(_env_file=None)
        assert settings.webhook_max_payload_bytes == 1024 * 1024
        assert settings.webhook_timestamp_tolerance_seconds == 300
        assert settings.webhook_inflight_window_seconds == 60

    def test_redaction_extra_patterns(self):
        settings = Settings(_env_file=None, redaction_extra_patterns="pin, ,tax_id")
        assert settings.redaction_extra_pattern_list == ["pin", "tax_id"]
