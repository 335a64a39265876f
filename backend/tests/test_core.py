"""配置、日志、异常与邮件服务测试"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from trustcore.core.config import Settings, clear_settings_cache, get_settings
from trustcore.core.exceptions import InfrastructureFault, RateLimitExceeded, translate_store_errors
from trustcore.core.logging_config import get_logging_config, mask_email
from trustcore.services.email_service import EmailService


class TestSettings:

    def test_defaults(self):
        settings = get_settings()

        assert settings.otp_code_length == 6
        assert settings.otp_expire_minutes == 10
        assert settings.otp_max_attempts == 3
        assert settings.otp_rate_limit_max_requests == 3
        assert settings.otp_rate_limit_window_minutes == 5
        assert settings.duplicate_ip_cluster_threshold == 3
        assert settings.email_alias_tag_domains == ["gmail.com", "googlemail.com", "outlook.com", "hotmail.com"]

    def test_redis_only_configured_for_celery(self):
        from trustcore.core.celery_app import celery_app

        settings = get_settings()

        assert "redis_url" not in Settings.model_fields
        assert celery_app.conf.broker_url == settings.celery_broker_url
        assert celery_app.conf.result_backend == settings.celery_result_backend

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("OTP_MAX_ATTEMPTS", "5")
        clear_settings_cache()
        try:
            assert get_settings().otp_max_attempts == 5
        finally:
            monkeypatch.delenv("OTP_MAX_ATTEMPTS")
            clear_settings_cache()


class TestLogging:

    def test_mask_email(self):
        assert mask_email("alice@example.com") == "a****@example.com"
        assert mask_email("a@example.com") == "*@example.com"
        assert mask_email("garbage") == "***"

    def test_logging_config_levels(self):
        config = get_logging_config("DEBUG")

        assert config["loggers"]["trustcore"]["level"] == "DEBUG"
        assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"


class TestExceptions:

    async def test_connection_errors_become_infrastructure_fault(self):
        @translate_store_errors
        async def query():
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))

        with pytest.raises(InfrastructureFault):
            await query()

    async def test_other_errors_propagate_unchanged(self):
        @translate_store_errors
        async def insert():
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(IntegrityError):
            await insert()

    def test_rate_limit_message(self):
        error = RateLimitExceeded(max_requests=3, window_minutes=5, retry_after_seconds=120)

        assert "Too many OTP requests" in str(error)
        assert error.retry_after_seconds == 120


class TestEmailService:

    async def test_missing_credentials_skips_sending(self):
        service = EmailService()
        service.smtp_username = None

        assert await service.send_email("bob@example.com", "subject", "<p>hi</p>") is False

    async def test_otp_email_contains_code_and_expiry(self, monkeypatch):
        service = EmailService()
        captured = {}

        async def fake_send_email(to_email, subject, html_content, text_content=None):
            captured.update(to=to_email, html=html_content, text=text_content)
            return True

        monkeypatch.setattr(service, "send_email", fake_send_email)

        assert await service.send_otp_email("bob@example.com", "042042", 10) is True
        assert captured["to"] == "bob@example.com"
        assert "042042" in captured["html"]
        assert "10 minutes" in captured["text"]

    def test_smtp_failures_retried_then_reported(self, monkeypatch):
        service = EmailService(max_retries=2, retry_delay=0)
        service.smtp_username = "mailer"
        service.smtp_password = "secret"
        attempts = []

        def failing_connection():
            attempts.append(1)
            raise OSError("connection refused")

        monkeypatch.setattr(service, "_open_connection", failing_connection)

        assert service._send_email_sync("bob@example.com", "subject", "<p>hi</p>") is False
        assert len(attempts) == 2
