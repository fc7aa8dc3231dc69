# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for application settings."""

from datetime import time

import pytest
from pydantic import ValidationError

from classpulse.core.config.settings import (
    BatchSettings,
    LMSSettings,
    SchedulerSettings,
    Settings,
)


class TestBatchSettings:
    """Tests for batch pipeline settings."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = BatchSettings()

        assert settings.stuck_job_timeout_minutes == 30
        assert settings.dedup_window_minutes == 10
        assert settings.lease_backend == "local"
        assert settings.show_all_tenants_list == []

    def test_show_all_tenants_list(self):
        """Test parsing of the show-all allow-list."""
        settings = BatchSettings(show_all_tenants=" 101, av141 ,,")

        assert settings.show_all_tenants_list == ["101", "av141"]

    def test_env_prefix(self, monkeypatch):
        """Test values are read from BATCH_ variables."""
        monkeypatch.setenv("BATCH_DEDUP_WINDOW_MINUTES", "15")

        assert BatchSettings().dedup_window_minutes == 15


class TestLMSSettings:
    """Tests for LMS settings."""

    def test_service_tokens_from_json(self, monkeypatch):
        """Test configured service tokens are parsed from JSON."""
        monkeypatch.setenv("LMS_SERVICE_TOKENS", '{"101": "abc123"}')

        settings = LMSSettings()

        assert settings.service_tokens["101"].get_secret_value() == "abc123"
        assert "abc123" not in repr(settings)


class TestSchedulerSettings:
    """Tests for scheduled run settings."""

    def test_run_times_sorted(self):
        """Test run times are parsed and sorted."""
        settings = SchedulerSettings(run_times="16:00, 08:00")

        assert settings.run_times_list == [time(8, 0), time(16, 0)]

    def test_invalid_run_time_rejected(self):
        """Test malformed run times fail validation."""
        with pytest.raises(ValidationError):
            SchedulerSettings(run_times="08:00,25:99")


class TestSettings:
    """Tests for the aggregated settings."""

    def test_production_requires_trigger_secret(self, monkeypatch):
        """Test production settings without a trigger secret are rejected."""
        monkeypatch.delenv("BATCH_TRIGGER_SECRET", raising=False)

        with pytest.raises(ValidationError, match="trigger secret"):
            Settings(environment="production", batch=BatchSettings(trigger_secret=None))

    def test_production_requires_token_encryption_key(self, monkeypatch):
        """Test production settings without a token encryption key are rejected."""
        monkeypatch.delenv("LMS_TOKEN_ENCRYPTION_KEY", raising=False)

        with pytest.raises(ValidationError, match="encryption key"):
            Settings(
                environment="production",
                batch=BatchSettings(trigger_secret="s3cret"),
                lms=LMSSettings(token_encryption_key=None),
            )

    def test_production_with_secrets(self):
        """Test production settings with both secrets are accepted."""
        settings = Settings(
            environment="production",
            debug=False,
            batch=BatchSettings(trigger_secret="s3cret"),
            lms=LMSSettings(token_encryption_key="k3y"),
        )

        assert settings.is_production
        assert not settings.is_development
