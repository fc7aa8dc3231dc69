# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for assembling the batch runtime."""

from unittest.mock import MagicMock, patch

import pytest

from classpulse.core.config.settings import (
    BatchSettings,
    LLMSettings,
    SchedulerSettings,
    Settings,
)
from classpulse.domains.batch.lease import LocalRunLease, RedisRunLease
from classpulse.domains.batch.runtime import build_lease, build_runtime
from classpulse.domains.batch.schemas import RunOutcome
from classpulse.infrastructure.database.models import JobTrigger


class TestBuildLease:
    """Tests for lease backend selection."""

    def test_local_by_default(self):
        assert isinstance(build_lease(Settings()), LocalRunLease)

    def test_redis_lease(self):
        settings = Settings(batch=BatchSettings(lease_backend="redis"))

        assert isinstance(build_lease(settings, redis=MagicMock()), RedisRunLease)

    def test_redis_unavailable_falls_back(self):
        settings = Settings(batch=BatchSettings(lease_backend="redis"))

        assert isinstance(build_lease(settings, redis=None), LocalRunLease)


class TestBuildRuntime:
    """Tests for build_runtime."""

    @pytest.mark.asyncio
    async def test_runtime_runs_on_empty_registry(self, session_factory):
        """Test the assembled runtime completes a run with no tenants."""
        settings = Settings(
            batch=BatchSettings(tenant_delay_seconds=0),
            scheduler=SchedulerSettings(run_times="06:30", timezone="UTC"),
        )
        runtime = build_runtime(settings, session_factory, llm_client=MagicMock())
        try:
            result = await runtime.orchestrator.start_run(JobTrigger.MANUAL)

            assert result.outcome == RunOutcome.COMPLETED
            assert result.tenants_processed == 0
            assert runtime.window.timezone == "UTC"
            assert (await runtime.jobs.get(result.job_id)) is not None
        finally:
            await runtime.close()

    def test_model_client_never_retries(self, session_factory):
        """Test LLM_MAX_RETRIES does not turn on retries inside a run."""
        settings = Settings(llm=LLMSettings(max_retries=3))

        with patch("classpulse.domains.batch.runtime.LLMClient") as llm_client_cls:
            runtime = build_runtime(settings, session_factory, http_client=MagicMock())

        llm_client_cls.assert_called_once_with(max_retries=0, llm_settings=settings.llm)
        assert runtime.orchestrator is not None
