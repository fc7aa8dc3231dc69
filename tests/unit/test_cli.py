# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the command-line entry point."""

import argparse
import io
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from classpulse import __main__ as cli
from classpulse.core.config.settings import LMSSettings, Settings
from classpulse.domains.credentials.tokens import TokenCipher
from classpulse.infrastructure.database.models import PersonalToken
from helpers import TOKEN_ENCRYPTION_KEY, make_tenant


class TestCommandLine:
    """Argument parsing and exit codes."""

    def test_run_returns_outcome_exit_code(self):
        with patch.object(cli, "_main", AsyncMock(return_value=2)) as main:
            assert cli.main(["run", "--force-refresh"]) == 2

        args = main.await_args.args[0]
        assert args.command == "run"
        assert args.force_refresh is True
        assert args.cron is False

    def test_cron_flag(self):
        with patch.object(cli, "_main", AsyncMock(return_value=0)) as main:
            assert cli.main(["run", "--cron"]) == 0

        assert main.await_args.args[0].cron is True

    def test_status_command(self):
        with patch.object(cli, "_main", AsyncMock(return_value=0)) as main:
            cli.main(["status"])

        assert main.await_args.args[0].command == "status"

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.main([])

    def test_store_token_arguments(self):
        with patch.object(cli, "_main", AsyncMock(return_value=0)) as main:
            cli.main(["store-token", "101", "profe@example.edu", "--expires-at", "2026-12-31T00:00:00"])

        args = main.await_args.args[0]
        assert args.command == "store-token"
        assert (args.tenant, args.principal) == ("101", "profe@example.edu")
        assert args.expires_at == "2026-12-31T00:00:00"


class TestStoreToken:
    """Storing a personal token from standard input."""

    @pytest.fixture
    async def store_args(self, session_factory, add_rows, monkeypatch):
        await add_rows(make_tenant("101"))
        monkeypatch.setattr(cli, "get_sessionmaker", lambda: session_factory)
        return argparse.Namespace(
            tenant="101", principal="profe@example.edu", expires_at="2026-12-31T00:00:00"
        )

    @pytest.mark.asyncio
    async def test_token_stored_encrypted(self, store_args, session_factory, lms_settings, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("abc123\n"))

        assert await cli._store_token(store_args, Settings(lms=lms_settings)) == 0

        async with session_factory() as session:
            stored = (await session.execute(select(PersonalToken))).scalar_one()
        assert TokenCipher(TOKEN_ENCRYPTION_KEY).decrypt(stored.token_encrypted) == "abc123"
        assert stored.expires_at == datetime(2026, 12, 31, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_refused_without_key(self, store_args, session_factory, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("abc123\n"))

        assert await cli._store_token(store_args, Settings(lms=LMSSettings())) == 1

        async with session_factory() as session:
            assert (await session.execute(select(PersonalToken))).first() is None

    @pytest.mark.asyncio
    async def test_empty_input_refused(self, store_args, lms_settings, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("\n"))

        assert await cli._store_token(store_args, Settings(lms=lms_settings)) == 1
