# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure: models, connection management and migrations."""

from classpulse.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    create_engine_for_url,
    create_schema,
    create_session_factory,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
    session_scope,
)

__all__ = [
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "create_engine_for_url",
    "create_schema",
    "create_session_factory",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_database",
    "session_scope",
]
