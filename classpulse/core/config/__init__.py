# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for ClassPulse.

Example:
    >>> from classpulse.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from classpulse.core.config.settings import (
    AnalysisSettings,
    APISettings,
    BatchSettings,
    DatabaseSettings,
    LLMSettings,
    LMSSettings,
    RedisSettings,
    SchedulerSettings,
    Settings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)
from classpulse.core.config.yaml_loader import YAMLLoadError, load_yaml

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "RedisSettings",
    "LLMSettings",
    "LMSSettings",
    "BatchSettings",
    "AnalysisSettings",
    "SchedulerSettings",
    "APISettings",
    "WorkerSettings",
    # YAML
    "YAMLLoadError",
    "load_yaml",
]
