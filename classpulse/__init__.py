# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""ClassPulse - batch LMS synchronization and activity analysis caching."""

__version__ = "0.1.0"
