# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant registry domain."""

from classpulse.domains.tenants.service import (
    TenantEnumerationError,
    TenantService,
    tenant_priority_key,
)

__all__ = ["TenantEnumerationError", "TenantService", "tenant_priority_key"]
