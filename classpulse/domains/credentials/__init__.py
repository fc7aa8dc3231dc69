# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LMS credential domain."""

from classpulse.domains.credentials.resolver import (
    CredentialResolution,
    CredentialResolver,
    NoCredentialError,
    settings_token_key,
)
from classpulse.domains.credentials.tokens import (
    TokenCipher,
    TokenEncryptionError,
    save_personal_token,
)

__all__ = [
    "CredentialResolution",
    "CredentialResolver",
    "NoCredentialError",
    "TokenCipher",
    "TokenEncryptionError",
    "save_personal_token",
    "settings_token_key",
]
