# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Personal token encryption at rest.

Personal LMS tokens are stored as Fernet ciphertext. The Fernet key is
derived from LMS_TOKEN_ENCRYPTION_KEY with SHA-256, so any passphrase can
be configured. Service tokens are issued per tenant by operators and are
not covered here.

Example:
    >>> cipher = TokenCipher("passphrase")
    >>> cipher.decrypt(cipher.encrypt("abc123"))
    'abc123'
"""

import base64
import hashlib
import logging
from datetime import datetime
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.core.config.settings import LMSSettings
from classpulse.infrastructure.database.connection import session_scope
from classpulse.infrastructure.database.models import PersonalToken

logger = logging.getLogger(__name__)


class TokenEncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class TokenCipher:
    """Fernet cipher for personal tokens."""

    def __init__(self, key: str) -> None:
        if not key:
            raise TokenEncryptionError("Token encryption key is empty")
        digest = hashlib.sha256(key.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    @classmethod
    def from_settings(cls, lms_settings: LMSSettings) -> Optional["TokenCipher"]:
        """Build the cipher from LMS settings, None when no key is configured."""
        key = lms_settings.token_encryption_key
        if key is None or not key.get_secret_value():
            return None
        return cls(key.get_secret_value())

    def encrypt(self, token: str) -> str:
        return self._fernet.encrypt(token.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token.

        Raises:
            TokenEncryptionError: If the ciphertext was not produced with
                this key or has been altered.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise TokenEncryptionError("Stored token could not be decrypted") from e


async def save_personal_token(
    session_factory: async_sessionmaker[AsyncSession],
    cipher: TokenCipher,
    tenant_id: str,
    principal: str,
    token: str,
    expires_at: Optional[datetime] = None,
) -> PersonalToken:
    """Store a principal's personal token, replacing any previous one.

    Args:
        session_factory: Sessionmaker for the write.
        cipher: Cipher the token is encrypted with.
        tenant_id: Tenant the token was issued by.
        principal: Principal the token belongs to.
        token: Plaintext web service token.
        expires_at: Expiry if known.

    Returns:
        The stored row.

    Raises:
        DatabaseError: If the write fails.
    """
    async with session_scope(session_factory) as session:
        result = await session.execute(
            select(PersonalToken).where(
                PersonalToken.tenant_id == tenant_id,
                PersonalToken.principal == principal,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PersonalToken(tenant_id=tenant_id, principal=principal)
            session.add(row)

        row.token_encrypted = cipher.encrypt(token)
        row.expires_at = expires_at

    logger.info("Stored personal token for tenant=%s", tenant_id)
    return row
