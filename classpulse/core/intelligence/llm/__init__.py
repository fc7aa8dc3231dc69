# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LLM client package.

Example:
    >>> from classpulse.core.intelligence.llm import LLMClient
    >>> client = LLMClient(max_retries=0)
    >>> response = await client.complete("Resume la actividad")
"""

from classpulse.core.intelligence.llm.client import (
    LLMClient,
    LLMError,
    LLMResponse,
    Message,
)

__all__ = [
    "LLMClient",
    "LLMError",
    "LLMResponse",
    "Message",
]
