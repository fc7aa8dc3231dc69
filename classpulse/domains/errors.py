# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scope-tagged errors collected during a run.

Per-call failures do not abort a run. They are captured as ScopeError
values, returned inside result objects and merged by the orchestrator
into the job record.
"""

from dataclasses import asdict, dataclass
from typing import Any


class ErrorKind:
    """Error kind labels stored with each ScopeError."""

    TRANSPORT = "transport"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CREDENTIAL = "credential"
    VALIDATION = "validation"
    GENERATION = "generation"
    STORE = "store"


@dataclass(frozen=True)
class ScopeError:
    """A failure attributed to the smallest scope it affected.

    Attributes:
        scope: Where it happened, e.g. "tenant:101", "course:101-55",
            "forum:101-55/12" or "activity:101-55/forum/12".
        kind: One of the ErrorKind labels.
        message: Human-readable description.
    """

    scope: str
    kind: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_exception(cls, scope: str, kind: str, error: Exception) -> "ScopeError":
        """Build a ScopeError from an exception's message."""
        return cls(scope=scope, kind=kind, message=str(error) or error.__class__.__name__)
