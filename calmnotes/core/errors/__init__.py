"""
Error code system.

CalmNotesError is the base exception for all structured errors.
Raise it with an error code from the registry, and the error middleware
will produce a structured JSON response.

Usage:
    from calmnotes.core.errors import CalmNotesError
    raise CalmNotesError("USAGE_LIMIT_EXCEEDED", context={"limit": 10})
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^[A-Z][A-Z0-9]*(_[A-Z0-9]+)+$")


class CalmNotesError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "USAGE_LIMIT_EXCEEDED".
        detail: Internal-only detail message (never exposed to users).
        context: Key-value context for structured logging and for
            formatting the registry's message template.
    """

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)
