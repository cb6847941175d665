"""
Result type for best-effort side effects.

Asset synchronization and notification fan-out must never fail the
transition that triggered them.  Instead of swallowing exceptions in
place, those operations return a ``SideEffectResult``; the caller logs
the error variant and carries on.
"""

import logging
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of one best-effort operation."""

    ok: bool
    error: str | None = None
    detail: Any = None

    @classmethod
    def succeeded(cls, detail: Any = None) -> "SideEffectResult":
        return cls(ok=True, detail=detail)

    @classmethod
    def failed(cls, error: str, detail: Any = None) -> "SideEffectResult":
        return cls(ok=False, error=error, detail=detail)

    def log_failure(self, log: logging.Logger, action: str) -> None:
        """Log the error variant (if any) and discard it."""
        if not self.ok:
            log.error("%s failed: %s", action, self.error)
