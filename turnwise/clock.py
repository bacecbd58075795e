from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class TimeProvider(Protocol):
    """Source of the current UTC instant. Injected so timing logic stays testable."""

    def now(self) -> datetime: ...


class SystemTimeProvider:
    def now(self) -> datetime:
        return datetime.now(UTC)
