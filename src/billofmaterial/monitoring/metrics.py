"""Per-run counters for the fetch orchestrator."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ErrorEntry:
    """A provider call that was given up on."""

    timestamp: datetime
    package: str
    provider: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "package": self.package,
            "provider": self.provider,
            "message": self.message,
        }


@dataclass
class FetchMetrics:
    """Request accounting for one analysis run.

    Mutated only from the event loop thread, between awaits, so plain
    integer updates are never lost.
    """

    requests: int = 0
    retries: int = 0
    failures: dict[str, int] = field(default_factory=dict)
    cache_hits: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0
    completed_declarations: int = 0
    total_declarations: int = 0

    # Ring buffer of the last N given-up calls
    recent_errors: deque[ErrorEntry] = field(default_factory=lambda: deque(maxlen=20))

    def acquire(self) -> None:
        self.in_flight += 1
        self.requests += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def release(self) -> None:
        self.in_flight -= 1

    def record_failure(self, package: str, provider: str, message: str) -> None:
        """Record a call that stayed unavailable after every retry."""
        self.failures[provider] = self.failures.get(provider, 0) + 1
        self.recent_errors.append(
            ErrorEntry(timestamp=datetime.now(), package=package, provider=provider, message=message)
        )

    @property
    def failure_count(self) -> int:
        return sum(self.failures.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "retries": self.retries,
            "failures": dict(self.failures),
            "cache_hits": self.cache_hits,
            "peak_in_flight": self.peak_in_flight,
            "completed_declarations": self.completed_declarations,
            "total_declarations": self.total_declarations,
            "recent_errors": [e.to_dict() for e in self.recent_errors],
        }
