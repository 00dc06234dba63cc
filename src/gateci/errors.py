# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class ConfigurationError(Exception):
    """
    A workflow that can never run: cycles, unknown job ids, malformed
    matrix/needs, or an unreadable document.

    Raised at load time. A run never starts with one of these.
    """
    message: str
    job: str | None = None
    details: dict = field(default_factory=dict)

    kind = "ConfigurationError"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConditionError(ConfigurationError):
    """A run condition that does not parse or references an unknown field."""

    kind = "ConditionError"


@dataclass(eq=False)
class ReportingFailure(Exception):
    """Emitting the gate status failed. Safe to retry: reports are idempotent."""
    reporter: str
    run_id: str
    message: str

    def __str__(self) -> str:
        return f"ReportingFailure: [{self.reporter}] run={self.run_id}: {self.message}"
