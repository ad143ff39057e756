"""Error taxonomy for change orchestration.

Only validation and configuration errors reach callers. Execution errors are
converted into ``failed`` results inside the executor, and compensation errors
are logged and dropped by the batch orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass


class ChangeError(Exception):
    """Base class for orchestrator errors."""


@dataclass(frozen=True)
class ValidationIssue:
    loc: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"loc": self.loc, "message": self.message}


class ChangeValidationError(ChangeError):
    """A request payload was malformed or unsafe. Nothing was executed."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        summary = "; ".join(
            f"{issue.loc}: {issue.message}" if issue.loc else issue.message
            for issue in self.issues
        )
        super().__init__(f"Invalid change request: {summary}")

    def to_dict(self) -> dict[str, object]:
        return {"error": "invalid_request", "issues": [i.to_dict() for i in self.issues]}


class ConfigurationError(ChangeError):
    """The call cannot proceed with the current configuration or target."""


class ExecutionError(ChangeError):
    """A change conflicted with the target's current state."""


class CompensationError(ChangeError):
    """Undoing an earlier batch step failed."""

    def __init__(self, change_id: str, message: str) -> None:
        self.change_id = change_id
        super().__init__(f"compensation for {change_id} failed: {message}")


class AuditStoreError(ChangeError):
    """The audit store could not be read or written."""
