"""Contract between the change service and optional side-channel integrations.

An integration (ticketing, artifact upload, chat notification...) observes a
finished apply, batch or revert. It never alters the primary result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from mongo_changes.utils.time import utc_now

IntegrationAction = Literal["apply", "batch", "revert"]


@dataclass(frozen=True)
class BatchPosition:
    index: int
    total: int


@dataclass(frozen=True)
class IntegrationContext:
    action: IntegrationAction
    timestamp: datetime
    simulate: bool = False
    actor: str | None = None
    request_id: str | None = None
    batch_position: BatchPosition | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IntegrationOutcome:
    enabled: bool
    success: bool
    skipped_reason: str | None = None
    error: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def disabled(cls, reason: str) -> "IntegrationOutcome":
        return cls(enabled=False, success=True, skipped_reason=reason)

    @classmethod
    def failure(cls, error: str) -> "IntegrationOutcome":
        return cls(enabled=True, success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"enabled": self.enabled, "success": self.success}
        if self.skipped_reason is not None:
            payload["skippedReason"] = self.skipped_reason
        if self.error is not None:
            payload["error"] = self.error
        if self.details is not None:
            payload["details"] = self.details
        return payload


class Integration(Protocol):
    name: str

    def __call__(
        self, request: Any, result: Any, context: IntegrationContext
    ) -> IntegrationOutcome: ...


def build_context(
    action: IntegrationAction,
    simulate: bool = False,
    actor: str | None = None,
    request_id: str | None = None,
    batch_position: BatchPosition | None = None,
    extra: dict[str, Any] | None = None,
) -> IntegrationContext:
    return IntegrationContext(
        action=action,
        timestamp=utc_now(),
        simulate=simulate,
        actor=actor,
        request_id=request_id,
        batch_position=batch_position,
        extra=dict(extra or {}),
    )
