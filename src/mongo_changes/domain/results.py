"""Outcome records returned by the executor, revert engine and batch orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping

ChangeStatus = Literal["applied", "skipped", "failed"]
RevertStatus = Literal["reverted", "failed"]
BatchStatus = Literal["ok", "rolled_back"]


@dataclass(frozen=True)
class DropCollectionPlan:
    collection: str
    requires_empty: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "type": "dropCollection",
            "collection": self.collection,
            "requiresEmpty": self.requires_empty,
        }


@dataclass(frozen=True)
class DropIndexPlan:
    collection: str
    name: str

    def to_dict(self) -> dict[str, object]:
        return {"type": "dropIndex", "collection": self.collection, "name": self.name}


RevertPlan = DropCollectionPlan | DropIndexPlan


def revert_plan_from_dict(data: Mapping[str, object] | None) -> RevertPlan | None:
    if not data:
        return None
    plan_type = data.get("type")
    collection = str(data.get("collection", ""))
    if plan_type == "dropCollection":
        return DropCollectionPlan(
            collection=collection, requires_empty=bool(data.get("requiresEmpty", True))
        )
    if plan_type == "dropIndex":
        return DropIndexPlan(collection=collection, name=str(data.get("name", "")))
    return None


@dataclass(frozen=True)
class ChangeResult:
    change_id: str
    status: ChangeStatus
    message: str
    revert_plan: RevertPlan | None
    duration_ms: int
    # True when the target was changed, even if the attempt ended ``failed``.
    mutated: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "changeId": self.change_id,
            "status": self.status,
            "message": self.message,
            "revertPlan": self.revert_plan.to_dict() if self.revert_plan else None,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class RevertResult:
    change_id: str
    status: RevertStatus
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"changeId": self.change_id, "status": self.status, "message": self.message}


@dataclass(frozen=True)
class BatchResult:
    status: BatchStatus
    results: list[ChangeResult] = field(default_factory=list)
    failed_at: int | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"status": self.status}
        if self.failed_at is not None:
            payload["failedAt"] = self.failed_at
        payload["results"] = [result.to_dict() for result in self.results]
        return payload
