"""Sequential multi-change submissions with compensating rollback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from pymongo.errors import PyMongoError

from mongo_changes.domain.changes import ChangeRequest
from mongo_changes.domain.ids import new_change_id
from mongo_changes.domain.results import BatchResult, ChangeResult, RevertResult
from mongo_changes.errors import ChangeError, CompensationError
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.execution.executor import ChangeExecutor
from mongo_changes.execution.revert import RevertEngine

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Apply an ordered list of changes one at a time.

    On the first failure (with ``stop_on_error`` and outside simulation) the
    changes this batch actually applied are reverted newest first, and the
    remaining requests are never attempted. A failing step that still changed
    the target (its audit write failed) is undone first, straight from its
    revert plan. Compensation is best effort: each revert is tried once and
    its failure is only logged. Skipped changes mutated nothing and are never
    reverted.
    """

    def __init__(
        self,
        executor: ChangeExecutor,
        revert_engine: RevertEngine,
        connections: ConnectionManager,
    ) -> None:
        self._executor = executor
        self._revert = revert_engine
        self._connections = connections

    def apply_batch(
        self,
        requests: Sequence[ChangeRequest],
        stop_on_error: bool = True,
        simulate: bool = False,
    ) -> BatchResult:
        prepared = [
            request if request.change_id else request.with_change_id(new_change_id())
            for request in requests
        ]
        # A disallowed target fails the whole call before anything runs.
        for uri in dict.fromkeys(request.target.uri for request in prepared):
            self._connections.check_allowed(uri)

        results: list[ChangeResult] = []
        applied: list[ChangeRequest] = []
        for index, request in enumerate(prepared):
            result = self._executor.apply(request, simulate=simulate)
            results.append(result)
            if result.status == "failed" and stop_on_error and not simulate:
                logger.warning(
                    "BATCH_FAILED index=%d change_id=%s compensating=%d",
                    index,
                    result.change_id,
                    len(applied),
                )
                self._discard_unaudited(request, result)
                self._compensate(applied)
                return BatchResult(status="rolled_back", results=results, failed_at=index)
            if result.status == "applied" and not simulate:
                applied.append(request)

        logger.info("BATCH_OK size=%d simulate=%s", len(results), simulate)
        return BatchResult(status="ok", results=results)

    def _discard_unaudited(self, request: ChangeRequest, result: ChangeResult) -> None:
        # The failing step changed the target but has no audit record to revert.
        plan = result.revert_plan
        if not result.mutated or plan is None:
            return
        self._attempt(
            result.change_id,
            lambda: self._revert.discard(
                result.change_id, request.target.uri, request.target.database, plan
            ),
        )

    def _compensate(self, applied: list[ChangeRequest]) -> None:
        for request in reversed(applied):
            change_id = request.change_id or ""
            self._attempt(
                change_id,
                lambda: self._revert.revert(
                    change_id, request.target.uri, request.target.database
                ),
            )

    @staticmethod
    def _attempt(change_id: str, undo: Callable[[], RevertResult]) -> None:
        try:
            outcome = undo()
            if outcome.status != "reverted":
                raise CompensationError(change_id, outcome.message)
        except (ChangeError, PyMongoError) as exc:
            logger.warning("COMPENSATION_FAILED change_id=%s error=%s", change_id, exc)
        except Exception:
            # The remaining steps still get their revert attempt.
            logger.exception("COMPENSATION_FAILED change_id=%s unexpected error", change_id)
        else:
            logger.info("COMPENSATED change_id=%s", change_id)
