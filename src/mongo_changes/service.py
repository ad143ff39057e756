"""Public entry points for applying, reverting and inspecting schema changes.

Every method takes raw, JSON-shaped input and returns result objects whose
``to_dict()`` produces the camelCase wire shape. Only
``ChangeValidationError`` and ``ConfigurationError`` are raised; everything
that goes wrong against the target comes back as a ``failed`` result.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from mongo_changes.app import AppContext, get_app_context
from mongo_changes.audit.models import AuditRecord, ChangeListing, ChangeQuery
from mongo_changes.domain.results import BatchResult, ChangeResult, RevertResult
from mongo_changes.errors import ChangeValidationError, ValidationIssue
from mongo_changes.integrations.types import IntegrationContext, IntegrationOutcome
from mongo_changes.logging_utils import get_logger
from mongo_changes.validation.validator import parse_change_request, parse_change_requests

logger = logging.getLogger(__name__)


def _require(value: str | None, loc: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ChangeValidationError([ValidationIssue(loc=loc, message=f"{loc} required")])
    return value


class ChangeService:
    def __init__(self, ctx: AppContext) -> None:
        self._ctx = ctx

    def apply_change(self, payload: Any, simulate: bool = False) -> ChangeResult:
        request = parse_change_request(payload)
        return self._ctx.executor.apply(request, simulate=simulate)

    def apply_batch(
        self, payloads: Any, stop_on_error: bool = True, simulate: bool = False
    ) -> BatchResult:
        """Validate every item, then apply them in order.

        A single invalid item rejects the whole batch before any change runs.
        """
        requests = parse_change_requests(payloads)
        return self._ctx.batch.apply_batch(requests, stop_on_error=stop_on_error, simulate=simulate)

    def revert_change(
        self, change_id: str | None, uri: str | None, database: str | None = None
    ) -> RevertResult:
        change_id = _require(change_id, "changeId")
        uri = _require(uri, "uri")
        return self._ctx.revert_engine.revert(change_id, uri, database or None)

    def list_changes(
        self,
        uri: str | None,
        status: str | None = None,
        since: str | datetime | None = None,
        limit: int | None = None,
        skip: int | None = 0,
        only_applied: bool = False,
    ) -> ChangeListing:
        uri = _require(uri, "uri")
        self._ctx.connections.check_allowed(uri)
        audit = self._ctx.settings.audit
        query = ChangeQuery.from_filters(
            status=status,
            since=since,
            limit=limit,
            skip=skip,
            only_applied=only_applied,
            default_limit=audit.list_default_limit,
            max_limit=audit.list_max_limit,
        )
        return self._ctx.audit_store.list(uri, query)

    def get_change(self, change_id: str | None, uri: str | None) -> AuditRecord | None:
        """Newest audit record for ``change_id`` on ``uri``, or ``None``."""
        change_id = _require(change_id, "changeId")
        uri = _require(uri, "uri")
        self._ctx.connections.check_allowed(uri)
        return self._ctx.audit_store.latest(change_id, uri)

    def notify(
        self, request: Any, result: Any, context: IntegrationContext
    ) -> dict[str, IntegrationOutcome]:
        outcomes = self._ctx.integrations.run(request, result, context)
        failed = sorted(name for name, outcome in outcomes.items() if not outcome.success)
        if failed:
            logger.warning("NOTIFY action=%s failed=%s", context.action, ",".join(failed))
        return outcomes


def get_change_service() -> ChangeService:
    """Process entry point: logging is configured on first use."""
    ctx = get_app_context()
    get_logger(__name__).info(
        "SERVICE_READY audit_backend=%s revert_on_already_reverted=%s",
        ctx.settings.audit.backend,
        ctx.settings.revert.on_already_reverted,
    )
    return ChangeService(ctx)
