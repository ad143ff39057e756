"""Run every registered integration side by side with a bounded wait."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from mongo_changes.integrations.types import Integration, IntegrationContext, IntegrationOutcome

logger = logging.getLogger(__name__)


class IntegrationRunner:
    """Invoke integrations concurrently and collect one outcome per name.

    A raising integration and one still running when ``timeout_seconds``
    elapses both yield ``success=False``. Nothing here raises.
    """

    def __init__(self, integrations: Iterable[Integration] = (), timeout_seconds: float = 15.0):
        self._integrations: list[Integration] = list(integrations)
        self._timeout = timeout_seconds

    @property
    def names(self) -> list[str]:
        return [integration.name for integration in self._integrations]

    def register(self, integration: Integration) -> None:
        if integration.name in self.names:
            raise ValueError(f"integration already registered: {integration.name}")
        self._integrations.append(integration)

    def run(
        self, request: Any, result: Any, context: IntegrationContext
    ) -> dict[str, IntegrationOutcome]:
        if not self._integrations:
            return {}

        pool = ThreadPoolExecutor(
            max_workers=len(self._integrations), thread_name_prefix="integration"
        )
        try:
            futures: dict[str, Future[IntegrationOutcome]] = {
                integration.name: pool.submit(integration, request, result, context)
                for integration in self._integrations
            }
            wait(futures.values(), timeout=self._timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        outcomes: dict[str, IntegrationOutcome] = {}
        for name, future in futures.items():
            outcomes[name] = self._collect(name, future)
        return outcomes

    def _collect(self, name: str, future: Future[IntegrationOutcome]) -> IntegrationOutcome:
        if future.cancelled() or not future.done():
            logger.warning("INTEGRATION_TIMEOUT name=%s timeout_s=%s", name, self._timeout)
            return IntegrationOutcome.failure(f"timed out after {self._timeout}s")
        try:
            outcome = future.result()
        except Exception as exc:
            logger.warning("INTEGRATION_ERROR name=%s error=%s", name, exc)
            return IntegrationOutcome.failure(str(exc))
        if not isinstance(outcome, IntegrationOutcome):
            return IntegrationOutcome.failure(f"unexpected outcome type {type(outcome).__name__}")
        logger.info(
            "INTEGRATION name=%s enabled=%s success=%s", name, outcome.enabled, outcome.success
        )
        return outcome
