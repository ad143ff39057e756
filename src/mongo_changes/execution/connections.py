"""MongoDB client cache keyed by connection string."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from pymongo import MongoClient
from pymongo.errors import ConfigurationError as DriverConfigurationError

from mongo_changes.config import TargetSettings
from mongo_changes.errors import ConfigurationError
from mongo_changes.utils.masking import mask_uri_credentials
from mongo_changes.utils.patterns import compile_allow_pattern

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], MongoClient]


class ConnectionManager:
    """Hands out one long-lived client per distinct connection string.

    Construction is single-flight per connection string: concurrent first
    callers wait on a per-URI lock, so only one client is ever built for it.
    Clients live until ``close()``.
    """

    def __init__(
        self,
        settings: TargetSettings,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings
        self._allow_pattern = (
            compile_allow_pattern(settings.allow_uri_regex) if settings.allow_uri_regex else None
        )
        self._client_factory = client_factory or self._build_client
        self._clients: dict[str, MongoClient] = {}
        self._build_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self._closed = False

    def check_allowed(self, uri: str) -> None:
        """Fail closed for connection strings outside the allow-pattern."""
        if self._allow_pattern is not None and not self._allow_pattern.search(uri):
            raise ConfigurationError("Target URI not allowed by ALLOW_TARGET_URI_REGEX")

    def get_client(self, uri: str) -> MongoClient:
        self.check_allowed(uri)
        client = self._clients.get(uri)
        if client is not None:
            return client

        with self._guard:
            if self._closed:
                raise ConfigurationError("connection manager is closed")
            build_lock = self._build_locks.setdefault(uri, threading.Lock())

        with build_lock:
            client = self._clients.get(uri)
            if client is not None:
                return client
            logger.info("CONNECT uri=%s", mask_uri_credentials(uri))
            try:
                client = self._client_factory(uri)
            except DriverConfigurationError as exc:
                raise ConfigurationError(f"Invalid target URI: {exc}") from exc
            with self._guard:
                self._clients[uri] = client
            return client

    def _build_client(self, uri: str) -> MongoClient:
        return MongoClient(
            uri,
            retryWrites=self._settings.retry_writes,
            tz_aware=True,
            serverSelectionTimeoutMS=self._settings.server_selection_timeout_ms,
        )

    def close(self) -> None:
        with self._guard:
            clients = list(self._clients.values())
            self._clients.clear()
            self._build_locks.clear()
            self._closed = True
        for client in clients:
            client.close()
        if clients:
            logger.info("DISCONNECT clients=%d", len(clients))
