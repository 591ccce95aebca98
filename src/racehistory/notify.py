"""Push notifications to connected clients over API Gateway WebSockets."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from racehistory.exceptions import NotificationError
from racehistory.store.entities import WebSocketConnection

logger = logging.getLogger(__name__)

RACE_INGESTED = "raceIngested"
INGESTION_CHUNK_COMPLETE = "ingestionChunkComplete"
INGESTION_FAILED_STALE_CREDENTIALS = "ingestionFailedStaleCredentials"

_GONE = "GoneException"


class ConnectionRegistry(Protocol):
    def get_connections_by_driver(self, driver_id: int) -> list[WebSocketConnection]: ...

    def delete_connection(self, driver_id: int, connection_id: str) -> None: ...


def _is_gone(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == _GONE


class Pusher:
    """Sends ``{"action": ..., "payload": ...}`` messages to connections.

    Connections that have gone away are not an error: ``push`` reports them
    with False and ``broadcast`` drops them from the registry.
    """

    def __init__(self, client: Any, registry: ConnectionRegistry) -> None:
        self._client = client
        self._registry = registry

    def push(self, connection_id: str, action: str, payload: Any) -> bool:
        """Send one message. Returns False if the connection is gone."""
        data = json.dumps({"action": action, "payload": payload}).encode("utf-8")
        try:
            self._client.post_to_connection(ConnectionId=connection_id, Data=data)
        except ClientError as exc:
            if _is_gone(exc):
                logger.debug("connection %s is gone", connection_id)
                return False
            raise NotificationError(f"push to {connection_id} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise NotificationError(f"push to {connection_id} failed: {exc}") from exc
        return True

    def broadcast(self, driver_id: int, action: str, payload: Any) -> int:
        """Push to every connection of a driver. Returns how many were reached."""
        delivered = 0
        for connection in self._registry.get_connections_by_driver(driver_id):
            if self.push(connection.connection_id, action, payload):
                delivered += 1
                continue
            logger.info("pruning gone connection %s of driver %d", connection.connection_id, driver_id)
            self._registry.delete_connection(driver_id, connection.connection_id)
        return delivered

    def disconnect(self, driver_id: int, connection_id: str) -> None:
        """Close a connection and remove its registry rows."""
        try:
            self._client.delete_connection(ConnectionId=connection_id)
        except ClientError as exc:
            if not _is_gone(exc):
                raise NotificationError(f"disconnect {connection_id} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise NotificationError(f"disconnect {connection_id} failed: {exc}") from exc
        self._registry.delete_connection(driver_id, connection_id)
