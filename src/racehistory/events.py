"""Dispatch of follow-up ingestion rounds onto the work queue."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from racehistory.exceptions import RaceHistoryError

logger = logging.getLogger(__name__)


class EventDispatcher(Protocol):
    def publish_event(self, event: BaseModel) -> None: ...


class SQSDispatcher:
    """Publishes events as JSON messages on an SQS queue."""

    def __init__(self, client: Any, queue_url: str) -> None:
        self._client = client
        self._queue_url = queue_url

    def publish_event(self, event: BaseModel) -> None:
        body = event.model_dump_json(by_alias=True)
        try:
            response = self._client.send_message(QueueUrl=self._queue_url, MessageBody=body)
        except (ClientError, BotoCoreError) as exc:
            raise RaceHistoryError(f"publishing {type(event).__name__} failed: {exc}") from exc
        logger.debug("published %s as message %s", type(event).__name__, response.get("MessageId"))
