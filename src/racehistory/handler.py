"""Queue consumer wiring: SQS records in, ingestion rounds out.

    handler = IngestionHandler.from_config(AppConfig(), UpstreamConfig())
    handler.handle(event)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from racehistory._logging import configure_logging
from racehistory.cache import CachingDataClient
from racehistory.catalog import CarService, TrackService
from racehistory.client import DataClient
from racehistory.config import AppConfig, UpstreamConfig
from racehistory.events import SQSDispatcher
from racehistory.ingestion import IngestionResult, RaceIngestionCoordinator, RaceIngestionRequest
from racehistory.metrics import CloudWatchMetrics, MetricsEmitter, NoopMetrics
from racehistory.notify import Pusher
from racehistory.store import DynamoStore

logger = logging.getLogger(__name__)

TimeoutComputer = Callable[[dict[str, Any]], int]


def parse_records(event: dict[str, Any]) -> list[RaceIngestionRequest]:
    """Parse queued ingestion requests. Malformed records are logged and dropped."""
    requests = []
    for record in event.get("Records", []):
        try:
            requests.append(RaceIngestionRequest.model_validate_json(record.get("body", "")))
        except ValidationError as exc:
            logger.error("dropping malformed record %s: %s", record.get("messageId"), exc)
    return requests


def linear_visibility_timeout(step: timedelta) -> TimeoutComputer:
    """Delay before redelivery: ``(receive_count - 1) * step`` seconds."""
    seconds = int(step.total_seconds())

    def compute(record: dict[str, Any]) -> int:
        raw = record.get("attributes", {}).get("ApproximateReceiveCount", "1")
        try:
            receive_count = int(raw)
        except (TypeError, ValueError):
            receive_count = 1
        return max(receive_count - 1, 0) * seconds

    return compute


def parse_queue_arn(arn: str) -> tuple[str, str]:
    """Split ``arn:aws:sqs:<region>:<account>:<queue>`` into account and queue name."""
    parts = arn.split(":")
    if len(parts) != 6:
        raise ValueError(f"invalid SQS ARN: {arn!r}")
    return parts[4], parts[5]


class VisibilityReset:
    """Pushes failed records' next delivery out by a per-record timeout.

    Best effort: SQS errors are logged and never replace the failure that
    triggered the reset.
    """

    def __init__(self, sqs_client: Any, timeout_for: TimeoutComputer) -> None:
        self._sqs = sqs_client
        self._timeout_for = timeout_for

    def reset(self, records: list[dict[str, Any]]) -> None:
        if not records:
            return
        try:
            account_id, queue_name = parse_queue_arn(records[0].get("eventSourceARN", ""))
            queue_url = self._sqs.get_queue_url(
                QueueName=queue_name, QueueOwnerAWSAccountId=account_id
            )["QueueUrl"]
        except (ValueError, ClientError, BotoCoreError) as exc:
            logger.error("cannot resolve queue for visibility reset: %s", exc)
            return

        for record in records:
            message_id = record.get("messageId")
            try:
                self._sqs.change_message_visibility(
                    QueueUrl=queue_url,
                    ReceiptHandle=record["receiptHandle"],
                    VisibilityTimeout=self._timeout_for(record),
                )
            except (KeyError, ClientError, BotoCoreError) as exc:
                logger.error("failed to reset visibility of %s: %s", message_id, exc)
            else:
                logger.warning("reset visibility of %s", message_id)


class IngestionHandler:
    def __init__(
        self,
        coordinator: RaceIngestionCoordinator,
        visibility: VisibilityReset | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._visibility = visibility

    @classmethod
    def from_config(cls, app: AppConfig, upstream: UpstreamConfig) -> IngestionHandler:
        session = boto3.Session(region_name=app.aws_region)
        visibility = None
        if app.retry_backoff_seconds:
            visibility = VisibilityReset(
                session.client("sqs"),
                linear_visibility_timeout(timedelta(seconds=app.retry_backoff_seconds)),
            )
        return cls(build_coordinator(app, upstream, session), visibility)

    def handle(self, event: dict[str, Any]) -> list[IngestionResult]:
        """Run one ingestion round per record.

        Failures propagate so the queue redelivers the batch, after the
        batch's visibility has been pushed out when a reset is configured.
        """
        try:
            return self._run(event)
        except Exception:
            if self._visibility is not None:
                self._visibility.reset(event.get("Records", []))
            raise

    def _run(self, event: dict[str, Any]) -> list[IngestionResult]:
        results = []
        for request in parse_records(event):
            result = self._coordinator.ingest_races(request)
            logger.info("driver %d: %s", request.driver_id, result.status)
            results.append(result)
        return results


def build_data_client(
    app: AppConfig,
    upstream: UpstreamConfig,
    session: Any,
    metrics: MetricsEmitter | None = None,
) -> CachingDataClient:
    """Upstream client with catalog reads cached in the configured bucket."""
    return CachingDataClient(
        DataClient(base_url=upstream.base_url, timeout=upstream.timeout, metrics=metrics),
        session.client("s3"),
        app.cache_bucket,
        timedelta(hours=app.cache_ttl_hours),
    )


def build_catalog_services(
    app: AppConfig, upstream: UpstreamConfig, session: Any | None = None
) -> tuple[TrackService, CarService]:
    """Track and car services sharing one cached client."""
    configure_logging(app.log_level)
    session = session or boto3.Session(region_name=app.aws_region)
    client = build_data_client(app, upstream, session)
    return TrackService(client), CarService(client)


def build_coordinator(
    app: AppConfig, upstream: UpstreamConfig, session: Any | None = None
) -> RaceIngestionCoordinator:
    """Assemble the coordinator and its collaborators from configuration."""
    configure_logging(app.log_level)
    session = session or boto3.Session(region_name=app.aws_region)

    metrics: MetricsEmitter = NoopMetrics()
    if app.metrics_namespace:
        metrics = CloudWatchMetrics(session.client("cloudwatch"), app.metrics_namespace)

    store = DynamoStore(session.client("dynamodb"), app.dynamodb_table)
    client = build_data_client(app, upstream, session, metrics)
    pusher = Pusher(
        session.client("apigatewaymanagementapi", endpoint_url=app.ws_management_endpoint),
        store,
    )
    dispatcher = None
    if app.ingestion_queue_url:
        dispatcher = SQSDispatcher(session.client("sqs"), app.ingestion_queue_url)

    return RaceIngestionCoordinator(
        store,
        client,
        pusher,
        dispatcher,
        metrics,
        lock_duration=timedelta(seconds=app.ingestion_lock_seconds),
        search_window=timedelta(days=app.search_window_days),
    )
