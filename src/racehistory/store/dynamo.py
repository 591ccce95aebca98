"""Single-table DynamoDB store.

Every record lives under ``(partition_key, sort_key)``. Creates are
conditional on the key being absent and run inside transactions together
with the global counter increments they imply, so counters only move when
new records land.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from racehistory.exceptions import (
    DriverNotFoundError,
    EntityAlreadyExistsError,
    StoreError,
    TransactionBatchError,
)
from racehistory.store import _items
from racehistory.store._items import (
    COUNTERS_SORT_KEY,
    GLOBAL_PARTITION,
    INFO_SORT_KEY,
    INGESTION_LOCK_SORT_KEY,
    PARTITION_KEY,
    SORT_KEY,
)
from racehistory.store.entities import (
    Driver,
    DriverNote,
    DriverSession,
    GlobalCounters,
    RaceJournalEntry,
    Session,
    SessionCarClass,
    SessionCarClassCar,
    SessionDataInsertion,
    SessionDriver,
    SessionDriverLap,
    Track,
    WebSocketConnection,
)
from racehistory.store.race_id import from_unix_seconds, to_unix_seconds

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_TRANSACT_WRITE_ITEMS = 100
MAX_BATCH_WRITE_ITEMS = 25
MAX_UNPROCESSED_RETRIES = 5

_CONDITION_FAILED = "ConditionalCheckFailed"


def translate_error(exc: Exception) -> StoreError:
    """Map a provider error onto the store's exception taxonomy.

    A conditional-check failure, plain or as the cancellation reason of a
    transaction, means the record already exists.
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "")
        if code == "ConditionalCheckFailedException":
            return EntityAlreadyExistsError()
        if code == "TransactionCanceledException":
            reasons = exc.response.get("CancellationReasons") or []
            if any(reason.get("Code") == _CONDITION_FAILED for reason in reasons):
                return EntityAlreadyExistsError()
            if _CONDITION_FAILED in error.get("Message", ""):
                return EntityAlreadyExistsError()
        return StoreError(f"{code}: {error.get('Message', exc)}")
    return StoreError(str(exc))


def _chunks(items: list[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DynamoStore:
    """Persistent store over a boto3 low-level DynamoDB client.

    Usage:
        store = DynamoStore(boto3.client("dynamodb"), "racehistory")
        if store.acquire_ingestion_lock(driver_id, timedelta(minutes=5)):
            ...
    """

    def __init__(
        self,
        client: Any,
        table: str,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._table = table
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ── Low-level helpers ──────────────────────────────────────

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return getattr(self._client, operation)(TableName=self._table, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc

    def _get(self, key: dict[str, str], consistent: bool = False) -> dict[str, Any] | None:
        response = self._call(
            "get_item", Key=_items.serialize(key), ConsistentRead=consistent
        )
        raw = response.get("Item")
        return _items.deserialize(raw) if raw else None

    def _query(
        self,
        partition: str,
        sort_condition: str | None = None,
        values: dict[str, Any] | None = None,
        *,
        newest_first: bool = False,
        keys_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Run a paginated single-partition query and return every item."""
        condition = "#pk = :pk"
        if sort_condition:
            condition += f" AND {sort_condition}"
        names = {"#pk": PARTITION_KEY}
        if sort_condition or keys_only:
            names["#sk"] = SORT_KEY
        attr_values = {":pk": _items.serialize_value(partition)}
        for name, value in (values or {}).items():
            attr_values[name] = _items.serialize_value(value)

        kwargs: dict[str, Any] = {
            "TableName": self._table,
            "KeyConditionExpression": condition,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": attr_values,
            "ScanIndexForward": not newest_first,
        }
        if keys_only:
            kwargs["ProjectionExpression"] = "#pk, #sk"

        items: list[dict[str, Any]] = []
        try:
            for page in self._client.get_paginator("query").paginate(**kwargs):
                items.extend(_items.deserialize(raw) for raw in page.get("Items", []))
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc
        return items

    def _query_prefix(self, partition: str, prefix: str) -> list[dict[str, Any]]:
        return self._query(partition, "begins_with(#sk, :prefix)", {":prefix": prefix})

    def _query_range(
        self,
        partition: str,
        prefix: str,
        start: int,
        end: int,
        *,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        """Items whose ``<prefix><n>`` sort key has ``start <= n < end``."""
        if end <= start:
            return []
        return self._query(
            partition,
            "#sk BETWEEN :from AND :to",
            {":from": f"{prefix}{start}", ":to": f"{prefix}{end - 1}"},
            newest_first=newest_first,
        )

    def _put(self, item: dict[str, Any]) -> dict[str, Any]:
        return {"Put": {"TableName": self._table, "Item": _items.serialize(item)}}

    def _put_if_absent(self, item: dict[str, Any]) -> dict[str, Any]:
        put = self._put(item)
        put["Put"]["ConditionExpression"] = "attribute_not_exists(#pk)"
        put["Put"]["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY}
        return put

    def _increment(self, key: dict[str, str], amounts: dict[str, int]) -> dict[str, Any]:
        """Transaction item adding ``amounts`` to numeric attributes of ``key``."""
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        clauses: list[str] = []
        for i, (attribute, amount) in enumerate(amounts.items()):
            names[f"#c{i}"] = attribute
            values[f":c{i}"] = _items.serialize_value(amount)
            clauses.append(f"#c{i} :c{i}")
        return {
            "Update": {
                "TableName": self._table,
                "Key": _items.serialize(key),
                "UpdateExpression": "ADD " + ", ".join(clauses),
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": values,
            }
        }

    def _increment_counters(self, **amounts: int) -> dict[str, Any]:
        return self._increment(_items.key(GLOBAL_PARTITION, COUNTERS_SORT_KEY), amounts)

    def _transact(self, items: list[dict[str, Any]]) -> None:
        try:
            self._client.transact_write_items(TransactItems=items)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc

    def _transact_batched(self, items: list[dict[str, Any]]) -> None:
        """Write ``items`` in consecutive transactions of at most 100 items.

        Batches are independent: a failure in batch k leaves batches before
        it committed.
        """
        batches = list(_chunks(items, MAX_TRANSACT_WRITE_ITEMS))
        total = len(batches)
        for number, batch in enumerate(batches, start=1):
            try:
                self._transact(batch)
            except EntityAlreadyExistsError as exc:
                raise EntityAlreadyExistsError(f"batch {number}/{total}: {exc}") from exc
            except StoreError as exc:
                raise TransactionBatchError(number, total, exc) from exc
            logger.debug("committed transaction batch %d/%d (%d items)", number, total, len(batch))

    # ── Counters ───────────────────────────────────────────────

    def get_global_counters(self) -> GlobalCounters:
        item = self._get(_items.key(GLOBAL_PARTITION, COUNTERS_SORT_KEY))
        return _items.counters_from_item(item) if item else GlobalCounters()

    # ── Drivers ────────────────────────────────────────────────

    def insert_driver(self, driver: Driver) -> None:
        """Create a driver record. Raises EntityAlreadyExistsError if present."""
        self._transact([
            self._put_if_absent(_items.driver_item(driver)),
            self._increment_counters(drivers=1),
        ])

    def get_driver(self, driver_id: int) -> Driver | None:
        """Read a driver together with any live ingestion lock."""
        partition = _items.driver_partition(driver_id)
        keys = [
            _items.serialize(_items.key(partition, INFO_SORT_KEY)),
            _items.serialize(_items.key(partition, INGESTION_LOCK_SORT_KEY)),
        ]
        try:
            response = self._client.batch_get_item(
                RequestItems={self._table: {"Keys": keys, "ConsistentRead": True}}
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc
        if response.get("UnprocessedKeys"):
            raise StoreError(f"unprocessed keys reading driver {driver_id}")

        info: dict[str, Any] | None = None
        lock: dict[str, Any] | None = None
        for raw in response.get("Responses", {}).get(self._table, []):
            item = _items.deserialize(raw)
            if item[SORT_KEY] == INFO_SORT_KEY:
                info = item
            elif item[SORT_KEY] == INGESTION_LOCK_SORT_KEY:
                lock = item
        if info is None:
            return None

        driver = _items.driver_from_item(info)
        if lock is not None:
            locked_until = from_unix_seconds(int(lock["locked_until"]))
            if locked_until > self._now():
                driver.ingestion_blocked_until = locked_until
        return driver

    def record_login(self, driver_id: int) -> None:
        """Stamp ``last_login`` and bump ``login_count``."""
        try:
            self._client.update_item(
                TableName=self._table,
                Key=_items.serialize(_items.key(_items.driver_partition(driver_id), INFO_SORT_KEY)),
                UpdateExpression="SET #last_login = :now ADD #login_count :one",
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={
                    "#pk": PARTITION_KEY,
                    "#last_login": "last_login",
                    "#login_count": "login_count",
                },
                ExpressionAttributeValues={
                    ":now": _items.serialize_value(to_unix_seconds(self._now())),
                    ":one": _items.serialize_value(1),
                },
            )
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc)
            if isinstance(error, EntityAlreadyExistsError):
                raise DriverNotFoundError(driver_id) from exc
            raise error from exc

    def update_driver_races_ingested_to(self, driver_id: int, ingested_to: datetime) -> bool:
        """Advance the driver's watermark. Returns False if it would move backwards."""
        try:
            self._client.update_item(
                TableName=self._table,
                Key=_items.serialize(_items.key(_items.driver_partition(driver_id), INFO_SORT_KEY)),
                UpdateExpression="SET #rit = :val",
                ConditionExpression="attribute_exists(#pk) AND (attribute_not_exists(#rit) OR #rit < :val)",
                ExpressionAttributeNames={"#pk": PARTITION_KEY, "#rit": "races_ingested_to"},
                ExpressionAttributeValues={":val": _items.serialize_value(to_unix_seconds(ingested_to))},
            )
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc)
            if isinstance(error, EntityAlreadyExistsError):
                logger.debug("watermark for driver %d not advanced to %s", driver_id, ingested_to)
                return False
            raise error from exc
        return True

    # ── Ingestion lock ─────────────────────────────────────────

    def acquire_ingestion_lock(self, driver_id: int, duration: timedelta) -> bool:
        """Take the driver's ingestion lock unless a live one exists.

        An expired lock is taken over. Returns False when the lock is held.
        """
        now = self._now()
        locked_until = to_unix_seconds(now + duration)
        item = {
            **_items.key(_items.driver_partition(driver_id), INGESTION_LOCK_SORT_KEY),
            "locked_until": locked_until,
            "ttl": locked_until,
        }
        try:
            self._client.put_item(
                TableName=self._table,
                Item=_items.serialize(item),
                ConditionExpression="attribute_not_exists(#pk) OR #locked_until < :now",
                ExpressionAttributeNames={"#pk": PARTITION_KEY, "#locked_until": "locked_until"},
                ExpressionAttributeValues={":now": _items.serialize_value(to_unix_seconds(now))},
            )
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc)
            if isinstance(error, EntityAlreadyExistsError):
                return False
            raise error from exc
        return True

    def release_ingestion_lock(self, driver_id: int) -> None:
        self._call(
            "delete_item",
            Key=_items.serialize(
                _items.key(_items.driver_partition(driver_id), INGESTION_LOCK_SORT_KEY)
            ),
        )

    # ── Tracks ─────────────────────────────────────────────────

    def insert_track(self, track: Track) -> None:
        self._transact([
            self._put_if_absent(_items.track_item(track)),
            self._increment_counters(tracks=1),
        ])

    def get_track(self, track_id: int) -> Track | None:
        item = self._get(_items.key(_items.track_partition(track_id), INFO_SORT_KEY))
        return _items.track_from_item(item) if item else None

    # ── Notes ──────────────────────────────────────────────────

    def add_driver_note(self, note: DriverNote) -> None:
        self._transact([
            self._put_if_absent(_items.note_item(note)),
            self._increment_counters(notes=1),
        ])

    def get_driver_notes(self, driver_id: int, start: datetime, end: datetime) -> list[DriverNote]:
        """Notes with ``start <= timestamp < end``, oldest first."""
        items = self._query_range(
            _items.driver_partition(driver_id),
            _items.NOTE_PREFIX,
            to_unix_seconds(start),
            to_unix_seconds(end),
        )
        return [_items.note_from_item(item) for item in items]

    # ── Connections ────────────────────────────────────────────

    def save_connection(self, connection: WebSocketConnection) -> None:
        """Register a connection under both its driver and its own id."""
        rows = _items.connection_items(connection, self._now())
        self._transact([self._put(row) for row in rows])

    def delete_connection(self, driver_id: int, connection_id: str) -> None:
        self._transact([
            {
                "Delete": {
                    "TableName": self._table,
                    "Key": _items.serialize(
                        _items.key(_items.driver_partition(driver_id), _items.websocket_sort_key(connection_id))
                    ),
                }
            },
            {
                "Delete": {
                    "TableName": self._table,
                    "Key": _items.serialize(
                        _items.key(_items.websocket_partition(connection_id), INFO_SORT_KEY)
                    ),
                }
            },
        ])

    def get_connection(self, connection_id: str) -> WebSocketConnection | None:
        item = self._get(_items.key(_items.websocket_partition(connection_id), INFO_SORT_KEY))
        return _items.connection_from_item(item) if item else None

    def get_driver_id_by_connection(self, connection_id: str) -> int | None:
        connection = self.get_connection(connection_id)
        return connection.driver_id if connection else None

    def get_connections_by_driver(self, driver_id: int) -> list[WebSocketConnection]:
        items = self._query_prefix(_items.driver_partition(driver_id), _items.WEBSOCKET_PREFIX)
        return [_items.connection_from_item(item) for item in items]

    # ── Sessions ───────────────────────────────────────────────

    def get_session(self, subsession_id: int) -> Session | None:
        """Read a session with its car classes and their cars."""
        partition = _items.session_partition(subsession_id)
        info = self._get(_items.key(partition, INFO_SORT_KEY))
        if info is None:
            return None
        session = _items.session_from_item(info)

        classes: dict[int, SessionCarClass] = {}
        cars: list[SessionCarClassCar] = []
        for item in self._query_prefix(partition, _items.CAR_CLASS_PREFIX):
            if _items.CAR_MARKER in item[SORT_KEY]:
                cars.append(_items.car_class_car_from_item(item))
            else:
                car_class = _items.car_class_from_item(item)
                classes[car_class.car_class_id] = car_class
        for car in cars:
            if car.car_class_id in classes:
                classes[car.car_class_id].cars.append(car)
        session.car_classes = list(classes.values())
        return session

    def get_session_drivers(self, subsession_id: int) -> list[SessionDriver]:
        items = self._query_prefix(_items.session_partition(subsession_id), _items.SESSION_DRIVER_PREFIX)
        return [_items.session_driver_from_item(item) for item in items]

    def get_session_driver_laps(self, subsession_id: int, driver_id: int) -> list[SessionDriverLap]:
        """Stored laps for one driver in one session, in lap order."""
        items = self._query_prefix(_items.session_partition(subsession_id), _items.laps_prefix(driver_id))
        return [_items.lap_from_item(item) for item in items]

    def get_driver_session(self, driver_id: int, start_time: datetime) -> DriverSession | None:
        item = self._get(
            _items.key(_items.driver_partition(driver_id), _items.driver_session_sort_key(start_time))
        )
        return _items.driver_session_from_item(item) if item else None

    def get_driver_sessions(self, driver_id: int, start: datetime, end: datetime) -> list[DriverSession]:
        """Driver sessions starting in ``[start, end)``, newest first."""
        items = self._query_range(
            _items.driver_partition(driver_id),
            _items.SESSION_PREFIX,
            to_unix_seconds(start),
            to_unix_seconds(end),
            newest_first=True,
        )
        return [_items.driver_session_from_item(item) for item in items]

    def persist_session_data(self, data: SessionDataInsertion) -> None:
        """Write a race's denormalized records in three phases.

        1. Sub-items (car classes, cars, session drivers, laps), unconditional.
        2. Session records, key-checked, with the sessions/laps counters.
        3. Driver session projections, key-checked, with each driver's
           session_count.

        Replaying a call that died after phase 2 completes phase 3.
        EntityAlreadyExistsError is raised only when nothing new was written
        in phases 2 and 3.
        """
        self._transact_batched(self._sub_item_writes(data))

        try:
            self._transact_batched(self._session_writes(data))
        except EntityAlreadyExistsError:
            if not data.driver_session_entries:
                raise
            logger.info("session records already present, resuming with driver sessions")

        self._transact_batched(self._driver_session_writes(data))

    def _sub_item_writes(self, data: SessionDataInsertion) -> list[dict[str, Any]]:
        items: dict[tuple[str, str], dict[str, Any]] = {}

        def add(item: dict[str, Any]) -> None:
            items[(item[PARTITION_KEY], item[SORT_KEY])] = item

        for session in data.session_entries:
            for car_class in session.car_classes:
                add(_items.car_class_item(car_class))
                for car in car_class.cars:
                    add(_items.car_class_car_item(car))
        for driver in data.session_driver_entries:
            add(_items.session_driver_item(driver))
        for lap in data.session_driver_lap_entries:
            add(_items.lap_item(lap))
        return [self._put(item) for item in items.values()]

    def _session_writes(self, data: SessionDataInsertion) -> list[dict[str, Any]]:
        writes = [self._put_if_absent(_items.session_item(s)) for s in data.session_entries]
        if writes:
            counts = {"sessions": len(data.session_entries)}
            if data.session_driver_lap_entries:
                counts["laps"] = len(data.session_driver_lap_entries)
            writes.append(self._increment_counters(**counts))
        return writes

    def _driver_session_writes(self, data: SessionDataInsertion) -> list[dict[str, Any]]:
        writes = [self._put_if_absent(_items.driver_session_item(e)) for e in data.driver_session_entries]
        per_driver = Counter(e.driver_id for e in data.driver_session_entries)
        for driver_id, count in per_driver.items():
            writes.append(self._increment(
                _items.key(_items.driver_partition(driver_id), INFO_SORT_KEY),
                {"session_count": count},
            ))
        return writes

    def save_session_driver_laps(
        self,
        subsession_id: int,
        driver_id: int,
        laps: list[SessionDriverLap],
    ) -> None:
        """Persist one driver's laps and bump the laps counter.

        Raises TransactionBatchError naming the failed batch; earlier batches
        stay committed.
        """
        unique = {lap.lap_number: lap for lap in laps}
        if not unique:
            return
        writes = [self._put(_items.lap_item(lap)) for lap in unique.values()]
        writes.append(self._increment_counters(laps=len(unique)))
        logger.debug(
            "saving %d laps for driver %d in subsession %d", len(unique), driver_id, subsession_id
        )
        self._transact_batched(writes)

    def delete_driver_races(self, driver_id: int) -> None:
        """Remove everything in the driver partition except the info record.

        Resets the watermark and session count so the next run re-ingests
        from ``member_since``.
        """
        partition = _items.driver_partition(driver_id)
        keys = [
            {PARTITION_KEY: item[PARTITION_KEY], SORT_KEY: item[SORT_KEY]}
            for item in self._query(partition, keys_only=True)
            if item[SORT_KEY] != INFO_SORT_KEY
        ]
        for batch in _chunks(keys, MAX_BATCH_WRITE_ITEMS):
            self._batch_delete(batch)
        logger.info("deleted %d records for driver %d", len(keys), driver_id)

        try:
            self._call(
                "update_item",
                Key=_items.serialize(_items.key(partition, INFO_SORT_KEY)),
                UpdateExpression="REMOVE #rit SET #sc = :zero",
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={
                    "#pk": PARTITION_KEY,
                    "#rit": "races_ingested_to",
                    "#sc": "session_count",
                },
                ExpressionAttributeValues={":zero": _items.serialize_value(0)},
            )
        except EntityAlreadyExistsError as exc:
            raise DriverNotFoundError(driver_id) from exc

    def _batch_delete(self, keys: list[dict[str, str]]) -> None:
        requests = [{"DeleteRequest": {"Key": _items.serialize(k)}} for k in keys]
        for _ in range(MAX_UNPROCESSED_RETRIES):
            try:
                response = self._client.batch_write_item(RequestItems={self._table: requests})
            except (ClientError, BotoCoreError) as exc:
                raise translate_error(exc) from exc
            requests = response.get("UnprocessedItems", {}).get(self._table, [])
            if not requests:
                return
        raise StoreError(f"{len(requests)} deletes still unprocessed after retries")

    # ── Journal ────────────────────────────────────────────────

    def save_journal_entry(self, entry: RaceJournalEntry) -> RaceJournalEntry:
        """Create or update a journal entry, keeping the original ``created_at``."""
        now = self._now()
        fresh = RaceJournalEntry(
            driver_id=entry.driver_id,
            race_id=entry.race_id,
            notes=entry.notes,
            tags=list(entry.tags),
            created_at=now,
            updated_at=now,
        )
        try:
            self._transact([
                self._put_if_absent(_items.journal_item(fresh)),
                self._increment_counters(journal_entries=1),
            ])
            return fresh
        except EntityAlreadyExistsError:
            logger.debug("journal entry %d/%d exists, updating", entry.driver_id, entry.race_id)

        response = self._call(
            "update_item",
            Key=_items.serialize(
                _items.key(_items.driver_partition(entry.driver_id), _items.journal_sort_key(entry.race_id))
            ),
            UpdateExpression="SET #notes = :notes, #tags = :tags, #updated_at = :now",
            ExpressionAttributeNames={"#notes": "notes", "#tags": "tags", "#updated_at": "updated_at"},
            ExpressionAttributeValues={
                ":notes": _items.serialize_value(entry.notes),
                ":tags": _items.serialize_value(list(entry.tags)),
                ":now": _items.serialize_value(to_unix_seconds(now)),
            },
            ReturnValues="ALL_NEW",
        )
        return _items.journal_from_item(_items.deserialize(response["Attributes"]))

    def get_journal_entry(self, driver_id: int, race_id: int) -> RaceJournalEntry | None:
        item = self._get(_items.key(_items.driver_partition(driver_id), _items.journal_sort_key(race_id)))
        return _items.journal_from_item(item) if item else None

    def get_journal_entries(self, driver_id: int, start: datetime, end: datetime) -> list[RaceJournalEntry]:
        """Journal entries for races starting in ``[start, end)``, newest first."""
        items = self._query_range(
            _items.driver_partition(driver_id),
            _items.JOURNAL_PREFIX,
            to_unix_seconds(start),
            to_unix_seconds(end),
            newest_first=True,
        )
        return [_items.journal_from_item(item) for item in items]

    def delete_journal_entry(self, driver_id: int, race_id: int) -> None:
        self._call(
            "delete_item",
            Key=_items.serialize(
                _items.key(_items.driver_partition(driver_id), _items.journal_sort_key(race_id))
            ),
        )
