"""Race journal: per-race notes and tags written by the driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from racehistory._logging import log_service_call
from racehistory.exceptions import JournalValidationError
from racehistory.metrics import JOURNAL_ENTRIES_CREATED, MetricsEmitter, NoopMetrics
from racehistory.store import DynamoStore
from racehistory.store.entities import DriverSession, RaceJournalEntry
from racehistory.store.race_id import time_from_driver_race_id, to_unix_seconds

logger = logging.getLogger(__name__)

# Tag prefixes whose values are constrained.
KNOWN_TAG_PREFIXES: dict[str, tuple[str, ...]] = {
    "sentiment": ("good", "neutral", "bad"),
}


@dataclass(frozen=True)
class FieldValidation:
    field: str
    code: str
    params: dict[str, str] = field(default_factory=dict)


def validate_tags(tags: list[str]) -> list[FieldValidation]:
    """Check tags of the form ``prefix:value`` against the known prefixes.

    Tags without a colon, or with an unknown prefix, are free-form.
    """
    failures = []
    for tag in tags:
        prefix, sep, value = tag.partition(":")
        if not sep or prefix not in KNOWN_TAG_PREFIXES:
            continue
        allowed = KNOWN_TAG_PREFIXES[prefix]
        if value not in allowed:
            failures.append(FieldValidation(
                field="tags",
                code="invalid_tag_value",
                params={"prefix": prefix, "value": value, "allowed": ",".join(allowed)},
            ))
    return failures


@dataclass(frozen=True)
class JournalEntry:
    """A journal entry joined with the race it annotates."""

    race_id: int
    notes: str
    tags: list[str]
    created_at: datetime | None
    updated_at: datetime | None
    race: DriverSession | None = None


class JournalService:
    def __init__(self, store: DynamoStore, metrics: MetricsEmitter | None = None) -> None:
        self._store = store
        self._metrics = metrics or NoopMetrics()

    def validate_race_exists(self, driver_id: int, race_id: int) -> bool:
        session = self._store.get_driver_session(driver_id, time_from_driver_race_id(race_id))
        return session is not None

    @log_service_call
    def save(self, driver_id: int, race_id: int, notes: str, tags: list[str] | None = None) -> JournalEntry:
        """Create or update the entry for a race, keeping its creation time.

        Raises JournalValidationError for invalid tags or an unknown race.
        """
        tags = list(tags or [])
        failures = validate_tags(tags)
        if failures:
            raise JournalValidationError(failures)
        if not self.validate_race_exists(driver_id, race_id):
            raise JournalValidationError([
                FieldValidation(field="race_id", code="race_not_found", params={"race_id": str(race_id)})
            ])

        saved = self._store.save_journal_entry(
            RaceJournalEntry(driver_id=driver_id, race_id=race_id, notes=notes, tags=tags)
        )
        # Counts creates and updates alike.
        try:
            self._metrics.emit_count(JOURNAL_ENTRIES_CREATED, 1)
        except Exception:
            logger.warning("failed to emit journal entry metric", exc_info=True)

        race = self._store.get_driver_session(driver_id, time_from_driver_race_id(race_id))
        return _joined(saved, race)

    def get(self, driver_id: int, race_id: int) -> JournalEntry | None:
        entry = self._store.get_journal_entry(driver_id, race_id)
        if entry is None:
            return None
        race = self._store.get_driver_session(driver_id, time_from_driver_race_id(race_id))
        return _joined(entry, race)

    def list(self, driver_id: int, start: datetime, end: datetime) -> list[JournalEntry]:
        """Entries for races starting in ``[start, end)``, newest first."""
        entries = self._store.get_journal_entries(driver_id, start, end)
        if not entries:
            return []
        sessions = {
            to_unix_seconds(s.start_time): s
            for s in self._store.get_driver_sessions(driver_id, start, end)
        }
        return [_joined(entry, sessions.get(entry.race_id)) for entry in entries]

    def delete(self, driver_id: int, race_id: int) -> None:
        """Remove an entry. Deleting a missing entry is not an error."""
        self._store.delete_journal_entry(driver_id, race_id)


def _joined(entry: RaceJournalEntry, race: DriverSession | None) -> JournalEntry:
    return JournalEntry(
        race_id=entry.race_id,
        notes=entry.notes,
        tags=list(entry.tags),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        race=race,
    )
