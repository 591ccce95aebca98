"""Custom exceptions for the racehistory package."""

from __future__ import annotations


class RaceHistoryError(Exception):
    """Base exception for all racehistory errors."""


# ── Upstream ───────────────────────────────────────────────────


class UpstreamUnauthorizedError(RaceHistoryError):
    """Raised when the upstream API answers 401.

    The access token is stale. Callers re-authenticate instead of retrying.
    """

    def __init__(self, message: str = "upstream returned 401 unauthorized") -> None:
        super().__init__(message)


class UpstreamConnectionError(RaceHistoryError):
    """Raised when the client cannot connect to the upstream API."""


class UpstreamTimeoutError(RaceHistoryError):
    """Raised when a request to the upstream API times out."""


class UpstreamAPIError(RaceHistoryError):
    """Raised when the upstream API returns a non-200 response other than 401."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


class ChunkFetchError(RaceHistoryError):
    """Raised when one file of a chunked result set cannot be downloaded."""

    def __init__(self, index: int, total: int, cause: Exception) -> None:
        self.index = index
        self.total = total
        super().__init__(f"chunk {index}/{total} failed: {cause}")


class MalformedPayloadError(RaceHistoryError):
    """Raised when upstream (or cached) data fails validation."""


# ── Cache / store ──────────────────────────────────────────────


class CacheError(RaceHistoryError):
    """Raised when the durable blob cache cannot be read or written."""


class StoreError(RaceHistoryError):
    """Raised on persistent store infrastructure failures."""


class EntityAlreadyExistsError(StoreError):
    """Raised when a conditional insert finds the key already present."""

    def __init__(self, message: str = "entity already exists") -> None:
        super().__init__(message)


class TransactionBatchError(StoreError):
    """Raised when batch ``batch`` of ``total`` transactional writes fails.

    Batches before ``batch`` are committed and are not rolled back.
    """

    def __init__(self, batch: int, total: int, cause: Exception) -> None:
        self.batch = batch
        self.total = total
        super().__init__(f"batch {batch}/{total} failed: {cause}")


class DriverNotFoundError(RaceHistoryError):
    """Raised when an operation targets a driver with no info record."""

    def __init__(self, driver_id: int) -> None:
        self.driver_id = driver_id
        super().__init__(f"driver {driver_id} not found")


# ── Collaborators ──────────────────────────────────────────────


class NotificationError(RaceHistoryError):
    """Raised when the push transport fails for a reason other than a gone connection."""


class OAuthError(RaceHistoryError):
    """Raised when the token endpoint rejects an exchange or refresh."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"token request failed with HTTP {status_code}: {message}")


class JournalValidationError(RaceHistoryError):
    """Raised when a journal entry fails validation."""

    def __init__(self, failures: list[object]) -> None:
        self.failures = failures
        super().__init__(f"{len(failures)} validation failure(s)")
