# catalog_sync/domain/errors.py
from __future__ import annotations
from typing import Optional


class CatalogSyncError(Exception):
    """Base class for every error raised by the catalog projection and currency engine."""


# ---------- Change-event decoding --------------------------------------------

class DecodeError(CatalogSyncError):
    """Malformed change record. Skipped, logged, dead-lettered; the stream advances."""

    def __init__(self, message: str, *, table: Optional[str] = None, key: Optional[int] = None):
        super().__init__(message)
        self.table = table
        self.key = key


# ---------- Transient infrastructure errors (retried with backoff) -----------

class RetryableError(CatalogSyncError):
    """Transient failure. The coordinator retries the same event without advancing."""


class SourceUnavailable(RetryableError):
    """Relational store unreachable while assembling a document."""


class SourceInconsistent(RetryableError):
    """
    A row the event refers to vanished, or its parent chain cannot be resolved yet.
    Retried because replication may catch up; poisoned once the budget runs out.
    """


class IndexUnavailable(RetryableError):
    """Search index store unreachable while applying a document."""


# ---------- Permanent data errors --------------------------------------------

class DocumentInvalid(CatalogSyncError):
    """Source rows violate a data-model invariant; retrying cannot help."""


class PoisonedEvent(CatalogSyncError):
    """An event exhausted its retry budget and is moved to the dead-letter record."""

    def __init__(self, reason: str, attempts: int):
        super().__init__(reason)
        self.reason = reason
        self.attempts = attempts


# ---------- Currency ---------------------------------------------------------

class CurrencyError(CatalogSyncError):
    pass


class UnknownCurrency(CurrencyError):
    def __init__(self, code: str):
        super().__init__(f"Unknown currency: {code}")
        self.code = code


class StaleMatrix(CurrencyError):
    """No currency matrix has been loaded yet."""


# ---------- Catalog tree -----------------------------------------------------

class CategoryTreeError(CatalogSyncError):
    """Cycle or dangling parent reference in the category tree."""


# ---------- Upstream log -----------------------------------------------------

class StreamUnavailable(RetryableError):
    """Change-event log (or its checkpoint store) unreachable."""
