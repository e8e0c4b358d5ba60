"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations


class CrawlscopeError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigurationError(CrawlscopeError):
    """Missing or invalid settings; fatal at startup."""


class LogSourceError(CrawlscopeError):
    """The log feed could not be read. The run aborts without touching the cursor."""


class MalformedRecordError(CrawlscopeError):
    """A single log line could not be turned into a record. Counted and skipped."""


class PersistenceError(CrawlscopeError):
    """A batch insert or cursor write failed and was rolled back."""


class ConcurrentRunError(CrawlscopeError):
    """Another ingestion run holds the lock or wrote a newer cursor."""
