"""
Domain errors raised by the services and mapped to HTTP responses in main.py.

NotFound is also used when a record exists but lies outside the caller's
scope, so callers cannot tell whether a record exists.
"""
from dataclasses import dataclass


class SiteDocsError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SiteDocsError):
    status_code = 404


class Forbidden(SiteDocsError):
    status_code = 403


class ValidationError(SiteDocsError):
    status_code = 400


class StorageError(SiteDocsError):
    status_code = 502


class AggregateUnavailable(SiteDocsError):
    status_code = 503

    def __init__(self, message: str, failures: list["PartialFailure"] | None = None):
        super().__init__(message)
        self.failures = failures or []


@dataclass(frozen=True)
class PartialFailure:
    """A source that contributed nothing to an aggregation. Recorded, never raised."""

    source: str
    reason: str
