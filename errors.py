# redirect-service/errors.py
from typing import Optional


class RedirectServiceError(Exception):
    """Base class for every error raised by the redirect service."""


class ConfigurationError(RedirectServiceError):
    pass


class NotFoundError(RedirectServiceError):
    """No short link exists for the requested slug."""

    def __init__(self, slug: str):
        super().__init__(f"No short link for slug {slug!r}")
        self.slug = slug


class StoreError(RedirectServiceError):
    pass


class StoreUnavailableError(StoreError):
    """The record store could not be reached, timed out or answered garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidRecordError(StoreUnavailableError):
    pass


class RecordMissingError(StoreError):
    def __init__(self, record_id):
        super().__init__(f"Record {record_id!r} no longer exists")
        self.record_id = record_id


class IncrementConflictError(StoreError):
    def __init__(self, record_id, attempts: int):
        super().__init__(
            f"Gave up incrementing record {record_id!r} after {attempts} conflicting writes"
        )
        self.record_id = record_id
        self.attempts = attempts

