"""Errors raised by the triage engine.

Each error carries the HTTP status the API layer answers with. Messages are
meant for the end user and only mention identifiers the caller supplied.
"""


class TriageError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TriageError):
    """Malformed input, e.g. an unknown taxonomy class on manual reclassify."""

    status_code = 422


class NotFoundError(TriageError):
    status_code = 404


class ConflictError(TriageError):
    """A concurrent writer changed the row first."""

    status_code = 409


class StorageError(TriageError):
    """The persistence layer failed; the surrounding transaction was rolled back."""

    status_code = 500
