"""Exception taxonomy shared by the pipelines and the HTTP layer."""
from __future__ import annotations


class CorpusError(Exception):
    """Base class for domain errors."""
    pass


class NotFoundError(CorpusError):
    """Raised when a referenced person, sentence or recording is absent."""

    def __init__(self, entity: str, identifier: object | None = None):
        self.entity = entity
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {identifier} not found")


class ConflictError(CorpusError):
    """Raised when an approval would break the one-approved-recording rule.

    Compensating state changes are already committed when this is raised.
    """

    def __init__(self, message: str, *, recording_id: int | None = None, duplicate_sentence_id: int | None = None):
        super().__init__(message)
        self.recording_id = recording_id
        self.duplicate_sentence_id = duplicate_sentence_id


class ValidationError(CorpusError):
    """Raised for missing or malformed input."""
    pass


class StorageError(CorpusError):
    """Raised when the object store fails or times out."""
    pass


class AuthError(CorpusError):
    """Raised for missing, invalid or insufficient credentials."""

    def __init__(self, message: str, *, forbidden: bool = False):
        super().__init__(message)
        self.forbidden = forbidden
