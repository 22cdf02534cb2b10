"""Topic engine error taxonomy.

Each error carries the HTTP status the API layer answers with. None of the
engine operations retry on their own; member mutations and merges are
upsert/delete based and safe for callers to retry.
"""

from __future__ import annotations


class TopicEngineError(Exception):
    """Base class for failures surfaced to topic engine callers."""

    status_code: int = 500

    def __init__(self, message: str, details: object | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(TopicEngineError):
    """Malformed ids, unparseable timestamps, missing required fields."""

    status_code = 400


class Unauthorized(TopicEngineError):
    """No authenticated owner on the request."""

    status_code = 401


class NotFound(TopicEngineError):
    """Topic, member or note absent, or not owned by the caller."""

    status_code = 404


class StoreFailure(TopicEngineError):
    """The backing store rejected a read or write."""

    status_code = 500


class UpstreamFailure(TopicEngineError):
    """The structured-generation collaborator failed or answered malformed output."""

    status_code = 502
